"""Tests for the coin ledger policy: balance and ledger always move together."""
from __future__ import annotations

import threading
from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from app import create_app
from app.errors import InsufficientFunds, NotFound, StorageError, ValidationFailed
from app.extensions import db
from app.ledger import CoinLedger
from app.models import CoinTransaction, Order, User
from app.storage import Storage


def _ledger() -> CoinLedger:
    return CoinLedger(Storage(db.session))


def _ledger_sum(user_id: str) -> int:
    return db.session.scalar(
        select(func.coalesce(func.sum(CoinTransaction.amount), 0)).where(CoinTransaction.user_id == user_id)
    )


def _balance(user_id: str) -> int:
    return db.session.get(User, user_id, populate_existing=True).coin_balance


def _seed_balance(user_id: str, amount: int) -> None:
    _ledger().award_coins(user_id, amount, "earned_appointment", "Opening balance")


def _assert_reconciled(user_id: str) -> None:
    assert _ledger_sum(user_id) == _balance(user_id)


def test_award_coins_writes_ledger_row_and_balance(app, make_user) -> None:
    make_user("user-1")
    with app.app_context():
        transaction = _ledger().award_coins("user-1", 25, "earned_appointment", "Welcome gift", "ref-1")

        assert transaction.amount == 25
        assert transaction.type == "earned_appointment"
        assert transaction.related_id == "ref-1"
        assert _balance("user-1") == 25
        _assert_reconciled("user-1")


@pytest.mark.parametrize("amount", [0, -5, True, 2.5, "10"])
def test_award_coins_rejects_invalid_amounts_before_writing(app, make_user, amount) -> None:
    make_user("user-1")
    with app.app_context():
        with pytest.raises(ValidationFailed):
            _ledger().award_coins("user-1", amount, "earned_appointment")

        assert CoinTransaction.query.count() == 0
        assert _balance("user-1") == 0


@pytest.mark.parametrize("transaction_type", ["bogus_type", "redeemed_twice", None, ""])
def test_award_coins_rejects_unknown_transaction_type(app, make_user, transaction_type) -> None:
    make_user("user-1")
    with app.app_context():
        with pytest.raises(ValidationFailed):
            _ledger().award_coins("user-1", 5, transaction_type)

        assert CoinTransaction.query.count() == 0
        assert _balance("user-1") == 0


def test_balance_matches_ledger_after_mixed_sequence(app, make_user) -> None:
    make_user("user-1")
    make_user("user-2")
    with app.app_context():
        ledger = _ledger()
        ledger.award_coins("user-1", 100, "earned_appointment")
        ledger.redeem_coins("user-1", 30)
        ledger.award_coins("user-2", 15, "earned_appointment")
        ledger.award_coins("user-1", 20, "earned_appointment")
        with pytest.raises(InsufficientFunds):
            ledger.redeem_coins("user-1", 500)
        ledger.redeem_coins("user-1", 90)
        with pytest.raises(InsufficientFunds):
            ledger.redeem_coins("user-2", 16)

        assert _balance("user-1") == 0
        assert _balance("user-2") == 15
        _assert_reconciled("user-1")
        _assert_reconciled("user-2")


def test_redeem_exact_balance_leaves_zero(app, make_user) -> None:
    make_user("user-1")
    with app.app_context():
        _seed_balance("user-1", 40)

        transaction = _ledger().redeem_coins("user-1", 40)

        assert transaction.amount == -40
        assert transaction.type == "redeemed"
        assert _balance("user-1") == 0
        _assert_reconciled("user-1")


def test_redeem_one_over_balance_fails_and_changes_nothing(app, make_user) -> None:
    make_user("user-1")
    with app.app_context():
        _seed_balance("user-1", 40)
        rows_before = CoinTransaction.query.count()

        with pytest.raises(InsufficientFunds):
            _ledger().redeem_coins("user-1", 41)

        assert _balance("user-1") == 40
        assert CoinTransaction.query.count() == rows_before
        _assert_reconciled("user-1")


def test_redeem_unknown_user_raises_not_found(app) -> None:
    with app.app_context():
        with pytest.raises(NotFound):
            _ledger().redeem_coins("ghost", 5)

        assert CoinTransaction.query.count() == 0


def test_failed_balance_update_rolls_back_ledger_row(app, make_user) -> None:
    make_user("user-1")
    with app.app_context():
        with patch.object(Storage, "adjust_user_coin_balance", side_effect=StorageError("connection lost")):
            with pytest.raises(StorageError):
                _ledger().award_coins("user-1", 10, "earned_appointment")

        assert CoinTransaction.query.count() == 0
        assert _balance("user-1") == 0


def test_award_for_unknown_user_leaves_no_orphan_row(app) -> None:
    with app.app_context():
        with pytest.raises(StorageError):
            _ledger().award_coins("ghost", 10, "earned_appointment")

        assert CoinTransaction.query.count() == 0


def test_booking_awards_coins(app, make_user) -> None:
    make_user("user-1")
    with app.app_context():
        _seed_balance("user-1", 100)

        appointment = _ledger().book_appointment("user-1", {
            "service_title": "Balayage",
            "appointment_date": datetime(2026, 11, 3, 14, 30),
            "coins_earned": 20,
        })

        assert _balance("user-1") == 120
        earned = CoinTransaction.query.filter_by(related_id=appointment.id).all()
        assert len(earned) == 1
        assert earned[0].amount == 20
        assert earned[0].type == "earned_appointment"
        assert "Balayage" in earned[0].description
        _assert_reconciled("user-1")


def test_booking_without_coins_writes_no_ledger_row(app, make_user) -> None:
    make_user("user-1")
    with app.app_context():
        _ledger().book_appointment("user-1", {
            "service_title": "Consultation",
            "appointment_date": datetime(2026, 11, 3, 9, 0),
            "coins_earned": 0,
        })

        assert CoinTransaction.query.count() == 0
        assert _balance("user-1") == 0


def test_booking_rejects_negative_coins(app, make_user) -> None:
    make_user("user-1")
    with app.app_context():
        with pytest.raises(ValidationFailed):
            _ledger().book_appointment("user-1", {
                "service_title": "Haircut",
                "appointment_date": datetime(2026, 11, 3, 9, 0),
                "coins_earned": -20,
            })


def test_order_redeems_coins(app, make_user, make_product) -> None:
    make_user("user-1")
    product_id = make_product("Argan Oil", price_cents=2500)
    with app.app_context():
        _seed_balance("user-1", 120)

        order = _ledger().place_order("user-1", {
            "items": [{"product_id": product_id, "quantity": 2}],
            "coins_used": 50,
        })

        assert order.coins_used == 50
        assert order.total_cents == 5000
        assert order.items == [
            {"product_id": product_id, "title": "Argan Oil", "quantity": 2, "unit_price_cents": 2500}
        ]
        assert _balance("user-1") == 70
        redeemed = CoinTransaction.query.filter_by(type="redeemed").all()
        assert len(redeemed) == 1
        assert redeemed[0].amount == -50
        assert redeemed[0].related_id == order.id
        assert db.session.get(Order, order.id) is not None
        _assert_reconciled("user-1")


def test_order_without_coins_leaves_balance(app, make_user, make_product) -> None:
    make_user("user-1")
    product_id = make_product()
    with app.app_context():
        _seed_balance("user-1", 10)

        _ledger().place_order("user-1", {"items": [{"product_id": product_id, "quantity": 1}]})

        assert _balance("user-1") == 10
        assert CoinTransaction.query.filter_by(type="redeemed").count() == 0


def test_order_with_too_many_coins_is_rejected(app, make_user, make_product) -> None:
    make_user("user-1")
    product_id = make_product()
    with app.app_context():
        _seed_balance("user-1", 30)

        with pytest.raises(InsufficientFunds):
            _ledger().place_order("user-1", {
                "items": [{"product_id": product_id, "quantity": 1}],
                "coins_used": 31,
            })

        assert Order.query.count() == 0
        assert _balance("user-1") == 30
        _assert_reconciled("user-1")


def test_failed_order_insert_rolls_back_redemption(app, make_user, make_product) -> None:
    make_user("user-1")
    product_id = make_product()
    with app.app_context():
        _seed_balance("user-1", 100)

        with patch.object(Storage, "create_order", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                _ledger().place_order("user-1", {
                    "items": [{"product_id": product_id, "quantity": 1}],
                    "coins_used": 50,
                })

        assert _balance("user-1") == 100
        assert CoinTransaction.query.filter_by(type="redeemed").count() == 0
        assert Order.query.count() == 0
        _assert_reconciled("user-1")


def test_order_with_inactive_product_is_rejected(app, make_user, make_product) -> None:
    make_user("user-1")
    product_id = make_product(is_active=False)
    with app.app_context():
        _seed_balance("user-1", 100)

        with pytest.raises(ValidationFailed):
            _ledger().place_order("user-1", {
                "items": [{"product_id": product_id, "quantity": 1}],
                "coins_used": 10,
            })

        assert _balance("user-1") == 100
        assert Order.query.count() == 0


def test_transient_storage_error_is_retried(app, make_user, make_product) -> None:
    make_user("user-1")
    product_id = make_product()
    real_create_order = Storage.create_order
    calls = []

    def flaky_create_order(self, data):
        calls.append(data["id"])
        if len(calls) == 1:
            raise StorageError("database is locked", transient=True)
        return real_create_order(self, data)

    with app.app_context():
        _seed_balance("user-1", 100)

        with patch.object(Storage, "create_order", flaky_create_order):
            order = _ledger().place_order("user-1", {
                "items": [{"product_id": product_id, "quantity": 1}],
                "coins_used": 50,
            })

        assert len(calls) == 2
        assert _balance("user-1") == 50
        assert CoinTransaction.query.filter_by(type="redeemed").count() == 1
        assert CoinTransaction.query.filter_by(type="redeemed").one().related_id == order.id
        _assert_reconciled("user-1")


def test_permanent_storage_error_is_not_retried(app, make_user) -> None:
    make_user("user-1")
    with app.app_context():
        with patch.object(
            Storage, "append_coin_transaction", side_effect=StorageError("constraint failed")
        ) as append:
            with pytest.raises(StorageError):
                CoinLedger(Storage(db.session), max_attempts=5).award_coins("user-1", 5, "earned_appointment")

        assert append.call_count == 1


def test_concurrent_redemptions_only_one_succeeds(tmp_path) -> None:
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'coins.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 15}},
        "LEDGER_MAX_ATTEMPTS": 5,
    })
    with app.app_context():
        db.create_all()
        db.session.add(User(id="user-1", email="user-1@example.com"))
        db.session.commit()
        _seed_balance("user-1", 100)

    barrier = threading.Barrier(2)
    outcomes: dict[int, str] = {}

    def redeem(amount: int) -> None:
        with app.app_context():
            ledger = CoinLedger(Storage(db.session), max_attempts=app.config["LEDGER_MAX_ATTEMPTS"])
            barrier.wait()
            try:
                ledger.redeem_coins("user-1", amount)
                outcomes[amount] = "ok"
            except InsufficientFunds:
                outcomes[amount] = "insufficient"
            finally:
                db.session.remove()

    threads = [threading.Thread(target=redeem, args=(amount,)) for amount in (60, 70)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes.values()) == ["insufficient", "ok"]
    winner = next(amount for amount, outcome in outcomes.items() if outcome == "ok")

    with app.app_context():
        assert _balance("user-1") == 100 - winner
        assert CoinTransaction.query.filter_by(type="redeemed").count() == 1
        _assert_reconciled("user-1")
        db.session.remove()
        db.engine.dispose()
