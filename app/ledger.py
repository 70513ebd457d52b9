"""Coin ledger policy.

Every balance change is paired with one append-only ``CoinTransaction`` row,
and both are written in the same database transaction. Composite actions
(booking an appointment that earns coins, placing an order paid partly with
coins) run as a single unit as well, so a failure at any step leaves neither
the ledger nor the balance changed.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from .errors import StorageError, ValidationFailed
from .models import (COIN_TRANSACTION_TYPES, Appointment, CoinTransaction, Order,
                     new_id)
from .storage import Storage

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _require_positive_int(value: object, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationFailed(f"{field} must be a positive integer")
    return value


def _require_transaction_type(value: object) -> str:
    if value not in COIN_TRANSACTION_TYPES:
        raise ValidationFailed(
            f"transaction type must be one of: {', '.join(COIN_TRANSACTION_TYPES)}"
        )
    return value


class CoinLedger:
    def __init__(self, storage: Storage, max_attempts: int = 3) -> None:
        self.storage = storage
        self.max_attempts = max(1, max_attempts)

    def _run(self, action: str, unit: Callable[[], T]) -> T:
        # Each attempt is a fresh transaction; atomic() has already rolled back.
        attempt = 1
        while True:
            try:
                return unit()
            except StorageError as exc:
                if not exc.transient or attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Transient storage error during %s (attempt %d/%d): %s",
                    action, attempt, self.max_attempts, exc.message,
                )
                attempt += 1

    def _award(
        self,
        user_id: str,
        amount: int,
        transaction_type: str,
        description: str | None,
        related_id: str | None,
    ) -> CoinTransaction:
        with self.storage.atomic():
            transaction = self.storage.append_coin_transaction({
                "user_id": user_id,
                "amount": amount,
                "type": transaction_type,
                "description": description,
                "related_id": related_id,
            })
            self.storage.adjust_user_coin_balance(user_id, amount)
        return transaction

    def _redeem(
        self,
        user_id: str,
        amount: int,
        description: str | None,
        related_id: str | None,
    ) -> CoinTransaction:
        with self.storage.atomic():
            # Guarded debit first: the funds check and the write are one statement.
            self.storage.adjust_user_coin_balance(user_id, -amount, allow_negative=False)
            transaction = self.storage.append_coin_transaction({
                "user_id": user_id,
                "amount": -amount,
                "type": "redeemed",
                "description": description or f"Redeemed {amount} coins",
                "related_id": related_id,
            })
        return transaction

    def award_coins(
        self,
        user_id: str,
        amount: int,
        transaction_type: str,
        description: str | None = None,
        related_id: str | None = None,
    ) -> CoinTransaction:
        amount = _require_positive_int(amount, "amount")
        transaction_type = _require_transaction_type(transaction_type)
        transaction = self._run(
            "award_coins",
            lambda: self._award(user_id, amount, transaction_type, description, related_id),
        )
        logger.info("Awarded %d coins to user %s (%s)", amount, user_id, transaction_type)
        return transaction

    def redeem_coins(
        self,
        user_id: str,
        amount: int,
        description: str | None = None,
        related_id: str | None = None,
    ) -> CoinTransaction:
        amount = _require_positive_int(amount, "amount")
        transaction = self._run(
            "redeem_coins",
            lambda: self._redeem(user_id, amount, description, related_id),
        )
        logger.info("Redeemed %d coins for user %s", amount, user_id)
        return transaction

    def book_appointment(self, user_id: str, data: Mapping[str, Any]) -> Appointment:
        """Create an appointment and award its coins in one transaction."""
        coins = data.get("coins_earned", 0)
        if isinstance(coins, bool) or not isinstance(coins, int) or coins < 0:
            raise ValidationFailed("coins_earned must be a non-negative integer")

        def unit() -> Appointment:
            with self.storage.atomic():
                appointment = self.storage.create_appointment({**data, "user_id": user_id})
                if appointment.coins_earned > 0:
                    self._award(
                        user_id,
                        appointment.coins_earned,
                        "earned_appointment",
                        f"Earned {appointment.coins_earned} coins for booking "
                        f"{appointment.service_title}",
                        appointment.id,
                    )
            return appointment

        appointment = self._run("book_appointment", unit)
        logger.info(
            "User %s booked appointment %s (%d coins)",
            user_id, appointment.id, appointment.coins_earned,
        )
        return appointment

    def _price_items(self, items: list[Mapping[str, Any]]) -> tuple[list[dict[str, Any]], int]:
        priced = []
        total = 0
        for item in items:
            product = self.storage.get_product(item["product_id"])
            if product is None or not product.is_active:
                raise ValidationFailed(f"product {item['product_id']} is not available")
            quantity = item["quantity"]
            priced.append({
                "product_id": product.id,
                "title": product.title,
                "quantity": quantity,
                "unit_price_cents": product.price_cents,
            })
            total += product.price_cents * quantity
        return priced, total

    def place_order(self, user_id: str, data: Mapping[str, Any]) -> Order:
        """Price the items, redeem ``coins_used`` and record the order together.

        If the order row cannot be written the redemption is rolled back with it.
        """
        coins_used = data.get("coins_used", 0)
        if isinstance(coins_used, bool) or not isinstance(coins_used, int) or coins_used < 0:
            raise ValidationFailed("coins_used must be a non-negative integer")
        items, total_cents = self._price_items(data.get("items") or [])
        if not items:
            raise ValidationFailed("an order needs at least one item")

        def unit() -> Order:
            order_id = new_id()
            with self.storage.atomic():
                if coins_used > 0:
                    self._redeem(
                        user_id,
                        coins_used,
                        f"Redeemed {coins_used} coins on order {order_id}",
                        order_id,
                    )
                order = self.storage.create_order({
                    "id": order_id,
                    "user_id": user_id,
                    "items": items,
                    "total_cents": total_cents,
                    "coins_used": coins_used,
                    "shipping_address": data.get("shipping_address"),
                })
            return order

        order = self._run("place_order", unit)
        logger.info(
            "User %s placed order %s (%d cents, %d coins)",
            user_id, order.id, order.total_cents, coins_used,
        )
        return order
