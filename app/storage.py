"""Entity store: CRUD over the six tables behind the Coin Studio API.

A ``Storage`` wraps an explicitly injected SQLAlchemy session. Reads return
``None`` on a miss. Writes run inside :meth:`Storage.atomic`, which commits
once at the outermost block and rolls back on any exception, so several
writes composed by a caller (see :mod:`app.ledger`) land together or not at
all.
"""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import InsufficientFunds, NotFound, StorageError
from .models import (Appointment, CoinTransaction, Message, Order, Product,
                     User, utc_now)

UPSERT_USER_FIELDS = ("email", "first_name", "last_name", "profile_image_url", "role")

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class ProductPatch:
    """Partial product update. Fields left as ``UNSET`` are not written."""

    title: Any = UNSET
    description: Any = UNSET
    price_cents: Any = UNSET
    image_url: Any = UNSET
    category: Any = UNSET
    is_active: Any = UNSET

    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()


class Storage:
    def __init__(self, session: Session) -> None:
        self.session = session
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator["Storage"]:
        """Group writes into one transaction.

        Nested blocks only flush; the outermost block commits. Any exception
        rolls the whole unit back, and SQLAlchemy errors are re-raised as
        :class:`StorageError`.
        """
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield self
            if outermost:
                self.session.commit()
            else:
                self.session.flush()
        except SQLAlchemyError as exc:
            if outermost:
                self.session.rollback()
            raise StorageError.from_exception(exc) from exc
        except Exception:
            if outermost:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1

    def _insert(self, model: type, data: Mapping[str, Any]):
        with self.atomic():
            row = model(**data)
            self.session.add(row)
        return row

    # Users

    def get_user(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def upsert_user(self, data: Mapping[str, Any]) -> User:
        """Insert a user or overwrite the given profile fields of an existing one.

        ``coin_balance`` is never written here; only the ledger moves it.
        """
        user_id = data["id"]
        values = {key: data[key] for key in UPSERT_USER_FIELDS if key in data}
        dialect = self.session.get_bind(User).dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)

        with self.atomic():
            if insert is not None:
                now = utc_now()
                stmt = insert(User).values(id=user_id, created_at=now, updated_at=now, **values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={**values, "updated_at": now},
                )
                self.session.execute(stmt)
            else:
                user = self.session.get(User, user_id)
                if user is None:
                    self.session.add(User(id=user_id, **values))
                else:
                    for key, value in values.items():
                        setattr(user, key, value)
                    user.updated_at = utc_now()

        return self.session.get(User, user_id, populate_existing=True)

    def adjust_user_coin_balance(
        self, user_id: str, delta: int, *, allow_negative: bool = True
    ) -> User:
        """Apply ``coin_balance = coin_balance + delta`` inside the database.

        With ``allow_negative=False`` the update only matches while the
        resulting balance stays >= 0, so the funds check and the debit are a
        single statement.
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(coin_balance=User.coin_balance + delta, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if not allow_negative:
            stmt = stmt.where(User.coin_balance + delta >= 0)

        with self.atomic():
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                user = self.session.get(User, user_id, populate_existing=True)
                if user is None:
                    raise NotFound(f"user {user_id} not found")
                raise InsufficientFunds(balance=user.coin_balance, requested=-delta)

        return self.session.get(User, user_id, populate_existing=True)

    # Appointments

    def create_appointment(self, data: Mapping[str, Any]) -> Appointment:
        return self._insert(Appointment, data)

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        return self.session.get(Appointment, appointment_id)

    def list_appointments_for_user(self, user_id: str) -> list[Appointment]:
        stmt = (
            select(Appointment)
            .where(Appointment.user_id == user_id)
            .order_by(Appointment.appointment_date.desc())
        )
        return list(self.session.scalars(stmt))

    def list_all_appointments(self) -> list[Appointment]:
        stmt = select(Appointment).order_by(Appointment.created_at.desc())
        return list(self.session.scalars(stmt))

    def set_appointment_status(
        self, appointment_id: str, status: str, *, expected_status: str | None = None
    ) -> Appointment | None:
        """Write ``status``; returns None when no row matched.

        With ``expected_status`` the update only applies while the stored
        status still equals it, so a transition checked against a stale read
        cannot land.
        """
        stmt = (
            update(Appointment)
            .where(Appointment.id == appointment_id)
            .values(status=status, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if expected_status is not None:
            stmt = stmt.where(Appointment.status == expected_status)

        with self.atomic():
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                return None
        return self.session.get(Appointment, appointment_id, populate_existing=True)

    # Products

    def list_active_products(self) -> list[Product]:
        stmt = (
            select(Product)
            .where(Product.is_active.is_(True))
            .order_by(Product.created_at.desc())
        )
        return list(self.session.scalars(stmt))

    def get_product(self, product_id: str) -> Product | None:
        return self.session.get(Product, product_id)

    def create_product(self, data: Mapping[str, Any]) -> Product:
        return self._insert(Product, data)

    def update_product(self, product_id: str, patch: ProductPatch) -> Product | None:
        with self.atomic():
            product = self.session.get(Product, product_id)
            if product is None:
                return None
            for key, value in patch.changes().items():
                setattr(product, key, value)
            product.updated_at = utc_now()
        return product

    # Orders

    def create_order(self, data: Mapping[str, Any]) -> Order:
        return self._insert(Order, data)

    def list_orders_for_user(self, user_id: str) -> list[Order]:
        stmt = select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc())
        return list(self.session.scalars(stmt))

    def list_all_orders(self) -> list[Order]:
        return list(self.session.scalars(select(Order).order_by(Order.created_at.desc())))

    # Messages

    def create_message(self, data: Mapping[str, Any]) -> Message:
        return self._insert(Message, data)

    def get_message(self, message_id: str) -> Message | None:
        return self.session.get(Message, message_id)

    def list_messages_for_user(self, user_id: str) -> list[Message]:
        stmt = (
            select(Message)
            .where(Message.user_id == user_id)
            .order_by(Message.created_at.desc())
        )
        return list(self.session.scalars(stmt))

    def list_all_messages(self) -> list[Message]:
        return list(self.session.scalars(select(Message).order_by(Message.created_at.desc())))

    def mark_message_read(self, message_id: str) -> None:
        with self.atomic():
            self.session.execute(
                update(Message)
                .where(Message.id == message_id)
                .values(is_read=True)
                .execution_options(synchronize_session="fetch")
            )

    # Coin ledger rows

    def append_coin_transaction(self, data: Mapping[str, Any]) -> CoinTransaction:
        return self._insert(CoinTransaction, data)

    def list_coin_transactions_for_user(self, user_id: str) -> list[CoinTransaction]:
        stmt = (
            select(CoinTransaction)
            .where(CoinTransaction.user_id == user_id)
            .order_by(CoinTransaction.created_at.desc())
        )
        return list(self.session.scalars(stmt))
