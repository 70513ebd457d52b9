"""Database models for the Coin Studio backend."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


USER_ROLES = ("customer", "admin")
APPOINTMENT_STATUSES = ("created", "confirmed", "cancelled", "completed")
SENDER_ROLES = ("customer", "staff")
COIN_TRANSACTION_TYPES = ("earned_appointment", "redeemed")


class User(db.Model):
    """Customers and staff. ``id`` is the subject issued by the auth provider."""

    __tablename__ = "users"

    id = db.Column(db.String(255), primary_key=True)
    email = db.Column(db.String(255), unique=True)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    profile_image_url = db.Column(db.String(500))
    role = db.Column(
        db.Enum(
            *USER_ROLES,
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="customer",
        server_default="customer",
    )
    coin_balance = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "profile_image_url": self.profile_image_url,
            "role": self.role,
            "coin_balance": self.coin_balance,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Appointment(db.Model):
    """Service bookings. Booking one earns ``coins_earned`` coins."""

    __tablename__ = "appointments"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(255), db.ForeignKey("users.id"), nullable=False, index=True)
    service_title = db.Column(db.String(200), nullable=False)
    service_description = db.Column(db.Text)
    appointment_date = db.Column(db.DateTime, nullable=False)
    notes = db.Column(db.Text)
    coins_earned = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    status = db.Column(
        db.Enum(
            *APPOINTMENT_STATUSES,
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="created",
        server_default="created",
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "service_title": self.service_title,
            "service_description": self.service_description,
            "appointment_date": _iso(self.appointment_date),
            "notes": self.notes,
            "coins_earned": self.coins_earned,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Product(db.Model):
    """Shop catalogue. ``is_active`` hides a product without deleting it."""

    __tablename__ = "products"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    price_cents = db.Column(db.Integer, nullable=False)
    image_url = db.Column(db.String(500))
    category = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default="1")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "price_cents": self.price_cents,
            "price_dollars": self.price_cents / 100.0,
            "image_url": self.image_url,
            "category": self.category,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Order(db.Model):
    """Shop orders. Rows are never updated once written."""

    __tablename__ = "orders"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(255), db.ForeignKey("users.id"), nullable=False, index=True)
    # [{"product_id", "title", "quantity", "unit_price_cents"}], captured at purchase time
    items = db.Column(db.JSON, nullable=False, default=list)
    total_cents = db.Column(db.Integer, nullable=False)
    coins_used = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    shipping_address = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": self.items or [],
            "total_cents": self.total_cents,
            "total_dollars": self.total_cents / 100.0,
            "coins_used": self.coins_used,
            "shipping_address": self.shipping_address,
            "created_at": _iso(self.created_at),
        }


class Message(db.Model):
    """A message in a customer's thread with the studio staff."""

    __tablename__ = "messages"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(255), db.ForeignKey("users.id"), nullable=False, index=True)
    sender_role = db.Column(
        db.Enum(
            *SENDER_ROLES,
            name="message_sender_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    body = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "sender_role": self.sender_role,
            "body": self.body,
            "is_read": self.is_read,
            "created_at": _iso(self.created_at),
        }


class CoinTransaction(db.Model):
    """Append-only coin ledger. The amounts of a user sum to their balance."""

    __tablename__ = "coin_transactions"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(255), db.ForeignKey("users.id"), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    type = db.Column(
        db.Enum(
            *COIN_TRANSACTION_TYPES,
            name="coin_transaction_type",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    description = db.Column(db.Text)
    related_id = db.Column(db.String(36))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "type": self.type,
            "description": self.description,
            "related_id": self.related_id,
            "created_at": _iso(self.created_at),
        }
