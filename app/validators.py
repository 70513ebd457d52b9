"""Shape checks for request payloads.

Each parser returns the insertable shape for one entity or raises
``ValidationFailed`` before anything is written.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .errors import ValidationFailed
from .models import APPOINTMENT_STATUSES, USER_ROLES
from .storage import ProductPatch

MAX_BODY_LENGTH = 5000


def _require_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationFailed("request body must be a JSON object")
    return payload


def _text(payload: dict[str, Any], field: str, *, required: bool = False, max_length: int = 255) -> str | None:
    value = payload.get(field)
    if value is None:
        if required:
            raise ValidationFailed(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationFailed(f"{field} must be a string")
    value = value.strip()
    if required and not value:
        raise ValidationFailed(f"{field} is required")
    if len(value) > max_length:
        raise ValidationFailed(f"{field} must be at most {max_length} characters")
    return value or None


def _int(payload: dict[str, Any], field: str, *, required: bool = False, default: int | None = None, minimum: int = 0) -> int | None:
    value = payload.get(field)
    if value is None:
        if required:
            raise ValidationFailed(f"{field} is required")
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed(f"{field} must be an integer")
    if value < minimum:
        raise ValidationFailed(f"{field} must be >= {minimum}")
    return value


def _bool(payload: dict[str, Any], field: str) -> bool:
    value = payload.get(field)
    if not isinstance(value, bool):
        raise ValidationFailed(f"{field} must be a boolean")
    return value


def parse_claims(claims: Any) -> dict[str, Any]:
    """Turn verified token claims into an ``upsert_user`` payload."""
    claims = _require_object(claims)
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise ValidationFailed("token is missing the sub claim")

    data: dict[str, Any] = {"id": subject.strip()}
    for field in ("email", "first_name", "last_name", "profile_image_url"):
        if field in claims:
            data[field] = _text(claims, field, max_length=500)
    if "role" in claims:
        role = claims["role"]
        if role not in USER_ROLES:
            raise ValidationFailed(f"role must be one of: {', '.join(USER_ROLES)}")
        data["role"] = role
    return data


def parse_appointment(payload: Any, default_coins: int) -> dict[str, Any]:
    payload = _require_object(payload)
    date_str = payload.get("appointment_date")
    if not isinstance(date_str, str):
        raise ValidationFailed("appointment_date is required")
    try:
        appointment_date = datetime.fromisoformat(date_str)
    except ValueError:
        raise ValidationFailed("appointment_date must be a valid ISO format datetime") from None
    # Stored naive, in UTC.
    if appointment_date.tzinfo is not None:
        appointment_date = appointment_date.astimezone(timezone.utc).replace(tzinfo=None)

    return {
        "service_title": _text(payload, "service_title", required=True, max_length=200),
        "service_description": _text(payload, "service_description", max_length=MAX_BODY_LENGTH),
        "appointment_date": appointment_date,
        "notes": _text(payload, "notes", max_length=MAX_BODY_LENGTH),
        "coins_earned": _int(payload, "coins_earned", default=default_coins),
    }


def parse_status(payload: Any) -> str:
    payload = _require_object(payload)
    status = payload.get("status")
    if status not in APPOINTMENT_STATUSES:
        raise ValidationFailed(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}")
    return status


def parse_product(payload: Any) -> dict[str, Any]:
    payload = _require_object(payload)
    data = {
        "title": _text(payload, "title", required=True, max_length=200),
        "description": _text(payload, "description", max_length=MAX_BODY_LENGTH),
        "price_cents": _int(payload, "price_cents", required=True),
        "image_url": _text(payload, "image_url", max_length=500),
        "category": _text(payload, "category", max_length=100),
    }
    if "is_active" in payload:
        data["is_active"] = _bool(payload, "is_active")
    return data


def parse_product_patch(payload: Any) -> ProductPatch:
    """Build a patch holding only the fields present in ``payload``."""
    payload = _require_object(payload)
    changes: dict[str, Any] = {}
    if "title" in payload:
        changes["title"] = _text(payload, "title", required=True, max_length=200)
    if "description" in payload:
        changes["description"] = _text(payload, "description", max_length=MAX_BODY_LENGTH)
    if "price_cents" in payload:
        changes["price_cents"] = _int(payload, "price_cents", required=True)
    if "image_url" in payload:
        changes["image_url"] = _text(payload, "image_url", max_length=500)
    if "category" in payload:
        changes["category"] = _text(payload, "category", max_length=100)
    if "is_active" in payload:
        changes["is_active"] = _bool(payload, "is_active")

    patch = ProductPatch(**changes)
    if patch.is_empty():
        raise ValidationFailed("no product fields to update")
    return patch


def parse_order(payload: Any) -> dict[str, Any]:
    payload = _require_object(payload)
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationFailed("items must be a non-empty list")

    parsed_items = []
    for item in items:
        item = _require_object(item)
        product_id = item.get("product_id")
        if not isinstance(product_id, str) or not product_id:
            raise ValidationFailed("each item needs a product_id")
        parsed_items.append({
            "product_id": product_id,
            "quantity": _int(item, "quantity", default=1, minimum=1),
        })

    return {
        "items": parsed_items,
        "coins_used": _int(payload, "coins_used", default=0),
        "shipping_address": _text(payload, "shipping_address", max_length=1000),
    }


def parse_message(payload: Any) -> dict[str, Any]:
    payload = _require_object(payload)
    return {"body": _text(payload, "body", required=True, max_length=MAX_BODY_LENGTH)}


STATUS_TRANSITIONS = {
    "created": {"confirmed", "cancelled", "completed"},
    "confirmed": {"cancelled", "completed"},
    "cancelled": set(),
    "completed": set(),
}


def check_status_transition(current: str, new: str) -> None:
    if new == current:
        return
    if new not in STATUS_TRANSITIONS.get(current, set()):
        raise ValidationFailed(f"cannot move an appointment from {current} to {new}")
