"""Bearer-token authentication against the external identity provider.

The provider signs a claims payload (``sub``, ``email``, ``first_name``,
``last_name``, ``profile_image_url`` and optionally ``role``) with the
shared ``SECRET_KEY``. Views only ever see the opaque user id.
"""
from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask import current_app, g, jsonify, request
from itsdangerous import BadSignature, URLSafeTimedSerializer

from .errors import LedgerError
from .extensions import db
from .storage import Storage
from .validators import parse_claims

TOKEN_SALT = "auth-token"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def build_token(claims: dict[str, object]) -> str:
    return _serializer().dumps(claims)


def get_token_claims() -> dict[str, Any] | None:
    """Return the verified claims of the request's bearer token, or None."""
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        claims = _serializer().loads(token, max_age=current_app.config["AUTH_TOKEN_MAX_AGE"])
    except BadSignature:
        # Invalid or expired token
        return None
    return claims if isinstance(claims, dict) else None


def get_jwt_identity() -> str | None:
    claims = get_token_claims()
    if not claims:
        return None
    subject = claims.get("sub")
    return subject if isinstance(subject, str) and subject else None


def _ensure_user(claims: dict[str, Any]) -> str:
    """Create the local user row from the claims on first authentication."""
    data = parse_claims(claims)
    storage = Storage(db.session)
    if storage.get_user(data["id"]) is None:
        storage.upsert_user(data)
    return data["id"]


def login_required(view: Callable) -> Callable:
    @wraps(view)
    def wrapper(*args, **kwargs):
        claims = get_token_claims()
        if not claims or not claims.get("sub"):
            return jsonify({"error": "unauthorized", "message": "authentication required"}), 401
        try:
            g.current_user_id = _ensure_user(claims)
        except LedgerError as exc:
            current_app.logger.warning("Rejected token claims: %s", exc.message)
            return jsonify(exc.to_dict()), exc.status_code
        return view(*args, **kwargs)

    return wrapper


def admin_required(view: Callable) -> Callable:
    @wraps(view)
    def wrapper(*args, **kwargs):
        user_id = get_jwt_identity()
        if user_id is None:
            return jsonify({"error": "unauthorized", "message": "authentication required"}), 401
        user = Storage(db.session).get_user(user_id)
        if user is None or not user.is_admin:
            return jsonify({"error": "forbidden", "message": "admin access required"}), 403
        g.current_user_id = user_id
        return view(*args, **kwargs)

    return wrapper
