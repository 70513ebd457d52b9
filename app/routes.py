"""HTTP routes for the Coin Studio backend."""
from __future__ import annotations

from flask import Blueprint, Flask, current_app, g, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .auth import get_token_claims, login_required
from .errors import LedgerError, StorageError
from .extensions import db
from .ledger import CoinLedger
from .storage import Storage
from .validators import (parse_appointment, parse_claims, parse_message,
                         parse_order)

bp = Blueprint("api", __name__)


def get_storage() -> Storage:
    return Storage(db.session)


def get_ledger() -> CoinLedger:
    return CoinLedger(get_storage(), max_attempts=current_app.config["LEDGER_MAX_ATTEMPTS"])


def error_response(exc: LedgerError, action: str) -> tuple[dict[str, str], int]:
    if isinstance(exc, StorageError):
        current_app.logger.exception(action, exc_info=exc)
    else:
        current_app.logger.warning("%s: %s", action, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


def database_error(exc: SQLAlchemyError, action: str) -> tuple[dict[str, str], int]:
    db.session.rollback()
    current_app.logger.exception(action, exc_info=exc)
    return jsonify({"error": "database_error", "message": action}), 500


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# --- Auth ---


@bp.post("/api/auth/session")
def start_session() -> tuple[dict[str, object], int]:
    """Create or refresh the local user row from the bearer token claims.
    ---
    tags:
      - Authentication
    security:
      - Bearer: []
    responses:
      200:
        description: The stored user, including its coin balance
      400:
        description: Token claims are malformed
      401:
        description: Missing or invalid token
    """
    claims = get_token_claims()
    if claims is None:
        return jsonify({"error": "unauthorized", "message": "authentication required"}), 401

    try:
        user = get_storage().upsert_user(parse_claims(claims))
    except LedgerError as exc:
        return error_response(exc, "Failed to upsert user")

    return jsonify({"user": user.to_dict()}), 200


@bp.get("/api/auth/user")
@login_required
def get_current_user() -> tuple[dict[str, object], int]:
    """Return the authenticated user.
    ---
    tags:
      - Authentication
    security:
      - Bearer: []
    responses:
      200:
        description: The user profile and coin balance
      401:
        description: Missing or invalid token
      404:
        description: No session has been started for this user yet
    """
    try:
        user = get_storage().get_user(g.current_user_id)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch user")

    if user is None:
        return jsonify({"error": "user_not_found"}), 404
    return jsonify({"user": user.to_dict()}), 200


# --- Appointments ---


@bp.post("/api/appointments")
@login_required
def create_appointment() -> tuple[dict[str, object], int]:
    """Book an appointment and earn its coins.
    ---
    tags:
      - Appointments
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            service_title:
              type: string
            service_description:
              type: string
            appointment_date:
              type: string
              format: date-time
            notes:
              type: string
            coins_earned:
              type: integer
          required:
            - service_title
            - appointment_date
    responses:
      201:
        description: Appointment booked; coins added to the balance and the ledger
      400:
        description: Invalid payload
      500:
        description: Database error
    """
    try:
        data = parse_appointment(
            request.get_json(silent=True),
            current_app.config["DEFAULT_APPOINTMENT_COINS"],
        )
        appointment = get_ledger().book_appointment(g.current_user_id, data)
    except LedgerError as exc:
        return error_response(exc, "Failed to create appointment")

    return jsonify({"appointment": appointment.to_dict()}), 201


@bp.get("/api/appointments")
@login_required
def list_my_appointments() -> tuple[dict[str, object], int]:
    """List the user's appointments, latest appointment date first.
    ---
    tags:
      - Appointments
    security:
      - Bearer: []
    responses:
      200:
        description: List of appointments
    """
    try:
        appointments = get_storage().list_appointments_for_user(g.current_user_id)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch appointments")

    return jsonify({"appointments": [a.to_dict() for a in appointments]}), 200


# --- Products ---


@bp.get("/api/products")
def list_products() -> tuple[dict[str, object], int]:
    """List the active products, newest first.
    ---
    tags:
      - Products
    responses:
      200:
        description: Active products
    """
    try:
        products = get_storage().list_active_products()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch products")

    return jsonify({"products": [p.to_dict() for p in products]}), 200


@bp.get("/api/products/<product_id>")
def get_product(product_id: str) -> tuple[dict[str, object], int]:
    """Fetch one product by id, active or not.
    ---
    tags:
      - Products
    parameters:
      - name: product_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: The product, including inactive ones
      404:
        description: Product not found
    """
    try:
        product = get_storage().get_product(product_id)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch product")

    if product is None:
        return jsonify({"error": "product_not_found"}), 404
    return jsonify({"product": product.to_dict()}), 200


# --- Orders ---


@bp.post("/api/orders")
@login_required
def create_order() -> tuple[dict[str, object], int]:
    """Place an order, optionally paying part of it with coins.
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            items:
              type: array
              items:
                type: object
                properties:
                  product_id:
                    type: string
                  quantity:
                    type: integer
            coins_used:
              type: integer
            shipping_address:
              type: string
          required:
            - items
    responses:
      201:
        description: Order placed; coins_used deducted from the balance
      400:
        description: Invalid payload or not enough coins
      500:
        description: Database error
    """
    try:
        data = parse_order(request.get_json(silent=True))
        order = get_ledger().place_order(g.current_user_id, data)
    except LedgerError as exc:
        return error_response(exc, "Failed to create order")

    return jsonify({"order": order.to_dict()}), 201


@bp.get("/api/orders")
@login_required
def list_my_orders() -> tuple[dict[str, object], int]:
    """List the user's orders, newest first.
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    responses:
      200:
        description: List of orders
      401:
        description: Missing or invalid token
    """
    try:
        orders = get_storage().list_orders_for_user(g.current_user_id)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch orders")

    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


# --- Messages ---


@bp.post("/api/messages")
@login_required
def send_message() -> tuple[dict[str, object], int]:
    """Send a message to the studio staff.
    ---
    tags:
      - Messages
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            body:
              type: string
          required:
            - body
    responses:
      201:
        description: Message stored
      400:
        description: Invalid payload
    """
    try:
        data = parse_message(request.get_json(silent=True))
        message = get_storage().create_message({
            **data,
            "user_id": g.current_user_id,
            "sender_role": "customer",
        })
    except LedgerError as exc:
        return error_response(exc, "Failed to send message")

    return jsonify({"message": message.to_dict()}), 201


@bp.get("/api/messages")
@login_required
def list_my_messages() -> tuple[dict[str, object], int]:
    """List the user's thread with the staff, newest first.
    ---
    tags:
      - Messages
    security:
      - Bearer: []
    responses:
      200:
        description: Messages and the number of unread staff replies
    """
    try:
        messages = get_storage().list_messages_for_user(g.current_user_id)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch messages")

    return jsonify({
        "messages": [m.to_dict() for m in messages],
        "unread_count": sum(1 for m in messages if m.sender_role == "staff" and not m.is_read),
    }), 200


@bp.put("/api/messages/<message_id>/read")
@login_required
def mark_my_message_read(message_id: str) -> tuple[dict[str, object], int]:
    """Mark a staff message in the user's own thread as read.
    ---
    tags:
      - Messages
    security:
      - Bearer: []
    parameters:
      - name: message_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: The message, now read
      404:
        description: No staff message with this id in the user's thread
    """
    storage = get_storage()
    try:
        message = storage.get_message(message_id)
        # Only the recipient side marks a message read.
        if (
            message is None
            or message.user_id != g.current_user_id
            or message.sender_role != "staff"
        ):
            return jsonify({"error": "message_not_found"}), 404
        storage.mark_message_read(message_id)
    except LedgerError as exc:
        return error_response(exc, "Failed to mark message read")
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to mark message read")

    return jsonify({"message": message.to_dict()}), 200


# --- Coins ---


@bp.get("/api/coins/transactions")
@login_required
def list_my_coin_transactions() -> tuple[dict[str, object], int]:
    """List the user's coin ledger, newest first.
    ---
    tags:
      - Coins
    security:
      - Bearer: []
    responses:
      200:
        description: Ledger rows and the current balance
    """
    storage = get_storage()
    try:
        transactions = storage.list_coin_transactions_for_user(g.current_user_id)
        user = storage.get_user(g.current_user_id)
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch coin transactions")

    return jsonify({
        "transactions": [t.to_dict() for t in transactions],
        "coin_balance": user.coin_balance if user else 0,
    }), 200


def register_routes(app: Flask) -> None:
    from .admin_routes import bp_admin

    app.register_blueprint(bp)
    app.register_blueprint(bp_admin)
