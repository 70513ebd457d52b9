"""Staff-only routes: appointment management, catalogue and customer messages."""
from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from .auth import admin_required
from .errors import LedgerError, ValidationFailed
from .routes import database_error, error_response, get_storage
from .validators import (check_status_transition, parse_message,
                         parse_product, parse_product_patch, parse_status)

bp_admin = Blueprint("api_admin", __name__, url_prefix="/api/admin")


@bp_admin.get("/appointments")
@admin_required
def list_all_appointments() -> tuple[dict[str, object], int]:
    """List every appointment, newest booking first.
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    responses:
      200:
        description: All appointments
      403:
        description: Caller is not an admin
    """
    try:
        appointments = get_storage().list_all_appointments()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch all appointments")

    return jsonify({"appointments": [a.to_dict() for a in appointments]}), 200


@bp_admin.patch("/appointments/<appointment_id>/status")
@admin_required
def update_appointment_status(appointment_id: str) -> tuple[dict[str, object], int]:
    """Confirm, cancel or complete an appointment.
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - name: appointment_id
        in: path
        type: string
        required: true
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            status:
              type: string
              enum: [created, confirmed, cancelled, completed]
    responses:
      200:
        description: Updated appointment
      400:
        description: Unknown status or transition not allowed
      404:
        description: Appointment not found
    """
    storage = get_storage()
    try:
        status = parse_status(request.get_json(silent=True))
        appointment = storage.get_appointment(appointment_id)
        if appointment is None:
            return jsonify({"error": "not_found", "message": "appointment not found"}), 404
        current = appointment.status
        check_status_transition(current, status)
        appointment = storage.set_appointment_status(appointment_id, status, expected_status=current)
        if appointment is None:
            raise ValidationFailed(f"appointment is no longer {current}; reload and retry")
    except LedgerError as exc:
        return error_response(exc, "Failed to update appointment status")
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update appointment status")

    return jsonify({"appointment": appointment.to_dict()}), 200


@bp_admin.post("/products")
@admin_required
def create_product() -> tuple[dict[str, object], int]:
    """Add a product to the catalogue.
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            title:
              type: string
            description:
              type: string
            price_cents:
              type: integer
            image_url:
              type: string
            category:
              type: string
            is_active:
              type: boolean
          required:
            - title
            - price_cents
    responses:
      201:
        description: Product created
      400:
        description: Invalid payload
    """
    try:
        product = get_storage().create_product(parse_product(request.get_json(silent=True)))
    except LedgerError as exc:
        return error_response(exc, "Failed to create product")

    return jsonify({"product": product.to_dict()}), 201


@bp_admin.patch("/products/<product_id>")
@admin_required
def update_product(product_id: str) -> tuple[dict[str, object], int]:
    """Update some fields of a product; fields not sent are left as they are.

    Sending ``{"is_active": false}`` hides the product from the catalogue.
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - name: product_id
        in: path
        type: string
        required: true
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            title:
              type: string
            description:
              type: string
            price_cents:
              type: integer
            image_url:
              type: string
            category:
              type: string
            is_active:
              type: boolean
    responses:
      200:
        description: Updated product
      400:
        description: Invalid payload or no fields to update
      404:
        description: Product not found
    """
    try:
        patch = parse_product_patch(request.get_json(silent=True))
        product = get_storage().update_product(product_id, patch)
    except LedgerError as exc:
        return error_response(exc, "Failed to update product")
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to update product")

    if product is None:
        return jsonify({"error": "product_not_found"}), 404
    return jsonify({"product": product.to_dict()}), 200


@bp_admin.get("/orders")
@admin_required
def list_all_orders() -> tuple[dict[str, object], int]:
    """List every order, newest first.
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    responses:
      200:
        description: All orders
      403:
        description: Caller is not an admin
    """
    try:
        orders = get_storage().list_all_orders()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch all orders")

    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@bp_admin.get("/messages")
@admin_required
def list_all_messages() -> tuple[dict[str, object], int]:
    """List the messages of every customer thread, newest first.
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    responses:
      200:
        description: Messages and the number of unread customer messages
      403:
        description: Caller is not an admin
    """
    try:
        messages = get_storage().list_all_messages()
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to fetch admin messages")

    return jsonify({
        "messages": [m.to_dict() for m in messages],
        "unread_count": sum(1 for m in messages if m.sender_role == "customer" and not m.is_read),
    }), 200


@bp_admin.post("/messages")
@admin_required
def reply_to_customer() -> tuple[dict[str, object], int]:
    """Post a staff message into a customer's thread.
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            user_id:
              type: string
            body:
              type: string
          required:
            - user_id
            - body
    responses:
      201:
        description: Message stored
      404:
        description: Customer not found
    """
    payload = request.get_json(silent=True)
    storage = get_storage()
    try:
        data = parse_message(payload)
        user_id = payload.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            raise ValidationFailed("user_id is required")
        if storage.get_user(user_id) is None:
            return jsonify({"error": "user_not_found"}), 404
        message = storage.create_message({**data, "user_id": user_id, "sender_role": "staff"})
    except LedgerError as exc:
        return error_response(exc, "Failed to send staff message")
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to send staff message")

    return jsonify({"message": message.to_dict()}), 201


@bp_admin.put("/messages/<message_id>/read")
@admin_required
def mark_message_read(message_id: str) -> tuple[dict[str, object], int]:
    """Mark a customer message as read.
    ---
    tags:
      - Admin
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
        description: No customer message with this id
    """
    storage = get_storage()
    try:
        message = storage.get_message(message_id)
        # Staff only mark what customers sent.
        if message is None or message.sender_role != "customer":
            return jsonify({"error": "message_not_found"}), 404
        storage.mark_message_read(message_id)
    except LedgerError as exc:
        return error_response(exc, "Failed to mark message read")
    except SQLAlchemyError as exc:
        return database_error(exc, "Failed to mark message read")

    return jsonify({"message": message.to_dict()}), 200
