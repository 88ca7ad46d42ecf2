"""Routes for invoices, payment status polling and gateway callbacks."""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from attendance_service.routes.dependencies import (
    current_user_id,
    get_payment_service,
    login_required,
)
from attendance_service.routes.utils import json_body
from attendance_service.services.errors import InvalidRequestError

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")

CALLBACK_TOKEN_HEADER = "x-callback-token"


@payments_bp.post("/create")
@login_required
def create_payment():
    data = json_body()
    result = get_payment_service().create_payment(
        current_user_id(),
        event_id=_optional_int(data, "event_id"),
        attendance_id=_optional_int(data, "attendance_id"),
    )
    created = result.pop("created")
    return jsonify({"payment": result, "created": created}), 201 if created else 200


@payments_bp.get("/<int:payment_id>/status")
@login_required
def payment_status(payment_id: int):
    payment = get_payment_service().get_payment_status(payment_id, current_user_id())
    return jsonify({"payment": payment})


@payments_bp.post("/<int:payment_id>/cancel")
@login_required
def cancel_payment(payment_id: int):
    payment = get_payment_service().cancel_payment(payment_id, current_user_id())
    return jsonify({"payment": payment, "message": "Paiement annulé."})


@payments_bp.get("/events/<int:event_id>")
@login_required
def payment_for_event(event_id: int):
    payment = get_payment_service().get_payment_for_event(event_id, current_user_id())
    return jsonify({"payment": payment})


@payments_bp.get("/pending")
@login_required
def pending_payments():
    payments = get_payment_service().list_pending_payments(current_user_id())
    return jsonify({"payments": payments, "count": len(payments)})


@payments_bp.get("/all")
@login_required
def all_payments():
    payments = get_payment_service().list_payments(current_user_id())
    return jsonify({"payments": payments, "count": len(payments)})


@payments_bp.post("/webhook")
def webhook():
    payload = request.get_json(silent=True)
    payment = get_payment_service().handle_webhook(
        payload, request.headers.get(CALLBACK_TOKEN_HEADER)
    )
    return jsonify({"received": True, "payment": payment})


def _optional_int(data, key):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRequestError(f"'{key}' doit être un entier.", details={"field": key})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRequestError(
            f"'{key}' doit être un entier.", details={"field": key}
        ) from exc
