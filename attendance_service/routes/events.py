"""Routes for event registration and check-in."""
from __future__ import annotations

from flask import Blueprint, jsonify

from attendance_service.routes.dependencies import (
    current_user_id,
    get_checkin_service,
    get_registration_service,
    login_required,
)
from attendance_service.routes.utils import json_body

events_bp = Blueprint("events", __name__)


@events_bp.get("/events/<int:event_id>")
def get_event(event_id: int):
    event = get_registration_service().get_event_overview(event_id)
    return jsonify({"event": event})


@events_bp.post("/events/<int:event_id>/register")
@login_required
def register(event_id: int):
    result = get_registration_service().register(event_id, current_user_id())
    if result["status"] == "registered":
        result["message"] = "Inscription confirmée. Votre code de check-in vous a été envoyé par e-mail."
        return jsonify(result), 201
    result["message"] = "Paiement requis pour finaliser l'inscription."
    return jsonify(result), 200


@events_bp.post("/events/<int:event_id>/checkin")
@login_required
def check_in(event_id: int):
    data = json_body()
    result = get_checkin_service().check_in(event_id, current_user_id(), data.get("token"))
    result["message"] = "Check-in effectué. Bon événement !"
    return jsonify(result), 200
