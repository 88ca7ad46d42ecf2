"""Routes exposing the current user's registrations."""
from __future__ import annotations

from flask import Blueprint, jsonify

from attendance_service.database import utcnow
from attendance_service.routes.dependencies import (
    current_user_id,
    get_user_event_service,
    login_required,
)

users_bp = Blueprint("users", __name__, url_prefix="/users/me")


@users_bp.get("/events")
@login_required
def my_events():
    events = get_user_event_service().list_active(current_user_id(), utcnow())
    return jsonify({"events": events, "count": len(events)})


@users_bp.get("/events/history")
@login_required
def my_history():
    events = get_user_event_service().list_history(current_user_id(), utcnow())
    return jsonify({"events": events, "count": len(events)})


@users_bp.get("/events/<int:event_id>/certificate")
@login_required
def my_certificate(event_id: int):
    certificate = get_user_event_service().get_certificate(event_id, current_user_id())
    return jsonify({"certificate": certificate})
