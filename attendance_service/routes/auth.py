"""Session termination."""
from __future__ import annotations

from flask import Blueprint, jsonify

from attendance_service.routes.dependencies import (
    current_principal,
    get_auth_service,
    login_required,
)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/logout")
@login_required
def logout():
    get_auth_service().revoke(current_principal())
    return jsonify({"message": "Déconnexion réussie."})
