"""Blueprint registration helpers."""
from __future__ import annotations

from flask import Flask

from .auth import auth_bp
from .events import events_bp
from .payments import payments_bp
from .users import users_bp

__all__ = ["register_blueprints"]


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(events_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(auth_bp)
