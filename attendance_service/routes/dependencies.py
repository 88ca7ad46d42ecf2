"""Utilities for accessing services within Flask request context."""
from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Dict, Optional

from flask import current_app, g, request

from attendance_service.config import AppConfig, get_config
from attendance_service.database import get_session
from attendance_service.integrations.email_service import EmailServiceClient
from attendance_service.integrations.payment_gateway import PaymentGatewayClient
from attendance_service.services.auth import AuthService, Principal
from attendance_service.services.checkin import CheckInService
from attendance_service.services.notifications import NotificationDispatcher
from attendance_service.services.payments import PaymentService
from attendance_service.services.registrations import RegistrationService
from attendance_service.services.user_events import UserEventService

SERVICE_KEYS = (
    "registration_service",
    "payment_service",
    "checkin_service",
    "user_event_service",
    "auth_service",
)


def get_db_session():
    if "db_session" not in g:
        g.db_session = get_session()
    return g.db_session


def get_app_config() -> AppConfig:
    return current_app.config.get("APP_CONFIG") or get_config()


def get_registration_service() -> RegistrationService:
    return _get_service(
        "registration_service",
        lambda session: RegistrationService(
            session, notifier=_get_notifier(), config=get_app_config()
        ),
    )


def get_payment_service() -> PaymentService:
    return _get_service(
        "payment_service",
        lambda session: PaymentService(
            session,
            gateway=_get_payment_gateway(),
            notifier=_get_notifier(),
            config=get_app_config(),
        ),
    )


def get_checkin_service() -> CheckInService:
    return _get_service(
        "checkin_service", lambda session: CheckInService(session, config=get_app_config())
    )


def get_user_event_service() -> UserEventService:
    return _get_service(
        "user_event_service",
        lambda session: UserEventService(session, config=get_app_config()),
    )


def get_auth_service() -> AuthService:
    return _get_service(
        "auth_service", lambda session: AuthService(session, config=get_app_config())
    )


def _get_service(key: str, factory: Callable[[Any], Any]) -> Any:
    if key not in g:
        setattr(g, key, factory(get_db_session()))
    return getattr(g, key)


def login_required(view: Callable) -> Callable:
    """Authenticate the bearer token and expose ``g.current_user``."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        service = get_auth_service()
        principal = service.authenticate(_bearer_token())
        user = service.load_user(principal)
        g.principal = principal
        g.current_user = user
        return view(*args, **kwargs)

    return wrapper


def current_principal() -> Principal:
    return g.principal


def current_user_id() -> int:
    return g.current_user.id


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def cleanup_services(exception):
    session = g.pop("db_session", None)
    for key in SERVICE_KEYS:
        g.pop(key, None)
    g.pop("principal", None)
    g.pop("current_user", None)
    if session is not None:
        try:
            if exception is not None:
                session.rollback()
        finally:
            session.close()


def _get_payment_gateway() -> PaymentGatewayClient:
    return _resolve_client("PAYMENT_GATEWAY_CLIENT", PaymentGatewayClient)


def _get_notifier() -> NotificationDispatcher:
    return NotificationDispatcher(_resolve_client("EMAIL_CLIENT", EmailServiceClient))


def _resolve_client(config_key: str, default_factory: Callable[[], Any]) -> Any:
    """Use the client configured on the app when present (tests inject stubs)."""
    client = current_app.config.get(config_key)
    if client is None:
        clients: Dict[str, Any] = current_app.extensions.setdefault("attendance_clients", {})
        client = clients.get(config_key)
        if client is None:
            client = clients[config_key] = default_factory()
    return client
