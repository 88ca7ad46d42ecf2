"""Domain services of the registration, payment and attendance flows."""
from __future__ import annotations

from .auth import AuthService, Principal
from .checkin import CheckInService
from .errors import ErrorKind, ServiceError
from .notifications import NotificationDispatcher
from .payments import PaymentService
from .registrations import RegistrationService
from .tokens import IssuedToken, TokenIssuer
from .user_events import UserEventService

__all__ = [
    "AuthService",
    "CheckInService",
    "ErrorKind",
    "IssuedToken",
    "NotificationDispatcher",
    "PaymentService",
    "Principal",
    "RegistrationService",
    "ServiceError",
    "TokenIssuer",
    "UserEventService",
]
