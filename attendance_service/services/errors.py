"""Error taxonomy shared by the registration, payment and check-in services.

Every guard failure is an expected outcome: services raise one of the
:class:`ServiceError` subclasses below and the HTTP layer turns it into a
response through a single error handler. ``details`` carries what a client
needs to render a precise message (remaining capacity, minutes until the
event starts, seconds left on a payment, ...).
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    INVALID = "invalid"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_FAILURE = "upstream_failure"
    INTERNAL = "internal"


class ServiceError(Exception):
    """Base class for every domain error raised by the services."""

    kind = ErrorKind.INTERNAL
    code = "internal_error"
    default_message = "Erreur interne. On respire, on relance."

    def __init__(
        self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class EventNotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
    code = "event_not_found"
    default_message = "Événement introuvable."


class PaymentNotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
    code = "payment_not_found"
    default_message = "Paiement introuvable."


class AttendanceNotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
    code = "attendance_not_found"
    default_message = "Aucune inscription trouvée pour cet événement."


class UserNotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
    code = "user_not_found"
    default_message = "Utilisateur introuvable."


class AlreadyRegisteredError(ServiceError):
    kind = ErrorKind.CONFLICT
    code = "already_registered"
    default_message = "Vous êtes déjà inscrit à cet événement."


class AlreadyPaidError(ServiceError):
    kind = ErrorKind.CONFLICT
    code = "already_paid"
    default_message = "Vous êtes déjà inscrit et avez déjà payé pour cet événement."


class CapacityFullError(ServiceError):
    kind = ErrorKind.CONFLICT
    code = "capacity_full"
    default_message = "La capacité de l'événement est atteinte."


class AlreadyCheckedInError(ServiceError):
    kind = ErrorKind.CONFLICT
    code = "already_checked_in"
    default_message = "Vous avez déjà effectué votre check-in."


class RegistrationClosedError(ServiceError):
    kind = ErrorKind.FORBIDDEN
    code = "registration_closed"
    default_message = "Les inscriptions sont fermées : l'événement a déjà commencé."


class CheckInTooEarlyError(ServiceError):
    kind = ErrorKind.FORBIDDEN
    code = "check_in_too_early"
    default_message = "L'événement n'a pas encore commencé."


class NotEligibleError(ServiceError):
    kind = ErrorKind.FORBIDDEN
    code = "not_eligible"
    default_message = "Vous n'avez pas participé à cet événement."


class InvalidTokenError(ServiceError):
    kind = ErrorKind.INVALID
    code = "invalid_token"
    default_message = "Token invalide. Vérifiez le code reçu par e-mail."


class TokenExpiredError(ServiceError):
    kind = ErrorKind.INVALID
    code = "token_expired"
    default_message = "Le token a expiré."


class InvalidRequestError(ServiceError):
    kind = ErrorKind.INVALID
    code = "invalid_request"
    default_message = "Requête invalide."


class AuthenticationError(ServiceError):
    kind = ErrorKind.UNAUTHORIZED
    code = "unauthorized"
    default_message = "Authentification requise."


class WebhookAuthenticationError(AuthenticationError):
    code = "invalid_callback_token"
    default_message = "Jeton de rappel invalide."


class EmailDeliveryFailedError(ServiceError):
    kind = ErrorKind.UPSTREAM_FAILURE
    code = "email_delivery_failed"
    default_message = (
        "Impossible d'envoyer l'e-mail contenant le token. Réessayez plus tard."
    )


class PaymentGatewayError(ServiceError):
    kind = ErrorKind.UPSTREAM_FAILURE
    code = "payment_gateway_error"
    default_message = "Impossible de créer la facture de paiement. Réessayez plus tard."


class InternalError(ServiceError):
    pass


__all__ = [
    "AlreadyCheckedInError",
    "AlreadyPaidError",
    "AlreadyRegisteredError",
    "AttendanceNotFoundError",
    "AuthenticationError",
    "CapacityFullError",
    "CheckInTooEarlyError",
    "EmailDeliveryFailedError",
    "ErrorKind",
    "EventNotFoundError",
    "InternalError",
    "InvalidRequestError",
    "InvalidTokenError",
    "NotEligibleError",
    "PaymentGatewayError",
    "PaymentNotFoundError",
    "RegistrationClosedError",
    "ServiceError",
    "TokenExpiredError",
    "UserNotFoundError",
    "WebhookAuthenticationError",
]
