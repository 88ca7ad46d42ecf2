"""Registration workflow for free and paid events."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_service.config import AppConfig
from attendance_service.database import utcnow
from attendance_service.models import PAYMENT_PAID, PAYMENT_PENDING, Attendance, Event, User
from attendance_service.services import admission, lifecycle
from attendance_service.services.base import SessionService
from attendance_service.services.errors import (
    AlreadyPaidError,
    AlreadyRegisteredError,
    CapacityFullError,
    EmailDeliveryFailedError,
    RegistrationClosedError,
)
from attendance_service.services.notifications import NotificationDispatcher
from attendance_service.services.serializers import (
    isoformat,
    money,
    serialize_attendance,
    serialize_event,
    serialize_payment,
)
from attendance_service.services.tokens import TokenIssuer

__all__ = [
    "RegistrationService",
    "ensure_capacity",
    "ensure_registration_open",
]

logger = logging.getLogger(__name__)


def ensure_registration_open(event: Event, now: datetime) -> None:
    if lifecycle.has_started(event, now):
        raise RegistrationClosedError(
            details={"event_id": event.id, "start_time": isoformat(event.start_time)}
        )


def ensure_capacity(event: Event, current_count: int) -> None:
    if not admission.can_admit(event, current_count):
        raise CapacityFullError(details=_capacity_details(event, current_count))


def _capacity_details(event: Event, current_count: int) -> Dict[str, Any]:
    return {
        "event_id": event.id,
        "capacity": event.capacity,
        "attendee_count": current_count,
        "remaining_capacity": admission.remaining_capacity(event, current_count),
    }


class RegistrationService(SessionService):
    """Register users to events.

    Free events get an Attendance right away and the check-in token is
    emailed; an Attendance whose email could not be delivered is deleted
    again. Paid events never create an Attendance here: the caller is sent
    to the payment flow and the Attendance is materialized once the payment
    is settled, so unpaid intents do not hold seats.
    """

    def __init__(
        self,
        session: Session,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        super().__init__(session, config=config)
        self.notifier = notifier or NotificationDispatcher()
        self.tokens = TokenIssuer(self.policy.token_hash_secret)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_event_overview(self, event_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        event = self._get_event(event_id)
        count = self._count_attendees(event.id)
        payload = serialize_event(event, now, attendee_count=count)
        payload["registration_open"] = not lifecycle.has_started(
            event, now
        ) and admission.can_admit(event, count)
        payload["minutes_until_start"] = lifecycle.minutes_until(event.start_time, now)
        return payload

    def register(
        self, event_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utcnow()
        event = self._get_event(event_id)
        user = self._get_user(user_id)
        ensure_registration_open(event, now)

        if event.is_paid:
            paid = self._latest_payment(event.id, user.id, statuses=[PAYMENT_PAID])
            if paid is not None:
                raise AlreadyPaidError(details={"event_id": event.id, "payment_id": paid.id})
            pending = self._latest_payment(event.id, user.id, statuses=[PAYMENT_PENDING])
            if pending is not None:
                return self._payment_required(event, now, payment=pending)

        if self._find_attendance(event.id, user.id) is not None:
            raise AlreadyRegisteredError(details={"event_id": event.id})

        ensure_capacity(event, self._count_attendees(event.id))

        if event.is_paid:
            return self._payment_required(event, now)
        return self._register_free(event, user, now)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _payment_required(self, event: Event, now: datetime, *, payment=None) -> Dict[str, Any]:
        return {
            "status": "payment_required",
            "event_id": event.id,
            "amount": money(event.price),
            "currency": self.policy.currency,
            "payment": serialize_payment(payment, now) if payment is not None else None,
        }

    def _register_free(self, event: Event, user: User, now: datetime) -> Dict[str, Any]:
        # Serializes concurrent registrations on backends with row locks.
        self.session.refresh(event, with_for_update=True)
        ensure_capacity(event, self._count_attendees(event.id))

        issued = self.tokens.issue(self.policy.token_length)
        attendance = Attendance(
            event_id=event.id,
            user_id=user.id,
            token_hash=issued.token_hash,
            created_at=now,
        )
        self.session.add(attendance)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise AlreadyRegisteredError(details={"event_id": event.id}) from exc

        count = self._count_attendees(event.id)
        if admission.is_over_capacity(event, count):
            self.session.rollback()
            logger.warning(
                "Rejected registration of user=%s: event=%s filled up concurrently",
                user.id,
                event.id,
            )
            raise CapacityFullError(details=_capacity_details(event, count - 1))
        self.session.commit()

        try:
            self.notifier.send_check_in_token(
                user,
                event,
                issued.plaintext,
                validity_minutes=self.policy.token_validity_minutes,
            )
        except EmailDeliveryFailedError:
            self._discard(attendance)
            raise

        logger.info("User %s registered to free event %s", user.id, event.id)
        return {
            "status": "registered",
            "attendance": serialize_attendance(
                attendance, validity_minutes=self.policy.token_validity_minutes
            ),
        }

    def _discard(self, attendance: Attendance) -> None:
        """Delete an attendance whose check-in token never reached its owner."""
        self.session.delete(attendance)
        self.session.commit()
        logger.warning(
            "Rolled back attendance of user=%s for event=%s after email failure",
            attendance.user_id,
            attendance.event_id,
        )
