"""Check-in of registered attendees with their emailed token."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from attendance_service.config import AppConfig
from attendance_service.database import utcnow
from attendance_service.models import (
    ATTENDANCE_CHECKED_IN,
    ATTENDANCE_NOT_CHECKED_IN,
    Attendance,
)
from attendance_service.services import lifecycle
from attendance_service.services.base import SessionService
from attendance_service.services.errors import (
    AlreadyCheckedInError,
    AttendanceNotFoundError,
    CheckInTooEarlyError,
    InvalidRequestError,
    InvalidTokenError,
    TokenExpiredError,
)
from attendance_service.services.serializers import (
    isoformat,
    serialize_attendance,
    serialize_event,
    token_expires_at,
)
from attendance_service.services.tokens import TokenIssuer

logger = logging.getLogger(__name__)


class CheckInService(SessionService):
    def __init__(self, session: Session, *, config: Optional[AppConfig] = None) -> None:
        super().__init__(session, config=config)
        self.tokens = TokenIssuer(self.policy.token_hash_secret)

    def check_in(
        self,
        event_id: int,
        user_id: int,
        token: Optional[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Mark the user's attendance as checked in.

        Guards run in a fixed order so the caller always learns the most
        actionable reason: registration, event start, replay, expiry and
        finally the token itself.
        """
        now = now or utcnow()
        if not isinstance(token, str) or not token.strip():
            raise InvalidRequestError("Le token de check-in est requis.")

        event = self._get_event(event_id)
        attendance = self._find_attendance(event.id, user_id)
        if attendance is None:
            raise AttendanceNotFoundError(details={"event_id": event.id})

        if not lifecycle.has_started(event, now):
            minutes = lifecycle.minutes_until(event.start_time, now)
            raise CheckInTooEarlyError(
                f"L'événement n'a pas encore commencé. Le check-in ouvre dans {minutes} minute(s).",
                details={
                    "minutes_until_start": minutes,
                    "check_in_opens_at": isoformat(event.start_time),
                },
            )

        if attendance.status == ATTENDANCE_CHECKED_IN or attendance.token_used:
            raise AlreadyCheckedInError(
                details={"checked_in_at": isoformat(attendance.checked_in_at)}
            )

        expires_at = token_expires_at(attendance, event, self.policy.token_validity_minutes)
        if now > expires_at:
            raise TokenExpiredError(details={"expired_at": isoformat(expires_at)})

        if not self.tokens.verify(token, attendance.token_hash):
            raise InvalidTokenError()

        statement = (
            update(Attendance)
            .where(Attendance.id == attendance.id)
            .where(Attendance.status == ATTENDANCE_NOT_CHECKED_IN)
            .where(Attendance.token_used.is_(False))
            .values(status=ATTENDANCE_CHECKED_IN, checked_in_at=now, token_used=True)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        self.session.commit()
        if not result.rowcount:
            raise AlreadyCheckedInError()

        self.session.refresh(attendance)
        logger.info("User %s checked in to event %s", user_id, event.id)
        return {
            "status": "checked_in",
            "attendance": serialize_attendance(attendance),
            "event": serialize_event(event, now),
        }
