"""A user's own registrations: active list, history and certificates."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from attendance_service.database import utcnow
from attendance_service.models import ATTENDANCE_CHECKED_IN, Attendance, Event
from attendance_service.services.base import SessionService
from attendance_service.services.errors import AttendanceNotFoundError, NotEligibleError
from attendance_service.services.serializers import (
    isoformat,
    serialize_attendance,
    serialize_event,
    serialize_payment,
)


class UserEventService(SessionService):
    """Read side of the attendance lifecycle.

    Active and history lists use complementary predicates on the event end
    (``end_time > now`` and ``end_time <= now``) evaluated against the same
    ``now``, so every registration shows up in exactly one of them.
    """

    def list_active(self, user_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or utcnow()
        query = (
            self._base_query(user_id)
            .where(Event.end_time > now)
            .order_by(Event.start_time.asc(), Attendance.id.asc())
        )
        return [self._serialize_entry(item, now) for item in self.session.scalars(query).all()]

    def list_history(self, user_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or utcnow()
        query = (
            self._base_query(user_id)
            .where(Event.end_time <= now)
            .order_by(Event.end_time.desc(), Attendance.id.desc())
        )
        return [self._serialize_entry(item, now) for item in self.session.scalars(query).all()]

    def get_certificate(
        self, event_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Certificate data for an attendee who actually checked in."""
        now = now or utcnow()
        event = self._get_event(event_id)
        attendance = self._find_attendance(event.id, user_id)
        if attendance is None:
            raise AttendanceNotFoundError(details={"event_id": event.id})
        if attendance.status != ATTENDANCE_CHECKED_IN:
            raise NotEligibleError(details={"event_id": event.id})

        user = attendance.user
        return {
            "certificate_number": f"CERT-{event.id:05d}-{attendance.id:06d}",
            "issued_at": isoformat(now),
            "attendee": {"id": user.id, "full_name": user.full_name, "email": user.email},
            "event": serialize_event(event, now),
            "checked_in_at": isoformat(attendance.checked_in_at),
        }

    def _base_query(self, user_id: int):
        return (
            select(Attendance)
            .join(Attendance.event)
            .where(Attendance.user_id == user_id)
            .options(selectinload(Attendance.event), selectinload(Attendance.payment))
        )

    def _serialize_entry(self, attendance: Attendance, now: datetime) -> Dict[str, Any]:
        return {
            "attendance": serialize_attendance(
                attendance, validity_minutes=self.policy.token_validity_minutes
            ),
            "event": serialize_event(attendance.event, now),
            "payment": serialize_payment(attendance.payment, now)
            if attendance.payment is not None
            else None,
        }
