"""Lookups shared by the services operating on a SQLAlchemy session."""
from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from attendance_service.config import AppConfig, get_config
from attendance_service.models import Attendance, Event, Payment, User
from attendance_service.services.errors import EventNotFoundError, UserNotFoundError


class SessionService:
    def __init__(self, session: Session, *, config: Optional[AppConfig] = None) -> None:
        self.session = session
        self.config = config or get_config()

    @property
    def policy(self):
        return self.config.policy

    def _get_event(self, event_id: int) -> Event:
        event = self.session.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(details={"event_id": event_id})
        return event

    def _get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(details={"user_id": user_id})
        return user

    def _count_attendees(self, event_id: int) -> int:
        query = (
            select(func.count())
            .select_from(Attendance)
            .where(Attendance.event_id == event_id)
        )
        return int(self.session.execute(query).scalar_one())

    def _find_attendance(self, event_id: int, user_id: int) -> Optional[Attendance]:
        query = (
            select(Attendance)
            .where(Attendance.event_id == event_id)
            .where(Attendance.user_id == user_id)
        )
        return self.session.scalars(query).first()

    def _latest_payment(
        self, event_id: int, user_id: int, *, statuses: Optional[Iterable[str]] = None
    ) -> Optional[Payment]:
        query = (
            select(Payment)
            .where(Payment.event_id == event_id)
            .where(Payment.user_id == user_id)
        )
        if statuses is not None:
            query = query.where(Payment.status.in_(list(statuses)))
        query = query.order_by(Payment.created_at.desc(), Payment.id.desc())
        return self.session.scalars(query).first()
