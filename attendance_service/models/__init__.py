"""SQLAlchemy models for the registration, payment and attendance domain."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_service.database import Base, utcnow

ATTENDANCE_NOT_CHECKED_IN = "not_checked_in"
ATTENDANCE_CHECKED_IN = "checked_in"

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_EXPIRED = "expired"
PAYMENT_FAILED = "failed"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_STATUSES = (
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_EXPIRED,
    PAYMENT_FAILED,
    PAYMENT_CANCELLED,
)

AWAITING_ATTENDANCE = "awaiting_attendance"
ATTENDANCE_LINKED = "attendance_linked"


class TimestampMixin:
    """Mixin providing automatic created/updated timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))

    attendances: Mapped[List["Attendance"]] = relationship(
        "Attendance", back_populates="user"
    )


class EventCategory(TimestampMixin, Base):
    __tablename__ = "event_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    slug: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)

    events: Mapped[List["Event"]] = relationship("Event", back_populates="category")


class Event(TimestampMixin, Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_events_capacity_non_negative"),
        CheckConstraint("price >= 0", name="ck_events_price_non_negative"),
        CheckConstraint("end_time >= start_time", name="ck_events_end_after_start"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("event_categories.id", ondelete="SET NULL")
    )

    category: Mapped[Optional[EventCategory]] = relationship(
        "EventCategory", back_populates="events"
    )
    # Deleting an event with registrations is refused by the RESTRICT foreign keys.
    attendances: Mapped[List["Attendance"]] = relationship(
        "Attendance", back_populates="event", passive_deletes="all"
    )

    @property
    def is_paid(self) -> bool:
        return self.price is not None and Decimal(self.price) > 0


class Attendance(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_attendances_user_event"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_id: Mapped[int] = mapped_column(
        ForeignKey("events.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        Enum(ATTENDANCE_NOT_CHECKED_IN, ATTENDANCE_CHECKED_IN, name="attendance_status"),
        nullable=False,
        default=ATTENDANCE_NOT_CHECKED_IN,
    )
    token_hash: Mapped[Optional[str]] = mapped_column(String(128))
    token_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, server_default=func.now(), nullable=False
    )

    user: Mapped[User] = relationship("User", back_populates="attendances")
    event: Mapped[Event] = relationship("Event", back_populates="attendances")
    payment: Mapped[Optional["Payment"]] = relationship(
        "Payment", back_populates="attendance", uselist=False
    )


@dataclass(frozen=True)
class AwaitingAttendance:
    """Payment whose attendance will be materialized once it is paid."""

    event_id: int
    user_id: int


@dataclass(frozen=True)
class LinkedAttendance:
    attendance_id: int


PaymentTarget = Union[AwaitingAttendance, LinkedAttendance]


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index(
            "uq_payments_pending_event_user",
            "event_id",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        ForeignKey("events.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attendance_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("attendances.id", ondelete="SET NULL"), unique=True
    )
    fulfilment: Mapped[str] = mapped_column(
        Enum(AWAITING_ATTENDANCE, ATTENDANCE_LINKED, name="payment_fulfilment"),
        nullable=False,
        default=AWAITING_ATTENDANCE,
    )
    gateway_invoice_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(255))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="IDR")
    status: Mapped[str] = mapped_column(
        Enum(*PAYMENT_STATUSES, name="payment_status"),
        nullable=False,
        default=PAYMENT_PENDING,
    )
    invoice_url: Mapped[Optional[str]] = mapped_column(Text)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime())
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime())

    event: Mapped[Event] = relationship("Event")
    user: Mapped[User] = relationship("User")
    attendance: Mapped[Optional[Attendance]] = relationship(
        "Attendance", back_populates="payment"
    )

    @property
    def target(self) -> PaymentTarget:
        if self.fulfilment == ATTENDANCE_LINKED and self.attendance_id is not None:
            return LinkedAttendance(self.attendance_id)
        return AwaitingAttendance(self.event_id, self.user_id)

    def link_attendance(self, attendance: Attendance) -> None:
        self.attendance = attendance
        self.attendance_id = attendance.id
        self.fulfilment = ATTENDANCE_LINKED

    @property
    def is_pending(self) -> bool:
        return self.status == PAYMENT_PENDING


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    jti: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer)
    expires_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False, index=True)
    revoked_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, server_default=func.now(), nullable=False
    )


__all__ = [
    "ATTENDANCE_CHECKED_IN",
    "ATTENDANCE_LINKED",
    "ATTENDANCE_NOT_CHECKED_IN",
    "AWAITING_ATTENDANCE",
    "Attendance",
    "AwaitingAttendance",
    "Event",
    "EventCategory",
    "LinkedAttendance",
    "PAYMENT_CANCELLED",
    "PAYMENT_EXPIRED",
    "PAYMENT_FAILED",
    "PAYMENT_PAID",
    "PAYMENT_PENDING",
    "PAYMENT_STATUSES",
    "Payment",
    "PaymentTarget",
    "RevokedToken",
    "User",
]
