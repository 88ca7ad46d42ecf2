"""JSON payload builders shared by the services."""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from attendance_service.models import Attendance, Event, Payment
from attendance_service.services import admission, lifecycle


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def money(value: Optional[Decimal]) -> float:
    return float(value) if value is not None else 0.0


def token_expires_at(attendance: Attendance, event: Event, validity_minutes: int) -> datetime:
    """Tokens stay valid ``validity_minutes`` after check-in opens, or after
    registration when it happened once the event had already started."""
    anchor = max(attendance.created_at, event.start_time)
    return anchor + timedelta(minutes=validity_minutes)


def serialize_event(
    event: Event,
    now: datetime,
    *,
    attendee_count: Optional[int] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "capacity": event.capacity,
        "price": money(event.price),
        "is_paid": event.is_paid,
        "start_time": isoformat(event.start_time),
        "end_time": isoformat(event.end_time),
        "phase": lifecycle.classify(event, now).value,
        "category": (
            {"id": event.category.id, "name": event.category.name, "slug": event.category.slug}
            if event.category is not None
            else None
        ),
    }
    if attendee_count is not None:
        payload["attendee_count"] = attendee_count
        payload["remaining_capacity"] = admission.remaining_capacity(event, attendee_count)
    return payload


def serialize_attendance(
    attendance: Attendance, *, validity_minutes: Optional[int] = None
) -> Dict[str, Any]:
    payload = {
        "id": attendance.id,
        "event_id": attendance.event_id,
        "user_id": attendance.user_id,
        "status": attendance.status,
        "checked_in_at": isoformat(attendance.checked_in_at),
        "registered_at": isoformat(attendance.created_at),
    }
    if validity_minutes is not None:
        payload["check_in_opens_at"] = isoformat(attendance.event.start_time)
        payload["token_expires_at"] = isoformat(
            token_expires_at(attendance, attendance.event, validity_minutes)
        )
    return payload


def serialize_payment(
    payment: Payment, now: datetime, *, include_event: bool = False
) -> Dict[str, Any]:
    remaining = 0
    if payment.is_pending and payment.expires_at is not None:
        remaining = max(int((payment.expires_at - now).total_seconds()), 0)
    payload: Dict[str, Any] = {
        "payment_id": payment.id,
        "event_id": payment.event_id,
        "attendance_id": payment.attendance_id,
        "fulfilment": payment.fulfilment,
        "status": payment.status,
        "amount": money(payment.amount),
        "currency": payment.currency,
        "invoice_url": payment.invoice_url,
        "paid_at": isoformat(payment.paid_at),
        "expires_at": isoformat(payment.expires_at),
        "created_at": isoformat(payment.created_at),
        "remaining_seconds": remaining,
    }
    if include_event and payment.event is not None:
        payload["event"] = serialize_event(payment.event, now)
    return payload
