"""Classify events from their timestamps.

One rule is applied everywhere: an event has ended once ``end_time <= now``.
Callers take a single ``now`` snapshot per request so an event cannot show
up in both the active and the history list of the same response.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable, List, Tuple

from attendance_service.models import Attendance, Event


class EventPhase(Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    ENDED = "ended"


def classify(event: Event, now: datetime) -> EventPhase:
    if now < event.start_time:
        return EventPhase.UPCOMING
    if is_history(event, now):
        return EventPhase.ENDED
    return EventPhase.ONGOING


def has_started(event: Event, now: datetime) -> bool:
    return now >= event.start_time


def is_history(event: Event, now: datetime) -> bool:
    return event.end_time <= now


def partition(
    attendances: Iterable[Attendance], now: datetime
) -> Tuple[List[Attendance], List[Attendance]]:
    """Split attendances into ``(active, history)`` by their event's end time."""
    active: List[Attendance] = []
    history: List[Attendance] = []
    for attendance in attendances:
        if is_history(attendance.event, now):
            history.append(attendance)
        else:
            active.append(attendance)
    return active, history


def minutes_until(target: datetime, now: datetime) -> int:
    """Whole minutes until ``target``, rounded up so "0" only means "now"."""
    seconds = (target - now).total_seconds()
    if seconds <= 0:
        return 0
    return int(-(-seconds // 60))
