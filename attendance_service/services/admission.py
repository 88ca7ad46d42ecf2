"""Capacity admission rules."""
from __future__ import annotations

from typing import Optional

from attendance_service.models import Event


def can_admit(event: Event, current_count: int) -> bool:
    """Return ``True`` when one more attendee fits (capacity 0 means unlimited)."""
    capacity = event.capacity or 0
    if capacity == 0:
        return True
    return current_count < capacity


def remaining_capacity(event: Event, current_count: int) -> Optional[int]:
    capacity = event.capacity or 0
    if capacity == 0:
        return None
    return max(capacity - current_count, 0)


def is_over_capacity(event: Event, current_count: int) -> bool:
    """Post-insert check: the count already includes the new attendee."""
    capacity = event.capacity or 0
    return capacity > 0 and current_count > capacity
