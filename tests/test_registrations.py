import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from attendance_service.database import get_session, utcnow
from attendance_service.models import Attendance, Payment
from attendance_service.services import admission
from attendance_service.services.errors import (
    AlreadyRegisteredError,
    CapacityFullError,
    EmailDeliveryFailedError,
    EventNotFoundError,
    RegistrationClosedError,
)
from attendance_service.services.registrations import RegistrationService
from attendance_service.services.tokens import TokenIssuer


def count_rows(session, model):
    return session.scalar(select(func.count()).select_from(model))


def test_free_registration_creates_attendance_and_emails_token(
    registration_service, session, make_user, make_event, email_client, config
):
    user = make_user()
    event = make_event(capacity=5)

    result = registration_service.register(event.id, user.id)

    assert result["status"] == "registered"
    assert result["attendance"]["status"] == "not_checked_in"
    assert "token" not in result["attendance"]
    assert len(email_client.sent) == 1
    assert email_client.sent[0]["to"] == user.email

    token = email_client.last_token()
    attendance = session.get(Attendance, result["attendance"]["id"])
    assert attendance.token_hash != token
    assert TokenIssuer(config.policy.token_hash_secret).verify(token, attendance.token_hash)
    assert len(token) == config.policy.token_length


def test_registration_closes_once_the_event_starts(
    registration_service, session, make_user, make_event
):
    user = make_user()
    start = utcnow() + timedelta(hours=1)
    event = make_event(capacity=0, start_time=start)

    with pytest.raises(RegistrationClosedError):
        registration_service.register(event.id, user.id, now=start + timedelta(seconds=1))
    with pytest.raises(RegistrationClosedError):
        registration_service.register(event.id, user.id, now=start)
    assert count_rows(session, Attendance) == 0


def test_duplicate_registration_is_a_conflict(registration_service, make_user, make_event):
    user = make_user()
    event = make_event()
    registration_service.register(event.id, user.id)

    with pytest.raises(AlreadyRegisteredError):
        registration_service.register(event.id, user.id)


def test_capacity_is_never_exceeded(registration_service, session, make_user, make_event):
    capacity = 3
    event = make_event(capacity=capacity)
    users = [make_user() for _ in range(capacity + 5)]

    admitted, rejected = 0, 0
    for user in users:
        try:
            registration_service.register(event.id, user.id)
        except CapacityFullError as exc:
            rejected += 1
            assert exc.details["remaining_capacity"] == 0
            assert exc.details["capacity"] == capacity
        else:
            admitted += 1

    assert admitted == capacity
    assert rejected == 5
    assert count_rows(session, Attendance) == capacity


def test_concurrent_registrations_respect_capacity(
    session, notifier, config, make_user, make_event, email_client
):
    capacity, workers = 3, 8
    event_id = make_event(capacity=capacity).id
    user_ids = [make_user().id for _ in range(workers)]
    barrier = threading.Barrier(workers)

    def attempt(user_id):
        worker_session = get_session()
        try:
            service = RegistrationService(worker_session, notifier=notifier, config=config)
            barrier.wait(timeout=10)
            try:
                service.register(event_id, user_id)
            except CapacityFullError:
                return "full"
            return "admitted"
        finally:
            worker_session.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(attempt, user_ids))

    assert outcomes.count("admitted") == capacity
    assert outcomes.count("full") == workers - capacity
    assert count_rows(session, Attendance) == capacity
    assert len(email_client.sent) == capacity


def test_post_insert_recount_catches_a_stale_admission_guard(
    registration_service, session, make_user, make_event, email_client, monkeypatch
):
    event = make_event(capacity=1)
    first, second = make_user(), make_user()
    registration_service.register(event.id, first.id)

    monkeypatch.setattr(admission, "can_admit", lambda event, count: True)

    with pytest.raises(CapacityFullError):
        registration_service.register(event.id, second.id)
    assert count_rows(session, Attendance) == 1
    assert len(email_client.sent) == 1


def test_email_failure_rolls_back_the_attendance(
    registration_service, session, make_user, make_event, email_client
):
    user = make_user()
    event = make_event()
    email_client.fail = True

    with pytest.raises(EmailDeliveryFailedError):
        registration_service.register(event.id, user.id)

    session.expire_all()
    assert count_rows(session, Attendance) == 0

    email_client.fail = False
    result = registration_service.register(event.id, user.id)
    assert result["status"] == "registered"


def test_paid_event_requires_payment_without_reserving_a_seat(
    registration_service, payment_service, session, make_user, make_event
):
    user = make_user()
    event = make_event(price="150000", capacity=1)

    result = registration_service.register(event.id, user.id)

    assert result["status"] == "payment_required"
    assert result["amount"] == 150000.0
    assert result["currency"] == "IDR"
    assert result["payment"] is None
    assert count_rows(session, Attendance) == 0
    assert count_rows(session, Payment) == 0

    created = payment_service.create_payment(user.id, event_id=event.id)
    again = registration_service.register(event.id, user.id)
    assert again["status"] == "payment_required"
    assert again["payment"]["payment_id"] == created["payment_id"]


def test_unknown_event(registration_service, make_user):
    user = make_user()
    with pytest.raises(EventNotFoundError):
        registration_service.register(9999, user.id)


def test_event_overview_reports_capacity_and_phase(registration_service, make_user, make_event):
    event = make_event(capacity=2)
    registration_service.register(event.id, make_user().id)

    overview = registration_service.get_event_overview(event.id)

    assert overview["phase"] == "upcoming"
    assert overview["attendee_count"] == 1
    assert overview["remaining_capacity"] == 1
    assert overview["registration_open"] is True
    assert overview["minutes_until_start"] > 0

    registration_service.register(event.id, make_user().id)
    full = registration_service.get_event_overview(event.id)
    assert full["remaining_capacity"] == 0
    assert full["registration_open"] is False
