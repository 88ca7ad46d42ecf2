from datetime import timedelta

import pytest

from attendance_service.database import utcnow
from attendance_service.integrations.payment_gateway import GATEWAY_PAID
from attendance_service.models import Attendance, RevokedToken
from attendance_service.services.auth import AuthService
from attendance_service.services.scheduler import ReconciliationScheduler


def test_reconcile_job_settles_missed_webhooks(
    payment_service, gateway, notifier, config, session, make_user, make_event
):
    user = make_user()
    event = make_event(price="1000")
    payment_service.create_payment(user.id, event_id=event.id)
    gateway.set_status("inv_1", GATEWAY_PAID)

    scheduler = ReconciliationScheduler(config, gateway=gateway, notifier=notifier)

    assert scheduler.reconcile_job() == 1
    assert session.query(Attendance).count() == 1


def test_purge_job_removes_expired_revocations(config, session):
    session.add(RevokedToken(jti="stale", user_id=1, expires_at=utcnow() - timedelta(hours=1)))
    session.commit()

    assert ReconciliationScheduler(config).purge_job() == 1
    assert session.query(RevokedToken).count() == 0


def test_scheduler_start_and_shutdown(config):
    scheduler = ReconciliationScheduler(config)

    scheduler.start()
    scheduler.start()
    try:
        assert scheduler.running is True
    finally:
        scheduler.shutdown()
    assert scheduler.running is False


def test_failing_job_rolls_back_and_propagates(config, session, monkeypatch):
    session.add(RevokedToken(jti="stale", user_id=1, expires_at=utcnow() - timedelta(hours=1)))
    session.commit()

    def purge_then_fail(self, now=None):
        self.session.query(RevokedToken).delete()
        raise RuntimeError("boom")

    monkeypatch.setattr(AuthService, "purge_expired", purge_then_fail)

    with pytest.raises(RuntimeError):
        ReconciliationScheduler(config).purge_job()
    session.expire_all()
    assert session.query(RevokedToken).count() == 1
