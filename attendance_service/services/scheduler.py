"""Periodic jobs: payment reconciliation sweep and revocation list purge."""
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from attendance_service.config import AppConfig, get_config
from attendance_service.database import session_scope
from attendance_service.integrations.payment_gateway import PaymentGatewayClient
from attendance_service.services.auth import AuthService
from attendance_service.services.notifications import NotificationDispatcher
from attendance_service.services.payments import PaymentService

__all__ = ["ReconciliationScheduler"]

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Poll the gateway for missed webhooks and purge stale revocations."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        gateway: Optional[PaymentGatewayClient] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.config = config or get_config()
        self.gateway = gateway
        self.notifier = notifier
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            return
        settings = self.config.scheduler
        self._scheduler.add_job(
            self.reconcile_job,
            "interval",
            minutes=settings.reconcile_interval_minutes,
            id="payments-reconcile",
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self.purge_job,
            "interval",
            minutes=settings.revoked_token_purge_minutes,
            id="revoked-tokens-purge",
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()
        self._started = True
        logger.info("Background scheduler started")

    def shutdown(self) -> None:
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False

    def reconcile_job(self) -> int:
        with session_scope() as session:
            service = PaymentService(
                session,
                gateway=self.gateway,
                notifier=self.notifier,
                config=self.config,
            )
            return service.reconcile_pending()

    def purge_job(self) -> int:
        with session_scope() as session:
            purged = AuthService(session, config=self.config).purge_expired()
        if purged:
            logger.info("Purged %s expired token revocation(s)", purged)
        return purged
