"""Payment reconciliation engine.

Local :class:`~attendance_service.models.Payment` rows mirror the invoices of
the payment gateway. A payment leaves ``pending`` exactly once: every
transition is a compare-and-set ``UPDATE ... WHERE status = 'pending'`` so a
webhook and a status poll observing the same invoice cannot both apply it.
Both paths then run :meth:`PaymentService.materialize_attendance`, which
creates at most one Attendance per paid (event, user) pair.
"""
from __future__ import annotations

import hmac
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_service.config import AppConfig
from attendance_service.database import utcnow
from attendance_service.integrations.base import IntegrationError
from attendance_service.integrations.payment_gateway import (
    GATEWAY_EXPIRED,
    GATEWAY_FAILED,
    GATEWAY_PAID,
    PaymentGatewayClient,
)
from attendance_service.models import (
    PAYMENT_CANCELLED,
    PAYMENT_EXPIRED,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    Attendance,
    Event,
    Payment,
    User,
)
from attendance_service.services import admission
from attendance_service.services.base import SessionService
from attendance_service.services.errors import (
    AlreadyPaidError,
    AlreadyRegisteredError,
    AttendanceNotFoundError,
    EmailDeliveryFailedError,
    InternalError,
    InvalidRequestError,
    PaymentGatewayError,
    PaymentNotFoundError,
    WebhookAuthenticationError,
)
from attendance_service.services.notifications import NotificationDispatcher
from attendance_service.services.registrations import (
    ensure_capacity,
    ensure_registration_open,
)
from attendance_service.services.serializers import serialize_payment
from attendance_service.services.tokens import TokenIssuer

__all__ = ["PaymentService", "GATEWAY_STATUS_MAP", "WEBHOOK_EVENTS"]

logger = logging.getLogger(__name__)

GATEWAY_STATUS_MAP = {
    GATEWAY_PAID: PAYMENT_PAID,
    GATEWAY_EXPIRED: PAYMENT_EXPIRED,
    GATEWAY_FAILED: PAYMENT_FAILED,
}

WEBHOOK_EVENTS = {
    "invoice.paid": PAYMENT_PAID,
    "invoice.expired": PAYMENT_EXPIRED,
    "invoice.failed": PAYMENT_FAILED,
}

HISTORY_STATUSES = (PAYMENT_PENDING, PAYMENT_EXPIRED, PAYMENT_FAILED)


class PaymentService(SessionService):
    """Create invoices and keep local payments in sync with the gateway."""

    def __init__(
        self,
        session: Session,
        *,
        gateway: Optional[PaymentGatewayClient] = None,
        notifier: Optional[NotificationDispatcher] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        super().__init__(session, config=config)
        self.gateway = gateway or PaymentGatewayClient()
        self.notifier = notifier or NotificationDispatcher()
        self.tokens = TokenIssuer(self.policy.token_hash_secret)

    # ------------------------------------------------------------------
    # Invoice creation
    # ------------------------------------------------------------------
    def create_payment(
        self,
        user_id: int,
        *,
        event_id: Optional[int] = None,
        attendance_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Return the pending payment of the pair, creating the invoice if needed.

        The returned payload carries ``created`` so the HTTP layer can tell
        a new invoice (201) from an idempotent replay (200).
        """
        now = now or utcnow()
        if (event_id is None) == (attendance_id is None):
            raise InvalidRequestError(
                "Indiquez soit un événement soit une inscription à régler."
            )

        user = self._get_user(user_id)
        attendance: Optional[Attendance] = None
        if attendance_id is not None:
            attendance = self.session.get(Attendance, attendance_id)
            if attendance is None or attendance.user_id != user.id:
                raise AttendanceNotFoundError(details={"attendance_id": attendance_id})
            event_id = attendance.event_id

        event = self._get_event(event_id)
        if not event.is_paid:
            raise InvalidRequestError(
                "Cet événement est gratuit : aucun paiement n'est requis.",
                details={"event_id": event.id},
            )

        paid = self._latest_payment(event.id, user.id, statuses=[PAYMENT_PAID])
        if paid is not None:
            raise AlreadyPaidError(details={"event_id": event.id, "payment_id": paid.id})

        existing = self._current_pending(event, user, now)
        if existing is not None:
            return self._payment_payload(existing, now, created=False)

        if attendance is None:
            ensure_registration_open(event, now)
            if self._find_attendance(event.id, user.id) is not None:
                raise AlreadyRegisteredError(details={"event_id": event.id})
            ensure_capacity(event, self._count_attendees(event.id))

        return self._open_invoice(event, user, attendance, now)

    def _current_pending(self, event: Event, user: User, now: datetime) -> Optional[Payment]:
        pending = self._latest_payment(event.id, user.id, statuses=[PAYMENT_PENDING])
        if pending is None:
            return None
        if pending.expires_at is not None and pending.expires_at <= now:
            # Past its local expiry: ask the gateway before handing it out again.
            pending = self.reconcile(pending, now=now)
            if pending.status == PAYMENT_PAID:
                raise AlreadyPaidError(
                    details={"event_id": event.id, "payment_id": pending.id}
                )
        return pending if pending.is_pending else None

    def _open_invoice(
        self,
        event: Event,
        user: User,
        attendance: Optional[Attendance],
        now: datetime,
    ) -> Dict[str, Any]:
        policy = self.policy
        external_id = f"EVENT-{event.id}-{user.id}-{uuid.uuid4().hex[:12]}"
        event_url = f"{policy.frontend_url.rstrip('/')}/events/{event.id}"
        try:
            invoice = self.gateway.create_invoice(
                external_id=external_id,
                amount=float(event.price),
                description=f"Inscription : {event.title}",
                customer_email=user.email,
                customer_name=user.full_name,
                currency=policy.currency,
                duration_seconds=policy.payment_expiry_minutes * 60,
                success_redirect_url=f"{event_url}?payment=success",
                failure_redirect_url=f"{event_url}?payment=failed",
            )
        except IntegrationError as exc:
            logger.error(
                "Invoice creation failed for event=%s user=%s: %s", event.id, user.id, exc
            )
            raise PaymentGatewayError(details={"event_id": event.id}) from exc

        payment = Payment(
            event_id=event.id,
            user_id=user.id,
            gateway_invoice_id=invoice.id,
            external_id=external_id,
            amount=event.price,
            currency=policy.currency,
            status=PAYMENT_PENDING,
            invoice_url=invoice.invoice_url,
            expires_at=invoice.expiry_date
            or now + timedelta(minutes=policy.payment_expiry_minutes),
        )
        if attendance is not None:
            payment.link_attendance(attendance)
        self.session.add(payment)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            winner = self._latest_payment(event.id, user.id, statuses=[PAYMENT_PENDING])
            if winner is None:
                logger.error(
                    "Payment insert for event=%s user=%s conflicted without a pending row",
                    event.id,
                    user.id,
                )
                self._expire_orphan_invoice(invoice.id)
                raise InternalError(details={"event_id": event.id}) from exc
            logger.info(
                "Concurrent invoice for event=%s user=%s; keeping payment %s",
                event.id,
                user.id,
                winner.id,
            )
            self._expire_orphan_invoice(invoice.id)
            return self._payment_payload(winner, now, created=False)

        logger.info(
            "Created payment %s (invoice %s) for event=%s user=%s",
            payment.id,
            invoice.id,
            event.id,
            user.id,
        )
        return self._payment_payload(payment, now, created=True)

    def _expire_orphan_invoice(self, invoice_id: str) -> None:
        try:
            self.gateway.expire_invoice(invoice_id)
        except IntegrationError as exc:
            logger.warning("Could not expire orphan invoice %s: %s", invoice_id, exc)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def reconcile(self, payment: Payment, now: Optional[datetime] = None) -> Payment:
        """Align a pending payment with the gateway's view of its invoice.

        Gateway failures are logged and the local state is returned as is;
        the next poll, webhook or sweep retries.
        """
        if not payment.is_pending or not payment.gateway_invoice_id:
            return payment
        try:
            invoice = self.gateway.get_invoice(payment.gateway_invoice_id)
        except IntegrationError as exc:
            logger.warning(
                "Could not reconcile payment %s with the gateway: %s", payment.id, exc
            )
            return payment

        target = GATEWAY_STATUS_MAP.get(invoice.status)
        if target is None:
            return payment
        return self._apply_transition(payment, target, now=now)

    def reconcile_pending(self, now: Optional[datetime] = None, *, limit: int = 100) -> int:
        """Poll the gateway for pending payments; returns how many were settled."""
        now = now or utcnow()
        query = (
            select(Payment)
            .where(Payment.status == PAYMENT_PENDING)
            .where(Payment.gateway_invoice_id.is_not(None))
            .order_by(Payment.created_at.asc())
            .limit(limit)
        )
        settled = 0
        for payment in self.session.scalars(query).all():
            if not self.reconcile(payment, now=now).is_pending:
                settled += 1
        if settled:
            logger.info("Reconciliation sweep settled %s payment(s)", settled)
        return settled

    def _apply_transition(
        self, payment: Payment, status: str, *, now: Optional[datetime] = None
    ) -> Payment:
        now = now or utcnow()
        values: Dict[str, Any] = {"status": status, "updated_at": now}
        if status == PAYMENT_PAID:
            values["paid_at"] = now
        statement = (
            update(Payment)
            .where(Payment.id == payment.id)
            .where(Payment.status == PAYMENT_PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        self.session.commit()
        self.session.refresh(payment)

        if result.rowcount:
            logger.info("Payment %s moved from pending to %s", payment.id, status)
        if payment.status == PAYMENT_PAID:
            self.materialize_attendance(payment, now=now)
        return payment

    def materialize_attendance(
        self, payment: Payment, now: Optional[datetime] = None
    ) -> Optional[Attendance]:
        """Give a paid payment its Attendance, creating and emailing it at most once."""
        now = now or utcnow()
        self.session.refresh(payment)
        if payment.status != PAYMENT_PAID:
            return None
        if payment.attendance_id is not None:
            return payment.attendance

        existing = self._find_attendance(payment.event_id, payment.user_id)
        if existing is not None:
            payment.link_attendance(existing)
            self.session.commit()
            logger.info("Linked payment %s to attendance %s", payment.id, existing.id)
            return existing

        event = payment.event
        user = payment.user
        if not admission.can_admit(event, self._count_attendees(event.id)):
            logger.warning(
                "Event %s is over capacity; admitting paid user=%s anyway", event.id, user.id
            )

        issued = self.tokens.issue(self.policy.token_length)
        attendance = Attendance(
            event_id=event.id,
            user_id=user.id,
            token_hash=issued.token_hash,
            created_at=now,
        )
        self.session.add(attendance)
        try:
            self.session.flush()
        except IntegrityError as exc:
            # Another worker materialized the pair first.
            self.session.rollback()
            winner = self._find_attendance(payment.event_id, payment.user_id)
            if winner is None:
                raise InternalError(details={"payment_id": payment.id}) from exc
            self.session.refresh(payment)
            if payment.attendance_id is None:
                payment.link_attendance(winner)
                self.session.commit()
            return winner

        payment.link_attendance(attendance)
        self.session.commit()
        logger.info(
            "Materialized attendance %s for paid payment %s", attendance.id, payment.id
        )

        try:
            self.notifier.send_check_in_token(
                user,
                event,
                issued.plaintext,
                validity_minutes=self.policy.token_validity_minutes,
            )
        except EmailDeliveryFailedError as exc:
            logger.error(
                "Attendance %s kept for settled payment %s but the token email failed: %s",
                attendance.id,
                payment.id,
                exc,
            )
        return attendance

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------
    def handle_webhook(
        self,
        payload: Any,
        callback_token: Optional[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = now or utcnow()
        self._authenticate_callback(callback_token)

        if not isinstance(payload, dict):
            raise InvalidRequestError("Notification de paiement invalide.")
        event_name = payload.get("event")
        target = WEBHOOK_EVENTS.get(event_name) if isinstance(event_name, str) else None
        if target is None:
            raise InvalidRequestError(
                "Type de notification non pris en charge.", details={"event": event_name}
            )
        data = payload.get("data")
        invoice_id = data.get("id") if isinstance(data, dict) else None
        if not invoice_id:
            raise InvalidRequestError("Identifiant de facture manquant.")

        query = select(Payment).where(Payment.gateway_invoice_id == str(invoice_id))
        payment = self.session.scalars(query).first()
        if payment is None:
            raise PaymentNotFoundError(details={"invoice_id": invoice_id})

        if payment.is_pending:
            payment = self._apply_transition(payment, target, now=now)
        elif payment.status == PAYMENT_PAID:
            self.materialize_attendance(payment, now=now)
        else:
            logger.info(
                "Ignoring %s for payment %s already %s", event_name, payment.id, payment.status
            )
        return serialize_payment(payment, now)

    def _authenticate_callback(self, callback_token: Optional[str]) -> None:
        expected = self.config.security.webhook_token
        if not expected or not callback_token:
            raise WebhookAuthenticationError()
        if not hmac.compare_digest(callback_token.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Rejected payment webhook with an invalid callback token")
            raise WebhookAuthenticationError()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_payment_status(
        self, payment_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utcnow()
        payment = self.reconcile(self._get_owned_payment(payment_id, user_id), now=now)
        if payment.status == PAYMENT_PAID and payment.attendance_id is None:
            self.materialize_attendance(payment, now=now)
        return serialize_payment(payment, now, include_event=True)

    def get_payment_for_event(
        self, event_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utcnow()
        event = self._get_event(event_id)
        payment = self._latest_payment(event.id, user_id)
        if payment is None:
            raise PaymentNotFoundError(details={"event_id": event.id})
        payment = self.reconcile(payment, now=now)
        return serialize_payment(payment, now, include_event=True)

    def list_pending_payments(
        self, user_id: int, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Payments that did not go through: still pending, expired or failed."""
        return self._list(user_id, now or utcnow(), statuses=HISTORY_STATUSES)

    def list_payments(self, user_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return self._list(user_id, now or utcnow())

    def cancel_payment(
        self, payment_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utcnow()
        payment = self.reconcile(self._get_owned_payment(payment_id, user_id), now=now)
        if not payment.is_pending:
            raise InvalidRequestError(
                "Seuls les paiements en attente peuvent être annulés.",
                details={"payment_id": payment.id, "status": payment.status},
            )
        if payment.gateway_invoice_id:
            try:
                self.gateway.expire_invoice(payment.gateway_invoice_id)
            except IntegrationError as exc:
                logger.error("Could not expire invoice of payment %s: %s", payment.id, exc)
                raise PaymentGatewayError(
                    "Impossible d'annuler la facture. Réessayez plus tard.",
                    details={"payment_id": payment.id},
                ) from exc
        payment = self._apply_transition(payment, PAYMENT_CANCELLED, now=now)
        return serialize_payment(payment, now)

    def _list(self, user_id: int, now: datetime, *, statuses=None) -> List[Dict[str, Any]]:
        query = select(Payment).where(Payment.user_id == user_id)
        if statuses is not None:
            query = query.where(Payment.status.in_(list(statuses)))
        query = query.order_by(Payment.created_at.desc(), Payment.id.desc())
        return [
            serialize_payment(payment, now, include_event=True)
            for payment in self.session.scalars(query).all()
        ]

    def _get_owned_payment(self, payment_id: int, user_id: int) -> Payment:
        payment = self.session.get(Payment, payment_id)
        if payment is None or payment.user_id != user_id:
            raise PaymentNotFoundError(details={"payment_id": payment_id})
        return payment

    @staticmethod
    def _payment_payload(payment: Payment, now: datetime, *, created: bool) -> Dict[str, Any]:
        payload = serialize_payment(payment, now)
        payload["created"] = created
        return payload
