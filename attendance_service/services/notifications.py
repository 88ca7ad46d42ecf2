"""Deliver check-in tokens by email."""
from __future__ import annotations

import base64
import logging
from html import escape
from io import BytesIO
from typing import Optional

import qrcode

from attendance_service.integrations.base import IntegrationError
from attendance_service.integrations.email_service import EmailServiceClient
from attendance_service.models import Event, User
from attendance_service.services.errors import EmailDeliveryFailedError

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Thin wrapper around the email service for token notifications."""

    def __init__(self, email_client: Optional[EmailServiceClient] = None) -> None:
        self.email_client = email_client or EmailServiceClient()

    def send_check_in_token(
        self, user: User, event: Event, token: str, *, validity_minutes: int
    ) -> None:
        """Send ``token`` to ``user``.

        Raises:
            EmailDeliveryFailedError: If the email service rejected or never
                acknowledged the message.
        """
        if not user.email or "@" not in user.email:
            raise EmailDeliveryFailedError(
                "Adresse e-mail du participant invalide.",
                details={"user_id": user.id},
            )

        subject = f"Code de check-in : {event.title}"
        body = self._render_token_email(event, token, validity_minutes)
        try:
            self.email_client.send(user.email, subject, body)
        except IntegrationError as exc:
            logger.error(
                "Failed to send check-in token email to user=%s for event=%s: %s",
                user.id,
                event.id,
                exc,
            )
            raise EmailDeliveryFailedError(details={"event_id": event.id}) from exc
        logger.info("Check-in token email sent to user=%s for event=%s", user.id, event.id)

    def _render_token_email(self, event: Event, token: str, validity_minutes: int) -> str:
        title = escape(event.title)
        qr_code = self._build_qr_code(token)
        return (
            "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: auto;\">"
            f"<h2>Votre code de check-in pour « {title} »</h2>"
            "<p>Merci pour votre inscription. Présentez ce code à l'entrée de l'événement :</p>"
            f"<p style=\"font-size: 32px; font-weight: bold; letter-spacing: 6px;\">{escape(token)}</p>"
            f"<img alt=\"QR code\" src=\"data:image/png;base64,{qr_code}\" />"
            f"<p>Le code reste valable {validity_minutes} minutes à partir de l'ouverture "
            "du check-in. Ne le partagez avec personne.</p>"
            "</div>"
        )

    @staticmethod
    def _build_qr_code(token: str) -> str:
        qr = qrcode.QRCode(version=1, box_size=5, border=2)
        qr.add_data(token)
        qr.make(fit=True)
        image = qr.make_image(fill_color="black", back_color="white")
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return base64.b64encode(buffer.getvalue()).decode("ascii")
