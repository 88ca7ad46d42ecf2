"""Client responsible for dispatching transactional emails."""
from __future__ import annotations

from typing import Any, Dict, Optional

from attendance_service.config import ServiceConfig, get_service_config

from .base import HttpClient


class EmailServiceClient(HttpClient):
    """Send messages via the email microservice."""

    def __init__(
        self,
        *,
        config: Optional[ServiceConfig] = None,
        session: Optional["requests.Session"] = None,
    ) -> None:
        if config is None:
            config = get_service_config("email_service")
        super().__init__(config, session=session)

    def send(self, to: str, subject: str, body: str) -> Dict[str, Any]:
        payload = {"to": to, "subject": subject, "html": body}
        return self.request("POST", "emails/send", json_payload=payload)
