"""Client for the invoice API of the payment gateway (Xendit compatible)."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from attendance_service.config import ServiceConfig, get_service_config

from .base import HttpClient, IntegrationError

GATEWAY_PENDING = "PENDING"
GATEWAY_PAID = "PAID"
GATEWAY_EXPIRED = "EXPIRED"
GATEWAY_FAILED = "FAILED"


@dataclass(frozen=True)
class GatewayInvoice:
    id: str
    status: str
    invoice_url: Optional[str] = None
    expiry_date: Optional[datetime] = None


class PaymentGatewayClient(HttpClient):
    """Create, inspect and expire invoices.

    The gateway authenticates with HTTP basic auth: the secret key is the
    username and the password is empty.
    """

    def __init__(
        self,
        *,
        config: Optional[ServiceConfig] = None,
        session: Optional["requests.Session"] = None,
    ) -> None:
        if config is None:
            config = get_service_config("payment_gateway")
        super().__init__(config, session=session)

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    def _auth(self) -> Optional[Tuple[str, str]]:
        if not self.config.secret:
            return None
        return (self.config.secret, "")

    def create_invoice(
        self,
        *,
        external_id: str,
        amount: Union[Decimal, float],
        description: str,
        customer_email: str,
        currency: str,
        duration_seconds: int,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None,
        payment_methods: Optional[List[str]] = None,
        customer_name: Optional[str] = None,
    ) -> GatewayInvoice:
        payload: Dict[str, Any] = {
            "external_id": external_id,
            "amount": float(amount),
            "description": description,
            "payer_email": customer_email,
            "currency": currency,
            "invoice_duration": duration_seconds,
            "customer": {
                "email": customer_email,
                "given_names": customer_name or customer_email.split("@")[0],
            },
        }
        if success_redirect_url:
            payload["success_redirect_url"] = success_redirect_url
        if failure_redirect_url:
            payload["failure_redirect_url"] = failure_redirect_url
        if payment_methods:
            payload["payment_methods"] = payment_methods
        response = self.request("POST", "v2/invoices", json_payload=payload)
        return _parse_invoice(response)

    def get_invoice(self, invoice_id: str) -> GatewayInvoice:
        response = self.request("GET", f"v2/invoices/{invoice_id}")
        return _parse_invoice(response)

    def expire_invoice(self, invoice_id: str) -> GatewayInvoice:
        response = self.request("POST", f"invoices/{invoice_id}/expire!")
        return _parse_invoice(response)


def _parse_invoice(payload: Dict[str, Any]) -> GatewayInvoice:
    invoice_id = payload.get("id")
    if not invoice_id:
        raise IntegrationError(f"Gateway answered without an invoice id: {payload}")
    status = str(payload.get("status") or GATEWAY_PENDING).upper()
    return GatewayInvoice(
        id=str(invoice_id),
        status=status,
        invoice_url=payload.get("invoice_url") or payload.get("invoiceUrl"),
        expiry_date=_parse_datetime(payload.get("expiry_date")),
    )


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
