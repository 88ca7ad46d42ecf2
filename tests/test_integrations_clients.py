"""Integration client tests relying on mocked HTTP backends."""
from __future__ import annotations

import base64
import json
from datetime import datetime

import pytest
import responses

from attendance_service.config import ResilienceConfig, ServiceConfig
from attendance_service.integrations.base import CircuitOpenError, IntegrationError
from attendance_service.integrations.email_service import EmailServiceClient
from attendance_service.integrations.payment_gateway import (
    GATEWAY_EXPIRED,
    GATEWAY_PAID,
    GATEWAY_PENDING,
    PaymentGatewayClient,
)


def _service_config(
    name: str, base_url: str, *, secret: str = None, max_attempts: int = 1, threshold: int = 5
) -> ServiceConfig:
    return ServiceConfig(
        name=name,
        base_url=base_url,
        timeout=1.0,
        secret=secret,
        resilience=ResilienceConfig(
            max_attempts=max_attempts,
            backoff_factor=0.01,
            max_backoff=0.01,
            circuit_breaker_failure_threshold=threshold,
            circuit_breaker_reset_timeout=60.0,
        ),
    )


@responses.activate
def test_gateway_creates_invoice_with_basic_auth() -> None:
    config = _service_config("payment_gateway", "http://gateway.test", secret="xnd_secret")
    responses.add(
        responses.POST,
        "http://gateway.test/v2/invoices",
        json={
            "id": "inv_123",
            "status": "PENDING",
            "invoice_url": "https://checkout.test/inv_123",
            "expiry_date": "2024-05-01T13:00:00.000Z",
        },
        status=200,
    )
    client = PaymentGatewayClient(config=config)

    invoice = client.create_invoice(
        external_id="EVENT-1-2-abc",
        amount=150000,
        description="Inscription : Atelier",
        customer_email="payer@example.com",
        customer_name="Budi",
        currency="IDR",
        duration_seconds=3600,
        success_redirect_url="http://front.test/events/1?payment=success",
    )

    assert invoice.id == "inv_123"
    assert invoice.status == GATEWAY_PENDING
    assert invoice.invoice_url == "https://checkout.test/inv_123"
    assert invoice.expiry_date == datetime(2024, 5, 1, 13, 0, 0)

    request = responses.calls[0].request
    expected = base64.b64encode(b"xnd_secret:").decode("ascii")
    assert request.headers["Authorization"] == f"Basic {expected}"
    body = json.loads(request.body)
    assert body["external_id"] == "EVENT-1-2-abc"
    assert body["payer_email"] == "payer@example.com"
    assert body["invoice_duration"] == 3600
    assert body["currency"] == "IDR"
    assert body["customer"]["given_names"] == "Budi"
    assert body["success_redirect_url"].endswith("payment=success")
    assert "failure_redirect_url" not in body


@responses.activate
def test_gateway_reads_and_expires_invoices() -> None:
    config = _service_config("payment_gateway", "http://gateway.test", secret="xnd_secret")
    responses.add(
        responses.GET,
        "http://gateway.test/v2/invoices/inv_1",
        json={"id": "inv_1", "status": "paid"},
        status=200,
    )
    responses.add(
        responses.POST,
        "http://gateway.test/invoices/inv_1/expire!",
        json={"id": "inv_1", "status": "EXPIRED"},
        status=200,
    )
    client = PaymentGatewayClient(config=config)

    assert client.get_invoice("inv_1").status == GATEWAY_PAID
    assert client.expire_invoice("inv_1").status == GATEWAY_EXPIRED


@responses.activate
def test_gateway_answer_without_invoice_id_is_an_error() -> None:
    config = _service_config("payment_gateway", "http://gateway.test")
    responses.add(
        responses.GET,
        "http://gateway.test/v2/invoices/inv_1",
        json={"status": "PAID"},
        status=200,
    )
    client = PaymentGatewayClient(config=config)

    with pytest.raises(IntegrationError):
        client.get_invoice("inv_1")


@responses.activate
def test_client_errors_are_not_retried() -> None:
    config = _service_config("payment_gateway", "http://gateway.test", max_attempts=3)
    responses.add(
        responses.GET,
        "http://gateway.test/v2/invoices/missing",
        json={"error_code": "INVOICE_NOT_FOUND_ERROR"},
        status=404,
    )
    client = PaymentGatewayClient(config=config)

    with pytest.raises(IntegrationError) as excinfo:
        client.get_invoice("missing")

    assert excinfo.value.status_code == 404
    assert len(responses.calls) == 1


@responses.activate
def test_server_errors_are_retried() -> None:
    config = _service_config("payment_gateway", "http://gateway.test", max_attempts=3)
    responses.add(responses.GET, "http://gateway.test/v2/invoices/inv_1", status=503)
    responses.add(
        responses.GET,
        "http://gateway.test/v2/invoices/inv_1",
        json={"id": "inv_1", "status": "PENDING"},
        status=200,
    )
    client = PaymentGatewayClient(config=config)

    assert client.get_invoice("inv_1").status == GATEWAY_PENDING
    assert len(responses.calls) == 2


@responses.activate
def test_circuit_breaker_opens_after_repeated_failures() -> None:
    config = _service_config("email_service", "http://email.test", threshold=2)
    responses.add(responses.POST, "http://email.test/emails/send", status=500)
    client = EmailServiceClient(config=config)

    for _ in range(2):
        with pytest.raises(IntegrationError):
            client.send("user@example.com", "Sujet", "<p>Bonjour</p>")
    with pytest.raises(CircuitOpenError):
        client.send("user@example.com", "Sujet", "<p>Bonjour</p>")
    assert len(responses.calls) == 2


@responses.activate
def test_email_service_send() -> None:
    config = _service_config("email_service", "http://email.test", secret="mail-key")
    responses.add(
        responses.POST,
        "http://email.test/emails/send",
        json={"status": "queued"},
        status=200,
    )
    client = EmailServiceClient(config=config)

    response = client.send("user@example.com", "Votre code", "<p>ABC123</p>")

    assert response["status"] == "queued"
    request = responses.calls[0].request
    assert request.headers["Authorization"] == "Bearer mail-key"
    assert json.loads(request.body) == {
        "to": "user@example.com",
        "subject": "Votre code",
        "html": "<p>ABC123</p>",
    }
