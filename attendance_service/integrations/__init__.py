"""Clients for communicating with the payment gateway and the email service."""

from .base import IntegrationError
from .email_service import EmailServiceClient
from .payment_gateway import GatewayInvoice, PaymentGatewayClient

__all__ = [
    "EmailServiceClient",
    "GatewayInvoice",
    "IntegrationError",
    "PaymentGatewayClient",
]
