"""Centralised configuration management for integrations, policies and security."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_SECRET = "change-me"


@dataclass(frozen=True)
class ResilienceConfig:
    """Retry and circuit breaker settings for outbound integrations."""

    max_attempts: int = 3
    backoff_factor: float = 0.5
    max_backoff: float = 5.0
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_reset_timeout: float = 30.0


@dataclass(frozen=True)
class ServiceConfig:
    """Configuration for a downstream dependency."""

    name: str
    base_url: str
    protocol: str = "http"
    timeout: float = 5.0
    secret: Optional[str] = None
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)


@dataclass(frozen=True)
class PolicyConfig:
    """Business rules of the registration, payment and check-in flows."""

    token_length: int = 10
    token_validity_minutes: int = 15
    payment_expiry_minutes: int = 60
    currency: str = "IDR"
    frontend_url: str = "http://localhost:3000"
    token_hash_secret: str = "change-me"


@dataclass(frozen=True)
class SecurityConfig:
    """Secrets used to authenticate users and the payment gateway callbacks."""

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    webhook_token: Optional[str] = None


@dataclass(frozen=True)
class SchedulerConfig:
    enabled: bool = False
    reconcile_interval_minutes: int = 5
    revoked_token_purge_minutes: int = 60


@dataclass(frozen=True)
class AppConfig:
    """Aggregate application configuration."""

    services: Dict[str, ServiceConfig]
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    def service(self, name: str) -> ServiceConfig:
        try:
            return self.services[name]
        except KeyError as exc:  # pragma: no cover - defensive branch
            raise KeyError(f"Unknown service configuration requested: {name}") from exc


def _get_env_name(service_name: str, key: str) -> str:
    return f"{service_name.upper()}_{key.upper()}"


def _get_secret(var: str) -> str:
    value = os.getenv(var)
    if not value:
        logger.warning("%s is not set; using an insecure default secret", var)
        return DEFAULT_SECRET
    return value


def _get_int(var: str, default: int) -> int:
    value = os.getenv(var)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(var: str, default: float) -> float:
    value = os.getenv(var)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool(var: str, default: bool) -> bool:
    value = os.getenv(var)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _load_resilience(service_name: str) -> ResilienceConfig:
    def env(key: str) -> str:
        return _get_env_name(service_name, key)

    return ResilienceConfig(
        max_attempts=_get_int(env("MAX_ATTEMPTS"), 3),
        backoff_factor=_get_float(env("BACKOFF_FACTOR"), 0.5),
        max_backoff=_get_float(env("MAX_BACKOFF"), 5.0),
        circuit_breaker_failure_threshold=_get_int(env("CB_FAILURE_THRESHOLD"), 5),
        circuit_breaker_reset_timeout=_get_float(env("CB_RESET_TIMEOUT"), 30.0),
    )


def _load_service_config(
    service_name: str,
    *,
    default_url: str,
    protocol: str = "http",
    default_timeout: float = 5.0,
) -> ServiceConfig:
    base_url = os.getenv(_get_env_name(service_name, "URL"), default_url)
    timeout = os.getenv(_get_env_name(service_name, "TIMEOUT"))
    secret = os.getenv(_get_env_name(service_name, "SECRET"))
    parsed_timeout = float(timeout) if timeout else default_timeout

    return ServiceConfig(
        name=service_name,
        base_url=base_url,
        protocol=os.getenv(_get_env_name(service_name, "PROTOCOL"), protocol),
        timeout=parsed_timeout,
        secret=secret,
        resilience=_load_resilience(service_name),
    )


def _load_policy() -> PolicyConfig:
    return PolicyConfig(
        token_length=_get_int("CHECKIN_TOKEN_LENGTH", 10),
        token_validity_minutes=_get_int("CHECKIN_TOKEN_VALIDITY_MINUTES", 15),
        payment_expiry_minutes=_get_int("PAYMENT_EXPIRY_MINUTES", 60),
        currency=os.getenv("PAYMENT_CURRENCY", "IDR").upper(),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        token_hash_secret=_get_secret("TOKEN_HASH_SECRET"),
    )


def _load_security() -> SecurityConfig:
    return SecurityConfig(
        jwt_secret=_get_secret("JWT_SECRET"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        webhook_token=os.getenv("PAYMENT_WEBHOOK_TOKEN") or None,
    )


def _load_scheduler() -> SchedulerConfig:
    return SchedulerConfig(
        enabled=_get_bool("SCHEDULER_ENABLED", False),
        reconcile_interval_minutes=_get_int("RECONCILE_INTERVAL_MINUTES", 5),
        revoked_token_purge_minutes=_get_int("REVOKED_TOKEN_PURGE_MINUTES", 60),
    )


@lru_cache()
def get_config() -> AppConfig:
    """Return the lazily initialised application configuration."""

    services = {
        "payment_gateway": _load_service_config(
            "payment_gateway", default_url="https://api.xendit.co", default_timeout=10.0
        ),
        "email_service": _load_service_config(
            "email_service", default_url="http://email-service.local/api"
        ),
    }
    return AppConfig(
        services=services,
        policy=_load_policy(),
        security=_load_security(),
        scheduler=_load_scheduler(),
    )


def get_service_config(service_name: str) -> ServiceConfig:
    """Shortcut to retrieve an individual service configuration."""

    config = get_config()
    return config.service(service_name)
