"""Base utilities shared by integration clients."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

import requests

from attendance_service.config import ResilienceConfig, ServiceConfig

logger = logging.getLogger(__name__)


class IntegrationError(RuntimeError):
    """Raised when a downstream call fails irrecoverably."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class CircuitOpenError(IntegrationError):
    """Raised when the circuit breaker prevents further calls."""


@dataclass
class _CircuitBreakerState:
    failures: int = 0
    open_until: float = 0.0


class CircuitBreaker:
    """Minimal circuit breaker implementation."""

    def __init__(self, config: ResilienceConfig) -> None:
        self.config = config
        self.state = _CircuitBreakerState()

    def allow(self) -> None:
        now = time.monotonic()
        if self.state.open_until and now < self.state.open_until:
            raise CircuitOpenError("Circuit breaker is open; skipping call.")
        if self.state.open_until and now >= self.state.open_until:
            self.state = _CircuitBreakerState()

    def record_success(self) -> None:
        self.state = _CircuitBreakerState()

    def record_failure(self) -> None:
        self.state.failures += 1
        if self.state.failures >= self.config.circuit_breaker_failure_threshold:
            self.state.open_until = (
                time.monotonic() + self.config.circuit_breaker_reset_timeout
            )


class Retryable(Protocol):
    def __call__(self) -> Any:  # pragma: no cover - typing protocol
        ...


class IntegrationClient:
    """Base class wrapping retry and circuit breaker semantics."""

    def __init__(self, config: ServiceConfig) -> None:
        self.config = config
        self.breaker = CircuitBreaker(config.resilience)

    def _execute(self, operation: Retryable) -> Any:
        attempts = 0
        delay = self.config.resilience.backoff_factor
        max_attempts = max(1, self.config.resilience.max_attempts)
        max_backoff = max(delay, self.config.resilience.max_backoff)

        while True:
            self.breaker.allow()
            try:
                result = operation()
            except IntegrationError as exc:
                # 4xx answers are final, retrying them only burns the budget.
                if exc.is_client_error:
                    raise
                attempts = self._register_failure(exc, attempts, max_attempts)
            except requests.RequestException as exc:
                attempts = self._register_failure(exc, attempts, max_attempts)
            else:
                self.breaker.record_success()
                return result
            time.sleep(delay)
            delay = min(delay * 2, max_backoff)

    def _register_failure(self, exc: Exception, attempts: int, max_attempts: int) -> int:
        self.breaker.record_failure()
        attempts += 1
        logger.warning(
            "%s call failed (attempt %s/%s): %s",
            self.config.name,
            attempts,
            max_attempts,
            exc,
        )
        if attempts >= max_attempts:
            if isinstance(exc, IntegrationError):
                raise exc
            raise IntegrationError(str(exc)) from exc
        return attempts


class HttpClient(IntegrationClient):
    """HTTP client with retry/backoff semantics."""

    def __init__(self, config: ServiceConfig, session: Optional[requests.Session] = None) -> None:
        super().__init__(config)
        self.session = session or requests.Session()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.secret:
            headers["Authorization"] = f"Bearer {self.config.secret}"
        if extra:
            headers.update(extra)
        return headers

    def _auth(self) -> Optional[Tuple[str, str]]:
        return None

    def request(
        self,
        method: str,
        path: str,
        *,
        json_payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = self._build_url(path)

        def _call() -> Dict[str, Any]:
            response = self.session.request(
                method,
                url,
                json=json_payload,
                params=params,
                headers=self._headers(headers),
                auth=self._auth(),
                timeout=self.config.timeout,
            )
            if response.status_code >= 400:
                raise IntegrationError(
                    f"HTTP {response.status_code} error calling {url}: {response.text}",
                    status_code=response.status_code,
                )
            if not response.content:
                return {}
            try:
                return response.json()
            except json.JSONDecodeError:
                raise IntegrationError(
                    f"Invalid JSON payload received from {url}: {response.text}"
                )

        return self._execute(_call)

    def _build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        base = self.config.base_url.rstrip("/")
        suffix = path.lstrip("/")
        return f"{base}/{suffix}"
