"""Bearer access tokens and their persisted revocation list."""
from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from attendance_service.database import utcnow
from attendance_service.models import RevokedToken, User
from attendance_service.services.base import SessionService
from attendance_service.services.errors import AuthenticationError, UserNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = timedelta(hours=24)
# Used when a token without "exp" is revoked; such tokens are rejected anyway.
FALLBACK_REVOCATION_TTL = timedelta(days=1)


@dataclass(frozen=True)
class Principal:
    user_id: int
    jti: str
    expires_at: Optional[datetime]


class AuthService(SessionService):
    """Verify access tokens and revoke them until they expire."""

    def issue_access_token(
        self,
        user_id: int,
        *,
        expires_delta: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or utcnow()
        security = self.config.security
        claims = {
            "sub": str(user_id),
            "jti": uuid.uuid4().hex,
            "iat": now.replace(tzinfo=timezone.utc),
            "exp": (now + (expires_delta or DEFAULT_TOKEN_LIFETIME)).replace(tzinfo=timezone.utc),
        }
        return jwt.encode(claims, security.jwt_secret, algorithm=security.jwt_algorithm)

    def authenticate(self, token: Optional[str]) -> Principal:
        if not token:
            raise AuthenticationError()
        security = self.config.security
        try:
            claims = jwt.decode(
                token,
                security.jwt_secret,
                algorithms=[security.jwt_algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationError("Session expirée. Reconnectez-vous.") from exc
        except jwt.PyJWTError as exc:
            raise AuthenticationError("Jeton d'accès invalide.") from exc

        try:
            user_id = int(claims["sub"])
        except (TypeError, ValueError) as exc:
            raise AuthenticationError("Jeton d'accès invalide.") from exc

        principal = Principal(
            user_id=user_id,
            jti=claims.get("jti") or _fingerprint(token),
            expires_at=_from_timestamp(claims.get("exp")),
        )
        if self.is_revoked(principal.jti):
            raise AuthenticationError("Session révoquée. Reconnectez-vous.")
        return principal

    def load_user(self, principal: Principal) -> User:
        try:
            return self._get_user(principal.user_id)
        except UserNotFoundError as exc:
            raise AuthenticationError("Compte introuvable.") from exc

    def is_revoked(self, jti: str) -> bool:
        query = select(RevokedToken.id).where(RevokedToken.jti == jti)
        return self.session.execute(query).first() is not None

    def revoke(self, principal: Principal, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        if self.is_revoked(principal.jti):
            return
        self.session.add(
            RevokedToken(
                jti=principal.jti,
                user_id=principal.user_id,
                expires_at=principal.expires_at or now + FALLBACK_REVOCATION_TTL,
                revoked_at=now,
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            # Revoked concurrently by another request.
            self.session.rollback()
            return
        logger.info("Revoked access token of user %s", principal.user_id)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop revocations of tokens that can no longer be presented."""
        now = now or utcnow()
        result = self.session.execute(delete(RevokedToken).where(RevokedToken.expires_at <= now))
        self.session.commit()
        return result.rowcount or 0


def _fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _from_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
