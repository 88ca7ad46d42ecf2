"""Issue and verify one-time check-in tokens.

Only the keyed hash of a token is persisted; the plaintext leaves the
service once, inside the registration email.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
import string
from dataclasses import dataclass
from typing import Optional

TOKEN_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class IssuedToken:
    plaintext: str
    token_hash: str


class TokenIssuer:
    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("A token hashing secret is required.")
        self._secret = secret.encode("utf-8")

    def issue(self, length: int = 10) -> IssuedToken:
        if length < 1:
            raise ValueError("Token length must be positive.")
        plaintext = "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))
        return IssuedToken(plaintext=plaintext, token_hash=self.hash(plaintext))

    def hash(self, plaintext: str) -> str:
        normalized = self._normalize(plaintext)
        return hmac.new(self._secret, normalized.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, plaintext: Optional[str], token_hash: Optional[str]) -> bool:
        if not plaintext or not token_hash:
            return False
        return hmac.compare_digest(self.hash(plaintext), token_hash)

    @staticmethod
    def _normalize(value: str) -> str:
        return value.strip()
