from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import hashlib
import hmac
import json
import logging
import os
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import User

from .permissions import AdminPolicy

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class SessionConfig:
    secret: str
    ttl_s: int
    cookie_name: str


def load_session_config() -> SessionConfig:
    return SessionConfig(
        secret=os.getenv("SESSION_SECRET", ""),
        ttl_s=int(os.getenv("SESSION_TTL_S", str(30 * 24 * 3600))),
        cookie_name=os.getenv("SESSION_COOKIE", "oauth-token"),
    )


@dataclass(eq=False)
class AuthError(Exception):
    kind: str
    message: str = ""

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"

    def __str__(self) -> str:
        if self.message:
            return f"{self.kind}: {self.message}"
        return self.kind


@dataclass(frozen=True)
class Claim:
    user_id: int
    issued_at: datetime
    expires_at: datetime


@dataclass
class Identity:
    user: User | None = None
    user_id: int | None = None
    claim: Claim | None = None
    is_admin: bool = False
    warning: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.claim is not None


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionAuthenticator:
    def __init__(self, secret: str, *, ttl_s: int = 30 * 24 * 3600, clock: Clock | None = None) -> None:
        if not secret:
            raise RuntimeError("SESSION_SECRET is not set")
        self._secret = secret.encode("utf-8")
        self._ttl = timedelta(seconds=ttl_s)
        self._clock = clock or _utcnow

    @classmethod
    def from_config(cls, config: SessionConfig, clock: Clock | None = None) -> SessionAuthenticator:
        return cls(config.secret, ttl_s=config.ttl_s, clock=clock)

    def _sign(self, payload_b64: str) -> str:
        digest = hmac.new(self._secret, payload_b64.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)

    def issue(self, user_id: int) -> str:
        now = self._clock()
        payload = {
            "uid": int(user_id),
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
        }
        payload_b64 = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return f"{payload_b64}.{self._sign(payload_b64)}"

    def authenticate(self, raw_token: str) -> Claim:
        parts = (raw_token or "").split(".")
        if len(parts) != 2 or not all(parts):
            raise AuthError(AuthError.MALFORMED, "expected two token segments")
        payload_b64, signature = parts
        try:
            payload_b64.encode("ascii")
            signature.encode("ascii")
        except UnicodeEncodeError as exc:
            raise AuthError(AuthError.MALFORMED, "non-ascii token") from exc

        if not hmac.compare_digest(self._sign(payload_b64), signature):
            raise AuthError(AuthError.BAD_SIGNATURE)

        try:
            payload = json.loads(_b64decode(payload_b64))
            user_id = int(payload["uid"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), UTC)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), UTC)
        except (binascii.Error, ValueError, TypeError, KeyError, OverflowError) as exc:
            raise AuthError(AuthError.MALFORMED, str(exc)) from exc

        if self._clock() >= expires_at:
            raise AuthError(AuthError.EXPIRED)
        return Claim(user_id=user_id, issued_at=issued_at, expires_at=expires_at)


def resolve_identity(
    session: Session,
    raw_token: str | None,
    authenticator: SessionAuthenticator | None,
    policy: AdminPolicy,
) -> Identity:
    if not raw_token:
        return Identity()
    if authenticator is None:
        raise AuthError(AuthError.MALFORMED, "session verification is not configured")
    claim = authenticator.authenticate(raw_token)

    identity = Identity(user_id=claim.user_id, claim=claim)
    try:
        identity.user = session.get(User, claim.user_id)
    except SQLAlchemyError as exc:
        session.rollback()
        identity.warning = f"load user from db: {exc}"
        logger.warning("load user from db failed", extra={"user_id": claim.user_id}, exc_info=exc)
    else:
        if identity.user is None:
            identity.warning = f"load user from db: user {claim.user_id} not found"
            logger.warning("load user from db failed: user %s not found", claim.user_id)
    identity.is_admin = policy.is_admin(claim.user_id)
    return identity
