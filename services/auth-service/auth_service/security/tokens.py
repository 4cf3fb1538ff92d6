"""Issuing and verifying session JWTs, plus password-reset token helpers."""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import jwt

from ..errors import ConfigurationError, TokenVerificationError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEVELOPMENT_SECRET = "church-planner-development-secret-do-not-use-in-production"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class IssuedToken:
    token: str
    issued_at: datetime
    expires_at: datetime
    expires_in: int


@dataclass(frozen=True, slots=True)
class VerifiedToken:
    account_id: str
    issued_at: datetime
    expires_at: datetime


def resolve_signing_secret(settings) -> str:
    """Return the configured secret, falling back to a development secret outside production.

    Raises
    ------
    ConfigurationError
        When running with the production profile and no secret is configured.
    """
    if settings.jwt_secret:
        return settings.jwt_secret
    if settings.is_production:
        raise ConfigurationError("JWT_SECRET must be set in the production environment")
    logger.warning(
        "JWT_SECRET not set; using the fixed development secret (environment=%s)",
        settings.environment,
    )
    return DEVELOPMENT_SECRET


class TokenService:
    """Stateless signer/verifier for session tokens."""

    def __init__(self, settings, clock: Callable[[], datetime] = utcnow) -> None:
        self._secret = resolve_signing_secret(settings)
        self._issuer = settings.jwt_issuer
        self._ttl = timedelta(seconds=settings.jwt_ttl_seconds)
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self, account_id: str) -> IssuedToken:
        """Create a signed token whose subject is ``account_id``.

        Only the subject is embedded; role and tenant are read live on every
        request so revocations apply before the token expires.
        """
        now = _to_millis(self._clock())
        expires_at = now.replace(microsecond=0) + self._ttl
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": account_id,
            "iat": _epoch_millis(now) / 1000,
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        return IssuedToken(
            token=token,
            issued_at=now,
            expires_at=expires_at,
            expires_in=self.ttl_seconds,
        )

    def verify(self, token: str) -> VerifiedToken:
        """Decode and verify ``token``.

        Raises
        ------
        TokenVerificationError
            On any signature mismatch, malformed structure, wrong issuer or expiry.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self._issuer,
                options={"require": ["sub", "iat", "exp", "iss"]},
            )
        except jwt.PyJWTError as exc:
            raise TokenVerificationError() from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise TokenVerificationError()
        return VerifiedToken(
            account_id=subject,
            issued_at=_from_epoch_millis(round(float(claims["iat"]) * 1000)),
            expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
        )


def _to_millis(moment: datetime) -> datetime:
    return moment.replace(microsecond=moment.microsecond // 1000 * 1000)


def _epoch_millis(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def _from_epoch_millis(millis: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)


def generate_reset_token() -> tuple[str, str]:
    """Generate a password-reset token string and its SHA-256 hash."""
    token = secrets.token_urlsafe(32)
    return token, hash_reset_token(token)


def hash_reset_token(token: str) -> str:
    """Return the SHA-256 hex digest for a reset token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
