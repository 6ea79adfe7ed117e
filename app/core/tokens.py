"""Signed access/refresh token issuance and validation (JWT, HMAC)."""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt

from app.core.clock import Clock, SystemClock

if TYPE_CHECKING:
    from app.core.config import Settings
    from app.services.stores import Account

logger = logging.getLogger(__name__)

REFRESH_TOKEN_TYPE = "refresh"
# Claims every token must carry before any of our own checks run.
_REQUIRED_CLAIMS = ["exp", "iat", "sub", "jti", "iss", "aud"]


@dataclass(frozen=True)
class TokenSettings:
    """Signing key, identity and lifetimes for issued tokens."""

    secret: str
    algorithm: str = "HS256"
    issuer: str = "Trivare"
    audience: str = "Trivare"
    access_token_minutes: int = 15
    refresh_token_days: int = 7

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("TokenSettings requires a non-empty secret")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TokenSettings":
        return cls(
            secret=settings.JWT_SECRET.get_secret_value(),
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            access_token_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
            refresh_token_days=settings.REFRESH_TOKEN_EXPIRE_DAYS,
        )


@dataclass(frozen=True)
class AccessClaims:
    """Verified contents of an access token."""

    account_id: uuid.UUID
    email: str
    roles: tuple[str, ...]
    jti: str
    expires_at: datetime


class TokenIssuer:
    """
    Creates and validates signed access and refresh tokens.

    Validation needs only the signing settings and the clock, so it is safe to
    run concurrently from any number of requests or replicas. Expiry is checked
    against the injected clock with zero leeway: a token whose exp equals now is
    already expired.
    """

    def __init__(self, token_settings: TokenSettings, clock: Clock | None = None) -> None:
        self._settings = token_settings
        self._clock = clock or SystemClock()

    @property
    def access_expires_in(self) -> int:
        """Access token lifetime in seconds."""
        return self._settings.access_token_minutes * 60

    @property
    def refresh_lifetime(self) -> timedelta:
        return timedelta(days=self._settings.refresh_token_days)

    def _base_claims(self, subject: str, lifetime: timedelta) -> dict[str, Any]:
        now = self._clock.now()
        return {
            "sub": subject,
            "jti": str(uuid.uuid4()),
            "iss": self._settings.issuer,
            "aud": self._settings.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
        }

    def _encode(self, claims: dict[str, Any]) -> str:
        return jwt.encode(claims, self._settings.secret, algorithm=self._settings.algorithm)

    def _decode(self, token: str) -> dict[str, Any] | None:
        """Verify signature, issuer, audience and expiry; None on any failure."""
        if not token or not isinstance(token, str):
            return None
        # Compact JWS is base64url plus dots; anything else cannot be a token of ours.
        if not token.isascii():
            logger.warning("Token rejected: non-ASCII characters")
            return None
        try:
            payload = jwt.decode(
                token,
                self._settings.secret,
                algorithms=[self._settings.algorithm],
                audience=self._settings.audience,
                issuer=self._settings.issuer,
                # exp/iat are checked against the injected clock below.
                options={"verify_exp": False, "verify_iat": False, "require": _REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError as e:
            logger.warning("Token rejected: %s", type(e).__name__)
            return None
        try:
            exp = int(payload["exp"])
        except (TypeError, ValueError):
            logger.warning("Token rejected: non-numeric exp")
            return None
        if exp <= int(self._clock.now().timestamp()):
            logger.warning("Token rejected: expired")
            return None
        return payload

    def issue_access_token(self, account: "Account") -> str:
        """Short-lived token carrying subject, email and role claims."""
        claims = self._base_claims(
            str(account.id),
            timedelta(minutes=self._settings.access_token_minutes),
        )
        claims["email"] = account.email
        claims["roles"] = sorted(account.role_names)
        return self._encode(claims)

    def issue_refresh_token(self, account_id: uuid.UUID) -> str:
        """Long-lived token that can only be exchanged for a new pair."""
        claims = self._base_claims(str(account_id), self.refresh_lifetime)
        claims["type"] = REFRESH_TOKEN_TYPE
        return self._encode(claims)

    def validate_refresh_token(self, token: str) -> uuid.UUID | None:
        """Return the subject account id, or None for any invalid token."""
        payload = self._decode(token)
        if payload is None:
            return None
        if payload.get("type") != REFRESH_TOKEN_TYPE:
            logger.warning("Refresh token rejected: wrong token type")
            return None
        try:
            return uuid.UUID(str(payload["sub"]))
        except (TypeError, ValueError):
            logger.warning("Refresh token rejected: invalid subject")
            return None

    def decode_access_token(self, token: str) -> AccessClaims | None:
        """Return verified access claims, or None (refresh tokens are rejected)."""
        payload = self._decode(token)
        if payload is None:
            return None
        if "type" in payload:
            logger.warning("Access token rejected: typed token presented")
            return None
        try:
            account_id = uuid.UUID(str(payload["sub"]))
        except (TypeError, ValueError):
            logger.warning("Access token rejected: invalid subject")
            return None
        roles = payload.get("roles") or []
        if not isinstance(roles, list):
            return None
        return AccessClaims(
            account_id=account_id,
            email=str(payload.get("email", "")),
            roles=tuple(str(r) for r in roles),
            jti=str(payload["jti"]),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
        )
