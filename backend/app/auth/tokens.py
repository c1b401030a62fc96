"""Bearer credential issuing and the connection authenticator.

Tokens are HS256 JWTs carrying the identity id in the ``id`` claim (older
tokens used ``userId``; both are accepted). ``ConnectionAuthenticator`` is
the single gate every WebSocket and HTTP request passes through before any
handler runs:

    token absent                      -> AuthenticationError("missing credential")
    bad signature / expired / garbage -> AuthenticationError("invalid credential")
    valid but no identity claim       -> AuthenticationError("malformed credential")
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

import jwt

from app.config import AppSettings
from app.errors import AuthenticationError

logger = logging.getLogger(__name__)

MISSING_CREDENTIAL = "missing credential"
INVALID_CREDENTIAL = "invalid credential"
MALFORMED_CREDENTIAL = "malformed credential"

# Claims that may carry the identity id, in priority order.
IDENTITY_CLAIMS = ("id", "userId")


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def token_from_handshake(
    query_params: Mapping[str, str],
    headers: Mapping[str, str],
) -> Optional[str]:
    """Find the credential in a WebSocket handshake.

    Browsers cannot set headers on WebSocket upgrades, so the ``token`` query
    parameter wins; the Authorization header is the fallback for other
    clients.
    """
    token = query_params.get("token")
    if token:
        return token
    return extract_bearer_token(headers.get("authorization"))


class ConnectionAuthenticator:
    """Validates bearer credentials and issues new ones.

    Args:
        secret_key: HMAC secret used to sign and verify tokens.
        algorithm: JWT algorithm (HS256 by default).
        expire_minutes: Lifetime of issued tokens.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 7 * 24 * 60,
    ) -> None:
        if not secret_key:
            raise ValueError("JWT secret is not configured")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._expire_minutes = expire_minutes

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "ConnectionAuthenticator":
        return cls(
            secret_key=settings.secrets.jwt.secret_key,
            algorithm=settings.secrets.jwt.algorithm,
            expire_minutes=settings.auth.token_expire_minutes,
        )

    def issue(self, identity_id: str, expires_in: Optional[timedelta] = None) -> str:
        """Sign a token for ``identity_id``."""
        now = datetime.now(timezone.utc)
        lifetime = expires_in if expires_in is not None else timedelta(minutes=self._expire_minutes)
        payload = {"id": str(identity_id), "iat": now, "exp": now + lifetime}
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def decode(self, token: Optional[str]) -> Dict[str, Any]:
        """Verify signature and expiry, returning the claims."""
        if not token:
            raise AuthenticationError(MISSING_CREDENTIAL)
        try:
            return jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            logger.info("[Auth] Rejected expired token")
            raise AuthenticationError(INVALID_CREDENTIAL)
        except jwt.InvalidTokenError as e:
            logger.info("[Auth] Rejected invalid token: %s", e)
            raise AuthenticationError(INVALID_CREDENTIAL)

    def authenticate(self, token: Optional[str]) -> str:
        """Return the identity id bound to ``token``.

        Raises:
            AuthenticationError: With one of the three rejection messages.
        """
        claims = self.decode(token)
        for claim in IDENTITY_CLAIMS:
            value = claims.get(claim)
            if value:
                return str(value)
        logger.info("[Auth] Rejected token without identity claim")
        raise AuthenticationError(MALFORMED_CREDENTIAL)
