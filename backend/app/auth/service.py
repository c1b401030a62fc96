"""Identity service: signup, login and profile lookup.

Passwords are reduced to a base64 SHA-256 digest and then hashed with bcrypt,
so passwords of any length fit bcrypt's 72-byte input limit. Only the hash
is stored. Tokens are minted by the shared ``ConnectionAuthenticator`` so
HTTP and WebSocket credentials are interchangeable.
"""
import base64
import hashlib
import logging
from typing import Optional, Tuple

import bcrypt

from app.errors import AuthenticationError, NotFoundError
from app.store import DurableStore, IdentityRecord

from .tokens import ConnectionAuthenticator

logger = logging.getLogger(__name__)


def _prehash(password: str) -> bytes:
    # 44 ASCII bytes, no NULs
    return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_prehash(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_prehash(password), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


class IdentityService:
    """Creates and authenticates users against the durable store."""

    def __init__(self, store: DurableStore, authenticator: ConnectionAuthenticator) -> None:
        self._store = store
        self._authenticator = authenticator

    def signup(
        self, username: str, password: str, display_name: Optional[str] = None
    ) -> Tuple[IdentityRecord, str]:
        """Register a user and return it with a fresh token.

        Raises:
            ConflictError: If the username is already taken.
        """
        username = username.strip().lower()
        record = self._store.create_identity(
            username=username,
            display_name=(display_name or "").strip() or username,
            password_hash=hash_password(password),
        )
        logger.info("[Auth] Signed up %s as %s", username, record.id)
        return record, self._authenticator.issue(record.id)

    def login(self, username: str, password: str) -> Tuple[IdentityRecord, str]:
        """Check credentials and return the user with a fresh token."""
        record = self._store.find_identity_by_username(username)
        if record is None or not verify_password(password, record.password_hash):
            logger.info("[Auth] Failed login for %s", username.strip().lower())
            raise AuthenticationError("Invalid credentials")
        return record, self._authenticator.issue(record.id)

    def get_profile(self, identity_id: str) -> IdentityRecord:
        record = self._store.find_identity(identity_id)
        if record is None:
            raise NotFoundError("User not found")
        return record
