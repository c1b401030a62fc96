"""FastAPI dependencies.

Everything stateful lives on ``app.state`` (set up by the lifespan hook in
``app.main``); these helpers hand it to route handlers so nothing imports a
module-level instance.
"""
from typing import Optional

from fastapi import Depends, Header, Request

from app.auth.service import IdentityService
from app.auth.tokens import ConnectionAuthenticator, extract_bearer_token
from app.chat.manager import ChatManager
from app.store import DurableStore


def get_store(request: Request) -> DurableStore:
    return request.app.state.store


def get_chat(request: Request) -> ChatManager:
    return request.app.state.chat


def get_authenticator(request: Request) -> ConnectionAuthenticator:
    return request.app.state.authenticator


def get_identity_service(
    store: DurableStore = Depends(get_store),
    authenticator: ConnectionAuthenticator = Depends(get_authenticator),
) -> IdentityService:
    return IdentityService(store, authenticator)


def get_current_identity(
    authorization: Optional[str] = Header(default=None),
    authenticator: ConnectionAuthenticator = Depends(get_authenticator),
) -> str:
    """Resolve the identity id from the request's bearer token.

    Raises:
        AuthenticationError: Rendered as 401 by the app's exception handler.
    """
    return authenticator.authenticate(extract_bearer_token(authorization))
