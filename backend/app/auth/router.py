"""Auth router for signup/login endpoints.

Endpoints:
    POST /api/auth/signup - Create a user and return a bearer token
    POST /api/auth/login  - Exchange username/password for a bearer token
    GET  /api/auth/me     - Current user's profile

signup and login are plain ``def`` handlers: FastAPI runs them in its
threadpool, keeping bcrypt off the event loop.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.dependencies import get_current_identity, get_identity_service

from .schemas import AuthResponse, LoginRequest, SignupRequest, UserOut
from .service import IdentityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/signup", status_code=201)
def signup(
    body: SignupRequest,
    service: IdentityService = Depends(get_identity_service),
) -> JSONResponse:
    """Create a user.

    Returns:
        201 with {message, user, token}; 409 if the username is taken.
    """
    record, token = service.signup(body.username, body.password, body.displayName)
    response = AuthResponse(message="User created", user=UserOut.from_record(record), token=token)
    return JSONResponse(response.model_dump(), status_code=201)


@router.post("/login")
def login(
    body: LoginRequest,
    service: IdentityService = Depends(get_identity_service),
) -> AuthResponse:
    """Log in.

    Returns:
        {message, user, token}; 401 "Invalid credentials" on mismatch.
    """
    record, token = service.login(body.username, body.password)
    return AuthResponse(message="Login successful", user=UserOut.from_record(record), token=token)


@router.get("/me")
async def me(
    identity: str = Depends(get_current_identity),
    service: IdentityService = Depends(get_identity_service),
) -> dict:
    record = service.get_profile(identity)
    return {"user": UserOut.from_record(record).model_dump()}
