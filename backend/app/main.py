"""TeamChat Backend Application.

This is the main entry point for the TeamChat backend service: a realtime
team chat with channels, live presence and persisted message history.

Modules:
    - chat: WebSocket endpoint, presence registry, rooms and message pipeline
    - auth: signup/login and bearer-token validation
    - channels: channel listing, creation and persisted membership
    - messages: history pagination and HTTP message send/delete
    - store: DuckDB-backed durable store

Run with::

    uvicorn app.main:app --host 0.0.0.0 --port 5000
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.auth.router import router as auth_router
from app.auth.tokens import ConnectionAuthenticator
from app.channels.router import router as channels_router
from app.chat.manager import ChatManager
from app.chat.router import router as chat_router
from app.config import AppSettings, get_config
from app.errors import ChatError
from app.messages.router import router as messages_router
from app.store import DuckDBStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# httpx/httpcore log every request made by the test client; uvicorn's access
# log duplicates the router-level logging.
for _noisy in (
    "httpx",
    "httpcore",
    "uvicorn.access",
    "multipart",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppSettings = app.state.settings or get_config()
    app.state.settings = config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in teamchat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    if not config.has_usable_jwt_secret():
        raise RuntimeError(
            "No JWT secret configured. Set jwt.secret_key in teamchat.secrets.yaml "
            "or the TEAMCHAT_JWT_SECRET environment variable."
        )
    if config.auth.allow_insecure_secret:
        logger.warning("auth.allow_insecure_secret is set; do not use this in production")

    store = DuckDBStore(config.database.path)
    authenticator = ConnectionAuthenticator.from_settings(config)
    chat = ChatManager(store, authenticator, settings=config.chat)

    app.state.store = store
    app.state.authenticator = authenticator
    app.state.chat = chat
    logger.info(
        f"TeamChat ready on http://{config.server.host}:{config.server.port} "
        f"(database={config.database.path})"
    )

    yield  # Application runs here

    # Shutdown
    await chat.drain()
    chat.close()
    store.close()
    logger.info("Application shutdown complete")


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[HTTP] {request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse({"message": exc.message}, status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse({"message": "Validation error", "details": details}, status_code=400)


def create_app(config: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application.

    Nothing is opened here: the store and chat manager are created by the
    lifespan hook, from ``config`` or, when it is None, from ``get_config()``.

    Args:
        config: Settings to run with (tests pass an in-memory database and
            a test JWT secret).
    """
    settings = config or get_config()

    application = FastAPI(
        title="TeamChat API",
        description="Realtime team chat with channels, presence and message history",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = config

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(ChatError, chat_error_handler)
    application.add_exception_handler(RequestValidationError, request_validation_handler)

    # Register all routers
    application.include_router(chat_router)
    application.include_router(auth_router)
    application.include_router(channels_router)
    application.include_router(messages_router)

    @application.get("/health")
    async def health(request: Request) -> dict:
        """Health check endpoint.

        Returns:
            dict: Status plus live presence counts.
        """
        chat: ChatManager = request.app.state.chat
        return {
            "status": "ok",
            "onlineUsers": len(chat.presence.online_identities()),
            "connections": chat.rooms.connection_count(),
        }

    return application


app = create_app()
