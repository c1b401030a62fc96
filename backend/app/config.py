"""TeamChat application configuration.

Loads settings from two YAML files:
  * teamchat.settings.yaml  — non-secret configuration
  * teamchat.secrets.yaml   — secrets (never committed)

A couple of values can be overridden from the environment so containers do
not need a secrets file:
  * TEAMCHAT_JWT_SECRET  — jwt.secret_key
  * TEAMCHAT_DB_PATH     — database.path
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("teamchat.settings.yaml")
SECRETS_FILE  = Path("teamchat.secrets.yaml")

INSECURE_JWT_SECRET = "change-me-in-production"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = INSECURE_JWT_SECRET
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 5000
    allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5500", "http://localhost:3000"]
    )


class LoggingSettings(BaseModel):
    level: str = "info"


class DatabaseSettings(BaseModel):
    path: str = "teamchat.duckdb"


class AuthSettings(BaseModel):
    token_expire_minutes:  int  = 7 * 24 * 60
    # Development/test escape hatch for running with the placeholder secret.
    allow_insecure_secret: bool = False


class ChatSettings(BaseModel):
    default_page_size:    int   = Field(default=20, ge=1)
    max_page_size:        int   = Field(default=100, ge=1)
    max_message_length:   int   = Field(default=2000, ge=1)
    send_timeout_seconds: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _default_not_above_max(self) -> "ChatSettings":
        if self.default_page_size > self.max_page_size:
            self.default_page_size = self.max_page_size
        return self


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)

    def has_usable_jwt_secret(self) -> bool:
        """True when a real JWT secret is configured (or insecure mode is allowed)."""
        secret = self.secrets.jwt.secret_key
        if not secret:
            return False
        if secret == INSECURE_JWT_SECRET:
            return self.auth.allow_insecure_secret
        return True


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(settings: AppSettings) -> None:
    jwt_secret = os.environ.get("TEAMCHAT_JWT_SECRET")
    if jwt_secret:
        settings.secrets.jwt.secret_key = jwt_secret
        logger.info("JWT secret taken from TEAMCHAT_JWT_SECRET.")

    db_path = os.environ.get("TEAMCHAT_DB_PATH")
    if db_path:
        settings.database.path = db_path
        logger.info("Database path taken from TEAMCHAT_DB_PATH: %s", db_path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Path = SETTINGS_FILE,
    secrets_file: Path = SECRETS_FILE,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_file)
    secrets_data  = _load_yaml(secrets_file)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    _apply_env_overrides(app_settings)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, log_level=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.logging.level,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(settings: AppSettings) -> None:
    """Replace the process-wide settings (tests, embedding)."""
    global _config
    _config = settings


def reset_config() -> None:
    """Forget cached settings so the next get_config() reloads from disk."""
    global _config
    _config = None
