"""CodeCollab realtime service configuration.

Loads settings from two YAML files:
  * codecollab.settings.yaml: non-secret configuration
  * codecollab.secrets.yaml: secrets (never committed)

Both files are optional; missing files fall back to defaults so the service
can start against a local Redis with an unconfigured AI provider.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("codecollab.settings.yaml")
SECRETS_FILE  = Path("codecollab.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class AnthropicSecrets(BaseModel):
    api_key: Optional[str] = None


class OpenAISecrets(BaseModel):
    api_key: Optional[str] = None


class RedisSecrets(BaseModel):
    password: Optional[str] = None


class ProjectServiceSecrets(BaseModel):
    service_token: Optional[str] = None


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    anthropic: AnthropicSecrets      = Field(default_factory=AnthropicSecrets)
    openai:    OpenAISecrets         = Field(default_factory=OpenAISecrets)
    redis:     RedisSecrets          = Field(default_factory=RedisSecrets)
    projects:  ProjectServiceSecrets = Field(default_factory=ProjectServiceSecrets)
    jwt:       JWTSecrets            = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:5174"]
    )


class RedisSettings(BaseModel):
    """Message cache connection and retention."""
    url:                    str   = "redis://localhost:6379/0"
    key_prefix:             str   = "project"
    max_messages:           int   = 1000
    socket_timeout_seconds: float = 5.0

    @field_validator("max_messages")
    @classmethod
    def _positive_capacity(cls, value: int) -> int:
        if value < 1:
            raise ValueError("redis.max_messages must be at least 1")
        return value


class ChatSettings(BaseModel):
    """Realtime room behaviour."""
    initial_page_size:  int   = 100
    default_page_size:  int   = 50
    max_page_size:      int   = 100
    ai_directive:       str   = "@ai"
    ai_timeout_seconds: float = 45.0
    # Project ids are ObjectId-shaped in the external project store
    room_id_pattern:    str   = r"^[0-9a-fA-F]{24}$"


class AuthSettings(BaseModel):
    cookie_name: str = "token"
    query_param: str = "token"


class AISettings(BaseModel):
    provider:   Literal["anthropic", "openai", "none"] = "none"
    model:      Optional[str]                          = None
    max_tokens: int                                    = 4096


class ProjectServiceSettings(BaseModel):
    """Where project records (membership, file tree) are read from."""
    backend:         Literal["memory", "http"] = "memory"
    base_url:        str                       = "http://localhost:3000"
    timeout_seconds: float                     = 10.0


class LoggingSettings(BaseModel):
    level: str = "info"


class AppSettings(BaseModel):
    server:   ServerSettings         = Field(default_factory=ServerSettings)
    redis:    RedisSettings          = Field(default_factory=RedisSettings)
    chat:     ChatSettings           = Field(default_factory=ChatSettings)
    auth:     AuthSettings           = Field(default_factory=AuthSettings)
    ai:       AISettings             = Field(default_factory=AISettings)
    projects: ProjectServiceSettings = Field(default_factory=ProjectServiceSettings)
    logging:  LoggingSettings        = Field(default_factory=LoggingSettings)
    secrets:  Secrets                = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Path = SETTINGS_FILE,
    secrets_path: Path = SECRETS_FILE,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, redis=%s, ai.provider=%s, projects.backend=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.redis.url,
        app_settings.ai.provider,
        app_settings.projects.backend,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(settings: Optional[AppSettings]) -> None:
    """Replace (or with None, reset) the cached settings."""
    global _config
    _config = settings
