"""Configuration management for PixelPrompt.

This module provides centralized configuration management using Pydantic
Settings.  All configuration is loaded from environment variables with the
``PIXELPROMPT_`` prefix, so deployments can change behaviour without code
changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:

1. Keyword arguments passed to :class:`PixelpromptConfig`
2. Environment variables (``PIXELPROMPT_*`` prefix)
3. ``.env`` file in the working directory
4. Default values defined in :class:`PixelpromptConfig`

Example ``.env`` file::

    PIXELPROMPT_DATABASE_URL=sqlite+aiosqlite:///pixelprompt.db
    PIXELPROMPT_OPENAI_API_KEY=sk-...
    PIXELPROMPT_CLOUDINARY_CLOUD_NAME=demo
    PIXELPROMPT_CLOUDINARY_API_KEY=1234
    PIXELPROMPT_CLOUDINARY_API_SECRET=secret
    PIXELPROMPT_ALLOWED_ORIGINS=http://localhost:3000,https://pixelprompt.app

Required Settings
-----------------
The database URL, the OpenAI API key, and the three Cloudinary credentials
have no defaults.  Constructing the configuration without them raises a
:class:`pydantic.ValidationError`, which stops the server before it accepts
any request.

No Global Instance
------------------
There is no module-level configuration object.  :func:`load_config` builds
one at startup and the application factory passes it to every service that
needs it::

    from pixelprompt.api.main import create_app
    from pixelprompt.core.config import load_config

    app = create_app(load_config())
"""

import logging
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(levelname)s - %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class PixelpromptConfig(BaseSettings):
    """Main configuration for the PixelPrompt server.

    Attributes
    ----------
    Runtime:
        environment : Literal["development", "production", "test"]
            Deployment mode.  Anything other than ``production`` attaches
            stack traces to error responses.
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Bind port for uvicorn (1024-65535).
        log_level : str
            Root log level.

    Persistence:
        database_url : str
            SQLAlchemy async connection URI for the image store.

    External providers:
        openai_api_key : SecretStr
            API key for the OpenAI Images API.
        openai_image_model : str
            Image model name sent to OpenAI.
        cloudinary_cloud_name / cloudinary_api_key / cloudinary_api_secret
            Cloudinary credentials.
        media_folder : str
            Cloudinary folder that receives generated images.
        request_timeout_seconds : float
            Wall-clock limit for every outbound call.

    HTTP surface:
        allowed_origins : str
            Comma-separated list of CORS origins.
        rate_limit_window_ms / rate_limit_max_requests
            General per-address quota (default 100 requests / 15 minutes).
        image_generation_rate_limit_window_ms /
        image_generation_rate_limit_max_requests
            Image generation quota (default 5 requests / minute).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PIXELPROMPT_",
        case_sensitive=False,
        extra="ignore",
    )

    # Runtime
    environment: Literal["development", "production", "test"] = Field(
        default="development",
        description="Deployment mode",
    )
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=8080,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(default="INFO", description="Root log level")

    # Persistence
    database_url: str = Field(
        ...,
        min_length=1,
        description="SQLAlchemy async URI, e.g. sqlite+aiosqlite:///pixelprompt.db",
    )

    # Image generation provider
    openai_api_key: SecretStr = Field(..., description="OpenAI API key")
    openai_image_model: str = Field(default="dall-e-2", description="OpenAI image model")

    # Media hosting provider
    cloudinary_cloud_name: str = Field(..., min_length=1, description="Cloudinary cloud name")
    cloudinary_api_key: SecretStr = Field(..., description="Cloudinary API key")
    cloudinary_api_secret: SecretStr = Field(..., description="Cloudinary API secret")
    media_folder: str = Field(
        default="ai-generated-images",
        description="Cloudinary folder for generated images",
    )

    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout applied to each outbound network call",
    )

    # HTTP surface
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )
    rate_limit_window_ms: int = Field(default=15 * 60 * 1000, ge=1)
    rate_limit_max_requests: int = Field(default=100, ge=1)
    image_generation_rate_limit_window_ms: int = Field(default=60 * 1000, ge=1)
    image_generation_rate_limit_max_requests: int = Field(default=5, ge=1)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cors_origins(self) -> list[str]:
        """Parsed :attr:`allowed_origins`, blanks removed."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


def load_config(**overrides) -> PixelpromptConfig:
    """Build the configuration from the environment plus explicit overrides."""
    return PixelpromptConfig(**overrides)


def setup_logging(level: str = "INFO") -> None:
    """Configure console logging for the whole process.

    Existing root handlers are replaced so repeated calls (e.g. in tests) do
    not duplicate log lines.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())
