"""Configuration management for the Xiaobao newspaper backend.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the XIAOBAO_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (XIAOBAO_* prefix)
2. .env file in the project root
3. Default values defined in XiaobaoConfig

Example .env file:
    XIAOBAO_KIE_API_KEY=sk-...
    XIAOBAO_ENVIRONMENT=production
    XIAOBAO_ALLOWED_ORIGINS=https://xiaobao.example.com,http://localhost:8080
    XIAOBAO_TASK_STORE_PATH=/var/lib/xiaobao/tasks.json

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The FastAPI application factory uses it unless a test passes its own
instance.

Mock Image Generation
---------------------
Without an API key the service can still run end to end in mock mode,
which produces a placeholder SVG instead of calling the provider:
- XIAOBAO_MOCK_IMAGE_GENERATION=true forces mock mode on
- XIAOBAO_MOCK_IMAGE_GENERATION=false forces it off (generate returns 503
  when no key is configured)
- unset: mock mode is on when no key is configured and the environment is
  not "production"
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class XiaobaoConfig(BaseSettings):
    """Main configuration for the Xiaobao backend.

    Attributes
    ----------
    Provider Settings:
        kie_api_key : str | None
            Bearer token for the Kie.ai job API; None disables the provider
        kie_base_url : str
            Base URL of the Kie.ai API
        kie_model : str
            Model identifier sent with every job
        request_timeout_s : float
            Timeout for a single provider request

    Polling Settings:
        poll_interval_s : float
            Delay between two status queries
        poll_max_attempts : int
            Number of status queries before the job is declared timed out

    Mock Settings:
        mock_image_generation : bool | None
            Explicit mock toggle; None derives it from the environment
        mock_delay_s : float
            Artificial delay before a mock result is produced

    Storage:
        task_store_path : Path
            JSON file holding the task snapshot

    Server Settings:
        environment : Literal["development", "production", "test"]
        allowed_origins : str
            Comma-separated CORS origins; empty allows every origin
        server_host / server_port : uvicorn bind address
        log_level : str
        callback_timeout_s : float
            Timeout for a single callback delivery
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="XIAOBAO_",
        case_sensitive=False,
        extra="ignore",
    )

    # Provider settings
    kie_api_key: str | None = Field(
        default=None,
        description="Kie.ai API key; leave unset to run without a provider",
    )
    kie_base_url: str = Field(
        default="https://api.kie.ai",
        description="Base URL of the Kie.ai job API",
    )
    kie_model: str = Field(
        default="nano-banana-pro",
        description="Model identifier submitted with each job",
    )
    request_timeout_s: float = Field(default=30.0, gt=0)

    # Polling settings
    poll_interval_s: float = Field(
        default=3.0,
        description="Seconds between two status queries",
        ge=0,
    )
    poll_max_attempts: int = Field(
        default=60,
        description="Status queries before a job is declared timed out",
        ge=1,
    )

    # Mock settings
    mock_image_generation: bool | None = Field(
        default=None,
        description="Force mock generation on/off; unset derives it from the environment",
    )
    mock_delay_s: float = Field(default=0.0, ge=0)

    # Storage
    task_store_path: Path = Field(
        default=Path(".runtime/tasks.json"),
        description="JSON file holding the persisted task snapshot",
    )

    # Server settings
    environment: Literal["development", "production", "test"] = Field(
        default="development",
    )
    allowed_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins",
    )
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=3000, ge=1, le=65535)
    log_level: str = Field(default="info")
    callback_timeout_s: float = Field(default=10.0, gt=0)

    @property
    def provider_configured(self) -> bool:
        """Whether real generation through the provider is possible."""
        return bool(self.kie_api_key)

    @property
    def mock_enabled(self) -> bool:
        """Resolve the effective mock mode (explicit toggle wins)."""
        if self.mock_image_generation is not None:
            return self.mock_image_generation
        return self.environment != "production" and not self.provider_configured

    @property
    def allowed_origin_list(self) -> list[str]:
        """Parse ``allowed_origins``; an empty result means allow all."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


# Global configuration instance
# Loaded from XIAOBAO_* environment variables and the .env file.
config = XiaobaoConfig()
