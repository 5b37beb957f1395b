"""Runtime configuration.

Loaded from environment variables with the ``STOREFRONT_`` prefix (or a
``.env`` file). The document-store connection keeps the plain
``DATABASE_URL`` / ``DATABASE_NAME`` names.
"""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorefrontSettings(BaseSettings):
    """Settings shared by the client services and the API server.

    Example:
        >>> settings = StorefrontSettings(api_base_url="http://localhost:8000")
        >>> settings.wishlist_refresh_interval_seconds
        300.0
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    api_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the storefront API server",
    )
    identity_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Web API key of the identity provider project",
    )
    identity_base_url: str = Field(
        default="https://identitytoolkit.googleapis.com/v1",
        description="Identity provider account endpoint",
    )
    token_base_url: str = Field(
        default="https://securetoken.googleapis.com/v1",
        description="Identity provider token refresh endpoint",
    )
    cart_path: Path = Field(
        default=Path.home() / ".storefront" / "cart.json",
        description="File holding the locally persisted cart",
    )
    wishlist_refresh_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Interval between background wishlist refreshes",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Client-side timeout for every HTTP request",
    )
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_initial_wait_seconds: float = Field(default=0.5, ge=0.0, le=30.0)
    retry_max_wait_seconds: float = Field(default=5.0, ge=0.0, le=300.0)
    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "STOREFRONT_DATABASE_URL"),
    )
    database_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_NAME", "STOREFRONT_DATABASE_NAME"),
    )
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator("api_base_url", "identity_base_url", "token_base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            msg = f"URL must start with http:// or https://, got: {v}"
            raise ValueError(msg)
        return v.rstrip("/")


def get_settings() -> StorefrontSettings:
    return StorefrontSettings()
