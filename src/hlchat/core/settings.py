"""Gateway settings and configuration.

This module defines all configuration options for the chat gateway.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="HL Chat Gateway", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Session tokens issued by POST /auth
    jwt_secret: str = Field(alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    session_token_ttl_seconds: int = Field(
        default=24 * 60 * 60,
        alias="SESSION_TOKEN_TTL_SECONDS",
    )
    require_session_token: bool = Field(default=True, alias="REQUIRE_SESSION_TOKEN")
    login_message_template: str = Field(
        default="HyperLiquidChat login {timestamp}",
        alias="LOGIN_MESSAGE_TEMPLATE",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./hlchat.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    storage_timeout_seconds: float = Field(default=5.0, alias="STORAGE_TIMEOUT_SECONDS")

    # Freshness windows (absolute clock skew tolerated)
    message_freshness_seconds: int = Field(default=5 * 60, alias="MESSAGE_FRESHNESS_SECONDS")
    login_freshness_seconds: int = Field(default=2 * 60, alias="LOGIN_FRESHNESS_SECONDS")

    # Replay protection
    nonce_ttl_seconds: int = Field(default=10 * 60, alias="NONCE_TTL_SECONDS")
    nonce_sweep_interval_seconds: float = Field(
        default=5 * 60,
        alias="NONCE_SWEEP_INTERVAL_SECONDS",
    )

    # Fixed-window rate limiting per address
    rate_window_seconds: int = Field(default=60, alias="RATE_WINDOW_SECONDS")
    rate_max_messages: int = Field(default=30, alias="RATE_MAX_MESSAGES")

    max_content_length: int = Field(default=500, alias="MAX_CONTENT_LENGTH")

    # Name registry used to prove display-name ownership
    name_registry_url: str = Field(
        default="https://api.hlnames.xyz",
        alias="NAME_REGISTRY_URL",
    )
    name_registry_api_key: str | None = Field(default=None, alias="NAME_REGISTRY_API_KEY")
    name_registry_timeout_seconds: float = Field(
        default=5.0,
        alias="NAME_REGISTRY_TIMEOUT_SECONDS",
    )
    name_cache_ttl_seconds: int = Field(default=10 * 60, alias="NAME_CACHE_TTL_SECONDS")

    # CORS configuration for extension and web clients
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def message_freshness_ms(self) -> int:
        """Return the message freshness window in milliseconds."""
        return self.message_freshness_seconds * 1000

    @property
    def login_freshness_ms(self) -> int:
        """Return the login freshness window in milliseconds."""
        return self.login_freshness_seconds * 1000


settings = Settings()  # type: ignore[call-arg]
