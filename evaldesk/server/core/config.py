"""
Configuration Settings.

This module defines the application configuration using Pydantic's BaseSettings.
It automatically loads all configuration from environment variables and .env file
without explicit dotenv loading.
"""

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# =====================================================================
# Grouped Configuration Models
# =====================================================================


class PostgreSQLConfig(BaseModel):
    """PostgreSQL database configuration."""

    db: str = Field(default="evaldesk", alias="POSTGRES_DB", description="PostgreSQL database name")
    user: str = Field(default="evaldesk", alias="POSTGRES_USER", description="PostgreSQL database user")
    password: str = Field(default="changeme", alias="POSTGRES_PASSWORD", description="PostgreSQL database password")
    host: str = Field(default="postgres", alias="POSTGRES_HOST", description="PostgreSQL database host address")
    port: int = Field(default=5432, alias="POSTGRES_PORT", description="PostgreSQL database port number")

    model_config = {"populate_by_name": True}

    @property
    def url(self) -> str:
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


class CORSConfig(BaseModel):
    """CORS configuration."""

    origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS", description="Allowed CORS origins (use * for all)")
    allow_credentials: bool = Field(
        default=True, alias="CORS_ALLOW_CREDENTIALS", description="Allow credentials in CORS requests"
    )
    allow_methods: list[str] = Field(
        default=["*"], alias="CORS_ALLOW_METHODS", description="Allowed HTTP methods (use * for all)"
    )
    allow_headers: list[str] = Field(
        default=["*"], alias="CORS_ALLOW_HEADERS", description="Allowed HTTP headers (use * for all)"
    )

    model_config = {"populate_by_name": True}


class SandboxConfig(BaseModel):
    """Container sandbox configuration for student code and SQL."""

    code_image: str = Field(
        default="node:latest", alias="SANDBOX_CODE_IMAGE", description="Default image for code questions"
    )
    database_image: str = Field(
        default="postgres:latest", alias="SANDBOX_DATABASE_IMAGE", description="Default image for database questions"
    )
    before_all_timeout_seconds: float = Field(
        default=10.0, alias="SANDBOX_BEFORE_ALL_TIMEOUT", description="Timeout of the before-all command"
    )
    execution_timeout_seconds: float = Field(
        default=3.0, alias="SANDBOX_EXECUTION_TIMEOUT", description="Timeout of a single test execution"
    )
    database_timeout_seconds: float = Field(
        default=5.0, alias="SANDBOX_DATABASE_TIMEOUT", description="Timeout of a whole database query run"
    )
    max_output_kb: int = Field(
        default=32, alias="SANDBOX_MAX_OUTPUT_KB", description="Output captured per execution, in kilobytes"
    )
    code_cpu_quota: float = Field(default=0.3, alias="SANDBOX_CODE_CPU", description="CPU cores for code containers")
    code_memory_gb: float = Field(
        default=0.25, alias="SANDBOX_CODE_MEMORY_GB", description="Memory limit of code containers in GB"
    )
    database_cpu_quota: float = Field(
        default=0.35, alias="SANDBOX_DATABASE_CPU", description="CPU cores for database containers"
    )
    database_memory_gb: float = Field(
        default=0.5, alias="SANDBOX_DATABASE_MEMORY_GB", description="Memory limit of database containers in GB"
    )

    model_config = {"populate_by_name": True}


class SSEConfig(BaseModel):
    """Server-sent events configuration."""

    max_connections_per_user: int = Field(
        default=5, alias="SSE_MAX_CONNECTIONS_PER_USER", description="Open streams allowed per user"
    )
    heartbeat_seconds: float = Field(
        default=60.0, alias="SSE_HEARTBEAT_SECONDS", description="Interval of the keep-alive comment"
    )

    model_config = {"populate_by_name": True}


class AuthConfig(BaseModel):
    """Session authentication configuration."""

    session_cookie: str = Field(
        default="evaldesk.session-token", alias="AUTH_SESSION_COOKIE", description="Name of the session cookie"
    )
    session_max_age_seconds: int = Field(
        default=24 * 60 * 60, alias="AUTH_SESSION_MAX_AGE_SECONDS", description="Lifetime of a session"
    )
    signin_secret: Optional[str] = Field(
        default=None,
        alias="AUTH_SIGNIN_SECRET",
        description="Shared secret of the identity proxy allowed to open sessions; sign-in is disabled when unset",
    )

    model_config = {"populate_by_name": True}


class StatisticsConfig(BaseModel):
    """Administrative statistics configuration."""

    excluded_groups: list[str] = Field(
        default=["demo", "test"],
        alias="STATISTICS_EXCLUDED_GROUPS",
        description="Group scopes ignored when computing platform statistics",
    )

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Application settings model.

    All properties are automatically bound from environment variables and .env file.
    Pydantic's BaseSettings handles dotenv loading automatically via model_config.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    # =====================================================================
    # Server Configuration
    # =====================================================================
    server_host: str = Field(
        default="0.0.0.0",
        description="evaldesk server host address to bind to",
        alias="EVALDESK_SERVER_HOST",
    )
    server_port: int = Field(
        default=8000,
        description="evaldesk server port number",
        alias="EVALDESK_SERVER_PORT",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="EVALDESK_LOG_LEVEL",
    )
    log_format: str = Field(default="detailed", description="Log format (simple, detailed, json)", alias="LOG_FORMAT")
    log_file_dir: str = Field(default="logs", description="Directory of the log file", alias="LOG_FILE_DIR")
    enable_file_logging: bool = Field(
        default=False, description="Write logs to a file as well", alias="ENABLE_FILE_LOGGING"
    )

    # =====================================================================
    # Database Configuration
    # =====================================================================
    database_url: Optional[str] = Field(
        default=None,
        description="Async database connection URL; built from POSTGRES_* when unset",
        alias="DATABASE_URL",
    )

    # Grouped settings are read from the same flat environment
    postgres_db: str = Field(default="evaldesk", alias="POSTGRES_DB")
    postgres_user: str = Field(default="evaldesk", alias="POSTGRES_USER")
    postgres_password: str = Field(default="changeme", alias="POSTGRES_PASSWORD")
    postgres_host: str = Field(default="postgres", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")

    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(default=["*"], alias="CORS_ALLOW_METHODS")
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    sandbox_code_image: str = Field(default="node:latest", alias="SANDBOX_CODE_IMAGE")
    sandbox_database_image: str = Field(default="postgres:latest", alias="SANDBOX_DATABASE_IMAGE")
    sandbox_execution_timeout: float = Field(default=3.0, alias="SANDBOX_EXECUTION_TIMEOUT")
    sandbox_before_all_timeout: float = Field(default=10.0, alias="SANDBOX_BEFORE_ALL_TIMEOUT")
    sandbox_database_timeout: float = Field(default=5.0, alias="SANDBOX_DATABASE_TIMEOUT")
    sandbox_max_output_kb: int = Field(default=32, alias="SANDBOX_MAX_OUTPUT_KB")
    sandbox_code_cpu: float = Field(default=0.3, alias="SANDBOX_CODE_CPU")
    sandbox_code_memory_gb: float = Field(default=0.25, alias="SANDBOX_CODE_MEMORY_GB")
    sandbox_database_cpu: float = Field(default=0.35, alias="SANDBOX_DATABASE_CPU")
    sandbox_database_memory_gb: float = Field(default=0.5, alias="SANDBOX_DATABASE_MEMORY_GB")

    sse_max_connections_per_user: int = Field(default=5, alias="SSE_MAX_CONNECTIONS_PER_USER")
    sse_heartbeat_seconds: float = Field(default=60.0, alias="SSE_HEARTBEAT_SECONDS")

    auth_session_cookie: str = Field(default="evaldesk.session-token", alias="AUTH_SESSION_COOKIE")
    auth_session_max_age_seconds: int = Field(default=24 * 60 * 60, alias="AUTH_SESSION_MAX_AGE_SECONDS")
    auth_signin_secret: Optional[str] = Field(default=None, alias="AUTH_SIGNIN_SECRET")

    statistics_excluded_groups: list[str] = Field(default=["demo", "test"], alias="STATISTICS_EXCLUDED_GROUPS")

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def postgres(self) -> PostgreSQLConfig:
        """Get PostgreSQL configuration from environment variables."""
        return PostgreSQLConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def cors(self) -> CORSConfig:
        """Get CORS configuration from environment variables."""
        return CORSConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def sandbox(self) -> SandboxConfig:
        """Get sandbox configuration from environment variables."""
        return SandboxConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def sse(self) -> SSEConfig:
        """Get server-sent events configuration from environment variables."""
        return SSEConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def auth(self) -> AuthConfig:
        """Get session authentication configuration from environment variables."""
        return AuthConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def statistics(self) -> StatisticsConfig:
        """Get statistics configuration from environment variables."""
        return StatisticsConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def effective_database_url(self) -> str:
        """Database URL, falling back to the PostgreSQL settings."""
        return self.database_url or self.postgres.url


settings = Settings()
