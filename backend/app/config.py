from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="XeroxChat API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    database_user: str = Field(default="xeroxchat", env="DB_USER")
    database_password: str = Field(default="xeroxchat", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="xeroxchat", env="DB_NAME")

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=24 * 60, env="ACCESS_TOKEN_EXPIRE_MINUTES")
    password_min_length: int = Field(default=6, env="PASSWORD_MIN_LENGTH")

    bot_name: str = Field(
        default="XeroxChat Bot",
        env="BOT_NAME",
        description="Author name used for welcome, join and leave notices",
    )
    display_timezone: str = Field(
        default="Asia/Dhaka",
        env="DEFAULT_TIMEZONE",
        description="IANA zone name or fixed +HH:MM offset used when rendering message times",
    )

    chat_history_default_limit: int = Field(default=50, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=100, env="CHAT_HISTORY_MAX_LIMIT")
    chat_join_history_limit: int = Field(
        default=20,
        env="CHAT_JOIN_HISTORY_LIMIT",
        description="Number of messages replayed to a connection when it joins a room",
    )
    chat_search_limit: int = Field(default=20, env="CHAT_SEARCH_LIMIT")
    chat_message_max_length: int = Field(default=2000, env="CHAT_MESSAGE_MAX_LENGTH")

    websocket_keepalive_timeout_seconds: float = Field(
        default=30, env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS"
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=30, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )

    session_stale_after_hours: int = Field(
        default=24,
        env="SESSION_STALE_AFTER_HOURS",
        description="Active sessions idle for longer than this are purged by the reaper",
    )
    session_reap_interval_seconds: int = Field(
        default=60 * 60,
        env="SESSION_REAP_INTERVAL_SECONDS",
        description="Delay between two runs of the stale session reaper",
    )

    rate_limit_enabled: bool = Field(default=True, env="RATE_LIMIT_ENABLED")
    rate_limit_default: str = Field(
        default="100 per 15 minutes",
        env="RATE_LIMIT_DEFAULT",
        description="Request quota applied per client IP to HTTP endpoints",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
            "?charset=utf8mb4"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
