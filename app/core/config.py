from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict  # type: ignore[import-not-found]


class Settings(BaseSettings):
    app_env: str = "local"
    app_name: str = "newsdesk-auth"
    port: int = 8000

    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_user: str = "newsdesk"
    mysql_password: str = "newsdesk_pass"
    mysql_db: str = "newsdesk"
    database_url: str | None = None  # overrides the MySQL settings (e.g. sqlite:///./newsdesk.db)

    # Sessions / devices
    session_hmac_secret: str = "change_me"
    device_id_header: str = "X-Device-Id"
    session_token_header: str = "X-Session-Token"
    session_token_ttl_seconds: int = 60 * 60 * 12  # 12 hours
    session_token_version: int = 1

    # Security requests / recovery
    security_request_ttl_seconds: int = 60 * 10
    recovery_code_ttl_minutes: int = 15
    recovery_code_length: int = 6
    recovery_code_max_attempts: int = 5
    password_min_length: int = 6
    password_hash_schemes: list[str] = ["pbkdf2_sha256"]

    # Client polling
    approval_poll_interval_sec: float = 2.0
    approval_max_wait_sec: float = 60 * 5

    # Redis / CORS / Client
    redis_url: str | None = None  # status cache is disabled when unset
    status_cache_ttl_seconds: int = 60 * 60 * 24
    cors_origins: list[str] | str = "*"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str] | str:
        if isinstance(v, str):
            if v == "*":
                return "*"
            if "," in v:
                return [origin.strip() for origin in v.split(",") if origin.strip()]
            return [v.strip()] if v.strip() else "*"
        if isinstance(v, list):
            return v
        return "*"

    client_id_header: str = "X-Client-Id"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        # Force TCP/IP connection by adding unix_socket= parameter
        return (
            f"mysql+pymysql://{self.mysql_user}:{self.mysql_password}"
            f"@{self.mysql_host}:{self.mysql_port}/{self.mysql_db}?charset=utf8mb4&unix_socket="
        )


settings = Settings()
