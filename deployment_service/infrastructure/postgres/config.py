#deployment_service\infrastructure\postgres\config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Full URL wins over the individual parts
    database_url: Optional[str] = None

    # PostgreSQL connection (NO DEFAULTS)
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_host: Optional[str] = None
    postgres_port: Optional[int] = None
    postgres_db: Optional[str] = None

    # Connection pool
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 3600

    # SQLAlchemy
    echo_sql: bool = False

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url

        missing = [
            name for name in (
                "postgres_user", "postgres_password", "postgres_host",
                "postgres_port", "postgres_db",
            )
            if getattr(self, name) in (None, "")
        ]
        if missing:
            raise ValueError(
                f"Database is not configured; set DATABASE_URL or {', '.join(m.upper() for m in missing)}"
            )

        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
