"""Environment configuration for the marketplace project."""
from decimal import Decimal
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Values read from the environment (prefix MARKETPLACE_) or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MARKETPLACE_",
        extra="ignore",
    )

    SECRET_KEY: str = "django-insecure-dev-only-change-me"
    DEBUG: bool = False
    ALLOWED_HOSTS: str = "localhost,127.0.0.1"

    # Database
    DB_ENGINE: str = "sqlite"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_NAME: str = "marketplace"

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = ""

    # Realtime channel: "local" (in-process) or "redis"
    REALTIME_BACKEND: str = "local"
    # Fan-out delivery: "inline" or "celery"; defaults to celery with the redis backend
    FANOUT_DISPATCH: str = ""
    SOCKET_HOST: str = "0.0.0.0"
    SOCKET_PORT: int = 8765

    # Auction rules
    DEFAULT_MIN_BID_INCREMENT: Decimal = Decimal("10.00")
    MIN_BID_INCREMENT_FLOOR: Decimal = Decimal("1.00")
    EXPIRY_SWEEP_SECONDS: float = 30.0
    ENDING_SOON_SECONDS: int = 300

    LOG_LEVEL: str = "INFO"

    @property
    def allowed_hosts_list(self) -> List[str]:
        return [host.strip() for host in self.ALLOWED_HOSTS.split(",") if host.strip()]

    @property
    def broker_url(self) -> str:
        return self.CELERY_BROKER_URL or self.REDIS_URL

    @property
    def fanout_dispatch(self) -> str:
        if self.FANOUT_DISPATCH:
            return self.FANOUT_DISPATCH
        return "celery" if self.REALTIME_BACKEND == "redis" else "inline"

    @property
    def databases(self) -> dict:
        """Django DATABASES entry for the configured engine."""
        if self.DB_ENGINE == "postgresql":
            return {
                "ENGINE": "django.db.backends.postgresql",
                "NAME": self.DB_NAME,
                "USER": self.DB_USER,
                "PASSWORD": self.DB_PASSWORD,
                "HOST": self.DB_HOST,
                "PORT": self.DB_PORT,
                "ATOMIC_REQUESTS": False,
            }
        return {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": f"{self.DB_NAME}.sqlite3",
            # BEGIN IMMEDIATE: concurrent writers wait on the busy timeout
            "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
            # File-backed so test threads share one database
            "TEST": {"NAME": f"test_{self.DB_NAME}.sqlite3"},
        }


settings = Settings()
