# src/pyaroma/config.py
import logging.config
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .core.constants import DEFAULT_POLL_INTERVAL, FanLevel


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Device Cloud Settings
    AROMA_API_URL: str = "https://aroma.avagtpl.com/api/v1"
    AROMA_TOKEN: str | None = None
    HTTP_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    SEND_RETRY_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    SEND_RETRY_WAIT_SECONDS: float = Field(default=1.0, ge=0)

    # Poller Settings
    POLLER_ENABLED: bool = False
    POLL_INTERVAL: int = Field(default=DEFAULT_POLL_INTERVAL, ge=1)
    POLL_DEVICE_IDS: Annotated[list[str], NoDecode] = Field(default_factory=list)
    SNAPSHOT_STALE_SECONDS: int = Field(default=30, ge=1)
    DEFAULT_FAN_LEVEL: FanLevel = FanLevel.L2

    # API Server Settings
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    LOG_FILE_PATH: str = "~/.cache/pyaroma/pyaroma.log"

    @field_validator("AROMA_API_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("POLL_DEVICE_IDS", mode="before")
    @classmethod
    def split_device_ids(cls, v: str | list[str] | None) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [device_id.strip() for device_id in v.split(",") if device_id.strip()]
        return v


settings = Settings()

LOG_FILE_PATH = Path(settings.LOG_FILE_PATH).expanduser()
LOG_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": "%(levelprefix)s %(asctime)s [%(name)s] %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
        "file": {
            "formatter": "default",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(LOG_FILE_PATH),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
            "encoding": "utf-8",
        },
    },
    "loggers": {
        "pyaroma": {"handlers": ["default", "file"], "level": "INFO"},
        "uvicorn.error": {"handlers": ["default", "file"], "level": "INFO"},
        "uvicorn.access": {
            "handlers": ["default", "file"],
            "level": "INFO",
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
