"""Runtime settings read from the environment."""
from __future__ import annotations

import os

from pydantic import BaseModel


def _origins_from_env() -> list[str]:
    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    return origins


class Settings(BaseModel):
    AUTOSAVE_DEBOUNCE_MS: int = int(os.getenv("TROFLOW_AUTOSAVE_DEBOUNCE_MS", "2000"))

    RETRY_MAX_ATTEMPTS: int = int(os.getenv("TROFLOW_RETRY_MAX_ATTEMPTS", "5"))
    RETRY_BASE_DELAY_S: float = float(os.getenv("TROFLOW_RETRY_BASE_DELAY_S", "5"))
    RETRY_FACTOR: float = float(os.getenv("TROFLOW_RETRY_FACTOR", "2"))
    RETRY_MAX_DELAY_S: float = float(os.getenv("TROFLOW_RETRY_MAX_DELAY_S", "60"))

    # bound on every remote store call
    REMOTE_TIMEOUT_S: float = float(os.getenv("TROFLOW_REMOTE_TIMEOUT_S", "10"))

    STORE_URL: str | None = os.getenv("TROFLOW_STORE_URL") or None
    STORE_API_KEY: str | None = os.getenv("TROFLOW_STORE_API_KEY") or None

    MAX_PACKET_BYTES: int = int(os.getenv("TROFLOW_MAX_PACKET_BYTES", str(25 * 1024 * 1024)))

    CORS_ALLOW_ORIGINS: list[str] = _origins_from_env()
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
