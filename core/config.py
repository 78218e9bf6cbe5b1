"""
Runtime configuration for the PinPrompt API.

All settings are resolved here from environment variables. A `.env` file in the
project root is loaded first (without overriding variables that are already
set), so local development does not need exported variables.

Usage::

    from core.config import settings

    page_size = settings.feed_page_size
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Gateway store
    # ------------------------------------------------------------------
    database_url: str = field(
        default_factory=lambda: os.getenv(
            "DATABASE_URL", "sqlite+aiosqlite:///./pinprompt.db"
        )
    )

    # ------------------------------------------------------------------
    # Environment / logging
    # ------------------------------------------------------------------
    environment: str = field(
        default_factory=lambda: os.getenv("ENVIRONMENT", "development").lower()
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------
    jwt_secret_key: str = field(default_factory=lambda: os.getenv("JWT_SECRET_KEY", ""))
    access_token_minutes: int = field(
        default_factory=lambda: int(os.getenv("ACCESS_TOKEN_MINUTES", "60"))
    )
    bcrypt_rounds: int = field(
        default_factory=lambda: int(os.getenv("BCRYPT_ROUNDS", "12"))
    )

    # ------------------------------------------------------------------
    # Object storage
    # ------------------------------------------------------------------
    storage_dir: Path = field(
        default_factory=lambda: Path(os.getenv("STORAGE_DIR", "./storage"))
    )
    public_base_url: str = field(
        default_factory=lambda: os.getenv(
            "PUBLIC_BASE_URL", "http://localhost:8002"
        ).rstrip("/")
    )

    # ------------------------------------------------------------------
    # Feed / interaction tuning
    # ------------------------------------------------------------------
    feed_page_size: int = field(
        default_factory=lambda: int(os.getenv("FEED_PAGE_SIZE", "10"))
    )
    search_debounce_seconds: float = field(
        default_factory=lambda: float(os.getenv("SEARCH_DEBOUNCE_SECONDS", "0.3"))
    )
    unread_debounce_seconds: float = field(
        default_factory=lambda: float(os.getenv("UNREAD_DEBOUNCE_SECONDS", "0.25"))
    )
    edit_word_limit: int = field(
        default_factory=lambda: int(os.getenv("EDIT_WORD_LIMIT", "200"))
    )
    notifications_limit: int = field(
        default_factory=lambda: int(os.getenv("NOTIFICATIONS_LIMIT", "50"))
    )
    user_search_limit: int = field(
        default_factory=lambda: int(os.getenv("USER_SEARCH_LIMIT", "10"))
    )
    model_page_size: int = field(
        default_factory=lambda: int(os.getenv("MODEL_PAGE_SIZE", "20"))
    )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    cors_origins: List[str] = field(
        default_factory=lambda: _split_csv(
            os.getenv("CORS_ORIGINS", "http://localhost:3000")
        )
    )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


# Module-level singleton
settings = Settings()
