"""
Runtime configuration for the Plant Shop API.

Everything comes from environment variables. The values are gathered once,
when the application starts, into an immutable Settings object that is kept
on app.state and handed to whoever needs it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

DEV_JWT_SECRET = "dev_secret_change_me"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+aiosqlite:///./plantshop.db"
    jwt_secret: str = DEV_JWT_SECRET
    token_ttl_days: int = 7
    uploads_dir: Path = Path("uploads")
    max_upload_bytes: int = 5 * 1024 * 1024
    cors_origins: List[str] = field(default_factory=list)
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    seed_demo_data: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        origins = [o.strip() for o in (os.getenv("CORS_ORIGIN") or "").split(",") if o.strip()]
        return cls(
            database_url=os.getenv("DATABASE_URL") or cls.database_url,
            jwt_secret=os.getenv("JWT_SECRET") or DEV_JWT_SECRET,
            token_ttl_days=max(1, _env_int("TOKEN_TTL_DAYS", 7)),
            uploads_dir=Path(os.getenv("UPLOADS_DIR") or "uploads"),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 5 * 1024 * 1024),
            cors_origins=origins,
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            seed_demo_data=_env_bool("SEED_DEMO_DATA"),
        )
