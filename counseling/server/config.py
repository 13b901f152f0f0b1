from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_DB_PATH = REPO_ROOT / "counseling.db"
DEFAULT_BLOB_DIR = REPO_ROOT / "student_files"
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _clamp(val: object, lo: float, hi: float, default: float) -> float:
    try:
        num = float(val)
    except Exception:
        return default
    return max(lo, min(hi, num))


@dataclass
class Settings:
    db_path: Path
    blob_dir: Path
    session_ttl_hours: int
    default_duration: int
    cors_origins: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "Settings":
        db_path = Path(os.getenv("COUNSELING_DB_PATH") or DEFAULT_DB_PATH)
        blob_dir = Path(os.getenv("COUNSELING_BLOB_DIR") or DEFAULT_BLOB_DIR)
        ttl = int(_clamp(os.getenv("COUNSELING_SESSION_TTL_HOURS", 12), 1, 720, 12))
        duration = int(_clamp(os.getenv("COUNSELING_DEFAULT_DURATION", 40), 1, 600, 40))
        origins_raw = os.getenv("COUNSELING_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
        origins = [o.strip() for o in origins_raw.split(",") if o.strip()]
        return cls(
            db_path=db_path,
            blob_dir=blob_dir,
            session_ttl_hours=ttl,
            default_duration=duration,
            cors_origins=origins,
        )
