from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CSV_PATH = BACKEND_DIR / "data" / "cod_stats.csv"
DEFAULT_CACHE_DIR = BACKEND_DIR / "data" / "cache"


def load_env() -> Optional[Path]:
    """Load the first `.env` found in `backend/` or the repo root; return its path."""
    for path in (BACKEND_DIR / ".env", BACKEND_DIR.parent / ".env"):
        if path.exists():
            load_dotenv(path)
            return path
    load_dotenv()
    return None


def _bool_env(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def _list_env(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [value.strip() for value in raw.split(",") if value.strip()]


def _path_env(name: str) -> Optional[Path]:
    value = os.getenv(name)
    if not value:
        return None
    return Path(value)


@dataclass(frozen=True)
class Settings:
    api_base_url: Optional[str]
    use_api: bool
    match_limit: int
    request_timeout: float
    csv_path: Path
    cache_dir: Path
    session_gap_minutes: int
    min_session_size: int
    cors_origins: List[str]
    debug_mode: bool

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_base_url=os.getenv("CODSTATS_API_BASE_URL", "").strip().rstrip("/") or None,
            use_api=_bool_env("CODSTATS_USE_API", "true"),
            match_limit=int(os.getenv("CODSTATS_MATCH_LIMIT", "10000")),
            request_timeout=float(os.getenv("CODSTATS_REQUEST_TIMEOUT", "30")),
            csv_path=_path_env("CODSTATS_CSV_PATH") or DEFAULT_CSV_PATH,
            cache_dir=_path_env("CODSTATS_CACHE_DIR") or DEFAULT_CACHE_DIR,
            session_gap_minutes=int(os.getenv("CODSTATS_SESSION_GAP_MINUTES", "120")),
            min_session_size=int(os.getenv("CODSTATS_MIN_SESSION_SIZE", "3")),
            cors_origins=_list_env("CODSTATS_CORS_ORIGINS")
            or ["http://localhost:3000", "http://localhost:5500"],
            debug_mode=_bool_env("DEBUG_MODE"),
        )
