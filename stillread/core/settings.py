from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str
    log_level: str
    user_agent: str
    fetch_timeout: float
    stale_hours: int
    spa_page_markers: tuple[str, ...]
    spa_script_src_markers: tuple[str, ...]
    spa_inline_markers: tuple[str, ...]

    @staticmethod
    def from_env() -> "Settings":
        def _i(name: str, default: str) -> int:
            return int(os.getenv(name, default).strip())

        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        def _list(name: str) -> tuple[str, ...]:
            raw = os.getenv(name, "")
            return tuple(part.strip() for part in raw.split(",") if part.strip())

        return Settings(
            app_env=os.getenv("APP_ENV", "dev").strip(),
            db_path=os.getenv("DB_PATH", "/app/_local/data/stillread.db").strip(),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            user_agent=os.getenv("USER_AGENT", DEFAULT_USER_AGENT).strip(),
            fetch_timeout=_f("FETCH_TIMEOUT", "30"),
            stale_hours=_i("STALE_HOURS", "24"),
            spa_page_markers=_list("SPA_PAGE_MARKERS"),
            spa_script_src_markers=_list("SPA_SCRIPT_SRC_MARKERS"),
            spa_inline_markers=_list("SPA_INLINE_MARKERS"),
        )
