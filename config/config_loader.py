import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

log = logging.getLogger(__name__)


def load_config(env_path: str | None = None) -> None:
    env_file = Path(env_path) if env_path else Path(".env")
    if not env_file.exists():
        log.warning("'.env' not found – using defaults. Copy '.env.template' to '.env'.")
    load_dotenv(dotenv_path=env_file if env_file.exists() else None)
    log.info("Configuration loaded.")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("%s=%r is not an integer, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class IndexSettings:
    default_folder: str = "Life"
    folders: Tuple[str, ...] = ("Work", "Life")
    search_debounce_ms: int = 300
    recent_tags: int = 10
    page_size: int = 10
    snapshot_path: Optional[str] = None
    all_label: str = field(default="All", init=False)

    @classmethod
    def from_env(cls) -> "IndexSettings":
        folders = tuple(
            f.strip() for f in os.getenv("PROMPT_FOLDERS", "Work,Life").split(",") if f.strip()
        )
        return cls(
            default_folder=os.getenv("PROMPT_DEFAULT_FOLDER", "Life").strip() or "Life",
            folders=folders or ("Work", "Life"),
            search_debounce_ms=_int_env("PROMPT_SEARCH_DEBOUNCE_MS", 300),
            recent_tags=_int_env("PROMPT_RECENT_TAGS", 10),
            page_size=_int_env("PROMPT_PAGE_SIZE", 10),
            snapshot_path=os.getenv("PROMPT_SNAPSHOT_PATH") or None,
        )
