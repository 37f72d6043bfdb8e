from dotenv import load_dotenv
import os
from pathlib import Path
import sqlite3
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent
load_dotenv(BASE_DIR / ".env")
load_dotenv(PROJECT_ROOT / ".env")
DEFAULT_DB_PATH = (PROJECT_ROOT / "wassel_demo.db").resolve()


def _resolve_db_path(value: str) -> Path:
    """Relative paths prefer an existing file; new files go under the project root."""
    path = Path(value.strip()).expanduser()
    if path.is_absolute():
        return path.resolve()
    candidates = [(root / path).resolve() for root in (PROJECT_ROOT, BASE_DIR)]
    return next((candidate for candidate in candidates if candidate.exists()), candidates[0])


def resolve_store_url(url: Optional[str] = None) -> str:
    """
    Work out which sqlite database backs the local store.

    Precedence: explicit argument, LOCALDB_URL, LOCALDB_PATH, then the default
    file under the project root. Relative file paths are made absolute so the
    same store is reused regardless of the working directory.
    """
    raw = url if url is not None else os.getenv("LOCALDB_URL")
    cleaned = (raw or "").strip()
    if not cleaned:
        raw_path = (os.getenv("LOCALDB_PATH") or "").strip()
        path = _resolve_db_path(raw_path) if raw_path else DEFAULT_DB_PATH
        return f"sqlite:///{path}"
    if cleaned.startswith("sqlite:///"):
        path_part = cleaned.replace("sqlite:///", "", 1)
        if not path_part:
            raise RuntimeError(f"Store URL has no file path: {cleaned!r}")
        return f"sqlite:///{_resolve_db_path(path_part)}"
    if cleaned.startswith("sqlite:"):
        return cleaned
    if "://" not in cleaned:
        # A bare filesystem path.
        return f"sqlite:///{_resolve_db_path(cleaned)}"
    raise RuntimeError("LOCALDB_URL must be a sqlite URL for the local store")


def open_connection(url: Optional[str] = None) -> sqlite3.Connection:
    """Open the sqlite connection the table store writes through."""
    resolved = resolve_store_url(url)
    if resolved.startswith("sqlite:///"):
        path = Path(resolved.replace("sqlite:///", "", 1))
        path.parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(str(path), check_same_thread=False)
    else:
        con = sqlite3.connect(
            resolved.replace("sqlite:", "", 1),
            uri=True,
            check_same_thread=False,
        )
    return con


def store_file_path(url: Optional[str] = None) -> Optional[Path]:
    """Return the sqlite file behind the store, or None for URI/in-memory stores."""
    resolved = resolve_store_url(url)
    if resolved.startswith("sqlite:///"):
        return Path(resolved.replace("sqlite:///", "", 1))
    return None


def store_file_exists(url: Optional[str] = None) -> bool:
    path = store_file_path(url)
    return bool(path and path.exists())
