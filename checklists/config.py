from __future__ import annotations

import os
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}


def _env_enabled(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return bool(default)
    return raw.lower() in _TRUTHY


def _safe_int_env(name: str, default: int, minimum: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except Exception:
        value = int(default)
    return max(minimum, value)


def _safe_float_env(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        value = float(raw) if raw else float(default)
    except Exception:
        value = float(default)
    return max(minimum, min(maximum, value))


def _read_secret(name: str, *, min_len: int = 16) -> str:
    raw = (os.getenv(name) or "").strip()
    if raw and len(raw) >= min_len:
        return raw
    if raw:
        raise RuntimeError(f"{name} must be at least {min_len} characters")
    generated = os.urandom(max(32, min_len)).hex()
    os.environ.setdefault(name, generated)
    return os.environ[name]


BASE_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = BASE_DIR / "data"

DEBUG = _env_enabled("CHECKLIST_DEBUG", False)
DB_PATH = Path(os.getenv("CHECKLIST_DB_PATH") or str(DATA_DIR / "checklists.db"))
SQLITE_TIMEOUT_SEC = _safe_float_env("CHECKLIST_SQLITE_TIMEOUT_SEC", 30.0, 1.0, 60.0)

UPLOAD_DIR = Path(os.getenv("CHECKLIST_UPLOAD_DIR") or str(BASE_DIR / "uploads"))
PUBLIC_BASE_URL = (os.getenv("CHECKLIST_PUBLIC_BASE_URL") or "http://localhost:8000/uploads").strip().rstrip("/")
UPLOAD_MAX_BYTES = _safe_int_env("CHECKLIST_UPLOAD_MAX_BYTES", 10 * 1024 * 1024, 128 * 1024)
DOWNLOAD_SECRET = _read_secret("CHECKLIST_DOWNLOAD_SECRET")
DOWNLOAD_MAX_AGE = _safe_int_env("CHECKLIST_DOWNLOAD_MAX_AGE", 3600, 60)

PROTOCOL_PREFIX = (os.getenv("CHECKLIST_PROTOCOL_PREFIX") or "KL").strip().upper() or "KL"
# Required PHOTO questions block finalization; set to 0 to let them finalize empty.
REQUIRE_PHOTO_ON_FINAL = _env_enabled("CHECKLIST_REQUIRE_PHOTO_ON_FINAL", True)

PDF_FONT_PATH = (os.getenv("CHECKLIST_PDF_FONT_PATH") or "").strip()
PDF_BOLD_FONT_PATH = (os.getenv("CHECKLIST_PDF_BOLD_FONT_PATH") or "").strip()

EMAIL_WEBHOOK_URL = (os.getenv("CHECKLIST_EMAIL_WEBHOOK_URL") or "").strip()
WHATSAPP_WEBHOOK_URL = (os.getenv("CHECKLIST_WHATSAPP_WEBHOOK_URL") or "").strip()
APP_BASE_URL = (os.getenv("CHECKLIST_APP_BASE_URL") or "http://localhost:8000").strip().rstrip("/")
SEED_DEMO = _env_enabled("CHECKLIST_SEED_DEMO", False)
