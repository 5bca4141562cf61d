"""
Utility functions: path resolution, seed loading, ID generation, clock and calendar helpers.
"""
import json
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

# utils.py lives in backend/rationshop/; project root = parent of backend
PKG_DIR = Path(__file__).resolve().parent
BACKEND_DIR = PKG_DIR.parent
PROJECT_ROOT = BACKEND_DIR.parent
DATA_DIR = PROJECT_ROOT / "data"

DEFAULT_CARD_TYPES = "YELLOW,PINK,BLUE"
QUOTA_TIMEZONE = os.environ.get("QUOTA_TIMEZONE", "Asia/Kolkata")


def get_data_dir() -> Path:
    """Return data directory; prefer env override."""
    return Path(os.environ.get("DATA_DIR", str(DATA_DIR)))


def get_card_types() -> list[str]:
    """Ration card categories enabled for this deployment (CARD_TYPES env, comma separated)."""
    raw = os.environ.get("CARD_TYPES", DEFAULT_CARD_TYPES)
    return [t.strip().upper() for t in raw.split(",") if t.strip()]


def load_json(path: Path, required: bool = True) -> Any:
    """
    Load a JSON file.
    Returns None if file missing and not required.
    """
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Required data file not found: {path}")
        return None
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_seed() -> dict[str, list[dict]] | None:
    """Load seed.json (a collection -> documents export) from data dir."""
    return load_json(get_data_dir() / "seed.json", required=False)


def generate_id(prefix: str) -> str:
    """Generate a unique document ID such as ``ord_3f9a...``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the database stores naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_start_utc(now: datetime | None = None, tz_name: str | None = None) -> datetime:
    """
    First instant of the current calendar month, as naive UTC.
    The month is evaluated in QUOTA_TIMEZONE; ``now`` is naive UTC (defaults to utcnow()).
    """
    tz = ZoneInfo(tz_name or QUOTA_TIMEZONE)
    now = now or utcnow()
    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    first = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return first.astimezone(timezone.utc).replace(tzinfo=None)
