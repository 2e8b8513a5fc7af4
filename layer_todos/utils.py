from datetime import datetime, timezone
import uuid


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a fresh opaque record id."""
    return uuid.uuid4().hex


def clean_text(value: str | None) -> str:
    """Strip surrounding whitespace; None becomes the empty string."""
    if value is None:
        return ''
    return value.strip()
