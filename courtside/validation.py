import uuid
from datetime import datetime, timezone
from typing import Optional

from shared.errors import ValidationError


def new_id() -> str:
    return str(uuid.uuid4())


def require_id(value, field: str) -> str:
    """Return ``value`` as a canonical UUID string or raise ValidationError."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, AttributeError, TypeError):
        raise ValidationError(f"{field} must be a valid UUID, got '{value}'")


def require_page(limit: Optional[int], offset: Optional[int], max_limit: int = 200):
    if limit is not None and (limit < 1 or limit > max_limit):
        raise ValidationError(f"limit must be between 1 and {max_limit}")
    if offset is not None and offset < 0:
        raise ValidationError("offset must not be negative")
    return limit, offset or 0


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(value, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    try:
        return ensure_aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime, got '{value}'")
