"""Time helpers. Every instant in payflow is a naive UTC datetime."""
import uuid
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_id(prefix: str) -> str:
    """Generate a never-reused record id such as ``PAY-3F2A9C01B7DE``."""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"
