import secrets
from datetime import datetime, timezone
from typing import Annotated

from pydantic import AfterValidator


def generate_id(prefix: str) -> str:
    """Generate unique ID with prefix"""
    return f"{prefix}_{secrets.token_hex(8).upper()}"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form MongoDB hands back"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Every stored datetime is naive UTC so comparisons never mix aware and naive values
UTCDateTime = Annotated[datetime, AfterValidator(as_naive_utc)]


def strip_mongo_id(doc: dict) -> dict:
    if doc:
        doc.pop("_id", None)
    return doc


def deep_merge(base: dict, patch: dict) -> dict:
    """Merge patch into a copy of base, recursing into nested dicts"""
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
