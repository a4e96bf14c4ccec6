"""
Helpers shared by the domain models: timestamps and camelCase output

The database stores snake_case columns; the storefront reads camelCase keys.
"""
import re
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Any, Optional

_SNAKE_RE = re.compile(r"_([a-z])")


def now_iso() -> str:
    """UTC timestamp in the format the storefront stores in JSON columns (2025-01-31T10:00:00.000Z)"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (with or without trailing Z) into an aware datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_camel_key(key: str) -> str:
    return _SNAKE_RE.sub(lambda m: m.group(1).upper(), key)


def to_json_value(value: Any) -> Any:
    """Decimal -> float, datetime/date -> ISO string, recursively"""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


def to_camel_case(obj: Any) -> Any:
    """Convert snake_case keys to camelCase recursively (values made JSON-safe)"""
    if isinstance(obj, dict):
        return {to_camel_key(str(k)): to_camel_case(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_camel_case(v) for v in obj]
    return to_json_value(obj)
