from datetime import date
from typing import Optional

from engine.errors import ValidationError
from utils.clock import parse_date


def required_str(data: dict, key: str, max_len: int = 255) -> str:
    value = data.get(key)
    value = value.strip() if isinstance(value, str) else ""
    if not value:
        raise ValidationError(f"{key} is required", field=key)
    if len(value) > max_len:
        raise ValidationError(f"{key} must be at most {max_len} characters", field=key)
    return value


def optional_str(data: dict, key: str, max_len: int = 255) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", field=key)
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f"{key} must be at most {max_len} characters", field=key)
    return value or None


def amount(value, key: str = "amount", allow_none: bool = False) -> Optional[int]:
    """Whole-unit money amount; accepts ints and integral floats/strings."""
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{key} is required", field=key)
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", field=key)
    if isinstance(value, int):
        return value
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number", field=key)
    if not as_float.is_integer():
        raise ValidationError(f"{key} must be a whole amount", field=key)
    return int(as_float)


def iso_date(value, key: str = "date") -> date:
    if not value:
        raise ValidationError(f"{key} is required", field=key)
    try:
        return parse_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {key}. Use YYYY-MM-DD", field=key)


def email(value, key: str = "email") -> str:
    value = (value or "").strip().lower() if isinstance(value, str) else ""
    if "@" not in value or len(value) > 255:
        raise ValidationError(f"A valid {key} is required", field=key)
    return value
