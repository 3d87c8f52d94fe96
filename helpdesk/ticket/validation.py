# helpdesk/ticket/validation.py
"""Input normalization and validation for ticket payloads.

Both functions are pure: they never touch the database and are run before
any write is attempted.
"""
import re
from typing import Any, Mapping

from helpdesk.ticket.models import PRIORITIES, STATUSES

TITLE_MIN, TITLE_MAX = 3, 200
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 2000

_WHITESPACE = re.compile(r"\s+")


def sanitize(value: Any) -> Any:
    """Trim a string and collapse whitespace runs; other values pass through."""
    if not isinstance(value, str):
        return value
    return _WHITESPACE.sub(" ", value.strip())


def normalize_choice(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return value.lower().strip()


def _check_text(errors: list[str], value: Any, label: str, minimum: int, maximum: int) -> None:
    if not isinstance(value, str) or not value.strip():
        errors.append(f"{label} is required")
        return
    length = len(value.strip())
    if length < minimum:
        errors.append(f"{label} must be at least {minimum} characters long")
    elif length > maximum:
        errors.append(f"{label} must not exceed {maximum} characters")


def validate(data: Mapping[str, Any], is_update: bool = False) -> list[str]:
    """Return every rule ``data`` breaks, in field order; empty means valid.

    On update only the keys present in ``data`` are checked.
    """
    errors: list[str] = []

    if not is_update or "title" in data:
        _check_text(errors, data.get("title"), "Title", TITLE_MIN, TITLE_MAX)

    if not is_update or "description" in data:
        _check_text(errors, data.get("description"), "Description", DESCRIPTION_MIN, DESCRIPTION_MAX)

    if "priority" in data and data["priority"] not in PRIORITIES:
        errors.append("Priority must be low, medium, or high")

    if "status" in data and data["status"] not in STATUSES:
        errors.append("Status must be open, inprogress, or closed")

    return errors
