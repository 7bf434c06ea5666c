"""
Input validation for identifiers and configuration values.

All validators raise ValidationError on invalid input.
"""
import re
from typing import Tuple, Union

from gamesync.exceptions import ValidationError


MAX_ACCOUNT_ID_LENGTH = 64
MAX_USER_ID_LENGTH = 64
MAX_LIMIT = 100

_DAILY_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def validate_account_id(value: str, field: str = "account_id") -> str:
    """
    Validate an upstream account id.

    Account ids are opaque strings; we only reject values that can never be
    valid (empty, whitespace inside, absurd length).

    Returns:
        The stripped account id
    """
    if value is None or value == "":
        raise ValidationError(field, "Account id is required", value)

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    account_id = value.strip()
    if not account_id:
        raise ValidationError(field, "Account id is required", value)

    if any(ch.isspace() for ch in account_id):
        raise ValidationError(field, "Must not contain whitespace", value)

    if len(account_id) > MAX_ACCOUNT_ID_LENGTH:
        raise ValidationError(
            field,
            f"Must be at most {MAX_ACCOUNT_ID_LENGTH} characters",
            value,
        )

    return account_id


def validate_user_id(value: Union[str, int], field: str = "user_id") -> str:
    """
    Validate a local (chat) user id.

    Chat platforms hand out integer ids; they are stored as strings.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(field, "User id is required", value)

    if isinstance(value, int):
        return str(value)

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string or integer", value)

    user_id = value.strip()
    if not user_id:
        raise ValidationError(field, "User id is required", value)

    if len(user_id) > MAX_USER_ID_LENGTH:
        raise ValidationError(
            field,
            f"Must be at most {MAX_USER_ID_LENGTH} characters",
            value,
        )

    return user_id


def validate_limit(
    value: int,
    field: str = "limit",
    min_value: int = 1,
    max_value: int = MAX_LIMIT,
) -> int:
    """Validate a result-size limit."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "Must be an integer", value)

    if value < min_value or value > max_value:
        raise ValidationError(
            field,
            f"Must be between {min_value} and {max_value}",
            value,
        )

    return value


def parse_daily_time(value: str, field: str = "daily_time") -> Tuple[int, int]:
    """
    Parse an HH:MM wall-clock time.

    Returns:
        (hour, minute) tuple

    Raises:
        ValidationError: If the value is not a valid 24h time
    """
    if not value or not isinstance(value, str):
        raise ValidationError(field, "Time is required (HH:MM)", value)

    match = _DAILY_TIME_RE.match(value.strip())
    if not match:
        raise ValidationError(field, "Invalid time format. Expected HH:MM", value)

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(field, "Time out of range", value)

    return hour, minute
