"""
Validation utilities for client input.
Validates room names, stable identifiers and preference ranges.
"""
from typing import Optional, Sequence


MAX_ROOM_NAME_LENGTH = 100
MAX_IDENTIFIER_LENGTH = 200


def validate_room_name(name: Optional[str]) -> tuple[bool, str]:
    """
    Validate a room name.

    Args:
        name: Room name to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not name or not isinstance(name, str) or not name.strip():
        return False, "Room name is required"

    if len(name.strip()) > MAX_ROOM_NAME_LENGTH:
        return False, f"Room name must be at most {MAX_ROOM_NAME_LENGTH} characters"

    return True, ""


def validate_identifier(identifier: Optional[str], field: str = "User identifier") -> tuple[bool, str]:
    """
    Validate a user ID or stable participant identifier.

    Args:
        identifier: Identifier to validate
        field: Human-readable field name for the error message

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not identifier or not isinstance(identifier, str) or not identifier.strip():
        return False, f"{field} is required"

    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        return False, f"{field} is too long"

    return True, ""


def validate_age_range(age_range: Optional[Sequence[int]]) -> tuple[bool, str]:
    """Validate an inclusive [min, max] age range."""
    if age_range is None:
        return True, ""

    if len(age_range) != 2:
        return False, "Age range must have exactly two values"

    low, high = age_range
    if low < 0 or high < 0:
        return False, "Age range cannot be negative"

    if low > high:
        return False, "Age range minimum cannot exceed maximum"

    return True, ""
