"""
Identifier helpers shared by the matchmaker, the room directory and the membership registry.
"""
import secrets
import time
import uuid
from typing import Optional, Union


def now_ms() -> int:
    """Wall-clock milliseconds; shared by every instance as the pool ordering key."""
    return int(time.time() * 1000)


def generate_match_id() -> str:
    """Generate a unique match ID."""
    return f"match_{now_ms()}_{uuid.uuid4().hex[:9]}"


def generate_session_room_id() -> str:
    """Generate the room/session ID handed to the media service for a match."""
    return f"room_{now_ms()}_{uuid.uuid4().hex[:9]}"


def generate_short_room_id(length: int = 8) -> str:
    """
    Generate a short uppercase base-36 room ID.

    Six random bytes give roughly 2^48 values, so collisions are rare enough
    that callers only retry a handful of times.
    """
    value = int.from_bytes(secrets.token_bytes(6), "big")
    alphabet = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    chars = []
    while value:
        value, rem = divmod(value, 36)
        chars.append(alphabet[rem])
    return "".join(reversed(chars))[:length] or "0"


def user_prefix(user_id: Optional[str]) -> Optional[str]:
    """
    Return the prefix shared by all stable identifiers of one user.

    Clients build stable identifiers as ``<userId>-<suffix>``. Without a user
    ID there is no reliable prefix, so None is returned.
    """
    if not user_id:
        return None
    return f"{user_id}-"


def decode(value: Union[bytes, str, None]) -> Optional[str]:
    """Decode a Redis reply that may be bytes (decode_responses=False)."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)
