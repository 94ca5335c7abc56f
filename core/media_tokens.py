"""
Access tokens for the external media (SFU) service.
The service verifies them with the shared API secret; this module only signs them.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from config.settings import settings


class MediaTokenError(Exception):
    """Media service credentials are not configured."""


def generate_media_token(
    identity: str,
    media_room_id: str,
    name: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
) -> str:
    """
    Generate a JWT granting one participant access to one media room.

    Args:
        identity: Participant identity (the stable identifier)
        media_room_id: Room name on the media service
        name: Display name shown by the media service
        ttl_seconds: Token lifetime, defaults to MEDIA_TOKEN_TTL_SECONDS

    Returns:
        Encoded token

    Raises:
        MediaTokenError: If the API key or secret is missing
    """
    if not settings.MEDIA_API_KEY or not settings.MEDIA_API_SECRET:
        raise MediaTokenError("Media service credentials are not configured")

    ttl = ttl_seconds if ttl_seconds is not None else settings.MEDIA_TOKEN_TTL_SECONDS
    now = datetime.now(timezone.utc)
    payload = {
        "iss": settings.MEDIA_API_KEY,
        "sub": identity,
        "nbf": now,
        "exp": now + timedelta(seconds=ttl),
        "video": {
            "roomJoin": True,
            "room": media_room_id,
            "canPublish": True,
            "canSubscribe": True,
        },
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.MEDIA_API_SECRET, algorithm="HS256")


def decode_media_token(token: str) -> dict:
    """Decode and verify a media token (used by tests and debugging tools)."""
    return jwt.decode(token, settings.MEDIA_API_SECRET, algorithms=["HS256"])
