"""
Typed errors raised by the core components and mapped to responses at the API boundary.
"""


class CoreError(Exception):
    """Base class for pairing and membership errors."""


class NotFoundError(CoreError):
    """The addressed record does not exist."""


class RoomNotFoundError(NotFoundError):
    def __init__(self, room_id: str):
        super().__init__(f"Room not found: {room_id}")
        self.room_id = room_id


class MatchNotFoundError(NotFoundError):
    def __init__(self, match_id: str):
        super().__init__(f"Match not found: {match_id}")
        self.match_id = match_id


class StorageError(CoreError):
    """The shared store failed in the middle of an operation that must be reported."""
