"""
Domain records shared by the wait pool, the match ledger and the room directory.
Records are plain dataclasses serialized to JSON for the shared store.
"""
import json
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Tuple, Dict, Any


MATCH_ACTIVE = "active"
MATCH_ENDED = "ended"


@dataclass
class Preferences:
    """What a waiting user is looking for. Every field is optional."""
    age_range: Optional[Tuple[int, int]] = None
    interests: Optional[List[str]] = None
    gender: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Preferences"]:
        if data is None:
            return None
        age_range = data.get("age_range")
        return cls(
            age_range=tuple(age_range) if age_range else None,
            interests=data.get("interests"),
            gender=data.get("gender"),
        )


@dataclass
class Profile:
    """Display information used for compatibility and partner notifications."""
    name: Optional[str] = None
    age: Optional[int] = None
    interests: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Profile":
        data = data or {}
        return cls(
            name=data.get("name"),
            age=data.get("age"),
            interests=list(data.get("interests") or []),
        )


@dataclass
class WaitingEntry:
    """A user waiting in the pool."""
    user_id: str
    connection_id: str
    arrival_timestamp: int
    preferences: Optional[Preferences] = None
    profile: Profile = field(default_factory=Profile)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.preferences and self.preferences.age_range:
            data["preferences"]["age_range"] = list(self.preferences.age_range)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WaitingEntry":
        return cls(
            user_id=data["user_id"],
            connection_id=data["connection_id"],
            arrival_timestamp=int(data["arrival_timestamp"]),
            preferences=Preferences.from_dict(data.get("preferences")),
            profile=Profile.from_dict(data.get("profile")),
        )

    @classmethod
    def from_json(cls, raw: str) -> "WaitingEntry":
        return cls.from_dict(json.loads(raw))

    def session_json(self) -> str:
        """Lightweight session record kept beside the entry for lookups by connection."""
        prefs = self.to_dict()["preferences"]
        return json.dumps({
            "connection_id": self.connection_id,
            "joined_at": self.arrival_timestamp,
            "preferences": prefs,
        })


@dataclass
class MatchRecord:
    """A pairing of two users plus the room handed to the media service."""
    match_id: str
    participant_ids: Tuple[str, str]
    connection_ids: Tuple[str, str]
    room_id: str
    created_at: int
    status: str = MATCH_ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == MATCH_ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "participant_ids": list(self.participant_ids),
            "connection_ids": list(self.connection_ids),
            "room_id": self.room_id,
            "created_at": self.created_at,
            "status": self.status,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "MatchRecord":
        data = json.loads(raw)
        return cls(
            match_id=data["match_id"],
            participant_ids=tuple(data["participant_ids"]),
            connection_ids=tuple(data["connection_ids"]),
            room_id=data["room_id"],
            created_at=int(data["created_at"]),
            status=data.get("status", MATCH_ACTIVE),
        )


@dataclass
class Room:
    """A room as listed in the room directory."""
    id: str
    name: str
    created_at: int
    description: str = ""
    is_private: bool = False
    members: int = 0
    created_by: Optional[str] = None
    empty_since: Optional[int] = None
    media_room_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "Room":
        return cls(**json.loads(raw))
