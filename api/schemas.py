"""
Wire models for the HTTP API and the WebSocket event gateway.

Inbound gateway messages are a closed set of variants tagged by ``event``;
anything else is rejected before it reaches the matchmaker or the registry.
"""
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from core.models import MatchRecord, Preferences, Profile, Room, WaitingEntry
from utils.validators import validate_age_range


class PreferencesPayload(BaseModel):
    """Matching preferences sent with join-matching."""
    ageRange: Optional[Tuple[int, int]] = None
    interests: Optional[List[str]] = None
    gender: Optional[Literal["male", "female", "any"]] = None

    @field_validator("ageRange")
    @classmethod
    def check_age_range(cls, v):
        is_valid, error = validate_age_range(v)
        if not is_valid:
            raise ValueError(error)
        return v

    def to_preferences(self) -> Preferences:
        return Preferences(age_range=self.ageRange, interests=self.interests, gender=self.gender)


class UserInfoPayload(BaseModel):
    """Display information sent with join-matching."""
    name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0)
    interests: List[str] = Field(default_factory=list)

    def to_profile(self) -> Profile:
        return Profile(name=self.name, age=self.age, interests=list(self.interests))


class JoinMatchingData(BaseModel):
    userId: str = Field(min_length=1, max_length=200)
    preferences: Optional[PreferencesPayload] = None
    userInfo: Optional[UserInfoPayload] = None

    def to_entry(self, connection_id: str, arrival_timestamp: int) -> WaitingEntry:
        return WaitingEntry(
            user_id=self.userId,
            connection_id=connection_id,
            arrival_timestamp=arrival_timestamp,
            preferences=self.preferences.to_preferences() if self.preferences else None,
            profile=self.userInfo.to_profile() if self.userInfo else Profile(),
        )


class RoomIntentData(BaseModel):
    roomId: str = Field(min_length=1)
    userIdentifier: Optional[str] = None
    userId: Optional[str] = None
    userName: Optional[str] = None


class JoinMatchingIntent(BaseModel):
    event: Literal["join-matching"]
    data: JoinMatchingData


class LeaveMatchingIntent(BaseModel):
    event: Literal["leave-matching"]
    data: str = Field(min_length=1)


class GetStatsIntent(BaseModel):
    event: Literal["get-stats"]
    data: Optional[dict] = None


class JoinRoomIntent(BaseModel):
    event: Literal["join-room"]
    data: RoomIntentData


class LeaveRoomIntent(BaseModel):
    event: Literal["leave-room"]
    data: RoomIntentData


Intent = Annotated[
    Union[JoinMatchingIntent, LeaveMatchingIntent, GetStatsIntent, JoinRoomIntent, LeaveRoomIntent],
    Field(discriminator="event"),
]

intent_adapter = TypeAdapter(Intent)


class PartnerInfo(BaseModel):
    userId: str
    name: str
    age: Optional[int] = None
    interests: List[str] = Field(default_factory=list)

    @classmethod
    def from_entry(cls, entry: WaitingEntry) -> "PartnerInfo":
        return cls(
            userId=entry.user_id,
            name=entry.profile.name or "anonymous",
            age=entry.profile.age,
            interests=list(entry.profile.interests or []),
        )


class MatchFoundData(BaseModel):
    matchId: str
    roomId: str
    partner: PartnerInfo


class StatsData(BaseModel):
    waitingCount: int
    activeMatches: int
    averageWaitTime: float


class RoomJoinRequest(BaseModel):
    """Body of POST/DELETE /api/rooms/{roomId}/join."""
    userIdentifier: Optional[str] = None
    userId: Optional[str] = None
    userName: Optional[str] = None
    action: Optional[str] = None


class RoomCreateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    isPrivate: bool = False
    createdBy: Optional[str] = None


class CleanupRequest(BaseModel):
    cleanupType: Optional[str] = None


class MediaTokenRequest(BaseModel):
    userIdentifier: Optional[str] = None
    userName: Optional[str] = None


class MediaTokenResponse(BaseModel):
    token: str
    mediaRoomId: str
    serverUrl: str


def room_to_wire(room: Optional[Room]) -> Optional[dict]:
    """Room as clients see it (camelCase)."""
    if room is None:
        return None
    return {
        "id": room.id,
        "name": room.name,
        "description": room.description,
        "isPrivate": room.is_private,
        "members": room.members,
        "createdAt": room.created_at,
        "createdBy": room.created_by,
    }


def match_to_wire(match: MatchRecord) -> dict:
    return {
        "matchId": match.match_id,
        "users": list(match.participant_ids),
        "roomId": match.room_id,
        "status": match.status,
        "createdAt": match.created_at,
    }
