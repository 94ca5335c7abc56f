"""
HTTP routes for rooms: directory listing, creation, membership and media tokens.
"""
import json
import logging
from typing import Optional, Type

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ValidationError

from api.dependencies import get_services
from api.schemas import (
    CleanupRequest,
    MediaTokenRequest,
    MediaTokenResponse,
    RoomCreateRequest,
    RoomJoinRequest,
    room_to_wire,
)
from config.settings import settings
from core.errors import RoomNotFoundError
from core.media_tokens import MediaTokenError, generate_media_token
from core.services import Services
from utils.validators import validate_identifier, validate_room_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


async def read_body(request: Request, model: Type[BaseModel]) -> BaseModel:
    """
    Parse a JSON body regardless of its content type.

    Page-unload beacons arrive as text/plain, so the body is decoded by hand
    instead of relying on FastAPI's JSON body handling.
    """
    raw = await request.body()
    try:
        data = json.loads(raw) if raw else {}
        return model.model_validate(data)
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid request body")


async def join_room(services: Services, room_id: str, user_identifier: str, user_id: Optional[str] = None) -> dict:
    """
    Join a room and build the response payload.

    Raises:
        RoomNotFoundError: If the room does not exist
    """
    already_joined = await services.registry.is_member(room_id, user_identifier)
    await services.registry.join(room_id, user_identifier, user_id)
    room = await services.directory.get_room(room_id)
    participants = await services.registry.members(room_id)
    return {
        "room": room_to_wire(room),
        "message": "Already joined" if already_joined else "Successfully joined room",
        "participants": participants,
        "userIdentifier": user_identifier,
    }


async def leave_room(
    services: Services,
    room_id: str,
    user_identifier: Optional[str] = None,
    user_id: Optional[str] = None,
) -> dict:
    """
    Leave a room and build the response payload.

    With a user ID every identifier carrying that user's prefix is removed
    as well, which covers clients that lost their exact identifier.
    """
    if user_id:
        removed = await services.registry.leave_by_user_prefix(room_id, user_id, user_identifier)
    else:
        removed = 1 if await services.registry.is_member(room_id, user_identifier) else 0
        await services.registry.leave(room_id, user_identifier)

    room = await services.directory.get_room(room_id)
    participants = await services.registry.members(room_id)
    if removed:
        message = f"Left room successfully ({removed} identifiers removed)"
    else:
        message = "User was not in room"
    return {"room": room_to_wire(room), "message": message, "participants": participants}


@router.get("")
async def list_rooms(search: Optional[str] = None, includeEmpty: bool = False):
    """List public rooms, optionally filtered by a name/description search."""
    services = get_services()
    try:
        rooms = await services.directory.list_rooms(search=search, include_empty=includeEmpty)
    except Exception as e:
        logger.error(f"Failed to list rooms: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list rooms")
    return {"rooms": [room_to_wire(room) for room in rooms], "total": len(rooms)}


@router.post("", status_code=201)
async def create_room(request: Request):
    """Create a new room."""
    body: RoomCreateRequest = await read_body(request, RoomCreateRequest)
    is_valid, error = validate_room_name(body.name)
    if not is_valid:
        raise HTTPException(status_code=400, detail=error)

    services = get_services()
    try:
        room = await services.directory.create_room(
            name=body.name.strip(),
            description=(body.description or "").strip(),
            is_private=body.isPrivate,
            created_by=body.createdBy,
        )
    except Exception as e:
        logger.error(f"Failed to create room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create room")
    return {"room": room_to_wire(room), "message": "Room created"}


@router.post("/cleanup")
async def cleanup_rooms(request: Request):
    """Run room cleanup on demand ("empty", "old" or "all")."""
    body: CleanupRequest = await read_body(request, CleanupRequest)
    sweeper = get_services().sweeper
    try:
        if body.cleanupType == "empty":
            cleaned = await sweeper.cleanup_empty_rooms()
            message = f"Removed {cleaned} empty rooms"
        elif body.cleanupType == "old":
            cleaned = await sweeper.cleanup_old_rooms(max_age_hours=24)
            message = f"Removed {cleaned} old rooms"
        elif body.cleanupType == "all":
            empty_count = await sweeper.cleanup_empty_rooms()
            old_count = await sweeper.cleanup_old_rooms(max_age_hours=1)
            cleaned = empty_count + old_count
            message = f"Removed {empty_count} empty rooms and {old_count} old rooms"
        else:
            raise HTTPException(status_code=400, detail='Invalid cleanup type. Use "empty", "old", or "all"')
        remaining = await get_services().directory.count()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to cleanup rooms: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to cleanup rooms")

    logger.info(f"Cleanup completed: {message}")
    return {"success": True, "message": message, "cleanedCount": cleaned, "remainingRooms": remaining}


@router.get("/{room_id}")
async def get_room(room_id: str):
    """Get a room and its current participants."""
    services = get_services()
    room = await services.directory.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    participants = await services.registry.members(room_id)
    return {"room": room_to_wire(room), "participants": participants}


@router.post("/{room_id}/join")
async def join_room_route(room_id: str, request: Request):
    """
    Join a room, or leave it when the body carries action "leave".

    The leave variant exists for page-unload beacons, which can only POST.
    """
    body: RoomJoinRequest = await read_body(request, RoomJoinRequest)
    services = get_services()

    if body.action == "leave":
        if not body.userIdentifier and not body.userId:
            raise HTTPException(status_code=400, detail="User identifier is required")
        try:
            return await leave_room(services, room_id, body.userIdentifier, body.userId)
        except Exception as e:
            logger.error(f"Failed to leave room {room_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to leave room")

    is_valid, error = validate_identifier(body.userIdentifier)
    if not is_valid:
        raise HTTPException(status_code=400, detail=error)

    try:
        return await join_room(services, room_id, body.userIdentifier, body.userId)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail="Room not found")
    except Exception as e:
        logger.error(f"Failed to join room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to join room")


@router.delete("/{room_id}/join")
async def leave_room_route(room_id: str, request: Request):
    """Leave a room."""
    body: RoomJoinRequest = await read_body(request, RoomJoinRequest)
    is_valid, error = validate_identifier(body.userIdentifier)
    if not is_valid:
        raise HTTPException(status_code=400, detail=error)

    services = get_services()
    try:
        if not await services.directory.exists(room_id):
            raise HTTPException(status_code=404, detail="Room not found")
        payload = await leave_room(services, room_id, body.userIdentifier, body.userId)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to leave room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to leave room")

    payload["message"] = "Successfully left room"
    return payload


@router.post("/{room_id}/token", response_model=MediaTokenResponse)
async def create_media_token(room_id: str, request: Request):
    """Issue a media service access token to a current member of the room."""
    body: MediaTokenRequest = await read_body(request, MediaTokenRequest)
    is_valid, error = validate_identifier(body.userIdentifier)
    if not is_valid:
        raise HTTPException(status_code=400, detail=error)

    services = get_services()
    room = await services.directory.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    if not await services.registry.is_member(room_id, body.userIdentifier):
        raise HTTPException(status_code=403, detail="Not a member of this room")

    try:
        media_room_id = room.media_room_id or room.id
        token = generate_media_token(body.userIdentifier, media_room_id, name=body.userName)
    except MediaTokenError as e:
        logger.error(f"Cannot issue media token for room {room_id}: {e}")
        raise HTTPException(status_code=503, detail="Media service is not configured")

    return MediaTokenResponse(token=token, mediaRoomId=media_room_id, serverUrl=settings.MEDIA_SERVER_URL)
