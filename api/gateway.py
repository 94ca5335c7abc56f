"""
WebSocket event gateway.

Clients send ``{"event": ..., "data": ...}`` messages; every message is
validated against the closed set of intents before it is dispatched.
Messages from one connection are handled in order; connections are handled
concurrently.
"""
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.connections import ConnectionManager
from api.dependencies import get_connection_manager, get_services
from api.rooms import join_room, leave_room
from api.schemas import (
    GetStatsIntent,
    JoinMatchingIntent,
    JoinRoomIntent,
    LeaveMatchingIntent,
    LeaveRoomIntent,
    MatchFoundData,
    PartnerInfo,
    StatsData,
    intent_adapter,
)
from config.settings import settings
from core.errors import RoomNotFoundError
from core.models import MatchRecord, WaitingEntry
from utils.identifiers import now_ms
from utils.validators import validate_identifier

logger = logging.getLogger(__name__)

router = APIRouter()


def origin_allowed(origin) -> bool:
    """Apply the CORS allow-list to WebSocket handshakes (non-browser clients send no Origin)."""
    if not origin:
        return True
    origins = settings.CORS_ORIGINS
    return "*" in origins or origin in origins


async def notify_match(manager: ConnectionManager, match: MatchRecord, a: WaitingEntry, b: WaitingEntry):
    """Send match-found to both participants, each seeing the other's info."""
    for recipient, partner in ((a, b), (b, a)):
        data = MatchFoundData(matchId=match.match_id, roomId=match.room_id, partner=PartnerInfo.from_entry(partner))
        await manager.send(
            recipient.connection_id,
            "match-found",
            data.model_dump(),
            match_created_at=match.created_at,
        )


async def handle_join_matching(connection_id: str, intent: JoinMatchingIntent, manager: ConnectionManager):
    matchmaker = get_services().matchmaker
    try:
        entry = intent.data.to_entry(connection_id, now_ms())
        if not await matchmaker.join_queue(entry):
            await manager.send(connection_id, "matching-error", {"message": "Failed to join queue"})
            return

        manager.start_session(connection_id, entry.arrival_timestamp)
        await manager.send(connection_id, "matching-joined", {"success": True})

        partner = await matchmaker.find_match(entry.user_id)
        if not partner:
            return
        match = await matchmaker.create_match(entry, partner)
        if match:
            await notify_match(manager, match, entry, partner)
    except Exception as e:
        logger.error(f"Matching error for {intent.data.userId}: {e}", exc_info=True)
        await manager.send(connection_id, "matching-error", {"message": "Internal server error"})


async def handle_leave_matching(connection_id: str, intent: LeaveMatchingIntent, manager: ConnectionManager):
    matchmaker = get_services().matchmaker
    try:
        left = await matchmaker.leave_queue(intent.data)
    except Exception as e:
        logger.error(f"Leave matching error for {intent.data}: {e}", exc_info=True)
        left = False

    if not left:
        await manager.send(connection_id, "matching-error", {"message": "Failed to leave queue"})
        return
    # Matches created before this point belong to the abandoned session
    manager.start_session(connection_id, now_ms())
    await manager.send(connection_id, "matching-left", {"success": True})


async def handle_get_stats(connection_id: str, intent: GetStatsIntent, manager: ConnectionManager):
    try:
        stats = await get_services().matchmaker.get_stats()
        await manager.send(connection_id, "stats-updated", StatsData(**stats).model_dump())
    except Exception as e:
        logger.error(f"Stats error: {e}", exc_info=True)


async def handle_join_room(connection_id: str, intent: JoinRoomIntent, manager: ConnectionManager):
    data = intent.data
    is_valid, error = validate_identifier(data.userIdentifier)
    if not is_valid:
        await manager.send(connection_id, "join-failed", {"message": error})
        return
    try:
        payload = await join_room(get_services(), data.roomId, data.userIdentifier, data.userId)
    except RoomNotFoundError:
        await manager.send(connection_id, "room-not-found", {"message": "Room not found"})
        return
    except Exception as e:
        logger.error(f"Failed to join room {data.roomId}: {e}", exc_info=True)
        await manager.send(connection_id, "join-failed", {"message": "Failed to join room"})
        return
    await manager.send(connection_id, "room-updated", payload)


async def handle_leave_room(connection_id: str, intent: LeaveRoomIntent, manager: ConnectionManager):
    data = intent.data
    if not data.userIdentifier and not data.userId:
        logger.warning(f"leave-room without identifier from connection {connection_id}")
        return
    try:
        payload = await leave_room(get_services(), data.roomId, data.userIdentifier, data.userId)
        await manager.send(connection_id, "room-updated", payload)
    except Exception as e:
        logger.error(f"Failed to leave room {data.roomId}: {e}", exc_info=True)


HANDLERS = {
    JoinMatchingIntent: handle_join_matching,
    LeaveMatchingIntent: handle_leave_matching,
    GetStatsIntent: handle_get_stats,
    JoinRoomIntent: handle_join_room,
    LeaveRoomIntent: handle_leave_room,
}


async def dispatch(connection_id: str, raw: str, manager: ConnectionManager):
    """Validate one inbound message and run its handler."""
    try:
        intent = intent_adapter.validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Invalid message from connection {connection_id}: {e.error_count()} error(s)")
        await manager.send(connection_id, "matching-error", {"message": "Invalid message"})
        return
    await HANDLERS[type(intent)](connection_id, intent, manager)


async def handle_disconnect(connection_id: str):
    """Take a disconnected user out of the queue."""
    matchmaker = get_services().matchmaker
    try:
        user_id = await matchmaker.find_user_by_connection(connection_id)
        if user_id:
            await matchmaker.leave_queue(user_id)
    except Exception as e:
        logger.error(f"Disconnect cleanup error for connection {connection_id}: {e}", exc_info=True)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for matching and room events."""
    if not origin_allowed(websocket.headers.get("origin")):
        await websocket.close(code=1008, reason="Origin not allowed")
        return

    manager = get_connection_manager()
    connection_id = uuid.uuid4().hex
    await websocket.accept()
    manager.attach(connection_id, websocket)
    logger.info(f"Connection {connection_id} opened")

    try:
        while True:
            raw = await websocket.receive_text()
            await dispatch(connection_id, raw, manager)
    except WebSocketDisconnect:
        logger.info(f"Connection {connection_id} closed")
    finally:
        manager.detach(connection_id)
        await handle_disconnect(connection_id)
