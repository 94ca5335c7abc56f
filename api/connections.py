"""
Connection registry for the event gateway.

Each gateway instance only holds its own sockets. Events addressed to a
connection held elsewhere are published on a Redis channel and delivered by
whichever instance holds that connection.
"""
import asyncio
import json
import logging
from typing import Dict, Optional

import redis.asyncio as redis
from fastapi import WebSocket
from starlette.websockets import WebSocketState

from config.settings import settings
from core.matchmaker import is_stale_match
from utils.identifiers import decode

logger = logging.getLogger(__name__)


def envelope(event: str, data) -> dict:
    """Wrap an outbound event the way clients expect it."""
    return {"event": event, "data": data}


async def safe_send_json(websocket: WebSocket, payload: dict) -> bool:
    """Send JSON to a socket, returning False if it is already gone."""
    if websocket.client_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(payload)
        return True
    except (RuntimeError, ConnectionError) as e:
        logger.debug(f"Send failed: {e}")
        return False


class ConnectionManager:
    """Maps connection ids to sockets and tracks each connection's current wait session."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, channel: Optional[str] = None):
        self.redis = redis_client
        self.channel = channel or settings.EVENT_CHANNEL
        self.connections: Dict[str, WebSocket] = {}
        self.wait_started: Dict[str, int] = {}

    def set_redis(self, client: Optional[redis.Redis]):
        self.redis = client

    def attach(self, connection_id: str, websocket: WebSocket):
        self.connections[connection_id] = websocket

    def detach(self, connection_id: str):
        self.connections.pop(connection_id, None)
        self.wait_started.pop(connection_id, None)

    def is_local(self, connection_id: str) -> bool:
        return connection_id in self.connections

    def start_session(self, connection_id: str, started_at: int):
        """Mark the start of a new wait session (queue join or leave)."""
        self.wait_started[connection_id] = started_at

    def session_started_at(self, connection_id: str) -> Optional[int]:
        return self.wait_started.get(connection_id)

    async def send(self, connection_id: str, event: str, data, match_created_at: Optional[int] = None) -> bool:
        """
        Deliver an event to a connection, locally or through the relay channel.

        Args:
            connection_id: Target connection
            event: Event name
            data: Event payload
            match_created_at: Creation time of the match this event announces;
                the event is dropped if it predates the target's wait session

        Returns:
            True if the event was delivered or handed to the relay
        """
        payload = envelope(event, data)
        if self.is_local(connection_id):
            return await self._deliver(connection_id, payload, match_created_at)

        if self.redis is None:
            logger.debug(f"Connection {connection_id} is not connected here, dropping {event}")
            return False

        message = {"connection_id": connection_id, "payload": payload, "match_created_at": match_created_at}
        await self.redis.publish(self.channel, json.dumps(message))
        return True

    async def _deliver(self, connection_id: str, payload: dict, match_created_at: Optional[int]) -> bool:
        websocket = self.connections.get(connection_id)
        if websocket is None:
            return False
        if match_created_at is not None and is_stale_match(match_created_at, self.session_started_at(connection_id)):
            logger.warning(f"Discarding stale {payload['event']} for connection {connection_id}")
            return False
        return await safe_send_json(websocket, payload)

    async def handle_relay_message(self, raw) -> bool:
        """Deliver a relayed event if the target connection lives on this instance."""
        try:
            message = json.loads(decode(raw))
            connection_id = message["connection_id"]
            payload = message["payload"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed relay message: {e}")
            return False
        if not self.is_local(connection_id):
            return False
        return await self._deliver(connection_id, payload, message.get("match_created_at"))

    async def run_relay(self):
        """Subscribe to the relay channel and deliver events until cancelled."""
        if self.redis is None:
            return
        logger.info(f"📡 Event relay listening on {self.channel}")
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self.handle_relay_message(message["data"])
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in event relay: {e}", exc_info=True)
                await asyncio.sleep(5)
            finally:
                await pubsub.aclose()
