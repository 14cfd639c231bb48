# presence.py — Ephemeral presence rooms with best-effort fan-out
"""
Presence room registry and message protocol.

A room (one per viewed project) maps participant ids to presence records
and to the connection that announced them. Nothing here is persisted: a
late joiner reconciles through the ``presence.sync`` snapshot it receives
when its connection opens.

Inbound message types:
    presence.join   {user}               → presence.join {user} to others
    cursor.move     {cursor}             → cursor.move {userId, cursor} to others
    presence.update {viewing?, editing?} → presence.update {userId, viewing, editing} to others
    event           {event}              → event {event} to everyone, sender included
    ping                                 → pong to sender

A closing connection that had joined produces presence.leave {userId}.
"""
import os
import json
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from starlette.websockets import WebSocketState

from telemetry import tracer

logger = logging.getLogger("ralph-multiplayer.presence")

PRESENCE_SEND_TIMEOUT = float(os.getenv("PRESENCE_SEND_TIMEOUT", "5.0"))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PresenceConnection:
    """One live socket, plus the participant id bound by presence.join"""

    def __init__(self, websocket):
        self.websocket = websocket
        self.user_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        for attr in ("client_state", "application_state"):
            if getattr(self.websocket, attr, WebSocketState.CONNECTED) != WebSocketState.CONNECTED:
                return False
        return True

    async def send_text(self, payload: str) -> bool:
        """Deliver one frame; closed, failing or stalled peers are skipped"""
        if not self.is_open:
            return False
        try:
            await asyncio.wait_for(self.websocket.send_text(payload), timeout=PRESENCE_SEND_TIMEOUT)
            return True
        except asyncio.TimeoutError:
            logger.debug(f"Send to {self.user_id or 'unjoined'} timed out, skipped")
        except Exception as e:
            logger.debug(f"Send to {self.user_id or 'unjoined'} failed, skipped: {e}")
        return False

    async def send(self, message: dict) -> bool:
        return await self.send_text(json.dumps(message, default=str))


class PresenceRoom:
    """Participants currently viewing one project"""

    def __init__(self, room_id: str):
        self.room_id = room_id
        self.users: Dict[str, dict] = {}  # user_id -> presence record
        self.sockets: Dict[str, PresenceConnection] = {}  # user_id -> connection
        self.connections: Set[PresenceConnection] = set()  # every open connection, joined or not
        self.lock = asyncio.Lock()

    def snapshot(self) -> List[dict]:
        return [dict(u) for u in self.users.values()]

    async def broadcast(self, message: dict, exclude: Optional[str] = None) -> int:
        """Fan out to joined participants concurrently; returns deliveries"""
        targets = [conn for uid, conn in self.sockets.items() if uid != exclude]
        if not targets:
            return 0
        payload = json.dumps(message, default=str)
        with tracer.start_as_current_span(
            "presence.broadcast",
            attributes={"room.id": self.room_id, "message.type": str(message.get("type")), "targets": len(targets)},
        ) as span:
            results = await asyncio.gather(*(conn.send_text(payload) for conn in targets))
            delivered = sum(1 for ok in results if ok)
            span.set_attribute("delivered", delivered)
        return delivered

    async def join(self, connection: PresenceConnection, user: dict) -> dict:
        user_id = str(user["userId"])
        async with self.lock:
            replaced = None
            previous = connection.user_id
            if previous and previous != user_id and self.sockets.get(previous) is connection:
                # Same connection re-announcing under a new identity
                replaced = previous
                self.sockets.pop(previous, None)
                self.users.pop(previous, None)

            presence = {
                "name": "Anonymous",
                "avatar": "",
                "color": None,
                **user,
                "userId": user_id,
                "cursor": None,
                "viewing": {"type": "project", "id": self.room_id},
                "editing": None,
                "lastSeen": _now(),
            }
            self.users[user_id] = presence
            self.sockets[user_id] = connection
            self.connections.add(connection)
            connection.user_id = user_id

        logger.info(f"Presence join: user={user_id[:8]} room={self.room_id[:8]}")
        if replaced:
            await self.broadcast({"type": "presence.leave", "userId": replaced})
        await self.broadcast({"type": "presence.join", "user": presence}, exclude=user_id)
        return presence

    async def move_cursor(self, connection: PresenceConnection, cursor: Any) -> bool:
        user_id = connection.user_id
        if user_id is None:
            return False
        async with self.lock:
            presence = self.users.get(user_id)
            if presence is None:
                return False
            presence["cursor"] = cursor
            presence["lastSeen"] = _now()
        await self.broadcast({"type": "cursor.move", "userId": user_id, "cursor": cursor}, exclude=user_id)
        return True

    async def update_presence(self, connection: PresenceConnection, fields: dict) -> bool:
        user_id = connection.user_id
        if user_id is None:
            return False
        async with self.lock:
            presence = self.users.get(user_id)
            if presence is None:
                return False
            if "viewing" in fields and fields["viewing"]:
                presence["viewing"] = fields["viewing"]
            if "editing" in fields:
                presence["editing"] = fields["editing"]
            presence["lastSeen"] = _now()
            update = {
                "type": "presence.update",
                "userId": user_id,
                "viewing": presence["viewing"],
                "editing": presence["editing"],
            }
        await self.broadcast(update, exclude=user_id)
        return True

    async def relay_event(self, event: Any) -> int:
        return await self.broadcast({"type": "event", "event": event})


class PresenceRegistry:
    """Room id → room; rooms appear on first connection and vanish when empty"""

    def __init__(self):
        self._rooms: Dict[str, PresenceRoom] = {}

    def get(self, room_id: str) -> Optional[PresenceRoom]:
        return self._rooms.get(room_id)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    async def open(self, room_id: str, connection: PresenceConnection) -> PresenceRoom:
        """Register a new connection and send it the current room snapshot"""
        while True:
            room = self._rooms.get(room_id)
            if room is None:
                room = self._rooms[room_id] = PresenceRoom(room_id)
            async with room.lock:
                # The room may have emptied and been dropped while we waited
                if self._rooms.get(room_id) is room:
                    room.connections.add(connection)
                    users = room.snapshot()
                    break
        await connection.send({"type": "presence.sync", "users": users})
        return room

    async def close(self, room: PresenceRoom, connection: PresenceConnection) -> None:
        user_id = connection.user_id
        async with room.lock:
            room.connections.discard(connection)
            departed = user_id is not None and room.sockets.get(user_id) is connection
            if departed:
                room.sockets.pop(user_id, None)
                room.users.pop(user_id, None)
            connection.user_id = None
            if not room.connections and self._rooms.get(room.room_id) is room:
                del self._rooms[room.room_id]

        if departed:
            logger.info(f"Presence leave: user={user_id[:8]} room={room.room_id[:8]}")
            await room.broadcast({"type": "presence.leave", "userId": user_id})

    def online_users(self, room_id: str) -> List[dict]:
        room = self._rooms.get(room_id)
        return room.snapshot() if room else []

    def stats(self) -> dict:
        return {
            "rooms": len(self._rooms),
            "connections": sum(len(r.connections) for r in self._rooms.values()),
            "participants": sum(len(r.users) for r in self._rooms.values()),
        }


async def handle_message(room: PresenceRoom, connection: PresenceConnection, raw: str) -> None:
    """Dispatch one inbound frame. Malformed frames are logged and dropped."""
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("message is not a JSON object")
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse message in room {room.room_id[:8]}: {e}")
        return

    msg_type = data.get("type", "")

    if msg_type == "presence.join":
        user = data.get("user")
        if not isinstance(user, dict) or not user.get("userId"):
            logger.warning(f"presence.join without user id in room {room.room_id[:8]}, dropped")
            return
        await room.join(connection, user)

    elif msg_type == "cursor.move":
        await room.move_cursor(connection, data.get("cursor"))

    elif msg_type == "presence.update":
        await room.update_presence(connection, data)

    elif msg_type == "event":
        await room.relay_event(data.get("event"))

    elif msg_type == "ping":
        await connection.send({"type": "pong", "timestamp": _now()})

    else:
        logger.debug(f"Ignoring message type {msg_type!r} in room {room.room_id[:8]}")
