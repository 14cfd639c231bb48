# routers/presence.py — Real-time presence rooms over WebSocket
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from dependencies import get_presence_registry
from presence import PresenceConnection, PresenceRegistry, handle_message

router = APIRouter(tags=["Presence"])
logger = logging.getLogger("ralph-multiplayer.ws")


@router.websocket("/party/{room_id}")
async def presence_endpoint(
    websocket: WebSocket,
    room_id: str,
    registry: PresenceRegistry = Depends(get_presence_registry),
):
    """One connection per browser tab; the room id is the project id"""
    await websocket.accept()
    connection = PresenceConnection(websocket)
    room = await registry.open(room_id, connection)
    logger.info(f"WS connected: room={room_id[:8]}")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                try:
                    raw = message["bytes"].decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning(f"Dropped non-UTF-8 binary frame in room {room_id[:8]}")
                    continue
            await handle_message(room, connection, raw)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WS error in room {room_id[:8]}: {e}", exc_info=True)
    finally:
        await registry.close(room, connection)
        logger.info(f"WS disconnected: room={room_id[:8]}")


@router.get("/party/stats")
async def presence_stats(registry: PresenceRegistry = Depends(get_presence_registry)):
    return registry.stats()
