# tests/fakes.py — In-memory stand-ins for presence tests
import json
import asyncio

from starlette.websockets import WebSocketState


class FakeSocket:
    """Records every frame sent to it; can be closed, broken or stalled"""

    def __init__(self, fail: bool = False, stall: bool = False):
        self.sent = []
        self.fail = fail
        self.stall = stall
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, payload: str):
        if self.fail:
            raise RuntimeError("connection reset")
        if self.stall:
            await asyncio.sleep(3600)
        self.sent.append(json.loads(payload))

    def close(self):
        self.client_state = WebSocketState.DISCONNECTED

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, msg_type: str):
        return [m for m in self.sent if m["type"] == msg_type]
