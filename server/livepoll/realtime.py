# websocket endpoint: join/leave poll channels
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from .broadcast import BroadcastHub

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketSubscriber:
    """
    Adapts a WebSocket to the hub's Subscriber capability.
    Hashes by identity, one instance per connection.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.closed = False

    @property
    def connected(self) -> bool:
        return (
            not self.closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, message: dict) -> None:
        await self.websocket.send_json(message)

    async def close(self, code: int = 1011) -> None:
        was_open = self.connected
        self.closed = True
        if was_open:
            await self.websocket.close(code=code)

    def __repr__(self) -> str:
        client = self.websocket.client
        return f"<WebSocketSubscriber {client.host}:{client.port}>" if client else "<WebSocketSubscriber>"


def _parse(message) -> tuple:
    """
    {"action": "join"|"leave", "pollId": "..."} -> (action, poll_id)
    """
    if not isinstance(message, dict):
        raise ValueError("Expected a JSON object")
    action = message.get("action")
    poll_id = message.get("pollId")
    if action not in ("join", "leave"):
        raise ValueError("action must be 'join' or 'leave'")
    if not isinstance(poll_id, str) or not poll_id:
        raise ValueError("pollId is required")
    return action, poll_id


@router.websocket("/ws")
async def poll_channel(websocket: WebSocket):
    hub: BroadcastHub = websocket.app.state.hub
    await websocket.accept()
    sub = WebSocketSubscriber(websocket)
    logger.info("Subscriber connected: %r", sub)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            if sub.closed:
                # the hub gave up on this connection; wait for the client's close frame
                continue

            text = frame.get("text")
            if text is None:
                await websocket.send_json({"event": "error", "error": "Expected a text frame"})
                continue
            try:
                message = json.loads(text)
            except ValueError:
                await websocket.send_json({"event": "error", "error": "Malformed JSON"})
                continue

            try:
                action, poll_id = _parse(message)
            except ValueError as e:
                await websocket.send_json({"event": "error", "error": str(e)})
                continue

            if action == "join":
                hub.join(poll_id, sub)
                logger.info("Subscriber %r joined poll: %s", sub, poll_id)
                await websocket.send_json({"event": "joined", "pollId": poll_id})
            else:
                hub.leave(poll_id, sub)
                logger.info("Subscriber %r left poll: %s", sub, poll_id)
                await websocket.send_json({"event": "left", "pollId": poll_id})
    except WebSocketDisconnect:
        pass
    finally:
        sub.closed = True
        hub.disconnect(sub)
        logger.info("Subscriber disconnected: %r", sub)
