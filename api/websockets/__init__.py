"""WebSocket plumbing for real-time notification delivery."""

import logging
from datetime import datetime, timezone

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

class WebSocketChannel:
    """Hub channel that writes events to one WebSocket as JSON."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, message: dict):
        await self.websocket.send_json(jsonable_encoder(message))

async def serve_client_messages(websocket: WebSocket, channel: WebSocketChannel):
    """Answer client pings until the socket closes."""
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                logger.warning("Ignoring non-JSON WebSocket message")
                continue

            if isinstance(message, dict) and message.get("type") == "ping":
                await channel.send({
                    "type": "pong",
                    "timestamp": datetime.now(timezone.utc).isoformat()
                })
    except WebSocketDisconnect:
        pass

__all__ = ['WebSocketChannel', 'serve_client_messages']
