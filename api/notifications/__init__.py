"""Notifications API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from ..dependencies import get_current_user, get_engine
from ..websockets import WebSocketChannel, serve_client_messages

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"]
)

@router.get("")
async def get_notifications(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    user_id: str = Depends(get_current_user),
    engine=Depends(get_engine)
):
    """The calling user's notifications, most recent first."""
    return await engine.notifications.get_user_notifications(user_id, page=page, limit=limit)

@router.patch("/clear-all")
async def clear_all_notifications(
    user_id: str = Depends(get_current_user),
    engine=Depends(get_engine)
):
    """Delete all of the calling user's notifications."""
    deleted = await engine.notifications.clear_all_notifications(user_id)
    return {"user_id": user_id, "deleted": deleted}

@router.websocket("/stream")
async def notification_stream(
    websocket: WebSocket,
    user_id: str = Query(None),
    recent: bool = Query(True)
):
    """Live notification channel.

    On connect the client receives a ``connected`` message and, unless
    ``recent=false``, a ``recent`` batch of its latest notifications. New
    outcomes then arrive as ``notification`` events.
    """
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    engine = getattr(websocket.app.state, 'engine', None)
    if engine is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    await websocket.accept()

    channel = WebSocketChannel(websocket)
    engine.hub.connect(user_id, channel)
    try:
        await channel.send({
            "type": "connected",
            "user_id": user_id,
            "timestamp": engine.clock.now().isoformat()
        })
        if recent:
            notifications = await engine.notifications.get_recent_notifications(user_id)
            await channel.send({
                "type": "recent",
                "user_id": user_id,
                "notifications": notifications,
                "timestamp": engine.clock.now().isoformat()
            })
        await serve_client_messages(websocket, channel)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Notification stream error for {user_id}: {e}")
    finally:
        engine.hub.disconnect(user_id, channel)
