import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

logger = logging.getLogger(__name__)

router = APIRouter()

TOPICS = ("poll", "contest")


@router.websocket("/ws/{topic}/{entity_id}")
async def subscribe(websocket: WebSocket, topic: str, entity_id: int):
    """Live updates for one poll or contest. Client messages are ignored."""
    if topic not in TOPICS:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    manager = websocket.app.state.connection_manager
    channel = f"{topic}:{entity_id}"
    await manager.connect(channel, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"subscriber left {channel}")
    finally:
        manager.disconnect(channel, websocket)
