from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from constants import HUB_PATH
from hub import chat_hub
from logging_config import get_logger

logger = get_logger(__name__)

hub_router = APIRouter(tags=["hub"])


@hub_router.websocket(HUB_PATH)
async def hub_endpoint(websocket: WebSocket):
    """Chat hub WebSocket endpoint.

    Each text frame is one JSON invocation; the hub answers with completions and pushes
    events to every member of the chat room.
    """
    await websocket.accept()
    connection_id = chat_hub.new_connection_id()
    await chat_hub.on_connected(connection_id, websocket)

    error = None
    try:
        frame_count = 0
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            frame_count += 1
            logger.debug(f"Received frame #{frame_count} from connection {connection_id}")
            if message.get("text") is not None:
                await chat_hub.handle_frame(connection_id, message["text"])
            else:
                await chat_hub.reject_binary_frame(connection_id, message.get("bytes") or b"")
    except WebSocketDisconnect as e:
        logger.debug(f"WebSocket disconnected for connection {connection_id} (code {e.code})")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        error = e
    finally:
        await chat_hub.on_disconnected(connection_id, error)

    if error is not None:
        try:
            await websocket.close(code=1011)
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
