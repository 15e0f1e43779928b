"""Chat panel WebSocket bridge."""

import re
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from parley.api.services import Services, get_ws_services
from parley.config import ALLOWED_ORIGIN_REGEX
from parley.utils.logging import logger

router = APIRouter(prefix="/chat", tags=["chat"])


def origin_allowed(origin: Optional[str]) -> bool:
    """Browsers always send Origin; other clients may omit it."""
    if origin is None:
        return True
    return re.fullmatch(ALLOWED_ORIGIN_REGEX, origin) is not None


@router.websocket("/ws")
async def panel_socket(websocket: WebSocket, services: Services = Depends(get_ws_services)):
    """
    One connection is one chat panel.

    Messages are processed one at a time; the next is read only after the
    previous one has been answered.
    """
    origin = websocket.headers.get("origin")
    if not origin_allowed(origin):
        logger.warning(f"Rejected panel connection from origin {origin}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    orch = services.orchestrator(websocket.send_json)
    logger.info(f"Panel connected, session {orch.session_id}")

    try:
        await orch.start()
        while True:
            payload = await websocket.receive_json()
            if not isinstance(payload, dict):
                logger.warning(f"Ignoring non-object panel message: {payload!r}")
                continue
            await orch.handle_message(payload)
    except WebSocketDisconnect:
        logger.info(f"Panel disconnected, session {orch.session_id}")
    finally:
        await orch.close()
