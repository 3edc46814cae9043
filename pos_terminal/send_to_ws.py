"""
WebSocket client for sending events to the frontend.
"""

import json
from typing import Any, Optional

import websockets
from websockets.exceptions import WebSocketException

from pos_terminal.loggers import logger


STATE_EVENT = "posState"


async def send_to_ws(
    event: str,
    ws_url: str,
    data: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Send an event to the WebSocket server.

    Args:
        event: The event name/type to send.
        ws_url: WebSocket URL to connect to.
        data: Optional dictionary of event data.

    Returns:
        True if the message was sent successfully, False otherwise.

    Example:
        await send_to_ws(
            event='posState',
            ws_url='ws://localhost:8005/ws',
            data={'step': 'summary', 'amount_cents': 1250},
        )
    """
    message = {"event": event, "data": data}

    try:
        async with websockets.connect(ws_url) as ws:
            await ws.send(json.dumps(message))
            logger.debug(f"WebSocket message sent: {event}")
            return True
    except (WebSocketException, OSError) as e:
        logger.warning(f"WebSocket connection error: {e}")
        return False
