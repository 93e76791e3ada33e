"""
WebSocket Manager - relays session messages to the connected editor pages.

Each broadcast round sends the host's queued messages (alerts, prompts,
location and clipboard requests) in order, then one session_updated event
telling pages to refetch GET /api/session.
"""
import asyncio
import json
import logging
from typing import Iterable

from fastapi import WebSocket

logger = logging.getLogger(__name__)

SESSION_UPDATED = {"type": "session_updated"}


class WebSocketManager:
    """Registry of editor pages listening for session changes."""

    def __init__(self):
        self._pages: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._pages)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self._pages.append(websocket)
        logger.info("Editor page connected (%d open)", len(self._pages))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            if websocket in self._pages:
                self._pages.remove(websocket)
        logger.info("Editor page disconnected (%d open)", len(self._pages))

    async def publish(self, messages: Iterable[dict]):
        """
        Send every message, then session_updated, to each page.

        A page whose send fails is dropped and gets nothing further.
        """
        texts = [json.dumps(m) for m in messages]
        texts.append(json.dumps(SESSION_UPDATED))

        async with self._lock:
            dropped = []
            for page in self._pages:
                try:
                    for text in texts:
                        await page.send_text(text)
                except Exception as e:
                    logger.debug("Dropping editor page: %s", e)
                    dropped.append(page)
            for page in dropped:
                self._pages.remove(page)


# Global instance
ws_manager = WebSocketManager()
