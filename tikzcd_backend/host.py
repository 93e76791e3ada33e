"""
Backend host - the SessionHost used behind the FastAPI shell.

The browser page is the real user interface, so everything the controller
asks of its host is turned into a message for the connected pages:
- Alerts and prompts are queued until the user acknowledges them
- Clipboard copies and location updates are relayed over the WebSocket
- Timers run on the asyncio event loop serving the request
"""

import asyncio
import logging
from typing import Callable, Optional

from tikzcd_core.session import SessionHost

from .websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)


class BackendHost(SessionHost):
    """Queues user-facing messages for the connected editor pages."""

    def __init__(self, ws: WebSocketManager):
        self._ws = ws
        self._alerts: list[dict] = []
        self._outbox: list[dict] = []
        self._on_message: Optional[Callable[[], None]] = None

    def on_message(self, callback: Callable[[], None]):
        """Register the callback fired whenever a message is queued."""
        self._on_message = callback

    def _post(self, message: dict):
        self._outbox.append(message)
        if self._on_message is not None:
            self._on_message()

    # --- SessionHost ---

    def alert(self, message: str) -> None:
        logger.warning("Alert: %s", message)
        item = {"type": "alert", "message": message}
        self._alerts.append(item)
        self._post(item)

    def prompt(self, message: str, value: str) -> None:
        item = {"type": "prompt", "message": message, "value": value}
        self._alerts.append(item)
        self._post(item)

    def copy_text(self, text: str) -> bool:
        # Only a connected page can reach a clipboard
        if self._ws.connection_count == 0:
            return False
        self._post({"type": "copy_text", "text": text})
        return True

    def replace_location(self, fragment: str) -> None:
        self._post({"type": "location", "fragment": fragment})

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        asyncio.get_running_loop().call_later(delay, callback)

    # --- Alerts ---

    @property
    def pending_alerts(self) -> list[dict]:
        return list(self._alerts)

    def acknowledge(self) -> int:
        """Acknowledge all pending alerts, returning how many there were."""
        count = len(self._alerts)
        self._alerts.clear()
        return count

    def drain_messages(self) -> list[dict]:
        """Take every message queued for broadcast."""
        messages, self._outbox = self._outbox, []
        return messages
