"""
Keyboard surface - maps key events onto session entry points.

- Alt / Space held: temporary Arrow / Pan tool
- Escape: dismiss the code popup (keydown), clear the selection (keyup)
- Ctrl+Z / Cmd+Z: undo, with Shift: redo
"""

from typing import TYPE_CHECKING

from pydantic import BaseModel

from .session import Tool

if TYPE_CHECKING:
    from .session import SessionController


TOOL_OVERRIDE_KEYS = {
    "Alt": Tool.ARROW,
    " ": Tool.PAN,
    "Space": Tool.PAN,
}


class KeyEvent(BaseModel):
    """A key press or release as delivered by the hosting shell."""
    key: str
    ctrl: bool = False
    meta: bool = False
    shift: bool = False


class KeyboardController:
    """Dispatches key events to a session. Handlers return True when consumed."""

    def __init__(self, session: "SessionController"):
        self._session = session

    def key_down(self, event: KeyEvent) -> bool:
        tool = TOOL_OVERRIDE_KEYS.get(event.key)
        if tool is not None:
            self._session.begin_tool_override(tool)
            return True

        if event.key == "Escape":
            self._session.dismiss_code_popup()
            return True

        if event.key.lower() == "z" and (event.ctrl or event.meta):
            if event.shift:
                self._session.redo()
            else:
                self._session.undo()
            return True

        return False

    def key_up(self, event: KeyEvent) -> bool:
        if event.key in TOOL_OVERRIDE_KEYS:
            self._session.end_tool_override()
            return True

        if event.key == "Escape":
            self._session.clear_selection()
            return True

        return False
