"""
Session State Controller - the single owner of the edited diagram.

This module implements:
- The session state (document, active tool, selection, code popup, permalink
  confirmation) as one immutable snapshot replaced on every transition
- Mutation entry points for the editing surface, property panel, code popup,
  toolbox and keyboard
- Time-coalesced undo/redo via the HistoryLedger
- The host boundary (alerts, prompts, clipboard, location, timers)

Every entry point runs to completion before returning; observers only ever
see the state before or after a call.
"""

import logging
import time
from enum import Enum
from typing import Callable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from .config import SessionConfig
from .history import HistoryLedger, RecordOutcome
from .models import EMPTY_DIAGRAM, Diagram, Edge, EdgeUpdate
from .operations import merge_edge_fields, remove_edge
from .serialization import DecodeError, SerializationError, SerializationGateway

logger = logging.getLogger(__name__)

LEAVE_WARNING = "Do you really want to leave?"
INVALID_URL_MESSAGE = "Invalid URL encoding"
COPY_PROMPT_MESSAGE = "Copy link down below:"


class Tool(str, Enum):
    """Editing tools of the canvas."""
    PAN = "pan"
    ARROW = "arrow"


class NoEdgeSelectedError(RuntimeError):
    """An edge operation was requested while no edge is selected."""


class SessionState(BaseModel):
    """Everything the surfaces render from, as one immutable snapshot."""
    model_config = ConfigDict(frozen=True)

    diagram: Diagram = EMPTY_DIAGRAM
    tool: Tool = Tool.PAN
    selected_edge: Optional[int] = None
    code_popup_open: bool = False
    code_buffer: str = ""
    confirm_link_copy: bool = False
    # Tool active before a held override key, None when no override is held
    override_origin: Optional[Tool] = None
    location: str = ""


class SessionHost:
    """
    The hosting shell's side of the controller boundary.

    The default host is meant for scripts: it logs alerts and prompts and has
    no clipboard access, so it never needs a timer. Controller entry points
    and timer callbacks must all run on one thread, so shells that can copy
    text also provide `schedule` on their own event loop.
    """

    def now(self) -> float:
        """Current time in milliseconds."""
        return time.monotonic() * 1000

    def alert(self, message: str) -> None:
        logger.warning("Alert: %s", message)

    def prompt(self, message: str, value: str) -> None:
        logger.info("%s %s", message, value)

    def copy_text(self, text: str) -> bool:
        """Copy text to the clipboard. False when copying is unavailable."""
        return False

    def replace_location(self, fragment: str) -> None:
        """Replace the page location's fragment without a navigation entry."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        """Run `callback` once after `delay` seconds, on the controller's thread."""
        raise NotImplementedError("This host has no scheduler; override schedule()")


class SessionController:
    """
    Owns the diagram document, its history and the transient UI state.

    Surfaces never mutate the document themselves: they call the entry points
    below and re-render from `state` (or a registered change callback).
    """

    def __init__(
        self,
        host: Optional[SessionHost] = None,
        config: Optional[SessionConfig] = None,
        fragment: Optional[str] = None,
        gateway: Optional[SerializationGateway] = None,
    ):
        self._host = host or SessionHost()
        self._config = config or SessionConfig()
        self._gateway = gateway or SerializationGateway()
        self._on_change_callbacks: list[Callable] = []

        diagram = EMPTY_DIAGRAM
        location = self._config.base_url.split("#")[0]
        fragment = (fragment or "").strip().lstrip("#")

        # Try to load a diagram from the URL fragment if given
        if fragment:
            location = f"{location}#{fragment}"
            try:
                diagram = self._gateway.decode_compact(fragment)
                logger.info("Loaded diagram from URL fragment (%d nodes, %d edges)",
                            len(diagram.nodes), len(diagram.edges))
            except DecodeError as e:
                logger.warning("Could not decode URL fragment: %s", e)
                self._host.alert(INVALID_URL_MESSAGE)

        self._history = HistoryLedger(
            diagram,
            clock=self._host.now,
            coalesce_window_ms=self._config.coalesce_window_ms,
        )
        self._state = SessionState(diagram=diagram, location=location)

    # --- Properties ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def document(self) -> Diagram:
        """Get the current diagram."""
        return self._state.diagram

    @property
    def history(self) -> HistoryLedger:
        return self._history

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def selected_edge_data(self) -> Optional[Edge]:
        """The selected edge, None when nothing is selected."""
        return self.document.get_edge(self._state.selected_edge)

    # --- Change Callbacks ---

    def on_change(self, callback: Callable):
        """Register a callback for state changes."""
        self._on_change_callbacks.append(callback)

    def _notify_change(self):
        for callback in self._on_change_callbacks:
            callback()

    def _set(self, **changes) -> None:
        """Replace the state snapshot and notify observers if anything changed."""
        new_state = self._state.model_copy(update=changes)
        if new_state == self._state:
            return
        self._state = new_state
        self._notify_change()

    # --- Document Changes ---

    def _apply(self, diagram: Diagram, **changes) -> RecordOutcome:
        previous = self._state.diagram
        outcome = self._history.record(diagram)

        update = {"diagram": self._history.current()}
        # A single new edge is almost always the one just drawn
        if len(diagram.edges) == len(previous.edges) + 1:
            update["selected_edge"] = len(diagram.edges) - 1
        update.update(changes)

        self._set(**update)
        return outcome

    def apply_document_change(self, diagram: Diagram) -> RecordOutcome:
        """Commit a full replacement diagram coming from the editing surface."""
        return self._apply(diagram)

    def _require_selection(self) -> int:
        index = self._state.selected_edge
        if index is None or self.document.get_edge(index) is None:
            raise NoEdgeSelectedError("No edge selected")
        return index

    def select_edge(self, index: int) -> Optional[int]:
        """Toggle the selection of the edge at `index`."""
        if not 0 <= index < len(self.document.edges):
            raise IndexError(f"Edge index out of range: {index}")
        selected = None if self._state.selected_edge == index else index
        self._set(selected_edge=selected)
        return selected

    def clear_selection(self) -> None:
        self._set(selected_edge=None)

    def update_selected_edge(self, fields: Union[Mapping, EdgeUpdate]) -> RecordOutcome:
        """
        Merge property-panel fields into the selected edge.

        Raises:
            NoEdgeSelectedError: if no edge is selected
        """
        index = self._require_selection()
        if not isinstance(fields, EdgeUpdate):
            fields = EdgeUpdate.model_validate(fields)
        diagram = merge_edge_fields(self.document, index, fields.fields())
        return self._apply(diagram)

    def remove_selected_edge(self) -> RecordOutcome:
        """
        Remove the selected edge and any blank node it leaves unreferenced.

        Raises:
            NoEdgeSelectedError: if no edge is selected
        """
        index = self._require_selection()
        diagram = remove_edge(self.document, index)
        return self._apply(diagram, selected_edge=None)

    # --- Undo/Redo ---

    def undo(self) -> bool:
        """Undo the last step. False when there is nothing to undo."""
        if not self._history.undo():
            return False
        self._set(diagram=self._history.current(), selected_edge=None)
        return True

    def redo(self) -> bool:
        """Redo the last undone step. False when there is nothing to redo."""
        if not self._history.redo():
            return False
        self._set(diagram=self._history.current(), selected_edge=None)
        return True

    # --- Tools ---

    def set_tool(self, tool: Union[Tool, str]) -> None:
        """Activate a tool; switching tools drops the selection."""
        self._set(tool=Tool(tool), selected_edge=None)

    def begin_tool_override(self, tool: Union[Tool, str]) -> bool:
        """Temporarily switch tools while a modifier is held. Overrides do not nest."""
        tool = Tool(tool)
        if self._state.override_origin is not None:
            return False
        self._set(tool=tool, override_origin=self._state.tool)
        return True

    def end_tool_override(self) -> bool:
        """Restore the tool that was active before the override began."""
        origin = self._state.override_origin
        if origin is None:
            return False
        self._set(tool=origin, override_origin=None)
        return True

    # --- Code Popup ---

    def open_code_popup(self) -> str:
        """Render the document as markup into the popup and open it."""
        code = self._gateway.encode_markup(self.document)
        self._set(code_popup_open=True, code_buffer=code, selected_edge=None)
        return code

    def set_code_buffer(self, text: str) -> None:
        self._set(code_buffer=text)

    def close_code_popup(self, text: Optional[str] = None) -> bool:
        """
        Close the popup, committing its text if the user changed it.

        Exactly one parse is attempted. A parse failure is reported to the
        user and leaves the document untouched; the popup closes either way.

        Returns:
            True if a parsed diagram was committed
        """
        if not self._state.code_popup_open:
            return False

        new_code = self._state.code_buffer if text is None else text
        current_code = self._gateway.encode_markup(self.document)

        if new_code != current_code:
            try:
                diagram = self._gateway.decode_markup(new_code)
            except SerializationError as e:
                logger.warning("Could not parse code: %s", e)
                self._host.alert(f"Could not parse code. Reason: {e}")
            else:
                self._apply(diagram, selected_edge=None,
                            code_popup_open=False, code_buffer="")
                return True

        self._set(code_popup_open=False, code_buffer="")
        return False

    def dismiss_code_popup(self) -> None:
        """Close the popup and throw away its text."""
        self._set(code_popup_open=False, code_buffer="")

    # --- Permalink ---

    def copy_permalink(self) -> Optional[str]:
        """
        Put the diagram into the location fragment and copy the URL.

        Returns the URL, or None while a previous copy is still being
        confirmed.
        """
        if self._state.confirm_link_copy:
            return None

        encoded = self._gateway.encode_compact(self.document)
        base = self._state.location.split("#")[0]
        url = f"{base}#{encoded}"
        self._host.replace_location(f"#{encoded}")

        if self._host.copy_text(url):
            self._set(location=url, confirm_link_copy=True)
            self._host.schedule(self._config.link_confirm_ms / 1000,
                                self._clear_link_confirmation)
        else:
            self._set(location=url)
            self._host.prompt(COPY_PROMPT_MESSAGE, url)
        return url

    def _clear_link_confirmation(self) -> None:
        self._set(confirm_link_copy=False)

    # --- Surfaces ---

    def render_input(self) -> dict:
        """What the editing surface renders from."""
        return {
            "tool": self._state.tool.value,
            "selected_edge": self._state.selected_edge,
            "diagram": self.document.to_json_dict(),
        }

    def property_panel(self) -> dict:
        """What the property panel renders from."""
        edge = self.selected_edge_data
        return {
            "edge_id": self._state.selected_edge,
            "data": edge.to_json_dict() if edge else None,
            "show": edge is not None,
        }

    def leave_warning(self) -> Optional[str]:
        """Confirmation message for leaving the page, None if nothing to lose."""
        return LEAVE_WARNING if self.document is not None else None

    def get_state(self) -> dict:
        """Get the full current state for API responses."""
        return {
            **self.render_input(),
            "properties": self.property_panel(),
            "code_popup_open": self._state.code_popup_open,
            "code_buffer": self._state.code_buffer,
            "confirm_link_copy": self._state.confirm_link_copy,
            "location": self._state.location,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
        }
