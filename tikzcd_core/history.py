"""
History Ledger - linear, time-coalesced undo/redo over diagram snapshots.

The ledger is an append-only list of snapshots plus a cursor:
- A new edit after an undo truncates everything past the cursor
- Edits arriving within the coalescing window overwrite the cursor entry,
  so a burst of rapid edits (e.g. dragging a node) is one undo step
- Edits that do not change the diagram leave the ledger untouched
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import DEFAULT_COALESCE_WINDOW_MS
from .models import Diagram

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    """Default ledger clock, in milliseconds."""
    return time.monotonic() * 1000


class RecordOutcome(str, Enum):
    """What `HistoryLedger.record` did with a candidate diagram."""
    APPENDED = "appended"
    COALESCED = "coalesced"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class HistoryEntry:
    """A snapshot of the document and the time it was recorded."""
    diagram: Diagram
    time: float


class HistoryLedger:
    """
    Ordered diagram snapshots with a cursor.

    The cursor always points at the snapshot currently shown. `record`
    decides between appending and coalescing, `undo`/`redo` move the cursor.
    """

    def __init__(
        self,
        initial: Diagram,
        clock: Optional[Callable[[], float]] = None,
        coalesce_window_ms: float = DEFAULT_COALESCE_WINDOW_MS,
    ):
        self._clock = clock or monotonic_ms
        self._window = coalesce_window_ms
        self._entries: list[HistoryEntry] = [HistoryEntry(initial, self._clock())]
        self._cursor = 0

    # --- Properties ---

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def entries(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    @property
    def at_tail(self) -> bool:
        return self._cursor == len(self._entries) - 1

    @property
    def can_undo(self) -> bool:
        """Check if undo is available."""
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        """Check if redo is available."""
        return self._cursor < len(self._entries) - 1

    def __len__(self) -> int:
        return len(self._entries)

    def current(self) -> Diagram:
        """Get the diagram at the cursor."""
        return self._entries[self._cursor].diagram

    # --- Recording ---

    def record(self, diagram: Diagram) -> RecordOutcome:
        """
        Record a candidate diagram.

        Appends a new entry when the cursor is behind the tail or when the
        cursor entry is older than the coalescing window; otherwise the
        cursor entry is overwritten. A diagram equal to the current one is
        ignored entirely.
        """
        entry = self._entries[self._cursor]
        if diagram is entry.diagram or diagram == entry.diagram:
            logger.debug("History: no-op edit at cursor %d", self._cursor)
            return RecordOutcome.UNCHANGED

        now = self._clock()
        new_entry = HistoryEntry(diagram, now)

        if not self.at_tail or now - entry.time > self._window:
            # Discard the redo branch, then append
            del self._entries[self._cursor + 1:]
            self._entries.append(new_entry)
            self._cursor = len(self._entries) - 1
            logger.debug("History: appended entry %d", self._cursor)
            return RecordOutcome.APPENDED

        self._entries[self._cursor] = new_entry
        logger.debug("History: coalesced into entry %d", self._cursor)
        return RecordOutcome.COALESCED

    # --- Undo/Redo ---

    def _move(self, step: int) -> bool:
        target = self._cursor + step
        if not 0 <= target < len(self._entries):
            return False
        self._cursor = target
        return True

    def undo(self) -> bool:
        """Move the cursor back one entry. False at the oldest entry."""
        return self._move(-1)

    def redo(self) -> bool:
        """Move the cursor forward one entry. False at the newest entry."""
        return self._move(1)
