"""
tikzcd-session core - diagram models, codecs, history and the session controller.

This package holds everything the hosting shells share, so the FastAPI
backend and the tests drive exactly the same state machine.
"""

from .models import (
    # Enums
    LabelPosition,
    ArrowHead,
    ArrowTail,
    LineStyle,
    # Core models
    Node,
    Edge,
    Diagram,
    EMPTY_DIAGRAM,
    # Request models (for API)
    EdgeUpdate,
)

from .config import SessionConfig
from .validation import validate_diagram, validation_summary, ValidationIssue, IssueSeverity
from .serialization import (
    SerializationGateway,
    SerializationError,
    DecodeError,
    ParseError,
    encode_compact,
    decode_compact,
    encode_markup,
    decode_markup,
)
from .history import HistoryLedger, HistoryEntry, RecordOutcome
from .session import SessionController, SessionHost, SessionState, Tool, NoEdgeSelectedError
from .keyboard import KeyboardController, KeyEvent

__all__ = [
    # Enums
    "LabelPosition",
    "ArrowHead",
    "ArrowTail",
    "LineStyle",
    "Tool",
    # Models
    "Node",
    "Edge",
    "Diagram",
    "EMPTY_DIAGRAM",
    "EdgeUpdate",
    # Config
    "SessionConfig",
    # Validation
    "validate_diagram",
    "validation_summary",
    "ValidationIssue",
    "IssueSeverity",
    # Serialization
    "SerializationGateway",
    "SerializationError",
    "DecodeError",
    "ParseError",
    "encode_compact",
    "decode_compact",
    "encode_markup",
    "decode_markup",
    # History
    "HistoryLedger",
    "HistoryEntry",
    "RecordOutcome",
    # Session
    "SessionController",
    "SessionHost",
    "SessionState",
    "NoEdgeSelectedError",
    # Keyboard
    "KeyboardController",
    "KeyEvent",
]
