"""
Core data models for diagrams.

These models define the canonical schema for commutative diagrams:
- Nodes placed on grid cells, with a (possibly empty) text label
- Edges (arrows) connecting nodes, with an optional label and tikz-cd styling

Diagrams are immutable snapshots. Every edit builds a new Diagram, so older
snapshots stay valid inside the undo history.

Field Naming Convention:
- Edges use `source` and `target`
- For backward compatibility, `from`/`to` are accepted on input and converted
"""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
import uuid


class LabelPosition(str, Enum):
    """Where an edge label sits relative to the arrow."""
    LEFT = "left"
    RIGHT = "right"
    INSIDE = "inside"


class ArrowHead(str, Enum):
    """Arrow heads at the target end."""
    DEFAULT = "default"
    NONE = "none"
    TWO_HEADS = "twoheads"
    HARPOON = "harpoon"
    HARPOON_ALT = "harpoonalt"


class ArrowTail(str, Enum):
    """Arrow tails at the source end."""
    NONE = "none"
    MAPS_TO = "mapsto"
    HOOK = "hook"
    HOOK_ALT = "hookalt"
    TAIL = "tail"


class LineStyle(str, Enum):
    """Line styles for edges."""
    SOLID = "solid"
    DOUBLE = "double"
    DASHED = "dashed"
    DOTTED = "dotted"
    NONE = "none"


def generate_node_id() -> str:
    """Generate a unique node ID."""
    return f"n{uuid.uuid4().hex[:8]}"


def _convert_legacy_endpoints(data: Any) -> Any:
    """Convert legacy 'from'/'to' fields to 'source'/'target'."""
    if isinstance(data, dict):
        data = dict(data)
        # Handle 'from' -> 'source' (from is a Python keyword)
        if 'from' in data and 'source' not in data:
            data['source'] = data.pop('from')
        if 'from_node' in data and 'source' not in data:
            data['source'] = data.pop('from_node')
        # Handle 'to' -> 'target'
        if 'to' in data and 'target' not in data:
            data['target'] = data.pop('to')
        if 'to_node' in data and 'target' not in data:
            data['target'] = data.pop('to_node')
    return data


class Node(BaseModel):
    """A node in the diagram, sitting on a grid cell (column, row)."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_node_id)
    value: str = ""
    position: tuple[int, int] = (0, 0)

    @property
    def is_blank(self) -> bool:
        return self.value.strip() == ""


class Edge(BaseModel):
    """
    An edge connecting two nodes.

    Uses `source` and `target` as canonical field names.
    Accepts `from`/`to` on input for backward compatibility.
    An unlabeled edge has `value` set to None, never to an empty string.
    """
    model_config = ConfigDict(frozen=True)

    source: str  # Source node ID
    target: str  # Target node ID
    value: Optional[str] = None
    label_position: str = LabelPosition.LEFT.value
    head: str = ArrowHead.DEFAULT.value
    tail: str = ArrowTail.NONE.value
    line: str = LineStyle.SOLID.value
    bend: int = 0   # Degrees, positive bends to the left
    shift: int = 0  # Parallel offset, positive shifts to the left

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        return _convert_legacy_endpoints(data)

    @property
    def is_loop(self) -> bool:
        return self.source == self.target

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict (no `value` key when unlabeled)."""
        return self.model_dump(exclude_none=True)


class EdgeUpdate(BaseModel):
    """Partial update for an edge, as sent by the property panel."""
    source: Optional[str] = None
    target: Optional[str] = None
    value: Optional[str] = None
    label_position: Optional[LabelPosition] = None
    head: Optional[ArrowHead] = None
    tail: Optional[ArrowTail] = None
    line: Optional[LineStyle] = None
    bend: Optional[int] = None
    shift: Optional[int] = None

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        return _convert_legacy_endpoints(data)

    def fields(self) -> dict:
        """Only the fields the caller actually set, enums as plain strings."""
        return self.model_dump(exclude_unset=True, mode="json")


class Diagram(BaseModel):
    """
    The complete diagram document.
    This is what gets recorded in history and handed to the serializers.
    """
    model_config = ConfigDict(frozen=True)

    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict with proper field names."""
        return {
            "nodes": [n.model_dump(mode="json") for n in self.nodes],
            "edges": [e.to_json_dict() for e in self.edges],
        }

    def get_edge(self, index: Optional[int]) -> Optional[Edge]:
        """Get an edge by its index, None when out of range."""
        if index is None or not 0 <= index < len(self.edges):
            return None
        return self.edges[index]


EMPTY_DIAGRAM = Diagram()
