"""
Serialization gateway - compact (URL fragment) and tikz-cd markup codecs.

Two representations of a Diagram:
- Compact: URL-safe base64 of minified JSON, used as the permalink fragment
- Markup: a tikz-cd environment the user can read and edit by hand

Both decoders raise a SerializationError subclass on malformed input and
never return a structurally inconsistent diagram.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .models import (
    ArrowHead,
    ArrowTail,
    Diagram,
    Edge,
    LabelPosition,
    LineStyle,
    Node,
)
from .validation import structural_errors

logger = logging.getLogger(__name__)


class SerializationError(ValueError):
    """Base class for codec failures."""


class DecodeError(SerializationError):
    """Malformed compact string (e.g. a broken permalink)."""


class ParseError(SerializationError):
    """Malformed tikz-cd markup."""


# ============================================================================
# COMPACT ENCODING
# ============================================================================

_EDGE_DEFAULTS = {
    name: field.default
    for name, field in Edge.model_fields.items()
    if name not in ("source", "target")
}


def _top_left(nodes) -> Tuple[int, int]:
    if not nodes:
        return 0, 0
    return (
        min(n.position[0] for n in nodes),
        min(n.position[1] for n in nodes),
    )


def encode_compact(diagram: Diagram) -> str:
    """Encode a diagram into a URL-fragment-safe string."""
    left, top = _top_left(diagram.nodes)
    index = {node.id: i for i, node in enumerate(diagram.nodes)}

    nodes: List[Dict[str, Any]] = []
    for node in diagram.nodes:
        item: Dict[str, Any] = {
            "id": node.id,
            "position": [node.position[0] - left, node.position[1] - top],
        }
        if node.value:
            item["value"] = node.value
        nodes.append(item)

    edges: List[Dict[str, Any]] = []
    for edge in diagram.edges:
        # Endpoints by node index; unknown ids are kept verbatim
        item = {
            "from": index.get(edge.source, edge.source),
            "to": index.get(edge.target, edge.target),
        }
        for name, default in _EDGE_DEFAULTS.items():
            value = getattr(edge, name)
            if value != default:
                item[name] = value
        edges.append(item)

    payload = json.dumps(
        {"nodes": nodes, "edges": edges},
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def _resolve_endpoint(ref: Any, nodes: List[Node]) -> str:
    if isinstance(ref, bool):
        raise DecodeError(f"Invalid edge endpoint: {ref!r}")
    if isinstance(ref, int):
        if not 0 <= ref < len(nodes):
            raise DecodeError(f"Edge endpoint index out of range: {ref}")
        return nodes[ref].id
    if isinstance(ref, str):
        return ref
    raise DecodeError(f"Invalid edge endpoint: {ref!r}")


def decode_compact(text: str) -> Diagram:
    """
    Decode a compact string produced by `encode_compact`.

    Accepts a leading '#', missing padding and the standard base64 alphabet.
    """
    text = text.strip().lstrip("#")
    if not text:
        raise DecodeError("Empty diagram encoding")

    text = text.replace("+", "-").replace("/", "_")
    text += "=" * (-len(text) % 4)
    try:
        raw = base64.urlsafe_b64decode(text.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError, RecursionError) as e:
        raise DecodeError(f"Invalid diagram encoding: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError("Diagram encoding must be a JSON object")
    raw_nodes = data.get("nodes", [])
    raw_edges = data.get("edges", [])
    if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
        raise DecodeError("Diagram nodes and edges must be lists")

    try:
        nodes = [Node.model_validate(n) for n in raw_nodes]
        edges = []
        for item in raw_edges:
            if not isinstance(item, dict):
                raise DecodeError(f"Invalid edge: {item!r}")
            item = dict(item)
            item["source"] = _resolve_endpoint(item.pop("from", None), nodes)
            item["target"] = _resolve_endpoint(item.pop("to", None), nodes)
            edges.append(Edge.model_validate(item))
    except ValidationError as e:
        raise DecodeError(f"Invalid diagram data: {e}") from e

    diagram = Diagram(nodes=tuple(nodes), edges=tuple(edges))
    errors = structural_errors(diagram)
    if errors:
        raise DecodeError(errors[0].message)
    return diagram


# ============================================================================
# TIKZ-CD MARKUP
# ============================================================================

_BEGIN_PATTERN = re.compile(r"\\begin\{tikzcd\}")
_END_MARKER = "\\end{tikzcd}"
_ARROW_PATTERN = re.compile(r"\\(?:arrow|ar)(?![A-Za-z])")
_DIRECTION_PATTERN = re.compile(r"[rlud]+")
_BEND_PATTERN = re.compile(r"bend (left|right)(?:\s*=\s*(-?\d+))?")
_SHIFT_PATTERN = re.compile(r"shift (left|right)(?:\s*=\s*(-?\d+))?")

DEFAULT_BEND = 30
DEFAULT_SHIFT = 1

# tikz-cd key -> edge fields it sets
_STYLE_OPTIONS: Dict[str, Dict[str, str]] = {
    "Rightarrow": {"line": LineStyle.DOUBLE.value},
    "equal": {"line": LineStyle.DOUBLE.value, "head": ArrowHead.NONE.value},
    "dashed": {"line": LineStyle.DASHED.value},
    "dotted": {"line": LineStyle.DOTTED.value},
    "phantom": {"line": LineStyle.NONE.value},
    "no head": {"head": ArrowHead.NONE.value},
    "dash": {"head": ArrowHead.NONE.value},
    "two heads": {"head": ArrowHead.TWO_HEADS.value},
    "harpoon": {"head": ArrowHead.HARPOON.value},
    "harpoon'": {"head": ArrowHead.HARPOON_ALT.value},
    "maps to": {"tail": ArrowTail.MAPS_TO.value},
    "hook": {"tail": ArrowTail.HOOK.value},
    "hook'": {"tail": ArrowTail.HOOK_ALT.value},
    "tail": {"tail": ArrowTail.TAIL.value},
}

_LINE_KEYS = {
    LineStyle.DOUBLE.value: "Rightarrow",
    LineStyle.DASHED.value: "dashed",
    LineStyle.DOTTED.value: "dotted",
    LineStyle.NONE.value: "phantom",
}
_HEAD_KEYS = {
    ArrowHead.NONE.value: "no head",
    ArrowHead.TWO_HEADS.value: "two heads",
    ArrowHead.HARPOON.value: "harpoon",
    ArrowHead.HARPOON_ALT.value: "harpoon'",
}
_TAIL_KEYS = {
    ArrowTail.MAPS_TO.value: "maps to",
    ArrowTail.HOOK.value: "hook",
    ArrowTail.HOOK_ALT.value: "hook'",
    ArrowTail.TAIL.value: "tail",
}

EMPTY_MARKUP = "\\begin{tikzcd}\n\\end{tikzcd}"


def _quote_text(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _quote_label(value: str) -> str:
    # The decoder drops one pair of outer braces, so a braced label gets another
    braced = len(value) >= 2 and value.startswith("{") and value.endswith("}")
    if braced or any(c in value for c in ',]"='):
        value = "{" + value + "}"
    return _quote_text(value)


def _is_plain_value(value: str) -> bool:
    """Whether a node label reads back unchanged when written bare into a cell."""
    if value != value.strip() or value.startswith(('"', "[")) or value.endswith("\\"):
        return False
    braces = 0
    i = 0
    while i < len(value):
        c = value[i]
        if c == "\\":
            if value.startswith(("\\\\", _END_MARKER), i) or _ARROW_PATTERN.match(value, i):
                return False
            i += 2
            continue
        if c in "%&":
            return False
        if c == "{":
            braces += 1
        elif c == "}":
            braces -= 1
            if braces < 0:
                return False
        i += 1
    return braces == 0


def _node_text(value: str) -> str:
    return value if _is_plain_value(value) else _quote_text(value)


def _direction(source: Node, target: Node) -> str:
    dx = target.position[0] - source.position[0]
    dy = target.position[1] - source.position[1]
    horizontal = "r" * dx if dx > 0 else "l" * -dx
    vertical = "d" * dy if dy > 0 else "u" * -dy
    return horizontal + vertical


def _arrow_command(edge: Edge, source: Node, target: Node) -> str:
    direction = _direction(source, target)
    options = [direction] if direction else ["loop"]

    if edge.value is not None:
        label = _quote_label(edge.value)
        if edge.label_position == LabelPosition.RIGHT.value:
            label += "'"
        elif edge.label_position == LabelPosition.INSIDE.value:
            label += " description"
        options.append(label)

    for key in (
        _LINE_KEYS.get(edge.line),
        _HEAD_KEYS.get(edge.head),
        _TAIL_KEYS.get(edge.tail),
    ):
        if key:
            options.append(key)

    if edge.bend:
        side = "left" if edge.bend > 0 else "right"
        options.append(f"bend {side}={abs(edge.bend)}")
    if edge.shift:
        side = "left" if edge.shift > 0 else "right"
        options.append(f"shift {side}={abs(edge.shift)}")

    return "\\arrow[" + ", ".join(options) + "]"


def encode_markup(diagram: Diagram) -> str:
    """
    Render a diagram as a tikz-cd environment.

    Labels that would not read back unchanged are written as quoted spans,
    so every rendered diagram parses.
    """
    if not diagram.nodes:
        return EMPTY_MARKUP

    left, top = _top_left(diagram.nodes)
    width = max(n.position[0] for n in diagram.nodes) - left + 1
    height = max(n.position[1] for n in diagram.nodes) - top + 1
    cells: List[List[List[str]]] = [[[] for _ in range(width)] for _ in range(height)]

    by_id = {n.id: n for n in diagram.nodes}
    for node in diagram.nodes:
        if node.value:
            cell = cells[node.position[1] - top][node.position[0] - left]
            cell.append(_node_text(node.value))

    for edge in diagram.edges:
        source = by_id.get(edge.source)
        target = by_id.get(edge.target)
        if source is None or target is None:
            logger.warning("Skipping edge with dangling endpoint: %s -> %s",
                           edge.source, edge.target)
            continue
        cell = cells[source.position[1] - top][source.position[0] - left]
        cell.append(_arrow_command(edge, source, target))

    rows = [" & ".join(" ".join(cell) for cell in row).rstrip() for row in cells]
    return "\\begin{tikzcd}\n" + " \\\\\n".join(rows) + "\n\\end{tikzcd}"


def _skip_comment(text: str, start: int) -> int:
    end = text.find("\n", start)
    return len(text) if end < 0 else end


def _read_quoted(text: str, start: int) -> Tuple[str, int]:
    """
    Read the quoted span opening at `start`.

    Everything up to the closing quote is literal and a doubled quote stands
    for one quote character. Returns the content and the index past the span.
    """
    parts: List[str] = []
    i = start + 1
    while i < len(text):
        if text[i] == '"':
            if text.startswith('""', i):
                parts.append('"')
                i += 2
                continue
            return "".join(parts), i + 1
        parts.append(text[i])
        i += 1
    raise ParseError("Unterminated label quote")


def _read_options(text: str, start: int) -> Tuple[List[str], int]:
    """
    Split the bracketed option list opening at `start` at top-level commas.

    Quoted labels and braced groups are kept whole. Returns the options and
    the index past the closing bracket.
    """
    options: List[str] = []
    current: List[str] = []
    braces = 0
    brackets = 0
    i = start + 1
    while i < len(text):
        c = text[i]
        if c == '"' and braces == 0:
            _, end = _read_quoted(text, i)
            current.append(text[i:end])
            i = end
            continue
        if c == "\\":
            current.append(text[i:i + 2])
            i += 2
            continue
        if c == "%":
            i = _skip_comment(text, i)
            continue
        if c == "{":
            braces += 1
        elif c == "}":
            braces -= 1
            if braces < 0:
                raise ParseError("Unbalanced braces")
        elif c == "[" and braces == 0:
            brackets += 1
        elif c == "]" and braces == 0:
            if brackets == 0:
                options.append("".join(current).strip())
                return [opt for opt in options if opt], i + 1
            brackets -= 1
        elif c == "," and braces == 0 and brackets == 0:
            options.append("".join(current).strip())
            current = []
            i += 1
            continue
        current.append(c)
        i += 1
    raise ParseError("Unbalanced brackets")


def _parse_label(option: str, fields: Dict[str, Any]) -> None:
    label, end = _read_quoted(option, 0)
    if len(label) >= 2 and label.startswith("{") and label.endswith("}"):
        label = label[1:-1]
    fields["value"] = label

    rest = option[end:].strip()
    if rest.startswith("'"):
        fields["label_position"] = LabelPosition.RIGHT.value
        rest = rest[1:].strip()
    for word in rest.split():
        if word == "description":
            fields["label_position"] = LabelPosition.INSIDE.value
        elif word == "swap":
            fields["label_position"] = LabelPosition.RIGHT.value
        else:
            raise ParseError(f"Unknown label option: {word}")


def _parse_arrow(options: List[str]) -> Dict[str, Any]:
    """Turn the options of one \\arrow[...] into edge fields plus dx/dy."""
    fields: Dict[str, Any] = {}
    direction: Optional[str] = None
    loop = False

    for option in options:
        if _DIRECTION_PATTERN.fullmatch(option):
            if direction is not None:
                raise ParseError(f"Arrow has more than one direction: [{', '.join(options)}]")
            direction = option
        elif option.startswith('"'):
            _parse_label(option, fields)
        elif option.startswith("loop"):
            loop = True
        elif option in ("'", "swap"):
            fields["label_position"] = LabelPosition.RIGHT.value
        elif option == "description":
            fields["label_position"] = LabelPosition.INSIDE.value
        elif option in _STYLE_OPTIONS:
            fields.update(_STYLE_OPTIONS[option])
        elif m := _BEND_PATTERN.fullmatch(option):
            amount = int(m.group(2)) if m.group(2) else DEFAULT_BEND
            fields["bend"] = amount if m.group(1) == "left" else -amount
        elif m := _SHIFT_PATTERN.fullmatch(option):
            amount = int(m.group(2)) if m.group(2) else DEFAULT_SHIFT
            fields["shift"] = amount if m.group(1) == "left" else -amount
        else:
            raise ParseError(f"Unknown arrow option: {option}")

    if direction is None and not loop:
        raise ParseError(f"Arrow has no direction: [{', '.join(options)}]")

    direction = direction or ""
    fields["dx"] = direction.count("r") - direction.count("l")
    fields["dy"] = direction.count("d") - direction.count("u")
    return fields


Cell = Tuple[str, List[Dict[str, Any]]]


class _MarkupReader:
    """
    Reads the body of a tikzcd environment into rows of cells.

    A cell is its label plus the arrows leaving it. Cells are split at
    top-level `&` and rows at top-level `\\\\`; comments are dropped. A cell
    may open with a quoted label, which is taken literally.
    """

    def __init__(self, text: str, pos: int):
        self.text = text
        self.pos = pos
        self.rows: List[List[Cell]] = [[]]
        self._start_cell()

    def _start_cell(self):
        self.segments: List[str] = []
        self.current: List[str] = []
        self.arrows: List[Dict[str, Any]] = []
        self.quoted: Optional[str] = None

    def _cell_started(self) -> bool:
        if self.arrows or self.quoted is not None:
            return True
        return any(part.strip() for part in self.segments) or "".join(self.current).strip() != ""

    def _end_cell(self):
        self.segments.append("".join(self.current))
        value = " ".join(part.strip() for part in self.segments if part.strip())
        if self.quoted is not None:
            if value:
                raise ParseError(f"Unexpected text after quoted label: {value}")
            value = self.quoted
        self.rows[-1].append((value, self.arrows))
        self._start_cell()

    def _read_arrow(self, after: int):
        i = after
        while i < len(self.text) and self.text[i].isspace():
            i += 1
        if i >= len(self.text) or self.text[i] != "[":
            raise ParseError("Expected '[' after \\arrow")
        options, self.pos = _read_options(self.text, i)
        self.segments.append("".join(self.current))
        self.current = []
        self.arrows.append(_parse_arrow(options))

    def _skip_environment_options(self):
        i = self.pos
        while i < len(self.text) and self.text[i].isspace():
            i += 1
        if self.text.startswith("[", i):
            _, self.pos = _read_options(self.text, i)

    def read(self) -> List[List[Cell]]:
        text = self.text
        braces = 0
        self._skip_environment_options()

        while self.pos < len(text):
            i = self.pos
            c = text[i]
            if c == "\\":
                if braces == 0:
                    if text.startswith(_END_MARKER, i):
                        self._end_cell()
                        return self.rows
                    if text.startswith("\\\\", i):
                        self._end_cell()
                        self.rows.append([])
                        self.pos = i + 2
                        continue
                    m = _ARROW_PATTERN.match(text, i)
                    if m:
                        self._read_arrow(m.end())
                        continue
                # Escaped character or command start
                self.current.append(text[i:i + 2])
                self.pos = i + 2
                continue
            if c == "%":
                self.pos = _skip_comment(text, i)
                continue
            if c == '"' and braces == 0 and not self._cell_started():
                self.quoted, self.pos = _read_quoted(text, i)
                continue
            if c == "{":
                braces += 1
            elif c == "}":
                braces -= 1
                if braces < 0:
                    raise ParseError("Unbalanced braces")
            elif c == "&" and braces == 0:
                self._end_cell()
                self.pos = i + 1
                continue
            self.current.append(c)
            self.pos = i + 1

        if braces:
            raise ParseError("Unbalanced braces")
        raise ParseError("Missing \\end{tikzcd}")


def decode_markup(text: str) -> Diagram:
    """
    Parse a tikz-cd environment back into a diagram.

    Cells with a label or outgoing arrows become nodes; arrows pointing at
    empty cells create blank nodes there.
    """
    match = _BEGIN_PATTERN.search(text)
    if match is None:
        raise ParseError("No tikzcd environment found")

    nodes: Dict[Tuple[int, int], Node] = {}
    pending: List[Tuple[Tuple[int, int], Dict[str, Any]]] = []

    for row, cells in enumerate(_MarkupReader(text, match.end()).read()):
        for col, (value, arrows) in enumerate(cells):
            if not value and not arrows:
                continue
            nodes[(col, row)] = Node(value=value, position=(col, row))
            pending.extend(((col, row), arrow) for arrow in arrows)

    edges: List[Edge] = []
    for (col, row), fields in pending:
        target_pos = (col + fields.pop("dx"), row + fields.pop("dy"))
        if target_pos not in nodes:
            nodes[target_pos] = Node(position=target_pos)
        edges.append(Edge(
            source=nodes[(col, row)].id,
            target=nodes[target_pos].id,
            **fields,
        ))

    return Diagram(nodes=tuple(nodes.values()), edges=tuple(edges))


class SerializationGateway:
    """The codec pair consumed by the session controller."""

    def encode_compact(self, diagram: Diagram) -> str:
        return encode_compact(diagram)

    def decode_compact(self, text: str) -> Diagram:
        return decode_compact(text)

    def encode_markup(self, diagram: Diagram) -> str:
        return encode_markup(diagram)

    def decode_markup(self, text: str) -> Diagram:
        return decode_markup(text)
