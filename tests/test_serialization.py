"""Tests for the compact and tikz-cd codecs."""
from __future__ import annotations

import base64
import json

import pytest

from tikzcd_core import (
    DecodeError,
    Diagram,
    ParseError,
    decode_compact,
    decode_markup,
    encode_compact,
    encode_markup,
)

from conftest import make_diagram


def values(diagram: Diagram) -> list[str]:
    return [n.value for n in diagram.nodes]


def edge_pairs(diagram: Diagram) -> list[tuple[str, str]]:
    by_id = {n.id: n for n in diagram.nodes}
    return [(by_id[e.source].value, by_id[e.target].value) for e in diagram.edges]


# ─────────────────────────────────────────────────────────
# Compact encoding
# ─────────────────────────────────────────────────────────


class TestCompact:
    def test_is_url_safe(self, square):
        encoded = encode_compact(square)
        assert all(c.isalnum() or c in "-_" for c in encoded)

    def test_round_trip(self, square):
        decoded = decode_compact(encode_compact(square))
        assert decoded == square

    def test_positions_are_normalized(self):
        d = make_diagram(nodes=[("1", "A", (3, 5)), ("2", "B", (4, 7))])
        decoded = decode_compact(encode_compact(d))
        assert [n.position for n in decoded.nodes] == [(0, 0), (1, 2)]

    def test_edges_reference_node_indices(self, square):
        raw = encode_compact(square)
        payload = json.loads(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)))
        assert payload["edges"][0] == {"from": 0, "to": 1, "value": "f"}

    def test_non_ascii_labels(self):
        d = make_diagram(nodes=[("1", "α → β", (0, 0))])
        assert decode_compact(encode_compact(d)).nodes[0].value == "α → β"

    def test_empty_diagram(self):
        assert decode_compact(encode_compact(Diagram())) == Diagram()

    def test_accepts_leading_hash(self, square):
        assert decode_compact("#" + encode_compact(square)) == square

    @pytest.mark.parametrize("text", [
        "",
        "#",
        "%%%%",
        base64.urlsafe_b64encode(b"not json").decode(),
        base64.urlsafe_b64encode(b"[1, 2]").decode(),
        base64.urlsafe_b64encode(b'{"nodes": [{"position": "x"}]}').decode(),
        base64.urlsafe_b64encode(b'{"nodes": [], "edges": [{"from": 0, "to": 1}]}').decode(),
        base64.urlsafe_b64encode(
            b'{"nodes": [{"id": "a"}, {"id": "a"}], "edges": []}').decode(),
        base64.urlsafe_b64encode(b"[" * 100000).decode(),
    ])
    def test_malformed_input(self, text):
        with pytest.raises(DecodeError):
            decode_compact(text)


# ─────────────────────────────────────────────────────────
# Markup
# ─────────────────────────────────────────────────────────


class TestEncodeMarkup:
    def test_empty(self):
        assert encode_markup(Diagram()) == "\\begin{tikzcd}\n\\end{tikzcd}"

    def test_square(self, square):
        assert encode_markup(square) == (
            "\\begin{tikzcd}\n"
            "A \\arrow[r, \"f\"] \\arrow[d, \"g\"] & B \\\\\n"
            "C & D\n"
            "\\end{tikzcd}"
        )

    def test_styles(self):
        d = make_diagram(
            nodes=[("1", "A", (0, 0)), ("2", "B", (2, 1))],
            edges=[{
                "from": "1", "to": "2", "value": "f,g", "label_position": "right",
                "line": "dashed", "head": "twoheads", "tail": "hook",
                "bend": -20, "shift": 1,
            }],
        )
        assert '\\arrow[rrd, "{f,g}"\', dashed, two heads, hook, bend right=20, shift left=1]' \
            in encode_markup(d)

    def test_self_loop(self):
        d = make_diagram(nodes=[("1", "A", (0, 0))], edges=[("1", "1")])
        assert "\\arrow[loop]" in encode_markup(d)

    def test_blank_target_cell_is_empty(self):
        d = make_diagram(nodes=[("1", "A", (0, 0)), ("2", "", (1, 0))], edges=[("1", "2")])
        assert encode_markup(d) == "\\begin{tikzcd}\nA \\arrow[r] &\n\\end{tikzcd}"


class TestDecodeMarkup:
    def test_square_round_trip(self, square):
        decoded = decode_markup(encode_markup(square))
        assert values(decoded) == ["A", "B", "C", "D"]
        assert edge_pairs(decoded) == [("A", "B"), ("A", "C")]
        assert [e.value for e in decoded.edges] == ["f", "g"]
        assert [n.position for n in decoded.nodes] == [(0, 0), (1, 0), (0, 1), (1, 1)]

    def test_markup_is_stable(self, square):
        text = encode_markup(square)
        assert encode_markup(decode_markup(text)) == text

    def test_arrow_into_empty_cell_creates_blank_node(self):
        d = decode_markup("\\begin{tikzcd} A \\arrow[rr] & & \\end{tikzcd}")
        assert values(d) == ["A", ""]
        assert d.nodes[1].position == (2, 0)

    def test_label_options(self):
        d = decode_markup(
            '\\begin{tikzcd} A \\arrow[r, "f"\'] \\arrow[d, "g" description] '
            '\\arrow[rd, swap, "h"] & B \\\\ C & D \\end{tikzcd}'
        )
        assert [e.label_position for e in d.edges] == ["right", "inside", "right"]
        assert [e.value for e in d.edges] == ["f", "g", "h"]

    def test_braced_label(self):
        d = decode_markup('\\begin{tikzcd} A \\arrow[r, "{a, b}"] & B \\end{tikzcd}')
        assert d.edges[0].value == "a, b"

    def test_style_keys(self):
        d = decode_markup(
            "\\begin{tikzcd} A \\arrow[r, Rightarrow, bend left, shift right=2, maps to] "
            "& B \\arrow[l, equal, harpoon'] \\end{tikzcd}"
        )
        first, second = d.edges
        assert first.line == "double"
        assert first.bend == 30
        assert first.shift == -2
        assert first.tail == "mapsto"
        assert second.head == "harpoonalt"

    def test_ar_alias_and_latex_labels(self):
        d = decode_markup("\\begin{tikzcd} \\mathbb{Z} \\ar[r] & \\mathbb{Q} \\end{tikzcd}")
        assert values(d) == ["\\mathbb{Z}", "\\mathbb{Q}"]
        assert len(d.edges) == 1

    def test_comments_and_environment_options(self):
        d = decode_markup(
            "\\begin{tikzcd}[row sep=large] % the top row\n"
            "A \\arrow[d] \\\\ % arrow down\n"
            "B\n"
            "\\end{tikzcd}"
        )
        assert values(d) == ["A", "B"]

    def test_surrounding_text_is_ignored(self):
        d = decode_markup("Here: $$\\begin{tikzcd} A \\end{tikzcd}$$ done")
        assert values(d) == ["A"]

    def test_upward_arrow(self):
        d = decode_markup("\\begin{tikzcd} & B \\\\ A \\arrow[ru] \\end{tikzcd}")
        assert edge_pairs(d) == [("A", "B")]

    def test_loop(self):
        d = decode_markup("\\begin{tikzcd} A \\arrow[loop, \"e\"] \\end{tikzcd}")
        assert d.edges[0].is_loop

    @pytest.mark.parametrize("text", [
        "A & B",
        "\\begin{tikzcd} A \\arrow[r & B \\end{tikzcd}",
        "\\begin{tikzcd} A \\arrow r & B \\end{tikzcd}",
        "\\begin{tikzcd} A \\arrow[\"f\"] & B \\end{tikzcd}",
        "\\begin{tikzcd} A \\arrow[r, d] & B \\end{tikzcd}",
        "\\begin{tikzcd} A \\arrow[r, wiggly] & B \\end{tikzcd}",
        "\\begin{tikzcd} A \\arrow[r, \"f] & B \\end{tikzcd}",
        "\\begin{tikzcd} A } & B \\end{tikzcd}",
        "\\begin{tikzcd} A \\arrow[r] & B",
        "\\begin{tikzcd} \"A\" B \\end{tikzcd}",
        "\\begin{tikzcd} \"A \\end{tikzcd}",
    ])
    def test_malformed_input(self, text):
        with pytest.raises(ParseError):
            decode_markup(text)


# ─────────────────────────────────────────────────────────
# Labels with markup characters
# ─────────────────────────────────────────────────────────

AWKWARD_LABELS = [
    "(0,1]",
    "[a",
    "a]",
    "a{b",
    "}x",
    "50%",
    "a & b",
    'say "hi"',
    '"',
    "{x}",
    "a \\\\ b",
    "\\arrow[r]",
    "\\end{tikzcd}",
    "  padded ",
    "x\\",
]


class TestLabelRoundTrip:
    @pytest.mark.parametrize("label", AWKWARD_LABELS)
    def test_edge_label(self, label):
        d = make_diagram(
            nodes=[("1", "A", (0, 0)), ("2", "B", (1, 0))],
            edges=[{"from": "1", "to": "2", "value": label}],
        )
        decoded = decode_markup(encode_markup(d))
        assert [e.value for e in decoded.edges] == [label]
        assert edge_pairs(decoded) == [("A", "B")]

    @pytest.mark.parametrize("label", AWKWARD_LABELS)
    def test_node_label(self, label):
        d = make_diagram(
            nodes=[("1", label, (0, 0)), ("2", "B", (1, 0))],
            edges=[{"from": "1", "to": "2", "value": "f"}],
        )
        decoded = decode_markup(encode_markup(d))
        assert values(decoded) == [label, "B"]
        assert edge_pairs(decoded) == [(label, "B")]

    def test_ordinary_latex_stays_bare(self):
        d = make_diagram(nodes=[("1", "\\mathbb{Z}/(p]", (0, 0))])
        assert encode_markup(d) == "\\begin{tikzcd}\n\\mathbb{Z}/(p]\n\\end{tikzcd}"

    def test_quoted_cell_label(self):
        d = decode_markup('\\begin{tikzcd} "a & ""b""" \\arrow[r] & B \\end{tikzcd}')
        assert values(d) == ['a & "b"', "B"]
        assert len(d.edges) == 1
