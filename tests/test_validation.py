"""Tests for structural validation."""
from __future__ import annotations

from tikzcd_core import Diagram, IssueSeverity, validate_diagram, validation_summary

from conftest import make_diagram


def test_clean_diagram(square):
    assert [i for i in validate_diagram(square) if i.severity == IssueSeverity.ERROR] == []


def test_empty_diagram():
    assert validate_diagram(Diagram()) == []


def test_dangling_endpoints():
    d = make_diagram(nodes=[("1", "A", (0, 0))], edges=[("1", "9")])
    issues = validate_diagram(d)
    assert len(issues) == 1
    assert issues[0].severity == IssueSeverity.ERROR
    assert issues[0].to_dict()["edge_index"] == 0


def test_duplicate_ids():
    d = make_diagram(nodes=[("1", "A", (0, 0)), ("1", "B", (1, 0))])
    summary = validation_summary(validate_diagram(d))
    assert summary["errors"] == 1
    assert summary["valid"] is False


def test_unreferenced_blank_node_is_info():
    d = make_diagram(nodes=[("1", "", (0, 0))])
    issues = validate_diagram(d)
    assert [i.severity for i in issues] == [IssueSeverity.INFO]
    assert validation_summary(issues)["valid"] is True
