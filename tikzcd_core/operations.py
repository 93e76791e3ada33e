"""
Pure diagram transforms used by the session controller.

Each function takes a Diagram and returns a new one; the input is never
modified.
"""

from typing import Mapping

from .models import Diagram, Edge


def merge_edge_fields(diagram: Diagram, index: int, fields: Mapping) -> Diagram:
    """
    Merge `fields` into the edge at `index`.

    A `value` that is blank after trimming removes the label entirely, so an
    unlabeled edge never carries an empty string.
    """
    edge = diagram.edges[index]
    merged = edge.model_dump()
    merged.update(fields)

    value = fields.get("value")
    if value is not None and value.strip() == "":
        merged["value"] = None

    edges = list(diagram.edges)
    edges[index] = Edge.model_validate(merged)
    return Diagram(nodes=diagram.nodes, edges=tuple(edges))


def remove_edge(diagram: Diagram, index: int) -> Diagram:
    """
    Remove the edge at `index` and prune blank nodes left without edges.

    Labeled nodes are kept even when they end up disconnected.
    """
    edges = tuple(e for i, e in enumerate(diagram.edges) if i != index)
    referenced = {e.source for e in edges} | {e.target for e in edges}
    nodes = tuple(
        n for n in diagram.nodes
        if not n.is_blank or n.id in referenced
    )
    return Diagram(nodes=nodes, edges=edges)
