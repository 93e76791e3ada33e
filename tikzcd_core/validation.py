"""
Diagram validation - Check diagrams for structural issues.

Only structural consistency is checked: node ids must be unique and every
edge endpoint must name an existing node. Decoders use this to reject
inconsistent input; the backend reports it on demand.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Diagram

logger = logging.getLogger(__name__)


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Invalid state, must be fixed
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single validation issue found in a diagram."""
    severity: IssueSeverity
    message: str
    node_id: str | None = None
    edge_index: int | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.node_id is not None:
            result["node_id"] = self.node_id
        if self.edge_index is not None:
            result["edge_index"] = self.edge_index
        return result


def validate_diagram(diagram: "Diagram") -> list[ValidationIssue]:
    """
    Validate a diagram and return a list of issues.

    Checks for:
    - Duplicate node ids - ERROR
    - Edge endpoints that reference no node - ERROR
    - Blank nodes that no edge references - INFO

    Args:
        diagram: The diagram to validate

    Returns:
        List of ValidationIssue objects
    """
    issues: list[ValidationIssue] = []

    seen_ids: set[str] = set()
    for node in diagram.nodes:
        if node.id in seen_ids:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Duplicate node id: {node.id}",
                node_id=node.id
            ))
        seen_ids.add(node.id)

    referenced: set[str] = set()
    for index, edge in enumerate(diagram.edges):
        referenced.add(edge.source)
        referenced.add(edge.target)
        if edge.source not in seen_ids:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Edge references non-existent source node: {edge.source}",
                edge_index=index
            ))
        if edge.target not in seen_ids:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Edge references non-existent target node: {edge.target}",
                edge_index=index
            ))

    for node in diagram.nodes:
        if node.is_blank and node.id not in referenced:
            issues.append(ValidationIssue(
                severity=IssueSeverity.INFO,
                message="Blank node is not connected to any edge",
                node_id=node.id
            ))

    if issues:
        logger.debug("Validation found %d issue(s)", len(issues))
    return issues


def structural_errors(diagram: "Diagram") -> list[ValidationIssue]:
    """Only the ERROR-level issues of a diagram."""
    return [i for i in validate_diagram(diagram) if i.severity == IssueSeverity.ERROR]


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """
    Create a summary of validation issues.

    Args:
        issues: List of validation issues

    Returns:
        Dictionary with counts by severity
    """
    errors = len([i for i in issues if i.severity == IssueSeverity.ERROR])
    return {
        "total": len(issues),
        "errors": errors,
        "info": len([i for i in issues if i.severity == IssueSeverity.INFO]),
        "valid": errors == 0
    }
