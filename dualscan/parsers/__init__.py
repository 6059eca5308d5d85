"""Syntax-tree helpers."""

from dualscan.parsers.syntax import (
    BudgetExceeded,
    NodeKind,
    VisitBudget,
    node_kind,
    node_text,
    position,
    walk,
)

__all__ = [
    "BudgetExceeded",
    "NodeKind",
    "VisitBudget",
    "node_kind",
    "node_text",
    "position",
    "walk",
]
