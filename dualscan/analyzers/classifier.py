"""Architectural classification and legitimacy of repeated logic.

Repetition across architectural layers (a UI component and a network
client both retrying) is fine. Repetition of the same purpose inside one
layer is copy-paste that belongs in a shared utility.
"""

import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from dualscan.analyzers.base import Finding, Severity
from dualscan.analyzers.clustering import OccurrenceCluster

SCOPE_KEY = "scope"
CONTEXT_KEY = "context"


class Layer(str, Enum):
    UI = "ui"
    LOGIC = "logic"
    REPOSITORY = "repository"
    INFRASTRUCTURE = "infrastructure"
    UNKNOWN = "unknown"


class Purpose(str, Enum):
    NETWORK = "network"
    DATABASE = "database"
    VALIDATION = "validation"
    UI = "ui"
    AUTH = "auth"
    GENERAL = "general"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Classification:
    layer: Layer = Layer.UNKNOWN
    purpose: Purpose = Purpose.GENERAL


@dataclass(frozen=True)
class LegitimacyVerdict:
    is_legitimate: bool
    reason: str
    confidence: Confidence
    severity: Optional[Severity] = None


_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_WORD = re.compile(r"[^a-z0-9]+")


def tokenize(text: str) -> list[str]:
    """Split paths, identifiers and code into lowercase words."""
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", text)
    return [token for token in _NON_WORD.split(spaced.lower()) if token]


class ArchitecturalClassifier:
    """Labels occurrences with a layer and a purpose. First match wins."""

    LAYER_KEYWORDS = (
        (Layer.UI, ("component", "view", "page", "modal", "form", "screen", "widget", "button")),
        (Layer.LOGIC, ("service", "usecase", "viewmodel", "controller", "handler", "manager", "business")),
        (Layer.REPOSITORY, ("repository", "dao", "store", "cache", "persistence", "data")),
        (Layer.INFRASTRUCTURE, ("client", "adapter", "gateway", "connector", "network", "http", "api")),
    )

    PURPOSE_KEYWORDS = (
        (Purpose.NETWORK, ("fetch", "axios", "request", "http", "api", "ajax", "xhr")),
        (Purpose.DATABASE, ("query", "transaction", "connection", "db", "sql", "insert", "update")),
        (Purpose.VALIDATION, ("validate", "check", "verify", "confirm", "assert")),
        (Purpose.UI, ("click", "submit", "load", "render", "update", "refresh")),
        (Purpose.AUTH, ("login", "authenticate", "authorize", "token", "session")),
    )

    def classify(self, file_path: str, scope: str = "", context: str = "") -> Classification:
        directory, filename = os.path.split(file_path.replace("\\", "/"))
        layer_words = set(tokenize(filename)) | set(tokenize(directory)) | set(tokenize(scope))
        purpose_words = set(tokenize(scope)) | set(tokenize(filename)) | set(tokenize(context))

        return Classification(
            layer=self._first_match(self.LAYER_KEYWORDS, layer_words, Layer.UNKNOWN),
            purpose=self._first_match(self.PURPOSE_KEYWORDS, purpose_words, Purpose.GENERAL),
        )

    def classify_findings(self, findings: list[Finding]) -> dict[tuple, Classification]:
        """Side map from finding identity to classification."""
        return {
            finding.identity: self.classify(
                finding.file,
                finding.extra.get(SCOPE_KEY, ""),
                finding.extra.get(CONTEXT_KEY, ""),
            )
            for finding in findings
        }

    @staticmethod
    def _first_match(table, words: set[str], default):
        for label, keywords in table:
            if any(keyword in words or f"{keyword}s" in words for keyword in keywords):
                return label
        return default


class LegitimacyAssessor:
    """Decides whether a cluster of similar occurrences is a real duplicate."""

    def __init__(self, pattern_label: str = "retry"):
        self.pattern_label = pattern_label

    def assess(
        self,
        cluster: OccurrenceCluster,
        classifications: Mapping[tuple, Classification],
    ) -> LegitimacyVerdict:
        labels = [classifications.get(member.identity, Classification()) for member in cluster.members]
        layers = {label.layer for label in labels}
        purposes = {label.purpose for label in labels}

        if len(layers) > 1:
            return LegitimacyVerdict(
                is_legitimate=True,
                reason=f"Cross-layer {self.pattern_label} patterns are architecturally valid",
                confidence=Confidence.HIGH,
            )
        if len(purposes) > 1:
            return LegitimacyVerdict(
                is_legitimate=True,
                reason=f"Different {self.pattern_label} purposes in same layer",
                confidence=Confidence.MEDIUM,
            )

        layer, purpose = labels[0].layer, labels[0].purpose
        return LegitimacyVerdict(
            is_legitimate=False,
            reason=f"Duplicate {purpose.value} {self.pattern_label} logic in {layer.value} layer",
            confidence=Confidence.HIGH if cluster.size > 2 else Confidence.MEDIUM,
            severity=Severity.WARNING,
        )

    def violation(
        self,
        cluster: OccurrenceCluster,
        verdict: LegitimacyVerdict,
        classification: Classification,
        rule_id: str,
        category: str,
        suggestion: Optional[str] = None,
    ) -> Optional[Finding]:
        """The single finding reported for an illegitimate cluster."""
        if verdict.is_legitimate or cluster.size < 2:
            return None

        first = cluster.first
        return Finding(
            rule_id=rule_id,
            severity=verdict.severity or Severity.WARNING,
            file=first.file,
            line=first.line,
            column=first.column,
            message=(
                f"{verdict.reason} ({cluster.size} similar patterns found). "
                f"Consider using a centralized {self.pattern_label} utility."
            ),
            category=category,
            strategy_source=first.strategy_source,
            suggestion=suggestion,
            extra={
                "signature": cluster.signature,
                "layer": classification.layer.value,
                "purpose": classification.purpose.value,
                "confidence": verdict.confidence.value,
                "occurrences": ",".join(f"{m.file}:{m.line}" for m in cluster.members),
                "bridged": "1" if cluster.bridged else "0",
            },
        )
