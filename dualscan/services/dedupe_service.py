"""Deduplication of findings produced by several strategies of one rule."""

import logging
import re
from typing import Callable, Iterable, Optional

from dualscan.analyzers.base import Finding, StrategySource

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown"

_WHITESPACE = re.compile(r"\s+")


def normalize_message(message: str) -> str:
    return _WHITESPACE.sub(" ", message).strip().lower()


class DeduplicationPolicy:
    """Merges findings that describe the same defect.

    Two findings collide when they share file, rule and semantic identity
    and their lines are within ``line_tolerance`` (or within
    ``identity_window`` when the identity is known). Columns never block a
    merge. On collision a structural finding beats a textual one, then a
    qualified message beats a generic one, then the first seen is kept.
    """

    def __init__(
        self,
        line_tolerance: int = 1,
        identity_window: Optional[int] = None,
        identity: Optional[Callable[[Finding], str]] = None,
        qualified: Optional[Callable[[Finding], bool]] = None,
    ):
        self.line_tolerance = line_tolerance
        self.identity_window = identity_window
        self._identity = identity or (lambda finding: normalize_message(finding.message))
        self._qualified = qualified or (lambda finding: False)

    @classmethod
    def for_rule(cls, rule, line_tolerance: int = 1, identity_window: Optional[int] = None):
        window = None
        if rule.identity_window is not None:
            window = identity_window if identity_window is not None else rule.identity_window
        return cls(
            line_tolerance=line_tolerance,
            identity_window=window,
            identity=rule.identity_for,
            qualified=rule.is_qualified,
        )

    def identity_of(self, finding: Finding) -> str:
        return self._identity(finding) or UNKNOWN_IDENTITY

    def key(self, finding: Finding) -> tuple[int, int, str]:
        return finding.line, finding.column, self.identity_of(finding)

    def dedupe(self, findings: Iterable[Finding]) -> list[Finding]:
        """Merge until no two remaining findings collide."""
        current = list(findings)
        while True:
            merged = self._merge_pass(current)
            if len(merged) == len(current):
                return merged
            current = merged

    def _merge_pass(self, findings: list[Finding]) -> list[Finding]:
        kept: list[Finding] = []
        for finding in findings:
            index = self._collision(kept, finding)
            if index is None:
                kept.append(finding)
            elif self._prefer(finding, kept[index]):
                logger.debug(
                    f"Replacing {kept[index].strategy_source.value} finding at "
                    f"{finding.file}:{kept[index].line} with {finding.strategy_source.value}"
                )
                kept[index] = finding
        return kept

    def _collision(self, kept: list[Finding], finding: Finding) -> Optional[int]:
        for index, other in enumerate(kept):
            if self.collides(finding, other):
                return index
        return None

    def collides(self, a: Finding, b: Finding) -> bool:
        if a.file != b.file or a.rule_id != b.rule_id:
            return False

        identity = self.identity_of(a)
        if identity != self.identity_of(b):
            return False

        distance = abs(a.line - b.line)
        if identity == UNKNOWN_IDENTITY:
            # unknown identities only merge on the same message
            return (
                distance <= self.line_tolerance
                and normalize_message(a.message) == normalize_message(b.message)
            )

        if distance <= self.line_tolerance:
            return True
        return self.identity_window is not None and distance <= self.identity_window

    def _prefer(self, candidate: Finding, current: Finding) -> bool:
        if candidate.strategy_source is not current.strategy_source:
            return candidate.strategy_source is StrategySource.STRUCTURAL
        return self._qualified(candidate) and not self._qualified(current)
