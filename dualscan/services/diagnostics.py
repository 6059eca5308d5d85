"""Structured diagnostics for failures recovered during analysis."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from dualscan.schemas.finding import DiagnosticRecord

logger = logging.getLogger(__name__)


class DiagnosticKind(str, Enum):
    """Where a recovered failure happened."""

    UNIT = "unit"
    STRATEGY = "strategy"
    CONFIGURATION = "configuration"
    SESSION = "session"
    BUDGET = "budget"


@dataclass(frozen=True)
class Diagnostic:
    """A failure that was recovered and did not stop the run."""

    kind: DiagnosticKind
    message: str
    path: Optional[str] = None
    rule_id: Optional[str] = None
    level: int = logging.WARNING

    def to_record(self) -> DiagnosticRecord:
        return DiagnosticRecord(
            kind=self.kind.value,
            level=logging.getLevelName(self.level).lower(),
            message=self.message,
            path=self.path,
            rule_id=self.rule_id,
        )

    def __str__(self) -> str:
        where = ":".join(part for part in (self.path, self.rule_id) if part)
        prefix = f"[{self.kind.value}] {where}: " if where else f"[{self.kind.value}] "
        return prefix + self.message


class DiagnosticSink:
    """Receives diagnostics as they are emitted."""

    def emit(self, diagnostic: Diagnostic) -> None:
        raise NotImplementedError


class LoggingSink(DiagnosticSink):
    """Forwards diagnostics to the standard logger."""

    def emit(self, diagnostic: Diagnostic) -> None:
        logger.log(diagnostic.level, str(diagnostic))


class CollectingSink(DiagnosticSink):
    """Keeps emitted diagnostics in memory. Safe to share between workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: list[Diagnostic] = []

    def emit(self, diagnostic: Diagnostic) -> None:
        with self._lock:
            self._items.append(diagnostic)

    @property
    def diagnostics(self) -> list[Diagnostic]:
        with self._lock:
            return list(self._items)

    def by_kind(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is kind]
