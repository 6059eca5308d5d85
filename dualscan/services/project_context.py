"""Shared multi-file project context for structural detectors.

Built once per session during warm-up and shared by every worker. Entries
are only ever added: registering a unit publishes new dict entries and new
symbol lists, and never mutates a list another worker may be iterating.
"""

import logging
import threading
from typing import Any, Optional

from dualscan.parsers.syntax import VisitBudget
from dualscan.services.parser_service import ParserService, SymbolInfo

logger = logging.getLogger(__name__)


class ProjectContext:
    """Trees and cross-file symbol table for the units of one session."""

    def __init__(self, parser_service: ParserService):
        self.parser_service = parser_service
        self._lock = threading.Lock()
        self._trees: dict[str, Any] = {}
        self._symbols: dict[str, tuple[SymbolInfo, ...]] = {}
        self._ready = False

    def add_unit(self, unit, budget: Optional[VisitBudget] = None) -> bool:
        """Register a parsed unit and its declarations.

        Returns False when the unit has no tree. Symbol extraction may raise
        BudgetExceeded, in which case nothing is published for the unit.
        """
        if unit.tree is None:
            return False

        symbols = self.parser_service.extract_symbols(unit.tree, unit.path, budget)

        with self._lock:
            self._trees[unit.path] = unit.tree
            for symbol in symbols:
                existing = self._symbols.get(symbol.name, ())
                self._symbols[symbol.name] = tuple(
                    sorted(existing + (symbol,), key=lambda s: (s.file_path, s.line))
                )
        return True

    def mark_ready(self):
        self._ready = True
        logger.debug(f"Project context ready: {len(self._trees)} trees, {len(self._symbols)} symbol names")

    def is_ready(self) -> bool:
        return self._ready

    def get_tree(self, path: str) -> Optional[Any]:
        return self._trees.get(path)

    def is_resolved(self, path: str) -> bool:
        return path in self._trees

    def lookup(self, name: str, kind: Optional[str] = None) -> list[SymbolInfo]:
        """Declarations named ``name`` across the project, ordered by file and line."""
        symbols = self._symbols.get(name, ())
        if kind is None:
            return list(symbols)
        return [symbol for symbol in symbols if symbol.kind == kind]

    @property
    def unit_count(self) -> int:
        return len(self._trees)
