"""Service for parsing code with tree-sitter."""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional

import tree_sitter
import tree_sitter_javascript
import tree_sitter_python
import tree_sitter_typescript

from dualscan.parsers.syntax import (
    NodeKind,
    VisitBudget,
    declared_name,
    node_kind,
    node_text,
    pair_key,
    pair_value,
    walk,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SymbolInfo:
    """A declaration visible to other files through the project context."""

    name: str
    kind: str  # class, function, variable
    file_path: str
    line: int
    decorators: tuple[str, ...] = ()
    value: Any = None  # initializer node for variables


class ParserService:
    """Service for parsing code with tree-sitter."""

    SUPPORTED_LANGUAGES = {
        ".py": "python",
        ".js": "javascript",
        ".jsx": "javascript",
        ".mjs": "javascript",
        ".cjs": "javascript",
        ".ts": "typescript",
        ".mts": "typescript",
        ".cts": "typescript",
        ".tsx": "tsx",
    }

    GRAMMARS = {
        "python": tree_sitter_python.language,
        "javascript": tree_sitter_javascript.language,
        "typescript": tree_sitter_typescript.language_typescript,
        "tsx": tree_sitter_typescript.language_tsx,
    }

    def __init__(self):
        """Load a tree-sitter grammar for each supported language."""
        self.languages: dict[str, tree_sitter.Language] = {}
        # tree_sitter.Parser is not safe to share between threads
        self._local = threading.local()

        for name, grammar in self.GRAMMARS.items():
            try:
                self.languages[name] = tree_sitter.Language(grammar())
            except Exception as e:
                logger.warning(f"Failed to initialize tree-sitter grammar for {name}: {e}")

        logger.info(f"Initialized tree-sitter grammars: {list(self.languages.keys())}")

    @property
    def available(self) -> bool:
        return bool(self.languages)

    @classmethod
    def detect_language(cls, file_path: str, default: Optional[str] = None) -> str:
        ext = os.path.splitext(file_path)[1].lower()
        return cls.SUPPORTED_LANGUAGES.get(ext) or default or "text"

    def supports(self, language: str) -> bool:
        return language in self.languages

    def parse(self, content: str, language: str) -> Optional[tree_sitter.Tree]:
        """Parse source text; returns None for languages without a grammar."""
        parser = self._parser_for(language)
        if parser is None:
            return None
        tree = parser.parse(content.encode("utf-8"))
        if tree.root_node.has_error:
            logger.debug(f"Syntax errors in {language} source; keeping partial tree")
        return tree

    def _parser_for(self, language: str) -> Optional[tree_sitter.Parser]:
        if language not in self.languages:
            return None
        parsers = getattr(self._local, "parsers", None)
        if parsers is None:
            parsers = self._local.parsers = {}
        if language not in parsers:
            parsers[language] = tree_sitter.Parser(self.languages[language])
        return parsers[language]

    def extract_symbols(
        self,
        tree: tree_sitter.Tree,
        file_path: str,
        budget: Optional[VisitBudget] = None,
    ) -> list[SymbolInfo]:
        """Collect class, function and variable declarations from a tree."""
        symbols: list[SymbolInfo] = []

        for node in walk(tree.root_node, budget):
            kind = node_kind(node)
            line = node.start_point[0] + 1

            if kind is NodeKind.CLASS:
                name = declared_name(node)
                if name:
                    symbols.append(SymbolInfo(
                        name=name,
                        kind="class",
                        file_path=file_path,
                        line=line,
                        decorators=self._decorators(node),
                    ))

            elif kind is NodeKind.FUNCTION:
                name = declared_name(node)
                if name:
                    symbols.append(SymbolInfo(
                        name=name,
                        kind="function",
                        file_path=file_path,
                        line=line,
                        decorators=self._decorators(node),
                    ))

            elif kind is NodeKind.ASSIGNMENT:
                value = pair_value(node)
                name = pair_key(node)
                if name and value is not None and node_kind(value) is not NodeKind.FUNCTION:
                    symbols.append(SymbolInfo(
                        name=name,
                        kind="variable",
                        file_path=file_path,
                        line=line,
                        value=value,
                    ))

        return symbols

    def _decorators(self, node: Any) -> tuple[str, ...]:
        """Decorator names on a declaration (``@Injectable()`` -> ``Injectable``)."""
        candidates = list(node.named_children)
        parent = node.parent
        # decorators hang off the wrapper in both grammars
        if parent is not None and parent.type in ("decorated_definition", "export_statement"):
            candidates.extend(parent.named_children)

        names = []
        for child in candidates:
            if node_kind(child) is not NodeKind.DECORATOR:
                continue
            text = node_text(child).lstrip("@").strip()
            names.append(text.split("(", 1)[0].split(".")[-1].strip())
        return tuple(names)
