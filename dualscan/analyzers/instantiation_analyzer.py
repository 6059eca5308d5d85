"""Direct instantiation of infrastructure dependencies inside classes."""

import os
import re
from typing import Any, Optional

from dualscan.analyzers.base import (
    DetectionContext,
    Finding,
    RuleModule,
    Severity,
    SourceUnit,
    StructuralStrategy,
    TextualStrategy,
)
from dualscan.analyzers.patterns import is_comment_line, iter_matches
from dualscan.parsers.syntax import (
    NodeKind,
    callee,
    declared_name,
    enclosing,
    node_kind,
    node_text,
    position,
    scope_name,
    walk,
)

INFRA_SUFFIX = re.compile(r"(?:Client|Repository|Repo|Service|Gateway|Adapter|Connector|Dao|DAO|Store|Api|API)$")

ALLOWED_CLASSES = {
    "Date", "Map", "Set", "WeakMap", "WeakSet", "Error", "TypeError", "RangeError",
    "Promise", "URL", "URLSearchParams", "RegExp", "Array", "Object", "Headers",
    "Request", "Response", "FormData", "Blob", "AbortController", "Event",
    "CustomEvent", "Buffer", "EventEmitter", "Subject", "BehaviorSubject",
    "ValueError", "Exception", "Path", "Decimal",
}

DI_DECORATORS = {"Injectable", "injectable", "Service", "Repository", "Component", "inject", "singleton"}

COMPOSITION_ROOT_FILES = {"main", "index", "app", "bootstrap", "container", "server", "di", "wiring", "setup"}
COMPOSITION_ROOT_CLASSES = re.compile(r"(?:Factory|Module|Container|Builder|Config|Configuration)$")
FACTORY_SCOPE = re.compile(r"^(?:create|build|make|provide)", re.IGNORECASE)

TEST_GLOBS = ("**/*.test.*", "**/*.spec.*", "**/tests/**", "**/__tests__/**", "**/test_*.py")


def instantiation_message(name: str, owner: str, injectable: bool = False) -> str:
    subject = f'injectable "{name}"' if injectable else f'"{name}"'
    return f'Direct instantiation of {subject} inside class "{owner}"; inject it through the constructor instead'


def is_composition_root(path: str) -> bool:
    stem = os.path.splitext(os.path.basename(path))[0].split(".")[0].lower()
    return stem in COMPOSITION_ROOT_FILES


class StructuralInstantiationStrategy(StructuralStrategy):
    """``new XClient()`` / ``XClient()`` inside classes, resolved through the project."""

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        if is_composition_root(unit.path):
            return []

        findings = []
        for node in walk(unit.tree.root_node, context.budget):
            kind = node_kind(node)
            if kind is NodeKind.NEW or (kind is NodeKind.CALL and unit.language == "python"):
                finding = self._check(unit, node, context)
                if finding is not None:
                    findings.append(finding)
        return findings

    def _check(self, unit: SourceUnit, node: Any, context: DetectionContext) -> Optional[Finding]:
        target = callee(node)
        if target is None:
            return None
        name = node_text(target).split(".")[-1]
        if not name[:1].isupper() or name in ALLOWED_CLASSES or context.allowed(name):
            return None

        owner_node = enclosing(node, NodeKind.CLASS)
        if owner_node is None:
            return None
        owner = declared_name(owner_node) or "anonymous"
        if COMPOSITION_ROOT_CLASSES.search(owner) or FACTORY_SCOPE.match(scope_name(node)):
            return None

        injectable = False
        if context.project is not None:
            injectable = any(
                DI_DECORATORS.intersection(symbol.decorators)
                for symbol in context.project.lookup(name, kind="class")
            )
        if not injectable and not INFRA_SUFFIX.search(name):
            return None

        line, column = position(node)
        return self.finding(
            unit,
            line,
            column,
            instantiation_message(name, owner, injectable),
            {"dependency": name, "owner": owner},
        )


class TextualInstantiationStrategy(TextualStrategy):
    """Constructor calls of infrastructure-looking classes found by pattern matching."""

    NEW = re.compile(r"\bnew\s+(?:[\w$]+\.)*(?P<name>[A-Z]\w*)\s*(?:<[^>\n]*>)?\s*\(")
    PY_ASSIGN = re.compile(r"=\s*(?:\w+\.)*(?P<name>[A-Z]\w*)\s*\(")
    CLASS_LINE = re.compile(r"^(\s*)(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)")
    METHOD_LINE = re.compile(r"^\s*(?:(?:public|private|protected|static|async)\s+)*(?:def\s+)?(\w+)\s*\(")

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        if is_composition_root(unit.path):
            return []

        if unit.language == "python":
            pattern, group = self.PY_ASSIGN, "name"
        else:
            pattern, group = self.NEW, 0

        lines = unit.lines
        findings = []
        for match in iter_matches(pattern, unit.text, group):
            name = match.group("name")
            line = lines[match.line - 1]
            if is_comment_line(line) or name in ALLOWED_CLASSES or context.allowed(name):
                continue
            if not INFRA_SUFFIX.search(name):
                continue

            owner = self._owner(lines, match.line - 1, unit.language == "python")
            if owner is None or COMPOSITION_ROOT_CLASSES.search(owner):
                continue
            if FACTORY_SCOPE.match(self._method(lines, match.line - 1)):
                continue

            findings.append(self.finding(
                unit,
                match.line,
                match.column,
                instantiation_message(name, owner),
                {"dependency": name, "owner": owner},
            ))
        return findings

    def _owner(self, lines: list[str], index: int, indented: bool) -> Optional[str]:
        indent = len(lines[index]) - len(lines[index].lstrip())
        for cursor in range(index, -1, -1):
            match = self.CLASS_LINE.match(lines[cursor])
            if match and (not indented or len(match.group(1)) < indent):
                return match.group(2)
        return None

    def _method(self, lines: list[str], index: int) -> str:
        for cursor in range(index, -1, -1):
            match = self.METHOD_LINE.match(lines[cursor])
            if match and match.group(1) not in ("if", "for", "while", "switch", "catch", "return"):
                return match.group(1)
            if self.CLASS_LINE.match(lines[cursor]):
                break
        return ""


class DirectInstantiationRule(RuleModule):
    """Classes should receive infrastructure dependencies, not construct them."""

    rule_id = "ARCH-001"
    name = "Direct instantiation of infrastructure dependency"
    category = "architecture"
    severity = Severity.WARNING
    suggestion = "Accept the dependency as a constructor parameter and wire it in the composition root."
    default_exclude = TEST_GLOBS

    _DEPENDENCY = re.compile(r'"([^"]+)"')

    def __init__(self):
        self.structural = StructuralInstantiationStrategy(self)
        self.textual = TextualInstantiationStrategy(self)

    def identity_for(self, finding: Finding) -> str:
        match = self._DEPENDENCY.search(finding.message)
        return match.group(1) if match else "unknown"

    def is_qualified(self, finding: Finding) -> bool:
        return "injectable" in finding.message
