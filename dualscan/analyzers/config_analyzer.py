"""Hardcoded configuration: endpoints, connection strings, ports and timeouts."""

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
from dualscan.analyzers.classifier import tokenize
from dualscan.analyzers.patterns import is_comment_line, iter_matches
from dualscan.parsers.syntax import (
    NodeKind,
    callee_name,
    node_kind,
    node_text,
    pair_key,
    pair_value,
    position,
    string_value,
    walk,
)

CONNECTION_STRING = re.compile(
    r"^(?:(?:mongodb(?:\+srv)?|mysql|postgres(?:ql)?|rediss?|amqps?|mssql)://|jdbc:)\S+$",
    re.IGNORECASE,
)
EXTERNAL_URL = re.compile(
    r"^https?://(?!localhost\b|127\.0\.0\.1\b|0\.0\.0\.0\b|\[::1\]|example\.(?:com|org)\b"
    r"|www\.w3\.org\b|json-schema\.org\b|schemas\.)[^\s'\"`]+$",
    re.IGNORECASE,
)
CREDENTIALS = re.compile(r"//[^/@\s]+@")

ENV_MARKERS = ("process.env", "os.environ", "getenv", "import.meta.env", "config.get", "settings.")
ENV_GETTERS = re.compile(r"(?:getenv|environ\.get|config\.get|\.get_env)$")

CONFIG_WORDS = {"port", "timeout", "ttl"}
CONFIG_PAIRS = ({"pool", "size"}, {"max", "connections"})

EXCLUDE_GLOBS = (
    "**/*.test.*",
    "**/*.spec.*",
    "**/tests/**",
    "**/__tests__/**",
    "**/test_*.py",
    "**/config/**",
    "**/*.config.*",
    "**/settings.py",
    "**/config.py",
)

DISPLAY_CHARS = 60


def classify_literal(value: str) -> Optional[str]:
    value = value.strip()
    if "${" in value or "{" in value:
        return None
    if CONNECTION_STRING.match(value):
        return "connection string"
    if EXTERNAL_URL.match(value):
        return "URL"
    return None


def is_config_key(key: str) -> bool:
    words = set(tokenize(key))
    return bool(words & CONFIG_WORDS) or any(pair <= words for pair in CONFIG_PAIRS)


def literal_message(label: str, value: str) -> str:
    display = CREDENTIALS.sub("//***@", value.strip())
    if len(display) > DISPLAY_CHARS:
        display = display[:DISPLAY_CHARS] + "..."
    return f'Hardcoded {label} "{display}"; load it from configuration'


def number_message(key: str, value: str) -> str:
    return f"Hardcoded {key} value {value}; load it from configuration"


class StructuralConfigStrategy(StructuralStrategy):
    """String and number literals in configuration positions of the tree."""

    SKIP_PARENTS = {"import_statement", "import_from_statement", "export_statement", "expression_statement"}

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        findings = []
        for node in walk(unit.tree.root_node, context.budget):
            kind = node_kind(node)
            finding = None
            if kind is NodeKind.STRING:
                finding = self._string(unit, node, context)
            elif kind is NodeKind.NUMBER:
                finding = self._number(unit, node, context)
            if finding is not None:
                findings.append(finding)
        return findings

    def _string(self, unit: SourceUnit, node: Any, context: DetectionContext) -> Optional[Finding]:
        value = string_value(node)
        label = classify_literal(value)
        if label is None or context.allowed(value) or self._env_fallback(node):
            return None
        line, column = position(node)
        return self.finding(unit, line, column, literal_message(label, value), {"value_kind": label})

    def _number(self, unit: SourceUnit, node: Any, context: DetectionContext) -> Optional[Finding]:
        parent = node.parent
        if parent is None or node_kind(parent) not in (NodeKind.PAIR, NodeKind.ARGUMENT, NodeKind.ASSIGNMENT):
            return None
        value_node = pair_value(parent)
        if value_node is None or value_node.start_byte != node.start_byte:
            return None

        key = pair_key(parent)
        value = node_text(node)
        if not is_config_key(key) or not value.isdigit() or len(value) < 2 or context.allowed(key):
            return None
        line, column = position(node)
        return self.finding(unit, line, column, number_message(key, value), {"value_kind": "number"})

    def _env_fallback(self, node: Any) -> bool:
        """Imports, docstrings and defaults for environment lookups are not config."""
        parent = node.parent
        if parent is None:
            return False
        if parent.type in self.SKIP_PARENTS:
            return True

        if parent.type in ("arguments", "argument_list") and parent.parent is not None:
            name = callee_name(parent.parent)
            if name == "require" or ENV_GETTERS.search(name):
                return True

        if parent.type in ("binary_expression", "boolean_operator", "conditional_expression", "ternary_expression"):
            text = node_text(parent)
            return any(marker in text for marker in ENV_MARKERS)
        return False


class TextualConfigStrategy(TextualStrategy):
    """Quoted endpoints and numeric config assignments found line by line."""

    LITERAL = re.compile(
        r"(['\"`])((?:(?:mongodb(?:\+srv)?|mysql|postgres(?:ql)?|rediss?|amqps?|mssql)://|jdbc:|https?://)[^'\"`\s]+)\1",
        re.IGNORECASE,
    )
    NUMBER = re.compile(r"\b(?P<key>[A-Za-z_]\w*)['\"]?\s*(?::|=(?!=))\s*(?P<value>\d{2,})\b")
    IMPORT_LINE = re.compile(r"^\s*(?:import\b|from\s+\S+\s+import\b|export\s+.*\bfrom\b)|\brequire\s*\(")

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        lines = unit.lines
        findings = []

        for match in iter_matches(self.LITERAL, unit.text):
            value = match.group(2)
            label = classify_literal(value)
            if label is None or context.allowed(value) or self._skip_line(lines[match.line - 1]):
                continue
            findings.append(
                self.finding(unit, match.line, match.column, literal_message(label, value), {"value_kind": label})
            )

        for match in iter_matches(self.NUMBER, unit.text, "value"):
            key = match.group("key")
            if not is_config_key(key) or context.allowed(key) or self._skip_line(lines[match.line - 1]):
                continue
            findings.append(self.finding(
                unit,
                match.line,
                match.column,
                number_message(key, match.group("value")),
                {"value_kind": "number"},
            ))
        return findings

    def _skip_line(self, line: str) -> bool:
        return (
            is_comment_line(line)
            or bool(self.IMPORT_LINE.search(line))
            or any(marker in line for marker in ENV_MARKERS)
        )


class HardcodedConfigRule(RuleModule):
    """Environment-dependent values belong in configuration, not in code."""

    rule_id = "CFG-001"
    name = "Hardcoded configuration"
    category = "maintainability"
    severity = Severity.WARNING
    suggestion = "Read the value from environment-backed settings."
    default_exclude = EXCLUDE_GLOBS

    def __init__(self):
        self.structural = StructuralConfigStrategy(self)
        self.textual = TextualConfigStrategy(self)
