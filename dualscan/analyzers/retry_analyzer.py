"""Duplicate retry logic detection.

Both strategies extract retry-shaped occurrences (retry loops and
recursive retries from error handlers). The rule then clusters similar
occurrences and reports only same-layer, same-purpose duplicates.
"""

import logging
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
from dualscan.analyzers.classifier import (
    CONTEXT_KEY,
    SCOPE_KEY,
    ArchitecturalClassifier,
    LegitimacyAssessor,
)
from dualscan.analyzers.clustering import FeatureVector, cluster_findings
from dualscan.analyzers.patterns import balanced_span, is_comment_line
from dualscan.config import Settings
from dualscan.parsers.syntax import (
    LOOP_KINDS,
    NodeKind,
    callee_name,
    declared_name,
    enclosing,
    node_kind,
    node_text,
    position,
    scope_name,
    walk,
)
from dualscan.services.rule_config_service import RuleConfigStore

logger = logging.getLogger(__name__)

KNOWN_RETRY_FUNCTIONS = "knownRetryFunctions"

DEFAULT_RETRY_FUNCTIONS = [
    "RetryUtil",
    "retryWithBackoff",
    "withRetry",
    "retry",
    "retryAsync",
    "retryPromise",
    "retryOperation",
    "exponentialBackoff",
    "linearBackoff",
]

TEST_GLOBS = ("**/*.test.*", "**/*.spec.*", "**/tests/**", "**/__tests__/**", "**/test_*.py")

OCCURRENCE_IDENTITY = "retry-occurrence"
CONTEXT_CHARS = 300

_RETRY_WORD = re.compile(r"retr(?:y|ies)|attempt|tries|backoff", re.IGNORECASE)
_UNBOUNDED_HEADER = re.compile(r"^\s*(?:do\b|while\s*\(?\s*(?:true|True|1)\s*\)?)")
_ERROR_HANDLING = re.compile(r"\b(?:try|catch|except|error)\b", re.IGNORECASE)
_MAX_RETRIES = re.compile(r"max\w*(?:retr|attempt|tries)", re.IGNORECASE)
_BACKOFF = re.compile(r"backoff|delay|timeout|sleep", re.IGNORECASE)
_SET_TIMEOUT = re.compile(r"settimeout|\bsleep\s*\(|new\s+promise\b", re.IGNORECASE)
_EXPONENTIAL = re.compile(r"exponential|math\.pow|\*\*\s*\w|\*\s*2\b|<<\s*\w", re.IGNORECASE)
_THROW = re.compile(r"\b(?:throw|raise)\b")
_FOR = re.compile(r"\bfor\b")
_WHILE = re.compile(r"\bwhile\b")
_TRY = re.compile(r"\btry\b")
_CATCH = re.compile(r"\b(?:catch|except)\b")
_WHITESPACE = re.compile(r"\s+")


def _compact(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()[:CONTEXT_CHARS]


def text_features(text: str) -> FeatureVector:
    """Feature vector from raw source text."""
    return FeatureVector.from_flags(
        for_loop=bool(_FOR.search(text)),
        while_loop=bool(_WHILE.search(text)),
        try_catch=bool(_TRY.search(text) and _CATCH.search(text)),
        max_retries=bool(_MAX_RETRIES.search(text)),
        backoff=bool(_BACKOFF.search(text)),
        set_timeout=bool(_SET_TIMEOUT.search(text)),
        exponential=bool(_EXPONENTIAL.search(text)),
        throw=bool(_THROW.search(text)),
    )


def is_retry_loop_header(header: str, body: str) -> bool:
    if _RETRY_WORD.search(header):
        return True
    return bool(_UNBOUNDED_HEADER.search(header) and _RETRY_WORD.search(body))


class StructuralRetryStrategy(StructuralStrategy):
    """Retry loops and recursive retries found in the syntax tree."""

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        safe = self.rule.safe_functions(context)
        loops: list[Any] = []
        findings: list[Finding] = []

        for node in walk(unit.tree.root_node, context.budget):
            kind = node_kind(node)
            if kind in LOOP_KINDS and self._is_retry_loop(node, context):
                loops.append(node)
            elif kind is NodeKind.CATCH:
                finding = self._recursive_retry(unit, node, context, safe)
                if finding is not None:
                    findings.append(finding)

        # keep the innermost loop of nested retry loops
        for loop in loops:
            if any(other is not loop and self._contains(loop, other) for other in loops):
                continue
            if self._delegates(unit, loop, context, safe):
                continue
            findings.append(self._occurrence(unit, loop, context, "Retry loop"))

        return findings

    def _is_retry_loop(self, node: Any, context: DetectionContext) -> bool:
        text = node_text(node)
        body = node.child_by_field_name("body")
        header = text[: body.start_byte - node.start_byte] if body is not None else text
        if not is_retry_loop_header(header, text):
            return False
        kinds = {node_kind(child) for child in walk(node, context.budget)}
        return NodeKind.TRY in kinds or NodeKind.CATCH in kinds or bool(_ERROR_HANDLING.search(text))

    @staticmethod
    def _contains(outer: Any, inner: Any) -> bool:
        return outer.start_byte <= inner.start_byte and inner.end_byte <= outer.end_byte

    def _recursive_retry(self, unit, node, context, safe) -> Optional[Finding]:
        function = enclosing(node, NodeKind.FUNCTION)
        if function is None:
            return None
        name = declared_name(function)
        if not name or name in safe:
            return None
        if not _RETRY_WORD.search(node_text(function.child_by_field_name("parameters")) + node_text(node)):
            return None

        for child in walk(node, context.budget):
            if node_kind(child) is NodeKind.CALL and callee_name(child).split(".")[-1] == name:
                if self._delegates(unit, node, context, safe):
                    return None
                return self._occurrence(unit, node, context, "Recursive retry")
        return None

    def _delegates(self, unit, node, context, safe) -> bool:
        """Whether the occurrence sits in, or hands off to, a known retry helper."""
        scope = scope_name(node)
        if scope in safe:
            return True

        project = context.project
        if project is not None:
            for symbol in project.lookup(scope, kind="function"):
                if symbol.file_path == unit.path and safe.intersection(symbol.decorators):
                    return True

        for child in walk(node, context.budget):
            if node_kind(child) is NodeKind.CALL and callee_name(child).split(".")[-1] in safe:
                return True
        return False

    def _occurrence(self, unit, node, context, label: str) -> Finding:
        function = enclosing(node, NodeKind.FUNCTION)
        scope_node = function if function is not None else node
        kinds = {node_kind(child) for child in walk(scope_node, context.budget)}
        text = node_text(scope_node)

        features = FeatureVector.from_flags(
            for_loop=NodeKind.FOR_LOOP in kinds,
            while_loop=NodeKind.WHILE_LOOP in kinds,
            try_catch=NodeKind.TRY in kinds,
            max_retries=bool(_MAX_RETRIES.search(text)),
            backoff=bool(_BACKOFF.search(text)),
            set_timeout=bool(_SET_TIMEOUT.search(text)),
            exponential=bool(_EXPONENTIAL.search(text)),
            throw=NodeKind.THROW in kinds,
        )

        scope = scope_name(node)
        line, column = position(node)
        extra = features.to_extra()
        extra[SCOPE_KEY] = scope
        extra[CONTEXT_KEY] = _compact(text)
        return self.finding(unit, line, column, f"{label} in {scope}", extra)


class TextualRetryStrategy(TextualStrategy):
    """Retry loops and recursive retries found by scanning lines."""

    WINDOW_BEFORE = 5
    WINDOW_AFTER = 15

    LOOP_LINE = re.compile(r"^(\s*)(?:for|while|do)\b")
    CATCH_LINE = re.compile(r"^(\s*)(?:\}\s*)?(?:catch\b|except\b)")
    TEST_CALL = re.compile(r"\b(?:it|describe|test)\s*\(|\bmock\w*\(|\.mock\b")
    FUNCTION_PATTERNS = (
        re.compile(r"(?:async\s+)?function\s*\*?\s*(\w+)"),
        re.compile(r"(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s*)?(?:function\b|\([^)]*\)\s*=>|\w+\s*=>)"),
        re.compile(r"^\s*(?:async\s+)?def\s+(\w+)"),
        re.compile(r"^\s*(?:(?:public|private|protected|static|async)\s+)*(\w+)\s*\([^)]*\)\s*(?::\s*[^{]+)?\{"),
    )
    NOT_FUNCTIONS = {"if", "for", "while", "switch", "catch", "function", "return", "with"}

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        safe = self.rule.safe_functions(context)
        lines = unit.lines
        findings: list[Finding] = []
        loops: list[tuple[int, int, int]] = []

        for index, line in enumerate(lines):
            if is_comment_line(line) or self.TEST_CALL.search(line):
                continue

            loop = self.LOOP_LINE.match(line)
            if loop:
                after = "\n".join(lines[index:index + self.WINDOW_AFTER])
                if is_retry_loop_header(line, after) and _ERROR_HANDLING.search(after):
                    end = self._block_end(lines, index, unit.language == "python")
                    loops.append((index, end, len(loop.group(1)) + 1))
                continue

            catch = self.CATCH_LINE.match(line)
            if catch:
                scope = self._scope_for(lines, index)
                if scope == "anonymous" or scope in safe:
                    continue
                after = "\n".join(lines[index:index + 8])
                if re.search(rf"\b{re.escape(scope)}\s*\(", after) and _RETRY_WORD.search(after):
                    column = line.index(line.strip()[0]) + 1
                    finding = self._occurrence(unit, lines, index, column, "Recursive retry", safe)
                    if finding is not None:
                        findings.append(finding)

        # keep the innermost loop of nested retry loops
        for index, end, column in loops:
            if any(index < other <= end for other, _, _ in loops):
                continue
            finding = self._occurrence(unit, lines, index, column, "Retry loop", safe)
            if finding is not None:
                findings.append(finding)

        return findings

    @staticmethod
    def _block_end(lines: list[str], index: int, indented: bool) -> int:
        """Index of the last line of the loop body starting at ``index``."""
        if indented:
            depth = len(lines[index]) - len(lines[index].lstrip())
            end = index
            for cursor in range(index + 1, len(lines)):
                line = lines[cursor]
                if not line.strip():
                    continue
                if len(line) - len(line.lstrip()) <= depth:
                    break
                end = cursor
            return end

        text = "\n".join(lines[index:])
        brace = text.find("{")
        # braceless body is the next statement
        if brace < 0 or text.count("\n", 0, brace) > 1:
            return min(index + 1, len(lines) - 1)
        body = balanced_span(text, brace, "{", "}")
        if body is None:
            return len(lines) - 1
        return index + text.count("\n", 0, brace + len(body) + 1)

    def _occurrence(self, unit, lines, index, column, label, safe) -> Optional[Finding]:
        start = max(0, index - self.WINDOW_BEFORE)
        window = "\n".join(lines[start:index + self.WINDOW_AFTER])
        if any(re.search(rf"\b{re.escape(name)}\s*\(", window) for name in safe):
            return None

        scope = self._scope_for(lines, index)
        if scope in safe:
            return None

        extra = text_features(window.lower()).to_extra()
        extra[SCOPE_KEY] = scope
        extra[CONTEXT_KEY] = _compact(window)
        return self.finding(unit, index + 1, column, f"{label} in {scope}", extra)

    def _scope_for(self, lines: list[str], index: int) -> str:
        for cursor in range(index, -1, -1):
            line = lines[cursor]
            for pattern in self.FUNCTION_PATTERNS:
                match = pattern.search(line)
                if match and match.group(1) not in self.NOT_FUNCTIONS:
                    return match.group(1)
            if re.match(r"\s*(?:export\s+)?class\s", line) or "module.exports" in line:
                break
        return "anonymous"


class RetryLogicRule(RuleModule):
    """Retry logic should live in one shared utility, not be rewritten per call site."""

    rule_id = "REL-001"
    name = "Duplicate retry logic"
    category = "reliability"
    severity = Severity.WARNING
    suggestion = "Move retry handling into a shared helper (e.g. withRetry) and call it from each site."
    default_exclude = TEST_GLOBS
    aggregates = True

    def __init__(self, config_store: Optional[RuleConfigStore] = None):
        store = config_store or RuleConfigStore()
        self.config = store.load(self.rule_id, {KNOWN_RETRY_FUNCTIONS: DEFAULT_RETRY_FUNCTIONS})
        self.known_retry_functions = frozenset(self.config.get(KNOWN_RETRY_FUNCTIONS))
        self.config_errors = self.config.errors
        self.classifier = ArchitecturalClassifier()
        self.assessor = LegitimacyAssessor(pattern_label="retry")
        self.structural = StructuralRetryStrategy(self)
        self.textual = TextualRetryStrategy(self)

    def safe_functions(self, context: DetectionContext) -> frozenset[str]:
        return self.known_retry_functions.union(context.options.allow)

    def identity_for(self, finding: Finding) -> str:
        return OCCURRENCE_IDENTITY

    def finalize(self, findings: list[Finding], settings: Settings) -> list[Finding]:
        """Cluster occurrences and report same-layer, same-purpose duplicates."""
        classifications = self.classifier.classify_findings(findings)
        violations: list[Finding] = []

        for cluster in cluster_findings(findings, settings.similarity_threshold):
            if cluster.size < 2:
                continue
            verdict = self.assessor.assess(cluster, classifications)
            if verdict.is_legitimate:
                logger.debug(
                    f"{cluster.size} retry patterns starting at {cluster.first.file}:{cluster.first.line} "
                    f"accepted: {verdict.reason}"
                )
                continue
            violation = self.assessor.violation(
                cluster,
                verdict,
                classifications[cluster.first.identity],
                rule_id=self.rule_id,
                category=self.category,
                suggestion=self.suggestion,
            )
            if violation is not None:
                violations.append(violation)

        return violations
