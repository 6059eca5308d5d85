"""Base interfaces for rule modules and their detection strategies."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

from dualscan.analyzers.patterns import glob_regex
from dualscan.config import Settings
from dualscan.schemas.options import RuleMode, RuleOptions

if TYPE_CHECKING:
    from dualscan.parsers.syntax import VisitBudget
    from dualscan.services.project_context import ProjectContext


class Severity(str, Enum):
    """Finding severity levels."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class StrategySource(str, Enum):
    """Which kind of detector produced a finding."""

    STRUCTURAL = "structural"
    TEXTUAL = "textual"


@dataclass(frozen=True)
class SourceUnit:
    """One file under analysis plus its parsed tree, if available."""

    path: str
    text: str
    language: str
    tree: Any = None

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines()


@dataclass(frozen=True)
class Finding:
    """One reported occurrence of a rule violation."""

    rule_id: str
    severity: Severity
    file: str
    line: int
    column: int
    message: str
    category: str
    strategy_source: StrategySource
    suggestion: Optional[str] = None
    extra: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.line < 1 or self.column < 1:
            raise ValueError(f"Invalid position {self.line}:{self.column} for {self.rule_id} in {self.file}")

    @property
    def identity(self) -> tuple:
        """Hashable identity used for side maps such as classifications."""
        return (
            self.rule_id,
            self.file,
            self.line,
            self.column,
            self.strategy_source.value,
            self.message,
        )

    def __hash__(self):
        return hash(self.identity)


@dataclass
class DetectionContext:
    """Per-call inputs for a strategy. Never stored on the rule."""

    options: RuleOptions
    settings: Settings
    project: Optional["ProjectContext"] = None
    budget: Optional["VisitBudget"] = None

    def allowed(self, name: str) -> bool:
        return name in self.options.allow


class DetectionStrategy:
    """Base class for detectors. One instance is shared by every worker."""

    source: StrategySource = StrategySource.TEXTUAL
    requires_tree: bool = False

    def __init__(self, rule: "RuleModule"):
        self.rule = rule

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        raise NotImplementedError

    def finding(
        self,
        unit: SourceUnit,
        line: int,
        column: int,
        message: str,
        extra: Optional[Mapping[str, str]] = None,
    ) -> Finding:
        return Finding(
            rule_id=self.rule.rule_id,
            severity=self.rule.severity,
            file=unit.path,
            line=line,
            column=column,
            message=message,
            category=self.rule.category,
            strategy_source=self.source,
            suggestion=self.rule.suggestion,
            extra=dict(extra or {}),
        )


class StructuralStrategy(DetectionStrategy):
    """Detector that walks a syntax tree with project symbol context."""

    source = StrategySource.STRUCTURAL
    requires_tree = True


class TextualStrategy(DetectionStrategy):
    """Detector that pattern-matches raw source text."""

    source = StrategySource.TEXTUAL


_WHITESPACE = re.compile(r"\s+")


class RuleModule:
    """A check identity bound to its structural and textual strategies."""

    rule_id: str = "base"
    name: str = ""
    category: str = ""
    severity: Severity = Severity.WARNING
    suggestion: Optional[str] = None
    default_mode: RuleMode = RuleMode.SUPPLEMENT
    default_exclude: tuple[str, ...] = ()

    # duplicate-logic rules collect occurrences and judge them in finalize()
    aggregates: bool = False

    # messages from loading per-rule config files
    config_errors: tuple[str, ...] = ()

    # wider same-identity merge window, in lines
    identity_window: Optional[int] = None

    structural: Optional[StructuralStrategy] = None
    textual: Optional[TextualStrategy] = None

    def options_from(self, raw: Optional[Mapping[str, Any]]) -> RuleOptions:
        """Validate raw per-rule options; raises pydantic.ValidationError."""
        data = dict(raw or {})
        data.setdefault("mode", self.default_mode)
        return RuleOptions.model_validate(data)

    def is_excluded(self, path: str, options: RuleOptions) -> bool:
        normalized = path.replace("\\", "/")
        patterns = list(self.default_exclude) + list(options.exclude)
        return any(glob_regex(pattern).match(normalized) for pattern in patterns)

    def identity_for(self, finding: Finding) -> str:
        """Semantic identity used by deduplication."""
        return _WHITESPACE.sub(" ", finding.message).strip().lower()

    def is_qualified(self, finding: Finding) -> bool:
        """Whether a finding's message carries a framework/context qualifier."""
        return False

    def finalize(self, findings: list[Finding], settings: Settings) -> list[Finding]:
        return findings
