"""Analysis session: warm-up, per-unit rule execution and result assembly."""

import logging
import os
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from dualscan.analyzers import default_rules
from dualscan.analyzers.base import (
    DetectionContext,
    DetectionStrategy,
    Finding,
    RuleModule,
    SourceUnit,
    StrategySource,
)
from dualscan.config import Settings, get_settings
from dualscan.errors import SessionError, StrategyError
from dualscan.parsers.syntax import BudgetExceeded, VisitBudget
from dualscan.schemas.finding import FindingRecord
from dualscan.schemas.options import RuleMode, RuleOptions, SessionOptions
from dualscan.services.coverage_service import CoverageReport, CoverageService
from dualscan.services.dedupe_service import DeduplicationPolicy
from dualscan.services.diagnostics import (
    CollectingSink,
    Diagnostic,
    DiagnosticKind,
    DiagnosticSink,
    LoggingSink,
)
from dualscan.services.parser_service import ParserService
from dualscan.services.project_context import ProjectContext
from dualscan.services.rule_config_service import RuleConfigStore

logger = logging.getLogger(__name__)


@dataclass
class StrategyResult:
    """Outcome of one strategy call: findings, or the reason there are none."""

    source: StrategySource
    findings: list[Finding] = field(default_factory=list)
    error: Optional[Exception] = None
    budget_exhausted: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.budget_exhausted

    @classmethod
    def success(cls, source: StrategySource, findings: list[Finding]) -> "StrategyResult":
        return cls(source=source, findings=findings)

    @classmethod
    def failure(cls, source: StrategySource, error: StrategyError) -> "StrategyResult":
        return cls(source=source, error=error)

    @classmethod
    def exhausted(cls, source: StrategySource, error: BudgetExceeded) -> "StrategyResult":
        return cls(source=source, error=error, budget_exhausted=True)


@dataclass
class SessionResult:
    """Everything one run produced."""

    findings: list[Finding]
    diagnostics: list[Diagnostic]
    degraded_units: int
    coverage: CoverageReport

    def to_records(self) -> list[dict[str, Any]]:
        return [FindingRecord.from_finding(f).model_dump(by_alias=True) for f in self.findings]


@dataclass
class _Run:
    """State for one call to ``AnalysisSession.run``."""

    options: SessionOptions
    rule_options: dict[str, RuleOptions]
    coverage: CoverageService
    collector: CollectingSink
    project: Optional[ProjectContext] = None


@dataclass
class _UnitOutcome:
    path: str
    findings: list[Finding] = field(default_factory=list)
    occurrences: dict[str, list[Finding]] = field(default_factory=dict)


def finding_sort_key(finding: Finding) -> tuple:
    return finding.file, finding.line, finding.column, finding.rule_id, finding.message


class AnalysisSession:
    """Runs every rule over a set of files.

    Files are read and parsed once up front, then analyzed in parallel. The
    structural strategy of a rule runs only for units the project context
    resolved; otherwise the textual strategy covers the unit on its own.
    Failures below this class become diagnostics, never exceptions.
    """

    def __init__(
        self,
        rules: Optional[list[RuleModule]] = None,
        settings: Optional[Settings] = None,
        parser_service: Optional[ParserService] = None,
        project: Optional[ProjectContext] = None,
        sink: Optional[DiagnosticSink] = None,
    ):
        self.settings = settings or get_settings()
        if rules is None:
            rules = default_rules(RuleConfigStore(self.settings.rule_config_dir))
        self.rules = rules
        self.parser_service = parser_service or (project.parser_service if project is not None else None)
        self._project = project
        self.sink = sink or LoggingSink()

    def run(
        self,
        paths: Iterable[str],
        language: Optional[str] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> SessionResult:
        """Analyze ``paths`` and return ordered findings plus diagnostics.

        Args:
            paths: Files to analyze.
            language: Language tag for files whose extension is not recognized.
            options: ``{"verbose": bool, "rules": {rule_id: {...}}}``.

        Raises:
            SessionError: If ``paths`` is not a usable list of files.
        """
        paths = self._validate_paths(paths)
        run = _Run(
            options=SessionOptions(),
            rule_options={},
            coverage=CoverageService(max_file_size=self.settings.max_file_size),
            collector=CollectingSink(),
        )
        self._configure(run, options)
        run.project = self._build_project(run)

        units = self._warm_up(paths, language, run)
        if run.project is not None:
            run.project.mark_ready()

        outcomes = self._analyze(units, run)
        findings = self._assemble(outcomes, run)

        result = SessionResult(
            findings=findings,
            diagnostics=run.collector.diagnostics,
            degraded_units=run.coverage.degraded_count,
            coverage=run.coverage.compute_coverage([rule.rule_id for rule in self.rules]),
        )
        logger.info(
            f"Analyzed {len(units)} units with {len(self.rules)} rules: "
            f"{len(result.findings)} findings, {result.degraded_units} degraded units, "
            f"{len(result.diagnostics)} diagnostics"
        )
        return result

    def _validate_paths(self, paths: Iterable[str]) -> list[str]:
        if paths is None or isinstance(paths, (str, bytes)):
            raise SessionError("Expected a list of file paths")
        try:
            return sorted(dict.fromkeys(os.fspath(path) for path in paths))
        except TypeError as e:
            raise SessionError(f"Cannot read file list: {e}") from e

    def _emit(self, run: _Run, diagnostic: Diagnostic):
        run.collector.emit(diagnostic)
        self.sink.emit(diagnostic)

    def _configure(self, run: _Run, options: Optional[dict[str, Any]]):
        try:
            run.options = SessionOptions.model_validate(options or {})
        except ValidationError as e:
            self._emit(run, Diagnostic(
                kind=DiagnosticKind.CONFIGURATION,
                message=f"Invalid options, using defaults: {e.error_count()} validation errors",
            ))

        for rule in self.rules:
            for error in rule.config_errors:
                self._emit(run, Diagnostic(DiagnosticKind.CONFIGURATION, error, rule_id=rule.rule_id))
            try:
                run.rule_options[rule.rule_id] = rule.options_from(run.options.rules.get(rule.rule_id))
            except ValidationError as e:
                self._emit(run, Diagnostic(
                    kind=DiagnosticKind.CONFIGURATION,
                    message=f"Invalid rule options, using defaults: {e.error_count()} validation errors",
                    rule_id=rule.rule_id,
                ))
                run.rule_options[rule.rule_id] = rule.options_from(None)

    def _build_project(self, run: _Run) -> Optional[ProjectContext]:
        if self._project is not None:
            return self._project
        if not self.settings.structural_enabled:
            logger.info("Structural analysis disabled; running textual strategies only")
            return None

        try:
            if self.parser_service is None:
                self.parser_service = ParserService()
            if not self.parser_service.available:
                raise RuntimeError("no tree-sitter grammar could be loaded")
            return ProjectContext(self.parser_service)
        except Exception as e:
            self._emit(run, Diagnostic(
                kind=DiagnosticKind.SESSION,
                message=f"Project context unavailable, running textual strategies only: {e}",
            ))
            return None

    def _budget(self) -> VisitBudget:
        return VisitBudget(
            max_nodes=self.settings.unit_node_budget,
            seconds=self.settings.unit_time_budget_seconds,
        )

    # ------------------------------------------------------------------
    # Warm-up
    # ------------------------------------------------------------------

    def _warm_up(self, paths: list[str], language: Optional[str], run: _Run) -> list[SourceUnit]:
        """Read every file and parse the first ``max_structural_files`` of them.

        An injected project context is used as given: its trees are reused and
        no other unit is parsed into it.
        """
        structural: set[str] = set()
        if run.project is not None and self._project is None:
            candidates = []
            for path in paths:
                if self.parser_service.supports(ParserService.detect_language(path, language)):
                    candidates.append(path)
                else:
                    run.coverage.record_file_skipped(path, "unsupported_language")
            limit = self.settings.max_structural_files or len(candidates)
            structural = set(candidates[:limit])
            for path in candidates[limit:]:
                run.coverage.record_file_skipped(path, "structural_limit")

        with ThreadPoolExecutor(max_workers=self.settings.worker_count) as executor:
            units = list(executor.map(
                lambda path: self._load_unit(path, language, path in structural, run),
                paths,
            ))
        return [unit for unit in units if unit is not None]

    def _load_unit(self, path: str, language: Optional[str], structural: bool, run: _Run) -> Optional[SourceUnit]:
        run.coverage.record_unit_discovered(path)
        try:
            skip_reason = run.coverage.should_skip_file(path, os.path.getsize(path))
            if skip_reason:
                run.coverage.record_file_skipped(path, skip_reason)
                logger.debug(f"Skipping {path}: {skip_reason}")
                return None
            with open(path, "r", encoding="utf-8", errors="replace") as handle:
                text = handle.read()
        except OSError as e:
            run.coverage.record_file_skipped(path, "read_error")
            self._emit(run, Diagnostic(DiagnosticKind.UNIT, f"Cannot read file: {e}", path=path))
            return None

        unit_language = ParserService.detect_language(path, language)
        project = run.project
        tree = project.get_tree(path) if project is not None else None
        if tree is not None:
            run.coverage.record_file_parsed(path, unit_language)
            return SourceUnit(path=path, text=text, language=unit_language, tree=tree)

        if structural:
            try:
                tree = self.parser_service.parse(text, unit_language)
            except Exception as e:
                run.coverage.record_parse_error(path, str(e))
                self._emit(run, Diagnostic(
                    DiagnosticKind.UNIT,
                    f"Parse failed, using textual detection: {e}",
                    path=path,
                ))

        unit = SourceUnit(path=path, text=text, language=unit_language, tree=tree)
        if tree is not None:
            try:
                project.add_unit(unit, self._budget())
                run.coverage.record_file_parsed(path, unit_language)
            except BudgetExceeded as e:
                self._emit(run, Diagnostic(
                    DiagnosticKind.BUDGET,
                    f"Symbol extraction stopped ({e}); unit runs textual-only",
                    path=path,
                ))
            except Exception as e:
                run.coverage.record_parse_error(path, str(e))
                self._emit(run, Diagnostic(
                    DiagnosticKind.UNIT,
                    f"Symbol extraction failed, using textual detection: {e}",
                    path=path,
                ))
        return unit

    # ------------------------------------------------------------------
    # Rule execution
    # ------------------------------------------------------------------

    def _analyze(self, units: list[SourceUnit], run: _Run) -> list[_UnitOutcome]:
        outcomes: list[_UnitOutcome] = []
        with ThreadPoolExecutor(max_workers=self.settings.worker_count) as executor:
            future_map = {executor.submit(self._analyze_unit, unit, run): unit for unit in units}
            for future in as_completed(future_map):
                unit = future_map[future]
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.exception(f"Analysis of {unit.path} failed: {e}")
                    self._emit(run, Diagnostic(DiagnosticKind.UNIT, f"Analysis failed: {e}", path=unit.path))
        return outcomes

    def _analyze_unit(self, unit: SourceUnit, run: _Run) -> _UnitOutcome:
        log_level = logging.INFO if run.options.verbose else logging.DEBUG
        logger.log(log_level, f"Analyzing {unit.path} ({unit.language})")

        budget = self._budget()
        outcome = _UnitOutcome(path=unit.path)
        degraded = False

        for rule in self.rules:
            options = run.rule_options[rule.rule_id]
            if not options.enabled or rule.is_excluded(unit.path, options):
                continue
            run.coverage.record_rule_run(rule.rule_id)

            context = DetectionContext(
                options=options,
                settings=self.settings,
                project=run.project,
                budget=budget,
            )
            findings, rule_degraded = self._apply_rule(rule, unit, context, run)
            degraded = degraded or rule_degraded

            policy = DeduplicationPolicy.for_rule(
                rule,
                line_tolerance=self.settings.line_tolerance,
                identity_window=self.settings.identity_window,
            )
            merged = policy.dedupe(findings)
            if rule.aggregates:
                outcome.occurrences.setdefault(rule.rule_id, []).extend(merged)
            else:
                outcome.findings.extend(merged)

        if degraded:
            run.coverage.record_degraded(unit.path)
        return outcome

    def structural_ready(self, unit: SourceUnit, project: Optional[ProjectContext]) -> bool:
        return (
            project is not None
            and project.is_ready()
            and unit.tree is not None
            and project.is_resolved(unit.path)
        )

    def _apply_rule(
        self,
        rule: RuleModule,
        unit: SourceUnit,
        context: DetectionContext,
        run: _Run,
    ) -> tuple[list[Finding], bool]:
        """Run a rule's strategies under the fallback policy.

        Returns the raw findings and whether the unit ran without the rule's
        structural strategy.
        """
        results: list[StrategyResult] = []
        structural_ok = False

        if rule.structural is not None:
            if self.structural_ready(unit, context.project) and not context.budget.exhausted:
                result = self._run_strategy(rule, rule.structural, unit, context, run)
                results.append(result)
                structural_ok = result.ok
            else:
                logger.debug(f"{unit.path}: no resolved tree, {rule.rule_id} uses textual detection")

        if rule.textual is not None and (context.options.mode is RuleMode.SUPPLEMENT or not structural_ok):
            results.append(self._run_strategy(rule, rule.textual, unit, context, run))

        findings = [finding for result in results if result.ok for finding in result.findings]
        return findings, rule.structural is not None and not structural_ok

    def _run_strategy(
        self,
        rule: RuleModule,
        strategy: DetectionStrategy,
        unit: SourceUnit,
        context: DetectionContext,
        run: _Run,
    ) -> StrategyResult:
        try:
            return StrategyResult.success(strategy.source, strategy.detect(unit, context))
        except BudgetExceeded as e:
            self._emit(run, Diagnostic(
                DiagnosticKind.BUDGET,
                f"{e}; falling back to textual detection",
                path=unit.path,
                rule_id=rule.rule_id,
            ))
            return StrategyResult.exhausted(strategy.source, e)
        except Exception as e:
            error = StrategyError(rule.rule_id, strategy.source.value, e)
            self._emit(run, Diagnostic(DiagnosticKind.STRATEGY, str(error), path=unit.path, rule_id=rule.rule_id))
            return StrategyResult.failure(strategy.source, error)

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _assemble(self, outcomes: list[_UnitOutcome], run: _Run) -> list[Finding]:
        findings: list[Finding] = []
        occurrences: dict[str, list[Finding]] = defaultdict(list)
        for outcome in outcomes:
            findings.extend(outcome.findings)
            for rule_id, items in outcome.occurrences.items():
                occurrences[rule_id].extend(items)

        for rule in self.rules:
            if not rule.aggregates:
                continue
            items = sorted(occurrences.get(rule.rule_id, []), key=finding_sort_key)
            if self.settings.cluster_scope == "project":
                groups = [items] if items else []
            else:
                groups = [list(group) for _, group in groupby(items, key=lambda f: f.file)]

            for group in groups:
                try:
                    findings.extend(rule.finalize(group, self.settings))
                except Exception as e:
                    self._emit(run, Diagnostic(
                        DiagnosticKind.STRATEGY,
                        f"Clustering failed: {type(e).__name__}: {e}",
                        path=group[0].file,
                        rule_id=rule.rule_id,
                    ))

        return sorted(findings, key=finding_sort_key)
