"""Coverage tracking service for analysis sessions.

Tracks which units were discovered, parsed, skipped, and degraded, and
which rules ran, to show how much of a run had structural precision.
"""

import logging
import os
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class CoverageReport:
    """Coverage report for an analysis session."""

    total_units: int
    units_parsed: int
    units_skipped: dict[str, int] = field(default_factory=dict)  # reason -> count
    units_failed_parsing: int = 0
    units_degraded: int = 0
    structural_percentage: float = 0.0
    languages_detected: dict[str, int] = field(default_factory=dict)  # language -> count
    rule_coverage: dict[str, bool] = field(default_factory=dict)  # rule -> ran
    parse_errors: list[str] = field(default_factory=list)
    is_incomplete: bool = False
    incomplete_reason: Optional[str] = None


class CoverageService:
    """Service for tracking analysis coverage. Safe to share between workers."""

    MAX_FILE_SIZE = 1 * 1024 * 1024  # 1MB

    # Files that are never worth reading
    SKIP_FILES = {".min.js", ".bundle.js", ".map"}

    MIN_STRUCTURAL_PERCENTAGE = 80.0

    def __init__(self, max_file_size: int = MAX_FILE_SIZE):
        self.max_file_size = max_file_size
        self._lock = threading.Lock()
        self.reset()

    def should_skip_file(self, file_path: str, file_size: Optional[int] = None) -> Optional[str]:
        """Check if file should be skipped and return reason if so."""
        filename = os.path.basename(file_path)

        if file_size and file_size > self.max_file_size:
            return "too_large"

        for skip_file in self.SKIP_FILES:
            if filename.endswith(skip_file):
                return "minified_or_bundle"

        return None

    def record_unit_discovered(self, file_path: str):
        with self._lock:
            self.units_discovered.append(file_path)

    def record_file_parsed(self, file_path: str, language: Optional[str] = None):
        """Record that a file was parsed into the project context."""
        with self._lock:
            self.units_parsed.append(file_path)
            if language:
                self.languages[language] += 1

    def record_file_skipped(self, file_path: str, reason: str):
        """Record that a file was skipped."""
        with self._lock:
            self.units_skipped[reason].append(file_path)

    def record_parse_error(self, file_path: str, error: str):
        """Record a parse error."""
        with self._lock:
            self.units_failed.append((file_path, error))

    def record_degraded(self, file_path: str):
        """Record that a unit ran at least one rule without its structural strategy."""
        with self._lock:
            self.units_degraded.add(file_path)

    def record_rule_run(self, rule_id: str):
        with self._lock:
            self.rules_run.add(rule_id)

    @property
    def degraded_count(self) -> int:
        with self._lock:
            return len(self.units_degraded)

    def compute_coverage(self, rule_ids: Optional[list[str]] = None) -> CoverageReport:
        """Compute coverage statistics."""
        with self._lock:
            total = len(self.units_discovered)
            parsed = len(self.units_parsed)
            skipped_counts = {reason: len(files) for reason, files in self.units_skipped.items()}

            if total > 0:
                structural_percentage = (parsed / total) * 100
            else:
                structural_percentage = 0.0

            is_incomplete = total > 0 and structural_percentage < self.MIN_STRUCTURAL_PERCENTAGE
            incomplete_reason = None
            if is_incomplete:
                incomplete_reason = (
                    f"Only {structural_percentage:.1f}% of units analyzed structurally "
                    f"(minimum {self.MIN_STRUCTURAL_PERCENTAGE:.0f}% recommended)"
                )

            # Limit to 20 entries
            parse_errors = [f"{file}: {error}" for file, error in self.units_failed[:20]]
            rules = rule_ids if rule_ids is not None else sorted(self.rules_run)

            return CoverageReport(
                total_units=total,
                units_parsed=parsed,
                units_skipped=skipped_counts,
                units_failed_parsing=len(self.units_failed),
                units_degraded=len(self.units_degraded),
                structural_percentage=structural_percentage,
                languages_detected=dict(self.languages),
                rule_coverage={rule: rule in self.rules_run for rule in rules},
                parse_errors=parse_errors,
                is_incomplete=is_incomplete,
                incomplete_reason=incomplete_reason,
            )

    def reset(self):
        """Reset coverage tracking."""
        self.units_discovered: list[str] = []
        self.units_parsed: list[str] = []
        self.units_skipped: dict[str, list[str]] = defaultdict(list)
        self.units_failed: list[tuple[str, str]] = []
        self.units_degraded: set[str] = set()
        self.languages: dict[str, int] = defaultdict(int)
        self.rules_run: set[str] = set()
