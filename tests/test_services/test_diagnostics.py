"""Tests for diagnostics and sinks."""

import logging

from dualscan.services.diagnostics import CollectingSink, Diagnostic, DiagnosticKind, LoggingSink


class TestDiagnostics:
    """Test diagnostic formatting and delivery."""

    def test_str(self):
        """The string form names the kind, path and rule."""
        diagnostic = Diagnostic(DiagnosticKind.STRATEGY, "boom", path="a.ts", rule_id="SEC-001")

        assert str(diagnostic) == "[strategy] a.ts:SEC-001: boom"
        assert str(Diagnostic(DiagnosticKind.SESSION, "no parser")) == "[session] no parser"

    def test_record(self):
        """Records are flat and serializable."""
        record = Diagnostic(DiagnosticKind.BUDGET, "slow", path="a.ts").to_record()

        assert record.model_dump(by_alias=True) == {
            "kind": "budget",
            "level": "warning",
            "message": "slow",
            "path": "a.ts",
            "ruleId": None,
        }

    def test_collecting_sink(self):
        """Collected diagnostics can be filtered by kind."""
        sink = CollectingSink()
        sink.emit(Diagnostic(DiagnosticKind.UNIT, "unreadable", path="a.ts"))
        sink.emit(Diagnostic(DiagnosticKind.STRATEGY, "boom", path="b.ts"))

        assert [d.path for d in sink.by_kind(DiagnosticKind.STRATEGY)] == ["b.ts"]
        assert len(sink.diagnostics) == 2

    def test_logging_sink(self, caplog):
        """The logging sink writes at the diagnostic's level."""
        with caplog.at_level(logging.WARNING, logger="dualscan.services.diagnostics"):
            LoggingSink().emit(Diagnostic(DiagnosticKind.UNIT, "unreadable", path="a.ts"))

        assert "[unit] a.ts: unreadable" in caplog.text
