"""Tests for the shared project context."""

import pytest

from dualscan.parsers.syntax import BudgetExceeded, VisitBudget
from dualscan.services.project_context import ProjectContext
from tests.conftest import SAMPLE_JS_SHARED_COOKIE_OPTIONS, SAMPLE_TS_INJECTABLE


class TestProjectContext:
    """Test registration and lookup of units and symbols."""

    @pytest.fixture
    def project(self, parser_service):
        return ProjectContext(parser_service)

    def test_add_unit(self, project, make_unit):
        """Registered units resolve and their declarations are visible."""
        unit = make_unit("src/cookies.js", SAMPLE_JS_SHARED_COOKIE_OPTIONS, parse=True)

        assert project.add_unit(unit)
        assert project.is_resolved("src/cookies.js")
        assert project.get_tree("src/cookies.js") is unit.tree
        assert [s.name for s in project.lookup("sessionCookieOptions", kind="variable")] == [
            "sessionCookieOptions"
        ]
        assert project.unit_count == 1

    def test_unit_without_tree(self, project, make_unit):
        """Units without a tree are not registered."""
        unit = make_unit("notes.txt", "plain text")

        assert not project.add_unit(unit)
        assert not project.is_resolved("notes.txt")

    def test_decorators_recorded(self, project, make_unit):
        """Class decorators are kept on the symbol."""
        project.add_unit(make_unit("src/audit.ts", SAMPLE_TS_INJECTABLE, parse=True))

        symbols = project.lookup("AuditLogger", kind="class")

        assert len(symbols) == 1
        assert symbols[0].decorators == ("Injectable",)
        assert symbols[0].line == 2

    def test_lookup_ordered_across_files(self, project, make_unit):
        """Same-named declarations are ordered by file and line."""
        project.add_unit(make_unit("src/b.js", "function retry() {}\n", parse=True))
        project.add_unit(make_unit("src/a.js", "\nfunction retry() {}\n", parse=True))

        symbols = project.lookup("retry", kind="function")

        assert [(s.file_path, s.line) for s in symbols] == [("src/a.js", 2), ("src/b.js", 1)]

    def test_budget_exceeded_publishes_nothing(self, project, make_unit):
        """A unit over budget is left unresolved."""
        unit = make_unit("src/cookies.js", SAMPLE_JS_SHARED_COOKIE_OPTIONS, parse=True)

        with pytest.raises(BudgetExceeded):
            project.add_unit(unit, VisitBudget(max_nodes=2))

        assert not project.is_resolved("src/cookies.js")
        assert project.lookup("sessionCookieOptions") == []

    def test_ready_flag(self, project):
        """The context reports ready only once marked."""
        assert not project.is_ready()
        project.mark_ready()
        assert project.is_ready()
