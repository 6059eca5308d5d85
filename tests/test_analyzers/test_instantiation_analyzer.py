"""Tests for the direct instantiation rule."""

import pytest

from dualscan.analyzers.base import DetectionContext
from dualscan.analyzers.instantiation_analyzer import DirectInstantiationRule, is_composition_root
from dualscan.parsers.syntax import VisitBudget
from dualscan.schemas.options import RuleOptions
from dualscan.services.project_context import ProjectContext
from tests.conftest import (
    SAMPLE_TS_DIRECT_INSTANTIATION,
    SAMPLE_TS_INJECTABLE,
    SAMPLE_TS_USES_INJECTABLE,
)

SAMPLE_PYTHON_SERVICE = '''class ReportService:
    def __init__(self):
        self.client = StorageClient()
'''


class TestDirectInstantiationRule:
    """Test detection of infrastructure construction inside classes."""

    @pytest.fixture
    def rule(self):
        return DirectInstantiationRule()

    def test_textual_typescript(self, rule, make_unit, context):
        """new XClient() and new XRepository() inside a class are reported."""
        unit = make_unit("src/orders/orderService.ts", SAMPLE_TS_DIRECT_INSTANTIATION)

        findings = rule.textual.detect(unit, context)

        assert [(f.line, f.column) for f in findings] == [(2, 29), (5, 18)]
        assert findings[0].message == (
            'Direct instantiation of "PaymentClient" inside class "OrderService"; '
            "inject it through the constructor instead"
        )

    def test_structural_matches_textual_positions(self, rule, make_unit, context):
        """Both strategies report the same positions and messages."""
        unit = make_unit("src/orders/orderService.ts", SAMPLE_TS_DIRECT_INSTANTIATION, parse=True)

        structural = rule.structural.detect(unit, context)
        textual = rule.textual.detect(unit, context)

        assert [(f.line, f.column, f.message) for f in structural] == [
            (f.line, f.column, f.message) for f in textual
        ]

    def test_python_constructor_call(self, rule, make_unit, context):
        """Python constructor calls inside a class are reported by both strategies."""
        unit = make_unit("app/reports/service.py", SAMPLE_PYTHON_SERVICE, parse=True)

        textual = rule.textual.detect(unit, context)
        structural = rule.structural.detect(unit, context)

        assert [(f.line, f.column) for f in textual] == [(3, 23)]
        assert [(f.line, f.column) for f in structural] == [(3, 23)]
        assert rule.identity_for(textual[0]) == "StorageClient"

    def test_composition_root_is_skipped(self, rule, make_unit, context):
        """Wiring files may construct dependencies."""
        unit = make_unit("src/main.ts", SAMPLE_TS_DIRECT_INSTANTIATION)

        assert is_composition_root("src/main.ts")
        assert rule.textual.detect(unit, context) == []

    def test_allowlisted_class(self, rule, make_unit, settings):
        """Allowed class names are not reported."""
        unit = make_unit("src/orders/orderService.ts", SAMPLE_TS_DIRECT_INSTANTIATION)
        context = DetectionContext(options=RuleOptions(allow=["PaymentClient"]), settings=settings)

        findings = rule.textual.detect(unit, context)

        assert [f.extra["dependency"] for f in findings] == ["OrderRepository"]

    def test_injectable_class_resolved_through_project(self, rule, make_unit, settings, parser_service):
        """A DI-decorated class declared in another file is reported as injectable."""
        declared = make_unit("src/audit/auditLogger.ts", SAMPLE_TS_INJECTABLE, parse=True)
        user = make_unit("src/billing/invoiceService.ts", SAMPLE_TS_USES_INJECTABLE, parse=True)
        project = ProjectContext(parser_service)
        project.add_unit(declared, VisitBudget())
        project.add_unit(user, VisitBudget())
        project.mark_ready()
        context = DetectionContext(options=RuleOptions(), settings=settings, project=project)

        findings = rule.structural.detect(user, context)

        assert len(findings) == 1
        assert 'injectable "AuditLogger"' in findings[0].message
        assert rule.is_qualified(findings[0])
        assert rule.textual.detect(user, context) == []
