"""Tests for session cookie attribute rules."""

import pytest

from dualscan.analyzers.base import DetectionContext, StrategySource
from dualscan.analyzers.cookie_analyzer import (
    HttpOnlyCookieRule,
    SameSiteCookieRule,
    SecureCookieRule,
    is_session_cookie,
    parse_cookie_header,
)
from dualscan.parsers.syntax import VisitBudget
from dualscan.schemas.options import RuleOptions
from dualscan.services.dedupe_service import DeduplicationPolicy
from dualscan.services.project_context import ProjectContext
from tests.conftest import (
    SAMPLE_JS_COOKIE_WITH_SHARED_OPTIONS,
    SAMPLE_JS_EXPRESS_COOKIE,
    SAMPLE_JS_SAFE_COOKIE,
    SAMPLE_JS_SHARED_COOKIE_OPTIONS,
    SAMPLE_PYTHON_FLASK_COOKIE,
)


class TestCookieHelpers:
    """Test cookie name and header helpers."""

    def test_session_cookie_names(self):
        """Session-like names are recognized case-insensitively."""
        assert is_session_cookie("JSESSIONID")
        assert is_session_cookie("auth_token")
        assert not is_session_cookie("theme")

    def test_parse_cookie_header(self):
        """Flags without values count as present."""
        name, attributes = parse_cookie_header("sessionId=abc; Path=/; HttpOnly")

        assert name == "sessionId"
        assert attributes == {"path": "/", "httponly": "true"}


class TestTextualCookieStrategy:
    """Test cookie detection from raw text."""

    def test_express_cookie_missing_secure(self, make_unit, context):
        """res.cookie without secure is reported by the Secure rule."""
        rule = SecureCookieRule()
        unit = make_unit("src/routes/auth.js", SAMPLE_JS_EXPRESS_COOKIE)

        findings = rule.textual.detect(unit, context)

        assert len(findings) == 1
        assert findings[0].message == 'Insecure session cookie: Session cookie "sessionId" missing Secure attribute'
        assert (findings[0].line, findings[0].column) == (5, 3)
        assert findings[0].strategy_source == StrategySource.TEXTUAL

    def test_present_attribute_is_not_reported(self, make_unit, context):
        """httpOnly: true satisfies the HttpOnly rule."""
        unit = make_unit("src/routes/auth.js", SAMPLE_JS_EXPRESS_COOKIE)

        assert HttpOnlyCookieRule().textual.detect(unit, context) == []
        assert len(SameSiteCookieRule().textual.detect(unit, context)) == 1

    def test_safe_and_non_session_cookies(self, make_unit, context):
        """Fully configured session cookies and non-session cookies are clean."""
        unit = make_unit("src/routes/auth.js", SAMPLE_JS_SAFE_COOKIE)

        for rule in (SecureCookieRule(), HttpOnlyCookieRule(), SameSiteCookieRule()):
            assert rule.textual.detect(unit, context) == []

    def test_set_cookie_header(self, make_unit, context):
        """Set-Cookie headers are parsed for attributes."""
        unit = make_unit("src/server.js", "res.setHeader('Set-Cookie', 'session=abc; HttpOnly');\n")

        assert len(SecureCookieRule().textual.detect(unit, context)) == 1
        assert HttpOnlyCookieRule().textual.detect(unit, context) == []

    def test_unresolvable_options_are_skipped(self, make_unit, context):
        """Options passed by name cannot be judged from text alone."""
        unit = make_unit("src/routes/login.js", SAMPLE_JS_COOKIE_WITH_SHARED_OPTIONS)

        assert SecureCookieRule().textual.detect(unit, context) == []

    def test_allowlisted_cookie(self, make_unit, settings):
        """Cookie names in the allow list are not reported."""
        unit = make_unit("src/routes/auth.js", SAMPLE_JS_EXPRESS_COOKIE)
        context = DetectionContext(options=RuleOptions(allow=["sessionId"]), settings=settings)

        assert SecureCookieRule().textual.detect(unit, context) == []


class TestStructuralCookieStrategy:
    """Test cookie detection from syntax trees."""

    def test_express_cookie_is_framework_qualified(self, make_unit, context):
        """The structural finding names the framework."""
        unit = make_unit("src/routes/auth.js", SAMPLE_JS_EXPRESS_COOKIE, parse=True)

        findings = SecureCookieRule().structural.detect(unit, context)

        assert len(findings) == 1
        assert findings[0].message == (
            'Insecure session cookie: Express session cookie "sessionId" missing Secure attribute'
        )
        assert (findings[0].line, findings[0].column) == (5, 3)

    def test_flask_set_cookie(self, make_unit, context):
        """Python set_cookie keyword arguments are read as attributes."""
        unit = make_unit("app/views.py", SAMPLE_PYTHON_FLASK_COOKIE, parse=True)

        secure = SecureCookieRule().structural.detect(unit, context)

        assert len(secure) == 1
        assert 'Flask session cookie "session_token"' in secure[0].message
        assert HttpOnlyCookieRule().structural.detect(unit, context) == []

    def test_options_resolved_through_project(self, make_unit, settings, parser_service):
        """An options identifier resolves to the object declared in another file."""
        options_unit = make_unit("src/cookies.js", SAMPLE_JS_SHARED_COOKIE_OPTIONS, parse=True)
        route_unit = make_unit("src/routes/login.js", SAMPLE_JS_COOKIE_WITH_SHARED_OPTIONS, parse=True)
        project = ProjectContext(parser_service)
        project.add_unit(options_unit, VisitBudget())
        project.add_unit(route_unit, VisitBudget())
        project.mark_ready()
        context = DetectionContext(options=RuleOptions(), settings=settings, project=project)

        secure = SecureCookieRule().structural.detect(route_unit, context)

        assert len(secure) == 1
        assert '"auth_token" missing Secure' in secure[0].message
        assert HttpOnlyCookieRule().structural.detect(route_unit, context) == []


class TestCookieDeduplication:
    """Test merging of cookie findings from both strategies."""

    @pytest.fixture
    def rule(self):
        return SecureCookieRule()

    def test_identity_is_cookie_name(self, rule, make_unit, context):
        """The semantic identity is the cookie name."""
        unit = make_unit("src/routes/auth.js", SAMPLE_JS_EXPRESS_COOKIE)
        finding = rule.textual.detect(unit, context)[0]

        assert rule.identity_for(finding) == "sessionId"

    def test_qualified_structural_finding_survives(self, rule, make_unit, context):
        """One finding remains, the framework-qualified structural one."""
        unit = make_unit("src/routes/auth.js", SAMPLE_JS_EXPRESS_COOKIE, parse=True)
        raw = rule.textual.detect(unit, context) + rule.structural.detect(unit, context)

        merged = DeduplicationPolicy.for_rule(rule, line_tolerance=1, identity_window=5).dedupe(raw)

        assert len(merged) == 1
        assert merged[0].strategy_source == StrategySource.STRUCTURAL
        assert rule.is_qualified(merged[0])
