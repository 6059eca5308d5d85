"""Session cookie attribute checks (Secure, HttpOnly, SameSite)."""

import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from dualscan.analyzers.base import (
    DetectionContext,
    Finding,
    RuleModule,
    Severity,
    SourceUnit,
    StructuralStrategy,
    TextualStrategy,
)
from dualscan.analyzers.patterns import balanced_span, iter_matches, split_arguments
from dualscan.parsers.syntax import (
    NodeKind,
    call_arguments,
    callee_name,
    node_kind,
    node_text,
    pair_key,
    pair_value,
    position,
    string_value,
    walk,
)

SESSION_INDICATORS = (
    "session",
    "sessionid",
    "sessid",
    "jsessionid",
    "phpsessid",
    "connect.sid",
    "auth",
    "token",
    "jwt",
    "csrf",
)

FRAMEWORK_QUALIFIERS = ("Express", "NestJS", "Next.js", "Nuxt useCookie", "Flask", "Django", "FastAPI")

DEFAULT_SESSION_COOKIE = "connect.sid"

TEST_GLOBS = ("**/*.test.*", "**/*.spec.*", "**/tests/**", "**/__tests__/**", "**/test_*.py")

_COOKIE_NAME = re.compile(r'(?:session cookie|useCookie|cookie) "([^"]+)"', re.IGNORECASE)
_QUALIFIED = re.compile("|".join(re.escape(q) for q in FRAMEWORK_QUALIFIERS))
_FALSE_VALUES = {"false", "0", "''", '""'}
_MAX_RESOLVE_DEPTH = 3


def is_session_cookie(name: str) -> bool:
    lowered = name.lower()
    return any(indicator in lowered for indicator in SESSION_INDICATORS)


def has_attribute(attributes: dict[str, str], key: str) -> bool:
    value = attributes.get(key)
    return value is not None and value.strip().lower() not in _FALSE_VALUES


def parse_cookie_header(header: str) -> tuple[str, dict[str, str]]:
    """Split ``sid=abc; Path=/; HttpOnly`` into name and attributes."""
    parts = [part.strip() for part in header.split(";")]
    name = parts[0].split("=", 1)[0].strip() if parts else ""
    attributes = {}
    for part in parts[1:]:
        if not part:
            continue
        key, _, value = part.partition("=")
        attributes[key.strip().lower()] = value.strip() or "true"
    return name, attributes


@dataclass
class CookieSite:
    """A place where a cookie is set, with its attributes if they are knowable."""

    name: str
    line: int
    column: int
    attributes: Optional[dict[str, str]]
    framework: Optional[str] = None


class StructuralCookieStrategy(StructuralStrategy):
    """Cookie-setting calls found in the syntax tree, options resolved through the project."""

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        findings = []
        for site in self._sites(unit, context):
            finding = self.rule.check_site(self, unit, site, context)
            if finding is not None:
                findings.append(finding)
        return findings

    def _sites(self, unit: SourceUnit, context: DetectionContext) -> Iterator[CookieSite]:
        for node in walk(unit.tree.root_node, context.budget):
            kind = node_kind(node)
            if kind is NodeKind.CALL:
                site = self._call_site(unit, node, context)
                if site is not None:
                    yield site
            elif kind is NodeKind.ASSIGNMENT:
                target = node.child_by_field_name("left")
                value = pair_value(node)
                if (
                    target is not None
                    and node_text(target) == "document.cookie"
                    and value is not None
                    and node_kind(value) is NodeKind.STRING
                ):
                    name, attributes = parse_cookie_header(string_value(value))
                    line, column = position(node)
                    yield CookieSite(name, line, column, attributes)

    def _call_site(self, unit: SourceUnit, node: Any, context: DetectionContext) -> Optional[CookieSite]:
        callee = callee_name(node)
        last = callee.split(".")[-1]
        args = call_arguments(node)
        line, column = position(node)

        if last in ("cookie", "setCookie") and "." in callee:
            framework = "NestJS" if "@nestjs/" in unit.text else "Express"
            return self._positional(args, 2, line, column, framework, context)

        if last == "set" and "cookies" in callee:
            framework = "Next.js" if "next/" in unit.text else None
            return self._positional(args, 2, line, column, framework, context)

        if last == "useCookie":
            return self._positional(args, 1, line, column, "Nuxt useCookie", context)

        if last == "set_cookie":
            return self._keyword_site(unit, args, line, column, context)

        if last == "session" and args and node_kind(args[0]) is NodeKind.OBJECT:
            name = DEFAULT_SESSION_COOKIE
            cookie_options: Any = None
            for child in args[0].named_children:
                if node_kind(child) is not NodeKind.PAIR:
                    continue
                key = pair_key(child)
                if key == "name" and node_kind(pair_value(child)) is NodeKind.STRING:
                    name = string_value(pair_value(child))
                elif key == "cookie":
                    cookie_options = pair_value(child)
            attributes = {} if cookie_options is None else self._attributes(cookie_options, context)
            return CookieSite(name, line, column, attributes, "Express")

        if last in ("setHeader", "header", "append") and len(args) >= 2:
            if node_kind(args[0]) is NodeKind.STRING and string_value(args[0]).lower() == "set-cookie":
                if node_kind(args[1]) is NodeKind.STRING:
                    name, attributes = parse_cookie_header(string_value(args[1]))
                    return CookieSite(name, line, column, attributes)

        return None

    def _positional(self, args, options_index, line, column, framework, context) -> Optional[CookieSite]:
        if not args or node_kind(args[0]) is not NodeKind.STRING:
            return None
        name = string_value(args[0])
        if len(args) <= options_index:
            return CookieSite(name, line, column, {}, framework)
        return CookieSite(name, line, column, self._attributes(args[options_index], context), framework)

    def _keyword_site(self, unit, args, line, column, context) -> Optional[CookieSite]:
        name: Optional[str] = None
        attributes: Optional[dict[str, str]] = {}
        for arg in args:
            kind = node_kind(arg)
            if kind is NodeKind.STRING and name is None:
                name = string_value(arg)
            elif kind is NodeKind.ARGUMENT:
                key = pair_key(arg).lower()
                value = pair_value(arg)
                if key == "key" and node_kind(value) is NodeKind.STRING:
                    name = string_value(value)
                else:
                    attributes[key] = node_text(value)
            elif arg.type == "dictionary_splat":
                resolved = self._attributes(arg.named_children[0], context) if arg.named_children else None
                if resolved is None:
                    attributes = None
                    break
                attributes.update(resolved)
        if name is None:
            return None

        framework = None
        for marker, label in (("flask", "Flask"), ("django", "Django"), ("fastapi", "FastAPI")):
            if re.search(rf"^\s*(?:from|import)\s+{marker}\b", unit.text, re.MULTILINE):
                framework = label
                break
        return CookieSite(name, line, column, attributes, framework)

    def _attributes(self, node: Any, context: DetectionContext, depth: int = 0) -> Optional[dict[str, str]]:
        """Lowercased option keys of an object literal; None when not knowable."""
        if node is None or depth > _MAX_RESOLVE_DEPTH:
            return None
        kind = node_kind(node)

        if kind is NodeKind.IDENTIFIER:
            return self._resolve(node_text(node), context, depth)

        if kind is NodeKind.CALL and callee_name(node) == "dict":
            attributes = {}
            for arg in call_arguments(node):
                if node_kind(arg) is not NodeKind.ARGUMENT:
                    return None
                attributes[pair_key(arg).lower()] = node_text(pair_value(arg))
            return attributes

        if kind is not NodeKind.OBJECT:
            return None

        attributes: dict[str, str] = {}
        for child in node.named_children:
            child_kind = node_kind(child)
            if child_kind is NodeKind.PAIR:
                attributes[pair_key(child).lower()] = node_text(pair_value(child))
            elif child.type in ("spread_element", "dictionary_splat"):
                spread = child.named_children[0] if child.named_children else None
                resolved = self._attributes(spread, context, depth + 1)
                if resolved is None:
                    return None
                attributes.update(resolved)
            elif child.type == "shorthand_property_identifier":
                attributes[node_text(child).lower()] = node_text(child)
        return attributes

    def _resolve(self, name: str, context: DetectionContext, depth: int) -> Optional[dict[str, str]]:
        if context.project is None:
            return None
        for symbol in context.project.lookup(name, kind="variable"):
            resolved = self._attributes(symbol.value, context, depth + 1)
            if resolved is not None:
                return resolved
        return None


class TextualCookieStrategy(TextualStrategy):
    """Cookie-setting calls found by pattern matching."""

    CALL = re.compile(
        r"(?P<callee>\b(?:res|response|reply|ctx|this\.res)\.(?:cookie|setCookie)"
        r"|\bcookies\(\)\.set|\bcookies\.set|\buseCookie|\b\w+\.set_cookie)\s*\("
    )
    SESSION_MIDDLEWARE = re.compile(r"(?P<callee>\bsession)\s*\(\s*\{")
    SET_COOKIE_HEADER = re.compile(
        r"(?P<callee>\b(?:setHeader|header|append))\s*\(\s*['\"]Set-Cookie['\"]\s*,\s*['\"`](?P<value>[^'\"`]+)['\"`]",
        re.IGNORECASE,
    )
    DOCUMENT_COOKIE = re.compile(r"(?P<callee>\bdocument\.cookie)\s*=\s*['\"`](?P<value>[^'\"`]+)['\"`]")
    STRING_LITERAL = re.compile(r"^(['\"`])(.*)\1$", re.DOTALL)
    OBJECT_PAIR = re.compile(r"(['\"]?)(\w+)\1\s*:\s*([^,}\n]+)")
    KEYWORD_ARG = re.compile(r"^(\w+)\s*=\s*(.+)$", re.DOTALL)
    COOKIE_BLOCK = re.compile(r"\bcookie\s*:\s*\{")
    SESSION_NAME = re.compile(r"\bname\s*:\s*['\"]([^'\"]+)['\"]")

    def detect(self, unit: SourceUnit, context: DetectionContext) -> list[Finding]:
        findings = []
        for site in self._sites(unit.text):
            finding = self.rule.check_site(self, unit, site, context)
            if finding is not None:
                findings.append(finding)
        return findings

    def _sites(self, content: str) -> Iterator[CookieSite]:
        for match in iter_matches(self.CALL, content, "callee"):
            span = balanced_span(content, match.match.end() - 1)
            if span is None:
                continue
            site = self._call_site(match, split_arguments(span))
            if site is not None:
                yield site

        for match in iter_matches(self.SESSION_MIDDLEWARE, content, "callee"):
            span = balanced_span(content, match.match.end() - 1, "{", "}")
            if span is None:
                continue
            name_match = self.SESSION_NAME.search(span)
            name = name_match.group(1) if name_match else DEFAULT_SESSION_COOKIE
            block = self.COOKIE_BLOCK.search(span)
            attributes: Optional[dict[str, str]] = {}
            if block:
                cookie_span = balanced_span(span, block.end() - 1, "{", "}")
                attributes = self._object_attributes("{" + (cookie_span or "") + "}")
            yield CookieSite(name, match.line, match.column, attributes)

        for pattern in (self.SET_COOKIE_HEADER, self.DOCUMENT_COOKIE):
            for match in iter_matches(pattern, content, "callee"):
                name, attributes = parse_cookie_header(match.group("value"))
                yield CookieSite(name, match.line, match.column, attributes)

    def _call_site(self, match, args: list[str]) -> Optional[CookieSite]:
        callee = match.group("callee")
        if not args:
            return None

        if callee.endswith(".set_cookie"):
            name = None
            attributes: Optional[dict[str, str]] = {}
            for arg in args:
                literal = self.STRING_LITERAL.match(arg)
                keyword = self.KEYWORD_ARG.match(arg)
                if arg.startswith("**"):
                    attributes = None
                    break
                if literal and name is None:
                    name = literal.group(2)
                elif keyword:
                    key, value = keyword.group(1).lower(), keyword.group(2).strip()
                    literal_value = self.STRING_LITERAL.match(value)
                    if key == "key" and literal_value:
                        name = literal_value.group(2)
                    else:
                        attributes[key] = value
            if name is None:
                return None
            return CookieSite(name, match.line, match.column, attributes)

        literal = self.STRING_LITERAL.match(args[0])
        if not literal:
            return None
        options_index = 1 if callee == "useCookie" else 2
        if len(args) <= options_index:
            return CookieSite(literal.group(2), match.line, match.column, {})
        return CookieSite(literal.group(2), match.line, match.column, self._object_attributes(args[options_index]))

    def _object_attributes(self, text: str) -> Optional[dict[str, str]]:
        text = text.strip()
        if not text.startswith("{") or "..." in text:
            return None
        return {key.lower(): value.strip() for _, key, value in self.OBJECT_PAIR.findall(text)}


class SessionCookieRule(RuleModule):
    """Session cookies must carry a security attribute."""

    category = "security"
    severity = Severity.ERROR
    default_exclude = TEST_GLOBS
    identity_window = 5

    attribute_key = ""
    attribute_label = ""

    def __init__(self):
        self.structural = StructuralCookieStrategy(self)
        self.textual = TextualCookieStrategy(self)

    def check_site(self, strategy, unit: SourceUnit, site: CookieSite, context: DetectionContext) -> Optional[Finding]:
        if site.attributes is None or not site.name or context.allowed(site.name):
            return None
        if not is_session_cookie(site.name) or has_attribute(site.attributes, self.attribute_key):
            return None

        subject = f"{site.framework} session cookie" if site.framework else "Session cookie"
        message = f'Insecure session cookie: {subject} "{site.name}" missing {self.attribute_label} attribute'
        return strategy.finding(unit, site.line, site.column, message, {"cookie": site.name})

    def identity_for(self, finding: Finding) -> str:
        match = _COOKIE_NAME.search(finding.message)
        return match.group(1) if match else "unknown"

    def is_qualified(self, finding: Finding) -> bool:
        return bool(_QUALIFIED.search(finding.message))


class SecureCookieRule(SessionCookieRule):
    rule_id = "SEC-001"
    name = "Session cookie missing Secure"
    attribute_key = "secure"
    attribute_label = "Secure"
    suggestion = "Set secure: true so the cookie is only sent over HTTPS."


class HttpOnlyCookieRule(SessionCookieRule):
    rule_id = "SEC-002"
    name = "Session cookie missing HttpOnly"
    attribute_key = "httponly"
    attribute_label = "HttpOnly"
    suggestion = "Set httpOnly: true so scripts cannot read the cookie."


class SameSiteCookieRule(SessionCookieRule):
    rule_id = "SEC-003"
    name = "Session cookie missing SameSite"
    attribute_key = "samesite"
    attribute_label = "SameSite"
    severity = Severity.WARNING
    suggestion = "Set sameSite to 'lax' or 'strict' to limit cross-site requests."
