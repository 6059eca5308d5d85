"""Syntax-tree helpers shared by structural detectors.

Tree-sitter node types differ per grammar. Detectors never look at the raw
type strings; they work on ``NodeKind``, a closed set of categories that
every supported grammar maps into.
"""

import time
from enum import Enum
from typing import Any, Iterator, Optional

from dualscan.errors import DualscanError


class NodeKind(Enum):
    """Node categories relevant to detection."""

    FUNCTION = "function"
    CLASS = "class"
    FOR_LOOP = "for_loop"
    WHILE_LOOP = "while_loop"
    TRY = "try"
    CATCH = "catch"
    CALL = "call"
    NEW = "new"
    STRING = "string"
    NUMBER = "number"
    OBJECT = "object"
    PAIR = "pair"
    ARGUMENT = "argument"
    ASSIGNMENT = "assignment"
    DECORATOR = "decorator"
    THROW = "throw"
    IDENTIFIER = "identifier"
    OTHER = "other"


# python / javascript / typescript grammar node types
NODE_KINDS: dict[str, NodeKind] = {
    "function_declaration": NodeKind.FUNCTION,
    "generator_function_declaration": NodeKind.FUNCTION,
    "function_expression": NodeKind.FUNCTION,
    "function": NodeKind.FUNCTION,
    "arrow_function": NodeKind.FUNCTION,
    "method_definition": NodeKind.FUNCTION,
    "function_definition": NodeKind.FUNCTION,
    "lambda": NodeKind.FUNCTION,
    "class_declaration": NodeKind.CLASS,
    "abstract_class_declaration": NodeKind.CLASS,
    "class": NodeKind.CLASS,
    "class_definition": NodeKind.CLASS,
    "for_statement": NodeKind.FOR_LOOP,
    "for_in_statement": NodeKind.FOR_LOOP,
    "while_statement": NodeKind.WHILE_LOOP,
    "do_statement": NodeKind.WHILE_LOOP,
    "try_statement": NodeKind.TRY,
    "catch_clause": NodeKind.CATCH,
    "except_clause": NodeKind.CATCH,
    "call_expression": NodeKind.CALL,
    "call": NodeKind.CALL,
    "new_expression": NodeKind.NEW,
    "string": NodeKind.STRING,
    "template_string": NodeKind.STRING,
    "number": NodeKind.NUMBER,
    "integer": NodeKind.NUMBER,
    "float": NodeKind.NUMBER,
    "object": NodeKind.OBJECT,
    "dictionary": NodeKind.OBJECT,
    "pair": NodeKind.PAIR,
    "keyword_argument": NodeKind.ARGUMENT,
    "variable_declarator": NodeKind.ASSIGNMENT,
    "assignment_expression": NodeKind.ASSIGNMENT,
    "assignment": NodeKind.ASSIGNMENT,
    "decorator": NodeKind.DECORATOR,
    "throw_statement": NodeKind.THROW,
    "raise_statement": NodeKind.THROW,
    "identifier": NodeKind.IDENTIFIER,
}

LOOP_KINDS = frozenset({NodeKind.FOR_LOOP, NodeKind.WHILE_LOOP})

_STRING_PREFIX_CHARS = "rbufRBUF"


class BudgetExceeded(DualscanError):
    """Raised by a walk once its unit budget is spent."""

    pass


class VisitBudget:
    """Node-visit and wall-clock budget for one source unit."""

    CLOCK_CHECK_INTERVAL = 256

    def __init__(self, max_nodes: Optional[int] = None, seconds: Optional[float] = None):
        self.max_nodes = max_nodes or None
        self.deadline = time.monotonic() + seconds if seconds else None
        self.visited = 0
        self.exhausted_reason: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.exhausted_reason is not None

    def tick(self) -> None:
        if self.exhausted_reason:
            raise BudgetExceeded(self.exhausted_reason)
        self.visited += 1
        if self.max_nodes is not None and self.visited > self.max_nodes:
            self._exhaust(f"node budget of {self.max_nodes} visits exceeded")
        if (
            self.deadline is not None
            and self.visited % self.CLOCK_CHECK_INTERVAL == 0
            and time.monotonic() > self.deadline
        ):
            self._exhaust("time budget exceeded")

    def _exhaust(self, reason: str) -> None:
        self.exhausted_reason = reason
        raise BudgetExceeded(reason)


def node_kind(node: Any) -> NodeKind:
    if not node.is_named:
        return NodeKind.OTHER
    return NODE_KINDS.get(node.type, NodeKind.OTHER)


def walk(root: Any, budget: Optional[VisitBudget] = None) -> Iterator[Any]:
    """Pre-order walk over named nodes, charging each visit to ``budget``."""
    stack = [root]
    while stack:
        node = stack.pop()
        if budget is not None:
            budget.tick()
        yield node
        stack.extend(reversed(node.named_children))


def node_text(node: Any) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def position(node: Any) -> tuple[int, int]:
    """1-based (line, column) of a node's start."""
    row, column = node.start_point
    return row + 1, column + 1


def string_value(node: Any) -> str:
    """Literal value of a string node with prefixes and quotes removed."""
    text = node_text(node).lstrip(_STRING_PREFIX_CHARS)
    for quote in ('"""', "'''"):
        if text.startswith(quote) and text.endswith(quote) and len(text) >= 6:
            return text[3:-3]
    if len(text) >= 2 and text[0] in "\"'`" and text[-1] == text[0]:
        return text[1:-1]
    return text


def enclosing(node: Any, *kinds: NodeKind) -> Optional[Any]:
    parent = node.parent
    while parent is not None:
        if node_kind(parent) in kinds:
            return parent
        parent = parent.parent
    return None


def declared_name(node: Any) -> Optional[str]:
    """Name a function or class is declared under, if any."""
    name = node.child_by_field_name("name")
    if name is not None:
        return node_text(name)
    parent = node.parent
    # const fetchUser = async () => {...}
    if parent is not None and parent.type in ("variable_declarator", "pair", "assignment_expression"):
        target = (
            parent.child_by_field_name("name")
            or parent.child_by_field_name("key")
            or parent.child_by_field_name("left")
        )
        if target is not None:
            return node_text(target).split(".")[-1]
    return None


def scope_name(node: Any) -> str:
    function = node if node_kind(node) is NodeKind.FUNCTION else enclosing(node, NodeKind.FUNCTION)
    while function is not None:
        name = declared_name(function)
        if name:
            return name
        function = enclosing(function, NodeKind.FUNCTION)
    return "anonymous"


def callee(node: Any) -> Optional[Any]:
    if node_kind(node) is NodeKind.NEW:
        return node.child_by_field_name("constructor")
    return node.child_by_field_name("function")


def callee_name(node: Any) -> str:
    """Full dotted callee text, e.g. ``res.cookie``."""
    target = callee(node)
    return node_text(target) if target is not None else ""


def call_arguments(node: Any) -> list[Any]:
    args = node.child_by_field_name("arguments")
    if args is None:
        return []
    return [child for child in args.named_children if child.type != "comment"]


def pair_key(node: Any) -> str:
    """Key of an object pair, keyword argument or assignment target."""
    key = (
        node.child_by_field_name("key")
        or node.child_by_field_name("name")
        or node.child_by_field_name("left")
    )
    if key is None:
        return ""
    if node_kind(key) is NodeKind.STRING:
        return string_value(key)
    return node_text(key).split(".")[-1]


def pair_value(node: Any) -> Optional[Any]:
    return node.child_by_field_name("value") or node.child_by_field_name("right")
