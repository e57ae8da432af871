"""Sandboxed expression evaluation for template tags.

Expressions are parsed by a small hand-written grammar and evaluated against
an isolated scope. Nothing in an expression can reach Python attributes,
builtins, modules or the filesystem: names resolve only from the scope,
member access only sees own keys of mappings, list/string indices and a
whitelist of methods, and only ``SafeFunction`` objects are callable.

Supported syntax (lowest to highest precedence)::

    cond ? a : b
    a || b
    a && b
    a == b    a != b    a === b    a !== b
    a < b     a > b     a <= b     a >= b
    a + b     a - b
    a * b     a / b     a % b
    !a  -a  +a
    a.b   a[b]   f(x, y)
    42  3.5  'text'  "text"  true  false  null  undefined  [1, 2]

Every evaluation runs under a wall-clock deadline; failures of any kind
are logged and produce ``None``.
"""
from __future__ import annotations

import json
import logging
import math
import random
import re
import time
from functools import lru_cache, partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from flun.core.exceptions import ExpressionError, ExpressionTimeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 1.5

# Identifiers that are never resolved from any context, path or scope.
UNSAFE_KEYS = frozenset({
    "__proto__",
    "constructor",
    "prototype",
    "then",
    "toString",
    "valueOf",
    "Object",
    "Function",
    "Promise",
    "__class__",
    "__dict__",
    "__globals__",
    "__builtins__",
    "__import__",
})

# Ambient host capabilities explicitly bound to null inside the scope.
NULLED_NAMES = (
    "process",
    "global",
    "globalThis",
    "console",
    "setTimeout",
    "setInterval",
    "setImmediate",
    "Buffer",
    "require",
    "module",
    "exports",
    "__import__",
    "eval",
    "exec",
    "open",
)

_MISSING = object()

# List and string indices: ASCII decimal digits only.
_INDEX_PATTERN = re.compile(r"\d+", re.ASCII)


def is_unsafe_key(name: Any) -> bool:
    return isinstance(name, str) and name in UNSAFE_KEYS


def is_truthy(value: Any) -> bool:
    """Truthiness used by conditionals, ``!``, ``&&`` and ``||``."""
    return bool(value)


def _own_member(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj[name] if name in obj else _MISSING
    if isinstance(obj, (list, tuple, str)):
        if name == "length":
            return len(obj)
        if _INDEX_PATTERN.fullmatch(name):
            idx = int(name)
            return obj[idx] if idx < len(obj) else _MISSING
    return _MISSING


def get_by_path(obj: Any, path: str, default: Any = None) -> Any:
    """Walk ``a.b.c`` one segment at a time.

    Stops with ``default`` on a null value, an unsafe segment, or a segment
    that is not an own key (mapping key, list/string index or ``length``).
    """
    current = obj
    for segment in path.split("."):
        if current is None or is_unsafe_key(segment):
            return default
        current = _own_member(current, segment)
        if current is _MISSING:
            return default
    return current


def to_display_string(value: Any) -> str:
    """Stringify a value for template output.

    None renders as ''. Mappings and lists render as compact JSON ('' if not
    serializable). Booleans render as ``true``/``false`` and integral floats
    drop their fractional part.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as exc:
            logger.warning("Could not serialize value for output: %s", exc)
            return ""
    return str(value)


# ---------------------------------------------------------------------------
# Safe functions
# ---------------------------------------------------------------------------


class SafeFunction:
    """A callable explicitly allowed inside expressions."""

    __slots__ = ("name", "func")

    def __init__(self, name: str, func: Callable[..., Any]) -> None:
        self.name = name
        self.func = func

    def __call__(self, *args: Any) -> Any:
        return self.func(*args)

    def __repr__(self) -> str:
        return f"<SafeFunction {self.name}>"


class SafeNamespace:
    """A read-only bag of constants and safe functions (e.g. ``Math``)."""

    __slots__ = ("name", "members")

    def __init__(self, name: str, members: Dict[str, Any]) -> None:
        self.name = name
        self.members = dict(members)

    def get(self, key: str) -> Any:
        return self.members.get(key)

    def __repr__(self) -> str:
        return f"<SafeNamespace {self.name}>"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float))


def _parse_number(text: str) -> float | int:
    s = text.strip()
    if s == "":
        return 0
    if re.fullmatch(r"[-+]?\d+", s):
        return int(s)
    try:
        return float(s)
    except ValueError:
        return math.nan


def _to_number(value: Any) -> float | int:
    if isinstance(value, bool):
        return int(value)
    if _is_number(value):
        return value
    if isinstance(value, str):
        return _parse_number(value)
    if value is None:
        return 0
    return math.nan


def _require_number(value: Any, op: str) -> float | int:
    if isinstance(value, bool):
        return int(value)
    if _is_number(value):
        return value
    raise ExpressionError(f"operator '{op}' needs numbers, got {type(value).__name__}")


def _concat_str(value: Any) -> str:
    return "null" if value is None else to_display_string(value)


def _strict_equals(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if _is_number(a) and _is_number(b):
        return a == b
    return type(a) is type(b) and a == b


def _loose_equals(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if _is_number(a) and isinstance(b, str):
        return a == _parse_number(b)
    if isinstance(a, str) and _is_number(b):
        return _parse_number(a) == b
    return a == b


def _compare(op: str, a: Any, b: Any) -> bool:
    comparable = (_is_number(a) and _is_number(b)) or (isinstance(a, str) and isinstance(b, str))
    if not comparable:
        raise ExpressionError(
            f"cannot compare {type(a).__name__} and {type(b).__name__} with '{op}'"
        )
    if op == "<":
        return a < b
    if op == ">":
        return a > b
    if op == "<=":
        return a <= b
    return a >= b


def _js_round(value: Any) -> int:
    return math.floor(_to_number(value) + 0.5)


def _sign(value: Any) -> int:
    n = _to_number(value)
    return (n > 0) - (n < 0)


def _math_extreme(pick: Callable[..., Any], empty: float) -> Callable[..., Any]:
    def extreme(*values: Any) -> Any:
        if not values:
            return empty
        return pick(_to_number(v) for v in values)
    return extreme


def _json_stringify(value: Any, *_ignored: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _str_slice(text: Any, start: int = 0, end: Optional[int] = None) -> Any:
    return text[int(start):None if end is None else int(end)]


def _index_of(container: Any, item: Any) -> int:
    try:
        return container.index(item)
    except ValueError:
        return -1


_STRING_METHODS: Dict[str, Callable[..., Any]] = {
    "toUpperCase": lambda s: s.upper(),
    "toLowerCase": lambda s: s.lower(),
    "trim": lambda s: s.strip(),
    "includes": lambda s, sub: str(sub) in s,
    "startsWith": lambda s, prefix: s.startswith(str(prefix)),
    "endsWith": lambda s, suffix: s.endswith(str(suffix)),
    "indexOf": lambda s, sub: s.find(str(sub)),
    "slice": _str_slice,
    "split": lambda s, sep=None: s.split(sep) if sep else list(s),
    "replace": lambda s, old, new: s.replace(str(old), _concat_str(new), 1),
}

_LIST_METHODS: Dict[str, Callable[..., Any]] = {
    "includes": lambda items, item: item in items,
    "indexOf": _index_of,
    "join": lambda items, sep=",": str(sep).join(to_display_string(i) for i in items),
    "slice": _str_slice,
}


def _build_safe_globals() -> Dict[str, Any]:
    functions: Dict[str, Any] = {
        "String": SafeFunction("String", lambda value="": _concat_str(value)),
        "Number": SafeFunction("Number", lambda value=0: _to_number(value)),
        "Boolean": SafeFunction("Boolean", lambda value=None: is_truthy(value)),
        "Math": SafeNamespace("Math", {
            "max": SafeFunction("Math.max", _math_extreme(max, -math.inf)),
            "min": SafeFunction("Math.min", _math_extreme(min, math.inf)),
            "abs": SafeFunction("Math.abs", lambda v: abs(_to_number(v))),
            "floor": SafeFunction("Math.floor", lambda v: math.floor(_to_number(v))),
            "ceil": SafeFunction("Math.ceil", lambda v: math.ceil(_to_number(v))),
            "round": SafeFunction("Math.round", _js_round),
            "trunc": SafeFunction("Math.trunc", lambda v: math.trunc(_to_number(v))),
            "sign": SafeFunction("Math.sign", _sign),
            "sqrt": SafeFunction("Math.sqrt", lambda v: math.sqrt(_to_number(v))),
            "pow": SafeFunction("Math.pow", lambda a, b: math.pow(_to_number(a), _to_number(b))),
            "random": SafeFunction("Math.random", random.random),
            "PI": math.pi,
            "E": math.e,
        }),
        "JSON": SafeNamespace("JSON", {
            "stringify": SafeFunction("JSON.stringify", _json_stringify),
            "parse": SafeFunction("JSON.parse", lambda text: json.loads(str(text))),
        }),
        "Date": SafeNamespace("Date", {
            "now": SafeFunction("Date.now", lambda: int(time.time() * 1000)),
        }),
        "Array": SafeNamespace("Array", {
            "isArray": SafeFunction("Array.isArray", lambda v: isinstance(v, list)),
        }),
        # Named combinators for authors who prefer calls over operators.
        "and": SafeFunction("and", lambda a, b: b if is_truthy(a) else a),
        "or": SafeFunction("or", lambda a, b: a if is_truthy(a) else b),
        "not": SafeFunction("not", lambda a: not is_truthy(a)),
        "eq": SafeFunction("eq", _strict_equals),
        "neq": SafeFunction("neq", lambda a, b: not _strict_equals(a, b)),
        "gt": SafeFunction("gt", lambda a, b: _compare(">", a, b)),
        "lt": SafeFunction("lt", lambda a, b: _compare("<", a, b)),
        "gte": SafeFunction("gte", lambda a, b: _compare(">=", a, b)),
        "lte": SafeFunction("lte", lambda a, b: _compare("<=", a, b)),
    }
    return functions


SAFE_GLOBALS: Dict[str, Any] = _build_safe_globals()


# ---------------------------------------------------------------------------
# Tokenizer and parser
# ---------------------------------------------------------------------------

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<name>[A-Za-z_$][\w$]*)
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[-+*/%<>!?:.,()\[\]])
    """,
    re.VERBOSE | re.DOTALL,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "undefined": None}

# Binary operator precedence, lowest first.
_BINARY_LEVELS: Tuple[Tuple[str, ...], ...] = (
    ("||",),
    ("&&",),
    ("===", "!==", "==", "!="),
    ("<", ">", "<=", ">="),
    ("+", "-"),
    ("*", "/", "%"),
)

Token = Tuple[str, str, int]
Node = Tuple[Any, ...]


def _unescape(body: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body, flags=re.DOTALL)


def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_PATTERN.match(source, pos)
        if not match:
            raise ExpressionError(f"unexpected character {source[pos]!r} at {pos}")
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append((kind, match.group(), pos))
        pos = match.end()
    tokens.append(("end", "", pos))
    return tokens


class _Parser:
    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = tokenize(source)
        self.pos = 0

    def peek(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def at_op(self, *ops: str) -> bool:
        kind, value, _ = self.peek()
        return kind == "op" and value in ops

    def expect_op(self, op: str) -> None:
        kind, value, where = self.advance()
        if kind != "op" or value != op:
            raise ExpressionError(f"expected '{op}' at {where} in {self.source!r}")

    def parse(self) -> Node:
        node = self.parse_conditional()
        kind, value, where = self.peek()
        if kind != "end":
            raise ExpressionError(f"unexpected {value!r} at {where} in {self.source!r}")
        return node

    def parse_conditional(self) -> Node:
        test = self.parse_binary(0)
        if self.at_op("?"):
            self.advance()
            consequent = self.parse_conditional()
            self.expect_op(":")
            alternate = self.parse_conditional()
            return ("conditional", test, consequent, alternate)
        return test

    def parse_binary(self, level: int) -> Node:
        if level == len(_BINARY_LEVELS):
            return self.parse_unary()
        ops = _BINARY_LEVELS[level]
        left = self.parse_binary(level + 1)
        while self.at_op(*ops):
            op = self.advance()[1]
            right = self.parse_binary(level + 1)
            kind = "logical" if op in ("&&", "||") else "binary"
            left = (kind, op, left, right)
        return left

    def parse_unary(self) -> Node:
        if self.at_op("!", "-", "+"):
            op = self.advance()[1]
            return ("unary", op, self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> Node:
        node = self.parse_primary()
        while True:
            if self.at_op("."):
                self.advance()
                kind, value, where = self.advance()
                if kind == "name":
                    node = ("member", node, ("literal", value))
                elif kind == "number" and value.isdigit():
                    node = ("member", node, ("literal", int(value)))
                else:
                    raise ExpressionError(f"expected a property name at {where} in {self.source!r}")
            elif self.at_op("["):
                self.advance()
                key = self.parse_conditional()
                self.expect_op("]")
                node = ("member", node, key)
            elif self.at_op("("):
                self.advance()
                node = ("call", node, tuple(self.parse_list(")")))
            else:
                return node

    def parse_list(self, closer: str) -> List[Node]:
        items: List[Node] = []
        if self.at_op(closer):
            self.advance()
            return items
        while True:
            items.append(self.parse_conditional())
            if self.at_op(","):
                self.advance()
                continue
            self.expect_op(closer)
            return items

    def parse_primary(self) -> Node:
        kind, value, where = self.advance()
        if kind == "number":
            if re.fullmatch(r"\d+", value):
                return ("literal", int(value))
            return ("literal", float(value))
        if kind == "string":
            return ("literal", _unescape(value[1:-1]))
        if kind == "name":
            if value in _LITERAL_NAMES:
                return ("literal", _LITERAL_NAMES[value])
            return ("name", value)
        if kind == "op" and value == "(":
            node = self.parse_conditional()
            self.expect_op(")")
            return node
        if kind == "op" and value == "[":
            return ("array", tuple(self.parse_list("]")))
        if kind == "end":
            raise ExpressionError(f"unexpected end of expression {self.source!r}")
        raise ExpressionError(f"unexpected {value!r} at {where} in {self.source!r}")


@lru_cache(maxsize=512)
def parse_expression(source: str) -> Node:
    """Parse ``source`` into an immutable node tree (cached)."""
    return _Parser(source).parse()


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class _Evaluation:
    """A single evaluation run bound to one scope and one deadline."""

    def __init__(self, scope: Dict[str, Any], deadline: float) -> None:
        self.scope = scope
        self.deadline = deadline

    def eval(self, node: Node) -> Any:
        if time.monotonic() > self.deadline:
            raise ExpressionTimeout("expression exceeded its time budget")
        return getattr(self, f"_eval_{node[0]}")(node)

    def _eval_literal(self, node: Node) -> Any:
        return node[1]

    def _eval_name(self, node: Node) -> Any:
        name = node[1]
        if is_unsafe_key(name) or name not in self.scope:
            raise ExpressionError(f"'{name}' is not defined")
        return self.scope[name]

    def _eval_array(self, node: Node) -> Any:
        return [self.eval(item) for item in node[1]]

    def _eval_unary(self, node: Node) -> Any:
        _, op, operand = node
        value = self.eval(operand)
        if op == "!":
            return not is_truthy(value)
        number = _to_number(value)
        return -number if op == "-" else number

    def _eval_logical(self, node: Node) -> Any:
        _, op, left_node, right_node = node
        left = self.eval(left_node)
        if op == "&&":
            return self.eval(right_node) if is_truthy(left) else left
        return left if is_truthy(left) else self.eval(right_node)

    def _eval_conditional(self, node: Node) -> Any:
        _, test, consequent, alternate = node
        return self.eval(consequent) if is_truthy(self.eval(test)) else self.eval(alternate)

    def _eval_binary(self, node: Node) -> Any:
        _, op, left_node, right_node = node
        left = self.eval(left_node)
        right = self.eval(right_node)

        if op == "+":
            if isinstance(left, str) or isinstance(right, str):
                return _concat_str(left) + _concat_str(right)
            return _require_number(left, op) + _require_number(right, op)
        if op in ("-", "*", "/", "%"):
            a = _require_number(left, op)
            b = _require_number(right, op)
            if op == "-":
                return a - b
            if op == "*":
                return a * b
            if b == 0:
                raise ExpressionError("division by zero")
            if op == "/":
                return a / b
            remainder = math.fmod(a, b)
            return int(remainder) if isinstance(a, int) and isinstance(b, int) else remainder
        if op == "===":
            return _strict_equals(left, right)
        if op == "!==":
            return not _strict_equals(left, right)
        if op == "==":
            return _loose_equals(left, right)
        if op == "!=":
            return not _loose_equals(left, right)
        return _compare(op, left, right)

    def _eval_member(self, node: Node) -> Any:
        _, obj_node, key_node = node
        obj = self.eval(obj_node)
        key = self.eval(key_node)
        if obj is None:
            raise ExpressionError(f"cannot read property {key!r} of null")

        if isinstance(key, float) and key.is_integer():
            key = int(key)
        if isinstance(key, bool) or not isinstance(key, (str, int)):
            return None
        name = str(key)
        if is_unsafe_key(name):
            return None

        if isinstance(obj, SafeNamespace):
            return obj.get(name)
        if isinstance(obj, str) and name in _STRING_METHODS:
            return SafeFunction(name, partial(_STRING_METHODS[name], obj))
        if isinstance(obj, list) and name in _LIST_METHODS:
            return SafeFunction(name, partial(_LIST_METHODS[name], obj))

        value = _own_member(obj, name)
        return None if value is _MISSING else value

    def _eval_call(self, node: Node) -> Any:
        _, callee_node, arg_nodes = node
        func = self.eval(callee_node)
        if not isinstance(func, SafeFunction):
            raise ExpressionError(f"{to_display_string(func) or 'null'} is not a callable function")
        args = [self.eval(arg) for arg in arg_nodes]
        return func(*args)


class ExpressionEvaluator:
    """Evaluate template expressions inside an isolated scope.

    Example:
        evaluator = ExpressionEvaluator(timeout_seconds=1.5)
        evaluator.evaluate("price * qty", {"price": 2, "qty": 3})  # 6
        evaluator.evaluate("process.env")                          # None
    """

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    def build_scope(self, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Context entries (minus unsafe keys), then safe globals, then nulled names."""
        scope: Dict[str, Any] = {
            key: value
            for key, value in (context or {}).items()
            if isinstance(key, str) and not is_unsafe_key(key)
        }
        scope.update(SAFE_GLOBALS)
        scope.update(dict.fromkeys(NULLED_NAMES))
        return scope

    def evaluate_strict(self, expr: str, context: Optional[Mapping[str, Any]] = None) -> Any:
        """Evaluate ``expr`` and raise ExpressionError on any failure."""
        try:
            tree = parse_expression(expr.strip())
            run = _Evaluation(self.build_scope(context), time.monotonic() + self.timeout_seconds)
            return run.eval(tree)
        except ExpressionError:
            raise
        except RecursionError as exc:
            raise ExpressionError("expression nests too deeply") from exc
        except (TypeError, ValueError, ArithmeticError, IndexError, KeyError) as exc:
            raise ExpressionError(f"{type(exc).__name__}: {exc}") from exc

    def evaluate(self, expr: str, context: Optional[Mapping[str, Any]] = None) -> Any:
        """Evaluate ``expr``; log and return None on timeout or any error."""
        try:
            return self.evaluate_strict(expr, context)
        except ExpressionTimeout:
            logger.warning("Expression timed out after %.2fs: %s", self.timeout_seconds, expr)
        except ExpressionError as exc:
            logger.warning("Expression evaluation failed: %s (%s)", expr, exc)
        return None


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "ExpressionEvaluator",
    "NULLED_NAMES",
    "SAFE_GLOBALS",
    "SafeFunction",
    "SafeNamespace",
    "UNSAFE_KEYS",
    "get_by_path",
    "is_truthy",
    "is_unsafe_key",
    "parse_expression",
    "to_display_string",
    "tokenize",
]
