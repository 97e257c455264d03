"""Evaluation of template expressions against a fixed namespace.

Expressions can only reach what the binding table exposes:

    params            dotted view of the request parameters
    param(path)       string value at a dotted path, or null
    site.allFiles     every cached entry
    site.search(q)    fuzzy search over path, content and title
    site.get(p)       entry by path or title, or null
    render(path, params?, selector?)
                      render another page and return its HTML
    and(...), or(...), not(x)
    now()             current time (timezone aware)
    pipe(seed, ...)   pipeline combinator, also spelled ``seed | f | g``
    len(x), join(list, sep?)

Member access on entries is limited to a fixed whitelist.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ..errors import DirectiveError, ExpressionError
from ..models import Entry, ParameterNode, ParameterSource
from ..params import empty_params, get_param, lookup, merge_params, params_from_mapping
from .parser import Call, Index, ListExpr, Literal, MapExpr, Member, Name, Node, Not, Pipe, parse_expression

if TYPE_CHECKING:
    from ..cache import ContentCache

log = logging.getLogger(__name__)

RenderCallback = Callable[[str, ParameterNode, "str | None"], Awaitable["str | None"]]


async def _settle(value: Any) -> Any:
    while inspect.isawaitable(value):
        value = await value
    return value


async def pipeline(*args: Any) -> Any:
    """Thread a seed value through a sequence of steps, left to right.

    Each callable step receives the previous result; awaitable results are
    awaited before the next step. Non-callable steps are skipped. With no
    steps the seed comes back unchanged, even when it is awaitable; with no
    arguments at all the result is None.
    """
    if not args:
        return None
    if len(args) == 1:
        return args[0]

    value = await _settle(args[0])
    for step in args[1:]:
        if not callable(step):
            log.debug("Skipping non-callable pipeline step %r", step)
            continue
        value = await _settle(step(value))
    return value


def truthy(value: Any) -> bool:
    if isinstance(value, ParamsView):
        return True
    return bool(value)


def to_text(value: Any) -> str:
    """Stringify an evaluation result for insertion into a document."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Entry):
        return value.content_path
    if isinstance(value, ParamsView):
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(to_text(item) for item in value)
    return str(value)


class ParamsView:
    """Read-only, null-safe dotted access to a parameter tree."""

    def __init__(self, root: ParameterNode, prefix: str = ""):
        self._root = root
        self._prefix = prefix

    def _path(self, name: str) -> str:
        return f"{self._prefix}.{name}" if self._prefix else name

    def get(self, name: str) -> Any:
        path = self._path(name)
        value = lookup(self._root, path)
        if isinstance(value, ParameterNode):
            return ParamsView(self._root, path)
        return get_param(self._root, path)

    def node(self) -> ParameterNode:
        value = lookup(self._root, self._prefix) if self._prefix else self._root
        if isinstance(value, ParameterNode):
            return value
        return empty_params()

    def __repr__(self) -> str:
        return f"ParamsView({self._prefix or '<root>'})"


class SiteView:
    """The ``site`` binding: read access to the content cache."""

    def __init__(self, cache: ContentCache | None):
        self._cache = cache

    @property
    def allFiles(self) -> list[Entry]:  # noqa: N802 - template-facing name
        if self._cache is None:
            return []
        return self._cache.all_files()

    def search(self, query: Any) -> list[Entry]:
        if self._cache is None or query is None:
            return []
        return self._cache.search(to_text(query))

    def get(self, path_or_title: Any) -> Entry | None:
        if self._cache is None or path_or_title is None:
            return None
        return self._cache.get_by_path_or_title(to_text(path_or_title))


# Attribute whitelist for entries: template name -> accessor
_ENTRY_ATTRIBUTES: dict[str, Callable[[Entry, "ContentCache | None"], Any]] = {
    "contentPath": lambda e, c: e.content_path,
    "name": lambda e, c: e.name,
    "title": lambda e, c: e.title,
    "keywords": lambda e, c: e.keywords,
    "links": lambda e, c: list(e.links),
    "backlinks": lambda e, c: c.get_backlinks(e.content_path) if c is not None else [],
    "renderability": lambda e, c: e.renderability,
    "modified": lambda e, c: e.modified,
}

_DATETIME_ATTRIBUTES = ("year", "month", "day", "hour", "minute", "second")


@dataclass
class EvaluationContext:
    """Everything an expression may observe."""

    params: ParameterNode = field(default_factory=empty_params)
    cache: ContentCache | None = None
    render: RenderCallback | None = None
    clock: Callable[[], datetime] = lambda: datetime.now(UTC)

    def bindings(self) -> dict[str, Any]:
        return {
            "params": ParamsView(self.params),
            "param": lambda path: get_param(self.params, to_text(path)),
            "site": SiteView(self.cache),
            "render": self._render,
            "and": _AND,
            "or": _OR,
            "not": lambda value: not truthy(value),
            "now": lambda: self.clock(),
            "pipe": pipeline,
            "len": _length,
            "join": _join,
        }

    async def _render(self, path: Any, params: Any = None, selector: Any = None) -> str | None:
        if self.render is None:
            return None
        if path is None:
            return None

        if isinstance(params, ParamsView):
            overlay = params.node()
        elif isinstance(params, Mapping):
            overlay = params_from_mapping(params, ParameterSource.DERIVED)
        elif params is None:
            overlay = empty_params()
        else:
            raise ExpressionError("render() params must be a map or params view")

        nested = merge_params(self.params, overlay)
        return await self.render(to_text(path), nested, to_text(selector) or None)


class _Combinator:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


_AND = _Combinator("and")
_OR = _Combinator("or")


def _length(value: Any) -> int:
    if value is None:
        return 0
    try:
        return len(value)
    except TypeError as e:
        raise ExpressionError(f"len() of unsupported value {type(value).__name__}") from e


def _join(values: Any, separator: Any = ", ") -> str:
    if values is None:
        return ""
    if not isinstance(values, (list, tuple)):
        return to_text(values)
    return to_text(separator).join(to_text(v) for v in values)


class Evaluator:
    """Walks an expression AST against an ``EvaluationContext``."""

    def __init__(self, context: EvaluationContext, source: str = ""):
        self.context = context
        self.source = source
        self.names = context.bindings()

    async def eval(self, node: Node) -> Any:
        if isinstance(node, Literal):
            return node.value

        if isinstance(node, Name):
            if node.name not in self.names:
                raise ExpressionError(f"Unknown name {node.name!r}", self.source)
            return self.names[node.name]

        if isinstance(node, (Member, Index)):
            path = self._params_path(node)
            if path is not None:
                return self.names["params"].get(path)

        if isinstance(node, Member):
            target = await self.eval(node.target)
            return self._member(target, node.name)

        if isinstance(node, Index):
            target = await self.eval(node.target)
            index = await self.eval(node.index)
            return self._index(target, index)

        if isinstance(node, Not):
            return not truthy(await self.eval(node.operand))

        if isinstance(node, Call):
            return await self._call(node)

        if isinstance(node, Pipe):
            seed = await self.eval(node.seed)
            steps = [await self.eval(step) for step in node.steps]
            for step in steps:
                if not callable(step):
                    raise ExpressionError(f"Pipeline step {step!r} is not a function", self.source)
            return await pipeline(seed, *steps)

        if isinstance(node, ListExpr):
            return [await self.eval(item) for item in node.items]

        if isinstance(node, MapExpr):
            return {key: await self.eval(value) for key, value in node.pairs}

        raise ExpressionError(f"Unsupported expression node {type(node).__name__}", self.source)

    async def _call(self, node: Call) -> Any:
        func = await self.eval(node.func)

        # and/or short-circuit, so their arguments are evaluated lazily
        if func is _AND:
            for arg in node.args:
                if not truthy(await self.eval(arg)):
                    return False
            return True
        if func is _OR:
            for arg in node.args:
                if truthy(await self.eval(arg)):
                    return True
            return False

        if func is None:
            return None
        if not callable(func):
            raise ExpressionError(f"{to_text(func)!r} is not a function", self.source)

        args = [await self.eval(arg) for arg in node.args]
        try:
            return await _settle(func(*args))
        except TypeError as e:
            raise ExpressionError(f"Bad call: {e}", self.source) from e

    def _params_path(self, node: Node) -> str | None:
        """Dotted path of a ``params.a.b`` chain, looked up as one unit.

        Reading past a leaf then gives null like any other missing segment.
        """
        names: list[str] = []
        while isinstance(node, (Member, Index)):
            if isinstance(node, Member):
                names.append(node.name)
            elif isinstance(node.index, Literal) and isinstance(node.index.value, str):
                names.append(node.index.value)
            else:
                return None
            node = node.target
        if not names or not isinstance(node, Name) or node.name != "params":
            return None
        if not isinstance(self.names.get("params"), ParamsView):
            return None
        return ".".join(reversed(names))

    def _member(self, target: Any, name: str) -> Any:
        if target is None:
            return None
        if isinstance(target, ParamsView):
            return target.get(name)
        if isinstance(target, Mapping):
            return target.get(name)
        if isinstance(target, Entry):
            accessor = _ENTRY_ATTRIBUTES.get(name)
            if accessor is None:
                raise ExpressionError(f"Entries have no field {name!r}", self.source)
            return accessor(target, self.context.cache)
        if isinstance(target, SiteView):
            if name == "allFiles":
                return target.allFiles
            if name == "search":
                return target.search
            if name == "get":
                return target.get
        if isinstance(target, datetime):
            if name in _DATETIME_ATTRIBUTES:
                return getattr(target, name)
            if name == "iso":
                return target.isoformat()
        if isinstance(target, (list, tuple, str)) and name == "length":
            return len(target)
        raise ExpressionError(f"Cannot read {name!r} of {type(target).__name__}", self.source)

    def _index(self, target: Any, index: Any) -> Any:
        if target is None or index is None:
            return None
        if isinstance(target, (ParamsView, Mapping, Entry, SiteView, datetime)):
            return self._member(target, to_text(index))
        if isinstance(target, (list, tuple, str)):
            if isinstance(index, float) and index.is_integer():
                index = int(index)
            if not isinstance(index, int) or isinstance(index, bool):
                raise ExpressionError("List index must be an integer", self.source)
            if -len(target) <= index < len(target):
                return target[index]
            return None
        raise ExpressionError(f"Cannot index {type(target).__name__}", self.source)


async def evaluate(source: str, context: EvaluationContext) -> Any:
    """Parse and evaluate an expression.

    Raises:
        ExpressionError: If the expression is malformed or misuses a binding.
        DirectiveError: Propagated from nested renders.
    """
    node = parse_expression(source)
    try:
        return await Evaluator(context, source).eval(node)
    except DirectiveError:
        raise
    except (ValueError, KeyError, AttributeError) as e:
        raise ExpressionError(str(e), source) from e
