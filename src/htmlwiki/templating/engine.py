"""Directive interpreter for wiki documents.

Documents are plain HTML with a handful of directive elements:

    <meta itemprop="content-type" content="markdown">
        Render the Markdown held in the body's <code><pre> block and stop.
    <slot name="content">             edit-mode file contents (escaped)
    <slot name="keep" [if="raw"]>     unwrap the slot
    <slot name="remove" [if="raw"]>   delete the slot and its subtree
    <slot name="entry-link">          link to the page being rendered
    <replace-with TAG attr=... x-attr="expr" x-content="expr">
    <query-content q="expr">fallback</query-content>
    <drop-if truthy|falsy="expr">     <keep-if truthy|falsy="expr">

Traversal is a pre-order rewrite: each element is handled before its
children, and every handler decides which nodes (if any) are visited next.
Children are iterated over a snapshot, so removing or replacing a node never
shifts the walk; nodes detached by an earlier directive are skipped.
"""

from __future__ import annotations

import logging
import textwrap
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Literal

from bs4 import BeautifulSoup, NavigableString, Tag
from soupsieve import SelectorSyntaxError

from ..errors import DirectiveError
from ..expressions import EvaluationContext, evaluate, to_text, truthy
from ..models import ParameterNode, RenderResult
from ..params import empty_params, has_param
from ..parser import extract_links, extract_meta, parse_html, render_markdown

if TYPE_CHECKING:
    from ..cache import ContentCache
    from ..expressions.evaluator import RenderCallback

log = logging.getLogger(__name__)

CONDITION_ATTRIBUTES = ("truthy", "falsy")


@dataclass
class TemplateContext:
    """Per-render state visible to directives."""

    content_path: str
    params: ParameterNode = field(default_factory=empty_params)
    file_contents_to_edit: str | None = None
    render: RenderCallback | None = None
    # Index-time pass: no request context, directive failures are logged
    lenient: bool = False

    @property
    def raw(self) -> bool:
        return has_param(self.params, "raw")


class _Traversal:
    """One pass over one document."""

    def __init__(
        self,
        soup: BeautifulSoup,
        context: TemplateContext,
        evaluation: EvaluationContext,
    ):
        self.soup = soup
        self.context = context
        self.evaluation = evaluation
        self.state: Literal["traversing", "stopped"] = "traversing"
        self._boundaries: set[int] = set()

    @property
    def stopped(self) -> bool:
        return self.state == "stopped"

    def _error(self, message: str, tag: Tag) -> DirectiveError:
        return DirectiveError(message, self.context.content_path, tag.sourceline)

    async def walk_children(self, parent: Tag) -> None:
        for child in list(parent.children):
            if self.stopped:
                return
            # Skip nodes an earlier directive detached or moved
            if child.parent is not parent:
                continue
            if isinstance(child, Tag):
                await self.visit(child)

    async def visit_nodes(self, nodes: list[Any]) -> None:
        for node in nodes:
            if self.stopped:
                return
            if isinstance(node, Tag) and node.parent is not None:
                await self.visit(node)

    async def visit(self, tag: Tag) -> None:
        if id(tag) in self._boundaries:
            self.state = "stopped"
            return

        handler = self._handler_for(tag)
        if handler is None:
            await self.walk_children(tag)
            return

        try:
            await handler(tag)
        except DirectiveError as e:
            e.located(self.context.content_path, tag.sourceline)
            if not self.context.lenient:
                raise
            log.warning("Skipping directive: %s", e)

    def _handler_for(self, tag: Tag) -> Callable[[Tag], Any] | None:
        name = tag.name
        if name == "meta":
            return self.content_type_marker if tag.get("itemprop") == "content-type" else None
        if name == "slot":
            return self.slot
        if name == "replace-with":
            return self.replace_with
        if name == "query-content":
            return self.query_content
        if name in ("drop-if", "keep-if"):
            return self.conditional
        return None

    async def _evaluate(self, source: str, tag: Tag) -> Any:
        try:
            return await evaluate(source, self.evaluation)
        except DirectiveError as e:
            raise e.located(self.context.content_path, tag.sourceline)

    async def _unwrap_and_visit(self, tag: Tag) -> None:
        children = list(tag.contents)
        tag.unwrap()
        await self.visit_nodes(children)

    # ── directives ──────────────────────────────────────────────────────────

    async def content_type_marker(self, tag: Tag) -> None:
        kind = (tag.get("content") or "").strip().lower()
        if kind != "markdown":
            log.warning(
                "%s: unknown content-type marker %r ignored", self.context.content_path, kind
            )
            return

        body = self.soup.find("body")
        if body is None:
            raise self._error("content-type markdown requires a <body>", tag)
        code = body.find("code")
        pre = code.find("pre") if code is not None else None
        if pre is None:
            raise self._error("content-type markdown requires <code><pre> in the <body>", tag)

        markdown_text = textwrap.dedent(pre.get_text()).strip("\n")
        body.clear()
        _append_fragment(body, render_markdown(markdown_text))
        self._boundaries.add(id(body))

        # A marker inside the body was cleared along with it; nothing is left to walk
        if tag.parent is None:
            self.state = "stopped"

    async def slot(self, tag: Tag) -> None:
        name = (tag.get("name") or "").strip()

        if name == "content":
            if self.context.file_contents_to_edit is None:
                await self.walk_children(tag)
                return
            tag.replace_with(NavigableString(self.context.file_contents_to_edit))
            return

        if name in ("keep", "remove"):
            keep = name == "keep"
            guard = tag.get("if")
            if guard is not None:
                if guard.strip() != "raw":
                    raise self._error(f"unsupported slot guard if={guard!r}", tag)
                if not self.context.raw:
                    keep = not keep
            if keep:
                await self._unwrap_and_visit(tag)
            else:
                tag.decompose()
            return

        if name == "entry-link":
            path = self.context.content_path
            anchor = self.soup.new_tag("a", href=path)
            anchor.string = path
            tag.replace_with(anchor)
            return

        log.warning("%s: unknown slot %r left in place", self.context.content_path, name)
        await self.walk_children(tag)

    async def replace_with(self, tag: Tag) -> None:
        attrs = list(tag.attrs.items())
        if not attrs or attrs[0][1] not in ("", None):
            raise self._error(
                "replace-with needs the replacement tag name as its first, value-less attribute",
                tag,
            )

        replacement = self.soup.new_tag(attrs[0][0])
        inner_html: str | None = None

        for name, value in attrs[1:]:
            if not name.startswith("x-"):
                replacement[name] = value
                continue
            target = name[2:]
            if not target:
                raise self._error("replace-with attribute 'x-' names no attribute", tag)
            result = await self._evaluate(value or "", tag)
            if target == "content":
                inner_html = to_text(result)
            elif result is True:
                replacement[target] = ""
            elif result is not None and result is not False:
                replacement[target] = to_text(result)

        if inner_html is not None:
            _append_fragment(replacement, inner_html)
            tag.replace_with(replacement)
            return

        for child in list(tag.contents):
            replacement.append(child)
        tag.replace_with(replacement)
        await self.walk_children(replacement)

    async def query_content(self, tag: Tag) -> None:
        extra = set(tag.attrs) - {"q"}
        query = tag.get("q")
        if query is None or not query.strip() or extra:
            raise self._error("query-content needs exactly one non-empty q= attribute", tag)

        result = await self._evaluate(query, tag)
        text = to_text(result) if truthy(result) else ""
        if text:
            tag.replace_with(NavigableString(text))
        else:
            await self._unwrap_and_visit(tag)

    async def conditional(self, tag: Tag) -> None:
        keys = list(tag.attrs)
        if len(keys) != 1 or keys[0] not in CONDITION_ATTRIBUTES:
            raise self._error(
                f"{tag.name} needs exactly one condition attribute (truthy= or falsy=)", tag
            )

        kind = keys[0]
        source = tag.attrs[kind] or ""
        if not source.strip():
            raise self._error(f"{tag.name} condition {kind}= is empty", tag)

        value = truthy(await self._evaluate(source, tag))
        condition_met = value if kind == "truthy" else not value
        drop = condition_met if tag.name == "drop-if" else not condition_met

        if drop:
            tag.decompose()
        else:
            await self._unwrap_and_visit(tag)


def _append_fragment(tag: Tag, html: str) -> None:
    fragment = parse_html(html)
    for node in list(fragment.contents):
        tag.append(node.extract())


class TemplatingEngine:
    """Runs directive traversals over documents."""

    def __init__(
        self,
        cache: ContentCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.cache = cache
        self.clock = clock

    def _evaluation_context(self, context: TemplateContext) -> EvaluationContext:
        evaluation = EvaluationContext(
            params=context.params,
            cache=self.cache,
            render=None if context.lenient else context.render,
        )
        if self.clock is not None:
            evaluation.clock = self.clock
        return evaluation

    async def render(
        self,
        html: str,
        context: TemplateContext,
        selector: str | None = None,
        root: Literal["document", "head"] = "document",
    ) -> RenderResult:
        """Interpret directives and serialize the result.

        Args:
            html: Document source.
            context: Path, parameters and callbacks for this render.
            selector: If given, return only the inner HTML of the first match.
            root: ``"head"`` starts the traversal at <head> (index-time
                metadata extraction); falls back to the whole document.

        Returns:
            RenderResult with the HTML plus collected links and meta.

        Raises:
            DirectiveError: A directive failed (not raised when lenient).
        """
        soup = parse_html(html)
        traversal = _Traversal(soup, context, self._evaluation_context(context))

        start: Tag = soup
        if root == "head":
            head = soup.find("head")
            if head is not None:
                start = head
        await traversal.walk_children(start)

        if selector:
            try:
                match = soup.select_one(selector)
            except SelectorSyntaxError as e:
                raise DirectiveError(f"invalid selector {selector!r}: {e}", context.content_path)
            content = match.decode_contents() if match is not None else ""
        else:
            content = soup.decode()

        return RenderResult(
            content=content,
            links=extract_links(soup),
            meta=extract_meta(soup),
        )
