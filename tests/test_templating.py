"""Tests for the directive interpreter (htmlwiki.templating).

Test organization:
- Conditionals (keep-if / drop-if)
- query-content and replace-with
- Slots (content, keep/remove, entry-link)
- Markdown content-type marker and the stop boundary
- Selector output, side channels, error locations, lenient mode
"""

import logging

import pytest

from htmlwiki.errors import DirectiveError
from htmlwiki.models import ParameterSource
from htmlwiki.params import params_from_mapping
from htmlwiki.templating import TemplateContext, TemplatingEngine


async def render(html: str, params: dict | None = None, **kwargs) -> str:
    selector = kwargs.pop("selector", None)
    context = TemplateContext(
        content_path="/t.html",
        params=params_from_mapping(params or {}, ParameterSource.QUERY_PARAM),
        **kwargs,
    )
    result = await TemplatingEngine().render(html, context, selector=selector)
    return result.content


# ─────────────────────────────────────────────────────────────────────────────
# Conditionals
# ─────────────────────────────────────────────────────────────────────────────


class TestConditionals:
    """keep-if and drop-if invert each other."""

    @pytest.mark.asyncio
    async def test_keep_if_truthy_keeps_exact_children(self):
        html = '<keep-if truthy="params.x">C <b>bold</b></keep-if>'
        assert await render(html, {"x": "1"}) == "C <b>bold</b>"

    @pytest.mark.asyncio
    async def test_keep_if_truthy_falsy_value_leaves_nothing(self):
        html = '<keep-if truthy="params.x">C <b>bold</b></keep-if>'
        assert await render(html, {}) == ""

    @pytest.mark.parametrize(
        ("tag", "attr", "value", "kept"),
        [
            ("keep-if", "truthy", "1", True),
            ("keep-if", "truthy", "", False),
            ("keep-if", "falsy", "1", False),
            ("keep-if", "falsy", "", True),
            ("drop-if", "truthy", "1", False),
            ("drop-if", "truthy", "", True),
            ("drop-if", "falsy", "1", True),
            ("drop-if", "falsy", "", False),
        ],
    )
    @pytest.mark.asyncio
    async def test_decision_table(self, tag, attr, value, kept):
        html = f'<{tag} {attr}="params.x">C</{tag}>'
        assert await render(html, {"x": value}) == ("C" if kept else "")

    @pytest.mark.asyncio
    async def test_sibling_after_dropped_node_is_visited(self):
        html = '<drop-if truthy="true">a</drop-if><keep-if truthy="true">b</keep-if>'
        assert await render(html) == "b"

    @pytest.mark.asyncio
    async def test_directives_inside_kept_content_run(self):
        html = '<keep-if truthy="true"><query-content q="params.t">d</query-content></keep-if>'
        assert await render(html, {"t": "T"}) == "T"

    @pytest.mark.parametrize(
        "html",
        [
            '<keep-if truthy="a" falsy="b">x</keep-if>',
            '<keep-if maybe="a">x</keep-if>',
            "<drop-if>x</drop-if>",
            '<drop-if truthy="  ">x</drop-if>',
            '<drop-if truthy="a b">x</drop-if>',
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_conditions_fail(self, html):
        with pytest.raises(DirectiveError):
            await render(html)


# ─────────────────────────────────────────────────────────────────────────────
# query-content / replace-with
# ─────────────────────────────────────────────────────────────────────────────


class TestQueryContent:
    @pytest.mark.asyncio
    async def test_value_is_escaped(self):
        html = '<p><query-content q="params.t">fallback</query-content></p>'
        assert await render(html, {"t": "<b>x</b>"}) == "<p>&lt;b&gt;x&lt;/b&gt;</p>"

    @pytest.mark.asyncio
    async def test_falls_back_to_own_content(self):
        html = '<p><query-content q="params.t">fall<i>back</i></query-content></p>'
        assert await render(html) == "<p>fall<i>back</i></p>"

    @pytest.mark.parametrize(
        "html",
        [
            "<query-content>x</query-content>",
            '<query-content q="">x</query-content>',
            '<query-content q="a" extra="b">x</query-content>',
        ],
    )
    @pytest.mark.asyncio
    async def test_needs_exactly_one_q(self, html):
        with pytest.raises(DirectiveError):
            await render(html)


class TestReplaceWith:
    @pytest.mark.asyncio
    async def test_copies_attributes_and_resolves_x_prefixed(self):
        html = '<replace-with a href="/x" x-title="params.t">link</replace-with>'
        assert await render(html, {"t": "T"}) == '<a href="/x" title="T">link</a>'

    @pytest.mark.asyncio
    async def test_boolean_and_null_attributes(self):
        html = '<replace-with input x-disabled="true" x-checked="false" x-value="null"></replace-with>'
        assert await render(html) == '<input disabled=""/>'

    @pytest.mark.asyncio
    async def test_x_content_sets_inner_html(self):
        html = "<replace-with div x-content=\"'<b>hi</b>'\">ignored</replace-with>"
        assert await render(html) == "<div><b>hi</b></div>"

    @pytest.mark.asyncio
    async def test_children_are_moved_and_visited(self):
        html = '<replace-with section><drop-if truthy="true">gone</drop-if>kept</replace-with>'
        assert await render(html) == "<section>kept</section>"

    @pytest.mark.asyncio
    async def test_first_attribute_must_name_the_tag(self):
        with pytest.raises(DirectiveError):
            await render('<replace-with href="/x">x</replace-with>')

    @pytest.mark.asyncio
    async def test_no_attributes(self):
        with pytest.raises(DirectiveError):
            await render("<replace-with>x</replace-with>")


# ─────────────────────────────────────────────────────────────────────────────
# Slots
# ─────────────────────────────────────────────────────────────────────────────


class TestSlots:
    @pytest.mark.asyncio
    async def test_content_slot_without_edit_contents_is_unchanged(self):
        html = '<div class="editor"><slot name="content">default</slot></div>'
        assert await render(html) == html

    @pytest.mark.asyncio
    async def test_content_slot_gets_escaped_edit_contents(self):
        html = '<div class="editor"><slot name="content">default</slot></div>'
        out = await render(html, file_contents_to_edit="<b>raw</b>")
        assert out == '<div class="editor">&lt;b&gt;raw&lt;/b&gt;</div>'

    @pytest.mark.asyncio
    async def test_keep_and_remove(self):
        html = '<slot name="keep">A</slot><slot name="remove">B</slot>'
        assert await render(html) == "A"

    @pytest.mark.parametrize(
        ("name", "raw", "kept"),
        [
            ("keep", True, True),
            ("keep", False, False),
            ("remove", True, False),
            ("remove", False, True),
        ],
    )
    @pytest.mark.asyncio
    async def test_raw_guard_inverts_when_raw_absent(self, name, raw, kept):
        html = f'<slot name="{name}" if="raw">X</slot>'
        params = {"raw": "1"} if raw else {}
        assert await render(html, params) == ("X" if kept else "")

    @pytest.mark.asyncio
    async def test_unsupported_guard(self):
        with pytest.raises(DirectiveError):
            await render('<slot name="keep" if="debug">X</slot>')

    @pytest.mark.asyncio
    async def test_entry_link(self):
        assert await render('<slot name="entry-link"></slot>') == '<a href="/t.html">/t.html</a>'

    @pytest.mark.asyncio
    async def test_unknown_slot_is_left_and_logged(self, caplog):
        html = '<slot name="sidebar"><keep-if truthy="true">x</keep-if></slot>'
        with caplog.at_level(logging.WARNING):
            out = await render(html)
        assert out == '<slot name="sidebar">x</slot>'
        assert "sidebar" in caplog.text
        assert "/t.html" in caplog.text


# ─────────────────────────────────────────────────────────────────────────────
# Markdown marker
# ─────────────────────────────────────────────────────────────────────────────


MARKDOWN_DOC = """<html><head><meta itemprop="content-type" content="markdown"></head>
<body><code><pre>
    # Title

    Hello *world*

    &lt;keep-if truthy="false"&gt;still here&lt;/keep-if&gt;
</pre></code></body></html>"""


class TestMarkdownMarker:
    @pytest.mark.asyncio
    async def test_body_is_replaced_with_rendered_markdown(self):
        out = await render(MARKDOWN_DOC)
        assert "<h1>Title</h1>" in out
        assert "<em>world</em>" in out
        assert "<pre>" not in out

    @pytest.mark.asyncio
    async def test_traversal_stops_at_body(self):
        out = await render(MARKDOWN_DOC)
        assert '<keep-if truthy="false">still here</keep-if>' in out

    @pytest.mark.asyncio
    async def test_requires_body(self):
        with pytest.raises(DirectiveError, match="body"):
            await render('<meta itemprop="content-type" content="markdown"><p>x</p>')

    @pytest.mark.asyncio
    async def test_requires_code_pre(self):
        html = '<html><head><meta itemprop="content-type" content="markdown"></head><body><p>x</p></body></html>'
        with pytest.raises(DirectiveError, match="code"):
            await render(html)

    @pytest.mark.asyncio
    async def test_other_content_types_are_ignored(self):
        html = '<meta itemprop="content-type" content="text"><keep-if truthy="true">x</keep-if>'
        out = await render(html)
        assert out.endswith(">x")
        assert "keep-if" not in out


# ─────────────────────────────────────────────────────────────────────────────
# Output, errors, lenient mode
# ─────────────────────────────────────────────────────────────────────────────


class TestOutput:
    @pytest.mark.asyncio
    async def test_selector_returns_inner_html_of_first_match(self):
        html = '<main><drop-if truthy="true">x</drop-if><p>in</p></main><main>second</main>'
        assert await render(html, selector="main") == "<p>in</p>"

    @pytest.mark.asyncio
    async def test_selector_without_match_is_empty(self):
        assert await render("<p>x</p>", selector="aside") == ""

    @pytest.mark.asyncio
    async def test_invalid_selector(self):
        with pytest.raises(DirectiveError, match="selector"):
            await render("<p>x</p>", selector="[[")

    @pytest.mark.asyncio
    async def test_links_and_meta_side_channels(self):
        html = (
            '<html><head><meta name="Keywords" content="a, b"></head>'
            '<body><h1>Heading</h1><a href="/one.html">1</a><a href="Some Title">2</a>'
            '<a href="/one.html">again</a></body></html>'
        )
        context = TemplateContext(content_path="/t.html")
        result = await TemplatingEngine().render(html, context)

        assert result.links == ["/one.html", "Some Title"]
        assert result.meta == {"keywords": "a, b", "title": "Heading"}

    @pytest.mark.asyncio
    async def test_error_carries_file_and_line(self):
        html = '<p>one</p>\n<p>two</p>\n<replace-with href="/x">x</replace-with>'
        with pytest.raises(DirectiveError) as exc_info:
            await render(html)

        error = exc_info.value
        assert error.file == "/t.html"
        assert error.line == 3
        assert str(error).startswith("/t.html:3: ")

    @pytest.mark.asyncio
    async def test_lenient_mode_logs_instead_of_raising(self, caplog):
        html = '<drop-if truthy="(">x</drop-if><keep-if truthy="true">ok</keep-if>'
        with caplog.at_level(logging.WARNING):
            out = await render(html, lenient=True)
        assert out.endswith("ok")
        assert "/t.html:1" in caplog.text

    @pytest.mark.asyncio
    async def test_lenient_mode_disables_render(self):
        async def fail(path, params, selector):
            raise AssertionError("render() must not run at index time")

        html = "<query-content q=\"render('/x.html')\">none</query-content>"
        assert await render(html, lenient=True, render=fail) == "none"
