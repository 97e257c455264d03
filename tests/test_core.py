"""Tests for the execute boundary in htmlwiki.core.

Test organization:
- Request validation (400)
- create / read / update / delete round trips
- Status mapping for missing, conflicting and failing requests
- Container wrapping and its opt-outs
- Nested render() and the recursion guard
- Edit mode, selectors and static files
"""

import pytest

from htmlwiki.core import validate_request
from htmlwiki.models import ParameterSource
from htmlwiki.params import params_from_mapping

CONTAINER = (
    "<html><body><header>site chrome</header>"
    '<replace-with main x-content="render(params.contentPath)"></replace-with>'
    "</body></html>"
)


def request(**values):
    return params_from_mapping(values, ParameterSource.QUERY_PARAM)


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────


class TestValidation:
    """Every problem is reported at once, before any file is touched."""

    def test_collects_all_issues(self):
        issues = validate_request("update", request())
        assert "contentPath is required" in issues
        assert "content is required for update" in issues

    @pytest.mark.parametrize(
        ("command", "values"),
        [
            ("explode", {"contentPath": "/a.html"}),
            ("read", {}),
            ("create", {"contentPath": "/"}),
            ("delete", {"contentPath": "/"}),
            ("create", {"contentPath": "/../etc/passwd"}),
            ("create", {"contentPath": "/bad|name.html"}),
            ("update", {"contentPath": "relative.html", "content": "x"}),
        ],
    )
    def test_invalid_requests(self, command, values):
        assert validate_request(command, request(**values))

    def test_read_accepts_bare_title(self):
        assert validate_request("read", request(contentPath="Deploy Guide")) == []

    @pytest.mark.asyncio
    async def test_execute_reports_400(self, load_wiki):
        wiki = await load_wiki()
        result = await wiki.execute("explode", request(contentPath="/x.html"))
        assert result.status == 400
        assert "Unknown command" in result.content
        assert result.content_type.startswith("text/plain")


# ─────────────────────────────────────────────────────────────────────────────
# CRUD
# ─────────────────────────────────────────────────────────────────────────────


class TestCrud:
    @pytest.mark.asyncio
    async def test_create_then_read(self, sample_wiki, load_wiki):
        top, _ = sample_wiki
        wiki = await load_wiki()

        created = await wiki.execute("create", request(contentPath="/new", content="<h1>New</h1>"))
        assert created.status == 200
        assert created.content_path == "/new.html"
        assert (top / "new.html").read_text() == "<h1>New</h1>"

        read = await wiki.execute("read", request(contentPath="/new"))
        assert read.status == 200
        assert read.content == "<h1>New</h1>"
        assert read.content_type == "text/html; charset=utf-8"

    @pytest.mark.asyncio
    async def test_create_existing_is_conflict(self, sample_wiki, load_wiki):
        wiki = await load_wiki()
        result = await wiki.execute(
            "create", request(contentPath="/notes/deploy.html", content="<p>x</p>")
        )
        assert result.status == 422
        assert result.content == "File already exists: /notes/deploy.html"

    @pytest.mark.asyncio
    async def test_update(self, sample_wiki, load_wiki):
        wiki = await load_wiki()

        result = await wiki.execute(
            "update", request(contentPath="/notes/deploy.html", content="<p>v2</p>")
        )

        assert result.status == 200
        read = await wiki.execute("read", request(contentPath="/notes/deploy.html"))
        assert read.content == "<p>v2</p>"

    @pytest.mark.asyncio
    async def test_update_inherited_file_is_missing(self, sample_wiki, load_wiki):
        wiki = await load_wiki()
        result = await wiki.execute("update", request(contentPath="/index.html", content="x"))
        assert result.status == 404

    @pytest.mark.asyncio
    async def test_create_with_bad_frontmatter_is_rejected(self, sample_wiki, load_wiki):
        top, _ = sample_wiki
        wiki = await load_wiki()

        result = await wiki.execute(
            "create", request(contentPath="/bad.md", content="---\ntitle: [unclosed\n---\n")
        )

        assert result.status == 400
        assert result.content.startswith("Invalid content for /bad.md: ")
        assert not (top / "bad.md").exists()
        retry = await wiki.execute("create", request(contentPath="/bad.md", content="# Good\n"))
        assert retry.status == 200

    @pytest.mark.asyncio
    async def test_delete_reveals_lower_layer(self, sample_wiki, load_wiki):
        wiki = await load_wiki()

        deleted = await wiki.execute("delete", request(contentPath="/notes/deploy.html"))
        assert deleted.status == 200

        read = await wiki.execute("read", request(contentPath="/notes/deploy.html"))
        assert read.status == 200
        assert "base copy" in read.content

    @pytest.mark.asyncio
    async def test_read_missing(self, sample_wiki, load_wiki):
        wiki = await load_wiki()
        result = await wiki.execute("read", request(contentPath="/nope.html"))
        assert result.status == 404
        assert result.content == "File not found: /nope.html"
        assert result.content_path == "/nope.html"


# ─────────────────────────────────────────────────────────────────────────────
# Reading
# ─────────────────────────────────────────────────────────────────────────────


class TestRead:
    @pytest.mark.asyncio
    async def test_root_is_index(self, sample_wiki, load_wiki):
        wiki = await load_wiki()
        result = await wiki.execute("read", request(contentPath="/"))
        assert result.status == 200
        assert result.content_path == "/index.html"
        assert "<h1>HTML Wiki</h1>" in result.content

    @pytest.mark.asyncio
    async def test_read_by_title(self, sample_wiki, load_wiki):
        wiki = await load_wiki()
        result = await wiki.execute("read", request(contentPath="Deploy Guide"))
        assert result.status == 200
        assert result.content_path == "/notes/deploy.html"

    @pytest.mark.asyncio
    async def test_markdown_is_rendered(self, sample_wiki, load_wiki):
        wiki = await load_wiki()
        result = await wiki.execute("read", request(contentPath="/notes/fixture.md"))
        assert "<h1>Heading</h1>" in result.content
        assert "title:" not in result.content

    @pytest.mark.asyncio
    async def test_select(self, sample_wiki, load_wiki):
        wiki = await load_wiki()
        result = await wiki.execute("read", request(contentPath="/notes/deploy.html", select="p"))
        assert result.content == "Rolling deployments."

    @pytest.mark.asyncio
    async def test_parameters_reach_directives(self, layers, write_page, load_wiki):
        top, _ = layers
        write_page(top, "/hello.html", '<p>Hi <query-content q="params.name">stranger</query-content></p>')
        wiki = await load_wiki()

        named = await wiki.execute("read", request(contentPath="/hello.html", name="Ada"))
        anonymous = await wiki.execute("read", request(contentPath="/hello.html"))

        assert named.content == "<p>Hi Ada</p>"
        assert anonymous.content == "<p>Hi stranger</p>"

    @pytest.mark.asyncio
    async def test_parameter_path_past_a_leaf_falls_back(self, layers, write_page, load_wiki):
        top, _ = layers
        write_page(top, "/p.html", '<p><query-content q="params.title.missing">fallback</query-content></p>')
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/p.html", title="x"))

        assert result.status == 200
        assert result.content == "<p>fallback</p>"

    @pytest.mark.asyncio
    async def test_directive_failure_is_424_with_location(self, layers, write_page, load_wiki):
        top, _ = layers
        write_page(top, "/broken.html", '<p>ok</p>\n<drop-if truthy="(">x</drop-if>')
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/broken.html"))

        assert result.status == 424
        assert result.content.startswith("/broken.html:2: ")

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_500(self, sample_wiki, load_wiki, monkeypatch):
        wiki = await load_wiki()

        async def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(wiki, "render_entry", boom)
        result = await wiki.execute("read", request(contentPath="/"))

        assert result.status == 500
        assert result.content == "Internal error"

    @pytest.mark.asyncio
    async def test_static_files(self, layers, write_page, load_wiki):
        top, _ = layers
        write_page(top, "/logo.png", b"\x89PNG\xff")
        write_page(top, "/readme.txt", "plain")
        wiki = await load_wiki()

        image = await wiki.execute("read", request(contentPath="/logo.png"))
        text = await wiki.execute("read", request(contentPath="/readme.txt"))

        assert image.content == b"\x89PNG\xff"
        assert image.content_type == "image/png"
        assert text.content == "plain"
        assert text.content_type == "text/plain; charset=utf-8"


# ─────────────────────────────────────────────────────────────────────────────
# Container
# ─────────────────────────────────────────────────────────────────────────────


class TestContainer:
    @pytest.mark.asyncio
    async def test_pages_are_wrapped(self, sample_wiki, write_page, load_wiki):
        top, _ = sample_wiki
        write_page(top, "/_container.html", CONTAINER)
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/notes/deploy.html"))

        assert result.status == 200
        assert "<header>site chrome</header>" in result.content
        assert "<main>" in result.content
        assert "Rolling deployments." in result.content
        assert result.content_path == "/notes/deploy.html"

    @pytest.mark.asyncio
    async def test_raw_skips_container(self, sample_wiki, write_page, load_wiki):
        top, _ = sample_wiki
        write_page(top, "/_container.html", CONTAINER)
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/notes/deploy.html", raw="1"))

        assert "site chrome" not in result.content
        assert "Rolling deployments." in result.content

    @pytest.mark.asyncio
    async def test_nocontainer_meta_opts_out(self, layers, write_page, load_wiki):
        top, _ = layers
        write_page(top, "/_container.html", CONTAINER)
        write_page(top, "/bare.html", '<html><head><meta name="nocontainer"></head><body>bare</body></html>')
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/bare.html"))

        assert "site chrome" not in result.content
        assert "bare" in result.content

    @pytest.mark.asyncio
    async def test_markdown_pages_are_wrapped(self, sample_wiki, write_page, load_wiki):
        top, _ = sample_wiki
        write_page(top, "/_container.html", CONTAINER)
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/notes/fixture.md"))

        assert "site chrome" in result.content
        assert "<h1>Heading</h1>" in result.content


# ─────────────────────────────────────────────────────────────────────────────
# Nested render() and edit mode
# ─────────────────────────────────────────────────────────────────────────────


class TestNestedRender:
    @pytest.mark.asyncio
    async def test_include_with_params_and_selector(self, layers, write_page, load_wiki):
        top, _ = layers
        write_page(top, "/card.html", '<div class="card"><query-content q="params.label">?</query-content></div>')
        write_page(
            top,
            "/page.html",
            "<section><replace-with div x-content=\"render('/card.html', {label: 'Inner'}, '.card')\">"
            "</replace-with></section>",
        )
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/page.html"))

        assert result.content == "<section><div>Inner</div></section>"

    @pytest.mark.asyncio
    async def test_missing_include_is_424(self, layers, write_page, load_wiki):
        top, _ = layers
        write_page(top, "/page.html", "<p><query-content q=\"render('/gone.html')\">x</query-content></p>")
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/page.html"))

        assert result.status == 424
        assert "File not found: /gone.html" in result.content

    @pytest.mark.asyncio
    async def test_self_inclusion_is_stopped(self, layers, write_page, load_wiki):
        top, _ = layers
        write_page(top, "/loop.html", "<p><query-content q=\"render('/loop.html')\">x</query-content></p>")
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/loop.html"))

        assert result.status == 424
        assert "nested more than" in result.content


class TestEditMode:
    @pytest.mark.asyncio
    async def test_edit_contents_fill_content_slot(self, sample_wiki, write_page, load_wiki):
        top, _ = sample_wiki
        write_page(top, "/editor.html", '<div class="editor"><slot name="content">empty</slot></div>')
        wiki = await load_wiki()

        result = await wiki.execute(
            "read", request(contentPath="/editor.html", edit="/notes/deploy.html")
        )

        assert result.status == 200
        assert "&lt;p&gt;Rolling deployments.&lt;/p&gt;" in result.content
        assert "empty" not in result.content

    @pytest.mark.asyncio
    async def test_edit_target_must_exist(self, sample_wiki, write_page, load_wiki):
        top, _ = sample_wiki
        write_page(top, "/editor.html", '<slot name="content"></slot>')
        wiki = await load_wiki()

        result = await wiki.execute("read", request(contentPath="/editor.html", edit="/gone.html"))

        assert result.status == 404
