"""Shared test fixtures for the htmlwiki test suite.

Design:
- layers: two isolated layer directories (writable first) in a temp dir
- write_page: helper that writes a file into a layer
- wiki / load_wiki: Wiki over the layers, and a loader to call once pages exist
- runner: CliRunner for CLI tests
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Generator

import pytest
from click.testing import CliRunner

from htmlwiki.core import Wiki

FIXED_NOW = datetime(2024, 5, 17, 9, 30, tzinfo=UTC)


@pytest.fixture(autouse=True)
def reset_package_logger() -> Generator[None, None, None]:
    """Undo configure_logging() so caplog sees records in every test."""
    yield
    package_logger = logging.getLogger("htmlwiki")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


# ─────────────────────────────────────────────────────────────────────────────
# Layers
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def layers(tmp_path: Path) -> tuple[Path, Path]:
    """Two layer directories: (writable, inherited)."""
    top = tmp_path / "top"
    base = tmp_path / "base"
    top.mkdir()
    base.mkdir()
    return top, base


def _write(layer: Path, content_path: str, content: str | bytes) -> Path:
    target = layer / content_path.lstrip("/")
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        target.write_bytes(content)
    else:
        target.write_text(content, encoding="utf-8")
    return target


@pytest.fixture
def write_page() -> Callable[[Path, str, str | bytes], Path]:
    """Write a file into a layer by content path.

    Usage:
        def test_something(layers, write_page):
            top, base = layers
            write_page(base, "/notes/a.html", "<h1>A</h1>")
    """
    return _write


@pytest.fixture
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Path, None, None]:
    """Run with no HTMLWIKI_DIRS and a cwd that has no .wikiconfig above it."""
    monkeypatch.delenv("HTMLWIKI_DIRS", raising=False)
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    yield workdir


# ─────────────────────────────────────────────────────────────────────────────
# Wiki
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def wiki(layers: tuple[Path, Path]) -> Wiki:
    """Wiki over the two layers with a fixed clock. The cache is not loaded."""
    return Wiki.from_directories(list(layers), clock=lambda: FIXED_NOW)


@pytest.fixture
def load_wiki(wiki: Wiki) -> Callable[[], Awaitable[Wiki]]:
    """Load the cache after the test has written its pages."""

    async def _load() -> Wiki:
        await wiki.load()
        return wiki

    return _load


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner(env={"HTMLWIKI_DIRS": None, "HTMLWIKI_LOG_LEVEL": "ERROR"})


@pytest.fixture
def sample_wiki(layers: tuple[Path, Path]) -> tuple[Path, Path]:
    """Layers seeded with a small site.

    Creates:
    - base/index.html           <h1>HTML Wiki</h1>, links to /notes/fixture.md
    - base/notes/fixture.md     frontmatter title "Markdown Fixture File Title"
    - base/notes/deploy.html    title "Old Deploy Guide" (shadowed)
    - top/notes/deploy.html     title "Deploy Guide", keywords, links to the fixture by title
    """
    top, base = layers
    _write(
        base,
        "/index.html",
        "<html><head></head>"
        "<body><h1>HTML Wiki</h1>"
        '<a href="/notes/fixture.md">fixture</a></body></html>',
    )
    _write(
        base,
        "/notes/fixture.md",
        "---\ntitle: Markdown Fixture File Title\nkeywords: docs, fixtures\n---\n\n"
        "# Heading\n\nSee [the guide](<Deploy Guide>) and [home](/index.html).\n",
    )
    _write(
        base,
        "/notes/deploy.html",
        '<html><head><meta name="title" content="Old Deploy Guide"></head>'
        "<body><p>base copy</p></body></html>",
    )
    _write(
        top,
        "/notes/deploy.html",
        '<html><head><meta name="title" content="Deploy Guide">'
        '<meta name="keywords" content="ops, release"></head>'
        '<body><p>Rolling deployments.</p><a href="Markdown Fixture File Title">fixture</a></body></html>',
    )
    return top, base
