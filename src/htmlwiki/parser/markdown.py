"""Markdown rendering with YAML frontmatter support."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import frontmatter
import yaml
from markdown_it import MarkdownIt


class ParseError(Exception):
    """Raised when a document cannot be parsed."""

    def __init__(self, content_path: str, message: str) -> None:
        self.content_path = content_path
        self.message = message
        super().__init__(f"{content_path}: {message}")


@dataclass
class FrontmatterResult:
    """A document split into its frontmatter block and the remaining text."""

    frontmatter: dict[str, Any] | None
    rest_of_content: str
    metadata: dict[str, Any] = field(init=False)

    def __post_init__(self) -> None:
        self.metadata = dict(self.frontmatter or {})


_md: MarkdownIt | None = None


def _get_renderer() -> MarkdownIt:
    global _md
    if _md is None:
        # commonmark + raw HTML passthrough + the GFM table/strikethrough rules
        _md = MarkdownIt("commonmark", {"html": True})
        _md.enable("table")
        _md.enable("strikethrough")
    return _md


def render_markdown(text: str) -> str:
    """Render Markdown to HTML. Inline HTML is passed through untouched."""
    return _get_renderer().render(text)


def parse_frontmatter(text: str, content_path: str = "<string>") -> FrontmatterResult:
    """Split a leading ``---`` delimited YAML block from a Markdown document.

    Documents without a frontmatter block come back with ``frontmatter=None``
    and the text unchanged.

    Raises:
        ParseError: If the block is present but is not a YAML mapping.
    """
    if not text.startswith("---"):
        return FrontmatterResult(frontmatter=None, rest_of_content=text)

    handler = frontmatter.YAMLHandler()
    try:
        block, body = handler.split(text)
    except ValueError:
        # No closing delimiter
        return FrontmatterResult(frontmatter=None, rest_of_content=text)

    try:
        # frontmatter.loads() would silently drop a list or scalar block
        data = handler.load(block)
    except yaml.YAMLError as e:
        raise ParseError(content_path, f"Failed to parse frontmatter: {e}") from e

    if data is None or data == {}:
        return FrontmatterResult(frontmatter=None, rest_of_content=body.strip())
    if not isinstance(data, dict):
        raise ParseError(content_path, f"Frontmatter must be a YAML mapping, not {type(data).__name__}")

    return FrontmatterResult(frontmatter=data, rest_of_content=body.strip())
