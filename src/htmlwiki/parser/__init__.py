"""Markdown, frontmatter and HTML parsing adapters."""

from .html import extract_links, extract_meta, first_heading, parse_html
from .markdown import FrontmatterResult, ParseError, parse_frontmatter, render_markdown

__all__ = [
    "parse_html",
    "extract_links",
    "extract_meta",
    "first_heading",
    "render_markdown",
    "parse_frontmatter",
    "FrontmatterResult",
    "ParseError",
]
