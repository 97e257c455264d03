"""HTML parsing helpers built on BeautifulSoup."""

from __future__ import annotations

from typing import Any

from bs4 import BeautifulSoup, Tag

# Parser used everywhere so serialization round-trips consistently
HTML_PARSER = "html.parser"


def parse_html(text: str) -> BeautifulSoup:
    """Parse an HTML document or fragment.

    Attribute values are kept as plain strings (``class`` included) so
    directives can copy them verbatim.
    """
    return BeautifulSoup(text, HTML_PARSER, multi_valued_attributes=None)


def extract_links(root: BeautifulSoup | Tag) -> list[str]:
    """Collect ``<a href>`` targets in document order, without duplicates."""
    seen: set[str] = set()
    links: list[str] = []
    for anchor in root.find_all("a", href=True):
        href = anchor["href"].strip()
        if href and href not in seen:
            seen.add(href)
            links.append(href)
    return links


def extract_meta(root: BeautifulSoup | Tag) -> dict[str, Any]:
    """Collect metadata from ``<meta>``, ``<title>`` and the first ``<h1>``.

    ``<meta name=... content=...>`` and ``<meta itemprop=... content=...>``
    both contribute. The title comes from a ``title`` meta tag, then
    ``<title>``, then the first ``<h1>``.
    """
    meta: dict[str, Any] = {}
    for tag in root.find_all("meta"):
        key = tag.get("name") or tag.get("itemprop")
        if not key:
            continue
        meta[key.strip().lower()] = tag.get("content")

    if not meta.get("title"):
        title_tag = root.find("title")
        if title_tag is not None and title_tag.get_text(strip=True):
            meta["title"] = title_tag.get_text(strip=True)
        else:
            heading = first_heading(root)
            if heading:
                meta["title"] = heading

    return meta


def first_heading(root: BeautifulSoup | Tag | str) -> str | None:
    """Return the text of the first ``<h1>``, if any."""
    if isinstance(root, str):
        root = parse_html(root)
    heading = root.find("h1")
    if heading is None:
        return None
    text = heading.get_text(" ", strip=True)
    return text or None
