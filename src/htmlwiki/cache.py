"""Content cache: one Entry per content path plus derived indexes.

The cache wraps a LayeredStore. Every visible file gets an ``Entry`` with its
raw content, derived metadata and outgoing links. Three indexes are derived
from the entry set:

- title -> Entry
- keyword -> [content path]
- backlinks: destination content path -> [source content path]

The keyword and backlink indexes are only as fresh as the last
``rebuild_meta_cache()`` call. Single-file mutations rebuild by default;
the initial batch load rebuilds once after every file has been added.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from collections.abc import Callable
from datetime import UTC, datetime
from fnmatch import fnmatch
from urllib.parse import unquote, urlsplit

from .config import DEFAULT_EXTENSION, HTML_EXTENSIONS, INDEX_PATH, MARKDOWN_EXTENSIONS
from .errors import InvalidContentError, MetadataExtractionError
from .models import Entry
from .parser import extract_links, first_heading, parse_frontmatter, parse_html, render_markdown
from .search import fuzzy_search
from .store import LayeredStore
from .templating import TemplateContext, TemplatingEngine

log = logging.getLogger(__name__)


def classify(content_path: str) -> str:
    """Renderability of a path, decided by its extension."""
    extension = posixpath.splitext(content_path)[1].lower()
    if extension in HTML_EXTENSIONS:
        return "html"
    if extension in MARKDOWN_EXTENSIONS:
        return "markdown"
    return "static"


def with_default_extension(content_path: str) -> str:
    """Append DEFAULT_EXTENSION when the last segment has no extension.

    ``/`` is returned unchanged.
    """
    last = content_path.rsplit("/", 1)[-1]
    if not last or "." in last:
        return content_path
    return content_path + DEFAULT_EXTENSION


def link_to_content_path(link: str, source_path: str) -> str | None:
    """Turn an authored href into a content path.

    External links (with a scheme or host) and pure fragments give None.
    Relative links resolve against the source document's directory.
    """
    parts = urlsplit(link.strip())
    if parts.scheme or parts.netloc:
        return None
    path = unquote(parts.path)
    if not path:
        return None
    if not path.startswith("/"):
        path = posixpath.join(posixpath.dirname(source_path) or "/", path)
    path = posixpath.normpath(path)
    return "/" + path.lstrip("/")


def _timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


class ContentCache:
    """Per-path entries and derived indexes over a LayeredStore."""

    def __init__(
        self,
        store: LayeredStore,
        exclude: list[str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.exclude = list(exclude or [])
        self.engine = TemplatingEngine(self, clock=clock)
        self._entries: dict[str, Entry] = {}
        self._titles: dict[str, Entry] = {}
        self._keywords: dict[str, list[str]] = {}
        self._backlinks: dict[str, list[str]] = {}

    def _excluded(self, content_path: str) -> bool:
        relative = content_path.lstrip("/")
        return any(fnmatch(relative, pattern) for pattern in self.exclude)

    # ── population ──────────────────────────────────────────────────────────

    async def load(self) -> list[MetadataExtractionError]:
        """Index every file visible through the store, then rebuild once.

        Files are added concurrently. A file whose metadata cannot be
        extracted is logged and skipped; the rest of the batch still loads.

        Returns:
            The per-file failures, if any.
        """
        paths = [p for p in await self.store.list_all() if not self._excluded(p)]
        results = await asyncio.gather(
            *(self.add_file_to_cache_data(path, rebuild_index=False) for path in paths),
            return_exceptions=True,
        )

        failures: list[MetadataExtractionError] = []
        for result in results:
            if isinstance(result, MetadataExtractionError):
                log.warning("%s", result)
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result

        self.rebuild_meta_cache()
        log.info("Indexed %d files (%d failed)", len(self._entries), len(failures))
        return failures

    async def _build_entry(self, content_path: str) -> Entry:
        renderability = classify(content_path)
        original = await self.store.read(content_path, binary=renderability == "static")
        if isinstance(original.content, bytes):
            try:
                original.content = original.content.decode("utf-8")
            except UnicodeDecodeError:
                pass
        stat = await self.store.stat(content_path)

        meta: dict = {}
        links: list[str] = []
        if renderability == "html":
            result = await self.engine.render(
                original.content,
                TemplateContext(content_path=content_path, lenient=True),
                root="head",
            )
            meta, links = result.meta, result.links
        elif renderability == "markdown":
            meta, links = self._markdown_metadata(content_path, original.content)

        return Entry(
            content_path=content_path,
            name=content_path.rsplit("/", 1)[-1],
            type="file",
            original_content=original,
            meta=meta,
            renderability=renderability,
            links=links,
            accessed=_timestamp(stat.st_atime),
            created=_timestamp(stat.st_ctime),
            modified=_timestamp(stat.st_mtime),
        )

    @staticmethod
    def _markdown_metadata(content_path: str, text: str) -> tuple[dict, list[str]]:
        parsed = parse_frontmatter(text, content_path)
        meta = {str(key).lower(): value for key, value in parsed.metadata.items()}
        html = render_markdown(parsed.rest_of_content)
        if not meta.get("title"):
            heading = first_heading(html)
            if heading:
                meta["title"] = heading
        return meta, extract_links(parse_html(html))

    async def add_file_to_cache_data(self, content_path: str, rebuild_index: bool = True) -> Entry:
        """Read, classify and index one file, replacing any previous entry.

        Raises:
            MetadataExtractionError: If the file cannot be read or indexed.
        """
        try:
            entry = await self._build_entry(content_path)
        except Exception as e:
            raise MetadataExtractionError(content_path, e) from e

        previous = self._entries.get(content_path)
        if previous is not None:
            self._drop_title(previous)
        self._entries[content_path] = entry

        title = entry.title
        if title:
            existing = self._titles.get(title)
            if existing is None or existing.content_path == content_path:
                self._titles[title] = entry
            else:
                log.debug("Title %r already used by %s", title, existing.content_path)

        if rebuild_index:
            self.rebuild_meta_cache()
        return entry

    async def remove_file_from_cache_data(self, content_path: str, rebuild_index: bool = True) -> None:
        """Forget a path; re-add it if a lower layer still provides it."""
        entry = self._entries.pop(content_path, None)
        if entry is not None:
            self._drop_title(entry)

        if await self.store.exists(content_path):
            log.info("Revealed shadowed copy of %s", content_path)
            await self.add_file_to_cache_data(content_path, rebuild_index=False)

        if rebuild_index:
            self.rebuild_meta_cache()

    async def sync_path(self, content_path: str, rebuild_index: bool = True) -> None:
        """Bring one path in line with the store (used by the file watcher)."""
        if self._excluded(content_path):
            return
        found = self.store.locate(content_path)
        if found is not None and found[1].is_file():
            await self.add_file_to_cache_data(content_path, rebuild_index=rebuild_index)
        else:
            await self.remove_file_from_cache_data(content_path, rebuild_index=rebuild_index)

    def _drop_title(self, entry: Entry) -> None:
        title = entry.title
        if title and self._titles.get(title) is entry:
            del self._titles[title]

    def rebuild_meta_cache(self) -> None:
        """Rebuild the title, keyword and backlink indexes from the entry set."""
        titles: dict[str, Entry] = {}
        for entry in self._entries.values():
            if entry.title:
                titles.setdefault(entry.title, entry)
        self._titles = titles

        keywords: dict[str, list[str]] = {}
        backlinks: dict[str, list[str]] = {}
        for entry in self._entries.values():
            for keyword in entry.keywords:
                paths = keywords.setdefault(keyword, [])
                if entry.content_path not in paths:
                    paths.append(entry.content_path)

            for link in entry.links:
                target = self.resolve_link(link, entry.content_path)
                if target is None:
                    continue
                sources = backlinks.setdefault(target.content_path, [])
                if entry.content_path not in sources:
                    sources.append(entry.content_path)

        self._keywords = keywords
        self._backlinks = backlinks

    # ── lookups ─────────────────────────────────────────────────────────────

    def get_by_content_path(self, content_path: str) -> Entry | None:
        return self._entries.get(content_path)

    def get_by_title(self, title: str | None) -> Entry | None:
        if not title:
            return None
        return self._titles.get(title)

    def get_by_path_or_title(self, value: str | None) -> Entry | None:
        """Lookup for values that may be a human-entered title or a path.

        Titles win. ``/`` is an alias of ``/index.html`` here only.
        """
        if not value:
            return None
        entry = self.get_by_title(value)
        if entry is not None:
            return entry
        path = INDEX_PATH if value == "/" else value
        return self._entries.get(path)

    def resolve_link(self, link: str, source_path: str) -> Entry | None:
        """Resolve an outgoing link: title first, then path."""
        link = link.strip()
        # Markdown percent-encodes spaces in link destinations
        entry = self.get_by_title(link) or self.get_by_title(unquote(link))
        if entry is not None:
            return entry

        path = link_to_content_path(link, source_path)
        if path is None:
            return None
        return self.get_by_path_or_title(path) or self._entries.get(with_default_extension(path))

    def get_backlinks(self, content_path: str) -> list[str]:
        return list(self._backlinks.get(content_path, []))

    def get_by_keyword(self, keyword: str) -> list[str]:
        return list(self._keywords.get(keyword, []))

    def keywords(self) -> dict[str, list[str]]:
        return {keyword: list(paths) for keyword, paths in self._keywords.items()}

    def titles(self) -> dict[str, str]:
        return {title: entry.content_path for title, entry in self._titles.items()}

    def all_files(self) -> list[Entry]:
        """Shallow copy of every entry. Entries themselves are shared."""
        return list(self._entries.values())

    def search(self, query: str, limit: int | None = None) -> list[Entry]:
        return fuzzy_search(self.all_files(), query, limit=limit)

    # ── write-through ───────────────────────────────────────────────────────

    async def create_file_and_directories(self, content_path: str, content: str | bytes) -> Entry:
        """Create a file and index it.

        Raises:
            InvalidContentError: If the new file cannot be indexed. The file
                is deleted again so disk and cache stay in step.
        """
        await self.store.create(content_path, content)
        try:
            return await self.add_file_to_cache_data(content_path)
        except MetadataExtractionError as e:
            await self.store.remove(content_path)
            log.warning("Rolled back create of %s: %s", content_path, e.cause)
            raise InvalidContentError(content_path, e.cause) from e

    async def update_file(self, content_path: str, content: str | bytes) -> Entry:
        """Overwrite a file and re-index it.

        Raises:
            InvalidContentError: If the new content cannot be indexed. The
                previous bytes are written back and the old entry is kept.
        """
        previous = await self.store.read(content_path, binary=True)
        await self.store.update(content_path, content)
        try:
            return await self.add_file_to_cache_data(content_path)
        except MetadataExtractionError as e:
            await self.store.update(content_path, previous.content)
            log.warning("Rolled back update of %s: %s", content_path, e.cause)
            raise InvalidContentError(content_path, e.cause) from e

    async def remove_file(self, content_path: str) -> None:
        await self.store.remove(content_path)
        await self.remove_file_from_cache_data(content_path)
