"""File watcher that keeps the content cache in step with the layer directories."""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import WATCH_DEBOUNCE_SECONDS
from .errors import InvalidPathError, MetadataExtractionError
from .store import split_content_path

if TYPE_CHECKING:
    from .cache import ContentCache

logger = logging.getLogger(__name__)


class DebouncedHandler(FileSystemEventHandler):
    """File system event handler with debouncing.

    Events arrive on the observer thread; the callback is fired on the given
    event loop once no new event has been seen for ``debounce_seconds``.
    """

    def __init__(
        self,
        callback: Callable[[set[Path]], None],
        loop: asyncio.AbstractEventLoop,
        debounce_seconds: float = WATCH_DEBOUNCE_SECONDS,
    ):
        super().__init__()
        self._callback = callback
        self._loop = loop
        self._debounce_seconds = debounce_seconds
        self._pending_files: set[Path] = set()
        self._timer: asyncio.TimerHandle | None = None

    def _fire(self) -> None:
        self._timer = None
        if self._pending_files:
            files = self._pending_files.copy()
            self._pending_files.clear()
            self._callback(files)

    def _reschedule(self) -> None:
        # Runs on the loop thread
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self._debounce_seconds, self._fire)

    def _add(self, *paths: str | bytes | None) -> None:
        added = False
        for path in paths:
            if not path:
                continue
            if isinstance(path, bytes):
                path = path.decode()
            self._pending_files.add(Path(path))
            added = True
        if added and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._reschedule)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._add(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._add(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._add(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._add(event.src_path, getattr(event, "dest_path", None))


class FileWatcher:
    """Watch every layer directory and re-sync changed paths into the cache."""

    def __init__(
        self,
        cache: "ContentCache",
        loop: asyncio.AbstractEventLoop | None = None,
        debounce_seconds: float = WATCH_DEBOUNCE_SECONDS,
    ):
        self._cache = cache
        self._loop = loop
        self._debounce_seconds = debounce_seconds
        self._observer: Observer | None = None
        self._running = False

    def content_paths_for(self, files: set[Path]) -> set[str]:
        """Map changed filesystem paths to content paths, dropping outsiders."""
        paths: set[str] = set()
        for file_path in files:
            content_path = self._cache.store.content_path_for(file_path)
            if content_path in (None, "/"):
                continue
            try:
                split_content_path(content_path)
            except InvalidPathError as e:
                logger.debug("Ignoring change to %s: %s", file_path, e)
                continue
            paths.add(content_path)
        return paths

    async def sync(self, content_paths: set[str]) -> None:
        """Re-sync each path, then rebuild the indexes once."""
        logger.info("Re-indexing %d changed files", len(content_paths))
        for content_path in sorted(content_paths):
            try:
                await self._cache.sync_path(content_path, rebuild_index=False)
            except MetadataExtractionError as e:
                logger.warning("%s", e)
        self._cache.rebuild_meta_cache()

    def _on_files_changed(self, files: set[Path]) -> None:
        content_paths = self.content_paths_for(files)
        if content_paths:
            self._loop.create_task(self.sync(content_paths))

    def start(self) -> None:
        """Start watching. Must be called with a running loop or an explicit one."""
        if self._running:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        handler = DebouncedHandler(
            callback=self._on_files_changed,
            loop=self._loop,
            debounce_seconds=self._debounce_seconds,
        )
        self._observer = Observer()
        for directory in self._cache.store.directories:
            if not directory.exists():
                logger.warning("Layer directory does not exist: %s", directory)
                continue
            self._observer.schedule(handler, str(directory), recursive=True)
            logger.info("Watching %s", directory)
        self._observer.start()
        self._running = True

    def stop(self) -> None:
        """Stop the observer thread and wait for it to exit."""
        observer, self._observer = self._observer, None
        self._running = False
        if observer is None:
            return

        observer.stop()
        observer.join(timeout=5.0)
        logger.info("Stopped watching %d layer directories", len(self._cache.store.directories))

    @property
    def is_running(self) -> bool:
        return self._running

    def __enter__(self) -> "FileWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
