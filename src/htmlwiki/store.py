"""Layered file storage.

A ``LayeredStore`` resolves content paths against an ordered list of
directories. A file in an earlier directory shadows a file with the same
content path in a later one. Shadowing is resolved at lookup time only;
no merged view is ever written to disk.

Only the first directory is writable: create, update and remove never touch
an inherited file from a lower-priority layer.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from .config import FILENAME_PATTERN
from .errors import ConflictError, InvalidPathError, MissingFileError
from .models import OriginalContent, StoreItem

log = logging.getLogger(__name__)

_TRAILING_WHITESPACE = re.compile(r"[ \t]+\n")


def normalize_content(content: str) -> str:
    """Normalize text before it is written.

    CRLF becomes LF and horizontal whitespace before a newline is stripped.
    Blank lines are preserved. Normalizing twice changes nothing.
    """
    content = content.replace("\r\n", "\n")
    return _TRAILING_WHITESPACE.sub("\n", content)


def split_content_path(content_path: str) -> tuple[str, ...]:
    """Validate a content path and return its segments.

    ``/`` yields an empty tuple (the layer root).

    Raises:
        InvalidPathError: If the path is relative or a segment is not allowed.
    """
    if not content_path.startswith("/"):
        raise InvalidPathError(content_path, "content paths must start with '/'")

    parts = tuple(part for part in content_path.split("/") if part)
    for part in parts:
        if part in (".", ".."):
            raise InvalidPathError(content_path, "relative segments are not allowed")
        if not FILENAME_PATTERN.match(part):
            raise InvalidPathError(content_path, f"segment {part!r} contains disallowed characters")
    return parts


def join_content_path(parts: tuple[str, ...] | list[str]) -> str:
    return "/" + "/".join(parts)


class LayeredStore:
    """Read/write access to an ordered stack of directories."""

    def __init__(self, directories: list[Path]):
        """Initialize the store.

        Args:
            directories: Layer directories, highest priority first. The first
                directory receives all writes.
        """
        if not directories:
            raise ValueError("LayeredStore needs at least one directory")
        self.directories = [Path(d) for d in directories]

    @property
    def writable(self) -> Path:
        return self.directories[0]

    def locate(self, content_path: str) -> tuple[Path, Path] | None:
        """Find the highest-priority file for a content path.

        Returns:
            Tuple of (layer directory, file path), or None if no layer has it.
        """
        parts = split_content_path(content_path)
        for directory in self.directories:
            candidate = directory.joinpath(*parts)
            if candidate.exists():
                return directory, candidate
        return None

    async def exists(self, content_path: str) -> bool:
        return self.locate(content_path) is not None

    async def read(self, content_path: str, *, binary: bool = False) -> OriginalContent:
        """Read content from the first layer that has the path.

        Raises:
            MissingFileError: If no layer contains a file at the path.
        """
        found = self.locate(content_path)
        if found is None or not found[1].is_file():
            raise MissingFileError(content_path)

        directory, file_path = found
        if binary:
            content: str | bytes = file_path.read_bytes()
        else:
            content = file_path.read_text(encoding="utf-8")
        return OriginalContent(content=content, directory=str(directory))

    async def stat(self, content_path: str) -> os.stat_result:
        found = self.locate(content_path)
        if found is None:
            raise MissingFileError(content_path)
        return found[1].stat()

    async def create(self, content_path: str, content: str | bytes) -> None:
        """Create a file in the writable layer, making parent directories.

        Raises:
            ConflictError: If the writable layer already has the path.
        """
        parts = split_content_path(content_path)
        if not parts:
            raise InvalidPathError(content_path, "cannot write the layer root")

        target = self.writable.joinpath(*parts)
        if target.exists():
            raise ConflictError(content_path)

        target.parent.mkdir(parents=True, exist_ok=True)
        self._write(target, content)
        log.debug("Created %s in %s", content_path, self.writable)

    async def update(self, content_path: str, content: str | bytes) -> None:
        """Overwrite a file that already exists in the writable layer.

        Raises:
            MissingFileError: If the writable layer does not have the path,
                even when a lower layer does.
        """
        parts = split_content_path(content_path)
        target = self.writable.joinpath(*parts)
        if not parts or not target.is_file():
            raise MissingFileError(content_path)

        self._write(target, content)
        log.debug("Updated %s in %s", content_path, self.writable)

    async def remove(self, content_path: str) -> None:
        """Delete a file from the writable layer.

        Inherited files in lower layers are never removed; after this call a
        shadowed copy, if any, becomes visible.

        Raises:
            MissingFileError: If the writable layer does not have the path.
        """
        parts = split_content_path(content_path)
        target = self.writable.joinpath(*parts)
        if not parts or not target.is_file():
            raise MissingFileError(content_path)

        target.unlink()
        log.debug("Removed %s from %s", content_path, self.writable)

    async def list(self, content_path: str = "/") -> list[StoreItem]:
        """List a directory merged across all layers.

        Items are de-duplicated by content path; the highest-priority layer
        decides each item's type.
        """
        parts = split_content_path(content_path)
        seen: dict[str, StoreItem] = {}

        for directory in self.directories:
            folder = directory.joinpath(*parts)
            if not folder.is_dir():
                continue
            for child in sorted(folder.iterdir(), key=lambda p: p.name):
                if not FILENAME_PATTERN.match(child.name):
                    log.debug("Skipping unlisted name %r in %s", child.name, folder)
                    continue
                child_path = join_content_path((*parts, child.name))
                if child_path in seen:
                    continue
                seen[child_path] = StoreItem(
                    name=child.name,
                    content_path=child_path,
                    type=_item_type(child),
                )

        return sorted(seen.values(), key=lambda item: item.name)

    async def list_all(self) -> list[str]:
        """Return every file content path visible through the layers."""
        found: list[str] = []
        seen: set[str] = set()
        pending = ["/"]

        while pending:
            current = pending.pop(0)
            for item in await self.list(current):
                if item.type == "directory":
                    pending.append(item.content_path)
                elif item.type == "file" and item.content_path not in seen:
                    seen.add(item.content_path)
                    found.append(item.content_path)

        return found

    def content_path_for(self, file_path: Path) -> str | None:
        """Map an absolute file path inside any layer back to its content path."""
        resolved = Path(file_path).resolve()
        for directory in self.directories:
            try:
                rel = resolved.relative_to(Path(directory).resolve())
            except ValueError:
                continue
            return join_content_path(rel.parts)
        return None

    @staticmethod
    def _write(target: Path, content: str | bytes) -> None:
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            # newline="" keeps LF endings on every platform
            with target.open("w", encoding="utf-8", newline="") as handle:
                handle.write(normalize_content(content))


def _item_type(path: Path) -> str:
    if path.is_dir():
        return "directory"
    if path.is_file():
        return "file"
    return "other"
