"""Exceptions raised by the wiki core.

Each error carries the HTTP-style status and a short code that the execute
boundary reports to its caller. Messages only ever mention content paths,
never absolute filesystem locations.
"""

from __future__ import annotations

STATUS_OK = 200
STATUS_VALIDATION = 400
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 422
# A directive in a document could not be satisfied (file:line in the message)
STATUS_DIRECTIVE_FAILED = 424
STATUS_INTERNAL = 500


class WikiError(Exception):
    """Base class for wiki errors."""

    status = STATUS_INTERNAL
    code = "INTERNAL_ERROR"


class InternalError(WikiError):
    """Unexpected failure with no better category."""


class MissingFileError(WikiError):
    """The content path is not present in any layer."""

    status = STATUS_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, content_path: str) -> None:
        self.content_path = content_path
        super().__init__(f"File not found: {content_path}")


class ConflictError(WikiError):
    """Create was attempted on a path that already exists in the writable layer."""

    status = STATUS_CONFLICT
    code = "CONFLICT"

    def __init__(self, content_path: str) -> None:
        self.content_path = content_path
        super().__init__(f"File already exists: {content_path}")


class InvalidPathError(WikiError):
    """A content path failed validation (bad characters, traversal)."""

    status = STATUS_VALIDATION
    code = "VALIDATION"

    def __init__(self, content_path: str, reason: str) -> None:
        self.content_path = content_path
        self.reason = reason
        super().__init__(f"Invalid path {content_path!r}: {reason}")


class DirectiveError(WikiError):
    """A templating directive could not be satisfied."""

    status = STATUS_DIRECTIVE_FAILED
    code = "DIRECTIVE_FAILED"

    def __init__(self, message: str, file: str | None = None, line: int | None = None) -> None:
        self.message = message
        self.file = file
        self.line = line
        super().__init__(message)

    def located(self, file: str, line: int | None) -> "DirectiveError":
        """Return this error pinned to a file and line, keeping existing location if set."""
        if self.file is None:
            self.file = file
        if self.line is None:
            self.line = line
        return self

    def __str__(self) -> str:
        if self.file is None:
            return self.message
        where = self.file if self.line is None else f"{self.file}:{self.line}"
        return f"{where}: {self.message}"


class ExpressionError(DirectiveError):
    """An embedded expression failed to tokenize, parse, or evaluate."""

    def __init__(self, message: str, source: str = "", position: int | None = None) -> None:
        self.source = source
        self.position = position
        detail = message
        if source:
            detail = f"{message} in expression {source!r}"
            if position is not None:
                detail += f" at offset {position}"
        super().__init__(detail)


class MetadataExtractionError(WikiError):
    """Indexing a single file failed."""

    def __init__(self, content_path: str, cause: BaseException) -> None:
        self.content_path = content_path
        self.cause = cause
        super().__init__(f"Failed to extract metadata from {content_path}: {cause}")


class InvalidContentError(WikiError):
    """Written content could not be indexed; the write was rolled back."""

    status = STATUS_VALIDATION
    code = "VALIDATION"

    def __init__(self, content_path: str, cause: BaseException) -> None:
        self.content_path = content_path
        self.cause = cause
        super().__init__(f"Invalid content for {content_path}: {cause}")
