"""Pydantic models for the wiki."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class OriginalContent(BaseModel):
    """Raw stored content plus the layer directory that supplied it."""

    content: str | bytes
    directory: str  # Layer directory the file was read from


class StoreItem(BaseModel):
    """A single row of a merged directory listing."""

    name: str
    content_path: str
    type: Literal["file", "directory", "other"]


class Entry(BaseModel):
    """Cached metadata for one content path.

    Entries are replaced wholesale on update. Callers receive shared
    references and must not mutate them.
    """

    content_path: str  # Absolute, slash-prefixed, unique key
    name: str
    type: Literal["file", "directory", "other"] = "file"
    original_content: OriginalContent
    meta: dict[str, Any] = Field(default_factory=dict)
    renderability: Literal["html", "markdown", "static"]
    links: list[str] = Field(default_factory=list)  # Outgoing targets, raw as authored
    accessed: datetime | None = None
    created: datetime | None = None
    modified: datetime | None = None

    @property
    def title(self) -> str | None:
        title = self.meta.get("title")
        if title is None:
            return None
        title = str(title).strip()
        return title or None

    @property
    def keywords(self) -> list[str]:
        raw = self.meta.get("keywords")
        if raw is None:
            return []
        if isinstance(raw, str):
            items = raw.split(",")
        elif isinstance(raw, (list, tuple, set)):
            items = [str(item) for item in raw]
        else:
            items = [str(raw)]
        return [item.strip() for item in items if item and item.strip()]

    @property
    def nocontainer(self) -> bool:
        if "nocontainer" not in self.meta:
            return False
        value = self.meta["nocontainer"]
        # A bare <meta name="nocontainer"> or "nocontainer:" key opts out
        if value is None:
            return True
        if isinstance(value, str):
            return value.strip().lower() not in ("false", "no", "0")
        return bool(value)

    @property
    def text(self) -> str | None:
        """Raw content as text, or None for binary content."""
        content = self.original_content.content
        return content if isinstance(content, str) else None


class ParameterSource(str, Enum):
    """Where a parameter value came from. Kept for diagnostics only."""

    DERIVED = "derived"
    QUERY_PARAM = "query param"
    REQUEST_BODY = "request body"
    URL_FACTS = "url facts"
    SERVER_CONFIGURED = "server configured"


class ParameterLeaf(BaseModel):
    """A single parameter value."""

    kind: Literal["leaf"] = "leaf"
    value: Any
    source: ParameterSource


class ParameterNode(BaseModel):
    """A named group of parameter values."""

    kind: Literal["node"] = "node"
    children: dict[str, ParameterValue] = Field(default_factory=dict)
    source: ParameterSource


ParameterValue = Annotated[Union[ParameterLeaf, ParameterNode], Field(discriminator="kind")]

ParameterNode.model_rebuild()


class ExecuteResult(BaseModel):
    """Response from the execute boundary."""

    status: int
    content: str | bytes
    content_type: str
    content_path: str | None = None


@dataclass
class RenderResult:
    """Output of a templating pass."""

    content: str | bytes
    content_type: str = "text/html; charset=utf-8"
    links: list[str] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)
