"""Core read/render/write pipeline for htmlwiki.

``Wiki.execute`` is the single entry point used by the HTTP adapter and
the CLI. It takes a command (create, read, update, delete) and a parameter
tree and returns an ``ExecuteResult``; errors are translated to a status and
message here and never escape.

Parameters understood by the commands:

    contentPath   target path (url facts); "/" means /index.html,
                  paths without an extension get ".html"
    content       new file text for create/update (request body)
    select        CSS selector; read returns only the match's inner HTML
    raw           flag; skips the page container, honoured by if="raw" slots
    edit          content path whose source is offered to content slots
"""

import logging
import mimetypes
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from .cache import ContentCache, with_default_extension
from .config import MAX_RENDER_DEPTH, WikiConfig
from .errors import (
    STATUS_INTERNAL,
    STATUS_OK,
    STATUS_VALIDATION,
    DirectiveError,
    InvalidPathError,
    MissingFileError,
    WikiError,
)
from .models import Entry, ExecuteResult, ParameterNode, ParameterSource, RenderResult
from .params import get_param, has_param, merge_params, params_from_mapping
from .parser import parse_frontmatter, render_markdown
from .store import LayeredStore, split_content_path
from .templating import TemplateContext

log = logging.getLogger(__name__)

COMMANDS = ("create", "read", "update", "delete")

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


def validate_request(command: str, params: ParameterNode) -> list[str]:
    """Collect every problem with a request instead of stopping at the first.

    Returns:
        Human-readable issues; empty when the request is valid.
    """
    issues: list[str] = []

    if command not in COMMANDS:
        issues.append(f"Unknown command {command!r} (expected one of {', '.join(COMMANDS)})")

    content_path = get_param(params, "contentPath")
    if not content_path:
        issues.append("contentPath is required")
    # read also accepts a bare page title
    elif content_path.startswith("/") or command != "read":
        try:
            parts = split_content_path(content_path)
        except InvalidPathError as e:
            issues.append(f"contentPath {content_path!r}: {e.reason}")
        else:
            if not parts and command in ("create", "update", "delete"):
                issues.append(f"contentPath {content_path!r}: cannot {command} the wiki root")

    if command == "update" and get_param(params, "content") is None:
        issues.append("content is required for update")

    return issues


def _static_content_type(entry: Entry) -> str:
    guessed, _ = mimetypes.guess_type(entry.name)
    if guessed is None:
        return TEXT_CONTENT_TYPE if entry.text is not None else "application/octet-stream"
    if guessed.startswith("text/") and entry.text is not None:
        return f"{guessed}; charset=utf-8"
    return guessed


class Wiki:
    """A layered wiki: store, cache and render pipeline."""

    def __init__(self, config: WikiConfig, clock: Callable[[], datetime] | None = None):
        self.config = config
        self.store = LayeredStore(config.directories)
        self.cache = ContentCache(self.store, exclude=config.exclude, clock=clock)

    @classmethod
    def from_directories(cls, directories: list[Path], **kwargs) -> "Wiki":
        return cls(WikiConfig(directories=[Path(d) for d in directories]), **kwargs)

    async def load(self) -> None:
        await self.cache.load()

    # ── execute boundary ────────────────────────────────────────────────────

    async def execute(self, command: str, parameters: ParameterNode) -> ExecuteResult:
        issues = validate_request(command, parameters)
        if issues:
            return ExecuteResult(
                status=STATUS_VALIDATION,
                content="\n".join(issues),
                content_type=TEXT_CONTENT_TYPE,
            )

        handlers = {
            "create": self._create,
            "read": self._read,
            "update": self._update,
            "delete": self._delete,
        }
        try:
            return await handlers[command](parameters)
        except WikiError as e:
            log.info("%s %s failed: %s", command, get_param(parameters, "contentPath"), e)
            return ExecuteResult(
                status=e.status,
                content=str(e),
                content_type=TEXT_CONTENT_TYPE,
                content_path=getattr(e, "content_path", None),
            )
        except Exception:
            log.exception("Unexpected error during %s", command)
            return ExecuteResult(
                status=STATUS_INTERNAL,
                content="Internal error",
                content_type=TEXT_CONTENT_TYPE,
            )

    def find_entry(self, requested: str) -> Entry | None:
        """Resolve a requested path or title to an entry."""
        for candidate in (requested, requested.lstrip("/"), with_default_extension(requested)):
            entry = self.cache.get_by_path_or_title(candidate)
            if entry is not None:
                return entry
        return None

    async def _read(self, params: ParameterNode) -> ExecuteResult:
        requested = get_param(params, "contentPath") or "/"
        entry = self.find_entry(requested)
        if entry is None:
            raise MissingFileError(requested)

        edit_contents = None
        edit_target = get_param(params, "edit")
        if edit_target:
            edit_entry = self.find_entry(edit_target)
            if edit_entry is None:
                raise MissingFileError(edit_target)
            edit_contents = edit_entry.text or ""

        result = await self.render_entry(
            entry,
            params,
            selector=get_param(params, "select") or None,
            file_contents_to_edit=edit_contents,
            use_container=True,
        )
        return ExecuteResult(
            status=STATUS_OK,
            content=result.content,
            content_type=result.content_type,
            content_path=entry.content_path,
        )

    async def _create(self, params: ParameterNode) -> ExecuteResult:
        content_path = with_default_extension(get_param(params, "contentPath"))
        await self.cache.create_file_and_directories(content_path, get_param(params, "content") or "")
        return self._written("Created", content_path)

    async def _update(self, params: ParameterNode) -> ExecuteResult:
        content_path = with_default_extension(get_param(params, "contentPath"))
        await self.cache.update_file(content_path, get_param(params, "content"))
        return self._written("Updated", content_path)

    async def _delete(self, params: ParameterNode) -> ExecuteResult:
        content_path = with_default_extension(get_param(params, "contentPath"))
        await self.cache.remove_file(content_path)
        return self._written("Deleted", content_path)

    @staticmethod
    def _written(action: str, content_path: str) -> ExecuteResult:
        return ExecuteResult(
            status=STATUS_OK,
            content=f"{action} {content_path}",
            content_type=TEXT_CONTENT_TYPE,
            content_path=content_path,
        )

    # ── rendering ───────────────────────────────────────────────────────────

    async def render_entry(
        self,
        entry: Entry,
        params: ParameterNode,
        *,
        selector: str | None = None,
        file_contents_to_edit: str | None = None,
        use_container: bool = False,
        depth: int = 0,
    ) -> RenderResult:
        """Render one entry with the given parameters.

        Static files are returned as stored. HTML and Markdown pass through
        the templating engine. Top-level page reads are wrapped in the
        container template unless the page or request opts out.
        """
        if entry.renderability == "static":
            return RenderResult(
                content=entry.original_content.content,
                content_type=_static_content_type(entry),
            )

        if use_container and not selector and self._wants_container(entry, params):
            return await self._render_in_container(entry, params, file_contents_to_edit)

        source = entry.text or ""
        if entry.renderability == "markdown":
            source = render_markdown(parse_frontmatter(source, entry.content_path).rest_of_content)

        context = TemplateContext(
            content_path=entry.content_path,
            params=params,
            file_contents_to_edit=file_contents_to_edit,
            render=self._nested_renderer(depth + 1, file_contents_to_edit),
        )
        return await self.cache.engine.render(source, context, selector=selector)

    def _wants_container(self, entry: Entry, params: ParameterNode) -> bool:
        if entry.nocontainer or has_param(params, "raw"):
            return False
        container = self.cache.get_by_content_path(self.config.container)
        return (
            container is not None
            and container.renderability == "html"
            and container.content_path != entry.content_path
        )

    async def _render_in_container(
        self,
        entry: Entry,
        params: ParameterNode,
        file_contents_to_edit: str | None,
    ) -> RenderResult:
        container = self.cache.get_by_content_path(self.config.container)
        container_params = merge_params(
            params,
            params_from_mapping({"contentPath": entry.content_path}, ParameterSource.DERIVED),
        )
        context = TemplateContext(
            content_path=container.content_path,
            params=container_params,
            file_contents_to_edit=file_contents_to_edit,
            render=self._nested_renderer(1, file_contents_to_edit),
        )
        return await self.cache.engine.render(container.text or "", context)

    def _nested_renderer(self, depth: int, file_contents_to_edit: str | None = None):
        async def render(path: str, params: ParameterNode, selector: str | None) -> str | None:
            if depth > MAX_RENDER_DEPTH:
                raise DirectiveError(
                    f"render({path!r}) nested more than {MAX_RENDER_DEPTH} levels deep"
                )
            entry = self.find_entry(path)
            if entry is None:
                raise DirectiveError(f"render(): {MissingFileError(path)}")
            result = await self.render_entry(
                entry,
                params,
                selector=selector,
                file_contents_to_edit=file_contents_to_edit,
                depth=depth,
            )
            if isinstance(result.content, bytes):
                return None
            return result.content

        return render

    async def render_path(
        self,
        path: str,
        params: ParameterNode | None = None,
        source: ParameterSource = ParameterSource.QUERY_PARAM,
    ) -> ExecuteResult:
        """Convenience read used by the CLI."""
        params = params or params_from_mapping({}, source)
        request = merge_params(
            params,
            params_from_mapping({"contentPath": path}, ParameterSource.URL_FACTS),
        )
        return await self.execute("read", request)
