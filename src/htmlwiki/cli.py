#!/usr/bin/env python3
"""
htmlwiki: CLI for a layered HTML/Markdown wiki

Usage:
    htmlwiki render /index.html             # Render a page to stdout
    htmlwiki search "query"                 # Fuzzy search
    htmlwiki backlinks /notes/a.html        # Pages linking to a page
    htmlwiki titles                         # Title -> path index
    htmlwiki serve --watch                  # HTTP server with live re-indexing
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__ as HTMLWIKI_VERSION

if TYPE_CHECKING:
    from .core import Wiki


def run_async(coro):
    """Drive a coroutine from a synchronous click command."""
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def format_table(rows: list[dict], columns: list[str], max_width: int = 60) -> str:
    """Render rows as aligned columns under an upper-cased header.

    Cells longer than ``max_width`` are cut and end in "...".
    """
    if not rows:
        return ""

    def clip(value: object) -> str:
        text = str(value)
        return text if len(text) <= max_width else text[: max_width - 3] + "..."

    cells = [[clip(row.get(col, "")) for col in columns] for row in rows]
    widths = [max(len(col), *(len(line[i]) for line in cells)) for i, col in enumerate(columns)]

    header = "  ".join(col.upper().ljust(width) for col, width in zip(columns, widths))
    rule = "  ".join("-" * width for width in widths)
    body = ["  ".join(cell.ljust(width) for cell, width in zip(line, widths)).rstrip() for line in cells]
    return "\n".join([header, rule, *body])


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# ─────────────────────────────────────────────────────────────────────────────
# Error Handling
# ─────────────────────────────────────────────────────────────────────────────

# Checked in order; subclasses come before their bases
_CLICK_ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (click.BadParameter, "INVALID_ARGUMENT"),
    (click.MissingParameter, "MISSING_ARGUMENT"),
    (click.NoSuchOption, "UNKNOWN_OPTION"),
    (UsageError, "USAGE_ERROR"),
    (ClickException, "CLI_ERROR"),
)


def format_json_error(code: str, message: str, content_path: str | None = None) -> str:
    """Serialize an error for --json-errors: {"error": {"code", "message"[, "path"]}}."""
    error: dict[str, str] = {"code": code, "message": message}
    if content_path:
        error["path"] = content_path
    return json.dumps({"error": error})


def error_code_for(exc: Exception) -> str:
    """Stable error code for wiki, configuration and click errors."""
    from .config import ConfigurationError
    from .errors import WikiError

    if isinstance(exc, WikiError):
        return exc.code
    if isinstance(exc, ConfigurationError):
        return "CONFIGURATION"
    for exc_type, code in _CLICK_ERROR_CODES:
        if isinstance(exc, exc_type):
            return code
    return "INTERNAL_ERROR"


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Report an error on stderr (as JSON with --json-errors) and exit."""
    if ctx.obj and ctx.obj.get("json_errors"):
        payload = format_json_error(error_code_for(error), str(error), getattr(error, "content_path", None))
        click.echo(payload, err=True)
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(exit_code)


class JsonErrorGroup(click.Group):
    """Command group that reports usage errors as JSON under --json-errors.

    Unknown command names get a "Did you mean" hint.
    """

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            typed = args[0] if args else ""
            if not typed or "No such command" not in str(e):
                raise
            close = difflib.get_close_matches(typed, self.list_commands(ctx), n=1, cutoff=0.6)
            if not close:
                raise
            raise UsageError(f"No such command '{typed}'. Did you mean '{close[0]}'?") from e

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        argv = list(sys.argv[1:] if args is None else args)
        if "--json-errors" not in argv:
            return super().main(args, prog_name, complete_var, standalone_mode, **extra)

        # The flag belongs to the group but may be typed after the subcommand
        argv = ["--json-errors"] + [arg for arg in argv if arg != "--json-errors"]
        try:
            return super().main(argv, prog_name, complete_var, standalone_mode=False, **extra)
        except ClickException as e:
            click.echo(format_json_error(error_code_for(e), e.format_message()), err=True)
            raise SystemExit(1) from e


# ─────────────────────────────────────────────────────────────────────────────
# Wiki loading
# ─────────────────────────────────────────────────────────────────────────────


def _build_wiki(ctx: click.Context) -> Wiki:
    from .config import ConfigurationError, get_wiki_config
    from .core import Wiki

    try:
        config = get_wiki_config(ctx.obj.get("directories") or None)
    except ConfigurationError as e:
        _handle_error(ctx, e)
    return Wiki(config)


def _parse_param_options(ctx: click.Context, values: tuple[str, ...]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            _handle_error(ctx, click.BadParameter(f"expected key=value, got {item!r}"))
        params[key.strip()] = value
    return params


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=HTMLWIKI_VERSION, prog_name="htmlwiki")
@click.option(
    "--dir",
    "-d",
    "directories",
    multiple=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Layer directory (repeatable, highest priority first; the first is writable)",
)
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="HTMLWIKI_QUIET",
    help="Suppress warnings, show only errors and essential output",
)
@click.pass_context
def cli(ctx: click.Context, directories: tuple[Path, ...], json_errors: bool, quiet: bool):
    """htmlwiki: layered wiki of HTML and Markdown pages.

    \b
    Layers are resolved from --dir, then HTMLWIKI_DIRS, then the nearest
    .wikiconfig file. The first layer receives every write; lower layers
    are read-only and shadowed by higher ones.

    \b
    Examples:
      htmlwiki --dir pages --dir ~/shared render /
      htmlwiki render /notes/todo --param page.mode=compact
      htmlwiki search "deploy"
      htmlwiki serve --port 8080 --watch
    """
    from ._logging import configure_logging, set_quiet_mode

    configure_logging()

    ctx.ensure_object(dict)
    ctx.obj["directories"] = list(directories)
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet

    if quiet:
        set_quiet_mode(True)


@cli.command()
@click.argument("path", default="/")
@click.option("--param", "-p", "param_options", multiple=True, help="Request parameter key=value")
@click.option("--select", "selector", help="CSS selector; print only the match's inner HTML")
@click.option("--raw", is_flag=True, help="Skip the page container")
@click.option("--edit", "edit_path", help="Offer this page's source to content slots")
@click.pass_context
def render(
    ctx: click.Context,
    path: str,
    param_options: tuple[str, ...],
    selector: str | None,
    raw: bool,
    edit_path: str | None,
):
    """Render a page (by path or title) to stdout.

    \b
    Examples:
      htmlwiki render /
      htmlwiki render "Meeting Notes" --raw
      htmlwiki render /index.html --select main
    """
    from .models import ParameterSource
    from .params import params_from_mapping

    values: dict[str, Any] = _parse_param_options(ctx, param_options)
    if selector:
        values["select"] = selector
    if raw:
        values["raw"] = True
    if edit_path:
        values["edit"] = edit_path

    wiki = _build_wiki(ctx)

    async def _render():
        await wiki.load()
        params = params_from_mapping(values, ParameterSource.QUERY_PARAM)
        return await wiki.render_path(path, params)

    result = run_async(_render())
    if result.status != 200:
        click.echo(f"Error ({result.status}): {result.content}", err=True)
        sys.exit(1)

    if isinstance(result.content, bytes):
        sys.stdout.buffer.write(result.content)
    else:
        click.echo(result.content)


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", default=None, type=click.IntRange(min=1), help="Max results")
@click.option("--terse", is_flag=True, help="Output paths only (one per line)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int | None, terse: bool, as_json: bool):
    """Fuzzy search page paths, titles and contents.

    \b
    Examples:
      htmlwiki search "deployment"
      htmlwiki search "api" --limit 5 --terse
    """
    from .config import DEFAULT_SEARCH_LIMIT

    wiki = _build_wiki(ctx)

    async def _search():
        await wiki.load()
        return wiki.cache.search(query, limit=limit or DEFAULT_SEARCH_LIMIT)

    entries = run_async(_search())
    rows = [{"path": e.content_path, "title": e.title or ""} for e in entries]

    if as_json:
        echo_json(rows)
    elif terse:
        for row in rows:
            click.echo(row["path"])
    elif not rows:
        click.echo("No results found.")
    else:
        click.echo(format_table(rows, ["path", "title"]))


@cli.command()
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def backlinks(ctx: click.Context, path: str, as_json: bool):
    """List pages that link to PATH (a content path or title)."""
    from .errors import MissingFileError

    wiki = _build_wiki(ctx)

    async def _backlinks():
        await wiki.load()
        entry = wiki.find_entry(path)
        if entry is None:
            return None
        return wiki.cache.get_backlinks(entry.content_path)

    sources = run_async(_backlinks())
    if sources is None:
        _handle_error(ctx, MissingFileError(path))
    if as_json:
        echo_json(sources)
    elif not sources:
        click.echo("No backlinks.")
    else:
        for source in sources:
            click.echo(source)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def titles(ctx: click.Context, as_json: bool):
    """Show the title index."""
    wiki = _build_wiki(ctx)

    async def _titles():
        await wiki.load()
        return wiki.cache.titles()

    index = run_async(_titles())
    if as_json:
        echo_json(index)
        return

    rows = [{"title": title, "path": path} for title, path in sorted(index.items())]
    click.echo(format_table(rows, ["title", "path"]) or "No titled pages.")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on")
@click.option("--watch", is_flag=True, help="Re-index pages when files change on disk")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, watch: bool):
    """Serve the wiki over HTTP."""
    import uvicorn

    from .webapp.api import create_app

    wiki = _build_wiki(ctx)
    app = create_app(wiki, watch=watch)
    uvicorn.run(app, host=host, port=port, log_level="warning" if ctx.obj["quiet"] else "info")


def main():
    """Entry point for the htmlwiki CLI."""
    cli()


if __name__ == "__main__":
    main()
