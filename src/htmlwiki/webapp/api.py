"""HTTP adapter: maps requests onto ``Wiki.execute``.

GET  /{path}   read, query string parameters become request parameters
POST /{path}   create, update or delete, chosen by the ``command`` body field

Both routes pass the request path as the ``contentPath`` url fact and return
the execute result as-is (status, body, content type).
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response

from ..core import Wiki
from ..models import ExecuteResult, ParameterSource
from ..params import merge_params, params_from_mapping
from ..watcher import FileWatcher

log = logging.getLogger(__name__)

WRITE_COMMANDS = ("create", "update", "delete")


def _to_response(result: ExecuteResult) -> Response:
    return Response(
        content=result.content,
        status_code=result.status,
        media_type=result.content_type,
    )


def _url_facts(path: str):
    return params_from_mapping({"contentPath": "/" + path.lstrip("/")}, ParameterSource.URL_FACTS)


async def _read_body(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await request.json()
        if not isinstance(body, dict):
            return {}
        return body
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def create_app(wiki: Wiki, watch: bool = False) -> FastAPI:
    """Build the FastAPI app around a wiki. The cache is loaded on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await wiki.load()
        watcher = None
        if watch:
            watcher = FileWatcher(wiki.cache)
            watcher.start()
        try:
            yield
        finally:
            if watcher is not None:
                watcher.stop()

    app = FastAPI(
        title="htmlwiki",
        description="Layered HTML/Markdown wiki",
        lifespan=lifespan,
    )
    app.state.wiki = wiki

    @app.get("/{path:path}")
    async def read(path: str, request: Request) -> Response:
        query = params_from_mapping(dict(request.query_params), ParameterSource.QUERY_PARAM)
        params = merge_params(query, _url_facts(path))
        return _to_response(await wiki.execute("read", params))

    @app.post("/{path:path}")
    async def write(path: str, request: Request) -> Response:
        body = await _read_body(request)
        command = str(body.pop("command", "") or "")
        if command not in WRITE_COMMANDS:
            return Response(
                content=f"command must be one of {', '.join(WRITE_COMMANDS)}",
                status_code=400,
                media_type="text/plain; charset=utf-8",
            )
        params = merge_params(
            params_from_mapping(body, ParameterSource.REQUEST_BODY),
            _url_facts(path),
        )
        result = await wiki.execute(command, params)
        log.info("%s %s -> %d", command, result.content_path or path, result.status)
        return _to_response(result)

    return app
