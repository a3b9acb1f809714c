"""HTTP surface: Prometheus metrics, JSON stats snapshots, index page.

+-------------------+---------------------------------------------------------+
| Path              | Behaviour                                               |
+===================+=========================================================+
| ``/metrics``      | Prometheus text exposition of the owned registry        |
+-------------------+---------------------------------------------------------+
| ``/stats?type=task`` | Latest aggregated task event logs, ``[]`` if none    |
+-------------------+---------------------------------------------------------+
| ``/stats?type=all``  | Latest full task listing, ``[]`` if none             |
+-------------------+---------------------------------------------------------+
| ``/stats`` (other)| JSON error object (HTTP 200)                            |
+-------------------+---------------------------------------------------------+
| ``/``             | Static HTML page with links                             |
+-------------------+---------------------------------------------------------+

Handlers only *read* shared state; the schedulers are the only writers.  They
are plain ``def`` functions so that rendering the registry runs in the
threadpool instead of on the event loop that drives the schedulers.

Typical usage::

    app = create_app(metrics, task_stats_cache, all_tasks_cache)
    server = build_server(app, ":8080")
    await server.serve()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from apatit.core.settings import split_listen_address
from apatit.core.version import VERSION

if TYPE_CHECKING:
    from apatit.orchestrator.metrics import ExporterMetrics
    from apatit.storage.cache import SeriesCache

__all__ = ["JSON_MEDIA_TYPE", "create_app", "build_server"]

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE: Final[str] = "application/json; charset=utf-8"

_EMPTY_JSON: Final[bytes] = b"[]"

_INVALID_TYPE: Final[bytes] = (
    b"{\"error\":\"Invalid or missing 'type' parameter. Use 'type=task' or 'type=all'.\"}"
)

_INDEX_HTML: Final[str] = """
<html><head><title>APATIT</title></head><body>
<h1>APATIT</h1>
<h2>Advanced Ping-Admin Task Indicators Transducer</h2>
<p><a href='/metrics'>Metrics</a></p>
<p><a href='/stats?type=task'>Tasks JSON</a></p>
<p><a href='/stats?type=all'>All Tasks Info JSON</a></p>
</body></html>"""


def create_app(
    metrics: ExporterMetrics,
    task_stats_cache: SeriesCache,
    all_tasks_cache: SeriesCache,
) -> FastAPI:
    """Build the FastAPI application over the shared state objects."""
    app = FastAPI(
        title="APATIT",
        version=VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    caches: dict[str, SeriesCache] = {"task": task_stats_cache, "all": all_tasks_cache}

    @app.get("/metrics")
    def get_metrics() -> Response:
        return Response(content=metrics.render(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/stats")
    def get_stats(data_type: str | None = Query(default=None, alias="type")) -> Response:
        cache = caches.get(data_type or "")
        body = cache.read() if cache is not None else _INVALID_TYPE
        return Response(content=body or _EMPTY_JSON, media_type=JSON_MEDIA_TYPE)

    @app.get("/", response_class=HTMLResponse)
    def index() -> HTMLResponse:
        return HTMLResponse(_INDEX_HTML)

    return app


def build_server(app: FastAPI, listen_address: str, *, log_level: str = "info") -> uvicorn.Server:
    """Return a :class:`uvicorn.Server` bound to *listen_address* (``host:port``).

    Uvicorn is told not to install its own logging config so records flow
    through the handler set up by :func:`~apatit.core.logging_config.configure_logging`.
    """
    host, port = split_listen_address(listen_address)
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=log_level.lower(),
        log_config=None,
        access_log=False,
    )
    logger.info("Starting HTTP server on %s:%d", host, port)
    return uvicorn.Server(config)
