"""
FastAPI application factory.

``create_app()`` wires the exporter, error handlers and lifespan events into
a single ``FastAPI`` instance.

Manifesto:
    The app factory is the single composition root. Routes only parse the
    request (filters, deadline, probe target) and render what the
    :class:`~pgspine.orchestration.exporter.Exporter` produced.

Routes:
    GET  /           landing page linking the metrics path
    GET  /metrics    local scrape of every configured target
    GET  /probe      scrape of ``target``, optionally via ``auth_module``
    POST /-/reload   reload the config file and the query files

Tags:
    pgspine, api, app-factory, composition-root, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from pgspine import __version__
from pgspine.api.errors import exporter_error_handler
from pgspine.core.errors import ExporterError
from pgspine.core.logging import get_logger
from pgspine.core.settings import ExporterSettings, get_settings
from pgspine.orchestration.exporter import Exporter

logger = get_logger("pgspine.api")

SCRAPE_TIMEOUT_HEADER = "X-Prometheus-Scrape-Timeout-Seconds"

LANDING_PAGE = """<html>
<head><title>Postgres Exporter</title></head>
<body>
<h1>Postgres Exporter</h1>
<p><a href="{path}">Metrics</a></p>
</body>
</html>
"""


def scrape_timeout(request: Request, default: float) -> float:
    """Deadline for this request: the Prometheus header, else ``default``."""
    raw = request.headers.get(SCRAPE_TIMEOUT_HEADER)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("api.bad_scrape_timeout", value=raw)
        return default
    return value if value > 0 else default


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup / shutdown hooks."""
    exporter: Exporter = app.state.exporter
    logger.info("exporter starting", version=app.version, collectors=exporter.describe()["collectors"])
    yield
    await exporter.close()
    logger.info("exporter shutting down")


def create_app(
    *,
    settings: ExporterSettings | None = None,
    exporter: Exporter | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : ExporterSettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    exporter : Exporter | None
        A ready exporter. When ``None`` one is built from ``settings`` and
        loaded; a bad query file, config file or missing DSN raises here.
    """
    settings = settings or get_settings()
    if exporter is None:
        exporter = Exporter(settings)
        exporter.load()

    app = FastAPI(
        title="pgspine",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.exporter = exporter

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(ExporterError, exporter_error_handler)

    # ── Routes ───────────────────────────────────────────────────────

    @app.get("/", response_class=HTMLResponse, include_in_schema=False)
    async def landing() -> HTMLResponse:
        return HTMLResponse(LANDING_PAGE.format(path=settings.telemetry_path))

    @app.get(settings.telemetry_path, response_class=Response)
    async def metrics(
        request: Request,
        collect: list[str] | None = Query(default=None, alias="collect[]"),
    ) -> Response:
        """Scrape every configured target."""
        sink = await exporter.scrape_local(
            filters=collect,
            timeout=scrape_timeout(request, settings.scrape_timeout),
        )
        return Response(content=Exporter.render(sink), media_type=CONTENT_TYPE_LATEST)

    @app.get("/probe", response_class=Response)
    async def probe(
        request: Request,
        target: str = Query(default=""),
        auth_module: str = Query(default=""),
        collect: list[str] | None = Query(default=None, alias="collect[]"),
    ) -> Response:
        """Scrape ``target`` through a fresh, bounded connection."""
        sink = await exporter.probe_target(
            target,
            auth_module=auth_module or None,
            filters=collect,
            timeout=scrape_timeout(request, settings.scrape_timeout),
        )
        return Response(content=Exporter.render(sink, include_self_metrics=False), media_type=CONTENT_TYPE_LATEST)

    @app.post("/-/reload")
    async def reload() -> JSONResponse:
        """Reload the config file and the query files."""
        exporter.reload()
        return JSONResponse({"status": "reloaded", "namespaces": len(exporter.library.current)})

    return app
