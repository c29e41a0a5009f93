from __future__ import annotations

import asyncio
import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from fetchrelay.config.settings import RelaySettings, get_settings
from fetchrelay.http.client import Transport
from fetchrelay.logging_utils import RequestLoggingMiddleware, setup_logging
from fetchrelay.relay import codec
from fetchrelay.relay.handler import RelayHandler, render_notification

# Load .env (password, limits, LOG_* switches)
load_dotenv()

logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head>
    <meta http-equiv="Content-Type" content="text/html; charset=utf-8" />
    <title>Fetch Relay {version} is running</title>
</head>
<body>
    <table width="800" border="0" align="center">
        <tr><td align="center"><hr></td></tr>
        <tr><td align="center"><b><h1>Fetch Relay {version} is running</h1></b></td></tr>
        <tr><td align="center"><hr></td></tr>
        <tr><td align="center">
            This endpoint relays encoded HTTP requests for a client-side proxy.
            POST requests only; there is nothing to browse here.
        </td></tr>
        <tr><td align="center"><hr></td></tr>
    </table>
</body>
</html>
"""


def envelope(body: bytes) -> Response:
    """Outer response for relay calls: always 200 image/gif, the frame carries the truth."""
    return Response(
        content=body,
        status_code=codec.ENVELOPE_STATUS,
        media_type=codec.ENVELOPE_CONTENT_TYPE,
    )


def create_app(
    settings: Optional[RelaySettings] = None,
    transport: Optional[Transport] = None,
) -> FastAPI:
    """
    Build the ASGI app. Single composition root used by:
    - `fetchrelay` console script / uvicorn (module-level `app`)
    - tests: TestClient(create_app(settings, transport=stub))
    """
    settings = settings or get_settings()
    setup_logging()

    handler = RelayHandler(settings, transport)

    app = FastAPI(title="Fetch Relay", version=settings.VERSION)
    app.state.settings = settings
    app.state.relay_handler = handler
    app.add_middleware(RequestLoggingMiddleware)

    # ---------------------------
    # Relay endpoint
    # ---------------------------
    @app.post(settings.FETCH_PATH, include_in_schema=False)
    async def relay(request: Request) -> Response:
        body = await request.body()
        try:
            out = await asyncio.to_thread(handler.handle, body)
        except Exception as e:
            logger.exception("relay call failed: %s", e)
            out = render_notification("", "", 500, f"Relay Error: {e}")
        return envelope(out)

    @app.get(settings.FETCH_PATH, response_class=HTMLResponse)
    async def landing() -> HTMLResponse:
        return HTMLResponse(LANDING_PAGE.format(version=settings.VERSION))

    # ---------------------------
    # Health / version
    # ---------------------------
    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "ok"

    @app.get("/api/version", response_class=PlainTextResponse)
    async def version() -> str:
        return settings.VERSION

    # ---------------------------
    # Global error handler
    # ---------------------------
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return envelope(
            render_notification(request.method, str(request.url), 500, str(exc))
        )

    return app


app = create_app()
