from __future__ import annotations
import json
import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# One id per relay call; X-Correlation-Id from the caller wins when present
correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"

# Endpoints polled by load balancers; only logged when they fail
QUIET_PATHS = frozenset({"/health"})

_THIRD_PARTY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


class CorrelationIdFilter(logging.Filter):
    """Stamps every record with the current call's correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_ctx.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for LOG_JSON=true deployments."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=True)


_configured = False


def _attach(filt: logging.Filter, handlers: Iterable[logging.Handler]) -> None:
    for h in handlers:
        if filt not in h.filters:
            h.addFilter(filt)


def setup_logging(level: Optional[int] = None) -> None:
    """
    Configure the root logger once per process. Safe to call from every
    create_app(); later calls are no-ops.
    """
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    filt = CorrelationIdFilter()
    root.addFilter(filt)

    if root.handlers:
        # someone (pytest, uvicorn --log-config) got there first; keep their handlers
        _attach(filt, root.handlers)
    else:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(LOG_FORMAT))
        _attach(filt, [stream])
        root.addHandler(stream)
        root.setLevel(level or logging.INFO)

    if _env_flag("LOG_JSON", False):
        for h in root.handlers:
            h.setFormatter(JsonFormatter())

    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).addFilter(filt)

    _configured = True


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a correlation id for the duration of each call and logs
    `>>` on arrival, `<<` on completion and `!!` on an escaped exception.
    LOG_REQUESTS=false silences the `>>`/`<<` lines. Nothing is added to the
    outer response: relay envelopes must look the same with or without it.
    """

    def __init__(self, app):
        super().__init__(app)
        self._logger = logging.getLogger("fetchrelay.request")
        self._enabled = _env_flag("LOG_REQUESTS", True)

    def _should_log(self, path: str) -> bool:
        return self._enabled and path not in QUIET_PATHS

    async def dispatch(self, request: Request, call_next):
        cid = request.headers.get("X-Correlation-Id") or uuid.uuid4().hex[:16]
        token = correlation_id_ctx.set(cid)
        request.state.correlation_id = cid

        method, path = request.method, request.url.path
        peer = request.client.host if request.client else "-"
        verbose = self._should_log(path)
        started = time.perf_counter()

        if verbose:
            self._logger.info(
                ">> %s %s from %s (%s bytes)",
                method,
                path,
                peer,
                request.headers.get("content-length", "0"),
            )
        try:
            response: Response = await call_next(request)
        except Exception as e:
            self._logger.exception(
                "!! %s %s failed after %.0fms: %s",
                method,
                path,
                (time.perf_counter() - started) * 1000,
                e,
            )
            raise
        else:
            if verbose:
                self._logger.info(
                    "<< %s %s %d in %.0fms",
                    method,
                    path,
                    response.status_code,
                    (time.perf_counter() - started) * 1000,
                )
            return response
        finally:
            correlation_id_ctx.reset(token)
