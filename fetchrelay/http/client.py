# fetchrelay/http/client.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Protocol, Tuple

import http.client
import logging
import ssl
import time
import urllib.error
import urllib.request

from fetchrelay.http.headers import get_ci, set_ci

logger = logging.getLogger(__name__)

# urllib manages these itself; forwarding the caller's copies breaks framing
_REQUEST_SKIP = {"host", "content-length", "transfer-encoding", "connection"}


class FetchErrorKind(str, Enum):
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    FETCH_ERROR = "FETCH_ERROR"
    INVALID_URL = "INVALID_URL"
    RESPONSE_TOO_LARGE = "RESPONSE_TOO_LARGE"
    # normally reported via UpstreamResponse.truncated, not raised
    TRUNCATED_BODY = "TRUNCATED_BODY"
    UNKNOWN = "UNKNOWN"


class UpstreamError(Exception):
    """A failed round trip, classified by kind."""

    def __init__(self, kind: FetchErrorKind, message: str = "") -> None:
        self.kind = kind
        self.message = message or kind.value
        super().__init__(f"{kind.value}: {self.message}")


# ---- request/response models ----


@dataclass
class UpstreamRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def set_header(self, name: str, value: str) -> None:
        set_ci(self.headers, name, value)


@dataclass
class UpstreamResponse:
    status: int
    headers: Dict[str, List[str]]
    body: bytes
    truncated: bool = False
    elapsed_ms: int = 0


class Transport(Protocol):
    def fetch(self, request: UpstreamRequest, deadline: float) -> UpstreamResponse:
        ...


# ---- small helpers ----


def _clamp(b: bytes, max_bytes: int | None) -> Tuple[bytes, bool]:
    if max_bytes is None or len(b) <= max_bytes:
        return b, False
    return b[:max_bytes], True


def _collect_headers(msg) -> Dict[str, List[str]]:
    """Group header values by name (case-insensitive, first spelling wins)."""
    out: Dict[str, List[str]] = {}
    names: Dict[str, str] = {}
    for k, v in msg.items():
        lk = k.lower()
        if lk == "transfer-encoding":
            # body is already de-chunked by http.client
            continue
        name = names.setdefault(lk, k)
        out.setdefault(name, []).append(v)
    return out


def _classify_url_error(e: urllib.error.URLError) -> UpstreamError:
    reason = e.reason
    if isinstance(reason, TimeoutError):
        return UpstreamError(FetchErrorKind.DEADLINE_EXCEEDED, str(reason))
    if isinstance(reason, str):
        # urllib only uses bare string reasons for URL shape problems
        # ("unknown url type", "no host given", ...)
        return UpstreamError(FetchErrorKind.INVALID_URL, reason)
    return UpstreamError(FetchErrorKind.FETCH_ERROR, str(reason))


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    """Hand 3xx responses back to the caller instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


class _CallerContentTypeOnly(urllib.request.BaseHandler):
    """
    Runs after HTTPHandler and drops the form-urlencoded Content-Type it adds
    to bodies the caller sent without one.
    """

    handler_order = 600

    def http_request(self, req):
        if "Content-type" not in req.headers:
            req.unredirected_hdrs.pop("Content-type", None)
        return req

    https_request = http_request


# ---- transport ----


class UrllibTransport:
    """
    One upstream round trip per fetch() call, bounded by `deadline` seconds.
      resp = UrllibTransport(max_size=...).fetch(UpstreamRequest(...), 30.0)
    HTTP error statuses come back as ordinary responses; everything else that
    goes wrong is raised as UpstreamError with a FetchErrorKind.
    """

    def __init__(
        self,
        max_size: int = 32 * 1024 * 1024,
        verify_tls: bool = True,
    ) -> None:
        self.max_size = int(max_size)
        self._ssl_ctx = ssl.create_default_context()
        if not verify_tls:
            self._ssl_ctx.check_hostname = False
            self._ssl_ctx.verify_mode = ssl.CERT_NONE
        self._opener = urllib.request.build_opener(
            _NoRedirect(),
            _CallerContentTypeOnly(),
            urllib.request.HTTPSHandler(context=self._ssl_ctx),
        )
        # only the caller's headers go upstream (no Python-urllib User-Agent)
        self._opener.addheaders = []

    def to_urllib(self, request: UpstreamRequest) -> urllib.request.Request:
        """Build a urllib Request with headers/body/method."""
        req = urllib.request.Request(
            url=request.url, data=request.body or None, method=request.method
        )
        for k, v in (request.headers or {}).items():
            if k.lower() in _REQUEST_SKIP:
                continue
            req.add_header(k, v)
        return req

    def fetch(self, request: UpstreamRequest, deadline: float) -> UpstreamResponse:
        try:
            req = self.to_urllib(request)
        except ValueError as e:
            raise UpstreamError(FetchErrorKind.INVALID_URL, str(e)) from e

        logger.debug("%s %s deadline=%.1fs", request.method, request.url, deadline)
        t0 = time.time()
        try:
            resp = self._opener.open(req, timeout=float(deadline))
        except urllib.error.HTTPError as e:
            # HTTPError doubles as the response object
            resp = e
        except urllib.error.URLError as e:
            raise _classify_url_error(e) from e
        except TimeoutError as e:
            raise UpstreamError(FetchErrorKind.DEADLINE_EXCEEDED, str(e)) from e
        except (http.client.HTTPException, OSError) as e:
            raise UpstreamError(FetchErrorKind.FETCH_ERROR, str(e)) from e
        except ValueError as e:
            # http.client.InvalidURL, non-ASCII request targets
            raise UpstreamError(FetchErrorKind.INVALID_URL, str(e)) from e
        except Exception as e:
            raise UpstreamError(FetchErrorKind.UNKNOWN, repr(e)) from e

        try:
            return self._read(request, resp, t0)
        finally:
            try:
                resp.close()
            except OSError as e:
                logger.debug("closing upstream response failed: %s", e)

    def _read(self, request: UpstreamRequest, resp, t0: float) -> UpstreamResponse:
        headers = _collect_headers(resp.headers)
        status = getattr(resp, "status", None) or resp.getcode()

        declared = (get_ci(headers, "Content-Length") or [""])[0].strip()
        if (
            declared.isdigit()
            and int(declared) > self.max_size
            and get_ci(request.headers, "Range") is None
        ):
            raise UpstreamError(
                FetchErrorKind.RESPONSE_TOO_LARGE,
                f"Content-Length {declared} exceeds {self.max_size} bytes",
            )

        truncated = False
        try:
            raw = resp.read(self.max_size + 1)
        except http.client.IncompleteRead as e:
            raw = e.partial
            truncated = True
        except TimeoutError as e:
            raise UpstreamError(FetchErrorKind.DEADLINE_EXCEEDED, str(e)) from e
        except (http.client.HTTPException, OSError) as e:
            raise UpstreamError(FetchErrorKind.FETCH_ERROR, str(e)) from e

        body, clipped = _clamp(raw or b"", self.max_size)
        return UpstreamResponse(
            status=int(status),
            headers=headers,
            body=body,
            truncated=truncated or clipped,
            elapsed_ms=int((time.time() - t0) * 1000),
        )
