# fetchrelay/relay/handler.py
from __future__ import annotations

import hmac
import html
import logging
import re
import time
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from fetchrelay.config.settings import RelaySettings, get_settings
from fetchrelay.http.client import Transport, UpstreamRequest, UrllibTransport
from fetchrelay.http.headers import iter_header_lines
from fetchrelay.models.messages import FetchOutcome, RelayRequest
from fetchrelay.relay import codec
from fetchrelay.relay.errors import (
    MalformedRequest,
    RelayError,
    UnsupportedScheme,
    UpstreamConstructionFailure,
    WrongPassword,
)
from fetchrelay.relay.retry import RetryController, RetryPolicy

logger = logging.getLogger(__name__)

# RFC 7230 token
_METHOD_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

NOTIFY_TEMPLATE = (
    "<h2>Fetch Relay Info</h2><hr noshade='noshade'>"
    "<p>{method} '{url}'</p><p>Return Code: {status}</p><p>Message: {message}</p>"
)


def render_notification(method: str, url: str, status: int, message: str) -> bytes:
    content = NOTIFY_TEMPLATE.format(
        method=html.escape(method),
        url=html.escape(url),
        status=int(status),
        message=html.escape(message),
    ).encode("utf-8")
    return codec.render_response(status, {"Content-Type": "text/html"}, content)


def build_upstream_request(relay: RelayRequest) -> UpstreamRequest:
    method = relay.method or "GET"
    if not _METHOD_RE.match(method):
        raise UpstreamConstructionFailure(f"invalid method {method!r}")
    try:
        urlsplit(relay.url)
    except ValueError as e:
        raise UpstreamConstructionFailure(f"invalid url: {e}") from e

    request = UpstreamRequest(method=method, url=relay.url, body=relay.payload)
    for name, value in iter_header_lines(relay.headers):
        request.set_header(name, value)
    return request


class RelayHandler:
    """
    Handles one relay call end to end:
      frames = RelayHandler(settings, transport).handle(post_body)
    The return value is the complete response body for the hosting endpoint.
    """

    def __init__(
        self,
        settings: Optional[RelaySettings] = None,
        transport: Optional[Transport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.transport = transport or UrllibTransport(
            max_size=self.settings.UPSTREAM_MAX_SIZE,
            verify_tls=self.settings.VERIFY_TLS,
        )
        self.policy = RetryPolicy.from_settings(self.settings)
        self._sleep = sleep

    def handle(self, body: bytes) -> bytes:
        try:
            relay = RelayRequest.from_fields(codec.decode_request_body(body))
        except MalformedRequest as e:
            logger.critical("relay call dropped: %s", e)
            return render_notification("", "", e.status, e.message)

        frames: List[bytes] = []
        for check in (self._check_password, self._check_scheme):
            try:
                check(relay)
            except RelayError as e:
                logger.warning("%s %s rejected: %s", relay.method, relay.url, e)
                frames.append(self.notify(relay, e))
                if self.settings.HALT_ON_REJECTION:
                    return b"".join(frames)

        try:
            request = build_upstream_request(relay)
        except UpstreamConstructionFailure as e:
            logger.error("%s %s: %s", relay.method, relay.url, e)
            frames.append(self.notify(relay, e))
            return b"".join(frames)

        outcome = self.fetch(request)
        frames.append(self.render_outcome(relay, outcome))
        return b"".join(frames)

    def fetch(self, request: UpstreamRequest) -> FetchOutcome:
        controller = RetryController(self.transport, self.policy, sleep=self._sleep)
        return controller.run(request)

    def render_outcome(self, relay: RelayRequest, outcome: FetchOutcome) -> bytes:
        if outcome.ok:
            r = outcome.response
            logger.info(
                "%s %s -> %d (%d bytes, attempts=%d)",
                relay.method,
                relay.url,
                r.status,
                len(r.content),
                outcome.attempts,
            )
            return codec.render_response(r.status, r.headers, r.content)

        logger.error(
            "%s %s gave up (%s after %d attempt(s))",
            relay.method,
            relay.url,
            outcome.state.value,
            outcome.attempts,
        )
        return self.notify(relay, outcome.error)

    def notify(self, relay: RelayRequest, error: RelayError) -> bytes:
        return render_notification(relay.method, relay.url, error.status, error.message)

    def _check_password(self, relay: RelayRequest) -> None:
        expected = self.settings.PASSWORD
        if not expected:
            return
        supplied = relay.password
        if supplied is None or not hmac.compare_digest(
            supplied.encode("utf-8"), expected.encode("utf-8")
        ):
            raise WrongPassword()

    def _check_scheme(self, relay: RelayRequest) -> None:
        if not relay.has_http_scheme:
            raise UnsupportedScheme()
