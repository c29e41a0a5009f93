# fetchrelay/relay/retry.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from fetchrelay.config.settings import RelaySettings
from fetchrelay.http.client import (
    FetchErrorKind,
    Transport,
    UpstreamError,
    UpstreamRequest,
    UpstreamResponse,
)
from fetchrelay.http.headers import set_ci
from fetchrelay.models.messages import FetchOutcome, RelayResponse, RetryState
from fetchrelay.relay.cookies import fold_set_cookie
from fetchrelay.relay.errors import ExhaustedRetries, InvalidURL

logger = logging.getLogger(__name__)

# Kinds that get a short pause and a doubled deadline
_BACKOFF_KINDS = {FetchErrorKind.DEADLINE_EXCEEDED, FetchErrorKind.FETCH_ERROR}


@dataclass
class RetryPolicy:
    """Defines the attempt budget and pacing for one relay call."""

    max_attempts: int = 3
    deadline: float = 30.0
    retry_sleep: float = 1.0
    unknown_sleep: float = 4.0
    # upper bound of the Range header sent after RESPONSE_TOO_LARGE
    range_max: int = 1024 * 1024

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.FETCH_MAX,
            deadline=settings.DEADLINE,
            retry_sleep=settings.RETRY_SLEEP,
            unknown_sleep=settings.UNKNOWN_SLEEP,
            range_max=settings.FETCH_MAX_SIZE,
        )


def _log_retry(reason: str, attempt: int, **kwargs):
    logger.error(f"[retry] reason='{reason}' attempt={attempt} details={kwargs}")


def _header_octets(value: str) -> bytes:
    # http.client decodes header bytes as latin-1; undo that to relay them verbatim
    try:
        return value.encode("latin-1")
    except UnicodeEncodeError:
        return value.encode("utf-8")


def build_relay_response(resp: UpstreamResponse) -> RelayResponse:
    """
    Collapses upstream headers to one value per name (Set-Cookie folded) and
    applies the relay's fixed overrides. Values come out as raw header octets.
    """
    headers: Dict[str, bytes] = {}
    for name, values in resp.headers.items():
        if not values:
            continue
        if name.lower() != "set-cookie":
            headers[name] = _header_octets(values[0])
        else:
            headers["Set-Cookie"] = _header_octets(fold_set_cookie(", ".join(values)))

    if resp.status == 206:
        set_ci(headers, "Accept-Ranges", b"bytes")
        set_ci(headers, "Content-Length", str(len(resp.body)).encode("ascii"))
    set_ci(headers, "Connection", b"close")
    return RelayResponse(status=resp.status, headers=headers, content=resp.body)


class RetryController:
    """
    Runs the attempt loop for one upstream request:
      outcome = RetryController(transport, policy).run(request)
    Attempts are sequential; the request's headers (Range) and the deadline
    carry over from one attempt to the next.
    """

    def __init__(
        self,
        transport: Transport,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.state = RetryState.ATTEMPTING

    def run(self, request: UpstreamRequest) -> FetchOutcome:
        policy = self.policy
        deadline = float(policy.deadline)
        errors: List[str] = []

        for attempt in range(1, policy.max_attempts + 1):
            self.state = RetryState.ATTEMPTING
            try:
                resp = self.transport.fetch(request, deadline)
            except UpstreamError as e:
                err = e
            except Exception as e:
                err = UpstreamError(FetchErrorKind.UNKNOWN, repr(e))
            else:
                logger.debug(
                    "attempt %d: %d in %dms (url=%s)",
                    attempt,
                    resp.status,
                    resp.elapsed_ms,
                    request.url,
                )
                if resp.truncated:
                    logger.critical(
                        "upstream body truncated at %d bytes (url=%s)",
                        len(resp.body),
                        request.url,
                    )
                self.state = RetryState.SUCCESS
                return FetchOutcome(
                    state=RetryState.SUCCESS,
                    response=build_relay_response(resp),
                    attempts=attempt,
                    errors=errors,
                    deadline=deadline,
                )

            message = str(err)
            if err.kind is FetchErrorKind.INVALID_URL:
                self.state = RetryState.INVALID_URL
                return FetchOutcome(
                    state=RetryState.INVALID_URL,
                    error=InvalidURL(f"Invalid URL: {err.message}"),
                    attempts=attempt,
                    errors=errors,
                    deadline=deadline,
                )

            errors.append(message)
            self.state = RetryState.RETRYING
            more = attempt < policy.max_attempts

            if err.kind in _BACKOFF_KINDS:
                _log_retry(err.kind.value, attempt, deadline=deadline, url=request.url)
                if more:
                    self._sleep(policy.retry_sleep)
                deadline *= 2
            elif err.kind is FetchErrorKind.RESPONSE_TOO_LARGE:
                _log_retry(err.kind.value, attempt, url=request.url)
                request.set_header("Range", f"bytes=0-{policy.range_max}")
                deadline *= 2
            else:
                _log_retry("UNKNOWN", attempt, url=request.url, error=message)
                if more:
                    self._sleep(policy.unknown_sleep)

        self.state = RetryState.ABANDONED
        return FetchOutcome(
            state=RetryState.ABANDONED,
            error=ExhaustedRetries(errors),
            attempts=policy.max_attempts,
            errors=errors,
            deadline=deadline,
        )
