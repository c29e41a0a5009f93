# fetchrelay/relay/errors.py
from __future__ import annotations

from typing import List, Optional


class RelayError(Exception):
    """
    A relay condition that ends the call with a notification.
    `status` is the inner status the caller sees inside the framed response.
    """

    status: int = 500
    default_message: str = "Relay Error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.status}] {self.message}"


class MalformedRequest(RelayError):
    status = 400
    default_message = "Malformed Request"


class WrongPassword(RelayError):
    status = 403
    default_message = "Wrong Password."


class UnsupportedScheme(RelayError):
    status = 501
    default_message = "Unsupported Scheme"


class InvalidURL(RelayError):
    status = 501
    default_message = "Invalid URL"


class UpstreamConstructionFailure(RelayError):
    status = 500
    default_message = "building the upstream request failed"


class ExhaustedRetries(RelayError):
    status = 502

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Fetch Server Failed: {self.errors}")
