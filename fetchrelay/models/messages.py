# fetchrelay/models/messages.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from fetchrelay.relay.errors import RelayError


class RelayRequest(BaseModel):
    """One inbound relay call, as decoded from the encoded message."""

    model_config = ConfigDict(frozen=True)

    method: str = ""
    url: str = ""
    # CRLF-separated "Name: Value" lines
    headers: str = ""
    payload: bytes = b""
    password: Optional[str] = None

    @classmethod
    def from_fields(cls, fields: Mapping[str, bytes]) -> "RelayRequest":
        def _text(name: str, encoding: str = "utf-8") -> Optional[str]:
            raw = fields.get(name)
            if raw is None:
                return None
            return raw.decode(encoding, errors="replace")

        return cls(
            method=_text("method") or "",
            url=_text("url") or "",
            # latin-1 keeps header octets intact for http.client
            headers=_text("headers", "latin-1") or "",
            payload=fields.get("payload") or b"",
            password=_text("password"),
        )

    @property
    def has_http_scheme(self) -> bool:
        return self.url.startswith("http")


@dataclass
class RelayResponse:
    status: int
    # raw header octets, as received from upstream
    headers: Dict[str, bytes]
    content: bytes


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCESS = "success"
    INVALID_URL = "invalid_url"
    ABANDONED = "abandoned"


@dataclass
class FetchOutcome:
    """Result of one retry run: a response, or the error to notify with."""

    state: RetryState
    response: Optional[RelayResponse] = None
    error: Optional[RelayError] = None
    attempts: int = 0
    errors: List[str] = field(default_factory=list)
    deadline: float = 0.0

    @property
    def ok(self) -> bool:
        return self.response is not None
