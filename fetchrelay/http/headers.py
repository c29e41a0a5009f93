import re
from typing import Iterable, Tuple, Union

_TEXT_CT_RE = re.compile(r"^text/")


def get_ci(headers: dict, name: str):
    ln = name.lower()
    for k, v in headers.items():
        if k.lower() == ln:
            return v
    return None


def set_ci(headers: dict, name: str, value: Union[str, bytes]) -> None:
    """Set a header, replacing any existing entry that differs only in case."""
    ln = name.lower()
    for k in [k for k in headers if k.lower() == ln]:
        del headers[k]
    headers[name] = value


def is_textual(content_type: str | None) -> bool:
    """True when the content type selects the compressed (textual) framing."""
    if not content_type:
        return False
    return bool(_TEXT_CT_RE.match(content_type))


def iter_header_lines(block: str) -> Iterable[Tuple[str, str]]:
    """
    Yields (name, value) pairs from a CRLF-separated "Name: Value" block.
    Lines without a colon are skipped; both sides are whitespace-trimmed.
    """
    for line in (block or "").split("\r\n"):
        if ":" not in line:
            continue
        name, value = line.split(":", 1)
        name = name.strip()
        if not name:
            continue
        yield name, value.strip()
