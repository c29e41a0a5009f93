import re
from typing import List

# The tail of "Expires=Thu, 01 Jan 2030 00:00:00 GMT" after splitting on ", "
_CONTINUATION_RE = re.compile(r"^[^ =]+ ")

SET_COOKIE_JOIN = "\r\nSet-Cookie: "


def split_set_cookie(value: str) -> List[str]:
    """Splits a comma-joined Set-Cookie value back into individual cookies."""
    cookies: List[str] = []
    for fragment in (value or "").split(", "):
        if cookies and _CONTINUATION_RE.match(fragment):
            cookies[-1] = f"{cookies[-1]}, {fragment}"
        else:
            cookies.append(fragment)
    return cookies


def fold_set_cookie(value: str) -> str:
    return SET_COOKIE_JOIN.join(split_set_cookie(value))
