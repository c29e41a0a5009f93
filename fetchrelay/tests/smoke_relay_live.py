#!/usr/bin/env python3
"""
Live smoke tests against a running relay (stdlib + fetchrelay codec).
Run:  RELAY_BASE=http://localhost:8080/fetch.py python smoke_relay_live.py
"""

import os
import time
import urllib.request

from fetchrelay.relay import codec

BASE = os.getenv("RELAY_BASE", "http://localhost:8080/fetch.py")
PASSWORD = os.getenv("RELAY_PASSWORD", "")


def post(fields):
    if PASSWORD and "password" not in fields:
        fields = dict(fields, password=PASSWORD)
    req = urllib.request.Request(
        BASE, data=codec.encode_request_body(fields), method="POST"
    )
    try:
        with urllib.request.urlopen(req, timeout=120) as resp:
            ctype = resp.headers.get("Content-Type")
            return resp.status, ctype, list(codec.iter_frames(resp.read()))
    except Exception as e:
        return None, None, [(0, b"", str(e).encode())]


def run_case(name, fields, expect_status):
    outer, ctype, frames = post(fields)
    inner = frames[-1][0] if frames else None
    passed = outer == 200 and ctype == "image/gif" and inner == expect_status
    print(f"[{'PASS' if passed else 'FAIL'}] {name} -> outer={outer} inner={inner} frames={len(frames)}")
    if not passed and frames:
        print(frames[-1][2][:500].decode("utf-8", "replace"))
    return passed


tests = [
    (
        "Plain GET",
        {"method": "GET", "url": "http://example.com/", "headers": "Accept: */*"},
        200,
    ),
    (
        "Unsupported scheme",
        {"method": "GET", "url": "ftp://example.com/", "headers": ""},
        501,
    ),
    (
        "Invalid method token",
        {"method": "GE T", "url": "http://example.com/", "headers": ""},
        500,
    ),
    (
        "Wrong password (only meaningful when the relay has one)",
        {"method": "GET", "url": "http://example.com/", "headers": "", "password": "definitely-wrong"},
        403 if PASSWORD else 200,
    ),
]

if __name__ == "__main__":
    passed = 0
    for name, fields, expect_status in tests:
        if run_case(name, fields, expect_status):
            passed += 1
        time.sleep(0.05)
    print(f"\n{passed}/{len(tests)} tests passed")
