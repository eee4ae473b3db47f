"""
HTTP helpers.

Only the webhook notification presenter talks HTTP; this keeps the client setup
(timeout, User-Agent, raise on non-2xx) in one place.
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "couponradar/0.1.0 (+https://local)"


def post_json(
    url: str,
    *,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 5,
) -> int:
    """POST `payload` as a JSON body and return the response status code.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
    """
    request_headers = {"User-Agent": DEFAULT_USER_AGENT}
    if headers:
        request_headers.update(headers)

    with httpx.Client(timeout=timeout_seconds) as client:
        resp = client.post(url, json=payload, headers=request_headers)
        resp.raise_for_status()
        return resp.status_code
