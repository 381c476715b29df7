"""Callback HTTP transport with bounded retries and jittered exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

BASE_BACKOFF_MS = 100
# Status reported when no HTTP response was ever received
TRANSPORT_ERROR = 0


def backoff_delay(attempt: int) -> float:
    """Return the backoff for *attempt* (0-based) in seconds.

    The ceiling doubles per attempt starting at 100ms; the actual wait is
    drawn uniformly from ``[ceiling / 2, ceiling)`` milliseconds.
    """
    ceiling = BASE_BACKOFF_MS * 2**attempt
    floor = ceiling // 2
    return random.randrange(floor, ceiling) / 1000


async def backoff(attempt: int) -> None:
    delay = backoff_delay(attempt)
    logger.debug("Exponential back off: attempt=%d wait=%.3fs", attempt, delay)
    await asyncio.sleep(delay)


async def send_with_retry(
    client: httpx.AsyncClient,
    url: str,
    payload: str | bytes,
    headers: Mapping[str, str] | None,
    method: str,
    expected_status: int,
    max_attempts: int,
) -> tuple[int, bytes]:
    """Send one HTTP request, retrying transient failures.

    A response with *expected_status* returns immediately, as does any 4xx
    (client errors are not transient).  Transport errors and 5xx are retried
    after a backoff, up to *max_attempts* attempts in total.  Any other
    unexpected status (1xx, 3xx, a different 2xx) is retried at once and is
    not remembered.

    Returns:
        ``(status, body)`` of the final attempt.  ``status`` is the last
        5xx seen, or ``TRANSPORT_ERROR`` if there was none; when the final
        attempt failed at the transport level ``body`` holds the error text.
    """
    content = payload.encode() if isinstance(payload, str) else payload
    request_headers = dict(headers or {})
    if method == "POST":
        request_headers.setdefault("Content-Type", "application/x-www-form-urlencoded")

    status = TRANSPORT_ERROR
    body = b""
    last_error: httpx.HTTPError | None = None

    for attempt in range(max_attempts):
        is_last = attempt == max_attempts - 1
        try:
            response = await client.request(
                method, url, content=content, headers=request_headers
            )
        except httpx.HTTPError as exc:
            last_error = exc
            logger.warning(
                "Callback %s %s failed (attempt %d/%d): %s",
                method,
                url,
                attempt + 1,
                max_attempts,
                exc,
            )
            if not is_last:
                await backoff(attempt)
            continue

        last_error = None
        body = response.content

        if response.status_code == expected_status:
            return response.status_code, body

        # Client-side error, no point in retrying
        if 400 <= response.status_code <= 499:
            logger.info(
                "Callback %s %s returned %d, not retrying",
                method,
                url,
                response.status_code,
            )
            return response.status_code, body

        logger.warning(
            "Callback %s %s returned %d (attempt %d/%d)",
            method,
            url,
            response.status_code,
            attempt + 1,
            max_attempts,
        )
        # Only server-side errors are remembered and backed off
        if 500 <= response.status_code <= 599:
            status = response.status_code
            if not is_last:
                await backoff(attempt)

    if last_error is not None:
        return status, (str(last_error) or type(last_error).__name__).encode()
    return status, body
