"""Shared HTTP helpers used by the registry client.

Registry lookups only ever need ``GET`` + JSON. Failures never raise: a
request that could not complete surfaces as status ``0`` with the last error
as the body, so callers deal with ``(status, headers, payload)`` tuples only.
Successful and client-error responses are cached for
``Constants.HTTP_CACHE_TTL_SEC``; lookups from the resolver's worker threads
share one cache.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import requests

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, str], str]

_DEFAULT_HEADERS = {
    # Abbreviated packuments are much smaller and carry peerDependencies
    "Accept": "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8",
    "User-Agent": "ng-upgrade",
}

_cache: Dict[str, Tuple[Response, float]] = {}
_cache_lock = threading.Lock()


def _cache_key(url: str, headers: Dict[str, str]) -> str:
    return f"GET {url} {sorted(headers.items())}"


def _cached(key: str) -> Optional[Response]:
    with _cache_lock:
        entry = _cache.get(key)
    if entry is None:
        return None
    response, stored_at = entry
    if time.time() - stored_at >= Constants.HTTP_CACHE_TTL_SEC:
        return None
    return response


def _store(key: str, response: Response) -> None:
    with _cache_lock:
        _cache[key] = (response, time.time())


def clear_cache() -> None:
    """Drop every cached response."""
    with _cache_lock:
        _cache.clear()


def _trace(message: str, target: str, outcome: str, **fields: Any) -> None:
    if is_debug_enabled(logger):
        logger.debug(
            message,
            extra=extra_context(
                event="http_request",
                component="http_client",
                action="GET",
                outcome=outcome,
                target=target,
                **fields,
            )
        )


def robust_get(url: str, *, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> Response:
    """GET ``url`` with timeout, retries on timeouts/5xx and a shared response cache.

    Args:
        url: Target URL.
        headers: Extra request headers merged over the defaults.
        **kwargs: Passed through to ``requests.get``.

    Returns:
        ``(status_code, headers, text)``; status ``0`` when every attempt failed.
    """
    merged = dict(_DEFAULT_HEADERS)
    merged.update(headers or {})
    key = _cache_key(url, merged)
    target = safe_url(url)

    hit = _cached(key)
    if hit is not None:
        _trace("HTTP cache hit", target, "cache_hit")
        return hit

    last_error = "no attempt made"
    for attempt in range(1, Constants.HTTP_RETRY_MAX + 1):
        with Timer() as t:
            try:
                response = requests.get(url, timeout=Constants.REQUEST_TIMEOUT, headers=merged, **kwargs)
            except requests.Timeout:
                last_error = "timeout"
                _trace("HTTP timeout", target, "timeout", attempt=attempt)
                continue
            except requests.RequestException as exc:
                last_error = str(exc)
                _trace("HTTP request exception", target, "request_exception", attempt=attempt)
                continue

        _trace("HTTP response", target, "success", status_code=response.status_code,
               duration_ms=t.duration_ms(), attempt=attempt)
        if response.status_code >= 500:
            last_error = f"HTTP {response.status_code}"
            continue
        result: Response = (response.status_code, dict(response.headers), response.text)
        _store(key, result)
        return result

    logger.debug("GET %s failed after %d attempts: %s", target, Constants.HTTP_RETRY_MAX, last_error)
    return 0, {}, f"Request failed after {Constants.HTTP_RETRY_MAX} attempts: {last_error}"


def get_json(url: str, *, headers: Optional[Dict[str, str]] = None,
             **kwargs: Any) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """GET ``url`` and decode the body.

    Returns:
        ``(status_code, headers, payload)``; ``payload`` is None unless the
        status is 200 and the body is valid JSON.
    """
    status_code, response_headers, text = robust_get(url, headers=headers, **kwargs)
    if status_code != 200 or not text:
        return status_code, response_headers, None
    try:
        return status_code, response_headers, json.loads(text)
    except json.JSONDecodeError:
        _trace("JSON decode error", safe_url(url), "decode_error")
        return status_code, response_headers, None
