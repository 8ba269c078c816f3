"""Quota / rate-limit detection for LLM provider errors.

Provider SDKs rarely raise a single, well-typed "you are out of quota"
exception.  The signal can sit on the raised error itself, on a chained
cause, inside an exception group, or in a JSON response body that the SDK
attached as a string.  The helpers here walk all of those breadth-first
and answer two questions:

* is this a quota / rate-limit error?  (HTTP 429 or a matching message)
* how long does the provider want us to wait?

Recognised retry hints, first match wins:

1. ``"... retry in 12.5s ..."`` in an error message
2. a Google RPC ``RetryInfo`` detail in a JSON response body, e.g.
   ``{"error": {"details": [{"@type": "type.googleapis.com/google.rpc.RetryInfo",
   "retryDelay": "12s"}]}}``
3. a numeric ``Retry-After`` header on an attached HTTP response
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections import deque
from collections.abc import Iterator, Mapping
from typing import Any

logger = logging.getLogger(__name__)

QUOTA_PATTERN = re.compile(r"quota exceeded|resource_exhausted|rate limit", re.IGNORECASE)
RETRY_PATTERN = re.compile(r"retry in\s+([0-9.]+)s", re.IGNORECASE)
RETRY_DELAY_PATTERN = re.compile(r"([0-9.]+)s")
RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


class QuotaExceededError(Exception):
    """Raised when the LLM provider rejects a call for quota / rate reasons."""

    def __init__(self, message: str, retry_after_seconds: float | None = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


# ── Error-tree traversal ─────────────────────────────────────────────


def _children(node: Any) -> list[Any]:
    if isinstance(node, Mapping):
        children = []
        if isinstance(node.get("errors"), list):
            children.extend(node["errors"])
        if node.get("cause") is not None:
            children.append(node["cause"])
        return children

    children = []
    # BaseExceptionGroup.exceptions, or SDK-style aggregated ``errors``
    for attr in ("exceptions", "errors"):
        value = getattr(node, attr, None)
        if isinstance(value, (list, tuple)):
            children.extend(value)
    for attr in ("__cause__", "__context__", "cause"):
        value = getattr(node, attr, None)
        if value is not None:
            children.append(value)
    return children


def _walk(error: Any) -> Iterator[Any]:
    """Yield *error* and every nested cause, breadth-first, each once."""
    queue: deque[Any] = deque([error])
    seen: set[int] = set()
    while queue:
        node = queue.popleft()
        if node is None or isinstance(node, (str, bytes, int, float)):
            continue
        if id(node) in seen:
            continue
        seen.add(id(node))
        yield node
        queue.extend(_children(node))


def _message(node: Any) -> str | None:
    if isinstance(node, Mapping):
        value = node.get("message")
        return value if isinstance(value, str) else None
    value = getattr(node, "message", None)
    if isinstance(value, str):
        return value
    if isinstance(node, BaseException):
        return str(node)
    return None


def _status_code(node: Any) -> int | None:
    if isinstance(node, Mapping):
        value = node.get("status_code", node.get("statusCode"))
    else:
        value = getattr(node, "status_code", None)
    return value if isinstance(value, int) else None


def _response_body(node: Any) -> Any:
    if isinstance(node, Mapping):
        return node.get("response_body", node.get("responseBody"))
    for attr in ("response_body", "body"):
        value = getattr(node, attr, None)
        if value is not None:
            return value
    return None


def _finite(raw: str) -> float | None:
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


# ── Retry-hint extractors ────────────────────────────────────────────


def _retry_from_message(message: str | None) -> float | None:
    if not message:
        return None
    match = RETRY_PATTERN.search(message)
    return _finite(match.group(1)) if match else None


def _retry_from_body(body: Any) -> float | None:
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if not isinstance(body, Mapping):
        return None

    error = body.get("error")
    details = error.get("details") if isinstance(error, Mapping) else None
    if not isinstance(details, list):
        return None

    for detail in details:
        if not isinstance(detail, Mapping) or detail.get("@type") != RETRY_INFO_TYPE:
            continue
        delay = detail.get("retryDelay")
        if not isinstance(delay, str):
            return None
        match = RETRY_DELAY_PATTERN.search(delay)
        return _finite(match.group(1)) if match else None
    return None


def _retry_from_headers(node: Any) -> float | None:
    response = getattr(node, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    raw = headers.get("retry-after")
    return _finite(raw) if isinstance(raw, str) else None


# ── Public API ───────────────────────────────────────────────────────


def is_quota_error(error: Any) -> bool:
    """Return ``True`` if *error* (or anything it wraps) signals a quota hit."""
    for node in _walk(error):
        if _status_code(node) == 429:
            return True
        message = _message(node)
        if message and QUOTA_PATTERN.search(message):
            return True
    return False


def extract_retry_after_seconds(error: Any) -> float | None:
    """Return the provider's suggested retry delay in seconds, if any."""
    for node in _walk(error):
        for value in (
            _retry_from_message(_message(node)),
            _retry_from_body(_response_body(node)),
            _retry_from_headers(node),
        ):
            if value is not None:
                return value
    return None


def map_quota_error(error: Any) -> QuotaExceededError | None:
    """Translate a provider error into :class:`QuotaExceededError`, or ``None``."""
    if not is_quota_error(error):
        return None

    retry_after = extract_retry_after_seconds(error)
    if retry_after:
        hint = f" Please retry in about {math.ceil(retry_after)} seconds."
    else:
        hint = " Please retry in a moment."

    logger.warning("LLM quota exceeded (retry_after=%s): %s", retry_after, error)
    return QuotaExceededError(f"AI quota exceeded.{hint}", retry_after)
