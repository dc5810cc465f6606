"""Outcome classification.

Maps transport exceptions and HTTP responses onto the typed error taxonomy
in :mod:`anonfetch.errors`.
"""

from __future__ import annotations

import asyncio
import re
import ssl

import httpx

from anonfetch.errors import (
    EmptyResponseError,
    FetchError,
    FetchTimeoutError,
    HttpStatusError,
    TlsError,
    TransportError,
    http_error_for_status,
)

_TLS_MARKERS = re.compile(
    r"\b(ssl|tls|certificate|cert_|handshake|cipher|pinned)", re.IGNORECASE
)
_EMPTY_MARKERS = re.compile(
    r"(connection reset|server disconnected|without sending a response|"
    r"empty reply|connection closed|broken pipe|remote end closed)",
    re.IGNORECASE,
)

ERROR_BODY_LIMIT = 4096


def _chain(exc: BaseException) -> list[BaseException]:
    seen: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in seen:
        seen.append(current)
        current = current.__cause__ or current.__context__
    return seen


def classify_exception(exc: BaseException, url: str, **context: object) -> FetchError:
    """Return the typed error for a transport exception raised while fetching *url*."""
    if isinstance(exc, FetchError):
        return exc

    chain = _chain(exc)
    text = " ".join(str(e) for e in chain)
    reason = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return FetchTimeoutError(
            f"Timeout downloading {url} ({reason})", error_reason=reason, **context
        )

    if any(isinstance(e, ssl.SSLError) for e in chain) or _TLS_MARKERS.search(text):
        return TlsError(
            f"TLS error downloading {url} ({reason})", error_reason=reason, **context
        )

    if isinstance(exc, httpx.RemoteProtocolError) or any(
        isinstance(e, (ConnectionResetError, BrokenPipeError)) for e in chain
    ) or _EMPTY_MARKERS.search(text):
        return EmptyResponseError(
            f"Empty reply downloading {url} ({reason})", error_reason=reason, **context
        )

    return TransportError(
        f"Failed to download {url} ({reason})", error_reason=reason, **context
    )


def classify_status(
    status_code: int, url: str, body: str | None, **context: object
) -> HttpStatusError | None:
    """Return the typed error for an HTTP status, or None for success codes."""
    if status_code < 400:
        return None
    error_cls = http_error_for_status(status_code)
    phrase = httpx.codes.get_reason_phrase(status_code) or "HTTP error"
    return error_cls(
        f"{phrase} {url}: HTTP {status_code}",
        status_code=status_code,
        body=body[:ERROR_BODY_LIMIT] if body else body,
        **context,
    )
