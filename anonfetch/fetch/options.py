"""Typed per-request options and their merge rule."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace

from anonfetch.fetch.headers import Header, HeaderSource, merge_headers

DEFAULT_HEADERS: list[Header] = merge_headers(
    [
        "Accept: text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
        "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7",
        "Accept-Language: en-US,en;q=0.5",
        "Accept-Encoding: gzip, deflate",
        "Cache-Control: no-cache",
        "Pragma: no-cache",
        "Upgrade-Insecure-Requests: 1",
        "Sec-Fetch-Dest: document",
        "Sec-Fetch-Mode: navigate",
        "Sec-Fetch-Site: none",
        "Sec-Fetch-User: ?1",
        "Dnt: 1",
    ]
)


@dataclass
class FetchOptions:
    """Options for one download.

    ``None`` means "not set": the client default (or the transport default)
    applies. ``headers`` are merged, never replaced wholesale.
    """

    headers: list[Header] = field(default_factory=list)
    method: str | None = None
    content: bytes | str | None = None
    referer: str | None = None
    keep_alive: bool | None = None
    fail_fast: bool | None = None
    timeout_seconds: float | None = None
    connect_timeout_seconds: float | None = None
    follow_redirects: bool | None = None

    def with_headers(self, *sources: HeaderSource) -> FetchOptions:
        return replace(self, headers=merge_headers(self.headers, *sources))

    def describe(self) -> dict:
        """Loggable view of the options in effect (body omitted)."""
        view = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("headers", "content") and getattr(self, f.name) is not None
        }
        view["headers"] = [f"{k}: {v}" for k, v in self.headers]
        if self.content is not None:
            view["content_length"] = len(self.content)
        return view


def merge_options(base: FetchOptions, override: FetchOptions | None) -> FetchOptions:
    """Merge *override* onto *base*: set fields win, headers smart-merge."""
    if override is None:
        return replace(base, headers=list(base.headers))

    merged = {}
    for f in fields(FetchOptions):
        if f.name == "headers":
            continue
        value = getattr(override, f.name)
        merged[f.name] = getattr(base, f.name) if value is None else value
    return FetchOptions(headers=merge_headers(base.headers, override.headers), **merged)
