"""Request header merging.

Headers are kept as ordered ``(name, value)`` pairs so a name may appear on
several lines. Merging follows a per-name policy: for singleton headers the
later value replaces the earlier one, every other header accumulates its
distinct values.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum

Header = tuple[str, str]
HeaderSource = Iterable[Header] | Mapping[str, str] | Iterable[str]


class HeaderPolicy(str, Enum):
    """How repeated values of one header name combine."""

    REPLACE = "replace"
    ACCUMULATE = "accumulate"


SINGLETON_HEADERS: frozenset[str] = frozenset(
    {
        "Accept",
        "Accept-Charset",
        "Accept-Datetime",
        "Accept-Encoding",
        "Accept-Language",
        "Accept-Ranges",
        "Age",
        "Allow",
        "Authorization",
        "Cache-Control",
        "Connection",
        "Content-Disposition",
        "Content-Encoding",
        "Content-Language",
        "Content-Length",
        "Content-Location",
        "Content-Md5",
        "Content-Range",
        "Content-Type",
        "Cookie",
        "Date",
        "Expect",
        "Forwarded",
        "From",
        "Host",
        "If-Match",
        "If-Modified-Since",
        "If-None-Match",
        "If-Range",
        "If-Unmodified-Since",
        "Max-Forwards",
        "Origin",
        "Pragma",
        "Proxy-Authorization",
        "Range",
        "Referer",
        "Sec-Ch-Ua",
        "Sec-Ch-Ua-Mobile",
        "Sec-Ch-Ua-Platform",
        "Sec-Fetch-Dest",
        "Sec-Fetch-Mode",
        "Sec-Fetch-Site",
        "Sec-Fetch-User",
        "Te",
        "Upgrade",
        "User-Agent",
        "Via",
        "Warning",
    }
)


def normalize_name(name: str) -> str:
    """``content-TYPE`` -> ``Content-Type``."""
    return "-".join(part.capitalize() for part in name.strip().split("-"))


def policy_for(name: str) -> HeaderPolicy:
    if normalize_name(name) in SINGLETON_HEADERS:
        return HeaderPolicy.REPLACE
    return HeaderPolicy.ACCUMULATE


def _pairs(source: HeaderSource) -> Iterable[Header]:
    if isinstance(source, Mapping):
        yield from source.items()
        return
    for item in source:
        if isinstance(item, str):
            name, sep, value = item.partition(":")
            if not sep:
                raise ValueError(f"Malformed header line: {item!r}")
            yield name, value
        else:
            name, value = item
            yield name, value


def merge_headers(*sources: HeaderSource) -> list[Header]:
    """Merge header sources left to right.

    Each source may be a mapping, a list of ``(name, value)`` pairs or a list
    of ``"Name: value"`` lines. The result has normalized names in
    first-seen order and one pair per distinct value.
    """
    merged: dict[str, list[str]] = {}
    for source in sources:
        for raw_name, raw_value in _pairs(source):
            name = normalize_name(raw_name)
            value = str(raw_value).strip()
            if policy_for(name) is HeaderPolicy.REPLACE:
                merged[name] = [value]
            else:
                values = merged.setdefault(name, [])
                if value not in values:
                    values.append(value)

    return [(name, value) for name, values in merged.items() for value in values]


def header_value(headers: Iterable[Header], name: str) -> str | None:
    """Return the last value of *name* in *headers*, or None."""
    wanted = normalize_name(name)
    found = None
    for key, value in headers:
        if normalize_name(key) == wanted:
            found = value
    return found


def without(headers: Iterable[Header], name: str) -> list[Header]:
    wanted = normalize_name(name)
    return [(k, v) for k, v in headers if normalize_name(k) != wanted]
