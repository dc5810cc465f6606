"""Download client, options and header merging."""

from anonfetch.fetch.client import FetchClient, default_referer, strip_fragment
from anonfetch.fetch.headers import (
    SINGLETON_HEADERS,
    HeaderPolicy,
    merge_headers,
    normalize_name,
    policy_for,
)
from anonfetch.fetch.options import DEFAULT_HEADERS, FetchOptions, merge_options

__all__ = [
    "DEFAULT_HEADERS",
    "SINGLETON_HEADERS",
    "FetchClient",
    "FetchOptions",
    "HeaderPolicy",
    "default_referer",
    "merge_headers",
    "merge_options",
    "normalize_name",
    "policy_for",
    "strip_fragment",
]
