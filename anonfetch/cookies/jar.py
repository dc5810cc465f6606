"""Netscape cookie-jar file persistence.

The jar is a plain text file with one cookie per line and seven
tab-separated fields::

    domain  include_subdomains  path  secure  expiration  name  value

This is the layout written by curl and most browser exporters. Lines
prefixed with ``#HttpOnly_`` carry an HttpOnly cookie; every other line
starting with ``#`` is a comment. The transport keeps cookies in an
``httpx.Cookies`` object during a transfer; ``load_into`` and ``save_from``
bridge between that object and the file.
"""

from __future__ import annotations

import http.cookiejar
import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from anonfetch.errors import ConfigurationError

logger = logging.getLogger(__name__)

JAR_HEADER = "# Netscape HTTP Cookie File"
HTTP_ONLY_PREFIX = "#HttpOnly_"


@dataclass(frozen=True)
class Cookie:
    """A single persisted cookie."""

    domain: str
    include_subdomains: bool
    path: str
    secure: bool
    expiration: int  # epoch seconds, 0 = session cookie
    name: str
    value: str
    http_only: bool = False

    def matches(self, host: str) -> bool:
        """Return True if this cookie applies to requests for *host*.

        ``.example.com`` matches ``example.com`` and ``a.example.com``;
        ``example.com`` matches itself and hosts ending in ``.example.com``;
        neither matches ``notexample.com``.
        """
        host = host.lower().rstrip(".")
        domain = self.domain.lower()
        if domain.startswith("."):
            return host == domain[1:] or host.endswith(domain)
        return host == domain or host.endswith("." + domain)


def _flag(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def parse_line(line: str) -> Cookie | None:
    """Parse one jar line; return None for comments, blanks and malformed lines."""
    line = line.rstrip("\r\n")
    http_only = False
    if line.startswith(HTTP_ONLY_PREFIX):
        line = line[len(HTTP_ONLY_PREFIX):]
        http_only = True
    if not line.strip() or line.startswith("#"):
        return None

    parts = line.split("\t")
    if len(parts) < 7:
        return None

    domain, subdomains, path, secure, expiration, name, value = parts[:7]
    try:
        expires = int(expiration or 0)
    except ValueError:
        return None

    return Cookie(
        domain=domain,
        include_subdomains=subdomains.upper() == "TRUE",
        path=path,
        secure=secure.upper() == "TRUE",
        expiration=expires,
        name=name,
        value=value,
        http_only=http_only,
    )


def format_line(cookie: Cookie) -> str:
    """Render *cookie* as a jar line (without trailing newline)."""
    prefix = HTTP_ONLY_PREFIX if cookie.http_only else ""
    return "\t".join(
        [
            f"{prefix}{cookie.domain}",
            _flag(cookie.include_subdomains),
            cookie.path,
            _flag(cookie.secure),
            str(cookie.expiration),
            cookie.name,
            cookie.value,
        ]
    )


def _from_engine(cookie: http.cookiejar.Cookie) -> Cookie:
    domain = cookie.domain
    subdomains = domain.startswith(".")
    # The engine adds a dot to subdomain cookies; keep the jar text as written.
    if subdomains and not cookie.domain_initial_dot:
        domain = domain[1:]
    return Cookie(
        domain=domain,
        include_subdomains=subdomains,
        path=cookie.path or "/",
        secure=bool(cookie.secure),
        expiration=int(cookie.expires or 0),
        name=cookie.name,
        value=cookie.value or "",
        http_only=cookie.has_nonstandard_attr("HttpOnly"),
    )


def _to_engine(cookie: Cookie) -> http.cookiejar.Cookie:
    domain = cookie.domain
    if cookie.include_subdomains and not domain.startswith("."):
        domain = "." + domain
    return http.cookiejar.Cookie(
        version=0,
        name=cookie.name,
        value=cookie.value,
        port=None,
        port_specified=False,
        domain=domain,
        domain_specified=cookie.include_subdomains,
        domain_initial_dot=cookie.domain.startswith("."),
        path=cookie.path,
        path_specified=True,
        secure=cookie.secure,
        expires=cookie.expiration or None,
        discard=not cookie.expiration,
        comment=None,
        comment_url=None,
        rest={"HttpOnly": ""} if cookie.http_only else {},
    )


class CookieJarStore:
    """Reads, filters and rewrites a cookie jar file.

    Parameters
    ----------
    path:
        Location of the jar file. The file and its parent directories are
        created if missing.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=True)
        except OSError as exc:
            raise ConfigurationError(
                f"Failed to create cookie jar file {self.path}: {exc}"
            ) from exc
        logger.info("Cookie jar initialized at %s", self.path)

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def load(self) -> list[Cookie]:
        """Return every well-formed cookie in the jar."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return [c for c in map(parse_line, text.splitlines()) if c is not None]

    def write(self, cookies: list[Cookie]) -> None:
        """Rewrite the jar with exactly *cookies*."""
        lines = [JAR_HEADER, ""] + [format_line(c) for c in cookies]
        self.path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def append(self, cookie: Cookie) -> None:
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(format_line(cookie) + "\n")

    def flush(self) -> None:
        """Remove every cookie by truncating the jar."""
        self.path.write_text("", encoding="utf-8")
        logger.info("Cookie jar %s flushed", self.path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_cookies(
        self, domain: str | None = None, full: bool = False
    ) -> list[Cookie] | dict[str, str]:
        """Return cookies applying to *domain* (all cookies when None).

        With ``full=False`` returns ``{name: value}``; otherwise the Cookie
        records.
        """
        cookies = [c for c in self.load() if domain is None or c.matches(domain)]
        if full:
            return cookies
        return {c.name: c.value for c in cookies}

    # ------------------------------------------------------------------
    # Transport bridge
    # ------------------------------------------------------------------

    def load_into(self, cookies: httpx.Cookies) -> int:
        """Copy the jar into the transport cookie store; return the count."""
        loaded = self.load()
        for cookie in loaded:
            cookies.jar.set_cookie(_to_engine(cookie))
        return len(loaded)

    def save_from(self, cookies: httpx.Cookies) -> int:
        """Rewrite the jar from the transport cookie store; return the count."""
        records = [_from_engine(c) for c in cookies.jar]
        self.write(records)
        return len(records)
