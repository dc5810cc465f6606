"""Anonymization-aware download client.

One FetchClient executes one request at a time:

1. merge client defaults, the current browser profile and per-call options
2. wait for the per-host throttle window
3. run the transfer over a one-shot or the kept-alive httpx client, with the
   cookie jar loaded before and written back after
4. classify the outcome, book it against the active identity
5. on network failures retry, escalating to identity rotation

HTTP status errors are never retried here; the caller decides.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from os.path import basename
from pathlib import Path
from urllib.parse import urlencode

import httpx

from anonfetch.config.settings import FetchSettings
from anonfetch.config.throttle_rules import load_throttle_rules
from anonfetch.cookies.jar import Cookie, CookieJarStore
from anonfetch.errors import (
    RETRYABLE_ERRORS,
    FetchError,
    JsonDecodeError,
)
from anonfetch.fetch.classify import classify_exception, classify_status
from anonfetch.fetch.headers import Header, header_value, merge_headers
from anonfetch.fetch.options import DEFAULT_HEADERS, FetchOptions, merge_options
from anonfetch.identity.base import IdentityProvider
from anonfetch.profiles.user_agents import FALLBACK_USER_AGENT, UserAgentProfileProvider
from anonfetch.resilience.quality import QualityTracker
from anonfetch.resilience.rate_limiter import Throttler, host_of

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
JSON_METHODS = ("GET", "POST", "PUT", "DELETE")
MIB = 1024 * 1024


def strip_fragment(url: str) -> str:
    return url.split("#", 1)[0]


def default_referer(url: str) -> str:
    """A search-engine translate referral naming the destination host."""
    return (
        "https://www.google.com/?source=osdd&sl=auto&tl=auto&text="
        f"{host_of(url)}&op=translate"
    )


class FetchClient:
    """Downloads resources with throttling, cookie persistence and retries.

    Parameters
    ----------
    name:
        Downloader name, used in logs and as the cookie jar file stem.
    cookie_jar:
        The jar this client reads and writes. Never share one jar file
        between concurrently running clients.
    profiles:
        Browser profile catalog. When ``None`` a fixed desktop user agent is
        sent with the default headers only.
    throttler:
        Per-host throttle; unthrottled when ``None``.
    quality:
        QoS tracker outcomes are booked against.
    proxy:
        Proxy URL, e.g. ``socks5://127.0.0.1:9050``.
    max_attempts:
        Network-error budget per identity before rotation.
    max_rotations:
        Rotations allowed within one ``download`` call before the last error
        is raised.
    transport:
        Optional httpx transport used instead of the network (tests).
    """

    def __init__(
        self,
        name: str = "downloader",
        *,
        cookie_jar: CookieJarStore,
        profiles: UserAgentProfileProvider | None = None,
        throttler: Throttler | None = None,
        quality: QualityTracker | None = None,
        proxy: str | None = None,
        timeout_seconds: float = 10.0,
        connect_timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        max_rotations: int = 5,
        max_redirects: int = 10,
        http2: bool = False,
        verify_tls: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self.cookie_jar = cookie_jar
        self.profiles = profiles
        self.throttler = throttler or Throttler()
        self.quality = quality or QualityTracker()
        self.max_attempts = max(1, max_attempts)
        self.max_rotations = max(0, max_rotations)
        self._proxy = proxy
        self._max_redirects = max_redirects
        self._http2 = http2
        self._verify_tls = verify_tls
        self._transport = transport
        self._keep_alive_client: httpx.AsyncClient | None = None
        self._rotator: IdentityProvider | None = None

        self._defaults = FetchOptions(
            headers=list(DEFAULT_HEADERS),
            method="GET",
            keep_alive=False,
            fail_fast=False,
            timeout_seconds=timeout_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
            follow_redirects=True,
        )
        self._user_agent = FALLBACK_USER_AGENT
        self._profile_headers: dict[str, str] = {}
        if profiles is not None:
            self.randomize_user_agent()

    @classmethod
    def from_settings(
        cls,
        settings: FetchSettings,
        name: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> FetchClient:
        """Build a client with one cookie jar per downloader name."""
        name = name or settings.downloader_name
        jar_path = Path(settings.cookie_dir) / f"{basename(name)}.txt"
        return cls(
            name,
            cookie_jar=CookieJarStore(jar_path),
            profiles=UserAgentProfileProvider(settings.user_agent_catalog_path),
            throttler=Throttler(load_throttle_rules(settings.throttle_rules_path)),
            quality=QualityTracker(max_identities=settings.quality_max_identities),
            proxy=settings.proxy_url,
            timeout_seconds=settings.timeout_seconds,
            connect_timeout_seconds=settings.connect_timeout_seconds,
            max_attempts=settings.max_attempts,
            max_rotations=settings.max_rotations,
            max_redirects=settings.max_redirects,
            http2=settings.http2,
            verify_tls=settings.verify_tls,
            transport=transport,
        )

    async def __aenter__(self) -> FetchClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.close_connection()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def defaults(self) -> FetchOptions:
        return self._defaults

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def proxy(self) -> str | None:
        return self._proxy

    @property
    def rotator(self) -> IdentityProvider | None:
        return self._rotator

    @property
    def identity(self) -> str:
        """Identity outcomes are currently booked against."""
        return self.quality.active_identity

    @property
    def has_open_connection(self) -> bool:
        return self._keep_alive_client is not None

    def attach_rotator(self, rotator: IdentityProvider | None) -> None:
        self._rotator = rotator

    def set_defaults(self, options: FetchOptions) -> FetchOptions:
        """Merge *options* into the client defaults; headers smart-merge."""
        self._defaults = merge_options(self._defaults, options)
        return self._defaults

    def set_timeout(self, timeout: float = 60.0, connect_timeout: float = 10.0) -> None:
        logger.info(
            "Setting default timeout to %ss and connection timeout to %ss",
            timeout,
            connect_timeout,
            extra={"downloader": self.name},
        )
        self.set_defaults(
            FetchOptions(timeout_seconds=timeout, connect_timeout_seconds=connect_timeout)
        )

    async def set_proxy(self, host: str, port: int, scheme: str = "socks5") -> None:
        """Route subsequent transfers through ``scheme://host:port``."""
        await self.close_connection()
        self._proxy = f"{scheme}://{host}:{port}"
        logger.info("Proxy set to %s", self._proxy, extra={"downloader": self.name})

    def set_user_agent(self, user_agent: str) -> None:
        self._user_agent = user_agent

    def randomize_user_agent(self) -> None:
        """Draw a fresh browser profile; a no-op without a catalog."""
        if self.profiles is None:
            return
        profile = self.profiles.pick()
        self._user_agent = profile.user_agent
        self._profile_headers = dict(profile.headers)

    def effective_options(self, options: FetchOptions | None = None) -> FetchOptions:
        """Defaults < browser profile < per-call options."""
        base = self._defaults.with_headers(
            self._profile_headers, [("User-Agent", self._user_agent)]
        )
        return merge_options(base, options)

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    def get_cookies(
        self, domain: str | None = None, full: bool = False
    ) -> list[Cookie] | dict[str, str]:
        return self.cookie_jar.get_cookies(domain, full)

    async def flush_cookies(self) -> None:
        """Drop every cookie; the kept-alive handle goes with them."""
        logger.info("Removing all cookies...", extra={"downloader": self.name})
        await self.close_connection()
        self.cookie_jar.flush()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _new_client(self) -> httpx.AsyncClient:
        kwargs: dict = {
            "follow_redirects": True,
            "max_redirects": self._max_redirects,
            "trust_env": False,
            "verify": self._verify_tls,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        else:
            kwargs["proxy"] = self._proxy
            kwargs["http2"] = self._http2
        return httpx.AsyncClient(**kwargs)

    def _client_for(self, keep_alive: bool) -> httpx.AsyncClient:
        if not keep_alive:
            return self._new_client()
        if self._keep_alive_client is None:
            logger.info("Keeping connection alive...", extra={"downloader": self.name})
            self._keep_alive_client = self._new_client()
        return self._keep_alive_client

    async def close_connection(self) -> None:
        """Release the kept-alive handle. Safe to call repeatedly."""
        client, self._keep_alive_client = self._keep_alive_client, None
        if client is not None:
            logger.info("Closing keep-alive connection...", extra={"downloader": self.name})
            await client.aclose()

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    async def download(
        self,
        url: str,
        output_path: str | Path | None = None,
        options: FetchOptions | None = None,
    ) -> str | bool:
        """Download *url*.

        Returns the response text, or ``True`` when the body was streamed to
        *output_path*.

        Raises
        ------
        FetchTimeoutError, TlsError, EmptyResponseError
            After the attempt and rotation budgets are spent, or immediately
            with ``fail_fast``.
        HttpStatusError
            On status >= 400 (subclassed for 400/401/402/403/404/408).
        TransportError
            On any other transport failure.
        """
        budget = self.max_attempts
        rotations = 0

        while True:
            # Re-read each attempt; rotation callbacks may install a new profile.
            opts = self.effective_options(options)
            try:
                return await self._download_once(url, output_path, opts)
            except RETRYABLE_ERRORS as exc:
                if opts.fail_fast:
                    raise

                budget -= 1
                stats = self.quality.get_stats()
                degraded = (
                    stats.total >= self.max_attempts and stats.success_ratio <= 0.5
                )
                if budget > 0 and not degraded:
                    logger.warning(
                        "Retrying %s after %s (%d attempts left)",
                        url,
                        exc.label,
                        budget,
                        extra={"target_url": url, "retry_attempts": budget},
                    )
                    continue

                if self._rotator is None or rotations >= self.max_rotations:
                    logger.error(
                        "Giving up on %s after %d rotations: %s",
                        url,
                        rotations,
                        exc,
                        extra={"target_url": url, "error_reason": exc.label},
                    )
                    raise

                logger.warning(
                    "Rotating identity %s after %s on %s (%s)",
                    self.identity,
                    exc.label,
                    url,
                    json.dumps(stats.as_dict()),
                    extra={"target_url": url, "identity": self.identity},
                )
                await self._rotator.rotate_identity()
                rotations += 1
                budget = self.max_attempts

    async def json_request(
        self,
        url: str,
        payload: dict | None = None,
        method: str = "GET",
        options: FetchOptions | None = None,
    ) -> object:
        """Send a JSON request and decode the JSON response.

        GET encodes *payload* into the query string; POST, PUT and DELETE send
        it as a JSON body.
        """
        method = method.upper()
        if method not in JSON_METHODS:
            raise ValueError(f"Unsupported method {method}")

        opts = merge_options(
            FetchOptions(headers=[("Content-Type", JSON_CONTENT_TYPE)]), options
        )
        opts.method = method

        if method == "GET":
            if payload:
                separator = "&" if "?" in strip_fragment(url) else "?"
                url = f"{strip_fragment(url)}{separator}{urlencode(payload, doseq=True)}"
        elif payload is not None:
            opts.content = json.dumps(payload)

        text = await self.download(url, options=opts)
        try:
            return json.loads(text)
        except (TypeError, ValueError) as exc:
            raise JsonDecodeError(
                f"{self.name}: Failed to decode JSON response from {url}: "
                f"{str(text)[:256]!r}...",
                target_url=url,
            ) from exc

    async def _download_once(
        self, url: str, output_path: str | Path | None, opts: FetchOptions
    ) -> str | bool:
        url = strip_fragment(url)
        host = host_of(url)
        headers = self._request_headers(url, opts)
        keep_alive = bool(opts.keep_alive)
        suffix = " (keep-alive)" if keep_alive else ""

        await self.throttler.acquire(url)

        client = self._client_for(keep_alive)
        cookies_loaded = False
        start = time.monotonic()
        try:
            self.cookie_jar.load_into(client.cookies)
            cookies_loaded = True
            request = client.build_request(
                opts.method or "GET",
                url,
                headers=headers,
                content=opts.content,
                timeout=httpx.Timeout(
                    opts.timeout_seconds, connect=opts.connect_timeout_seconds
                ),
            )
            if output_path is None:
                response = await asyncio.wait_for(
                    client.send(request, follow_redirects=bool(opts.follow_redirects)),
                    timeout=opts.timeout_seconds,
                )
                size = len(response.content)
            else:
                response, size = await asyncio.wait_for(
                    self._stream_to_file(client, request, Path(output_path), opts),
                    timeout=opts.timeout_seconds,
                )
        except (httpx.HTTPError, httpx.InvalidURL, OSError, asyncio.TimeoutError) as exc:
            error = classify_exception(
                exc, url, **self._failure_context(url, host, opts)
            )
            self._report_failure(error, url, suffix, time.monotonic() - start)
            raise error from exc
        finally:
            if cookies_loaded:
                self.cookie_jar.save_from(client.cookies)
            if not keep_alive:
                await client.aclose()

        elapsed = time.monotonic() - start
        body = response.text if output_path is None else None
        error = classify_status(
            response.status_code,
            url,
            response.text if output_path is None or response.is_error else None,
            **self._failure_context(url, host, opts),
        )
        if error is not None:
            self._report_failure(error, url, suffix, elapsed)
            raise error

        self.quality.add_success(elapsed, size)
        logger.info(
            "Downloaded %s%s (%.3f MiB, total time %.2fs)",
            url,
            suffix,
            size / MIB,
            elapsed,
            extra={
                "target_url": url,
                "identity": self.identity,
                "status_code": response.status_code,
                "size_bytes": size,
                "duration_ms": round(elapsed * 1000),
                "downloader": self.name,
            },
        )
        return body if output_path is None else True

    async def _stream_to_file(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
        path: Path,
        opts: FetchOptions,
    ) -> tuple[httpx.Response, int]:
        response = await client.send(
            request, stream=True, follow_redirects=bool(opts.follow_redirects)
        )
        try:
            if response.is_error:
                await response.aread()
                return response, len(response.content)

            path.parent.mkdir(parents=True, exist_ok=True)
            size = 0
            with path.open("wb") as fh:
                async for chunk in response.aiter_bytes():
                    fh.write(chunk)
                    size += len(chunk)
            return response, size
        finally:
            await response.aclose()

    def _request_headers(self, url: str, opts: FetchOptions) -> list[Header]:
        referer = header_value(opts.headers, "Referer") or opts.referer or default_referer(url)
        return merge_headers(opts.headers, [("Referer", referer)])

    def _failure_context(self, url: str, host: str, opts: FetchOptions) -> dict:
        return {
            "target_url": url,
            "identity": self.identity,
            "cookies": self.cookie_jar.get_cookies(host),
            "options": opts.describe(),
        }

    def _report_failure(
        self, error: FetchError, url: str, suffix: str, elapsed: float
    ) -> None:
        self.quality.add_failure(error.label)
        logger.error(
            "Failed to download %s%s: %s (total time %.2fs)",
            url,
            suffix,
            error.message,
            elapsed,
            extra={
                **error.details,
                "status_code": getattr(error, "status_code", None),
                "error_reason": error.label,
                "duration_ms": round(elapsed * 1000),
                "downloader": self.name,
            },
        )
