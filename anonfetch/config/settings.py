"""Pydantic Settings for the fetch layer.

All environment variables use the ANONFETCH_ prefix.
Example: ANONFETCH_PROXY_HOST=127.0.0.1, ANONFETCH_CONTROL_PASSWORD=secret
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from anonfetch.errors import ConfigurationError

DEFAULT_IDENTITY_ORACLES: list[str] = [
    "https://api.ipify.org",
    "https://icanhazip.com",
    "https://ipinfo.io/ip",
    "https://ip.seeip.org",
    "https://ipapi.co/ip",
]


class FetchSettings(BaseSettings):
    """Fetch layer configuration validated from environment variables."""

    # General
    downloader_name: str = "downloader"
    log_level: str = "INFO"
    cookie_dir: str = "data/cookies"
    user_agent_catalog_path: str | None = None  # None = packaged catalog

    # Transport
    timeout_seconds: float = Field(default=60.0, gt=0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    max_redirects: int = Field(default=10, ge=0)
    http2: bool = True
    verify_tls: bool = True

    # Anonymizing proxy
    proxy_host: str | None = None
    proxy_port: int | None = Field(default=None, ge=1, le=65535)
    proxy_scheme: str = "socks5"

    # Control endpoint
    control_host: str | None = None
    control_port: int | None = Field(default=None, ge=1, le=65535)
    control_password: str | None = None
    control_timeout_seconds: float = Field(default=30.0, gt=0)

    # Retry / rotation
    max_attempts: int = Field(default=3, ge=1)
    max_rotations: int = Field(default=5, ge=0)
    rotation_min_interval_seconds: float = Field(default=10.0, ge=0)
    rotation_max_cycles: int = Field(default=10, ge=1)
    identity_oracles: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IDENTITY_ORACLES)
    )
    exclusion_max_size: int | None = Field(default=None, ge=1)  # None = unbounded
    flush_cookies_on_rotate: bool = True
    randomize_profile_on_rotate: bool = True

    # Quality tracking
    quality_max_identities: int = Field(default=256, ge=1)

    # Throttling
    throttle_rules_path: str = "config/throttle.yaml"

    model_config = {"env_prefix": "ANONFETCH_"}

    @property
    def proxy_url(self) -> str | None:
        """Proxy URL for the transport, or None when no proxy is configured."""
        if not self.proxy_host and not self.proxy_port:
            return None
        return f"{self.proxy_scheme}://{self.require_proxy()}"

    def require_proxy(self) -> str:
        """Return ``host:port`` of the anonymizing proxy or raise ConfigurationError."""
        if not self.proxy_host:
            raise ConfigurationError("Proxy host not set (ANONFETCH_PROXY_HOST)")
        if not self.proxy_port:
            raise ConfigurationError("Proxy port not set (ANONFETCH_PROXY_PORT)")
        return f"{self.proxy_host}:{self.proxy_port}"

    def require_control(self) -> tuple[str, int, str]:
        """Return control ``(host, port, password)`` or raise ConfigurationError."""
        if not self.control_host:
            raise ConfigurationError("Control host not set (ANONFETCH_CONTROL_HOST)")
        if not self.control_port:
            raise ConfigurationError("Control port not set (ANONFETCH_CONTROL_PORT)")
        if self.control_password is None:
            raise ConfigurationError(
                "Control password not set (ANONFETCH_CONTROL_PASSWORD)"
            )
        return self.control_host, self.control_port, self.control_password
