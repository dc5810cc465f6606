"""Error hierarchy for the fetch layer.

All fetch-specific errors extend FetchError. Transport failures are
classified into the network trio (timeout, TLS, empty response) which the
FetchClient retries locally, HTTP status errors which propagate to the
caller, and configuration / control-protocol errors which are always fatal.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class FetchError(Exception):
    """Base error for all fetch-layer errors."""

    message: str = "Download failed"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)

    @property
    def label(self) -> str:
        """Short label used as the QoS error histogram key."""
        return self.__class__.__name__


# ---------------------------------------------------------------------------
# Transport-level errors
# ---------------------------------------------------------------------------


class FetchTimeoutError(FetchError):
    """Connect or total transfer timeout."""

    message = "Timeout downloading resource"


class TlsError(FetchError):
    """TLS handshake, certificate, cipher or pinned-key failure."""

    message = "TLS error downloading resource"


class EmptyResponseError(FetchError):
    """Connection reset or closed before any response was received."""

    message = "Empty reply downloading resource"


class TransportError(FetchError):
    """Any other transport failure."""

    message = "Transport failure downloading resource"


# Errors that the FetchClient retries and escalates to identity rotation.
RETRYABLE_ERRORS: tuple[type[FetchError], ...] = (
    FetchTimeoutError,
    TlsError,
    EmptyResponseError,
)


# ---------------------------------------------------------------------------
# HTTP status errors
# ---------------------------------------------------------------------------


class HttpStatusError(FetchError):
    """The server answered with a status code >= 400."""

    message = "HTTP error response"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int,
        body: str | None = None,
        **kwargs: object,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.body = body

    @property
    def label(self) -> str:
        return f"http_{self.status_code}"


class BadRequestError(HttpStatusError):
    message = "Bad request"


class UnauthorizedError(HttpStatusError):
    message = "Unauthorized"


class PaymentRequiredError(HttpStatusError):
    message = "Payment required"


class ForbiddenError(HttpStatusError):
    message = "Forbidden"


class NotFoundError(HttpStatusError):
    message = "Not found"


class RequestTimeoutError(HttpStatusError):
    message = "Request timeout"


HTTP_STATUS_ERRORS: dict[int, type[HttpStatusError]] = {
    400: BadRequestError,
    401: UnauthorizedError,
    402: PaymentRequiredError,
    403: ForbiddenError,
    404: NotFoundError,
    408: RequestTimeoutError,
}


def http_error_for_status(status_code: int) -> type[HttpStatusError]:
    """Return the most specific HttpStatusError subclass for a status code."""
    return HTTP_STATUS_ERRORS.get(status_code, HttpStatusError)


# ---------------------------------------------------------------------------
# Payload, configuration and control errors
# ---------------------------------------------------------------------------


class JsonDecodeError(FetchError):
    """A JSON response body could not be decoded."""

    message = "Failed to decode JSON response"


class ConfigurationError(FetchError):
    """Missing or invalid proxy / control / catalog configuration."""

    message = "Invalid fetch configuration"


class ControlProtocolError(FetchError):
    """Authentication or command failure against the control endpoint."""

    message = "Control protocol command failed"


class IdentityRotationError(FetchError):
    """No acceptable identity could be obtained within the cycle limit."""

    message = "Failed to obtain a new identity"
