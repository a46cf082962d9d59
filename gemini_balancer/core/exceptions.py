"""Custom exception types."""

from __future__ import annotations

from http import HTTPStatus


class GatewayError(Exception):
    """Base class for errors rendered as OpenAI-style error envelopes."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    error_type: str = "internal_server_error"
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(GatewayError):
    """Raised when a client request cannot be translated for the upstream API."""

    status_code = HTTPStatus.BAD_REQUEST
    error_type = "invalid_request_error"
    code = "invalid_request"


class AuthenticationError(GatewayError):
    """Raised when the caller did not present the gateway access key."""

    status_code = HTTPStatus.UNAUTHORIZED
    error_type = "invalid_request_error"
    code = "invalid_api_key"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class TranslationError(GatewayError):
    """Raised when a successful upstream body cannot be mapped back to the client shape."""

    code = "translation_failed"


class UpstreamUnreachableError(GatewayError):
    """Raised when the upstream API cannot be reached at all."""

    status_code = HTTPStatus.BAD_GATEWAY
    error_type = "upstream_error"
    code = "upstream_unreachable"


class RotationExhaustedError(GatewayError):
    """Raised when no upstream API key is available in the pool."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    error_type = "service_unavailable"
    code = "no_api_keys"

    def __init__(self, message: str = "No API keys configured in the load balancer.") -> None:
        super().__init__(message)


class UpstreamError(Exception):
    """Raised when the upstream API answers with a non-success status.

    The body is kept verbatim so it can be passed back to the caller.
    """

    def __init__(
        self,
        status_code: int,
        body: bytes,
        content_type: str | None = None,
    ) -> None:
        super().__init__(f"Upstream returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.content_type = content_type
