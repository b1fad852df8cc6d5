"""
Error taxonomy shared by the pool, the stream parser, the upload pipeline and the service.

Every error carries a classification and a suggested HTTP status so the front door can
render it without knowing where it came from. This module has no FastAPI imports.
"""

from enum import Enum
from http import HTTPStatus
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    BAD_UPSTREAM = "bad_upstream"
    BAD_GATEWAY = "bad_gateway"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"


class BridgeError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL
    default_status: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = str(message)
        self.status_code = int(status_code or self.default_status)

    def __str__(self) -> str:
        return self.message


class ValidationError(BridgeError):
    kind = ErrorKind.VALIDATION
    default_status = HTTPStatus.BAD_REQUEST


class UnauthorizedError(BridgeError):
    kind = ErrorKind.UNAUTHORIZED
    default_status = HTTPStatus.UNAUTHORIZED


class NotFoundError(BridgeError):
    kind = ErrorKind.NOT_FOUND
    default_status = HTTPStatus.NOT_FOUND


class BadUpstreamError(BridgeError):
    kind = ErrorKind.BAD_UPSTREAM
    default_status = HTTPStatus.BAD_GATEWAY


class BadGatewayError(BridgeError):
    kind = ErrorKind.BAD_GATEWAY
    default_status = HTTPStatus.BAD_GATEWAY


class EmptyUpstreamError(BadGatewayError):
    """The stream ended with neither content nor a terminal event."""


class RateLimitedError(BridgeError):
    kind = ErrorKind.RATE_LIMITED
    default_status = HTTPStatus.TOO_MANY_REQUESTS


class InternalError(BridgeError):
    kind = ErrorKind.INTERNAL
    default_status = HTTPStatus.INTERNAL_SERVER_ERROR


class SessionConfigError(Exception):
    """The session source exists but cannot be used. Fatal at startup."""


def upstream_status_error(stage: str, status_code: int, body: str) -> BadUpstreamError:
    """Wrap a non-200 upstream response, keeping the upstream status for the caller."""
    status = int(status_code or 0)
    return BadUpstreamError(
        f"{stage} failed: {(body or '').strip()}",
        status_code=status if status >= HTTPStatus.BAD_REQUEST else None,
    )
