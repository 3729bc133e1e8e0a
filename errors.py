"""Error kinds raised by the optimization pipeline and the render proxy.

Every error carries the HTTP status it maps to; ``main.py`` turns them into
``{"error": message}`` JSON responses.
"""
from fastapi import status


class OptimizerError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequest(OptimizerError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(OptimizerError):
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFound(OptimizerError):
    status_code = status.HTTP_404_NOT_FOUND


class ServiceUnavailable(OptimizerError):
    """Server-side misconfiguration, e.g. no language-model key."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class UpstreamError(OptimizerError):
    """An external service answered with a non-success status or was unreachable."""

    status_code = status.HTTP_502_BAD_GATEWAY


class MalformedUpstreamResponse(OptimizerError):
    """The external call succeeded but its body is unparsable or wrong-shaped."""

    status_code = status.HTTP_502_BAD_GATEWAY


class IncompleteUpstreamResponse(OptimizerError):
    status_code = status.HTTP_502_BAD_GATEWAY


class Timeout(OptimizerError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
