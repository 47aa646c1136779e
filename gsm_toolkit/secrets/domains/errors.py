"""Error types raised by the Secret Manager client."""
from google.api_core import exceptions as api_exceptions

# Longest slice of a response body quoted in an error message
MAX_MESSAGE_BODY = 256


class SecretManagerError(Exception):
    """Base class for every error raised by gsm-toolkit operations."""
    pass


class InvalidArgument(SecretManagerError):
    """Project ID or secret name failed syntax validation. Never retried."""
    pass


class AuthFailure(SecretManagerError):
    """Project ID or access token could not be resolved from the metadata server."""
    pass


class TransientFailure(SecretManagerError):
    """Network error, 5xx or undecodable body. Retried up to the attempt limit."""
    pass


class ClientError(SecretManagerError):
    """
    Terminal 4xx response.

    Attributes:
        status_code: HTTP status returned by the server
        body: Full response body text
        api_error: Matching google.api_core exception for the status
    """

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.api_error = api_exceptions.from_http_status(status_code, message)


class PermissionDenied(ClientError):
    """401 or 403 from the server."""
    pass


class NotFound(ClientError):
    """404 from the server."""
    pass


class Cancelled(SecretManagerError):
    """The caller's context was cancelled before the operation finished."""
    pass


class DeadlineExceeded(Cancelled):
    """The caller's context deadline expired before the operation finished."""
    pass


def quote_body(body: str) -> str:
    """Shorten a response body for inclusion in an error message."""
    if len(body) <= MAX_MESSAGE_BODY:
        return body
    return f"{body[:MAX_MESSAGE_BODY]}..."


def client_error(phase: str, status_code: int, body: str = "") -> ClientError:
    """
    Build the terminal error for a 4xx response.

    Args:
        phase: Operation phase, e.g. "access secret"
        status_code: HTTP status code (400-499)
        body: Response body text; the message quotes at most MAX_MESSAGE_BODY characters

    Returns:
        ClientError subclass matching the status
    """
    message = f"failed to {phase}: status {status_code}"
    if body:
        message = f"{message}: {quote_body(body)}"

    error_class = ClientError
    if status_code in (401, 403):
        error_class = PermissionDenied
    elif status_code == 404:
        error_class = NotFound
    return error_class(message, status_code=status_code, body=body)
