from __future__ import annotations

from typing import Any


class ApiError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"HTTP {self.status_code}: {self.message}"


class UnauthorizedError(ApiError):
    def __init__(self, message: str):
        super().__init__(message, status_code=401)


class ForbiddenError(ApiError):
    def __init__(self, message: str):
        super().__init__(message, status_code=403)


class NotFoundError(ApiError):
    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class ValidationError(ApiError):
    def __init__(self, message: str, errors: Any = None):
        super().__init__(message, status_code=422)
        self.errors = errors


class RateLimitError(ApiError):
    def __init__(self, message: str):
        super().__init__(message, status_code=429)


class ServerError(ApiError):
    def __init__(self, message: str, *, status_code: int = 500):
        super().__init__(message, status_code=status_code)


class NetworkError(ApiError):
    pass


class RequestTimeoutError(ApiError):
    pass


class MalformedResponseError(ApiError):
    """The server answered, but not in a shape this client understands."""


# Failures worth another attempt at the transport layer.
TRANSIENT_ERRORS: tuple[type[ApiError], ...] = (
    NetworkError,
    RequestTimeoutError,
    RateLimitError,
    ServerError,
)
