from typing import Optional


class LibdashError(Exception):
    """Base class for library dashboard errors."""


class ValidationError(LibdashError):
    """Raised when a create/update payload is missing a field or a relationship."""


class TransportError(LibdashError):
    """Raised by the API client when a request does not produce a usable response."""

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500
