"""
Error taxonomy shared by the provider client, the persistence layer and the
scheduling loop.

Every failure that reaches the loop is one of four kinds:

- TransientProviderError: network failure, timeout, 429 or 5xx. Retried on a
  later tick.
- ValidationError: the provider rejected the request (bad address, bad pair,
  amount out of range). Terminal, never retried.
- NotFoundError: the provider does not know the order id.
- PersistenceError: a database write failed. Treated like a transient error.

ProviderResponseError is the transient kind raised for a 2xx answer that does
not parse. After an order request it is ambiguous: the order may exist.
"""
from enum import Enum
from typing import Optional

import httpx
from pymongo.errors import PyMongoError


class SwapSmithError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransientProviderError(SwapSmithError):
    pass


class ValidationError(SwapSmithError):
    pass


class NotFoundError(SwapSmithError):
    pass


class PersistenceError(SwapSmithError):
    pass


class ProviderResponseError(TransientProviderError):
    """The provider answered 2xx with a body we could not read."""


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERSISTENCE = "persistence"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorCategory.TRANSIENT, ErrorCategory.PERSISTENCE)


def error_for_status(status_code: int, message: str) -> SwapSmithError:
    """Build the typed error for a non-2xx provider response."""
    if status_code == 404:
        return NotFoundError(message, status_code)
    if status_code == 429 or status_code >= 500:
        return TransientProviderError(message, status_code)
    if status_code in (400, 409, 422):
        return ValidationError(message, status_code)
    # 401/403 mean our credentials are wrong; nothing a retry will fix
    return ValidationError(message, status_code)


def classify_error(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, TransientProviderError):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, ValidationError):
        return ErrorCategory.VALIDATION
    if isinstance(exc, NotFoundError):
        return ErrorCategory.NOT_FOUND
    if isinstance(exc, PersistenceError):
        return ErrorCategory.PERSISTENCE
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        return classify_error(error_for_status(exc.response.status_code, str(exc)))
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, TimeoutError)):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, PyMongoError):
        return ErrorCategory.PERSISTENCE
    return ErrorCategory.UNKNOWN
