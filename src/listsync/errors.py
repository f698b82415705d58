"""Error hierarchy for the listsync library.

Every public error class inherits from :class:`ListSyncError`.  Each carries a
machine-readable ``code`` (from :class:`ErrorCode`), a human-readable
``message``, an optional structured ``context`` dict, and an optional
``cause`` (chained exception).

Per-item batch failures are never raised: they are reported in the outcome
maps returned by the retry orchestrator.  The classes below cover failures of
the batch submission as a whole.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Error code enum
# ---------------------------------------------------------------------------

class ErrorCode(str, Enum):
    """Machine-readable error codes for every error the library can raise."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    SERVICE_ERROR = "SERVICE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    BATCH_RESPONSE_ERROR = "BATCH_RESPONSE_ERROR"


# ---------------------------------------------------------------------------
# Base error
# ---------------------------------------------------------------------------

class ListSyncError(Exception):
    """Base exception for all listsync errors.

    Parameters
    ----------
    code:
        A value from :class:`ErrorCode` (or any string) identifying the
        error category.
    message:
        A developer-friendly description of what went wrong.
    context:
        Arbitrary structured data providing extra diagnostic detail.
    cause:
        The underlying exception, if this error wraps another.
    """

    def __init__(
        self,
        code: str,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.code: str = code
        self.message: str = message
        self.context: dict[str, Any] = context or {}
        self.cause: Exception | None = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        ctx = f", context={self.context!r}" if self.context else ""
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}{ctx})"


# ---------------------------------------------------------------------------
# Batch-level HTTP errors
# ---------------------------------------------------------------------------

class ListSyncValidationError(ListSyncError):
    """The batch endpoint rejected the envelope with 400.

    Context keys: ``status_code``, ``error_code``, ``body``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


class ListSyncAuthError(ListSyncError):
    """The batch endpoint returned 401.

    Context keys: ``status_code``, ``error_code``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.AUTH_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


class ListSyncPermissionError(ListSyncError):
    """The batch endpoint returned 403.

    Context keys: ``status_code``, ``error_code``, ``operation``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.PERMISSION_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


class ListSyncNotFoundError(ListSyncError):
    """The batch endpoint itself returned 404 (wrong base URL or version).

    Context keys: ``status_code``, ``path``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message,
            context=context,
            cause=cause,
        )


class ListSyncServiceError(ListSyncError):
    """The batch endpoint answered with a non-success status that is not a
    client error (throttling, 5xx, unexpected redirects).

    Context keys: ``status_code``, ``retry_after``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.SERVICE_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


# ---------------------------------------------------------------------------
# Transport / protocol errors
# ---------------------------------------------------------------------------

class ListSyncNetworkError(ListSyncError):
    """A transport-level failure occurred (timeout, DNS, connection reset).

    Context keys: ``url``, ``attempt``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.NETWORK_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


class ListSyncBatchResponseError(ListSyncError):
    """A batch response could not be interpreted: malformed JSON, missing
    item ids, or ids that were never submitted.

    Context keys: ``missing_ids``, ``unexpected_ids``, ``reason``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.BATCH_RESPONSE_ERROR,
            message=message,
            context=context,
            cause=cause,
        )
