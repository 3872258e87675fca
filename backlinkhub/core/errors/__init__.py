"""
Error code system.

BacklinkHubError is the base exception for all structured errors.
Raise it (or a subclass) with an error code from the registry, and the
error middleware will produce a JSON response carrying an ``error`` field.

Usage:
    from backlinkhub.core.errors import QueueError
    raise QueueError(detail="select on backlinks failed: connection reset")
"""

from __future__ import annotations

import re

CODE_PATTERN = re.compile(r"^BLH-[A-Z]{2,6}-\d{3}$")


class BacklinkHubError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "BLH-DB-001".
        detail: Human-readable detail, logged and returned as the error message.
        context: Arbitrary key-value context for structured logging.
    """

    default_code: str = "BLH-SYS-001"

    def __init__(
        self,
        code: str | None = None,
        detail: str | None = None,
        context: dict | None = None,
    ) -> None:
        code = code or self.default_code
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        super().__init__(detail or code)


class ConfigurationError(BacklinkHubError):
    default_code = "BLH-CFG-001"


class ValidationError(BacklinkHubError):
    default_code = "BLH-API-001"


class QueueError(BacklinkHubError):
    """Select or claim failure: aborts the whole queue run."""

    default_code = "BLH-DB-001"


class ReconciliationError(BacklinkHubError):
    """Billing listing failure: aborts the whole reconciliation run."""

    default_code = "BLH-BIL-001"


class WorkerInvocationError(BacklinkHubError):
    default_code = "BLH-WRK-001"

    def __init__(self, worker: str, detail: str, status_code: int | None = None) -> None:
        super().__init__(
            detail=detail,
            context={"worker": worker, "status_code": status_code},
        )
        self.worker = worker
        self.status_code = status_code


class WordPressError(BacklinkHubError):
    default_code = "BLH-WP-001"

    def __init__(self, detail: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(detail=detail, context={"status_code": status_code})
        self.status_code = status_code
        self.body = body
