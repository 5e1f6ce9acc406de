"""
Failure taxonomy shared by adapters, the critical lane and the self-healer.

Adapter layers should raise ``MarketplaceError`` with an explicit
``FailureKind`` so the healer classifies by type. Raw exceptions from
third-party code are still classified through status codes, exception types
and, as a last resort, message patterns.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class FailureKind(str, Enum):
    TIMEOUT = "ETIMEDOUT"
    CONNECTION_RESET = "ECONNRESET"
    CONNECTION_REFUSED = "ECONNREFUSED"
    BAD_REQUEST = "ERR_BAD_REQUEST"
    UNAUTHORIZED = "401"
    FORBIDDEN = "403"
    RATE_LIMITED = "429"
    SERVER_ERROR = "500"
    SERVICE_UNAVAILABLE = "503"
    MALFORMED_DATA = "SyntaxError"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_status(cls, status: Any) -> Optional["FailureKind"]:
        """Map an HTTP status code to a kind, or None when it is not one we handle."""
        try:
            code = int(status)
        except (TypeError, ValueError):
            return None
        if code == 401:
            return cls.UNAUTHORIZED
        if code == 403:
            return cls.FORBIDDEN
        if code == 429:
            return cls.RATE_LIMITED
        if code == 503:
            return cls.SERVICE_UNAVAILABLE
        if 500 <= code <= 599:
            return cls.SERVER_ERROR
        return None

    @classmethod
    def from_code(cls, code: Any) -> Optional["FailureKind"]:
        """Map an errno-style code (``ETIMEDOUT``) or status string (``"429"``)."""
        if isinstance(code, FailureKind):
            return code
        if code is None:
            return None
        text = str(code).strip()
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == text:
                return kind
        return cls.from_status(text) if text.isdigit() else None


class ShopwardenError(Exception):
    """Base class for errors raised by the safety core."""


class MarketplaceError(ShopwardenError):
    """A failure produced at an external-call boundary.

    Args:
        message: Human readable description.
        kind: Explicit classification, when the adapter knows it.
        status: HTTP status code, when there was a response.
        code: Transport error code such as ``ECONNRESET``.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[FailureKind] = None,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.code = code


class QueueDrainedError(ShopwardenError):
    """Raised into every pending critical-lane task by ``drain()``."""

    def __init__(self, message: str = "Queue drained"):
        super().__init__(message)
