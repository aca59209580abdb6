"""
Exception hierarchy for the Papercups widget sync engine.

Every error raised by the engine derives from WidgetError and carries a
stable error_code for log correlation.
"""

from typing import Any, Optional


class WidgetError(Exception):
    """Base exception for all widget errors."""

    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.error_code = error_code or self.__class__.__name__


# Backend Exceptions


class BackendRequestError(WidgetError):
    """Raised when a backend HTTP call fails (network, timeout or bad status)."""

    def __init__(
        self,
        operation: str,
        detail: str,
        status: Optional[int] = None,
    ):
        super().__init__(
            f"{operation} failed: {detail}",
            error_code=f"BACKEND_{operation.upper()}_ERROR",
        )
        self.operation = operation
        self.status = status


# Channel Exceptions


class ChannelError(WidgetError):
    """Base class for realtime channel failures."""

    def __init__(self, topic: str, detail: str, error_code: Optional[str] = None):
        super().__init__(f"Channel '{topic}': {detail}", error_code=error_code)
        self.topic = topic


class ChannelJoinError(ChannelError):
    """Raised when the server answers a join with an error status."""

    def __init__(self, topic: str, response: Any = None):
        super().__init__(topic, f"join rejected ({response!r})", "CHANNEL_JOIN_ERROR")
        self.response = response


class ChannelTimeoutError(ChannelError):
    """Raised when a channel request receives no reply in time."""

    def __init__(self, topic: str, event: str, timeout: float):
        super().__init__(
            topic,
            f"no reply to {event} within {timeout:.1f}s",
            "CHANNEL_TIMEOUT",
        )
        self.event = event


class NotConnectedError(WidgetError):
    """Raised when the socket is used before connect() or after close()."""

    def __init__(self, detail: str = "Socket is not connected"):
        super().__init__(detail, error_code="NOT_CONNECTED")
