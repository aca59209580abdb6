"""Host-page messaging contract.

The widget runs inside a page it does not control. Outbound, it broadcasts
fire-and-forget {event, payload} notifications; inbound, the page sends
commands and reports visibility changes. The concrete bridge (a
postMessage-style transport) lives outside the engine; InMemoryHostBridge
is the reference implementation used by embedders that drive the widget
directly and by the test suite.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class HostEvent(str, Enum):
    """Notifications sent to the embedding page."""

    CHAT_LOADED = "chat:loaded"
    CUSTOMER_CREATED = "customer:created"
    CUSTOMER_UPDATED = "customer:updated"
    CONVERSATION_JOIN = "conversation:join"
    MESSAGE_SENT = "message:sent"
    MESSAGE_RECEIVED = "message:received"
    MESSAGES_UNSEEN = "messages:unseen"
    MESSAGES_SEEN = "messages:seen"
    PAPERCUPS_OPEN = "papercups:open"
    PAPERCUPS_CLOSE = "papercups:close"


class HostCommand(str, Enum):
    """Commands the embedding page may send to the widget."""

    CUSTOMER_UPDATE = "customer:update"
    NOTIFICATIONS_DISPLAY = "notifications:display"
    TOGGLE = "papercups:toggle"
    PLAN = "papercups:plan"
    PING = "papercups:ping"

    @classmethod
    def parse(cls, event: Any) -> Optional["HostCommand"]:
        try:
            return cls(event)
        except ValueError:
            return None


CommandListener = Callable[[str, Dict[str, Any]], Awaitable[Any]]
VisibilityListener = Callable[[], Awaitable[Any]]
Unsubscribe = Callable[[], None]


class HostBridge(ABC):
    """Boundary between the widget and its embedding page."""

    @abstractmethod
    def emit(self, event: HostEvent, payload: Optional[Dict[str, Any]] = None) -> None:
        """Send a one-way notification to the host page."""

    @abstractmethod
    def is_hidden(self) -> bool:
        """Whether the host page is currently hidden/backgrounded."""

    @abstractmethod
    def add_command_listener(self, listener: CommandListener) -> Unsubscribe:
        """Register a handler for host commands; returns its unsubscribe function."""

    @abstractmethod
    def add_visibility_listener(self, listener: VisibilityListener) -> Unsubscribe:
        """Register a page visibility change handler; returns its unsubscribe function."""


class InMemoryHostBridge(HostBridge):
    """Host bridge that records emitted events and dispatches commands in-process."""

    def __init__(self, hidden: bool = False):
        self.hidden = hidden
        self.events: List[Tuple[str, Optional[Dict[str, Any]]]] = []
        self._command_listeners: List[CommandListener] = []
        self._visibility_listeners: List[VisibilityListener] = []

    def emit(self, event: HostEvent, payload: Optional[Dict[str, Any]] = None) -> None:
        logger.debug("Sending event to host: %s %s", event.value, payload)
        self.events.append((event.value, payload))

    def is_hidden(self) -> bool:
        return self.hidden

    def add_command_listener(self, listener: CommandListener) -> Unsubscribe:
        self._command_listeners.append(listener)
        return lambda: self._remove(self._command_listeners, listener)

    def add_visibility_listener(self, listener: VisibilityListener) -> Unsubscribe:
        self._visibility_listeners.append(listener)
        return lambda: self._remove(self._visibility_listeners, listener)

    @staticmethod
    def _remove(listeners: List[Any], listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._command_listeners) + len(self._visibility_listeners)

    async def send_command(
        self, event: str, payload: Optional[Dict[str, Any]] = None
    ) -> None:
        """Deliver a host command to every registered listener."""
        for listener in list(self._command_listeners):
            await listener(event, payload or {})

    async def set_hidden(self, hidden: bool) -> None:
        """Change page visibility and notify visibility listeners."""
        self.hidden = hidden
        for listener in list(self._visibility_listeners):
            await listener()

    def events_named(self, event: HostEvent) -> List[Optional[Dict[str, Any]]]:
        return [payload for name, payload in self.events if name == event.value]
