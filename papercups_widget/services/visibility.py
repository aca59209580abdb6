"""Seen-state gating on page visibility and widget open state."""

import logging
from typing import TYPE_CHECKING, Iterable

from papercups_widget.bridge.host import HostBridge
from papercups_widget.models.message import Message
from papercups_widget.state import WidgetState

if TYPE_CHECKING:
    from papercups_widget.services.reconciler import MessageReconciler

logger = logging.getLogger(__name__)


class VisibilityGate:
    """Decide when unseen agent messages count as read.

    A message is seen-worthy when it is not seen yet, was written by an
    agent, the host page is visible and the widget is open.
    """

    def __init__(self, state: WidgetState, bridge: HostBridge):
        self.state = state
        self.bridge = bridge

    @property
    def is_page_visible(self) -> bool:
        return not self.bridge.is_hidden()

    def should_mark_as_seen(self, message: Message) -> bool:
        if message.is_seen or not self.is_page_visible:
            return False
        return message.is_from_agent and self.state.is_open

    def has_seen_worthy(self, messages: Iterable[Message]) -> bool:
        return any(self.should_mark_as_seen(message) for message in messages)

    async def handle_visibility_change(self, reconciler: "MessageReconciler") -> bool:
        """Mark the timeline seen when the page (re)appears with the widget open.

        Returns:
            True if mark-all-seen was triggered.
        """
        if not self.is_page_visible:
            return False
        if not self.has_seen_worthy(reconciler.messages):
            return False
        return await reconciler.mark_all_seen()
