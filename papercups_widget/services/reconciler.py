"""Timeline engine: optimistic sends, server echoes and seen state.

Every locally sent message is inserted immediately without created_at
(optimistic). When the server broadcasts the canonical copy, the optimistic
entry with the same sent_at instant and body is replaced in place, so a
message never shows up twice. Everything else is appended.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from papercups_widget.bridge.host import HostBridge, HostEvent
from papercups_widget.channels.manager import MESSAGE_EVENT, ChannelManager
from papercups_widget.core.config import Settings
from papercups_widget.metrics.widget_metrics import (
    messages_marked_seen_total,
    messages_received_total,
    messages_sent_total,
)
from papercups_widget.models.message import Message, MessageType
from papercups_widget.services.visibility import VisibilityGate
from papercups_widget.state import WidgetState
from papercups_widget.utils.messages import (
    are_dates_equal,
    bodies_match,
    is_customer_message,
    shorten,
    should_activate_game_mode,
)

logger = logging.getLogger(__name__)

SEEN_EVENT = "messages:seen"

Clock = Callable[[], datetime]
ConversationStarter = Callable[[Optional[str], Optional[str]], Awaitable[Any]]
MessageDraft = Union[Message, Dict[str, Any]]


def utc_now() -> datetime:
    # Millisecond precision, matching what the backend stores and echoes back
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class MessageReconciler:
    """Owns the ordered message timeline of the active conversation."""

    def __init__(
        self,
        state: WidgetState,
        channels: ChannelManager,
        bridge: HostBridge,
        gate: VisibilityGate,
        settings: Settings,
        start_conversation: Optional[ConversationStarter] = None,
        clock: Clock = utc_now,
        scroll_into_view: Optional[Callable[[], None]] = None,
    ):
        self.state = state
        self.channels = channels
        self.bridge = bridge
        self.gate = gate
        self.settings = settings
        self.start_conversation = start_conversation
        self.clock = clock
        self._scroll_into_view = scroll_into_view or (lambda: None)
        self.messages: List[Message] = []

    def reset(self, messages: Iterable[Message]) -> None:
        """Install a fresh timeline (greeting plus fetched history)."""
        self.messages = list(messages)

    def scroll_into_view(self) -> None:
        self._scroll_into_view()

    async def send(
        self, draft: MessageDraft, email: Optional[str] = None
    ) -> Optional[Message]:
        """Optimistically insert a customer message and push it to the channel.

        Creates the customer and conversation first when none exist yet.
        Errors from that step propagate; the optimistic entry then stays
        unconfirmed.

        Args:
            draft: Body and/or file_ids composed by the visitor.
            email: E-mail typed into the widget, stored on the new customer.

        Returns:
            The optimistic entry, or None when nothing was sent.
        """
        try:
            draft_message = (
                draft if isinstance(draft, Message) else Message.model_validate(draft)
            )
        except ValidationError:
            logger.warning("Ignoring malformed message draft")
            return None

        body = draft_message.body
        is_missing_body = not body or not body.strip()
        is_missing_attachments = not draft_message.file_ids

        if self.state.is_sending or (is_missing_body and is_missing_attachments):
            return None

        if should_activate_game_mode(body, self.settings.GAME_MODE_TRIGGERS):
            self.state.is_game_mode = True
            return None

        sent_at = self.clock()
        message = draft_message.model_copy(
            update={
                "customer_id": self.state.customer_id,
                "type": MessageType.CUSTOMER,
                "sent_at": sent_at,
            }
        )
        self.messages.append(message)
        self.scroll_into_view()

        self.state.is_sending = True
        try:
            if not self.state.customer_id or not self.state.conversation_id:
                if self.start_conversation is None:
                    raise RuntimeError("No conversation starter configured")
                await self.start_conversation(self.state.customer_id, email)

            if not self.channels.has_conversation_channel:
                logger.warning("No conversation channel; message stays unsent")
                return message

            payload = message.model_copy(
                update={"customer_id": self.state.customer_id}
            ).to_payload()
            payload.pop("type", None)
            await self.channels.push(MESSAGE_EVENT, payload)
            messages_sent_total.inc()

            self.bridge.emit(
                HostEvent.MESSAGE_SENT,
                {
                    **payload,
                    "type": MessageType.CUSTOMER.value,
                    "conversation_id": self.state.conversation_id,
                },
            )
        finally:
            self.state.is_sending = False

        return message

    def find_optimistic_index(self, message: Message) -> Optional[int]:
        """Index of the unconfirmed entry this server message confirms, if any."""
        for index, existing in enumerate(self.messages):
            if existing.is_confirmed:
                continue
            if are_dates_equal(existing.sent_at, message.sent_at) and bodies_match(
                existing.body, message.body
            ):
                return index
        return None

    async def receive(self, payload: Union[Message, Dict[str, Any]]) -> Optional[Message]:
        """Merge a message broadcast by the server into the timeline."""
        try:
            message = (
                payload if isinstance(payload, Message) else Message.model_validate(payload)
            )
        except ValidationError:
            logger.warning("Dropping malformed inbound message")
            return None

        # A real message supersedes the easter egg
        self.state.is_game_mode = False

        index = self.find_optimistic_index(message)
        if index is not None:
            self.messages[index] = message
            messages_received_total.labels(outcome="reconciled").inc()
        else:
            self.messages.append(message)
            messages_received_total.labels(outcome="appended").inc()

        self.bridge.emit(HostEvent.MESSAGE_RECEIVED, message.to_payload())
        self.scroll_into_view()

        if self.gate.should_mark_as_seen(message):
            await self.mark_all_seen()
        elif index is None:
            # Not an echo of our own send, so it came from the other side
            self.bridge.emit(HostEvent.MESSAGES_UNSEEN, {"message": message.to_payload()})

        return message

    async def mark_all_seen(self) -> bool:
        """Stamp every unseen entry and acknowledge on the channel.

        Entries that already carry seen_at keep their original time.

        Returns:
            False when there is no active conversation to acknowledge on.
        """
        if (
            not self.channels.has_conversation_channel
            or not self.state.customer_id
            or not self.state.conversation_id
        ):
            return False

        logger.debug("Marking messages as seen!")
        seen_at = self.clock()
        stamped = 0
        updated: List[Message] = []
        for message in self.messages:
            if message.is_seen:
                updated.append(message)
            else:
                updated.append(message.model_copy(update={"seen_at": seen_at}))
                stamped += 1
        self.messages = updated
        messages_marked_seen_total.inc(stamped)

        await self.channels.push(SEEN_EVENT, {})
        self.bridge.emit(HostEvent.MESSAGES_SEEN, {})
        return True

    def has_customer_messages(self) -> bool:
        return any(
            is_customer_message(message, self.state.customer_id)
            for message in self.messages
        )

    def unread_previews(self) -> List[Message]:
        """Unseen messages from the other side, shortened for the closed widget.

        At most two are shown; if their bodies are long together, only the
        first one.
        """
        unread = [
            message.model_copy(
                update={
                    "body": shorten(message.body, self.settings.UNREAD_PREVIEW_MAX_CHARS)
                }
            )
            for message in self.messages
            if not message.is_seen
            and not is_customer_message(message, self.state.customer_id)
        ][:2]

        total_chars = sum(len(message.body or "") for message in unread)
        if total_chars > self.settings.UNREAD_PREVIEW_MAX_TOTAL_CHARS:
            return unread[:1]
        return unread
