"""Channel manager owning the widget's realtime subscriptions.

One socket, three channel roles:
  - room:<account_id>                 availability room, feeds presence
  - conversation:lobby:<customer_id>  only while no conversation exists
  - conversation:<conversation_id>    the live conversation channel

At most one conversation channel is active; joining a new one leaves the
previous one first. Join/leave failures are logged and never escalated.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from papercups_widget.bridge.host import HostBridge, HostEvent
from papercups_widget.channels.phoenix import PhoenixChannel, PhoenixSocket
from papercups_widget.channels.presence import Presence, SyncCallback
from papercups_widget.core.exceptions import ChannelError, NotConnectedError
from papercups_widget.metrics.widget_metrics import channel_joins_total

logger = logging.getLogger(__name__)

MESSAGE_EVENT = "shout"
CONVERSATION_CREATED_EVENT = "conversation:created"

PayloadHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class ChannelRole(str, Enum):
    ROOM = "room"
    LOBBY = "lobby"
    CONVERSATION = "conversation"


class ChannelManager:
    """Joins, leaves and routes events for the widget's channels."""

    def __init__(
        self,
        socket: PhoenixSocket,
        bridge: HostBridge,
        timeout: Optional[float] = None,
    ):
        self.socket = socket
        self.bridge = bridge
        self.timeout = timeout
        self.room: Optional[PhoenixChannel] = None
        self.presence: Optional[Presence] = None
        self.lobby: Optional[PhoenixChannel] = None
        self.conversation_channel: Optional[PhoenixChannel] = None
        self.conversation_id: Optional[str] = None
        self._message_handlers: List[PayloadHandler] = []
        self._presence_handlers: List[SyncCallback] = []

    @property
    def has_conversation_channel(self) -> bool:
        return self.conversation_channel is not None

    def on_message(self, handler: PayloadHandler) -> None:
        """Register a handler for messages broadcast on the conversation channel."""
        self._message_handlers.append(handler)

    def on_presence_sync(self, handler: SyncCallback) -> None:
        self._presence_handlers.append(handler)

    async def connect(self) -> bool:
        """Open the socket; called once at startup."""
        try:
            await self.socket.connect()
        except (OSError, ChannelError) as e:
            logger.error("Unable to connect to Papercups socket: %s", e)
            return False
        return True

    async def join_availability_room(self, account_id: str) -> bool:
        room = self.socket.channel(f"room:{account_id}", {})
        presence = Presence(room)
        presence.on_sync(self._handle_presence_sync)
        self.room = room
        self.presence = presence
        return await self._join(room, ChannelRole.ROOM)

    async def join_lobby(self, customer_id: str, on_created: PayloadHandler) -> bool:
        """Listen for the backend creating this customer's first conversation."""
        await self.leave_lobby()
        lobby = self.socket.channel(f"conversation:lobby:{customer_id}", {})
        lobby.on(CONVERSATION_CREATED_EVENT, on_created)
        self.lobby = lobby
        return await self._join(lobby, ChannelRole.LOBBY)

    async def leave_lobby(self) -> None:
        lobby, self.lobby = self.lobby, None
        if lobby is not None:
            await self._leave(lobby, ChannelRole.LOBBY)

    async def join_conversation(
        self, conversation_id: str, customer_id: Optional[str]
    ) -> bool:
        """Switch the live subscription to the given conversation.

        The previous conversation channel (and the lobby, which is only
        needed before a conversation exists) is left first.
        """
        await self.leave_conversation()
        await self.leave_lobby()

        logger.debug("Joining channel: %s", conversation_id)
        channel = self.socket.channel(
            f"conversation:{conversation_id}", {"customer_id": customer_id}
        )
        channel.on(MESSAGE_EVENT, self._handle_message)
        self.conversation_channel = channel
        self.conversation_id = conversation_id

        joined = await self._join(channel, ChannelRole.CONVERSATION)
        self.bridge.emit(
            HostEvent.CONVERSATION_JOIN,
            {"conversationId": conversation_id, "customerId": customer_id},
        )
        return joined

    async def leave_conversation(self) -> None:
        channel, self.conversation_channel = self.conversation_channel, None
        self.conversation_id = None
        if channel is not None:
            await self._leave(channel, ChannelRole.CONVERSATION)

    async def push(self, event: str, payload: Dict[str, Any]) -> bool:
        """Fire-and-forget push on the conversation channel."""
        channel = self.conversation_channel
        if channel is None:
            logger.warning("No conversation channel to push %s on", event)
            return False
        try:
            await channel.push(event, payload)
            return True
        except (ChannelError, NotConnectedError) as e:
            logger.warning("Unable to push %s on %s: %s", event, channel.topic, e)
            return False

    async def close(self) -> None:
        """Leave every channel and close the socket."""
        await self.leave_conversation()
        await self.leave_lobby()
        room, self.room = self.room, None
        if room is not None:
            await self._leave(room, ChannelRole.ROOM)
        await self.socket.close()

    async def _join(self, channel: PhoenixChannel, role: ChannelRole) -> bool:
        try:
            response = await channel.join(timeout=self.timeout)
        except (ChannelError, NotConnectedError) as e:
            channel_joins_total.labels(role=role.value, result="error").inc()
            logger.debug("Unable to join %s: %s", channel.topic, e)
            return False
        channel_joins_total.labels(role=role.value, result="ok").inc()
        logger.debug("Joined %s successfully: %s", channel.topic, response)
        return True

    async def _leave(self, channel: PhoenixChannel, role: ChannelRole) -> None:
        try:
            await channel.leave(timeout=self.timeout)
            logger.debug("Left %s channel %s", role.value, channel.topic)
        except (ChannelError, NotConnectedError) as e:
            logger.debug("Unable to leave %s cleanly: %s", channel.topic, e)

    async def _handle_message(self, payload: Dict[str, Any]) -> None:
        for handler in list(self._message_handlers):
            await handler(payload)

    def _handle_presence_sync(self, presences: List[Dict[str, Any]]) -> None:
        logger.debug("Syncing presence: %s", presences)
        for handler in list(self._presence_handlers):
            handler(presences)
