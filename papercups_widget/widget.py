"""Chat widget orchestration.

ChatWidget wires the sync services together and exposes the lifecycle the
embedding page drives: mount, host commands, user actions, unmount.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from papercups_widget.bridge.host import (
    HostBridge,
    HostCommand,
    HostEvent,
    Unsubscribe,
)
from papercups_widget.channels.manager import ChannelManager
from papercups_widget.channels.phoenix import PhoenixSocket
from papercups_widget.core.config import (
    Settings,
    WidgetConfig,
    get_settings,
    get_websocket_url,
)
from papercups_widget.core.logging import setup_logging
from papercups_widget.integrations.papercups_api import PapercupsAPI
from papercups_widget.models.customer import CustomerMetadata
from papercups_widget.models.message import Message
from papercups_widget.services.conversation_sync import (
    ConversationSynchronizer,
    SyncResult,
)
from papercups_widget.services.identity import IdentityResolver
from papercups_widget.services.presence_tracker import PresenceTracker
from papercups_widget.services.reconciler import (
    Clock,
    MessageDraft,
    MessageReconciler,
    utc_now,
)
from papercups_widget.services.visibility import VisibilityGate
from papercups_widget.state import WidgetState

logger = logging.getLogger(__name__)

CommandHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


def parse_version(version: str) -> tuple:
    parts = []
    for part in version.split("."):
        digits = "".join(c for c in part if c.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


class ChatWidget:
    """One embedded chat widget instance."""

    def __init__(
        self,
        config: WidgetConfig,
        bridge: HostBridge,
        settings: Optional[Settings] = None,
        api: Optional[PapercupsAPI] = None,
        socket: Optional[PhoenixSocket] = None,
        version: str = "1.1.2",
        clock: Clock = utc_now,
        scroll_into_view: Optional[Callable[[], None]] = None,
    ):
        self.config = config
        self.bridge = bridge
        self.settings = settings or get_settings()
        self.version = version

        base_url = config.resolve_base_url(self.settings)
        self.api = api or PapercupsAPI(self.settings, base_url=base_url)
        self.socket = socket or PhoenixSocket(
            get_websocket_url(base_url),
            timeout=self.settings.CHANNEL_TIMEOUT_SECONDS,
            heartbeat_interval=self.settings.HEARTBEAT_INTERVAL_SECONDS,
            reconnect_delay_seconds=self.settings.RECONNECT_DELAY_SECONDS,
        )

        self.state = WidgetState()
        self.channels = ChannelManager(
            self.socket, bridge, timeout=self.settings.CHANNEL_TIMEOUT_SECONDS
        )
        self.identity = IdentityResolver(self.api, bridge, config.account_id)
        self.presence = PresenceTracker(self.state)
        self.gate = VisibilityGate(self.state, bridge)
        self.reconciler = MessageReconciler(
            self.state,
            self.channels,
            bridge,
            self.gate,
            self.settings,
            clock=clock,
            scroll_into_view=scroll_into_view,
        )
        self.synchronizer = ConversationSynchronizer(
            config,
            self.settings,
            self.state,
            self.api,
            self.identity,
            self.channels,
            self.reconciler,
            bridge,
            clock=clock,
        )
        self.reconciler.start_conversation = self.synchronizer.initialize_new_conversation

        self.channels.on_message(self.reconciler.receive)
        self.channels.on_presence_sync(self.presence.handle_sync)

        self.subscriptions: List[Unsubscribe] = []
        self._command_handlers: Dict[HostCommand, CommandHandler] = {
            HostCommand.CUSTOMER_UPDATE: self._handle_customer_update,
            HostCommand.NOTIFICATIONS_DISPLAY: self._handle_notifications_display,
            HostCommand.TOGGLE: self.handle_toggle_display,
            HostCommand.PLAN: self._handle_plan,
            HostCommand.PING: self._handle_ping,
        }

    @property
    def messages(self) -> List[Message]:
        return self.reconciler.messages

    async def mount(self) -> Optional[SyncResult]:
        """Start the widget: listeners, socket, presence, conversation sync."""
        setup_logging(self.settings.DEBUG)

        self.subscriptions = [
            self.bridge.add_command_listener(self.handle_host_command),
            self.bridge.add_visibility_listener(self.handle_visibility_change),
        ]

        await self.channels.connect()
        await self.channels.join_availability_room(self.config.account_id)

        result = await self.synchronizer.initialize(
            self.config.customer_id, self.config.customer
        )

        self.bridge.emit(HostEvent.CHAT_LOADED)

        if self.is_on_deprecated_version():
            logger.warning("You are currently on a deprecated version of Papercups.")
            logger.warning(
                "Please upgrade to version %s or above.",
                self.settings.MIN_SUPPORTED_VERSION,
            )

        return result

    async def unmount(self) -> None:
        """Release channels, the socket, the HTTP session and host listeners."""
        await self.synchronizer.close()
        await self.channels.close()
        await self.api.cleanup()

        for unsubscribe in self.subscriptions:
            if callable(unsubscribe):
                unsubscribe()
        self.subscriptions = []

    async def handle_host_command(self, event: str, payload: Dict[str, Any]) -> Any:
        logger.debug("Handling host command: %s %s", event, payload)
        command = HostCommand.parse(event)
        if command is None:
            return None
        return await self._command_handlers[command](payload or {})

    async def _handle_customer_update(self, payload: Dict[str, Any]) -> Any:
        raw_metadata = payload.get("metadata")
        metadata = (
            CustomerMetadata.model_validate(raw_metadata)
            if isinstance(raw_metadata, dict)
            else None
        )
        return await self.synchronizer.update_customer(
            payload.get("customerId"), metadata
        )

    async def _handle_notifications_display(self, payload: Dict[str, Any]) -> None:
        self.state.should_display_notifications = bool(
            payload.get("shouldDisplayNotifications")
        )

    async def _handle_plan(self, payload: Dict[str, Any]) -> None:
        logger.debug("Handling subscription plan: %s", payload)
        self.state.should_display_branding = True

    async def _handle_ping(self, payload: Dict[str, Any]) -> None:
        logger.debug("Pong!")

    async def handle_toggle_display(self, payload: Dict[str, Any]) -> None:
        is_open = bool(payload.get("isOpen"))
        self.state.is_open = is_open
        self.state.is_transitioning = False

        await self.handle_visibility_change()

        if is_open:
            self.reconciler.scroll_into_view()

    async def handle_visibility_change(self) -> bool:
        return await self.gate.handle_visibility_change(self.reconciler)

    async def send_message(
        self, draft: MessageDraft, email: Optional[str] = None
    ) -> Optional[Message]:
        return await self.reconciler.send(draft, email)

    def emit_open_window(self) -> None:
        self.bridge.emit(HostEvent.PAPERCUPS_OPEN, {})
        # Wait for the host to finish the open transition (papercups:toggle)
        self.state.is_transitioning = True

    def emit_close_window(self) -> None:
        self.bridge.emit(HostEvent.PAPERCUPS_CLOSE, {})

    def leave_game_mode(self) -> None:
        self.state.is_game_mode = False
        self.reconciler.scroll_into_view()

    def ask_for_email_upfront(self) -> bool:
        """Whether sending is gated on the visitor entering an e-mail first."""
        if not self.config.should_require_email:
            return False
        if self.synchronizer.metadata and self.synchronizer.metadata.email:
            return False
        return not self.reconciler.has_customer_messages()

    def unread_previews(self) -> List[Message]:
        return self.reconciler.unread_previews()

    def is_on_deprecated_version(self) -> bool:
        return parse_version(self.version) < parse_version(
            self.settings.MIN_SUPPORTED_VERSION
        )
