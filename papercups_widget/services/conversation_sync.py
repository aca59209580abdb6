"""Conversation discovery and creation for the active customer.

On startup the synchronizer resolves the customer, loads the most recent
conversation with its history and joins its channel. A customer without
conversations gets a lobby subscription instead; the backend pushes
"conversation:created" there and the synchronizer re-fetches after a short
delay, since the new row is not always readable right away.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from papercups_widget.bridge.host import HostBridge, HostEvent
from papercups_widget.channels.manager import ChannelManager
from papercups_widget.core.config import Settings, WidgetConfig
from papercups_widget.core.exceptions import BackendRequestError
from papercups_widget.integrations.papercups_api import PapercupsAPI
from papercups_widget.models.customer import CustomerMetadata
from papercups_widget.models.message import Message, MessageType
from papercups_widget.services.identity import IdentityResolver
from papercups_widget.services.reconciler import MessageReconciler, utc_now
from papercups_widget.state import WidgetState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    customer_id: str
    conversation_id: str


class ConversationSynchronizer:
    """Decides which customer and conversation are active."""

    def __init__(
        self,
        config: WidgetConfig,
        settings: Settings,
        state: WidgetState,
        api: PapercupsAPI,
        identity: IdentityResolver,
        channels: ChannelManager,
        reconciler: MessageReconciler,
        bridge: HostBridge,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.settings = settings
        self.state = state
        self.api = api
        self.identity = identity
        self.channels = channels
        self.reconciler = reconciler
        self.bridge = bridge
        self.clock = clock
        self.metadata: Optional[CustomerMetadata] = config.customer
        self._refetch_task: Optional[asyncio.Task] = None

    @property
    def account_id(self) -> str:
        return self.config.account_id

    def default_greeting(self) -> List[Message]:
        """The synthetic bot greeting, already marked seen."""
        if not self.config.greeting:
            return []
        now = self.clock()
        return [
            Message(
                type=MessageType.BOT,
                body=self.config.greeting,
                created_at=now,
                seen_at=now,
            )
        ]

    async def initialize(
        self,
        cached_customer_id: Optional[str],
        metadata: Optional[CustomerMetadata] = None,
    ) -> Optional[SyncResult]:
        """Establish the active conversation on startup.

        Returns:
            The joined customer/conversation pair, or None when the visitor
            has no conversation yet (or loading failed).
        """
        self.metadata = metadata
        customer_id = await self.identity.resolve(cached_customer_id, metadata)
        return await self.load_latest_conversation(customer_id, metadata)

    async def fetch_latest_conversation(
        self,
        cached_customer_id: Optional[str],
        metadata: Optional[CustomerMetadata] = None,
    ) -> Optional[SyncResult]:
        customer_id = await self.identity.check_for_existing_customer(
            metadata, cached_customer_id
        )
        return await self.load_latest_conversation(customer_id, metadata)

    async def load_latest_conversation(
        self,
        customer_id: Optional[str],
        metadata: Optional[CustomerMetadata] = None,
    ) -> Optional[SyncResult]:
        """Load and join the newest conversation of an already resolved customer."""
        self.state.customer_id = customer_id

        if not customer_id:
            # Unseen visitor: nothing to load until they send a first message
            self.reconciler.reset(self.default_greeting())
            return None

        logger.debug("Fetching conversations for customer: %s", customer_id)
        try:
            conversations = await self.api.fetch_customer_conversations(
                customer_id, self.account_id
            )
            logger.debug("Found %d existing conversations", len(conversations))

            if not conversations:
                self.reconciler.reset(self.default_greeting())
                await self.listen_for_new_conversations(customer_id)
                return None

            latest = conversations[0]
            messages = latest.sorted_messages()

            self.state.conversation_id = latest.id
            self.reconciler.reset([*self.default_greeting(), *messages])

            await self.channels.join_conversation(latest.id, customer_id)
            await self.update_existing_customer(customer_id, metadata)

            unseen = [m for m in messages if not m.is_seen and m.is_from_agent]
            if unseen:
                self.bridge.emit(
                    HostEvent.MESSAGES_UNSEEN, {"message": unseen[0].to_payload()}
                )

            return SyncResult(customer_id=customer_id, conversation_id=latest.id)
        except (BackendRequestError, ValidationError) as e:
            logger.debug("Error fetching conversations: %s", e)
            if not self.reconciler.messages:
                self.reconciler.reset(self.default_greeting())
            return None

    async def listen_for_new_conversations(self, customer_id: str) -> bool:
        async def on_created(payload: Dict[str, Any]) -> None:
            logger.debug("Conversation created: %s", payload)
            self.schedule_refetch(customer_id)

        return await self.channels.join_lobby(customer_id, on_created)

    def schedule_refetch(self, customer_id: str) -> Optional[asyncio.Task]:
        """Re-fetch conversations after LOBBY_REFETCH_DELAY_SECONDS.

        Only one delayed refetch is pending at a time, and none is scheduled
        once a conversation is active (e.g. the visitor's own first send
        created it).
        """
        if self.state.conversation_id:
            logger.debug("Conversation already active, skipping refetch")
            return None
        if self._refetch_task is not None and not self._refetch_task.done():
            return self._refetch_task
        self._refetch_task = asyncio.create_task(self._refetch_after_delay(customer_id))
        return self._refetch_task

    async def _refetch_after_delay(self, customer_id: str) -> Optional[SyncResult]:
        await asyncio.sleep(self.settings.LOBBY_REFETCH_DELAY_SECONDS)
        if self.state.conversation_id:
            return None
        return await self.fetch_latest_conversation(customer_id, self.metadata)

    def _metadata_with_email(self, email: Optional[str]) -> Optional[CustomerMetadata]:
        if self.metadata is None:
            return CustomerMetadata(email=email) if email else None
        return self.metadata.with_email(email)

    async def create_or_update_customer(
        self, existing_customer_id: Optional[str], email: Optional[str] = None
    ) -> str:
        """Make sure a backend customer exists for the visitor.

        A failure (e.g. a cached id from another environment) is retried
        once by creating a brand new customer; a second failure propagates.
        """
        metadata = self._metadata_with_email(email)

        try:
            if existing_customer_id:
                customer_id = await self.api.update_customer_metadata(
                    existing_customer_id, metadata
                )
            else:
                customer_id = await self.api.create_customer(self.account_id, metadata)
                self.bridge.emit(HostEvent.CUSTOMER_CREATED, {"customerId": customer_id})
            return customer_id
        except BackendRequestError as e:
            logger.error("Failed to update or create customer: %s", e)
            logger.error("Retrying...")

        customer_id = await self.api.create_customer(self.account_id, metadata)
        self.bridge.emit(HostEvent.CUSTOMER_CREATED, {"customerId": customer_id})
        return customer_id

    async def update_existing_customer(
        self, customer_id: str, metadata: Optional[CustomerMetadata]
    ) -> None:
        """Push identifying metadata (name, email, external_id) to the backend."""
        if metadata is None:
            return
        try:
            await self.api.update_customer_metadata(customer_id, metadata)
        except BackendRequestError as e:
            logger.debug("Error updating customer metadata: %s", e)

    async def initialize_new_conversation(
        self, existing_customer_id: Optional[str], email: Optional[str] = None
    ) -> SyncResult:
        """Create the customer (if needed) and a conversation, then join it."""
        customer_id = await self.create_or_update_customer(existing_customer_id, email)
        conversation_id = await self.api.create_conversation(self.account_id, customer_id)

        self.state.customer_id = customer_id
        self.state.conversation_id = conversation_id
        await self.channels.join_conversation(conversation_id, customer_id)

        return SyncResult(customer_id=customer_id, conversation_id=conversation_id)

    async def update_customer(
        self,
        customer_id: Optional[str],
        metadata: Optional[CustomerMetadata],
    ) -> Optional[SyncResult]:
        """Re-resolve identity after the host page sent new customer metadata.

        When resolution lands on a different customer the conversation is
        re-synchronized for that customer. An external id with no backend
        match drops the active customer, leaving the visitor unseen until the
        next send. Otherwise only the metadata is pushed to the backend.
        """
        if metadata is not None:
            self.metadata = metadata
        previous_customer_id = self.state.customer_id
        resolved = await self.identity.check_for_existing_customer(
            metadata, customer_id or previous_customer_id
        )

        if resolved != previous_customer_id:
            await self._release_active_customer()
            return await self.load_latest_conversation(resolved, metadata)

        if resolved:
            await self.update_existing_customer(resolved, metadata)
        return None

    async def _release_active_customer(self) -> None:
        self.state.conversation_id = None
        await self._cancel_refetch()
        await self.channels.leave_conversation()
        await self.channels.leave_lobby()

    async def close(self) -> None:
        await self._cancel_refetch()

    async def _cancel_refetch(self) -> None:
        task, self._refetch_task = self._refetch_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
