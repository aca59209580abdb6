"""
Pytest configuration and fixtures for the papercups widget sync engine.

This module provides:
- Test settings with short delays
- An in-memory host bridge that records emitted events
- A fake Phoenix socket that records joins, pushes and leaves
- A mocked backend API client
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from papercups_widget.bridge.host import InMemoryHostBridge
from papercups_widget.channels.manager import ChannelManager
from papercups_widget.core.config import Settings, WidgetConfig
from papercups_widget.integrations.papercups_api import PapercupsAPI
from papercups_widget.services.conversation_sync import ConversationSynchronizer
from papercups_widget.services.identity import IdentityResolver
from papercups_widget.services.reconciler import MessageReconciler
from papercups_widget.services.visibility import VisibilityGate
from papercups_widget.state import WidgetState
from tests.helpers import (
    ACCOUNT_ID,
    CONVERSATION_ID,
    CUSTOMER_ID,
    FIXED_NOW,
    FakeSocket,
)


@pytest.fixture
def test_settings() -> Settings:
    """Create settings suitable for tests.

    Lobby refetch runs almost immediately so scenarios that wait on it stay
    fast; everything else keeps its default.

    Returns:
        Settings: Configured settings instance for testing
    """
    return Settings(
        DEBUG=True,
        BASE_URL="https://chat.example.com",
        LOBBY_REFETCH_DELAY_SECONDS=0.01,
    )


@pytest.fixture
def widget_config() -> WidgetConfig:
    return WidgetConfig(account_id=ACCOUNT_ID, greeting="Hi!")


@pytest.fixture
def bridge() -> InMemoryHostBridge:
    return InMemoryHostBridge()


@pytest.fixture
def fake_socket() -> FakeSocket:
    return FakeSocket()


@pytest.fixture
def mock_api() -> MagicMock:
    """Backend client with every endpoint mocked.

    Defaults describe a brand new visitor: no cached customer, no
    conversations, and create calls that succeed.
    """
    api = MagicMock(spec=PapercupsAPI)
    api.is_valid_customer = AsyncMock(return_value=True)
    api.find_customer_by_external_id = AsyncMock(return_value=None)
    api.fetch_customer_conversations = AsyncMock(return_value=[])
    api.create_customer = AsyncMock(return_value=CUSTOMER_ID)
    api.update_customer_metadata = AsyncMock(return_value=CUSTOMER_ID)
    api.create_conversation = AsyncMock(return_value=CONVERSATION_ID)
    api.cleanup = AsyncMock()
    return api


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def state() -> WidgetState:
    return WidgetState()


@pytest.fixture
def channels(fake_socket: FakeSocket, bridge: InMemoryHostBridge) -> ChannelManager:
    return ChannelManager(fake_socket, bridge, timeout=1.0)


@pytest.fixture
def gate(state: WidgetState, bridge: InMemoryHostBridge) -> VisibilityGate:
    return VisibilityGate(state, bridge)


@pytest.fixture
def reconciler(
    state: WidgetState,
    channels: ChannelManager,
    bridge: InMemoryHostBridge,
    gate: VisibilityGate,
    test_settings: Settings,
    clock,
) -> MessageReconciler:
    return MessageReconciler(state, channels, bridge, gate, test_settings, clock=clock)


@pytest.fixture
def identity(mock_api: MagicMock, bridge: InMemoryHostBridge) -> IdentityResolver:
    return IdentityResolver(mock_api, bridge, ACCOUNT_ID)


@pytest.fixture
def synchronizer(
    widget_config: WidgetConfig,
    test_settings: Settings,
    state: WidgetState,
    mock_api: MagicMock,
    identity: IdentityResolver,
    channels: ChannelManager,
    reconciler: MessageReconciler,
    bridge: InMemoryHostBridge,
    clock,
) -> ConversationSynchronizer:
    """Synchronizer wired to the reconciler the way the widget wires them."""
    synchronizer = ConversationSynchronizer(
        widget_config,
        test_settings,
        state,
        mock_api,
        identity,
        channels,
        reconciler,
        bridge,
        clock=clock,
    )
    reconciler.start_conversation = synchronizer.initialize_new_conversation
    return synchronizer
