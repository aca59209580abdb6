"""End-to-end tests for the chat widget driven through the host bridge."""

import pytest
from papercups_widget.bridge.host import HostCommand, HostEvent
from papercups_widget.core.config import WidgetConfig
from papercups_widget.widget import ChatWidget, parse_version
from tests.helpers import (
    ACCOUNT_ID,
    CONVERSATION_ID,
    CUSTOMER_ID,
    FIXED_NOW,
    OTHER_CUSTOMER_ID,
)

AGENT_MESSAGE = {
    "id": "msg-agent",
    "body": "Hi there, how can we help?",
    "user_id": 3,
    "conversation_id": CONVERSATION_ID,
    "created_at": "2024-01-01T12:01:00Z",
}


@pytest.fixture
def widget(widget_config, bridge, test_settings, mock_api, fake_socket, clock):
    return ChatWidget(
        widget_config,
        bridge,
        settings=test_settings,
        api=mock_api,
        socket=fake_socket,
        clock=clock,
    )


def _conversation_channel(fake_socket):
    return fake_socket.find(f"conversation:{CONVERSATION_ID}")


class TestMount:
    @pytest.mark.asyncio
    async def test_new_visitor_mount(self, widget, bridge, fake_socket):
        result = await widget.mount()

        assert result is None
        fake_socket.connect.assert_awaited_once()
        assert fake_socket.find(f"room:{ACCOUNT_ID}").joined
        assert [m.body for m in widget.messages] == ["Hi!"]
        assert bridge.events_named(HostEvent.CHAT_LOADED) == [None]
        assert bridge.listener_count == 2

    @pytest.mark.asyncio
    async def test_mount_survives_socket_connect_failure(self, widget, bridge, fake_socket):
        fake_socket.connect.side_effect = OSError("connection refused")

        await widget.mount()

        assert [m.body for m in widget.messages] == ["Hi!"]
        assert bridge.events_named(HostEvent.CHAT_LOADED) == [None]

    @pytest.mark.asyncio
    async def test_presence_sync_updates_available_agents(self, widget, fake_socket):
        await widget.mount()

        await fake_socket.find(f"room:{ACCOUNT_ID}").trigger(
            "presence_state", {"3": {"metas": [{"user_id": 3, "phx_ref": "r1"}]}}
        )

        assert [agent.user_id for agent in widget.state.available_agents] == [3]

    @pytest.mark.asyncio
    async def test_mount_with_cached_customer_without_conversations(
        self, bridge, test_settings, mock_api, fake_socket, clock
    ):
        mock_api.fetch_customer_conversations.return_value = []
        config = WidgetConfig(account_id=ACCOUNT_ID, customer_id=CUSTOMER_ID)
        widget = ChatWidget(
            config, bridge, settings=test_settings, api=mock_api, socket=fake_socket, clock=clock
        )

        await widget.mount()

        assert widget.state.customer_id == CUSTOMER_ID
        assert fake_socket.find(f"conversation:lobby:{CUSTOMER_ID}").joined
        assert widget.messages == []

    @pytest.mark.asyncio
    async def test_unmount_releases_everything(self, widget, bridge, fake_socket, mock_api):
        await widget.mount()

        await widget.unmount()

        assert bridge.listener_count == 0
        fake_socket.close.assert_awaited_once()
        mock_api.cleanup.assert_awaited_once()
        assert fake_socket.active == []


class TestConversationFlow:
    @pytest.mark.asyncio
    async def test_first_message_creates_conversation_and_echo_collapses(
        self, widget, bridge, mock_api, fake_socket
    ):
        await widget.mount()

        sent = await widget.send_message({"body": "Hello"}, email="v@example.com")
        assert len(widget.messages) == 2

        mock_api.create_customer.assert_awaited_once()
        mock_api.create_conversation.assert_awaited_once_with(ACCOUNT_ID, CUSTOMER_ID)
        assert bridge.events_named(HostEvent.CUSTOMER_CREATED) == [{"customerId": CUSTOMER_ID}]
        assert bridge.events_named(HostEvent.CONVERSATION_JOIN) == [
            {"conversationId": CONVERSATION_ID, "customerId": CUSTOMER_ID}
        ]

        channel = _conversation_channel(fake_socket)
        event, payload = channel.pushes[0]
        assert event == "shout"

        await channel.trigger(
            "shout",
            {**payload, "id": "msg-1", "created_at": "2024-01-01T12:00:01Z"},
        )

        assert len(widget.messages) == 2
        assert widget.messages[-1].is_confirmed
        assert widget.messages[-1].sent_at == sent.sent_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_echo_without_greeting_keeps_single_entry(
        self, bridge, test_settings, mock_api, fake_socket, clock
    ):
        config = WidgetConfig(account_id=ACCOUNT_ID)
        widget = ChatWidget(
            config, bridge, settings=test_settings, api=mock_api, socket=fake_socket, clock=clock
        )
        await widget.mount()

        await widget.send_message({"body": "hello", "file_ids": []})
        assert len(widget.messages) == 1

        channel = _conversation_channel(fake_socket)
        _, payload = channel.pushes[0]
        await channel.trigger(
            "shout",
            {**payload, "id": "msg-1", "created_at": "2024-01-01T12:00:01Z"},
        )

        assert len(widget.messages) == 1
        assert widget.messages[0].id == "msg-1"
        assert widget.messages[0].body == "hello"

    @pytest.mark.asyncio
    async def test_agent_reply_while_closed_is_reported_unseen(
        self, widget, bridge, fake_socket
    ):
        await widget.mount()
        await widget.send_message({"body": "Hello"})
        channel = _conversation_channel(fake_socket)

        await channel.trigger("shout", AGENT_MESSAGE)

        assert bridge.events_named(HostEvent.MESSAGES_UNSEEN) == [
            {"message": widget.messages[-1].to_payload()}
        ]
        assert widget.unread_previews()[0].id == "msg-agent"

    @pytest.mark.asyncio
    async def test_opening_widget_marks_messages_seen(self, widget, bridge, fake_socket):
        await widget.mount()
        await widget.send_message({"body": "Hello"})
        channel = _conversation_channel(fake_socket)
        await channel.trigger("shout", AGENT_MESSAGE)

        await bridge.send_command("papercups:toggle", {"isOpen": True})

        assert widget.state.is_open
        assert all(m.is_seen for m in widget.messages if m.is_from_agent)
        assert ("messages:seen", {}) in channel.pushes
        assert bridge.events_named(HostEvent.MESSAGES_SEEN) == [{}]
        assert widget.unread_previews() == []

    @pytest.mark.asyncio
    async def test_page_becoming_visible_marks_messages_seen(
        self, widget, bridge, fake_socket
    ):
        await widget.mount()
        await widget.send_message({"body": "Hello"})
        await bridge.set_hidden(True)
        widget.state.is_open = True
        await _conversation_channel(fake_socket).trigger("shout", AGENT_MESSAGE)
        assert not widget.messages[-1].is_seen

        await bridge.set_hidden(False)

        assert widget.messages[-1].is_seen

    @pytest.mark.asyncio
    async def test_game_mode_round_trip(self, widget):
        await widget.mount()

        await widget.send_message({"body": "play a game"})
        assert widget.state.is_game_mode

        widget.leave_game_mode()
        assert not widget.state.is_game_mode


class TestHostCommands:
    """Every known command has a handler; unknown ones are ignored."""

    def test_every_command_has_a_handler(self, widget):
        assert set(widget._command_handlers) == set(HostCommand)

    @pytest.mark.asyncio
    async def test_notifications_display(self, widget):
        await widget.handle_host_command(
            "notifications:display", {"shouldDisplayNotifications": True}
        )

        assert widget.state.should_display_notifications is True

    @pytest.mark.asyncio
    async def test_plan_turns_on_branding(self, widget):
        await widget.handle_host_command("papercups:plan", {"plan": "starter"})

        assert widget.state.should_display_branding is True

    @pytest.mark.asyncio
    async def test_ping(self, widget, bridge):
        assert await widget.handle_host_command("papercups:ping", {}) is None
        assert bridge.events == []

    @pytest.mark.asyncio
    async def test_unknown_command_ignored(self, widget, bridge):
        assert await widget.handle_host_command("papercups:explode", {"x": 1}) is None
        assert widget.state.is_open is False
        assert bridge.events == []

    @pytest.mark.asyncio
    async def test_toggle_closes_and_ends_transition(self, widget, bridge):
        widget.emit_open_window()
        assert widget.state.is_transitioning
        assert bridge.events_named(HostEvent.PAPERCUPS_OPEN) == [{}]

        await widget.handle_host_command("papercups:toggle", {"isOpen": False})

        assert widget.state.is_open is False
        assert widget.state.is_transitioning is False

    def test_emit_close_window(self, widget, bridge):
        widget.emit_close_window()

        assert bridge.events_named(HostEvent.PAPERCUPS_CLOSE) == [{}]

    @pytest.mark.asyncio
    async def test_customer_update_switches_customer(self, widget, bridge, mock_api, fake_socket):
        await widget.mount()
        mock_api.find_customer_by_external_id.return_value = OTHER_CUSTOMER_ID

        await bridge.send_command(
            "customer:update",
            {"customerId": None, "metadata": {"external_id": "u-9", "name": "Sam"}},
        )

        assert widget.state.customer_id == OTHER_CUSTOMER_ID
        assert widget.synchronizer.metadata.name == "Sam"
        assert fake_socket.find(f"conversation:lobby:{OTHER_CUSTOMER_ID}").joined


class TestEmailGate:
    def test_not_required_by_default(self, widget):
        assert widget.ask_for_email_upfront() is False

    def test_required_for_anonymous_first_message(self, widget):
        widget.config.should_require_email = True

        assert widget.ask_for_email_upfront() is True

    @pytest.mark.asyncio
    async def test_not_asked_once_visitor_has_written(self, widget):
        widget.config.should_require_email = True
        await widget.mount()
        await widget.send_message({"body": "Hello"})

        assert widget.ask_for_email_upfront() is False


class TestVersion:
    def test_parse_version(self):
        assert parse_version("1.10.0") > parse_version("1.9.9")
        assert parse_version("v1.1.2-beta") == (1, 1, 2)

    def test_deprecated_version_detected(self, widget):
        widget.version = "1.0.9"

        assert widget.is_on_deprecated_version()

    def test_current_version_supported(self, widget):
        assert not widget.is_on_deprecated_version()
