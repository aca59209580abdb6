"""Tests for Phoenix presence syncing and the agent availability tracker."""

import pytest
from papercups_widget.channels.presence import Presence
from papercups_widget.services.presence_tracker import PresenceTracker
from papercups_widget.state import WidgetState
from tests.helpers import FakeSocket


@pytest.fixture
def room():
    return FakeSocket().channel("room:acct", {})


@pytest.fixture
def presence(room):
    return Presence(room)


def _meta(user_id, phx_ref):
    return {"user_id": user_id, "phx_ref": phx_ref, "online_at": "1700000000"}


class TestPresenceSync:
    """Phoenix presence_state / presence_diff semantics."""

    def test_sync_state_replaces_everything(self):
        state = Presence.sync_state({"1": {"metas": [_meta(1, "a")]}})

        assert state == {"1": {"metas": [_meta(1, "a")]}}

    def test_sync_diff_joins_and_leaves(self):
        state = {"1": {"metas": [_meta(1, "a")]}, "2": {"metas": [_meta(2, "b")]}}

        result = Presence.sync_diff(
            state,
            {
                "joins": {"3": {"metas": [_meta(3, "c")]}},
                "leaves": {"2": {"metas": [_meta(2, "b")]}},
            },
        )

        assert set(result) == {"1", "3"}
        assert "2" in state

    def test_leave_of_one_meta_keeps_other_sessions(self):
        state = {"1": {"metas": [_meta(1, "a"), _meta(1, "a2")]}}

        result = Presence.sync_diff(state, {"leaves": {"1": {"metas": [_meta(1, "a")]}}})

        assert result == {"1": {"metas": [_meta(1, "a2")]}}

    def test_join_of_known_key_appends_meta(self):
        state = {"1": {"metas": [_meta(1, "a")]}}

        result = Presence.sync_diff(state, {"joins": {"1": {"metas": [_meta(1, "b")]}}})

        assert [m["phx_ref"] for m in result["1"]["metas"]] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_state_event_fires_sync(self, room, presence):
        synced = []
        presence.on_sync(synced.append)

        await room.trigger("presence_state", {"1": {"metas": [_meta(1, "a")]}})

        assert synced == [[{"key": "1", "metas": [_meta(1, "a")]}]]

    @pytest.mark.asyncio
    async def test_diff_before_state_is_queued(self, room, presence):
        synced = []
        presence.on_sync(synced.append)

        await room.trigger("presence_diff", {"joins": {"2": {"metas": [_meta(2, "b")]}}})
        assert synced == []
        assert presence.in_pending_sync_state()

        await room.trigger("presence_state", {"1": {"metas": [_meta(1, "a")]}})

        assert {p["key"] for p in synced[-1]} == {"1", "2"}
        assert not presence.in_pending_sync_state()


class TestPresenceTracker:
    """Availability snapshot derived from presence lists."""

    def test_first_meta_of_each_agent(self):
        state = WidgetState()
        tracker = PresenceTracker(state)

        agents = tracker.handle_sync(
            [
                {"key": "1", "metas": [_meta(1, "a"), _meta(1, "a2")]},
                {"key": "2", "metas": [_meta(2, "b")]},
            ]
        )

        assert [a.user_id for a in agents] == [1, 2]
        assert agents[0].phx_ref == "a"
        assert state.available_agents == agents

    def test_entries_without_user_id_skipped(self):
        tracker = PresenceTracker(WidgetState())

        agents = tracker.handle_sync(
            [{"key": "x", "metas": [{"phx_ref": "z"}]}, {"key": "y", "metas": []}]
        )

        assert agents == []

    def test_sync_fully_replaces_previous_list(self):
        state = WidgetState()
        tracker = PresenceTracker(state)
        tracker.handle_sync([{"key": "1", "metas": [_meta(1, "a")]}])

        tracker.handle_sync([{"key": "2", "metas": [_meta(2, "b")]}])

        assert [a.user_id for a in state.available_agents] == [2]

    def test_empty_sync_clears_agents(self):
        state = WidgetState()
        tracker = PresenceTracker(state)
        tracker.handle_sync([{"key": "1", "metas": [_meta(1, "a")]}])

        tracker.handle_sync([])

        assert state.available_agents == []
