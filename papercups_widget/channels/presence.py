"""Phoenix presence state tracking over a joined channel.

The server sends a full "presence_state" after join and incremental
"presence_diff" events afterwards. Both are folded into one state map
keyed by presence key, and every change fires the sync callbacks with the
full list.
"""

import copy
import logging
from typing import Any, Callable, Dict, List

from papercups_widget.channels.phoenix import PhoenixChannel

logger = logging.getLogger(__name__)

PresenceState = Dict[str, Dict[str, Any]]
SyncCallback = Callable[[List[Dict[str, Any]]], None]


class Presence:
    """Presence tracker bound to one channel."""

    def __init__(self, channel: PhoenixChannel):
        self.channel = channel
        self.state: PresenceState = {}
        self.pending_diffs: List[Dict[str, Any]] = []
        self.join_ref = None
        self._sync_callbacks: List[SyncCallback] = []

        channel.on("presence_state", self._on_state)
        channel.on("presence_diff", self._on_diff)

    def on_sync(self, callback: SyncCallback) -> None:
        self._sync_callbacks.append(callback)

    def list(self) -> List[Dict[str, Any]]:
        """Presences as [{"key": ..., "metas": [...]}, ...]."""
        return [{"key": key, **presence} for key, presence in self.state.items()]

    def in_pending_sync_state(self) -> bool:
        # Diffs only apply on top of the state of the current join
        return self.join_ref is None or self.join_ref != self.channel.join_ref

    async def _on_state(self, payload: Dict[str, Any]) -> None:
        self.join_ref = self.channel.join_ref
        self.state = self.sync_state(payload)
        for diff in self.pending_diffs:
            self.state = self.sync_diff(self.state, diff)
        self.pending_diffs = []
        self._fire_sync()

    async def _on_diff(self, payload: Dict[str, Any]) -> None:
        if self.in_pending_sync_state():
            self.pending_diffs.append(payload)
            return
        self.state = self.sync_diff(self.state, payload)
        self._fire_sync()

    def _fire_sync(self) -> None:
        presences = self.list()
        for callback in list(self._sync_callbacks):
            try:
                callback(presences)
            except Exception:
                logger.exception("Error in presence sync callback")

    @staticmethod
    def sync_state(new_state: Dict[str, Any]) -> PresenceState:
        """A presence_state event is a full snapshot and replaces the state."""
        return {
            key: {"metas": list(presence.get("metas") or [])}
            for key, presence in copy.deepcopy(new_state).items()
            if isinstance(presence, dict)
        }

    @staticmethod
    def sync_diff(state: PresenceState, diff: Dict[str, Any]) -> PresenceState:
        """Apply a presence_diff of joins and leaves, matched on phx_ref."""
        state = copy.deepcopy(state)

        for key, new_presence in (diff.get("joins") or {}).items():
            joined_metas = list(new_presence.get("metas") or [])
            current = state.get(key)
            if current:
                joined_refs = {meta.get("phx_ref") for meta in joined_metas}
                kept = [
                    meta
                    for meta in current["metas"]
                    if meta.get("phx_ref") not in joined_refs
                ]
                joined_metas = kept + joined_metas
            state[key] = {"metas": joined_metas}

        for key, left_presence in (diff.get("leaves") or {}).items():
            current = state.get(key)
            if not current:
                continue
            left_refs = {meta.get("phx_ref") for meta in left_presence.get("metas") or []}
            remaining = [
                meta for meta in current["metas"] if meta.get("phx_ref") not in left_refs
            ]
            if remaining:
                state[key] = {"metas": remaining}
            else:
                del state[key]

        return state
