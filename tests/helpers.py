"""Shared test doubles and identifiers."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

ACCOUNT_ID = "eb504736-0f20-4978-98ff-1a82ae60b266"
CUSTOMER_ID = "2b4a9e1c-5d3f-4c6a-8b7e-1f2a3b4c5d6e"
OTHER_CUSTOMER_ID = "7c8d9e0f-1a2b-4c3d-9e4f-5a6b7c8d9e0f"
CONVERSATION_ID = "c0ffee00-1234-4abc-8def-0123456789ab"

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)


class FakeChannel:
    """Channel double that records what the widget does with it."""

    def __init__(self, socket: "FakeSocket", topic: str, params: Optional[Dict[str, Any]]):
        self.socket = socket
        self.topic = topic
        self.params = params or {}
        self.join_ref = "1"
        self.bindings: Dict[str, List[Any]] = {}
        self.pushes: List[tuple] = []
        self.joined = False
        self.left = False
        self.join_error: Optional[Exception] = None

    def on(self, event: str, callback: Any) -> None:
        self.bindings.setdefault(event, []).append(callback)

    async def join(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if self.join_error is not None:
            raise self.join_error
        self.joined = True
        return {}

    async def push(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.pushes.append((event, payload or {}))

    async def leave(self, timeout: Optional[float] = None) -> None:
        self.left = True
        self.socket.remove(self)

    async def trigger(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self.bindings.get(event, [])):
            await callback(payload)


class FakeSocket:
    """PhoenixSocket double keeping every channel ever created."""

    def __init__(self):
        self.connect = AsyncMock()
        self.close = AsyncMock()
        self.created: List[FakeChannel] = []
        self.active: List[FakeChannel] = []

    def channel(self, topic: str, params: Optional[Dict[str, Any]] = None) -> FakeChannel:
        channel = FakeChannel(self, topic, params)
        self.created.append(channel)
        self.active.append(channel)
        return channel

    def remove(self, channel: FakeChannel) -> None:
        if channel in self.active:
            self.active.remove(channel)

    def find(self, topic: str) -> FakeChannel:
        """Most recently created channel for a topic."""
        matches = [c for c in self.created if c.topic == topic]
        assert matches, f"no channel created for {topic}"
        return matches[-1]
