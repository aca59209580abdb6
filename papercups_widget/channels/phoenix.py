"""Phoenix channels client over a single WebSocket connection.

Implements the subset of the Phoenix v2 JSON protocol the widget needs:
topic join/leave with replies, fire-and-forget pushes, inbound event
bindings and the heartbeat. Frames are arrays of
[join_ref, ref, topic, event, payload].
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from websockets.asyncio.client import connect as _ws_connect
from websockets.exceptions import ConnectionClosed

from papercups_widget.core.exceptions import (
    ChannelError,
    ChannelJoinError,
    ChannelTimeoutError,
    NotConnectedError,
)

logger = logging.getLogger(__name__)

PROTOCOL_VSN = "2.0.0"
PHOENIX_TOPIC = "phoenix"

EVENT_JOIN = "phx_join"
EVENT_LEAVE = "phx_leave"
EVENT_REPLY = "phx_reply"
EVENT_ERROR = "phx_error"
EVENT_CLOSE = "phx_close"
EVENT_HEARTBEAT = "heartbeat"

EventCallback = Callable[[Dict[str, Any]], Coroutine[Any, Any, None]]


async def websockets_connect(url: str, **kwargs: Any) -> Any:
    """Connect wrapper for testability."""
    return await _ws_connect(url, **kwargs)


class ChannelState(str, Enum):
    CLOSED = "closed"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"
    ERRORED = "errored"


class PhoenixChannel:
    """One topic subscription multiplexed over a PhoenixSocket."""

    def __init__(
        self,
        socket: "PhoenixSocket",
        topic: str,
        params: Optional[Dict[str, Any]] = None,
    ):
        self.socket = socket
        self.topic = topic
        self.params = params or {}
        self.state = ChannelState.CLOSED
        self.join_ref: Optional[str] = None
        self._bindings: Dict[str, List[EventCallback]] = {}
        self._push_buffer: List[Tuple[str, Dict[str, Any]]] = []

    @property
    def is_joined(self) -> bool:
        return self.state == ChannelState.JOINED

    @property
    def should_rejoin(self) -> bool:
        """Channels that were joined (or errored) come back after a reconnect."""
        return self.state in (ChannelState.JOINED, ChannelState.ERRORED)

    def on(self, event: str, callback: EventCallback) -> None:
        """Register an async callback for an inbound event."""
        self._bindings.setdefault(event, []).append(callback)

    async def join(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Join the topic and wait for the server's reply.

        Args:
            timeout: Seconds to wait for the reply (socket default if None).

        Returns:
            The "response" part of an ok reply.

        Raises:
            ChannelJoinError: If the server replies with an error status.
            ChannelTimeoutError: If no reply arrives in time.
            NotConnectedError: If the socket is not connected.
        """
        if self.state in (ChannelState.JOINING, ChannelState.JOINED):
            raise ChannelError(self.topic, "tried to join multiple times")

        self.state = ChannelState.JOINING
        self.join_ref = self.socket.make_ref()
        try:
            reply = await self.socket.request(
                self.topic,
                EVENT_JOIN,
                self.params,
                join_ref=self.join_ref,
                ref=self.join_ref,
                timeout=timeout,
            )
        except (ChannelTimeoutError, NotConnectedError):
            self.state = ChannelState.ERRORED
            raise

        response = reply.get("response") or {}
        if reply.get("status") != "ok":
            self.state = ChannelState.ERRORED
            raise ChannelJoinError(self.topic, response)

        self.state = ChannelState.JOINED
        await self._flush_push_buffer()
        return response

    async def push(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Send an event without waiting for a reply.

        Pushes issued while the join is still in flight are buffered and sent
        once the join succeeds.
        """
        payload = payload or {}
        if self.state == ChannelState.JOINING:
            self._push_buffer.append((event, payload))
            return
        if self.state != ChannelState.JOINED:
            raise ChannelError(self.topic, f"cannot push '{event}' before joining")
        await self.socket.send_frame(
            self.join_ref, self.socket.make_ref(), self.topic, event, payload
        )

    async def leave(self, timeout: Optional[float] = None) -> None:
        """Leave the topic and detach from the socket."""
        previous = self.state
        self.state = ChannelState.LEAVING
        self._push_buffer.clear()
        try:
            if previous in (ChannelState.JOINED, ChannelState.JOINING) and (
                self.socket.is_connected
            ):
                await self.socket.request(
                    self.topic,
                    EVENT_LEAVE,
                    {},
                    join_ref=self.join_ref,
                    timeout=timeout,
                )
        finally:
            self.state = ChannelState.CLOSED
            self.socket.remove(self)

    async def rejoin(self) -> None:
        """Join again after the socket reconnected."""
        self.state = ChannelState.CLOSED
        try:
            await self.join()
            logger.debug("Rejoined %s after reconnect", self.topic)
        except (ChannelError, NotConnectedError):
            logger.warning("Unable to rejoin %s after reconnect", self.topic)

    async def _flush_push_buffer(self) -> None:
        buffered, self._push_buffer = self._push_buffer, []
        for event, payload in buffered:
            await self.push(event, payload)

    async def trigger(self, event: str, payload: Dict[str, Any]) -> None:
        """Dispatch an inbound event to the registered callbacks."""
        if event == EVENT_ERROR:
            self.state = ChannelState.ERRORED
        elif event == EVENT_CLOSE:
            self.state = ChannelState.CLOSED

        for callback in list(self._bindings.get(event, [])):
            try:
                await callback(payload)
            except Exception:
                logger.exception("Error in %s callback for %s", event, self.topic)


class PhoenixSocket:
    """Async Phoenix socket: one connection, many channels.

    Example:
        socket = PhoenixSocket("wss://app.papercups.io/socket")
        await socket.connect()
        channel = socket.channel("room:account-id")
        await channel.join()
    """

    def __init__(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: float = 10.0,
        heartbeat_interval: float = 30.0,
        reconnect_delay_seconds: float = 5.0,
    ):
        self.url = url.rstrip("/")
        self.params = params or {}
        self.timeout = timeout
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self._ws: Any = None
        self._connected = False
        self._listening = False
        self._ref = 0
        self._pending: Dict[str, asyncio.Future] = {}
        self._channels: List[PhoenixChannel] = []
        self._listen_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._background_tasks: set = set()

    @property
    def endpoint_url(self) -> str:
        query = urlencode({**self.params, "vsn": PROTOCOL_VSN})
        return f"{self.url}/websocket?{query}"

    @property
    def is_connected(self) -> bool:
        """Whether the client is currently connected."""
        return self._connected

    @property
    def channels(self) -> List[PhoenixChannel]:
        return list(self._channels)

    def make_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def channel(
        self, topic: str, params: Optional[Dict[str, Any]] = None
    ) -> PhoenixChannel:
        channel = PhoenixChannel(self, topic, params)
        self._channels.append(channel)
        return channel

    def remove(self, channel: PhoenixChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    async def _open(self) -> None:
        try:
            self._ws = await websockets_connect(self.endpoint_url)
            self._connected = True
            logger.info("Connected to Papercups socket at %s", self.url)
        except Exception:
            self._connected = False
            logger.exception("Failed to connect to Papercups socket at %s", self.url)
            raise

    async def connect(self) -> None:
        """Open the connection and start the receive and heartbeat loops.

        A failed first attempt does not raise; the receive loop keeps
        reconnecting and rejoins channels that errored meanwhile.
        """
        try:
            await self._open()
        except Exception:
            logger.warning(
                "Retrying Papercups socket connection every %ss",
                self.reconnect_delay_seconds,
            )
        if self._listen_task is None or self._listen_task.done():
            self._listen_task = asyncio.create_task(self.listen_forever())
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def close(self) -> None:
        """Close the connection and stop all background loops."""
        self._listening = False
        for task in (self._listen_task, self._heartbeat_task, *self._background_tasks):
            if task and not task.done():
                task.cancel()
        self._listen_task = None
        self._heartbeat_task = None
        if self._ws:
            try:
                await self._ws.close()
            except Exception:
                logger.debug("Error closing socket", exc_info=True)
            finally:
                self._ws = None
        self._connected = False
        self._fail_pending()
        logger.info("Papercups socket connection closed")

    async def send_frame(
        self,
        join_ref: Optional[str],
        ref: Optional[str],
        topic: str,
        event: str,
        payload: Dict[str, Any],
    ) -> None:
        if not self._connected or not self._ws:
            raise NotConnectedError()
        await self._ws.send(json.dumps([join_ref, ref, topic, event, payload]))

    async def request(
        self,
        topic: str,
        event: str,
        payload: Dict[str, Any],
        join_ref: Optional[str] = None,
        ref: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send an event and wait for its phx_reply.

        Returns:
            The reply payload ({"status": ..., "response": ...}).

        Raises:
            ChannelTimeoutError: If no reply arrives within the timeout.
            NotConnectedError: If the socket is closed before the reply.
        """
        ref = ref or self.make_ref()
        timeout = self.timeout if timeout is None else timeout
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        try:
            await self.send_frame(join_ref, ref, topic, event, payload)
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise ChannelTimeoutError(topic, event, timeout) from None
        finally:
            self._pending.pop(ref, None)

    def _fail_pending(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(NotConnectedError("Socket closed before reply"))
        self._pending.clear()

    async def _handle_message(self, raw: str) -> None:
        """Decode one frame and route it to a pending request or channel."""
        try:
            join_ref, ref, topic, event, payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.warning("Received malformed frame from Papercups socket")
            return

        payload = payload if isinstance(payload, dict) else {}

        if event == EVENT_REPLY:
            future = self._pending.get(ref)
            if future and not future.done():
                future.set_result(payload)
            return

        for channel in list(self._channels):
            if channel.topic != topic:
                continue
            # Frames from an earlier join of the same topic are stale
            if join_ref and channel.join_ref and join_ref != channel.join_ref:
                continue
            await channel.trigger(event, payload)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _handle_disconnect(self) -> None:
        self._connected = False
        self._ws = None
        self._fail_pending()
        for channel in list(self._channels):
            if channel.state in (ChannelState.JOINED, ChannelState.JOINING):
                await channel.trigger(EVENT_ERROR, {})

    async def _rejoin_channels(self) -> None:
        for channel in list(self._channels):
            if channel.should_rejoin:
                await channel.rejoin()

    async def listen_forever(self) -> None:
        """Run persistent receive loop with reconnect on connection close."""
        self._listening = True

        while self._listening:
            try:
                if not self._connected or self._ws is None:
                    await self._open()
                    # Rejoin waits for replies, which this loop must keep receiving
                    self._spawn(self._rejoin_channels())

                raw = await self._ws.recv()
                await self._handle_message(raw)

            except asyncio.CancelledError:
                self._listening = False
                raise
            except ConnectionClosed:
                if not self._listening:
                    break
                logger.warning("Papercups socket closed, reconnecting")
                await self._handle_disconnect()
                await asyncio.sleep(self.reconnect_delay_seconds)
            except Exception:
                if not self._listening:
                    break
                logger.exception("Papercups socket listen loop error, reconnecting")
                await self._handle_disconnect()
                await asyncio.sleep(self.reconnect_delay_seconds)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if not self._connected:
                continue
            try:
                await self.request(PHOENIX_TOPIC, EVENT_HEARTBEAT, {})
            except ChannelTimeoutError:
                # Closing the socket makes the receive loop reconnect
                logger.warning("Heartbeat timed out, forcing reconnect")
                if self._ws:
                    await self._ws.close()
            except (NotConnectedError, ConnectionClosed):
                logger.debug("Skipped heartbeat on closed socket")
