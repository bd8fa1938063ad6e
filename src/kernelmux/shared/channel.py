"""Channel registration and per-channel message delivery.

A `ChannelRegistry` opens one duplex channel per kernel and runs a receive
loop for it. Inbound messages are delivered strictly in transport order:
first to the registry-wide observers, then either to the in-flight request a
direct reply belongs to, or to every request currently in flight on that
channel.
"""

import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from types import TracebackType

import anyio
from anyio.abc import TaskGroup, TaskStatus
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from typing_extensions import Self

from kernelmux.shared.exceptions import ChannelClosed
from kernelmux.shared.message import get_message_type, get_parent_id, is_reply
from kernelmux.shared.request import PendingRequest
from kernelmux.types import Message

logger = logging.getLogger(__name__)


@dataclass
class ChannelStreams:
    """Client side of a kernel channel."""

    read_stream: MemoryObjectReceiveStream[Message | Exception]
    write_stream: MemoryObjectSendStream[Message]


ChannelOpener = Callable[[str], AbstractAsyncContextManager[ChannelStreams]]

ChannelObserverFnT = Callable[[str, Message], Awaitable[None]]

Unregister = Callable[[], None]


class KernelChannel:
    def __init__(
        self,
        channel_id: str,
        streams: ChannelStreams,
        observers: list[ChannelObserverFnT],
    ) -> None:
        self.channel_id = channel_id
        self._streams = streams
        self._observers = observers
        self._in_flight: dict[str, PendingRequest] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> list[PendingRequest]:
        return list(self._in_flight.values())

    async def send(self, request: PendingRequest) -> None:
        if self._closed:
            raise ChannelClosed(self.channel_id)
        self._in_flight[request.msg_id] = request
        try:
            await self._streams.write_stream.send(request.request)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as e:
            self._in_flight.pop(request.msg_id, None)
            raise ChannelClosed(self.channel_id) from e
        logger.debug("Sent %s %s on channel %s", get_message_type(request.request), request.msg_id, self.channel_id)

    async def receive_loop(self) -> None:
        try:
            async for message in self._streams.read_stream:
                if isinstance(message, Exception):
                    logger.warning("Transport error on channel %s: %s", self.channel_id, message)
                    continue
                await self._deliver(message)
        except anyio.ClosedResourceError:
            logger.debug("Read stream for channel %s closed", self.channel_id)
        except Exception as e:
            logger.exception(f"Unhandled exception in receive loop for channel {self.channel_id}: {e}")
        finally:
            self.close()

    async def _deliver(self, message: Message) -> None:
        for observer in list(self._observers):
            await observer(self.channel_id, message)

        if is_reply(message):
            parent_id = get_parent_id(message)
            request = self._in_flight.pop(parent_id, None) if parent_id is not None else None
            if request is None:
                logger.warning(
                    "Received %s with no matching request on channel %s",
                    get_message_type(message),
                    self.channel_id,
                )
                return
            request.resolve(message)
            return

        for request in list(self._in_flight.values()):
            await request.notify(message)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for request in self._in_flight.values():
            request.fail()
        self._in_flight.clear()
        self._streams.write_stream.close()
        logger.debug("Closed channel %s", self.channel_id)


class ChannelRegistry:
    """
    Owns the kernel channels of a process.

    This class is an async context manager; channels can only be registered
    while it is entered, and all of them are torn down on exit.

    Example:
        async with ChannelRegistry(opener) as channels:
            unregister = await channels.register_channel("a1b2")
            ...
            unregister()
    """

    def __init__(self, opener: ChannelOpener) -> None:
        self._opener = opener
        self._channels: dict[str, KernelChannel] = {}
        self._observers: list[ChannelObserverFnT] = []
        self._task_group: TaskGroup | None = None

    async def __aenter__(self) -> Self:
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        assert self._task_group is not None
        for channel in list(self._channels.values()):
            channel.close()
        self._task_group.cancel_scope.cancel()
        try:
            return await self._task_group.__aexit__(exc_type, exc_val, exc_tb)
        finally:
            self._task_group = None

    def add_observer(self, observer: ChannelObserverFnT) -> None:
        """Register a callback that sees every inbound message on every channel."""
        self._observers.append(observer)

    def get_channel(self, channel_id: str) -> KernelChannel:
        channel = self._channels.get(channel_id)
        if channel is None or channel.closed:
            raise ChannelClosed(channel_id)
        return channel

    def is_registered(self, channel_id: str) -> bool:
        return channel_id in self._channels

    async def register_channel(self, channel_id: str) -> Unregister:
        """
        Open the channel for ``channel_id`` and start delivering its messages.

        Returns:
            A callable that tears the channel down. Calling it more than once
            has no further effect.
        """
        if self._task_group is None:
            raise RuntimeError("ChannelRegistry must be used as an async context manager")
        if channel_id in self._channels:
            raise ValueError(f"Channel {channel_id!r} is already registered")

        channel, scope = await self._task_group.start(self._run_channel, channel_id)

        def unregister() -> None:
            if self._channels.get(channel_id) is channel:
                del self._channels[channel_id]
            channel.close()
            scope.cancel()

        return unregister

    async def _run_channel(
        self,
        channel_id: str,
        *,
        task_status: TaskStatus[tuple[KernelChannel, anyio.CancelScope]] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        with anyio.CancelScope() as scope:
            async with self._opener(channel_id) as streams:
                channel = KernelChannel(channel_id, streams, self._observers)
                self._channels[channel_id] = channel
                logger.debug("Registered channel %s", channel_id)
                task_status.started((channel, scope))
                try:
                    await channel.receive_loop()
                finally:
                    if self._channels.get(channel_id) is channel:
                        del self._channels[channel_id]
