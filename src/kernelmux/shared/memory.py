"""In-memory channel transport for testing without a kernel gateway."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from kernelmux.shared.channel import ChannelStreams
from kernelmux.types import Message

KernelStreams = tuple[MemoryObjectReceiveStream[Message], MemoryObjectSendStream[Message | Exception]]

KernelFnT = Callable[[str, KernelStreams], Awaitable[None]]


@asynccontextmanager
async def create_kernel_memory_streams() -> AsyncGenerator[tuple[ChannelStreams, KernelStreams], None]:
    """Create a pair of bidirectional memory streams for a client and a kernel.

    Returns:
        A tuple of (client_streams, kernel_streams) where each is a tuple of
        (read_stream, write_stream)
    """
    # Kernel to client
    kernel_to_client_send, kernel_to_client_receive = anyio.create_memory_object_stream[Message | Exception](1)
    # Client to kernel
    client_to_kernel_send, client_to_kernel_receive = anyio.create_memory_object_stream[Message](1)

    client_streams = ChannelStreams(kernel_to_client_receive, client_to_kernel_send)
    kernel_streams = (client_to_kernel_receive, kernel_to_client_send)

    async with (
        kernel_to_client_receive,
        client_to_kernel_send,
        client_to_kernel_receive,
        kernel_to_client_send,
    ):
        yield client_streams, kernel_streams


class MemoryChannelOpener:
    """Opens channels backed by memory streams, serving each with ``kernel``.

    ``kernel`` is called with the channel id and the kernel side of the
    streams, and runs in a background task until the channel is closed.
    """

    def __init__(self, kernel: KernelFnT):
        self._kernel = kernel
        self.opened: list[str] = []

    @asynccontextmanager
    async def __call__(self, channel_id: str) -> AsyncGenerator[ChannelStreams, None]:
        self.opened.append(channel_id)
        async with create_kernel_memory_streams() as (client_streams, kernel_streams):
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._kernel, channel_id, kernel_streams)
                try:
                    yield client_streams
                finally:
                    tg.cancel_scope.cancel()
