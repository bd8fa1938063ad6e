import anyio
import pytest

from kernelmux.shared.memory import KernelStreams, MemoryChannelOpener, create_kernel_memory_streams
from kernelmux.shared.message import get_message_type, make_kernel_info_message, make_message


@pytest.mark.anyio
async def test_memory_streams_connect_client_and_kernel():
    """Shows how a client and a kernel communicate over memory streams."""
    async with create_kernel_memory_streams() as (client_streams, (kernel_read, kernel_write)):
        await client_streams.write_stream.send(make_kernel_info_message())
        request = await kernel_read.receive()
        assert get_message_type(request) == "kernel_info_request"

        await kernel_write.send(make_message("kernel_info_reply", {"status": "ok"}, parent=request))
        reply = await client_streams.read_stream.receive()
        assert not isinstance(reply, Exception)
        assert reply.parent_header == request.header


@pytest.mark.anyio
async def test_opener_runs_kernel_until_channel_closes():
    served: list[str] = []
    cancelled = anyio.Event()

    async def kernel(channel_id: str, streams: KernelStreams) -> None:
        served.append(channel_id)
        try:
            await anyio.sleep_forever()
        finally:
            cancelled.set()

    opener = MemoryChannelOpener(kernel)
    async with opener("chan-1"):
        with anyio.fail_after(1):
            while not served:
                await anyio.sleep(0)

    assert opener.opened == ["chan-1"]
    assert served == ["chan-1"]
    assert cancelled.is_set()
