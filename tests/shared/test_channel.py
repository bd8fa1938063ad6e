import anyio
import pytest

from kernelmux.shared.channel import ChannelRegistry
from kernelmux.shared.dispatcher import RequestDispatcher
from kernelmux.shared.exceptions import ChannelClosed
from kernelmux.shared.memory import KernelStreams, MemoryChannelOpener
from kernelmux.shared.message import IOPUB_CHANNEL, make_execute_message, make_kernel_info_message, make_message
from kernelmux.types import Message


async def silent_kernel(channel_id: str, streams: KernelStreams) -> None:
    read_stream, _ = streams
    async for _ in read_stream:
        pass


@pytest.mark.anyio
async def test_register_requires_context_manager():
    channels = ChannelRegistry(MemoryChannelOpener(silent_kernel))
    with pytest.raises(RuntimeError):
        await channels.register_channel("chan-1")


@pytest.mark.anyio
async def test_register_twice_is_rejected():
    async with ChannelRegistry(MemoryChannelOpener(silent_kernel)) as channels:
        await channels.register_channel("chan-1")
        with pytest.raises(ValueError):
            await channels.register_channel("chan-1")


@pytest.mark.anyio
async def test_unregister_fails_in_flight_requests():
    opener = MemoryChannelOpener(silent_kernel)
    async with ChannelRegistry(opener) as channels:
        dispatcher = RequestDispatcher(channels)
        unregister = await channels.register_channel("chan-1")
        assert opener.opened == ["chan-1"]

        request = await dispatcher.start_request("chan-1", make_kernel_info_message())
        unregister()
        unregister()

        with pytest.raises(ChannelClosed):
            await request.result()
        assert not channels.is_registered("chan-1")
        with pytest.raises(ChannelClosed):
            await dispatcher.send_request("chan-1", make_kernel_info_message())


@pytest.mark.anyio
async def test_kernel_hangup_closes_channel():
    async def hangup_kernel(channel_id: str, streams: KernelStreams) -> None:
        read_stream, write_stream = streams
        await read_stream.receive()
        await write_stream.aclose()

    async with ChannelRegistry(MemoryChannelOpener(hangup_kernel)) as channels:
        dispatcher = RequestDispatcher(channels)
        await channels.register_channel("chan-1")

        with pytest.raises(ChannelClosed) as exc_info:
            await dispatcher.send_request("chan-1", make_kernel_info_message())
        assert exc_info.value.channel_id == "chan-1"


@pytest.mark.anyio
async def test_every_in_flight_request_sees_every_notification_in_order():
    async def kernel(channel_id: str, streams: KernelStreams) -> None:
        read_stream, write_stream = streams
        first = await read_stream.receive()
        second = await read_stream.receive()
        for text in ["a", "b", "c"]:
            await write_stream.send(
                make_message("stream", {"name": "stdout", "text": text}, session="k", parent=first, channel=IOPUB_CHANNEL)
            )
        await write_stream.send(make_message("execute_reply", {"status": "ok"}, session="k", parent=second))
        await write_stream.send(make_message("execute_reply", {"status": "ok"}, session="k", parent=first))

    seen: dict[str, list[str]] = {"first": [], "second": []}

    def collector(name: str):
        async def collect(message: Message) -> None:
            seen[name].append(message.content["text"])

        return collect

    async with ChannelRegistry(MemoryChannelOpener(kernel)) as channels:
        dispatcher = RequestDispatcher(channels)
        await channels.register_channel("chan-1")
        first = make_execute_message("print('a')", False, True, {}, False)
        second = make_execute_message("pass", False, True, {}, False)

        first_request = await dispatcher.start_request("chan-1", first, collector("first"))
        second_request = await dispatcher.start_request("chan-1", second, collector("second"))

        second_reply = await second_request.result()
        first_reply = await first_request.result()

    assert second_reply.parent_header is not None
    assert second_reply.parent_header.msg_id == second.header.msg_id
    assert first_reply.parent_header is not None
    assert first_reply.parent_header.msg_id == first.header.msg_id
    assert seen["first"] == ["a", "b", "c"]
    assert seen["second"] == ["a", "b", "c"]


@pytest.mark.anyio
async def test_reply_for_unknown_request_is_dropped():
    async def kernel(channel_id: str, streams: KernelStreams) -> None:
        read_stream, write_stream = streams
        request = await read_stream.receive()
        stray = make_kernel_info_message()
        await write_stream.send(make_message("kernel_info_reply", {"status": "ok"}, session="k", parent=stray))
        await write_stream.send(make_message("kernel_info_reply", {"status": "ok"}, session="k", parent=request))

    async with ChannelRegistry(MemoryChannelOpener(kernel)) as channels:
        dispatcher = RequestDispatcher(channels)
        await channels.register_channel("chan-1")
        message = make_kernel_info_message()

        with anyio.fail_after(1):
            reply = await dispatcher.send_request("chan-1", message)

    assert reply.parent_header is not None
    assert reply.parent_header.msg_id == message.header.msg_id
