import anyio
import pytest

from kernelmux.shared.channel import ChannelRegistry
from kernelmux.shared.dispatcher import RequestDispatcher
from kernelmux.shared.exceptions import ProtocolMismatch
from kernelmux.shared.memory import KernelStreams, MemoryChannelOpener
from kernelmux.shared.message import IOPUB_CHANNEL, get_message_type, make_execute_message, make_message
from kernelmux.types import KernelStatus, Message


class RecordingObserver:
    def __init__(self) -> None:
        self.status = KernelStatus.UNKNOWN
        self.updates: list[tuple[str, str, KernelStatus]] = []

    def update_status(self, channel_id: str, session_token: str, status: KernelStatus) -> None:
        self.status = status
        self.updates.append((channel_id, session_token, status))


async def scripted_execute_kernel(channel_id: str, streams: KernelStreams) -> None:
    """Answers each request with busy, two stdout chunks, idle and a reply."""
    read_stream, write_stream = streams
    async for request in read_stream:
        for msg_type, content in [
            ("status", {"execution_state": "busy"}),
            ("stream", {"name": "stdout", "text": "a"}),
            ("stream", {"name": "stdout", "text": "b"}),
            ("status", {"execution_state": "idle"}),
        ]:
            await write_stream.send(make_message(msg_type, content, session="k", parent=request, channel=IOPUB_CHANNEL))
        await write_stream.send(make_message("execute_reply", {"status": "ok"}, session="k", parent=request))


@pytest.mark.anyio
async def test_status_is_updated_before_callbacks_in_delivery_order():
    observer = RecordingObserver()
    observed: list[tuple[str, KernelStatus]] = []

    async def callback(message: Message) -> None:
        observed.append((get_message_type(message), observer.status))

    async with ChannelRegistry(MemoryChannelOpener(scripted_execute_kernel)) as channels:
        dispatcher = RequestDispatcher(channels, status_observer=observer)
        await channels.register_channel("chan-1")
        await dispatcher.send_request("chan-1", make_execute_message("x", False, True, {}, False), callback)

    assert observed == [
        ("status", KernelStatus.BUSY),
        ("stream", KernelStatus.BUSY),
        ("stream", KernelStatus.BUSY),
        ("status", KernelStatus.IDLE),
    ]
    assert observer.updates == [
        ("chan-1", "k", KernelStatus.BUSY),
        ("chan-1", "k", KernelStatus.IDLE),
    ]


@pytest.mark.anyio
async def test_unknown_execution_state_maps_to_unknown():
    observer = RecordingObserver()

    async def kernel(channel_id: str, streams: KernelStreams) -> None:
        read_stream, write_stream = streams
        request = await read_stream.receive()
        status = make_message("status", {"execution_state": "restarting"}, session="k", channel=IOPUB_CHANNEL)
        await write_stream.send(status)
        await write_stream.send(make_message("execute_reply", {"status": "ok"}, session="k", parent=request))

    async with ChannelRegistry(MemoryChannelOpener(kernel)) as channels:
        dispatcher = RequestDispatcher(channels, status_observer=observer)
        await channels.register_channel("chan-1")
        await dispatcher.send_request("chan-1", make_execute_message("x", False, True, {}, False))

    assert observer.updates == [("chan-1", "k", KernelStatus.UNKNOWN)]


@pytest.mark.anyio
async def test_notifications_stream_ends_with_reply():
    async with ChannelRegistry(MemoryChannelOpener(scripted_execute_kernel)) as channels:
        dispatcher = RequestDispatcher(channels)
        await channels.register_channel("chan-1")
        request = await dispatcher.start_request("chan-1", make_execute_message("x", False, True, {}, False))

        with request:
            reply = await request.result()
            assert request.done
            types = [get_message_type(message) async for message in request.notifications]

    assert get_message_type(reply) == "execute_reply"
    assert types == ["status", "stream", "stream", "status"]


@pytest.mark.anyio
async def test_callback_error_is_raised_after_reply():
    calls: list[str] = []

    async def callback(message: Message) -> None:
        calls.append(get_message_type(message))
        raise ProtocolMismatch("bad notification")

    async with ChannelRegistry(MemoryChannelOpener(scripted_execute_kernel)) as channels:
        dispatcher = RequestDispatcher(channels)
        await channels.register_channel("chan-1")

        with anyio.fail_after(1):
            with pytest.raises(ProtocolMismatch):
                await dispatcher.send_request("chan-1", make_execute_message("x", False, True, {}, False), callback)

        # The channel survives and serves the next request
        with anyio.fail_after(1):
            reply = await dispatcher.send_request("chan-1", make_execute_message("y", False, True, {}, False))

    assert calls == ["status"]
    assert get_message_type(reply) == "execute_reply"
