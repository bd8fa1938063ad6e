import logging
from typing import Protocol

from kernelmux.shared.channel import ChannelRegistry
from kernelmux.shared.message import get_content, get_message_type, get_session
from kernelmux.shared.request import NotificationFnT, PendingRequest
from kernelmux.types import KernelStatus, Message

logger = logging.getLogger(__name__)


class StatusObserver(Protocol):
    """Receives every execution-state change reported on a channel."""

    def update_status(self, channel_id: str, session_token: str, status: KernelStatus) -> None: ...


class RequestDispatcher:
    """
    Sends requests on kernel channels and hands back their replies.

    Status tracking happens here rather than in each caller: every ``status``
    message seen on any channel is reported to the status observer before
    the in-flight requests are notified, whether or not a request is waiting.
    """

    def __init__(self, channels: ChannelRegistry, status_observer: StatusObserver | None = None) -> None:
        self._channels = channels
        self._status_observer = status_observer
        channels.add_observer(self._observe)

    async def _observe(self, channel_id: str, message: Message) -> None:
        if get_message_type(message) != "status":
            return
        state = get_content(message).get("execution_state")
        if state is None:
            logger.warning("Status message on channel %s has no execution_state", channel_id)
            return
        if self._status_observer is not None:
            self._status_observer.update_status(channel_id, get_session(message), KernelStatus(state))

    async def start_request(
        self,
        channel_id: str,
        message: Message,
        notification_callback: NotificationFnT | None = None,
        queue_notifications: bool = True,
    ) -> PendingRequest:
        """
        Sends ``message`` once on the channel.

        With ``queue_notifications`` the returned request also buffers every
        notification on ``PendingRequest.notifications`` until the reply.

        Raises:
            ChannelClosed: If the channel is not registered or already torn down
        """
        channel = self._channels.get_channel(channel_id)
        request = PendingRequest(channel_id, message, notification_callback, queue_notifications)
        await channel.send(request)
        return request

    async def send_request(
        self,
        channel_id: str,
        message: Message,
        notification_callback: NotificationFnT | None = None,
    ) -> Message:
        """
        Sends ``message`` and waits for its terminal reply.

        ``notification_callback`` is awaited for every notification delivered
        on the channel while the request is in flight, in delivery order.
        """
        request = await self.start_request(channel_id, message, notification_callback, queue_notifications=False)
        with request:
            return await request.result()
