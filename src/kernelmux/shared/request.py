"""Pending request handling for requests dispatched on a kernel channel."""

import logging
import math
from collections.abc import Awaitable, Callable
from types import TracebackType

import anyio
from typing_extensions import Self

from kernelmux.shared.exceptions import ChannelClosed
from kernelmux.shared.message import get_message_type, get_msg_id
from kernelmux.types import Message

logger = logging.getLogger(__name__)

NotificationFnT = Callable[[Message], Awaitable[None]]


class PendingRequest:
    """
    Represents one outstanding protocol exchange on a channel.

    Notifications observed on the channel while the request is in flight are
    passed to the optional callback and, when ``queue_notifications`` is set,
    queued in delivery order on ``notifications``. ``result()`` waits for the
    terminal reply.

    Exceptions raised by the callback never reach the channel's receive loop;
    the first one is re-raised by ``result()`` once the reply has arrived.
    """

    def __init__(
        self,
        channel_id: str,
        request: Message,
        notification_callback: NotificationFnT | None = None,
        queue_notifications: bool = True,
    ) -> None:
        self.channel_id = channel_id
        self.request = request
        self._notification_callback = notification_callback
        self._queue_notifications = queue_notifications
        self._callback_error: Exception | None = None
        self._settled = False
        self._reply_send, self._reply_receive = anyio.create_memory_object_stream[Message](1)
        self._notification_send, self.notifications = anyio.create_memory_object_stream[Message](math.inf)

    @property
    def msg_id(self) -> str:
        return get_msg_id(self.request)

    @property
    def done(self) -> bool:
        return self._settled

    async def notify(self, message: Message) -> None:
        if self._notification_callback is not None and self._callback_error is None:
            try:
                await self._notification_callback(message)
            except Exception as e:
                logger.warning(
                    "Notification callback for %s failed on %s: %s",
                    get_message_type(self.request),
                    get_message_type(message),
                    e,
                )
                self._callback_error = e
        if not self._queue_notifications:
            return
        try:
            self._notification_send.send_nowait(message)
        except anyio.BrokenResourceError:
            # The caller closed the notification stream
            pass

    def resolve(self, reply: Message) -> None:
        self._settled = True
        self._notification_send.close()
        try:
            self._reply_send.send_nowait(reply)
        except anyio.BrokenResourceError:
            logger.debug("Dropping reply to %s, nobody is waiting for it", self.msg_id)
        self._reply_send.close()

    def fail(self) -> None:
        """Mark the request as failed because its channel went away."""
        self._settled = True
        self._notification_send.close()
        self._reply_send.close()

    async def result(self) -> Message:
        """
        Wait for the terminal reply.

        Raises:
            ChannelClosed: If the channel was torn down before the reply arrived
        """
        try:
            reply = await self._reply_receive.receive()
        except anyio.EndOfStream:
            raise ChannelClosed(self.channel_id) from None
        finally:
            self._reply_receive.close()
        if self._callback_error is not None:
            raise self._callback_error
        return reply

    def close(self) -> None:
        self._reply_receive.close()
        self.notifications.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
