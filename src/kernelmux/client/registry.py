"""
SessionRegistry tracks the kernels a process has started or connected to.

Every kernel id maps to at most one pending session future. Callers that ask
for a kernel before it is ready wait on that future and receive the session
once the kernel-info handshake completes.
"""

import logging
from collections.abc import Mapping
from types import MappingProxyType

import anyio

import kernelmux.shared.message as codec
from kernelmux.client.control import KernelControlClient
from kernelmux.shared.channel import ChannelRegistry, Unregister
from kernelmux.shared.dispatcher import RequestDispatcher
from kernelmux.shared.exceptions import (
    HandshakeFailure,
    KernelError,
    KernelStartFailure,
    KernelUnavailable,
    ProtocolMismatch,
)
from kernelmux.types import KernelInfo, KernelStatus

logger = logging.getLogger(__name__)


class Session:
    """A kernel that completed its kernel-info handshake."""

    def __init__(
        self,
        kernel_id: str,
        channel_id: str,
        session_token: str,
        info: KernelInfo,
        unregister: Unregister,
    ) -> None:
        self.kernel_id = kernel_id
        self._channel_id = channel_id
        self.session_token = session_token
        self.info = info
        self.unregister = unregister
        self.status = KernelStatus.UNKNOWN

    @property
    def channel_id(self) -> str:
        return self._channel_id

    def __repr__(self) -> str:
        return (
            f"Session(kernel_id={self.kernel_id!r}, channel_id={self._channel_id!r}, "
            f"status={self.status.value!r})"
        )


class _PendingSession:
    """One-shot future for the session of a kernel id."""

    def __init__(self) -> None:
        self._event = anyio.Event()
        self.session: Session | None = None
        self.error: KernelError | None = None
        # Set once a start or connect has taken responsibility for settling it.
        self.claimed = False

    @property
    def done(self) -> bool:
        return self._event.is_set()

    def set_result(self, session: Session) -> None:
        if self.done:
            return
        self.session = session
        self._event.set()

    def set_error(self, error: KernelError) -> None:
        if self.done:
            return
        self.error = error
        self._event.set()

    async def wait(self) -> Session:
        await self._event.wait()
        if self.error is not None:
            raise self.error
        assert self.session is not None
        return self.session


class SessionRegistry:
    def __init__(self, channels: ChannelRegistry, control: KernelControlClient) -> None:
        self._channels = channels
        self._control = control
        self.dispatcher = RequestDispatcher(channels, status_observer=self)
        self._lock = anyio.Lock()
        self._pending: dict[str, _PendingSession] = {}
        self._sessions: dict[str, Session] = {}
        self._by_channel: dict[str, Session] = {}
        self._by_token: dict[str, Session] = {}

    @property
    def sessions(self) -> Mapping[str, Session]:
        return MappingProxyType(self._sessions)

    def get_by_channel(self, channel_id: str) -> Session | None:
        return self._by_channel.get(channel_id)

    def get_by_token(self, session_token: str) -> Session | None:
        return self._by_token.get(session_token)

    def is_pending(self, kernel_id: str) -> bool:
        return kernel_id in self._pending

    async def _get_or_create(self, kernel_id: str, claim: bool) -> tuple[_PendingSession, bool]:
        """Look up or insert the pending future for ``kernel_id`` as one step.

        Returns the future and whether the caller now owns settling it.
        """
        async with self._lock:
            pending = self._pending.get(kernel_id)
            if pending is None:
                pending = _PendingSession()
                self._pending[kernel_id] = pending
            claimed = claim and not pending.claimed
            if claimed:
                pending.claimed = True
            return pending, claimed

    async def start_session(self, kernel_id: str, kernel_spec: str | None = None) -> Session:
        """
        Start a kernel through the control plane and connect to it.

        If a start or connect for ``kernel_id`` is already under way, waits
        for it instead of starting a second kernel.

        Raises:
            KernelStartFailure: If the control plane could not start the kernel
            HandshakeFailure: If the kernel-info exchange failed
        """
        pending, claimed = await self._get_or_create(kernel_id, claim=True)
        if not claimed:
            return await pending.wait()
        return await self._start(kernel_id, kernel_spec, pending)

    async def connect_session(self, kernel_id: str, channel_id: str) -> Session:
        """
        Register ``channel_id`` and perform the kernel-info handshake.

        Raises:
            HandshakeFailure: If the channel could not be opened or the
                kernel-info exchange failed; the channel is unregistered first
        """
        pending, claimed = await self._get_or_create(kernel_id, claim=True)
        if not claimed:
            return await pending.wait()
        return await self._connect(kernel_id, channel_id, pending)

    async def get_session(self, kernel_id: str) -> Session:
        """Wait for the session of ``kernel_id``; never starts a kernel."""
        pending, _ = await self._get_or_create(kernel_id, claim=False)
        return await pending.wait()

    async def get_or_start(self, kernel_id: str, kernel_spec: str | None = None) -> Session:
        async with self._lock:
            pending = self._pending.get(kernel_id)
            start = pending is None
            if pending is None:
                pending = _PendingSession()
                pending.claimed = True
                self._pending[kernel_id] = pending
        if not start:
            return await pending.wait()
        return await self._start(kernel_id, kernel_spec, pending)

    async def resolve(self, kernel_id: str) -> Session:
        """
        Return the session operations should run against.

        Waits for a start that is still in progress, but fails immediately for
        a kernel id nobody has asked for.

        Raises:
            KernelUnavailable: If there is no session and none is pending, or
                the pending one failed
        """
        session = self._sessions.get(kernel_id)
        if session is not None:
            return session
        pending = self._pending.get(kernel_id)
        if pending is None:
            raise KernelUnavailable(kernel_id, "kernel was never started")
        try:
            return await pending.wait()
        except KernelError as e:
            raise KernelUnavailable(kernel_id, str(e)) from e

    def update_status(self, channel_id: str, session_token: str, status: KernelStatus) -> None:
        session = self._by_channel.get(channel_id)
        if session is None:
            # Handshake not finished yet
            return
        if session_token != session.session_token:
            logger.debug("Ignoring status from session %s on channel %s", session_token, channel_id)
            return
        session.status = status

    async def _start(self, kernel_id: str, kernel_spec: str | None, pending: _PendingSession) -> Session:
        try:
            channel_id = await self._control.start_kernel(kernel_id, kernel_spec)
        except KernelStartFailure as e:
            self._reject(kernel_id, pending, e)
            raise
        except BaseException:
            # Cancelled by the caller; waiters must not hang on the future.
            self._reject(kernel_id, pending, KernelStartFailure(kernel_id, "start was cancelled"))
            raise
        return await self._connect(kernel_id, channel_id, pending)

    async def _connect(self, kernel_id: str, channel_id: str, pending: _PendingSession) -> Session:
        try:
            unregister = await self._channels.register_channel(channel_id)
        except Exception as e:
            error = HandshakeFailure(kernel_id, channel_id, f"could not open channel: {e}")
            self._reject(kernel_id, pending, error)
            raise error from e
        except BaseException:
            self._reject(kernel_id, pending, HandshakeFailure(kernel_id, channel_id, "cancelled while opening channel"))
            raise

        try:
            reply = await self.dispatcher.send_request(channel_id, codec.make_kernel_info_message())
            info = KernelInfo.model_validate(codec.get_content(reply))
            if info.status != "ok":
                raise ProtocolMismatch(f"kernel_info_reply has status {info.status!r}")
        except Exception as e:
            unregister()
            error = HandshakeFailure(kernel_id, channel_id, str(e))
            self._reject(kernel_id, pending, error)
            raise error from e
        except BaseException:
            unregister()
            self._reject(kernel_id, pending, HandshakeFailure(kernel_id, channel_id, "handshake was cancelled"))
            raise

        session = Session(kernel_id, channel_id, codec.get_session(reply), info, unregister)
        self._sessions[kernel_id] = session
        self._by_channel[channel_id] = session
        self._by_token[session.session_token] = session
        pending.set_result(session)
        logger.info("Connected kernel %s on channel %s", kernel_id, channel_id)
        return session

    def _reject(self, kernel_id: str, pending: _PendingSession, error: KernelError) -> None:
        pending.set_error(error)
        # Evict so a later get_or_start can try again.
        if self._pending.get(kernel_id) is pending:
            del self._pending[kernel_id]
        logger.warning("Kernel %s failed: %s", kernel_id, error)
