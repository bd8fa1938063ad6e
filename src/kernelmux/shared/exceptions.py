from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kernelmux.types import ExecutionResult


class KernelError(Exception):
    """Base class for every error raised by kernelmux.

    Attributes:
        partial_result: Output an execute request had collected before it
            failed, or None
    """

    partial_result: "ExecutionResult | None" = None


class KernelStartFailure(KernelError):
    """Raised when the control plane fails to start a kernel.

    Attributes:
        kernel_id: The caller-chosen identifier of the kernel being started
    """

    def __init__(self, kernel_id: str, reason: str):
        super().__init__(f"Failed to start kernel {kernel_id!r}: {reason}")
        self.kernel_id = kernel_id
        self.reason = reason


class HandshakeFailure(KernelError):
    """Raised when the kernel-info exchange fails after the channel was registered."""

    def __init__(self, kernel_id: str, channel_id: str, reason: str):
        super().__init__(f"Handshake with kernel {kernel_id!r} on channel {channel_id!r} failed: {reason}")
        self.kernel_id = kernel_id
        self.channel_id = channel_id
        self.reason = reason


class ChannelClosed(KernelError):
    """Raised when a channel is torn down before a request received its reply."""

    def __init__(self, channel_id: str):
        super().__init__(f"Channel {channel_id!r} closed")
        self.channel_id = channel_id


class KernelUnavailable(KernelError):
    """Raised when an operation targets a kernel id with no resolvable session."""

    def __init__(self, kernel_id: str, reason: str = "no session"):
        super().__init__(f"Kernel {kernel_id!r} is unavailable: {reason}")
        self.kernel_id = kernel_id
        self.reason = reason


class ProtocolMismatch(KernelError):
    """Raised when a message is missing fields required to build a result."""
