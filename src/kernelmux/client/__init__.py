from .control import KernelControlClient
from .registry import Session, SessionRegistry
from .session import KernelClient, KernelHandle, open_kernel_client

__all__ = [
    "KernelClient",
    "KernelControlClient",
    "KernelHandle",
    "Session",
    "SessionRegistry",
    "open_kernel_client",
]
