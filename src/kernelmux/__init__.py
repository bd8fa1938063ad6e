"""kernelmux: kernel sessions and message correlation for Jupyter-protocol kernels.

Use kernelmux to:

- Start kernels through a gateway's HTTP control plane, or connect to running ones
- Share one message channel per kernel between many concurrent requests
- Run typed operations (execute, evaluate, inspect, complete, history)

## Example

```python
from kernelmux import open_kernel_client

async with open_kernel_client(opener) as client:
    await client.start_kernel("main")
    result = await client.execute("main", "print('hello')")
    print(result.stdout)
```
"""

from .client.control import KernelControlClient
from .client.registry import Session, SessionRegistry
from .client.session import KernelClient, KernelHandle, open_kernel_client
from .settings import KernelClientSettings
from .shared.channel import ChannelRegistry, ChannelStreams
from .shared.dispatcher import RequestDispatcher
from .shared.exceptions import (
    ChannelClosed,
    HandshakeFailure,
    KernelError,
    KernelStartFailure,
    KernelUnavailable,
    ProtocolMismatch,
)
from .shared.request import PendingRequest
from .types import (
    CompletionContent,
    EvaluationResult,
    ExecuteOptions,
    ExecutionResult,
    HistoryEntry,
    InspectionContent,
    KernelInfo,
    KernelStatus,
    Message,
)

__all__ = [
    "ChannelClosed",
    "ChannelRegistry",
    "ChannelStreams",
    "CompletionContent",
    "EvaluationResult",
    "ExecuteOptions",
    "ExecutionResult",
    "HandshakeFailure",
    "HistoryEntry",
    "InspectionContent",
    "KernelClient",
    "KernelClientSettings",
    "KernelControlClient",
    "KernelError",
    "KernelHandle",
    "KernelInfo",
    "KernelStartFailure",
    "KernelStatus",
    "KernelUnavailable",
    "Message",
    "PendingRequest",
    "ProtocolMismatch",
    "RequestDispatcher",
    "Session",
    "SessionRegistry",
    "open_kernel_client",
]
