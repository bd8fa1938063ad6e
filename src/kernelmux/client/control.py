"""HTTP control plane for starting, listing, interrupting and restarting kernels."""

import logging
from types import TracebackType
from typing import Any

import httpx
from typing_extensions import Self

from kernelmux.shared.exceptions import KernelStartFailure
from kernelmux.shared.httpx_utils import create_kernel_http_client

logger = logging.getLogger(__name__)


class KernelControlClient:
    """
    Thin wrapper over the kernel gateway's HTTP API.

    If no ``http_client`` is given one is created from ``base_url`` and closed
    with this object; a caller-supplied client is left open.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8888",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._owns_client = http_client is None
        self._http = http_client or create_kernel_http_client(base_url=base_url, timeout=httpx.Timeout(timeout))

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def list_kernels(self) -> list[str]:
        """Return the channel ids of kernels the gateway has already started."""
        response = await self._http.get("/api/kernels/")
        response.raise_for_status()
        return [kernel["id"] for kernel in response.json()]

    async def start_kernel(self, kernel_id: str, kernel_spec: str | None = None) -> str:
        """
        Ask the gateway to start a kernel and return its channel id.

        Raises:
            KernelStartFailure: If the request fails or the response has no id
        """
        kwargs: dict[str, Any] = {}
        if kernel_spec is not None:
            kwargs["json"] = {"name": kernel_spec}
        try:
            response = await self._http.post("/api/startkernel/", **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise KernelStartFailure(kernel_id, str(e)) from e

        try:
            channel_id = response.json()["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise KernelStartFailure(kernel_id, f"malformed start response: {response.text!r}") from e
        if not isinstance(channel_id, str) or not channel_id:
            raise KernelStartFailure(kernel_id, f"malformed start response: {response.text!r}")

        logger.info("Started kernel %s with channel %s", kernel_id, channel_id)
        return channel_id

    async def interrupt_kernel(self, channel_id: str) -> None:
        response = await self._http.post(f"/api/kernels/interrupt/{channel_id}")
        response.raise_for_status()

    async def restart_kernel(self, channel_id: str) -> None:
        response = await self._http.post(f"/api/kernels/restart/{channel_id}")
        response.raise_for_status()
