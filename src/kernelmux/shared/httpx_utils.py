"""Utilities for creating standardized httpx AsyncClient instances."""

from typing import Any

import httpx

__all__ = ["create_kernel_http_client"]


def create_kernel_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Create an httpx AsyncClient for talking to the kernel control plane.

    Defaults:
    - follow_redirects=True (always enabled)
    - Default timeout of 30 seconds if not specified

    Args:
        Any keyword argument supported by httpx.AsyncClient (e.g. base_url, headers, timeout, auth).

    Returns:
        Configured httpx.AsyncClient instance.

    Note:
        The returned AsyncClient must be closed, either with ``aclose()`` or
        by using it as an async context manager.

    Examples:
        async with create_kernel_http_client(base_url="http://localhost:8888") as client:
            response = await client.get("/api/kernels/")
    """
    default_kwargs: dict[str, Any] = {
        "follow_redirects": True,
        "timeout": httpx.Timeout(30.0),
    }
    default_kwargs.update(kwargs)
    default_kwargs["follow_redirects"] = True
    return httpx.AsyncClient(**default_kwargs)
