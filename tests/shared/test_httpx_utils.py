"""Tests for httpx utility functions."""

import httpx

from kernelmux.shared.httpx_utils import create_kernel_http_client


class TestCreateKernelHttpClient:
    """Test create_kernel_http_client function."""

    def test_default_settings(self):
        client = create_kernel_http_client()

        assert client.follow_redirects is True
        assert client.timeout.connect == 30.0
        assert client.timeout.read == 30.0

    def test_custom_parameters(self):
        timeout = httpx.Timeout(connect=5.0, read=10.0, write=15.0, pool=20.0)

        client = create_kernel_http_client(base_url="http://gateway:8888", timeout=timeout)

        assert client.base_url.host == "gateway"
        assert client.base_url.port == 8888
        assert client.timeout.connect == 5.0
        assert client.timeout.pool == 20.0

    def test_follow_redirects_enforced(self):
        client = create_kernel_http_client(follow_redirects=False)

        assert client.follow_redirects is True
