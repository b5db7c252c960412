"""Shared fixtures for simserve tests."""

from __future__ import annotations

import httpx
import pytest


@pytest.fixture
def fetch(simserve_client_ssl):
    """Issue one request against a simserve URL (TLS verification off, no proxies)."""

    def _fetch(url: str, method: str = "GET", **kwargs) -> httpx.Response:
        with httpx.Client(verify=simserve_client_ssl, trust_env=False, timeout=10.0) as client:
            return client.request(method, url, **kwargs)

    return _fetch
