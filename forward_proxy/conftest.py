import pytest
from fastapi.testclient import TestClient

from forward_proxy.utils_tests.upstream_mock import FakeUpstream


@pytest.fixture
def upstream(monkeypatch):
    """Route every outbound request of the forwarder to an in-memory upstream."""
    fake = FakeUpstream()
    monkeypatch.setattr(
        "forward_proxy.proxy.forwarder.create_upstream_client", fake.create_client
    )
    return fake


@pytest.fixture
def proxy_client(upstream):
    from forward_proxy.server import app

    with TestClient(app, base_url="https://proxy.example") as client:
        yield client


@pytest.fixture
def plain_http_client(upstream):
    from forward_proxy.server import app

    with TestClient(app) as client:
        yield client
