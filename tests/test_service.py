import asyncio
import os

import pytest
from fastapi.testclient import TestClient
from structlog.testing import capture_logs

from search_sync import service as service_module
from search_sync.config import ConfigurationError, Settings
from search_sync.dispatcher import SubscriptionError
from search_sync.documents import user_to_document
from search_sync.health import create_health_api
from search_sync.index import IndexRequestError
from search_sync.nats_client import write_creds_file
from search_sync.records import UserRecord
from search_sync.service import Service

from conftest import FakeMsg, FakeNats


class _FakeConnection:
    instances = []

    def __init__(self, url, creds, fail_on=None):
        self.url = url
        self.creds = creds
        self.nc = FakeNats(fail_on=fail_on)
        self.closed = False
        _FakeConnection.instances.append(self)

    @property
    def connected(self):
        return not self.closed

    async def connect(self):
        return self.nc

    async def close(self):
        self.closed = True


@pytest.fixture
def config():
    return Settings(nats_creds="creds-blob", health_enabled=False, shutdown_grace=0.5)


@pytest.fixture
def fake_connection(monkeypatch):
    _FakeConnection.instances = []
    monkeypatch.setattr(service_module, "NatsConnection", _FakeConnection)
    return _FakeConnection


@pytest.mark.asyncio
async def test_start_subscribes_and_reports_ready(config, users, posts, fake_connection):
    service = Service(config, users=users, posts=posts)

    await service.start()
    status = service.health_status()

    assert status["status"] == "ready"
    assert set(status["subjects"].values()) == {"subscribed"}
    assert fake_connection.instances[0].creds == "creds-blob"

    await service.shutdown()

    assert fake_connection.instances[0].closed
    assert service.health_status()["status"] == "not_ready"
    assert set(service.health_status()["subjects"].values()) == {"unsubscribed"}


@pytest.mark.asyncio
async def test_missing_creds_aborts_startup(users, posts, fake_connection):
    service = Service(Settings(nats_creds="", health_enabled=False), users=users, posts=posts)

    with pytest.raises(ConfigurationError):
        await service.start()

    assert fake_connection.instances == []


@pytest.mark.asyncio
async def test_subscription_failure_aborts_startup(config, users, posts, monkeypatch):
    monkeypatch.setattr(
        service_module,
        "NatsConnection",
        lambda url, creds: _FakeConnection(url, creds, fail_on="posts.upsert"),
    )
    service = Service(config, users=users, posts=posts)

    with pytest.raises(SubscriptionError):
        await service.start()
    await service.shutdown()

    assert not service.running
    assert _FakeConnection.instances[-1].closed


@pytest.mark.asyncio
async def test_run_drains_nats_after_stop_signal(config, users, posts, fake_connection):
    service = Service(config, users=users, posts=posts)
    task = asyncio.create_task(service.run())

    for _ in range(100):
        if service.running:
            break
        await asyncio.sleep(0.01)
    assert service.health_status()["status"] == "ready"

    service._handle_signal()
    await asyncio.wait_for(task, timeout=2.0)

    assert fake_connection.instances[0].closed
    assert not service.running
    assert set(service.health_status()["subjects"].values()) == {"unsubscribed"}


@pytest.mark.asyncio
async def test_missing_creds_is_reported_before_missing_api_key(fake_connection):
    service = Service(Settings(nats_creds="", typesense_api_key="", health_enabled=False))

    with pytest.raises(ConfigurationError, match="NATS_CREDS"):
        await service.start()

    assert fake_connection.instances == []


@pytest.mark.asyncio
async def test_missing_api_key_fails_each_apply_not_startup(fake_connection):
    service = Service(Settings(nats_creds="creds-blob", typesense_api_key="", health_enabled=False, max_retries=0))

    await service.start()
    try:
        assert service.health_status()["status"] == "ready"
        with pytest.raises(IndexRequestError):
            await service.users.upsert(user_to_document(UserRecord(id="u1")))

        with capture_logs() as logs:
            await service.synchronizer.handle_post_deleted(FakeMsg(subject="posts.deleted", data=b'{"id": "p1"}'))
        assert [entry["event"] for entry in logs] == ["apply_failed"]
    finally:
        await service.shutdown()


def test_creds_file_is_private():
    path = write_creds_file("secret")
    try:
        with open(path) as f:
            assert f.read() == "secret"
        assert os.stat(path).st_mode & 0o077 == 0
    finally:
        os.unlink(path)


class _StubService:
    def __init__(self, running, ready):
        self.running = running
        self._ready = ready

    def health_status(self):
        return {"status": "ready" if self._ready else "not_ready", "subjects": {}}


def test_health_endpoints():
    client = TestClient(create_health_api(_StubService(running=True, ready=True)))

    assert client.get("/health").status_code == 200
    assert client.get("/ready").json()["status"] == "ready"

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "search_sync_messages_received_total" in metrics.text


def test_not_ready_returns_503():
    client = TestClient(create_health_api(_StubService(running=False, ready=False)))

    assert client.get("/health").status_code == 503
    assert client.get("/ready").status_code == 503
