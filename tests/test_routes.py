import socket
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api import routes
from api.routes import init_routes, router
from catalog.cache import ThumbnailCache
from catalog.models import AssetType
from discovery.models import DiscoveredPeer
from session.manager import SessionManager


class FakeDiscovery:
    device_name = "Studio-Mac"

    def __init__(self, peers=()):
        self._peers = list(peers)

    async def get_peers(self):
        return self._peers


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def client(store):
    store.add("p1", original=b"photo", thumbnail=b"t")
    store.add("v1", AssetType.VIDEO, original=b"video" * 10, duration=4.0)
    manager = SessionManager(store, ThumbnailCache(), host="127.0.0.1", port=0)
    peers = [DiscoveredPeer(name="Workstation-7", address="192.168.1.20", port=2347, last_seen=time.time())]
    init_routes(manager, FakeDiscovery(peers))

    app = FastAPI()
    app.include_router(router)
    with TestClient(app) as test_client:
        yield test_client
        test_client.post("/api/session/stop")


def test_session_lifecycle(client):
    assert client.get("/api/session").json()["state"] == "idle"
    assert client.post("/api/session/start").json() == {"state": "searching"}

    body = client.get("/api/session").json()
    assert body["state"] == "searching"
    assert body["asset_counts"] == {"total": 0, "photos": 0, "videos": 0}
    assert body["can_retry"] is False

    assert client.post("/api/session/stop").json() == {"state": "idle"}


def test_connect_while_idle_conflicts(client):
    response = client.post("/api/session/connect", json={"host": "127.0.0.1", "port": 2347})
    assert response.status_code == 409


def test_connect_failure_reports_bad_gateway(client):
    client.post("/api/session/start")
    response = client.post(
        "/api/session/connect", json={"host": "127.0.0.1", "port": _free_port()}
    )
    assert response.status_code == 502
    body = client.get("/api/session").json()
    assert body["state"] == "error"
    assert body["can_retry"] is True


def test_connect_validates_port(client):
    response = client.post("/api/session/connect", json={"host": "127.0.0.1", "port": 0})
    assert response.status_code == 422


def test_list_peers(client):
    peers = client.get("/api/peers").json()["peers"]
    assert peers[0]["name"] == "Workstation-7"
    assert peers[0]["port"] == 2347


def test_library_listing(client):
    body = client.get("/api/library").json()
    assert body["total_count"] == 2
    assert body["videos_count"] == 1
    assert "duration_seconds" not in body["assets"][0]


def test_library_failure_is_503(client, store):
    store.fail_sizes = True
    assert client.get("/api/library").status_code == 503


def test_rescan_invalidates_only_changed_thumbnails(client, store):
    cache = routes._session_manager.cache
    cache.put("p1", b"old")
    cache.put("v1", b"old")
    store.stale = {"p1"}

    body = client.post("/api/library/rescan").json()
    assert body == {"changed": 1, "cached_thumbnails": 1}
    assert "p1" not in cache
    assert "v1" in cache


def test_settings(client):
    client.post("/api/session/start")
    body = client.get("/api/settings").json()
    assert body["device_name"] == "Studio-Mac"
    assert body["service_type"] == "_mediabridge._tcp.local."
    assert body["listen_port"] > 0
    assert body["pin_max_attempts"] == 3
