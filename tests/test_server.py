"""Tests for the HTTP and Socket.IO surface of the camera node."""

import asyncio
import base64
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest
from fastapi.testclient import TestClient

from timestamp_camera.camera import TIMESTAMP_SOURCE_NAMES
from timestamp_camera.client import group_by_timestamp
from timestamp_camera.encoding import decode_image
from timestamp_camera.errors import InvalidConfiguration, ResourceNotFound
from timestamp_camera.server import build_host, create_app, register_socket_handlers
from timestamp_camera.settings import CHUNK_SIZE, Settings


def raise_memory_error(*args, **kwargs):
    raise MemoryError("cannot allocate raster")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(node_id="test_node", log_dir=str(tmp_path / "logs"), n_images=3, resource_name="camera")


@pytest.fixture
def host(settings):
    host = build_host(settings)
    yield host
    host.close_all()


@pytest.fixture
def client(host, settings):
    return TestClient(create_app(host, settings))


# =============================================================================
# Resource host
# =============================================================================


class TestResourceHost:
    def test_build_host_adds_default_camera(self, host):
        assert host.names() == ["camera"]
        assert host.model_of("camera") == TIMESTAMP_SOURCE_NAMES

    def test_add_duplicate_name_fails(self, host):
        with pytest.raises(ValueError):
            host.add("camera", TIMESTAMP_SOURCE_NAMES, {"n_images": 1})

    def test_get_unknown(self, host):
        with pytest.raises(ResourceNotFound):
            host.get("missing")

    def test_reconfigure_rebuilds(self, host):
        old = host.get("camera")
        new = host.reconfigure("camera", {"n_images": 5})
        assert new is not old
        assert old.closed
        assert new.n_images == 5
        assert host.get("camera") is new

    def test_bad_reconfigure_keeps_old_resource(self, host):
        old = host.get("camera")
        with pytest.raises(InvalidConfiguration):
            host.reconfigure("camera", {"n_images": 0})
        assert host.get("camera") is old
        assert not old.closed

    def test_add_allocation_failure_registers_nothing(self, host, monkeypatch):
        monkeypatch.setattr("timestamp_camera.camera.make_reference_image", raise_memory_error)
        with pytest.raises(MemoryError):
            host.add("second", TIMESTAMP_SOURCE_NAMES, {"n_images": 2})
        assert host.names() == ["camera"]
        with pytest.raises(ResourceNotFound):
            host.get("second")

    def test_reconfigure_allocation_failure_keeps_old_resource(self, host, monkeypatch):
        old = host.get("camera")
        monkeypatch.setattr("timestamp_camera.camera.make_reference_image", raise_memory_error)
        with pytest.raises(MemoryError):
            host.reconfigure("camera", {"n_images": 5})
        assert host.get("camera") is old
        assert not old.closed
        named, _ = old.images()
        assert len(named) == 3

    def test_remove_closes(self, host):
        cam = host.get("camera")
        host.remove("camera")
        assert cam.closed
        assert host.names() == []


# =============================================================================
# HTTP routes
# =============================================================================


class TestRoutes:
    def test_status(self, client):
        resp = client.get("/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "online"
        assert data["node_id"] == "test_node"
        assert data["resources"] == {"camera": str(TIMESTAMP_SOURCE_NAMES)}
        assert "cpu_percent" in data["system"]

    def test_logs_without_file(self, client):
        resp = client.get("/logs")
        assert resp.status_code == 200
        assert resp.json() == {"logs": []}

    def test_properties(self, client):
        resp = client.get("/cameras/camera/properties")
        assert resp.status_code == 200
        assert resp.json() == {"supports_pcd": False}

    def test_single_image(self, client):
        resp = client.get("/cameras/camera/image", params={"mime_type": "image/png"})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        pixels = decode_image(resp.content, "image/png")
        assert pixels.shape == (400, 600, 4)
        assert np.all(pixels == np.array((0, 0, 255, 255), dtype=np.uint8))

    def test_single_image_bad_format(self, client):
        resp = client.get("/cameras/camera/image", params={"mime_type": "image/gif"})
        assert resp.status_code == 400
        assert "image/gif" in resp.json()["detail"]

    def test_images_share_timestamp(self, client):
        resp = client.get("/cameras/camera/images", params={"mime_type": "image/png"})
        assert resp.status_code == 200
        data = resp.json()
        names = [item["source_name"] for item in data["images"]]
        groups = group_by_timestamp(names)
        assert len(groups) == 1
        assert list(groups.values()) == [[0, 1, 2]]
        assert datetime.fromisoformat(data["captured_at"].replace("Z", "+00:00")).tzinfo is not None
        for item in data["images"]:
            assert item["mime_type"] == "image/png"
            pixels = decode_image(base64.b64decode(item["data"]), "image/png")
            assert pixels.shape == (400, 600, 4)

    def test_unknown_camera(self, client):
        resp = client.get("/cameras/nope/images")
        assert resp.status_code == 404

    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/cameras/camera/stream"),
            ("get", "/cameras/camera/point_cloud"),
            ("get", "/cameras/camera/geometries"),
            ("post", "/cameras/camera/rtp"),
            ("delete", "/cameras/camera/rtp/sub-1"),
        ],
    )
    def test_unsupported_routes(self, client, method, path):
        resp = getattr(client, method)(path)
        assert resp.status_code == 501
        assert "unimplemented" in resp.json()["detail"]

    def test_do_command_unsupported(self, client):
        resp = client.post("/cameras/camera/do_command", json={"cmd": "reset"})
        assert resp.status_code == 501

    def test_reconfigure_route(self, client):
        resp = client.put("/cameras/camera/config", json={"n_images": 2})
        assert resp.status_code == 200
        images = client.get("/cameras/camera/images", params={"mime_type": "image/png"}).json()["images"]
        assert len(images) == 2

    def test_reconfigure_route_rejects_invalid(self, client):
        resp = client.put("/cameras/camera/config", json={"n_images": 0})
        assert resp.status_code == 400
        assert "n_images" in resp.json()["detail"]

    def test_image_routes_run_off_the_event_loop(self, client):
        endpoints = {route.path: route.endpoint for route in client.app.routes if hasattr(route, "endpoint")}
        assert not asyncio.iscoroutinefunction(endpoints["/cameras/{name}/image"])
        assert not asyncio.iscoroutinefunction(endpoints["/cameras/{name}/images"])

    def test_shutdown_closes_cameras(self, host, settings):
        cam = host.get("camera")
        with TestClient(create_app(host, settings)) as client:
            assert client.get("/cameras/camera/properties").status_code == 200
            assert not cam.closed
        assert cam.closed
        assert host.names() == []

    def test_closed_camera(self, client, host):
        host.get("camera").close()
        resp = client.get("/cameras/camera/images")
        assert resp.status_code == 503


# =============================================================================
# Socket.IO capture
# =============================================================================


def make_sio():
    sio = MagicMock()
    sio.emit = AsyncMock()
    return sio


def emitted(sio, event):
    return [c for c in sio.emit.await_args_list if c.args[0] == event]


class TestSocketCapture:
    def test_capture_sends_every_image(self, host, settings):
        sio = make_sio()
        handle_capture = register_socket_handlers(sio, host, settings)

        asyncio.run(handle_capture("sid-1", {"mime_type": "image/png"}))

        metadata = [c.args[1] for c in emitted(sio, "image_metadata")]
        assert len(metadata) == 3
        assert all(m["mime_type"] == "image/png" and m["node_id"] == "test_node" for m in metadata)
        assert len(group_by_timestamp(m["source_name"] for m in metadata)) == 1

        chunks = emitted(sio, "image_chunk")
        assert all(len(c.args[1]) <= CHUNK_SIZE for c in chunks)
        assert sum(len(c.args[1]) for c in chunks) == sum(m["size"] for m in metadata)
        assert len(emitted(sio, "image_complete")) == 3

        complete = emitted(sio, "capture_complete")
        assert len(complete) == 1
        assert complete[0].args[1]["count"] == 3
        assert complete[0].kwargs["room"] == "sid-1"

    def test_capture_error_is_reported(self, host, settings):
        sio = make_sio()
        handle_capture = register_socket_handlers(sio, host, settings)

        asyncio.run(handle_capture("sid-1", {"name": "missing"}))

        errors = emitted(sio, "capture_error")
        assert len(errors) == 1
        assert "missing" in errors[0].args[1]["error"]
        assert emitted(sio, "image_metadata") == []
