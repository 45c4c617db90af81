import base64
import datetime
import logging
import os
import threading
from contextlib import asynccontextmanager
from typing import Any, Dict

import psutil
import socketio
import uvicorn
from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.concurrency import run_in_threadpool

from . import camera
from .encoding import DEFAULT_MIME_TYPE, encode_image
from .errors import Closed, EncodingError, InvalidConfiguration, MustRebuild, ResourceNotFound, Unimplemented
from .logging_utils import log_file_path, setup_logging
from .models import EncodedImage, ImagesResponse, Properties
from .resource import CAMERA_API, API, Camera, Model, Registry
from .settings import CHUNK_SIZE, Settings, load_settings

logger = logging.getLogger("timestamp_camera.server")


class ResourceHost:
    """Owns the registry and the live resources built from it."""

    def __init__(self, registry: Registry):
        self.registry = registry
        self._resources: Dict[str, Camera] = {}
        self._models: Dict[str, Model] = {}
        self._lock = threading.Lock()

    def add(self, name: str, model: Model, attributes: Dict[str, Any] | None, api: API = CAMERA_API) -> Camera:
        with self._lock:
            if name in self._resources:
                raise ValueError(f"resource {name} already exists")
            resource = self.registry.construct(api, model, name, attributes)
            self._resources[name] = resource
            self._models[name] = model
        logger.info(f"Added resource {name} ({model})")
        return resource

    def get(self, name: str) -> Camera:
        try:
            return self._resources[name]
        except KeyError:
            raise ResourceNotFound(f"no resource named {name}") from None

    def names(self):
        return list(self._resources)

    def model_of(self, name: str) -> Model:
        self.get(name)
        return self._models[name]

    def reconfigure(self, name: str, attributes: Dict[str, Any] | None, api: API = CAMERA_API) -> Camera:
        """Apply new attributes, rebuilding the resource when it cannot reconfigure in place."""
        with self._lock:
            current = self.get(name)
            model = self._models[name]
            registration = self.registry.lookup(api, model)
            config = registration.config_cls.from_attributes(attributes, f"components.{name}")
            config.validate_config(f"components.{name}")
            try:
                current.reconfigure(config)
                return current
            except MustRebuild:
                logger.info(f"Rebuilding resource {name}")
            # old resource stays live until the replacement is built
            replacement = self.registry.construct(api, model, name, attributes)
            current.close()
            self._resources[name] = replacement
            return replacement

    def remove(self, name: str):
        with self._lock:
            resource = self.get(name)
            del self._resources[name]
            del self._models[name]
        resource.close()
        logger.info(f"Removed resource {name}")

    def close_all(self):
        for name in list(self._resources):
            self.remove(name)


def get_system_info() -> Dict:
    """Gets system information (CPU, memory, uptime)."""
    return {
        "cpu_percent": psutil.cpu_percent(),
        "memory_percent": psutil.virtual_memory().percent,
        "uptime": datetime.datetime.now().timestamp() - psutil.boot_time(),
    }


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def encode_named_images(cam: Camera, mime_type: str):
    named, meta = cam.images()
    encoded = []
    for item in named:
        data, actual = encode_image(item.image, mime_type)
        encoded.append((item.source_name, actual, data))
    return encoded, meta


def register_socket_handlers(sio: socketio.AsyncServer, host: ResourceHost, settings: Settings):
    @sio.event
    async def connect(sid, environ):
        logger.info(f"Client connected: {sid}")

    @sio.event
    async def disconnect(sid):
        logger.info(f"Client disconnected: {sid}")

    async def handle_capture(sid, data):
        logger.info(f"Received capture request from {sid}")
        if isinstance(data, dict):
            name = data.get('name', settings.resource_name)
            mime_type = data.get('mime_type', DEFAULT_MIME_TYPE)
        else:
            name = settings.resource_name
            mime_type = DEFAULT_MIME_TYPE

        try:
            encoded, meta = await run_in_threadpool(encode_named_images, host.get(name), mime_type)
        except Exception as e:
            logger.error(f"Capture failed: {e}")
            await sio.emit('capture_error', {'error': str(e)}, room=sid)
            return

        for source_name, actual, payload in encoded:
            await send_image(sio, sid, source_name, actual, payload, settings.node_id)
        await sio.emit('capture_complete', {
            'captured_at': meta.captured_at.isoformat(),
            'count': len(encoded),
        }, room=sid)

    sio.on('capture', handle_capture)
    return handle_capture


async def send_image(sio: socketio.AsyncServer, sid, source_name: str, mime_type: str, payload: bytes, node_id: str):
    """Send one encoded image in chunks."""
    metadata = {
        "source_name": source_name,
        "mime_type": mime_type,
        "node_id": node_id,
        "size": len(payload),
        "chunk_size": CHUNK_SIZE,
    }
    await sio.emit('image_metadata', metadata, room=sid)
    for offset in range(0, len(payload), CHUNK_SIZE):
        await sio.emit('image_chunk', payload[offset:offset + CHUNK_SIZE], room=sid)
    await sio.emit('image_complete', {"source_name": source_name}, room=sid)
    logger.info(f"Sent image {source_name} to client: {sid}")


def create_app(host: ResourceHost, settings: Settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        host.close_all()

    app = FastAPI(title="Timestamp Source Names Camera", lifespan=lifespan)
    app.state.host = host
    app.state.settings = settings
    app.state.sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins='*')
    register_socket_handlers(app.state.sio, host, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(Unimplemented, _error_handler(501))
    app.add_exception_handler(EncodingError, _error_handler(400))
    app.add_exception_handler(InvalidConfiguration, _error_handler(400))
    app.add_exception_handler(Closed, _error_handler(503))
    app.add_exception_handler(ResourceNotFound, _error_handler(404))

    @app.get("/status")
    async def status():
        """Returns the current status of the node and its cameras."""
        return {
            "status": "online",
            "node_id": settings.node_id,
            "resources": {name: str(host.model_of(name)) for name in host.names()},
            "system": get_system_info(),
            "timestamp": datetime.datetime.now().isoformat(),
        }

    @app.get("/logs")
    async def get_logs(lines: int = 100):
        """Retrieves the last 'lines' lines from the log file."""
        log_file = log_file_path(settings.log_dir)
        try:
            if os.path.exists(log_file):
                with open(log_file, 'r') as f:
                    return {"logs": f.readlines()[-lines:]}
            return {"logs": []}
        except OSError as e:
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/cameras/{name}/properties")
    async def properties(name: str) -> Properties:
        return host.get(name).properties()

    @app.get("/cameras/{name}/image")
    def image(name: str, mime_type: str = DEFAULT_MIME_TYPE):
        data, meta = host.get(name).image(mime_type)
        return Response(content=data, media_type=meta.mime_type)

    @app.get("/cameras/{name}/images")
    def images(name: str, mime_type: str = DEFAULT_MIME_TYPE) -> ImagesResponse:
        encoded, meta = encode_named_images(host.get(name), mime_type)
        return ImagesResponse(
            images=[
                EncodedImage(source_name=source_name, mime_type=actual, data=base64.b64encode(payload).decode("ascii"))
                for source_name, actual, payload in encoded
            ],
            captured_at=meta.captured_at,
        )

    @app.put("/cameras/{name}/config")
    async def reconfigure(name: str, attributes: Dict[str, Any] = Body(...)):
        host.reconfigure(name, attributes)
        return {"name": name, "attributes": attributes}

    @app.get("/cameras/{name}/stream")
    async def stream(name: str):
        return host.get(name).stream()

    @app.get("/cameras/{name}/point_cloud")
    async def point_cloud(name: str):
        return host.get(name).next_point_cloud()

    @app.get("/cameras/{name}/geometries")
    async def geometries(name: str):
        return host.get(name).geometries()

    @app.post("/cameras/{name}/do_command")
    async def do_command(name: str, command: Dict[str, Any] = Body(...)):
        return host.get(name).do_command(command)

    @app.post("/cameras/{name}/rtp")
    async def subscribe_rtp(name: str, buffer_size: int = 512):
        return host.get(name).subscribe_rtp(buffer_size, None)

    @app.delete("/cameras/{name}/rtp/{subscription_id}")
    async def unsubscribe(name: str, subscription_id: str):
        return host.get(name).unsubscribe(subscription_id)

    return app


def build_host(settings: Settings) -> ResourceHost:
    registry = Registry()
    camera.register(registry)
    host = ResourceHost(registry)
    host.add(settings.resource_name, camera.TIMESTAMP_SOURCE_NAMES, {"n_images": settings.n_images})
    return host


def main():
    settings = load_settings()
    setup_logging(settings.log_dir)
    logger.info(f"Starting timestamp camera node {settings.node_id}")
    host = build_host(settings)
    app = create_app(host, settings)
    socket_app = socketio.ASGIApp(app.state.sio, app)
    uvicorn.run(socket_app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
