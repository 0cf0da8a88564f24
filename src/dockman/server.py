"""
HTTP/WebSocket gateway.

Routes browser requests to the Docker facade, the systemd shim and the host
metrics reader, and relays the Docker event feed. The gateway keeps no
state between requests: every response is built from a fresh call.

Endpoints:
  - GET  /api/info, /api/containers, /api/images, /api/networks, /api/volumes
  - GET  /api/containers/{id}, POST /api/containers/{id}/{start|stop|restart}
  - GET  /api/containers/{id}/logs?tail=N            (text/plain)
  - GET  /api/system/stats, /api/system/host
  - GET  /api/system/events?since=&until=             (chunked JSON lines)
  - GET  /api/services, /api/services/{name}
  - POST /api/services/{name}/{start|stop|restart|enable|disable}
  - GET  /api/services/{name}/logs?lines=N&follow=bool (text/plain)
  - WS   /ws                                          (one event per frame)
  - GET  /, /static/*                                 (bundled UI)

Blocking docker-py and subprocess calls run on the default thread pool via
asyncio.to_thread so the event loop stays responsive. Any DockmanError
becomes HTTP 500 with the raw error text as the body.
"""

import json
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.responses import FileResponse, PlainTextResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from starlette.websockets import WebSocketState

from . import __version__
from .backend import DockerBackend
from .config import AppConfig
from .errors import DockmanError
from .events import EventRelay
from .hostinfo import HostInfoReader
from .systemd import ServiceManager, SERVICE_ACTIONS

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"

CONTAINER_ACTIONS = {
    "start": ("start_container", "started"),
    "stop": ("stop_container", "stopped"),
    "restart": ("restart_container", "restarted"),
}

SERVICE_MESSAGES = {
    "start": "Service started",
    "stop": "Service stopped",
    "restart": "Service restarted",
    "enable": "Service enabled",
    "disable": "Service disabled",
}

TRUE_VALUES = ("1", "t", "true")
FALSE_VALUES = ("0", "f", "false")


def parse_lines(value: Optional[str]) -> Optional[int]:
    """Journal line count from the query string; empty means the default."""
    if value in (None, ""):
        return None
    try:
        lines = int(value)
    except ValueError:
        raise ValueError(f"Invalid lines parameter: {value!r}") from None
    if lines < 0:
        raise ValueError(f"Invalid lines parameter: {value!r}")
    return lines


def parse_bool(value: Optional[str]) -> bool:
    if value in (None, ""):
        return False
    if value.lower() in TRUE_VALUES:
        return True
    if value.lower() in FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean parameter: {value!r}")


def create_app(backend: DockerBackend, services: ServiceManager,
               host_reader: Optional[HostInfoReader] = None,
               config: Optional[AppConfig] = None,
               static_dir: Path = STATIC_DIR) -> FastAPI:
    config = config or AppConfig()
    host_reader = host_reader or HostInfoReader()
    relay = EventRelay(backend)

    app = FastAPI(title="dockman", version=__version__)

    @app.exception_handler(DockmanError)
    async def dockman_error_handler(request: Request, exc: DockmanError) -> PlainTextResponse:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return PlainTextResponse(str(exc), status_code=500)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> PlainTextResponse:
        return PlainTextResponse(str(exc), status_code=400)

    @app.get("/health", tags=["system"])
    async def health() -> Dict[str, str]:
        return {"status": "ok", "version": __version__}

    # --- Docker ---

    @app.get("/api/info", tags=["docker"])
    async def get_docker_info() -> Any:
        return await asyncio.to_thread(backend.get_info)

    @app.get("/api/containers", tags=["containers"])
    async def get_containers() -> Any:
        return await asyncio.to_thread(backend.list_containers)

    @app.get("/api/containers/{container_id}", tags=["containers"])
    async def get_container_detail(container_id: str) -> Any:
        detail = await asyncio.to_thread(backend.get_container_detail, container_id)
        return detail.to_dict()

    @app.post("/api/containers/{container_id}/{action}", tags=["containers"])
    async def container_action(container_id: str, action: str) -> Dict[str, str]:
        if action not in CONTAINER_ACTIONS:
            raise HTTPException(status_code=404, detail=f"Unknown container action: {action}")
        method_name, status = CONTAINER_ACTIONS[action]
        await asyncio.to_thread(getattr(backend, method_name), container_id)
        return {"status": status}

    @app.get("/api/containers/{container_id}/logs", tags=["containers"])
    async def get_container_logs(container_id: str, tail: Optional[str] = None) -> Response:
        tail = tail or str(config.server.default_log_tail)
        logs = await asyncio.to_thread(backend.get_container_logs, container_id, tail)
        return Response(content=logs, media_type="text/plain")

    @app.get("/api/images", tags=["docker"])
    async def get_images() -> Any:
        return await asyncio.to_thread(backend.list_images)

    @app.get("/api/networks", tags=["docker"])
    async def get_networks() -> Any:
        return await asyncio.to_thread(backend.list_networks)

    @app.get("/api/volumes", tags=["docker"])
    async def get_volumes() -> Any:
        return await asyncio.to_thread(backend.list_volumes)

    @app.get("/api/system/stats", tags=["system"])
    async def get_system_stats() -> Any:
        stats = await asyncio.to_thread(backend.get_system_stats)
        return stats.to_dict()

    @app.get("/api/system/host", tags=["system"])
    async def get_host_system_info() -> Any:
        info = await asyncio.to_thread(host_reader.read)
        return info.to_dict()

    @app.get("/api/system/events", tags=["system"])
    async def get_system_events(since: Optional[str] = None, until: Optional[str] = None) -> StreamingResponse:
        async def lines():
            # client disconnects cancel this generator, which closes the subscription
            async for event in relay.subscribe(since=since, until=until):
                yield json.dumps(event) + "\n"

        return StreamingResponse(lines(), media_type="application/json")

    # --- systemd ---

    @app.get("/api/services", tags=["services"])
    async def get_services() -> Any:
        result = await asyncio.to_thread(services.list_services)
        return [s.to_dict() for s in result]

    @app.get("/api/services/{name}", tags=["services"])
    async def get_service_detail(name: str) -> Any:
        detail = await asyncio.to_thread(services.get_service_detail, name)
        return detail.to_dict()

    @app.post("/api/services/{name}/{action}", tags=["services"])
    async def service_action(name: str, action: str) -> Dict[str, str]:
        if action not in SERVICE_ACTIONS:
            raise HTTPException(status_code=404, detail=f"Unknown service action: {action}")
        await asyncio.to_thread(services.control, name, action)
        return {"status": "success", "message": SERVICE_MESSAGES[action]}

    @app.get("/api/services/{name}/logs", tags=["services"])
    async def get_service_logs(name: str, lines: Optional[str] = None, follow: Optional[str] = None) -> PlainTextResponse:
        output = await asyncio.to_thread(services.get_logs, name, parse_lines(lines), parse_bool(follow))
        return PlainTextResponse(output)

    # --- WebSocket ---

    @app.websocket("/ws")
    async def events_websocket(websocket: WebSocket) -> None:
        await websocket.accept()
        client = websocket.client.host if websocket.client else "unknown"
        logger.info(f"WebSocket connected from {client}")
        cancel = asyncio.Event()

        async def watch_disconnect() -> None:
            # the feed is one-way; incoming frames are read only to notice the close
            try:
                while True:
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        break
            except Exception as e:
                logger.debug(f"WebSocket receive ended: {e}")
            finally:
                cancel.set()

        async def send(event: Dict[str, Any]) -> None:
            await websocket.send_text(json.dumps(event))

        watcher = asyncio.create_task(watch_disconnect())
        try:
            await relay.relay(send, cancel)
        except DockmanError as e:
            logger.error(f"Docker events error: {e}")
        finally:
            watcher.cancel()
            if websocket.client_state == WebSocketState.CONNECTED:
                try:
                    await websocket.close()
                except RuntimeError as e:
                    logger.debug(f"WebSocket already closed: {e}")
            logger.info(f"WebSocket from {client} closed")

    # --- UI ---

    @app.get("/", include_in_schema=False)
    async def serve_index() -> FileResponse:
        return FileResponse(static_dir / "index.html", media_type="text/html")

    app.mount("/static", StaticFiles(directory=static_dir), name="static")

    return app
