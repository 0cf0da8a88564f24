"""
HTTP client for a running dockman gateway.

GatewayClient wraps httpx with one accessor per gateway endpoint and turns
HTTP failures into DockmanError so callers handle a single error family.
EventFeed reads the chunked /api/system/events stream on a worker thread and
exposes the on_open/on_message/on_close interface the EventDispatcher
expects.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx

from .errors import DockmanError, NotFound

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://127.0.0.1:8080"


class GatewayClient:
    def __init__(self, base_url: str = DEFAULT_URL, timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self.http.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self.http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = e.response.text.strip() or str(e)
            if e.response.status_code == 404:
                raise NotFound(message) from e
            raise DockmanError(message) from e
        except httpx.RequestError as e:
            raise DockmanError(f"Gateway unreachable at {self.base_url}: {e}") from e
        return response

    def _get_json(self, path: str, **params) -> Any:
        return self._request("GET", path, params=params or None).json()

    # --- Docker ---

    def health(self) -> Dict[str, str]:
        return self._get_json("/health")

    def info(self) -> Dict[str, Any]:
        return self._get_json("/api/info")

    def containers(self) -> List[Dict[str, Any]]:
        return self._get_json("/api/containers")

    def container(self, container_id: str) -> Dict[str, Any]:
        return self._get_json(f"/api/containers/{container_id}")

    def container_action(self, container_id: str, action: str) -> Dict[str, str]:
        return self._request("POST", f"/api/containers/{container_id}/{action}").json()

    def container_logs(self, container_id: str, tail: Any = 100) -> str:
        return self._request("GET", f"/api/containers/{container_id}/logs", params={"tail": str(tail)}).text

    def images(self) -> List[Dict[str, Any]]:
        return self._get_json("/api/images")

    def networks(self) -> List[Dict[str, Any]]:
        return self._get_json("/api/networks")

    def volumes(self) -> List[Dict[str, Any]]:
        return self._get_json("/api/volumes").get("Volumes") or []

    def system_stats(self) -> Dict[str, Any]:
        return self._get_json("/api/system/stats")

    def host_info(self) -> Dict[str, Any]:
        return self._get_json("/api/system/host")

    # --- systemd ---

    def services(self) -> List[Dict[str, Any]]:
        return self._get_json("/api/services")

    def service(self, name: str) -> Dict[str, Any]:
        return self._get_json(f"/api/services/{name}")

    def service_action(self, name: str, action: str) -> Dict[str, str]:
        return self._request("POST", f"/api/services/{name}/{action}").json()

    def service_logs(self, name: str, lines: Optional[int] = None, follow: bool = False) -> str:
        params: Dict[str, Any] = {"follow": "true" if follow else "false"}
        if lines is not None:
            params["lines"] = lines
        return self._request("GET", f"/api/services/{name}/logs", params=params).text

    # --- events ---

    def stream_events(self, since: Optional[str] = None, until: Optional[str] = None,
                      on_response: Optional[Callable[[httpx.Response], None]] = None) -> Iterator[Dict[str, Any]]:
        """
        Iterate the chunked event feed until the server ends it.

        on_response is called once the server has accepted the request,
        before the first event; closing that response ends the iteration.
        """
        params = {k: v for k, v in (("since", since), ("until", until)) if v is not None}
        try:
            with self.http.stream("GET", "/api/system/events", params=params or None, timeout=None) as response:
                response.raise_for_status()
                if on_response is not None:
                    on_response(response)
                for line in response.iter_lines():
                    if line.strip():
                        yield json.loads(line)
        except httpx.HTTPStatusError as e:
            raise DockmanError(f"Event feed rejected: HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise DockmanError(f"Event feed failed: {e}") from e


class EventFeed:
    """
    One event connection for the EventDispatcher.

    Callbacks are handed to `post` so a UI can marshal them onto its own
    thread. Handlers are looked up when the posted call runs, so detaching
    them before close() drops anything still in flight.
    """

    def __init__(self, client: GatewayClient, post: Optional[Callable[..., Any]] = None):
        self.client = client
        self.post = post or (lambda fn, *args: fn(*args))
        self.on_open: Optional[Callable[[], None]] = None
        self.on_message: Optional[Callable[[Any], None]] = None
        self.on_close: Optional[Callable[[], None]] = None
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._response: Optional[httpx.Response] = None
        self._thread = threading.Thread(target=self._run, name="dockman-event-feed", daemon=True)

    def start(self) -> "EventFeed":
        self._thread.start()
        return self

    def close(self) -> None:
        with self._lock:
            self._closed.set()
            response = self._response
        if response is not None:
            response.close()

    def _attach(self, response: httpx.Response) -> None:
        with self._lock:
            self._response = response
            closed = self._closed.is_set()
        if closed:
            # close() ran before the server answered
            response.close()
            return
        self._emit("on_open")

    def _emit(self, name: str, *args) -> None:
        def call() -> None:
            handler = getattr(self, name)
            if handler is not None:
                handler(*args)
        self.post(call)

    def _run(self) -> None:
        events = self.client.stream_events(on_response=self._attach)
        try:
            for event in events:
                if self._closed.is_set():
                    break
                self._emit("on_message", event)
        except Exception as e:
            # closing the response from another thread surfaces here as a read error
            if not self._closed.is_set():
                logger.warning(f"Event feed ended with error: {e}")
        finally:
            events.close()
            if not self._closed.is_set():
                self._emit("on_close")
