"""
Docker Engine facade.

This module provides a thin pass-through layer over docker-py's low-level
API client. Responses keep Docker's own JSON shapes so the browser UI can
render them as-is. Provided operations:
  - Listing and inspecting containers, images, networks, volumes
  - Container lifecycle actions (start, stop, restart) with a fixed grace period
  - Container log retrieval
  - Aggregate stats for the dashboard
  - Daemon event subscriptions

Key Classes:
  - DockerBackend: wraps an injected docker.DockerClient

Error Handling:
  Unlike a UI that must never crash, an API has to tell the caller what
  went wrong, so nothing here swallows errors. docker-py exceptions are
  translated by @docker_errors into the dockman taxonomy:
  - docker.errors.NotFound -> NotFound
  - APIError 304/409 (already started, conflicting state) -> InvalidState
  - socket/connection failures -> DaemonUnreachable
  - anything else from docker-py -> DockmanError

Dependencies:
  - docker>=7.0.0 (docker-py client)
"""

import docker
import logging
import functools
from typing import Dict, List, Any, Callable, Iterator, Optional

from .errors import DockmanError, DaemonUnreachable, NotFound, InvalidState
from .model import ContainerDetail, SystemStats
from .stats import StatsCollector

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 10


def docker_errors(func: Callable) -> Callable:
    """
    Decorator for Docker API methods translating docker-py exceptions.

    Logs the failure with the operation name and re-raises it as a
    DockmanError subclass so the gateway can report the raw message.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except docker.errors.NotFound as e:
            logger.warning(f"Docker object not found in {func.__name__}: {e}")
            raise NotFound(_explain(e)) from e
        except docker.errors.APIError as e:
            logger.error(f"Docker API error in {func.__name__}: {e}")
            if e.status_code in (304, 409):
                raise InvalidState(_explain(e)) from e
            raise DockmanError(_explain(e)) from e
        except docker.errors.DockerException as e:
            logger.error(f"Docker operation failed in {func.__name__}: {e}")
            raise DockmanError(str(e)) from e
        except OSError as e:
            # requests.ConnectionError is an OSError subclass
            logger.error(f"Docker daemon unreachable in {func.__name__}: {e}")
            raise DaemonUnreachable(str(e)) from e
    return wrapper


def _explain(error: "docker.errors.APIError") -> str:
    return str(error.explanation or error)


def _int_or_none(value: Optional[str]) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-integer event bound: {value!r}")
        return None


class DockerBackend:
    def __init__(self, client: docker.DockerClient):
        self.client = client
        self.stats_collector = StatsCollector()

    @classmethod
    def connect(cls, base_url: Optional[str] = None) -> "DockerBackend":
        """
        Build a backend from the environment (or an explicit base_url) and
        verify the daemon answers. Raises DaemonUnreachable otherwise.
        """
        try:
            if base_url:
                client = docker.DockerClient(base_url=base_url)
            else:
                client = docker.from_env()
            client.ping()
        except (docker.errors.DockerException, OSError) as e:
            raise DaemonUnreachable(f"Failed to create Docker client: {e}") from e
        logger.info("Connected to Docker daemon")
        return cls(client)

    @property
    def api(self):
        return self.client.api

    def close(self) -> None:
        self.client.close()

    # --- Listing ---

    @docker_errors
    def get_info(self) -> Dict[str, Any]:
        return {
            'system_info': self.api.info(),
            'version': self.api.version(),
            'containers': self.api.containers(all=True),
            'images': self.api.images(all=True),
            'networks': self.api.networks(),
            'volumes': self.api.volumes(),
            'disk_usage': self.api.df(),
        }

    @docker_errors
    def list_containers(self) -> List[Dict[str, Any]]:
        return self.api.containers(all=True)

    @docker_errors
    def list_images(self) -> List[Dict[str, Any]]:
        return self.api.images(all=True)

    @docker_errors
    def list_networks(self) -> List[Dict[str, Any]]:
        return self.api.networks()

    @docker_errors
    def list_volumes(self) -> Dict[str, Any]:
        return self.api.volumes()

    @docker_errors
    def get_system_stats(self) -> SystemStats:
        containers = self.api.containers(all=True)
        images = self.api.images(all=True)
        networks = self.api.networks()
        volumes = self.api.volumes() or {}
        return self.stats_collector.collect(
            containers, images, networks, volumes.get('Volumes') or []
        )

    # --- Containers ---

    @docker_errors
    def get_container_detail(self, container_id: str) -> ContainerDetail:
        container = self.api.inspect_container(container_id)
        detail = ContainerDetail(container=container)
        if (container.get('State') or {}).get('Running'):
            try:
                detail.stats = self.api.stats(container_id, stream=False)
            except docker.errors.DockerException as e:
                logger.warning(f"Stats unavailable for {container_id}: {e}")
        return detail

    @docker_errors
    def get_container_logs(self, container_id: str, tail: str = "100") -> bytes:
        tail_value: Any = tail
        if str(tail).isdigit():
            tail_value = int(tail)
        return self.api.logs(
            container_id, stdout=True, stderr=True, timestamps=True, tail=tail_value
        )

    # Actions
    @docker_errors
    def start_container(self, container_id: str) -> None:
        self.api.start(container_id)
        logger.info(f"Started container {container_id}")

    @docker_errors
    def stop_container(self, container_id: str) -> None:
        self.api.stop(container_id, timeout=STOP_TIMEOUT)
        logger.info(f"Stopped container {container_id}")

    @docker_errors
    def restart_container(self, container_id: str) -> None:
        self.api.restart(container_id, timeout=STOP_TIMEOUT)
        logger.info(f"Restarted container {container_id}")

    # --- Events ---

    @docker_errors
    def events(self, since: Optional[str] = None, until: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """
        Open a daemon event subscription.

        Returns docker-py's CancellableStream of decoded event dicts; call
        close() on it to end the subscription and unblock readers.
        """
        return self.api.events(
            since=_int_or_none(since), until=_int_or_none(until), decode=True
        )
