"""
Data models for the snapshots dockman serves.

Every record here is a point-in-time copy built fresh for a single request;
nothing is cached or mutated after it has been handed to the gateway.

Data Classes:
  - SystemStats: aggregate container/image/network/volume counts
  - HostInfo: /proc derived uptime, load, memory and connection counts
  - ServiceInfo: one systemd unit as listed by systemctl
  - ServiceDetail: ServiceInfo plus status text, recent logs, properties
  - ContainerDetail: raw inspect JSON plus optional one-shot stats
  - DockerEvent: read-only view over a raw daemon event

Docker's own JSON (container lists, images, networks, volumes) is passed
through untouched as plain dicts and has no model here.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any


@dataclass
class ContainerCounts:
    running: int = 0
    paused: int = 0
    stopped: int = 0
    total: int = 0


@dataclass
class ImageTotals:
    total: int = 0
    size: int = 0


@dataclass
class NetworkTotals:
    total: int = 0


@dataclass
class VolumeTotals:
    total: int = 0


@dataclass
class SystemStats:
    containers: ContainerCounts = field(default_factory=ContainerCounts)
    images: ImageTotals = field(default_factory=ImageTotals)
    networks: NetworkTotals = field(default_factory=NetworkTotals)
    volumes: VolumeTotals = field(default_factory=VolumeTotals)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HostInfo:
    uptime: str = ""
    uptime_seconds: int = 0
    load_avg_1: float = 0.0
    load_avg_5: float = 0.0
    load_avg_15: float = 0.0
    memory_total: int = 0
    memory_used: int = 0
    memory_available: int = 0
    memory_used_percent: float = 0.0
    network_connections: int = 0
    cpu_cores: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ServiceInfo:
    name: str
    unit: str = ""
    load_state: str = ""
    active_state: str = ""
    sub_state: str = ""
    description: str = ""
    type: str = ""
    main_pid: str = ""
    memory: str = ""
    tasks: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ServiceDetail:
    service: ServiceInfo
    status: str = ""
    logs: List[str] = field(default_factory=list)
    properties: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'service': self.service.to_dict(),
            'status': self.status,
            'logs': list(self.logs),
            'properties': dict(self.properties),
        }


@dataclass
class ContainerDetail:
    container: Dict[str, Any]
    stats: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'container': self.container}
        if self.stats is not None:
            data['stats'] = self.stats
        return data


@dataclass(frozen=True)
class DockerEvent:
    """Minimal view of a daemon event; the raw dict is kept for display."""
    type: str
    action: str
    actor_id: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    time: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DockerEvent":
        actor = data.get('Actor') or {}
        return cls(
            type=data.get('Type') or "",
            action=data.get('Action') or "",
            actor_id=actor.get('ID') or "",
            attributes=dict(actor.get('Attributes') or {}),
            time=int(data.get('time') or 0),
            raw=data,
        )

    def describe(self) -> str:
        """Short human label: actor name, else image, else short id."""
        if self.attributes.get('name'):
            return f"Name: {self.attributes['name']}"
        if self.attributes.get('image'):
            return f"Image: {self.attributes['image']}"
        return self.actor_id[:12]
