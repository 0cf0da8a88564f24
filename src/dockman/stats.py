"""
Statistics aggregation for the dashboard.

Turns the four raw Docker lists (containers, images, networks, volumes) into
a SystemStats snapshot. Pure functions over already-fetched data; the
lists are fetched independently by the backend, so the totals are not a
transactional snapshot of a single instant.

Architecture:
- StatsCollector: aggregation entry point
- _analyze_* helpers: one per resource kind
- cpu_percent / memory_usage / network_bytes: per-container figures from a
  one-shot stats sample (container detail)
"""

from collections import defaultdict
from typing import Dict, List, Any, Tuple
import logging

from .model import SystemStats, ContainerCounts, ImageTotals, NetworkTotals, VolumeTotals

logger = logging.getLogger(__name__)


class StatsCollector:
    """Aggregates raw Docker resource lists into dashboard counts."""

    def collect(self, containers: List[Dict[str, Any]], images: List[Dict[str, Any]],
                networks: List[Dict[str, Any]], volumes: List[Dict[str, Any]]) -> SystemStats:
        stats = SystemStats(
            containers=self._analyze_containers(containers),
            images=self._analyze_images(images),
            networks=NetworkTotals(total=len(networks or [])),
            volumes=VolumeTotals(total=len(volumes or [])),
        )
        logger.debug(f"Collected stats: {stats}")
        return stats

    def _analyze_containers(self, containers) -> ContainerCounts:
        """Partition containers by reported state; anything unknown is stopped."""
        counts = defaultdict(int)
        for container in containers or []:
            state = container.get('State')
            if state == 'running':
                counts['running'] += 1
            elif state == 'paused':
                counts['paused'] += 1
            else:
                counts['stopped'] += 1
        return ContainerCounts(
            running=counts['running'],
            paused=counts['paused'],
            stopped=counts['stopped'],
            total=len(containers or []),
        )

    def _analyze_images(self, images) -> ImageTotals:
        total_size = 0
        for image in images or []:
            total_size += image.get('Size') or 0
        return ImageTotals(total=len(images or []), size=total_size)


def cpu_percent(stats: Dict[str, Any]) -> float:
    """CPU usage from a one-shot stats sample, scaled by online CPUs."""
    cpu_stats = stats.get('cpu_stats') or {}
    precpu_stats = stats.get('precpu_stats') or {}
    cpu_usage = (cpu_stats.get('cpu_usage') or {}).get('total_usage', 0)
    precpu_usage = (precpu_stats.get('cpu_usage') or {}).get('total_usage', 0)
    system_delta = cpu_stats.get('system_cpu_usage', 0) - precpu_stats.get('system_cpu_usage', 0)
    cpu_delta = cpu_usage - precpu_usage
    online_cpus = cpu_stats.get('online_cpus') or len((cpu_stats.get('cpu_usage') or {}).get('percpu_usage') or []) or 1
    if system_delta > 0 and cpu_delta > 0:
        return (cpu_delta / system_delta) * online_cpus * 100.0
    return 0.0


def memory_usage(stats: Dict[str, Any]) -> Tuple[int, int, float]:
    """(usage, limit, percent) in bytes from a stats sample."""
    memory = stats.get('memory_stats') or {}
    usage = memory.get('usage', 0) or 0
    limit = memory.get('limit', 0) or 0
    percent = usage / limit * 100.0 if limit > 0 else 0.0
    return usage, limit, percent


def network_bytes(stats: Dict[str, Any], key: str) -> int:
    return sum(net.get(key, 0) for net in (stats.get('networks') or {}).values())
