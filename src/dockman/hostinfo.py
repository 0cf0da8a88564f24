"""
Host metrics from /proc.

Each read re-parses the pseudo-files from scratch; there is no delta
tracking. Reads are best-effort: a missing or malformed file leaves only
its own fields at zero and never fails the whole snapshot.

Files:
  - uptime: first token, seconds (float, truncated)
  - loadavg: 1/5/15 minute averages
  - meminfo: MemTotal and MemAvailable, kB
  - net/tcp: one line per socket, used as a rough connection count
"""

import os
import logging
from pathlib import Path
from typing import Callable, Optional

from .model import HostInfo

logger = logging.getLogger(__name__)


def format_uptime(seconds: int) -> str:
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60

    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class HostInfoReader:
    def __init__(self, proc_root: str = "/proc", cpu_count: Callable[[], Optional[int]] = os.cpu_count):
        self.proc_root = Path(proc_root)
        self.cpu_count = cpu_count

    def _read(self, name: str) -> Optional[str]:
        try:
            return (self.proc_root / name).read_text()
        except OSError as e:
            logger.debug(f"Cannot read {self.proc_root / name}: {e}")
            return None

    def read(self) -> HostInfo:
        info = HostInfo()
        self._read_uptime(info)
        self._read_loadavg(info)
        self._read_meminfo(info)
        self._read_connections(info)
        info.cpu_cores = self.cpu_count() or 0
        return info

    def _read_uptime(self, info: HostInfo) -> None:
        text = self._read("uptime")
        if not text:
            return
        parts = text.split()
        try:
            seconds = int(float(parts[0]))
        except (IndexError, ValueError):
            logger.debug(f"Malformed uptime: {text!r}")
            return
        info.uptime_seconds = seconds
        info.uptime = format_uptime(seconds)

    def _read_loadavg(self, info: HostInfo) -> None:
        text = self._read("loadavg")
        if not text:
            return
        parts = text.split()
        if len(parts) < 3:
            return
        for attr, raw in zip(("load_avg_1", "load_avg_5", "load_avg_15"), parts[:3]):
            try:
                setattr(info, attr, float(raw))
            except ValueError:
                logger.debug(f"Malformed load average: {raw!r}")

    def _read_meminfo(self, info: HostInfo) -> None:
        text = self._read("meminfo")
        if text is None:
            return
        for line in text.splitlines():
            fields = line.split()
            if len(fields) < 2:
                continue
            try:
                if line.startswith("MemTotal:"):
                    info.memory_total = int(fields[1]) * 1024
                elif line.startswith("MemAvailable:"):
                    info.memory_available = int(fields[1]) * 1024
            except ValueError:
                logger.debug(f"Malformed meminfo line: {line!r}")
        info.memory_used = info.memory_total - info.memory_available
        if info.memory_total > 0:
            info.memory_used_percent = info.memory_used / info.memory_total * 100

    def _read_connections(self, info: HostInfo) -> None:
        text = self._read("net/tcp")
        if text is None:
            return
        # header line plus the empty string after the trailing newline
        info.network_connections = max(len(text.split("\n")) - 2, 0)
