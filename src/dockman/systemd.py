"""
systemd service control via systemctl and journalctl.

The tools are run as subprocesses and their line-oriented output is parsed
into ServiceInfo/ServiceDetail records. Parsing is kept in module-level
functions so it can be tested (and replaced) independently of process
execution.

Formats handled:
  - `systemctl list-units` columns: UNIT LOAD ACTIVE SUB DESCRIPTION...
  - `systemctl show` KEY=VALUE lines
  - `systemctl status` header lines (Loaded:, Active:, Main PID:)

A list-units line is accepted only with at least four fields; everything
after the fourth is rejoined as the description. The parse follows the
current systemctl column layout and will need revisiting if that changes.
"""

import re
import logging
import subprocess
from typing import Callable, Dict, List, Optional

from .errors import NotFound, ServiceCommandError
from .model import ServiceInfo, ServiceDetail

logger = logging.getLogger(__name__)

SERVICE_ACTIONS = ("start", "stop", "restart", "enable", "disable")

# systemctl prefixes failed units with a status glyph
_UNIT_MARKERS = "●*"

_VALID_NAME = re.compile(r"^[A-Za-z0-9@._:-]+$")

# `systemctl status` exits 3 for inactive units but still prints the status
_STATUS_OK_CODES = (0, 1, 2, 3)
_STATUS_NO_UNIT = 4


def parse_list_units(text: str) -> List[ServiceInfo]:
    services = []
    for raw in text.splitlines():
        line = raw.strip().lstrip(_UNIT_MARKERS).strip()
        if not line:
            continue
        fields = line.split()
        if len(fields) < 4:
            logger.debug(f"Skipping unparseable unit line: {raw!r}")
            continue
        unit = fields[0]
        services.append(ServiceInfo(
            name=unit.removesuffix(".service"),
            unit=unit,
            load_state=fields[1],
            active_state=fields[2],
            sub_state=fields[3],
            description=" ".join(fields[4:]),
        ))
    return services


def sort_services(services: List[ServiceInfo]) -> List[ServiceInfo]:
    """Running units first, then by sub-state, then by name."""
    return sorted(services, key=lambda s: (s.sub_state != "running", s.sub_state, s.name))


def parse_show(text: str) -> Dict[str, str]:
    properties = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            properties[key] = value
    return properties


def parse_status(name: str, text: str) -> ServiceInfo:
    service = ServiceInfo(name=name)
    for raw in text.splitlines():
        line = raw.strip()
        if "Loaded:" in line:
            load_part = line.split(";")[0].split("Loaded:", 1)[1].split()
            if load_part:
                service.load_state = load_part[0]
        elif "Active:" in line:
            active_fields = line.split("Active:", 1)[1].split()
            if len(active_fields) >= 2:
                service.active_state = active_fields[0]
                service.sub_state = active_fields[1].strip("()")
        elif "Main PID:" in line:
            parts = line.split()
            for i, part in enumerate(parts):
                if part == "PID:" and i + 1 < len(parts):
                    service.main_pid = parts[i + 1]
                    break
    return service


def validate_name(name: str) -> str:
    if not name or name.startswith("-") or not _VALID_NAME.match(name):
        raise NotFound(f"Invalid service name: {name!r}")
    return name


class ServiceManager:
    def __init__(self, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
                 detail_log_lines: int = 50, default_log_lines: int = 100,
                 systemctl: str = "systemctl", journalctl: str = "journalctl"):
        self.runner = runner
        self.detail_log_lines = detail_log_lines
        self.default_log_lines = default_log_lines
        self.systemctl = systemctl
        self.journalctl = journalctl

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            return self.runner(cmd, check=False, capture_output=True, text=True)
        except OSError as e:
            logger.error(f"Failed to execute {cmd[0]}: {e}")
            raise ServiceCommandError(f"Failed to execute {cmd[0]}: {e}") from e

    def _check(self, cmd: List[str], what: str) -> str:
        result = self._run(cmd)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            message = f"Failed to {what}: {stderr or f'exit status {result.returncode}'}"
            logger.error(message)
            raise ServiceCommandError(message, result.returncode, stderr)
        return result.stdout or ""

    def list_services(self) -> List[ServiceInfo]:
        output = self._check(
            [self.systemctl, "list-units", "--type=service", "--all", "--no-pager", "--no-legend"],
            "get services",
        )
        return sort_services(parse_list_units(output))

    def get_service_detail(self, name: str) -> ServiceDetail:
        validate_name(name)
        status = self._run([self.systemctl, "status", name, "--no-pager", "--lines=0"])
        if status.returncode == _STATUS_NO_UNIT:
            raise NotFound(f"Unit {name} could not be found.")
        if status.returncode not in _STATUS_OK_CODES:
            stderr = (status.stderr or "").strip()
            raise ServiceCommandError(f"Failed to get service detail: {stderr}", status.returncode, stderr)
        status_text = status.stdout or ""
        service = parse_status(name, status_text)

        properties: Dict[str, str] = {}
        try:
            properties = parse_show(self._check([self.systemctl, "show", name, "--no-pager"], "show service"))
        except ServiceCommandError:
            logger.warning(f"No properties available for {name}")

        service.unit = properties.get("Id", service.unit)
        service.description = properties.get("Description", service.description)
        service.type = properties.get("Type", service.type)
        service.memory = properties.get("MemoryCurrent", service.memory)
        service.tasks = properties.get("TasksCurrent", service.tasks)
        if not service.main_pid and properties.get("MainPID", "0") != "0":
            service.main_pid = properties["MainPID"]

        logs: List[str] = []
        try:
            journal = self._check(self._journal_cmd(name, self.detail_log_lines), "get service logs")
            logs = [line for line in journal.split("\n") if line.strip()]
        except ServiceCommandError:
            logger.warning(f"No journal available for {name}")

        return ServiceDetail(service=service, status=status_text, logs=logs, properties=properties)

    def control(self, name: str, action: str) -> None:
        if action not in SERVICE_ACTIONS:
            raise ValueError(f"Unsupported service action: {action}")
        validate_name(name)
        self._check([self.systemctl, action, name], f"{action} service")
        logger.info(f"systemctl {action} {name} succeeded")

    def get_logs(self, name: str, lines: Optional[int] = None, follow: bool = False) -> str:
        """
        Return the journal tail for a unit.

        follow is handed to journalctl as -f; output is still collected only
        once the process exits.
        """
        validate_name(name)
        count = self.default_log_lines if lines is None else lines
        return self._check(self._journal_cmd(name, count, follow), "get service logs")

    def _journal_cmd(self, name: str, lines: int, follow: bool = False) -> List[str]:
        cmd = [self.journalctl, "-u", name, "--no-pager", "-n", str(lines)]
        if follow:
            cmd.append("-f")
        cmd.append("--output=short")
        return cmd
