import subprocess

import pytest
from unittest.mock import MagicMock

from dockman.errors import NotFound, ServiceCommandError
from dockman.systemd import (
    ServiceManager, parse_list_units, parse_show, parse_status, sort_services, validate_name,
)

LIST_UNITS = """\
  ssh.service            loaded active   running OpenBSD Secure Shell server
● broken.service         loaded failed   failed  Broken thing
  cron.service           loaded active   running Regular background program processing daemon
  apt-daily.service      loaded inactive dead    Daily apt download activities
  short line
"""

STATUS = """\
● ssh.service - OpenBSD Secure Shell server
     Loaded: loaded (/lib/systemd/system/ssh.service; enabled; vendor preset: enabled)
     Active: active (running) since Mon 2024-01-01 10:00:00 UTC; 1 day ago
   Main PID: 812 (sshd)
      Tasks: 1 (limit: 4567)
"""


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeRunner:
    """Maps the systemctl/journalctl subcommand to a canned result."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        key = cmd[1] if cmd[0] == "systemctl" else "journal"
        result = self.results.get(key, completed())
        if isinstance(result, Exception):
            raise result
        return result


def test_parse_list_units_skips_short_lines_and_marker():
    services = parse_list_units(LIST_UNITS)

    assert [s.name for s in services] == ["ssh", "broken", "cron", "apt-daily"]
    broken = services[1]
    assert broken.unit == "broken.service"
    assert (broken.load_state, broken.active_state, broken.sub_state) == ("loaded", "failed", "failed")
    assert services[0].description == "OpenBSD Secure Shell server"


def test_sort_running_first_then_sub_state_then_name():
    services = parse_list_units(
        "b.service loaded active running B\n"
        "c.service loaded inactive dead C\n"
        "a.service loaded active running A\n"
    )

    assert [s.name for s in sort_services(services)] == ["a", "b", "c"]


def test_sort_groups_non_running_by_sub_state():
    services = parse_list_units(
        "z.service loaded failed failed Z\n"
        "y.service loaded inactive dead Y\n"
        "x.service loaded active running X\n"
        "w.service loaded active exited W\n"
    )

    assert [s.name for s in sort_services(services)] == ["x", "y", "w", "z"]


def test_parse_show():
    props = parse_show("Id=ssh.service\nDescription=OpenBSD Secure Shell server\nExecStart={ path=/usr/sbin/sshd }\nnoise\n")

    assert props["Id"] == "ssh.service"
    assert props["ExecStart"] == "{ path=/usr/sbin/sshd }"
    assert "noise" not in props


def test_parse_status():
    service = parse_status("ssh", STATUS)

    assert service.load_state == "loaded"
    assert service.active_state == "active"
    assert service.sub_state == "running"
    assert service.main_pid == "812"


@pytest.mark.parametrize("name", ["", "-evil", "foo;rm -rf /", "a b", "../etc"])
def test_validate_name_rejects(name):
    with pytest.raises(NotFound):
        validate_name(name)


@pytest.mark.parametrize("name", ["ssh", "getty@tty1.service", "systemd-journald", "dbus-org.freedesktop.login1"])
def test_validate_name_accepts(name):
    assert validate_name(name) == name


def test_list_services_sorted():
    runner = FakeRunner({"list-units": completed(LIST_UNITS)})

    services = ServiceManager(runner=runner).list_services()

    assert [s.name for s in services] == ["cron", "ssh", "apt-daily", "broken"]
    assert runner.calls[0][:2] == ["systemctl", "list-units"]


def test_list_services_failure_raises():
    runner = FakeRunner({"list-units": completed(returncode=1, stderr="Failed to connect to bus")})

    with pytest.raises(ServiceCommandError, match="Failed to connect to bus"):
        ServiceManager(runner=runner).list_services()


def test_missing_binary_raises_service_error():
    runner = FakeRunner({"list-units": FileNotFoundError("systemctl")})

    with pytest.raises(ServiceCommandError, match="Failed to execute systemctl"):
        ServiceManager(runner=runner).list_services()


def test_service_detail_combines_status_properties_and_logs():
    runner = FakeRunner({
        "status": completed(STATUS),
        "show": completed("Id=ssh.service\nDescription=OpenBSD Secure Shell server\nType=notify\nMemoryCurrent=4096\nTasksCurrent=1\nMainPID=812\n"),
        "journal": completed("Jan 01 sshd[812]: started\n\nJan 01 sshd[812]: accepted\n"),
    })

    detail = ServiceManager(runner=runner).get_service_detail("ssh")

    assert detail.service.unit == "ssh.service"
    assert detail.service.type == "notify"
    assert detail.service.memory == "4096"
    assert detail.service.main_pid == "812"
    assert detail.logs == ["Jan 01 sshd[812]: started", "Jan 01 sshd[812]: accepted"]
    assert detail.to_dict()["properties"]["Type"] == "notify"
    journal_cmd = runner.calls[-1]
    assert journal_cmd[:3] == ["journalctl", "-u", "ssh"]
    assert "50" in journal_cmd


def test_service_detail_inactive_unit_still_reported():
    status = STATUS.replace("active (running)", "inactive (dead)")
    runner = FakeRunner({"status": completed(status, returncode=3)})

    detail = ServiceManager(runner=runner).get_service_detail("ssh")

    assert detail.service.active_state == "inactive"
    assert detail.service.sub_state == "dead"


def test_service_detail_unknown_unit():
    runner = FakeRunner({"status": completed(returncode=4, stderr="Unit nope.service could not be found.")})

    with pytest.raises(NotFound):
        ServiceManager(runner=runner).get_service_detail("nope")


def test_control_runs_systemctl_action():
    runner = MagicMock(return_value=completed())

    ServiceManager(runner=runner).control("ssh", "restart")

    runner.assert_called_once_with(["systemctl", "restart", "ssh"], check=False, capture_output=True, text=True)


def test_control_failure_carries_stderr():
    runner = MagicMock(return_value=completed(returncode=1, stderr="Access denied"))

    with pytest.raises(ServiceCommandError) as excinfo:
        ServiceManager(runner=runner).control("ssh", "stop")

    assert "Access denied" in str(excinfo.value)
    assert excinfo.value.returncode == 1


def test_control_rejects_unknown_action():
    runner = MagicMock()

    with pytest.raises(ValueError):
        ServiceManager(runner=runner).control("ssh", "mask")
    runner.assert_not_called()


def test_get_logs_builds_journal_command():
    runner = MagicMock(return_value=completed("log output\n"))
    manager = ServiceManager(runner=runner)

    assert manager.get_logs("ssh") == "log output\n"
    assert runner.call_args[0][0] == ["journalctl", "-u", "ssh", "--no-pager", "-n", "100", "--output=short"]

    manager.get_logs("ssh", lines=20, follow=True)
    assert runner.call_args[0][0] == ["journalctl", "-u", "ssh", "--no-pager", "-n", "20", "-f", "--output=short"]
