import docker
import pytest
from unittest.mock import MagicMock

from dockman.backend import DockerBackend
from dockman.errors import DockmanError, DaemonUnreachable, NotFound, InvalidState


@pytest.fixture
def mock_client():
    return MagicMock()


@pytest.fixture
def backend(mock_client):
    return DockerBackend(mock_client)


def test_list_calls_pass_docker_json_through(backend, mock_client):
    containers = [{"Id": "abc", "State": "running"}]
    mock_client.api.containers.return_value = containers

    assert backend.list_containers() is containers
    mock_client.api.containers.assert_called_once_with(all=True)


def test_get_info_bundles_all_sections(backend, mock_client):
    mock_client.api.info.return_value = {"NCPU": 4}
    mock_client.api.version.return_value = {"Version": "24.0"}
    mock_client.api.df.return_value = {"LayersSize": 1}

    info = backend.get_info()

    assert set(info) == {"system_info", "version", "containers", "images", "networks", "volumes", "disk_usage"}
    assert info["system_info"] == {"NCPU": 4}
    assert info["disk_usage"] == {"LayersSize": 1}


def test_system_stats_partition(backend, mock_client):
    mock_client.api.containers.return_value = [
        {"State": "running"}, {"State": "running"}, {"State": "paused"},
        {"State": "exited"}, {"State": "created"}, {"State": "dead"},
    ]
    mock_client.api.images.return_value = [{"Size": 100}, {"Size": 50}]
    mock_client.api.networks.return_value = [{}, {}, {}]
    mock_client.api.volumes.return_value = {"Volumes": [{"Name": "v"}], "Warnings": None}

    stats = backend.get_system_stats()

    c = stats.containers
    assert (c.running, c.paused, c.stopped, c.total) == (2, 1, 3, 6)
    assert c.running + c.paused + c.stopped == c.total
    assert stats.images.total == 2
    assert stats.images.size == 150
    assert stats.networks.total == 3
    assert stats.volumes.total == 1


def test_system_stats_with_no_volumes(backend, mock_client):
    mock_client.api.containers.return_value = []
    mock_client.api.images.return_value = []
    mock_client.api.networks.return_value = []
    mock_client.api.volumes.return_value = {"Volumes": None}

    stats = backend.get_system_stats()

    assert stats.volumes.total == 0
    assert stats.containers.total == 0


def test_stop_and_restart_use_grace_period(backend, mock_client):
    backend.stop_container("abc")
    backend.restart_container("abc")

    mock_client.api.stop.assert_called_once_with("abc", timeout=10)
    mock_client.api.restart.assert_called_once_with("abc", timeout=10)


def test_start_container(backend, mock_client):
    backend.start_container("abc")
    mock_client.api.start.assert_called_once_with("abc")


def test_container_detail_includes_stats_only_when_running(backend, mock_client):
    mock_client.api.inspect_container.return_value = {"Id": "abc", "State": {"Running": False}}
    detail = backend.get_container_detail("abc")
    assert detail.stats is None
    assert "stats" not in detail.to_dict()
    mock_client.api.stats.assert_not_called()

    mock_client.api.inspect_container.return_value = {"Id": "abc", "State": {"Running": True}}
    mock_client.api.stats.return_value = {"memory_stats": {"usage": 1}}
    detail = backend.get_container_detail("abc")
    assert detail.to_dict()["stats"] == {"memory_stats": {"usage": 1}}
    mock_client.api.stats.assert_called_once_with("abc", stream=False)


def test_container_detail_tolerates_stats_failure(backend, mock_client):
    mock_client.api.inspect_container.return_value = {"Id": "abc", "State": {"Running": True}}
    mock_client.api.stats.side_effect = docker.errors.APIError("stats broke")

    detail = backend.get_container_detail("abc")

    assert detail.container["Id"] == "abc"
    assert detail.stats is None


def test_container_logs_numeric_and_all_tail(backend, mock_client):
    mock_client.api.logs.return_value = b"line\n"

    assert backend.get_container_logs("abc", "25") == b"line\n"
    mock_client.api.logs.assert_called_with("abc", stdout=True, stderr=True, timestamps=True, tail=25)

    backend.get_container_logs("abc", "all")
    mock_client.api.logs.assert_called_with("abc", stdout=True, stderr=True, timestamps=True, tail="all")


def test_not_found_is_translated(backend, mock_client):
    mock_client.api.inspect_container.side_effect = docker.errors.NotFound("No such container: nope")

    with pytest.raises(NotFound, match="No such container"):
        backend.get_container_detail("nope")


def test_conflict_is_invalid_state(backend, mock_client):
    response = MagicMock(status_code=409)
    mock_client.api.start.side_effect = docker.errors.APIError("conflict", response=response, explanation="is paused")

    with pytest.raises(InvalidState, match="is paused"):
        backend.start_container("abc")


def test_server_error_is_generic(backend, mock_client):
    response = MagicMock(status_code=500)
    mock_client.api.images.side_effect = docker.errors.APIError("boom", response=response, explanation="daemon boom")

    with pytest.raises(DockmanError, match="daemon boom") as excinfo:
        backend.list_images()
    assert not isinstance(excinfo.value, (NotFound, InvalidState))


def test_connection_failure_is_daemon_unreachable(backend, mock_client):
    mock_client.api.networks.side_effect = ConnectionError("socket gone")

    with pytest.raises(DaemonUnreachable):
        backend.list_networks()


def test_connect_fails_when_daemon_missing(mocker):
    mocker.patch("dockman.backend.docker.from_env", side_effect=docker.errors.DockerException("no socket"))

    with pytest.raises(DaemonUnreachable, match="Failed to create Docker client"):
        DockerBackend.connect()


def test_connect_pings_daemon(mocker):
    client = MagicMock()
    mocker.patch("dockman.backend.docker.from_env", return_value=client)

    backend = DockerBackend.connect()

    client.ping.assert_called_once()
    assert backend.client is client


def test_events_converts_bounds(backend, mock_client):
    backend.events("100", "")
    mock_client.api.events.assert_called_once_with(since=100, until=None, decode=True)
