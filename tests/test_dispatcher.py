import pytest
from unittest.mock import MagicMock

from dockman.config import DashboardConfig
from dockman.dispatcher import ConnectionState, EventDispatcher


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeScheduler:
    """Records call_later requests; tests fire them by hand."""

    class Handle:
        def __init__(self, delay, callback):
            self.delay = delay
            self.callback = callback
            self.cancelled = False

        def cancel(self):
            self.cancelled = True

    def __init__(self):
        self.handles = []

    def call_later(self, delay, callback):
        handle = FakeScheduler.Handle(delay, callback)
        self.handles.append(handle)
        return handle

    def pending(self, delay):
        return [h for h in self.handles if h.delay == delay and not h.cancelled]


class FakeConnection:
    def __init__(self):
        self.on_open = None
        self.on_message = None
        self.on_close = None
        self.closed = False

    def close(self):
        self.closed = True
        # a real socket fires its close handler if one is still attached
        if self.on_close is not None:
            self.on_close()


def container_event(action="start"):
    return {"Type": "container", "Action": action, "Actor": {"ID": "abc", "Attributes": {"name": "web"}}, "time": 1}


@pytest.fixture
def env():
    connections = []

    def connect():
        conn = FakeConnection()
        connections.append(conn)
        return conn

    clock = FakeClock()
    scheduler = FakeScheduler()
    refresh = MagicMock()
    dispatcher = EventDispatcher(connect, refresh, scheduler, clock=clock, config=DashboardConfig())
    return dispatcher, connections, clock, scheduler, refresh


def test_cooldown_drops_refresh_but_counts_event(env):
    dispatcher, _, clock, _, refresh = env
    dispatcher.set_tab("containers")

    dispatcher.handle_event(container_event("start"))
    clock.now = 1.0
    dispatcher.handle_event(container_event("stop"))

    assert refresh.refresh_tab.call_count == 1
    assert refresh.refresh_stats.call_count == 1
    assert dispatcher.event_count == 2

    clock.now = 6.0
    dispatcher.handle_event(container_event("die"))

    assert refresh.refresh_tab.call_count == 2
    assert dispatcher.event_count == 3


def test_container_event_off_containers_tab_only_refreshes_stats(env):
    dispatcher, _, _, _, refresh = env

    dispatcher.handle_event(container_event("create"))

    refresh.refresh_tab.assert_not_called()
    refresh.refresh_stats.assert_called_once()


def test_untracked_container_action_does_nothing_but_starts_cooldown(env):
    dispatcher, _, clock, _, refresh = env
    dispatcher.set_tab("containers")

    dispatcher.handle_event(container_event("exec_start"))
    clock.now = 1.0
    dispatcher.handle_event(container_event("start"))

    refresh.refresh_tab.assert_not_called()
    refresh.refresh_stats.assert_not_called()


def test_image_events(env):
    dispatcher, _, clock, _, refresh = env
    dispatcher.set_tab("images")

    dispatcher.handle_event({"Type": "image", "Action": "pull"})
    refresh.refresh_tab.assert_called_once_with("images")
    refresh.refresh_stats.assert_not_called()

    clock.now = 10.0
    dispatcher.handle_event({"Type": "image", "Action": "delete"})
    refresh.refresh_stats.assert_called_once()


def test_network_and_volume_refresh_only_their_tab(env):
    dispatcher, _, clock, _, refresh = env
    dispatcher.set_tab("volumes")

    dispatcher.handle_event({"Type": "network", "Action": "create"})
    refresh.refresh_tab.assert_not_called()

    clock.now = 10.0
    dispatcher.handle_event({"Type": "volume", "Action": "create"})
    refresh.refresh_tab.assert_called_once_with("volumes")


def test_other_event_types_are_counted_only(env):
    dispatcher, _, _, _, refresh = env

    dispatcher.handle_event({"Type": "daemon", "Action": "reload"})

    assert dispatcher.event_count == 1
    assert dispatcher.last_refresh is None
    refresh.refresh_stats.assert_not_called()


def test_entering_events_tab_opens_one_connection(env):
    dispatcher, connections, _, _, _ = env

    dispatcher.set_tab("events")
    dispatcher.set_tab("events")

    assert len(connections) == 1
    assert dispatcher.state == ConnectionState.CONNECTING
    connections[0].on_open()
    assert dispatcher.state == ConnectionState.CONNECTED


def test_leaving_events_tab_detaches_before_close(env):
    dispatcher, connections, _, scheduler, _ = env
    dispatcher.set_tab("events")
    conn = connections[0]
    conn.on_open()

    dispatcher.set_tab("containers")

    assert conn.closed
    assert conn.on_close is None and conn.on_message is None
    assert dispatcher.state == ConnectionState.DISCONNECTED
    assert scheduler.pending(5.0) == []


def test_late_close_after_tab_switch_does_not_reconnect(env):
    dispatcher, connections, _, scheduler, _ = env
    dispatcher.set_tab("events")
    handler = connections[0].on_close

    dispatcher.set_tab("dashboard")
    # a close notification that was already queued still arrives
    handler()

    assert scheduler.pending(5.0) == []
    assert len(connections) == 1


def test_drop_on_events_tab_reconnects_after_delay(env):
    dispatcher, connections, _, scheduler, _ = env
    dispatcher.set_tab("events")
    connections[0].on_open()

    connections[0].on_close()

    assert dispatcher.state == ConnectionState.DISCONNECTED
    pending = scheduler.pending(5.0)
    assert len(pending) == 1
    pending[0].callback()
    assert len(connections) == 2


def test_connect_failure_schedules_reconnect(env):
    dispatcher, _, _, scheduler, _ = env
    dispatcher.connect = MagicMock(side_effect=OSError("refused"))

    dispatcher.set_tab("events")

    assert dispatcher.state == ConnectionState.DISCONNECTED
    assert len(scheduler.pending(5.0)) == 1


def test_events_tab_log_is_bounded_and_newest_first(env):
    dispatcher, _, _, _, refresh = env
    dispatcher.set_tab("events")

    for i in range(120):
        dispatcher.handle_event({"Type": "container", "Action": "start", "time": i})

    assert len(dispatcher.events) == 100
    assert dispatcher.events[0].time == 119
    assert dispatcher.events[-1].time == 20
    assert dispatcher.event_count == 120
    refresh.refresh_stats.assert_not_called()


def test_clear_events(env):
    dispatcher, _, _, _, _ = env
    dispatcher.set_tab("events")
    dispatcher.handle_event(container_event())

    dispatcher.clear_events()

    assert dispatcher.event_count == 0
    assert len(dispatcher.events) == 0


def test_timers(env):
    dispatcher, _, _, scheduler, refresh = env
    dispatcher.start()

    fallback = scheduler.pending(120.0)[0]
    host = scheduler.pending(30.0)[0]

    fallback.callback()
    refresh.refresh_tab.assert_called_once_with("dashboard")
    host.callback()
    refresh.refresh_host.assert_called_once()
    # repeating timers re-arm themselves
    assert len(scheduler.pending(120.0)) == 2

    dispatcher.set_tab("events")
    scheduler.pending(120.0)[-1].callback()
    scheduler.pending(30.0)[-1].callback()
    assert refresh.refresh_tab.call_count == 1
    assert refresh.refresh_host.call_count == 1


def test_stop_cancels_everything(env):
    dispatcher, connections, _, scheduler, _ = env
    dispatcher.start()
    dispatcher.set_tab("events")

    dispatcher.stop()

    assert all(h.cancelled for h in scheduler.handles)
    assert connections[0].closed
