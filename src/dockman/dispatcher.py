"""
Event-driven refresh policy for dashboard clients.

The browser UI (static/app.js) and the terminal console share one policy
for reacting to the Docker event feed. This module is the Python side of it
and is what the console drives.

Connection lifecycle (one connection at most):
  - entering the events tab opens the feed (CONNECTING -> CONNECTED)
  - leaving the events tab detaches the handlers, then closes the feed
  - a drop while still on the events tab schedules one reconnect after
    `reconnect_delay`; a drop anywhere else is left alone

Each event bumps a counter. On the events tab it is also prepended to a
bounded log (`max_events`, oldest evicted). Off the events tab, container,
image, network and volume events trigger a targeted refresh, at most one
per `refresh_cooldown` window; events inside the window still count.

Two timers bound staleness when events are missed: a fallback refresh of
the active tab every `fallback_refresh_interval` and a host metrics refresh
every `host_refresh_interval` while the dashboard is showing.

Collaborators are injected so the policy runs the same against a real
transport, a Textual app or a test double:
  - connect(): returns a connection exposing on_open/on_message/on_close
    attributes and close()
  - refresh: object with refresh_tab(tab), refresh_stats(), refresh_host()
  - scheduler: object with call_later(delay, callback) -> handle.cancel()
  - clock: monotonic seconds
"""

import enum
import time
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Protocol

from .config import DashboardConfig
from .model import DockerEvent

logger = logging.getLogger(__name__)

EVENTS_TAB = "events"
DASHBOARD_TAB = "dashboard"

REFRESH_EVENT_TYPES = ("container", "image", "network", "volume")
CONTAINER_STATS_ACTIONS = ("start", "stop", "die", "destroy", "create")
IMAGE_STATS_ACTIONS = ("delete", "untag")


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle: ...


class RefreshHandler(Protocol):
    def refresh_tab(self, tab: str) -> None: ...
    def refresh_stats(self) -> None: ...
    def refresh_host(self) -> None: ...


class EventDispatcher:
    def __init__(self, connect: Callable[[], Any], refresh: RefreshHandler, scheduler: Scheduler,
                 clock: Callable[[], float] = time.monotonic,
                 config: Optional[DashboardConfig] = None,
                 initial_tab: str = DASHBOARD_TAB,
                 on_change: Optional[Callable[[], None]] = None):
        self.connect = connect
        self.refresh = refresh
        self.scheduler = scheduler
        self.clock = clock
        self.config = config or DashboardConfig()
        self.on_change = on_change

        self.current_tab = initial_tab
        self.state = ConnectionState.DISCONNECTED
        self.connection: Any = None
        self.event_count = 0
        self.events: Deque[DockerEvent] = deque(maxlen=self.config.max_events)
        self.last_refresh: Optional[float] = None

        self._reconnect_handle: Optional[Handle] = None
        self._timers: Dict[str, Handle] = {}

    # --- timers ---

    def start(self) -> None:
        """Arm the fallback and host-metrics timers."""
        self._schedule_repeating("fallback", self.config.fallback_refresh_interval, self.tick_fallback)
        self._schedule_repeating("host", self.config.host_refresh_interval, self.tick_host)
        if self.current_tab == EVENTS_TAB:
            self._open()

    def stop(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._cancel_reconnect()
        self._close()

    def _schedule_repeating(self, name: str, interval: float, tick: Callable[[], None]) -> None:
        def fire() -> None:
            self._timers[name] = self.scheduler.call_later(interval, fire)
            tick()
        self._timers[name] = self.scheduler.call_later(interval, fire)

    def tick_fallback(self) -> None:
        if self.current_tab != EVENTS_TAB:
            logger.debug(f"Fallback refresh of {self.current_tab}")
            self.refresh.refresh_tab(self.current_tab)

    def tick_host(self) -> None:
        if self.current_tab == DASHBOARD_TAB:
            self.refresh.refresh_host()

    # --- tabs ---

    def set_tab(self, tab: str) -> None:
        self.current_tab = tab
        if tab == EVENTS_TAB:
            self._open()
        else:
            self._cancel_reconnect()
            self._close()
        self._changed()

    # --- connection ---

    def _open(self) -> None:
        if self.connection is not None and self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self.state = ConnectionState.CONNECTING
        try:
            conn = self.connect()
        except Exception as e:
            logger.error(f"Failed to open event feed: {e}")
            self.state = ConnectionState.DISCONNECTED
            self._schedule_reconnect()
            return
        conn.on_open = self._handle_open
        conn.on_message = self.handle_event
        conn.on_close = self._handle_close
        self.connection = conn

    def _close(self) -> None:
        conn = self.connection
        if conn is None:
            return
        logger.debug("Closing event feed")
        # detach first so the close below cannot trigger a reconnect
        conn.on_open = None
        conn.on_message = None
        conn.on_close = None
        self.connection = None
        self.state = ConnectionState.DISCONNECTED
        conn.close()

    def _handle_open(self) -> None:
        self.state = ConnectionState.CONNECTED
        logger.info("Event feed connected")
        self._changed()

    def _handle_close(self) -> None:
        logger.info("Event feed disconnected")
        self.connection = None
        self.state = ConnectionState.DISCONNECTED
        if self.current_tab == EVENTS_TAB:
            self._schedule_reconnect()
        self._changed()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None or self.current_tab != EVENTS_TAB:
            return
        self._reconnect_handle = self.scheduler.call_later(self.config.reconnect_delay, self._reconnect)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self.current_tab == EVENTS_TAB:
            self._open()

    # --- events ---

    def handle_event(self, data: Any) -> None:
        event = data if isinstance(data, DockerEvent) else DockerEvent.from_dict(data)
        self.event_count += 1

        if self.current_tab == EVENTS_TAB:
            self.events.appendleft(event)
        elif event.type in REFRESH_EVENT_TYPES:
            self._smart_refresh(event)
        self._changed()

    def clear_events(self) -> None:
        self.events.clear()
        self.event_count = 0
        self._changed()

    def _smart_refresh(self, event: DockerEvent) -> None:
        now = self.clock()
        if self.last_refresh is not None and now - self.last_refresh < self.config.refresh_cooldown:
            logger.debug("Refresh skipped due to cooldown")
            return

        if event.type == "container":
            if event.action in CONTAINER_STATS_ACTIONS:
                if self.current_tab == "containers":
                    self.refresh.refresh_tab("containers")
                self.refresh.refresh_stats()
        elif event.type == "image":
            if self.current_tab == "images":
                self.refresh.refresh_tab("images")
            if event.action in IMAGE_STATS_ACTIONS:
                self.refresh.refresh_stats()
        elif event.type == "network":
            if self.current_tab == "networks":
                self.refresh.refresh_tab("networks")
        elif event.type == "volume":
            if self.current_tab == "volumes":
                self.refresh.refresh_tab("volumes")

        self.last_refresh = now

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()
