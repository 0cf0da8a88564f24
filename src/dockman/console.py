"""Textual terminal console for a running dockman gateway."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.timer import Timer
from textual.widgets import Footer, Header, Static, Tab, Tabs
from rich.markup import escape as rich_escape

from .client import DEFAULT_URL, EventFeed, GatewayClient
from .config import AppConfig, config_manager
from .dispatcher import DASHBOARD_TAB, EVENTS_TAB, EventDispatcher
from .errors import DockmanError
from .model import DockerEvent
from .stats import cpu_percent, memory_usage, network_bytes

logger = logging.getLogger(__name__)

TABS = ["dashboard", "containers", "images", "networks", "volumes", "services", "events"]


def format_bytes(size: Any) -> str:
    try:
        value = float(size or 0)
    except (TypeError, ValueError):
        return str(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.0f}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}TB"


def container_name(container: dict) -> str:
    names = container.get("Names") or []
    if names:
        return names[0].lstrip("/")
    return (container.get("Id") or "")[:12]


def container_row(container: dict) -> str:
    project = (container.get("Labels") or {}).get("com.docker.compose.project") or "standalone"
    return (f"{project[:12]:12} {container_name(container)[:24]:24} "
            f"{(container.get('State') or '')[:10]:10} {(container.get('Image') or '')[:32]}")


def image_row(image: dict) -> str:
    tag = (image.get("RepoTags") or ["<none>:<none>"])[0]
    short_id = (image.get("Id") or "").replace("sha256:", "")[:12]
    return f"{short_id:12} {format_bytes(image.get('Size')):>9} {tag[:48]}"


def network_row(network: dict) -> str:
    config = ((network.get("IPAM") or {}).get("Config") or [{}])[0] or {}
    return f"{(network.get('Name') or '')[:24]:24} {(network.get('Driver') or '')[:10]:10} {config.get('Subnet', '')}"


def volume_row(volume: dict) -> str:
    return f"{(volume.get('Name') or '')[:32]:32} {(volume.get('Driver') or '')[:10]:10} {volume.get('Mountpoint', '')}"


def service_row(service: dict) -> str:
    return (f"{service.get('name', '')[:32]:32} {service.get('active_state', '')[:9]:9} "
            f"{service.get('sub_state', '')[:9]:9} {service.get('description', '')[:40]}")


HEADERS = {
    "containers": "PROJECT      NAME                     STATE      IMAGE",
    "images": "ID                SIZE TAG",
    "networks": "NAME                     DRIVER     SUBNET",
    "volumes": "NAME                             DRIVER     MOUNTPOINT",
    "services": "SERVICE                          ACTIVE    SUB       DESCRIPTION",
}

ROWS: dict[str, Callable[[dict], str]] = {
    "containers": container_row,
    "images": image_row,
    "networks": network_row,
    "volumes": volume_row,
    "services": service_row,
}


class TimerScheduler:
    """Adapts Textual timers to the dispatcher's call_later interface."""

    class Handle:
        def __init__(self, timer: Timer) -> None:
            self.timer = timer

        def cancel(self) -> None:
            self.timer.stop()

    def __init__(self, app: App) -> None:
        self.app = app

    def call_later(self, delay: float, callback: Callable[[], None]) -> "TimerScheduler.Handle":
        return TimerScheduler.Handle(self.app.set_timer(delay, callback))


class ConfirmScreen(ModalScreen[bool]):
    def __init__(self, question: str) -> None:
        super().__init__()
        self.question = question

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("Confirm", classes="modal_title"),
            Static(self.question, classes="modal_body"),
            Static("[Enter/Y] Yes    [Esc/N] No", classes="modal_hint"),
            id="modal",
        )

    async def on_key(self, event: events.Key) -> None:
        if event.key in ("enter", "y", "Y"):
            self.dismiss(True)
        elif event.key in ("escape", "n", "N"):
            self.dismiss(False)


class DockmanConsole(App[None]):
    TITLE = "dockman"
    SUB_TITLE = "Docker & systemd console"

    CSS = """
    Screen {
      layout: vertical;
    }

    #tabs {
      height: 1;
      padding: 0 1;
      background: $surface;
      color: $text;
    }

    #main {
      height: 1fr;
    }

    #list {
      width: 60%;
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #info {
      width: 40%;
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    Screen.narrow #list {
      width: 100%;
    }

    Screen.narrow #info {
      display: none;
    }

    #status {
      height: 1;
      padding: 0 1;
      background: $panel;
      color: $text;
    }

    #modal {
      width: 60;
      height: auto;
      border: round $accent;
      background: $surface;
      padding: 1 2;
      align: center middle;
    }

    .modal_title {
      text-style: bold;
      margin-bottom: 1;
    }

    .modal_body {
      margin-bottom: 1;
    }

    .modal_hint {
      color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("1", "tab('dashboard')", "Dashboard", show=False),
        Binding("2", "tab('containers')", "Containers", show=False),
        Binding("3", "tab('images')", "Images", show=False),
        Binding("4", "tab('networks')", "Networks", show=False),
        Binding("5", "tab('volumes')", "Volumes", show=False),
        Binding("6", "tab('services')", "Services", show=False),
        Binding("7", "tab('events')", "Events", show=False),
        Binding("up", "up", "Up"),
        Binding("down", "down", "Down"),
        Binding("enter", "details", "Details"),
        Binding("s", "control('start')", "Start"),
        Binding("t", "control('stop')", "Stop"),
        Binding("r", "control('restart')", "Restart"),
        Binding("e", "control('enable')", "Enable", show=False),
        Binding("d", "control('disable')", "Disable", show=False),
        Binding("l", "logs", "Logs"),
        Binding("c", "clear_events", "Clear", show=False),
        Binding("R", "reload", "Reload"),
    ]

    def __init__(self, client: GatewayClient, settings: Optional[AppConfig] = None) -> None:
        super().__init__()
        self.client = client
        self.settings = settings or AppConfig()
        self.selected_tab = DASHBOARD_TAB
        self.selected_index = 0
        self.message = ""

        self.items: dict[str, list[Any]] = {tab: [] for tab in ROWS}
        self.stats: dict[str, Any] = {}
        self.host: dict[str, Any] = {}
        self.detail = ""

        self.dispatcher = EventDispatcher(
            connect=self._open_feed,
            refresh=self,
            scheduler=TimerScheduler(self),
            config=self.settings.dashboard,
            initial_tab=self.selected_tab,
            on_change=self._render,
        )
        self._syncing_tabs = False

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Tabs(*[Tab(tab.upper(), id=tab) for tab in TABS], id="tabs")
        yield Horizontal(
            Static("", id="list", markup=False),
            Static("", id="info", markup=False),
            id="main",
        )
        yield Static("", id="status", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        self.set_class(self.size.width < 110, "narrow")
        self.query_one("#tabs", Tabs).active = self.selected_tab
        self.dispatcher.start()
        self.refresh_tab(self.selected_tab)
        self._render()

    def on_resize(self, event: events.Resize) -> None:
        self.set_class(self.size.width < 110, "narrow")
        self._render()

    # --- event feed ---

    def _open_feed(self) -> EventFeed:
        return EventFeed(self.client, post=self._post).start()

    def _post(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            self.call_from_thread(callback, *args)
        except RuntimeError as e:
            # app already shutting down
            logger.debug(f"Dropped event feed callback: {e}")

    # --- RefreshHandler ---

    def refresh_tab(self, tab: str) -> None:
        if tab == DASHBOARD_TAB:
            self.refresh_stats()
            self.refresh_host()
        elif tab in ROWS:
            self.run_worker(self._load_items(tab), group=f"load-{tab}", exclusive=True)

    def refresh_stats(self) -> None:
        self.run_worker(self._load_stats(), group="load-stats", exclusive=True)

    def refresh_host(self) -> None:
        self.run_worker(self._load_host(), group="load-host", exclusive=True)

    async def _fetch(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except DockmanError as e:
            self._set_message(f"Error: {e}")
            self._render()
            return None

    async def _load_items(self, tab: str) -> None:
        loader = {
            "containers": self.client.containers,
            "images": self.client.images,
            "networks": self.client.networks,
            "volumes": self.client.volumes,
            "services": self.client.services,
        }[tab]
        result = await self._fetch(loader)
        if result is not None:
            self.items[tab] = result
            self._normalize_selection()
            self._render()

    async def _load_stats(self) -> None:
        result = await self._fetch(self.client.system_stats)
        if result is not None:
            self.stats = result
            self._render()

    async def _load_host(self) -> None:
        result = await self._fetch(self.client.host_info)
        if result is not None:
            self.host = result
            self._render()

    # --- rendering ---

    def _set_message(self, message: str) -> None:
        self.message = message

    def _selected_item(self) -> Optional[dict]:
        items = self.items.get(self.selected_tab, [])
        if 0 <= self.selected_index < len(items):
            return items[self.selected_index]
        return None

    def _normalize_selection(self) -> None:
        items = self.items.get(self.selected_tab, [])
        self.selected_index = max(0, min(self.selected_index, len(items) - 1)) if items else 0

    def _render_dashboard(self) -> str:
        lines = ["DOCKER", ""]
        if self.stats:
            c = self.stats["containers"]
            lines += [
                f"Containers: total={c['total']} running={c['running']} paused={c['paused']} stopped={c['stopped']}",
                f"Images: total={self.stats['images']['total']} size={format_bytes(self.stats['images']['size'])}",
                f"Networks: total={self.stats['networks']['total']}",
                f"Volumes: total={self.stats['volumes']['total']}",
            ]
        else:
            lines.append("(loading)")
        lines += ["", "HOST", ""]
        if self.host:
            h = self.host
            lines += [
                f"Uptime: {h['uptime']}",
                f"Load: {h['load_avg_1']:.2f} {h['load_avg_5']:.2f} {h['load_avg_15']:.2f}",
                f"Memory: {format_bytes(h['memory_used'])} / {format_bytes(h['memory_total'])} ({h['memory_used_percent']:.1f}%)",
                f"TCP connections: {h['network_connections']}",
                f"CPU cores: {h['cpu_cores']}",
            ]
        else:
            lines.append("(loading)")
        return "\n".join(lines)

    def _render_events(self) -> str:
        lines = [f"EVENTS ({self.dispatcher.event_count} received, feed {self.dispatcher.state.value})", ""]
        events_log: list[DockerEvent] = list(self.dispatcher.events)
        if not events_log:
            lines.append("Waiting for events...")
        lines += [e.describe() for e in events_log]
        return "\n".join(lines)

    def _render_list(self) -> str:
        if self.selected_tab == DASHBOARD_TAB:
            return self._render_dashboard()
        if self.selected_tab == EVENTS_TAB:
            return self._render_events()

        items = self.items.get(self.selected_tab, [])
        lines = [HEADERS[self.selected_tab], ""]
        row = ROWS[self.selected_tab]
        for idx, item in enumerate(items):
            marker = ">" if idx == self.selected_index else " "
            lines.append(f"{marker} {row(item)}")
        if not items:
            lines.append("(no items)")
        return "\n".join(lines)

    def _render_info(self) -> str:
        if self.detail:
            return self.detail
        if self.selected_tab in (DASHBOARD_TAB, EVENTS_TAB):
            return "Keys: 1-7 tabs, Enter details, s/t/r start/stop/restart, l logs, q quit."
        item = self._selected_item()
        if item is None:
            return "No selection"
        if self.selected_tab == "containers":
            return "\n".join([
                f"ID: {item.get('Id', '')[:12]}",
                f"Name: {container_name(item)}",
                f"State: {item.get('State', '')}",
                f"Status: {item.get('Status', '')}",
                f"Image: {item.get('Image', '')}",
            ])
        if self.selected_tab == "services":
            return "\n".join([
                f"Unit: {item.get('unit', '')}",
                f"Load: {item.get('load_state', '')}",
                f"Active: {item.get('active_state', '')} ({item.get('sub_state', '')})",
                f"Description: {item.get('description', '')}",
            ])
        return "\n".join(f"{k}: {v}" for k, v in item.items() if isinstance(v, (str, int, float)))

    def _render_status(self) -> str:
        return f"{self.client.base_url}  events={self.dispatcher.event_count}  {self.message}".strip()

    def _render(self) -> None:
        if not self.is_running:
            return
        self.query_one("#list", Static).update(rich_escape(self._render_list()))
        self.query_one("#info", Static).update(rich_escape(self._render_info()))
        self.query_one("#status", Static).update(rich_escape(self._render_status()))

    # --- actions ---

    def action_tab(self, tab: str) -> None:
        self._set_tab(tab)

    def _set_tab(self, tab: str) -> None:
        self.selected_tab = tab
        self.selected_index = 0
        self.detail = ""
        tabs = self.query_one("#tabs", Tabs)
        if tabs.active != tab:
            self._syncing_tabs = True
            try:
                tabs.active = tab
            finally:
                self._syncing_tabs = False
        self.dispatcher.set_tab(tab)
        self.refresh_tab(tab)
        self._render()

    def on_tabs_tab_activated(self, event: Tabs.TabActivated) -> None:
        if self._syncing_tabs:
            return
        tab_id = event.tab.id
        if tab_id in TABS and tab_id != self.selected_tab:
            self._set_tab(tab_id)

    def action_up(self) -> None:
        self.selected_index = max(0, self.selected_index - 1)
        self.detail = ""
        self._render()

    def action_down(self) -> None:
        items = self.items.get(self.selected_tab, [])
        if items:
            self.selected_index = min(len(items) - 1, self.selected_index + 1)
        self.detail = ""
        self._render()

    def action_reload(self) -> None:
        self.refresh_tab(self.selected_tab)

    def action_clear_events(self) -> None:
        self.dispatcher.clear_events()

    def action_details(self) -> None:
        self.run_worker(self._details_flow(), group="user-action", exclusive=True)

    def action_logs(self) -> None:
        self.run_worker(self._logs_flow(), group="user-action", exclusive=True)

    def action_control(self, action: str) -> None:
        self.run_worker(self._control_flow(action), group="user-action", exclusive=True)

    async def _details_flow(self) -> None:
        item = self._selected_item()
        if item is None:
            return
        if self.selected_tab == "containers":
            detail = await self._fetch(self.client.container, item["Id"])
            if detail is None:
                return
            c = detail["container"]
            lines = [
                f"ID: {c.get('Id', '')[:12]}",
                f"Name: {c.get('Name', '').lstrip('/')}",
                f"Image: {(c.get('Config') or {}).get('Image', '')}",
                f"State: {(c.get('State') or {}).get('Status', '')}",
                f"Started: {(c.get('State') or {}).get('StartedAt', '')}",
                f"Restart count: {c.get('RestartCount', 0)}",
            ]
            stats = detail.get("stats")
            if stats:
                usage, limit, percent = memory_usage(stats)
                lines += [
                    "",
                    f"CPU: {cpu_percent(stats):.1f}%",
                    f"Memory: {format_bytes(usage)} / {format_bytes(limit)} ({percent:.1f}%)",
                    f"Net RX/TX: {format_bytes(network_bytes(stats, 'rx_bytes'))} / {format_bytes(network_bytes(stats, 'tx_bytes'))}",
                ]
            self.detail = "\n".join(lines)
        elif self.selected_tab == "services":
            detail = await self._fetch(self.client.service, item["name"])
            if detail is None:
                return
            s = detail["service"]
            self.detail = "\n".join([
                f"Unit: {s.get('unit', '')}",
                f"Active: {s.get('active_state', '')} ({s.get('sub_state', '')})",
                f"Type: {s.get('type', '')}",
                f"Main PID: {s.get('main_pid', '')}",
                f"Memory: {format_bytes(s['memory']) if s.get('memory', '').isdigit() else s.get('memory', '')}",
                f"Tasks: {s.get('tasks', '')}",
                "",
                *detail.get("logs", [])[-20:],
            ])
        self._render()

    async def _logs_flow(self) -> None:
        item = self._selected_item()
        if item is None:
            return
        if self.selected_tab == "containers":
            logs = await self._fetch(self.client.container_logs, item["Id"], self.settings.server.default_log_tail)
        elif self.selected_tab == "services":
            logs = await self._fetch(self.client.service_logs, item["name"], self.settings.services.default_log_lines)
        else:
            return
        if logs is not None:
            self.detail = logs[-4000:] or "(no logs)"
            self._render()

    async def _control_flow(self, action: str) -> None:
        item = self._selected_item()
        if item is None:
            return
        if self.selected_tab == "containers" and action in ("start", "stop", "restart"):
            name = container_name(item)
            if action == "stop" and not await self.push_screen_wait(ConfirmScreen(f"Stop container {name}?")):
                return
            if await self._fetch(self.client.container_action, item["Id"], action) is not None:
                self._set_message(f"{name}: {action} ok")
            self.refresh_tab("containers")
        elif self.selected_tab == "services":
            name = item["name"]
            if action in ("stop", "disable") and not await self.push_screen_wait(ConfirmScreen(f"{action.capitalize()} service {name}?")):
                return
            result = await self._fetch(self.client.service_action, name, action)
            if result is not None:
                self._set_message(f"{name}: {result.get('message', action)}")
            self.refresh_tab("services")
        self._render()

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool:
        # If a modal screen is active, app-level bindings must not steal keys.
        if len(self.screen_stack) > 1:
            return False
        return True


def run(url: str = DEFAULT_URL) -> None:
    client = GatewayClient(url)
    app = DockmanConsole(client, config_manager.get_config())
    try:
        app.run()
    finally:
        app.dispatcher.stop()
        client.close()
