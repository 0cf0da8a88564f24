"""
dockman - A single-host web dashboard for Docker and systemd.

This package serves a browser UI and a small JSON API that proxies the local
Docker Engine and the systemctl/journalctl tools. It adds no orchestration of
its own: every lifecycle operation is forwarded to the daemon or CLI tool.

Main Components:
  - backend.py: Docker Engine facade (docker-py)
  - systemd.py: systemctl/journalctl wrappers and text parsers
  - hostinfo.py: /proc based host metrics
  - events.py: Docker event relay (daemon -> HTTP stream / WebSocket)
  - server.py: FastAPI gateway and static UI
  - dispatcher.py: event-driven refresh policy used by the console
  - console.py: Textual terminal client for a running gateway

Usage:
  dockman -port 8080
  dockman-console --url http://localhost:8080

Dependencies:
  - docker>=7.0.0
  - fastapi, uvicorn
  - Python 3.10+
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/dockman/logs/dockman.log with fallback to /tmp.
    Creates directory if it doesn't exist.
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'dockman' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'dockman.log')
    except (PermissionError, OSError):
        return '/tmp/dockman.log'
