"""
Command-line entry points.

  - main(): `dockman`, runs the gateway under uvicorn
  - console_main(): `dockman-console`, the Textual client for a running gateway

Startup order for the gateway:
  1. Parse flags and resolve the port (flag, DOCKER_MANAGER_PORT, 8080)
  2. Configure logging (stderr plus a rotating file under XDG_DATA_HOME)
  3. Connect to the Docker daemon; exit 1 when it cannot be reached
  4. Build the FastAPI app and serve it
"""

import sys
import logging
import argparse
from logging.handlers import RotatingFileHandler
from typing import List, Optional

import uvicorn

from . import __version__, get_log_path
from .backend import DockerBackend
from .config import DEFAULT_PORT, PORT_ENV_VAR, LogConfig, config_manager, resolve_port
from .errors import DaemonUnreachable
from .hostinfo import HostInfoReader
from .systemd import ServiceManager

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_config: LogConfig, level: Optional[str] = None, stderr: bool = True) -> str:
    """Install the file and stderr handlers on the root logger; returns the log path."""
    level_name = (level or log_config.level or "INFO").upper()
    log_path = log_config.file_path or get_log_path()
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if stderr:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    try:
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=int(log_config.max_size_mb) * 1024 * 1024,
            backupCount=int(log_config.backup_count),
        )
    except OSError as e:
        logger.warning(f"Cannot write log file {log_path}: {e}")
    else:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    return log_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dockman",
        description="Web dashboard for the local Docker daemon and systemd services.",
    )
    parser.add_argument("-port", "--port", dest="port", default=None,
                        help=f"listen port (default: ${PORT_ENV_VAR} or {DEFAULT_PORT})")
    parser.add_argument("--host", default=None, help="listen address (default: from config, 0.0.0.0)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        port = resolve_port(args.port)
    except ValueError:
        parser.error(f"invalid port: {args.port or 'from ' + PORT_ENV_VAR}")

    config = config_manager.get_config()
    log_path = setup_logging(config.logging, args.log_level)
    logger.info(f"dockman {__version__} starting, logging to {log_path}")

    try:
        backend = DockerBackend.connect(config.server.docker_base_url)
    except DaemonUnreachable as e:
        logger.error(str(e))
        sys.exit(1)

    services = ServiceManager(
        detail_log_lines=config.services.detail_log_lines,
        default_log_lines=config.services.default_log_lines,
        systemctl=config.services.systemctl,
        journalctl=config.services.journalctl,
    )

    # imported here so `dockman --help` stays fast
    from .server import create_app
    app = create_app(backend, services, HostInfoReader(), config)

    host = args.host or config.server.host
    logger.info(f"Listening on {host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_config=None)
    finally:
        backend.close()
        logger.info("dockman stopped")


def console_main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="dockman-console", description="Terminal console for a dockman gateway.")
    parser.add_argument("--url", default=None,
                        help=f"gateway base URL (default: http://127.0.0.1:${PORT_ENV_VAR} or {DEFAULT_PORT})")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    args = parser.parse_args(argv)

    # the terminal belongs to the UI, so log to the file only
    setup_logging(config_manager.get_config().logging, args.log_level, stderr=False)
    url = args.url or f"http://127.0.0.1:{resolve_port()}"
    logger.info(f"Console connecting to {url}")

    from .console import run
    run(url)


if __name__ == "__main__":
    main()
