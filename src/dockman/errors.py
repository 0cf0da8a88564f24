"""
Error taxonomy shared by the Docker facade, the systemd shim and the gateway.

The gateway turns any DockmanError into an HTTP 500 whose body is the raw
error text; no structured error codes are defined.
"""


class DockmanError(Exception):
    """Base class for failures surfaced to API callers."""


class DaemonUnreachable(DockmanError):
    """The Docker daemon could not be contacted."""


class NotFound(DockmanError):
    """The requested container, image or unit does not exist."""


class InvalidState(DockmanError):
    """The daemon refused the operation for the object's current state."""


class ServiceCommandError(DockmanError):
    """A systemctl/journalctl invocation failed."""

    def __init__(self, message: str, returncode: int = -1, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr
