"""Terminal user interface."""

from .status_console import StatusConsole

__all__ = ["StatusConsole"]
