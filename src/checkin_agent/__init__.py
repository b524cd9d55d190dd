"""
Checkin Agent - session-aware engine that drives scheduled check-ins on
third-party sites through a headless browser.

This package exposes the CLI entrypoint together with the session store,
target runner, orchestrator, and scheduler.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("checkin-agent")
except PackageNotFoundError:  # pragma: no cover - fallback for editable installs
    __version__ = "0.0.0"

__all__ = ["__version__"]
