"""HTTP surface served next to the schedulers."""

from apatit.server.http import build_server, create_app

__all__ = ["build_server", "create_app"]
