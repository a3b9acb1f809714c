"""APATIT — Advanced Ping-Admin Task Indicators Transducer.

Polls the Ping-Admin monitoring API and serves the results as Prometheus
metrics and JSON snapshots.
"""

from apatit.core.version import VERSION as __version__

__all__ = ["__version__"]
