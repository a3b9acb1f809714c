"""In-memory snapshot storage served by the HTTP layer."""

from apatit.storage.cache import SeriesCache

__all__ = ["SeriesCache"]
