"""Monitoring point name translation (Russian → English).

Ping-Admin reports monitoring point names in Russian.  A static JSON table
(``locations.json`` by default) maps them to English; the table is loaded
once at startup and shared read-only by every exporter.

A missing or malformed table is not fatal: the failure is logged and every
name passes through unchanged.

Typical usage::

    from apatit.core.translator import NameTranslator

    translator = NameTranslator.from_file("locations.json")
    translator.translate("Москва")   # → "Moscow"
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

__all__ = ["NameTranslator"]

logger = logging.getLogger(__name__)


class NameTranslator:
    """Lookup table from upstream point names to English names.

    Args:
        table: Mapping of original name → translated name.  ``None`` disables
            translation entirely (every name is returned unchanged, silently).
    """

    def __init__(self, table: dict[str, str] | None = None) -> None:
        self._table = table

    @classmethod
    def from_file(cls, path: str | Path) -> NameTranslator:
        """Load the table from a JSON object file.

        Returns a disabled translator if the file cannot be read or parsed.
        """
        path = Path(path)
        logger.info("Loading translations from %s ...", path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(
                "Failed to load translations file %s, location names will not be translated: %s",
                path,
                exc,
            )
            return cls(None)

        if not isinstance(raw, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in raw.items()
        ):
            logger.warning(
                "Translations file %s must contain a JSON object of strings; "
                "location names will not be translated.",
                path,
            )
            return cls(None)

        logger.info("Translations loaded successfully (%d entries).", len(raw))
        return cls(raw)

    @property
    def enabled(self) -> bool:
        return self._table is not None

    def translate(self, name: str) -> str:
        """Return the English name for *name*, or *name* itself if unknown.

        An empty name is returned as is.
        """
        if self._table is None or not name:
            return name
        translated = self._table.get(name)
        if translated is None:
            logger.warning("Translation not found for location %r", name)
            return name
        return translated
