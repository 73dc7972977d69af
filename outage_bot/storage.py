"""
File-based storage for tracking announced feed entries.

Keeps one marker file per announced entry so restarts never repeat an
announcement.
"""

import asyncio
import json
import logging
from pathlib import Path

from outage_bot.entries import FeedEntry

logger = logging.getLogger(__name__)


class AnnouncementCache:
    """
    Dedup markers stored as files.

    Each marker lives at ``<cache_dir>/<service>-<identifier>`` and holds
    the JSON of the entry it stands for. Markers are never expired.
    """

    def __init__(self, cache_dir: str | Path):
        """
        Initialize storage with its directory.

        Parameters
        ----------
        cache_dir : str | Path
            Directory holding the marker files.
        """
        self.cache_dir = Path(cache_dir)

    def initialize(self) -> None:
        """
        Create the cache directory.

        Raises
        ------
        OSError
            If the directory cannot be created for any reason other than
            already existing.
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Using announcement cache at %s", self.cache_dir)

    def marker_path(self, service: str, identifier: str) -> Path:
        """
        Return the marker file for an entry.

        Parameters
        ----------
        service : str
            Name of the feed the entry belongs to.
        identifier : str
            Stable identifier of the entry.

        Returns
        -------
        Path
            Marker file location.
        """
        return self.cache_dir / f"{service.lower()}-{identifier}"

    async def has_announced(self, service: str, identifier: str) -> bool:
        """
        Check if an entry has already been announced.

        Parameters
        ----------
        service : str
            Name of the feed the entry belongs to.
        identifier : str
            Stable identifier of the entry.

        Returns
        -------
        bool
            True if a marker exists for the entry.
        """
        return await asyncio.to_thread(self.marker_path(service, identifier).exists)

    async def mark_announced(
        self,
        service: str,
        identifier: str,
        entry: FeedEntry,
    ) -> None:
        """
        Write the marker for an entry.

        Writing an existing marker again is harmless.

        Parameters
        ----------
        service : str
            Name of the feed the entry belongs to.
        identifier : str
            Stable identifier of the entry.
        entry : FeedEntry
            The entry, stored as the marker content.
        """
        path = self.marker_path(service, identifier)
        content = json.dumps(entry.to_dict(), ensure_ascii=False)
        await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        logger.debug("Marked entry as announced: %s", path.name)

    def count(self, service: str | None = None) -> int:
        """
        Get the count of markers.

        Identifiers are hex digests, so a marker of ``aws`` never has a
        dash after the ``aws-`` prefix while one of ``aws-east`` does.

        Parameters
        ----------
        service : str | None
            If provided, count only markers of this feed.

        Returns
        -------
        int
            Number of markers.
        """
        if service is None:
            return sum(1 for path in self.cache_dir.glob("*-*") if path.is_file())

        prefix = f"{service.lower()}-"
        return sum(
            1
            for path in self.cache_dir.glob(f"{prefix}*")
            if path.is_file() and "-" not in path.name[len(prefix):]
        )
