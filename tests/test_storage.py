"""
Unit tests for the storage module.

Tests cover cache directory creation, marker layout and announced-entry
tracking.
"""

import json
from pathlib import Path

import pytest

from outage_bot.entries import FeedEntry
from outage_bot.storage import AnnouncementCache


class TestCacheInit:
    """Tests for AnnouncementCache initialization."""

    def test_creates_directory(self, tmp_path: Path) -> None:
        """Test that initialize creates the cache directory."""
        cache_dir = tmp_path / "nested" / "cache"
        cache = AnnouncementCache(cache_dir)

        cache.initialize()

        assert cache_dir.is_dir()

    def test_existing_directory_is_fine(self, tmp_path: Path) -> None:
        """Test that an existing directory is not an error."""
        cache = AnnouncementCache(tmp_path)

        cache.initialize()
        cache.initialize()

        assert tmp_path.is_dir()

    def test_uncreatable_directory_raises(self, tmp_path: Path) -> None:
        """Test that a path blocked by a file fails."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        cache = AnnouncementCache(blocker / "cache")

        with pytest.raises(OSError):
            cache.initialize()


class TestMarkers:
    """Tests for announced entry tracking."""

    def test_marker_path_layout(self, cache: AnnouncementCache) -> None:
        """Test the marker file name is the lower-cased service plus identifier."""
        path = cache.marker_path("AWS", "deadbeef")

        assert path == cache.cache_dir / "aws-deadbeef"

    async def test_not_announced_initially(self, cache: AnnouncementCache) -> None:
        """Test has_announced is False for unknown entries."""
        assert await cache.has_announced("aws", "deadbeef") is False

    async def test_mark_then_has_announced(
        self, cache: AnnouncementCache, sample_entry: FeedEntry
    ) -> None:
        """Test marking an entry makes has_announced True."""
        await cache.mark_announced("aws", sample_entry.identifier, sample_entry)

        assert await cache.has_announced("aws", sample_entry.identifier) is True

    async def test_service_case_insensitive(
        self, cache: AnnouncementCache, sample_entry: FeedEntry
    ) -> None:
        """Test that service names are compared lower-cased."""
        await cache.mark_announced("AWS", "deadbeef", sample_entry)

        assert await cache.has_announced("aws", "deadbeef") is True

    async def test_mark_twice_is_idempotent(
        self, cache: AnnouncementCache, sample_entry: FeedEntry
    ) -> None:
        """Test that marking the same entry twice is harmless."""
        await cache.mark_announced("aws", "deadbeef", sample_entry)
        await cache.mark_announced("aws", "deadbeef", sample_entry)

        assert await cache.has_announced("aws", "deadbeef") is True
        assert cache.count() == 1

    async def test_same_identifier_different_services(
        self, cache: AnnouncementCache, sample_entry: FeedEntry
    ) -> None:
        """Test that services are tracked separately."""
        await cache.mark_announced("aws", "deadbeef", sample_entry)

        assert await cache.has_announced("gcp", "deadbeef") is False

    async def test_marker_holds_entry(
        self, cache: AnnouncementCache, sample_entry: FeedEntry
    ) -> None:
        """Test that the marker file stores the serialized entry."""
        await cache.mark_announced("aws", "deadbeef", sample_entry)

        data = json.loads(cache.marker_path("aws", "deadbeef").read_text())
        assert data == sample_entry.to_dict()

    async def test_markers_survive_new_instance(
        self, tmp_path: Path, sample_entry: FeedEntry
    ) -> None:
        """Test that markers persist across cache instances."""
        first = AnnouncementCache(tmp_path / "cache")
        first.initialize()
        await first.mark_announced("aws", "deadbeef", sample_entry)

        second = AnnouncementCache(tmp_path / "cache")
        second.initialize()

        assert await second.has_announced("aws", "deadbeef") is True

    async def test_count_per_service(
        self, cache: AnnouncementCache, sample_entry: FeedEntry
    ) -> None:
        """Test counting markers of one service."""
        await cache.mark_announced("aws", "one", sample_entry)
        await cache.mark_announced("aws", "two", sample_entry)
        await cache.mark_announced("gcp", "one", sample_entry)

        assert cache.count("aws") == 2
        assert cache.count("gcp") == 1
        assert cache.count() == 3

    async def test_count_ignores_feed_sharing_prefix(
        self, cache: AnnouncementCache, sample_entry: FeedEntry
    ) -> None:
        """Test a feed named like another plus a suffix is counted apart."""
        await cache.mark_announced("aws", "a1b2", sample_entry)
        await cache.mark_announced("aws-east", "c3d4", sample_entry)
        await cache.mark_announced("aws-east", "e5f6", sample_entry)

        assert cache.count("aws") == 1
        assert cache.count("aws-east") == 2
