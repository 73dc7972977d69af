"""
Feed entries and per-service projection.

Normalizes feedparser results into FeedEntry objects carrying a stable
identifier, the key used to avoid announcing the same event twice.
"""

import calendar
import hashlib
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def consistent_id(
    published_at: str | None,
    alternate_published_at: str | None,
    guid: str | None,
) -> str:
    """
    Derive a stable identifier for a feed entry.

    Parameters
    ----------
    published_at : str | None
        Provider-supplied publication date.
    alternate_published_at : str | None
        ISO-8601 publication date.
    guid : str | None
        Entry guid or id.

    Returns
    -------
    str
        SHA-256 hex digest of the three values. Missing values count as
        empty strings.
    """
    parts = (published_at or "", alternate_published_at or "", guid or "")
    return hashlib.sha256("/".join(parts).encode("utf-8")).hexdigest()


def _iso_date(parsed: time.struct_time | None) -> str:
    """Format a feedparser UTC struct_time as ISO-8601."""
    if not parsed:
        return ""
    moment = datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.000Z")


@dataclass
class FeedEntry:
    """
    Normalized status feed entry.

    Attributes
    ----------
    published_at : str
        Provider-supplied publication date.
    alternate_published_at : str
        ISO-8601 publication date, empty when the feed has no parseable date.
    guid : str
        Entry guid or id.
    title : str
        Entry title.
    link : str
        Entry URL.
    summary : str
        Entry summary or description.
    service : str
        Name of the source feed.
    identifier : str
        Stable identifier, see ``consistent_id``.
    """

    published_at: str = ""
    alternate_published_at: str = ""
    guid: str = ""
    title: str = ""
    link: str = ""
    summary: str = ""
    service: str = ""
    identifier: str = ""

    @classmethod
    def from_feedparser(cls, entry: Any, service: str = "") -> "FeedEntry":
        """
        Create a FeedEntry from a feedparser entry.

        The identifier is left empty; projectors compute it since the
        fields used differ per provider.

        Parameters
        ----------
        entry : Any
            A feedparser entry object.
        service : str
            Name of the source feed.

        Returns
        -------
        FeedEntry
            Normalized entry instance.
        """
        published = entry.get("published") or entry.get("updated") or ""
        parsed = entry.get("published_parsed") or entry.get("updated_parsed")

        return cls(
            published_at=published,
            alternate_published_at=_iso_date(parsed),
            guid=entry.get("id", "") or "",
            title=entry.get("title", "") or "",
            link=entry.get("link", "") or "",
            summary=entry.get("summary", "") or "",
            service=service,
        )

    def to_dict(self) -> dict[str, str]:
        """Serialize the entry for a dedup marker."""
        return asdict(self)


@dataclass
class FeedProjection:
    """
    Result of projecting a parsed feed.

    Attributes
    ----------
    entries : list[FeedEntry]
        Entries in feed order, identifiers set.
    next_check_minutes : float | None
        Provider-suggested delay before the next poll.
    """

    entries: list[FeedEntry] = field(default_factory=list)
    next_check_minutes: float | None = None


Projector = Callable[[str, Any], FeedProjection]


def _suggested_interval(parsed: Any) -> float | None:
    """Read the RSS ``<ttl>`` of a feed, in minutes."""
    feed = parsed.get("feed", {}) or {}
    ttl = feed.get("ttl")
    if ttl in (None, ""):
        return None
    try:
        minutes = float(ttl)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric feed ttl: %r", ttl)
        return None
    return minutes if minutes > 0 else None


def project_entries(service: str, parsed: Any) -> FeedProjection:
    """
    Project a feed keyed on the entry's dates and id.

    Parameters
    ----------
    service : str
        Name of the source feed.
    parsed : Any
        feedparser result.

    Returns
    -------
    FeedProjection
        Entries with identifiers, no interval suggestion.
    """
    entries = []
    for raw in parsed.get("entries", []):
        entry = FeedEntry.from_feedparser(raw, service)
        entry.identifier = consistent_id(
            entry.published_at, entry.alternate_published_at, entry.guid
        )
        entries.append(entry)
    return FeedProjection(entries=entries)


def project_entries_with_ttl(service: str, parsed: Any) -> FeedProjection:
    """Project a feed and honour its ``<ttl>`` as the next poll interval."""
    projection = project_entries(service, parsed)
    projection.next_check_minutes = _suggested_interval(parsed)
    return projection


def project_generic(service: str, parsed: Any) -> FeedProjection:
    """
    Project a feed whose entries may lack an id.

    Falls back to the entry link so entries without id stay distinct.
    """
    entries = []
    for raw in parsed.get("entries", []):
        entry = FeedEntry.from_feedparser(raw, service)
        entry.identifier = consistent_id(
            entry.published_at,
            entry.alternate_published_at,
            entry.guid or entry.link,
        )
        entries.append(entry)
    return FeedProjection(entries=entries)


SERVICE_PROJECTORS: dict[str, Projector] = {
    "aws": project_entries_with_ttl,
    "gcp": project_entries,
}


def build_projectors(services: Iterable[str]) -> dict[str, Projector]:
    """
    Pick a projector for each configured service.

    Parameters
    ----------
    services : Iterable[str]
        Configured feed names.

    Returns
    -------
    dict[str, Projector]
        Feed name to projector, generic projector for unknown providers.
    """
    return {
        name: SERVICE_PROJECTORS.get(name.lower(), project_generic)
        for name in services
    }
