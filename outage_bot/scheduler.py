"""
Per-feed polling loop.

Each configured feed gets its own FeedWatcher task: fetch, skip already
announced entries, mark and announce the new ones, then sleep for the
interval the feed suggests or the configured default.
"""

import asyncio
import logging
from functools import partial

from outage_bot.client import ChatClient
from outage_bot.entries import FeedEntry, Projector
from outage_bot.flood import flood_protect
from outage_bot.notifications import NotificationRegistry
from outage_bot.renderers import MAX_LINE_BYTES, Renderer, truncate_bytes
from outage_bot.rss_parser import FeedParser
from outage_bot.stats import Stats
from outage_bot.storage import AnnouncementCache

logger = logging.getLogger(__name__)

# Part of an announcement kept when a long subscriber list needs the room
MIN_BODY_BYTES = 120


class FeedWatcher:
    """
    Polls one feed and announces its new entries in order.

    Entries are marked as announced before their announcement is queued:
    a crash or send failure may lose an announcement but never repeats one.
    """

    def __init__(
        self,
        name: str,
        url: str,
        *,
        parser: FeedParser,
        projector: Projector,
        renderer: Renderer,
        cache: AnnouncementCache,
        registry: NotificationRegistry,
        client: ChatClient,
        channel: str,
        stats: Stats,
        default_interval_minutes: float,
        flood_protect_ms: float,
        silent_first_run: bool = False,
    ):
        """
        Initialize the watcher.

        Parameters
        ----------
        name : str
            Service name of the feed.
        url : str
            Feed URL.
        parser : FeedParser
            Feed fetcher.
        projector : Projector
            Turns the parsed feed into identified entries.
        renderer : Renderer
            Formats an entry as an announcement line.
        cache : AnnouncementCache
            Dedup markers.
        registry : NotificationRegistry
            Subscribers named in announcements.
        client : ChatClient
            Connected chat client.
        channel : str
            Channel receiving announcements.
        stats : Stats
            Counters, ``announced`` is incremented per announcement.
        default_interval_minutes : float
            Interval used when the feed suggests none or fails.
        flood_protect_ms : float
            Delay between two announcements.
        silent_first_run : bool
            Mark the entries of the first cycle without announcing them.
        """
        self.name = name
        self.url = url
        self.parser = parser
        self.projector = projector
        self.renderer = renderer
        self.cache = cache
        self.registry = registry
        self.client = client
        self.channel = channel
        self.stats = stats
        self.default_interval_minutes = default_interval_minutes
        self.flood_protect_ms = flood_protect_ms
        self.silent_first_run = silent_first_run

    async def run(self, stop: asyncio.Event) -> None:
        """
        Poll until ``stop`` is set.

        Parameters
        ----------
        stop : asyncio.Event
            Shutdown signal, checked between cycles and while sleeping.
        """
        silent = self.silent_first_run

        while not stop.is_set():
            interval = await self.check(silent=silent)
            silent = False

            logger.info("%s: next check in %g minute(s)", self.name, interval)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval * 60)
            except TimeoutError:
                pass

    async def check(self, silent: bool = False) -> float:
        """
        Run one poll cycle.

        Parameters
        ----------
        silent : bool
            Mark new entries without announcing them.

        Returns
        -------
        float
            Minutes until the next cycle.
        """
        logger.debug("Checking feed: %s", self.name)

        try:
            parsed = await self.parser.fetch_feed(self.name, self.url)
            projection = self.projector(self.name, parsed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Failed to check feed '%s': %s", self.name, e)
            return self.default_interval_minutes

        interval = projection.next_check_minutes or self.default_interval_minutes
        logger.info(
            "%s: %d item(s), %d already marked, suggested interval %g minute(s)",
            self.name,
            len(projection.entries),
            await asyncio.to_thread(self.cache.count, self.name),
            interval,
        )

        actions = []
        for entry in projection.entries:
            if await self.cache.has_announced(self.name, entry.identifier):
                logger.debug("%s: already announced %s", self.name, entry.identifier)
                continue

            await self.cache.mark_announced(self.name, entry.identifier, entry)
            if silent:
                logger.debug("%s: silently marked %s", self.name, entry.identifier)
                continue

            actions.append(partial(self._announce, entry))

        if actions:
            logger.info("%s: announcing %d new item(s)", self.name, len(actions))
            try:
                await flood_protect(self.flood_protect_ms, actions)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("%s: announcement batch aborted: %s", self.name, e)

        return interval

    def render(self, entry: FeedEntry) -> str:
        """
        Format an announcement, naming the service's subscribers.

        Parameters
        ----------
        entry : FeedEntry
            Entry to announce.

        Returns
        -------
        str
            Announcement line, at most ``MAX_LINE_BYTES`` UTF-8 bytes.
        """
        line = self.renderer(entry)
        notifiees = sorted(self.registry.subscribers(self.name))
        if notifiees:
            suffix = f" (cc: {', '.join(notifiees)})"
            room = MAX_LINE_BYTES - len(suffix.encode("utf-8"))
            line = truncate_bytes(line, max(room, MIN_BODY_BYTES)) + suffix
        return truncate_bytes(line, MAX_LINE_BYTES)

    async def _announce(self, entry: FeedEntry) -> None:
        await self.client.say(self.channel, self.render(entry))
        self.stats.announced += 1
        logger.info("%s: announced %s", self.name, entry.title[:50])
