"""
Main entry point for Outage Bot.

Runs the main async loop that polls status feeds, announces new events
and answers channel commands.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import coloredlogs

from outage_bot.client import ChatClient, ConnectionSpec
from outage_bot.commands import CommandProcessor, build_commands
from outage_bot.config import load_config
from outage_bot.connection import build_connection_spec, connect_client
from outage_bot.entries import build_projectors
from outage_bot.heartbeat import Heartbeat
from outage_bot.notifications import NotificationRegistry
from outage_bot.renderers import build_renderers
from outage_bot.rss_parser import FeedParser
from outage_bot.scheduler import FeedWatcher
from outage_bot.stats import Stats
from outage_bot.storage import AnnouncementCache

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class OutageBot:
    """
    Main Outage Bot application.

    Coordinates feed polling, storage, the chat connection and commands.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the bot.

        Parameters
        ----------
        config_path : str | Path
            Path to the YAML configuration file.
        """
        self.config = load_config(config_path)
        self.stats = Stats()
        self.cache: AnnouncementCache | None = None
        self.registry: NotificationRegistry | None = None
        self.parser: FeedParser | None = None
        self.client: ChatClient | None = None
        self.heartbeat: Heartbeat | None = None
        self.commands: CommandProcessor | None = None
        self.watchers: list[FeedWatcher] = []
        self._stop = asyncio.Event()
        self._stop_lock = asyncio.Lock()
        self._stopped = False
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._spec: ConnectionSpec | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._connection_lost = False

    async def start(self) -> None:
        """Start the bot and run until stopped."""
        logger.info("Starting Outage Bot")
        defaults = self.config.defaults
        irc = self.config.irc

        self.cache = AnnouncementCache(defaults.cache_dir)
        self.cache.initialize()

        self.registry = NotificationRegistry(
            self.config.notifications.path, self.config.feeds
        )
        await self.registry.load()

        self._spec = build_connection_spec(irc.server)

        self.parser = FeedParser(
            timeout=defaults.request_timeout,
            max_retries=defaults.max_retries,
            user_agent=defaults.user_agent,
            proxy_url=defaults.proxy,
        )

        self.client = await connect_client(
            self._spec, timeout=irc.register_timeout_seconds
        )
        self.client.on("close", self._on_close)
        await self.client.join(irc.channel)
        logger.info("Joined %s", irc.channel)

        self.commands = CommandProcessor(
            self.client,
            build_commands(self.stats, self.config.feeds, self.registry, irc.command_prefix),
            prefix=irc.command_prefix,
            flood_protect_ms=irc.commands.flood_protect_wait_ms,
            private_commands=irc.commands.private,
            number_replies=irc.commands.number_replies,
        )
        self.client.on("message", self.commands.handle)

        self._running = True

        self.heartbeat = Heartbeat(
            self.client, irc.ping_interval_seconds, stats=self.stats
        )
        self._tasks.append(asyncio.create_task(self.heartbeat.run(self._stop)))

        projectors = build_projectors(self.config.feeds)
        renderers = build_renderers(self.config.feeds)
        for name, url in self.config.feeds.items():
            watcher = FeedWatcher(
                name,
                url,
                parser=self.parser,
                projector=projectors[name],
                renderer=renderers[name],
                cache=self.cache,
                registry=self.registry,
                client=self.client,
                channel=irc.channel,
                stats=self.stats,
                default_interval_minutes=defaults.polling_frequency_minutes,
                flood_protect_ms=defaults.announce_flood_protect_ms,
                silent_first_run=defaults.silent_first_run,
            )
            self.watchers.append(watcher)
            self._tasks.append(asyncio.create_task(watcher.run(self._stop)))
            logger.info("Started watching feed: %s", name)

        logger.info("Outage Bot started with %d feed(s)", len(self.watchers))

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Bot tasks cancelled")

        if self._connection_lost:
            raise ConnectionError(
                f"Lost connection to {irc.server.host} and could not reconnect"
            )

    def _on_close(self) -> None:
        """Start reconnecting when the connection drops outside shutdown."""
        if self._stop.is_set():
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        logger.warning("Lost connection to %s", self.config.irc.server.host)
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        """
        Reconnect and rejoin the channel, backing off between attempts.

        Gives up after ``irc.reconnect_max_retries`` failed attempts and
        stops the bot, which then exits with an error.
        """
        irc = self.config.irc
        delay = irc.reconnect_wait_seconds
        attempt = 0

        while True:
            if irc.reconnect_max_retries is not None and attempt >= irc.reconnect_max_retries:
                logger.error("Giving up after %d reconnect attempt(s)", attempt)
                self._connection_lost = True
                self._stop.set()
                return

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except TimeoutError:
                pass
            else:
                return

            attempt += 1
            logger.info("Reconnecting to %s (attempt %d)", irc.server.host, attempt)
            try:
                await connect_client(
                    self._spec, client=self.client, timeout=irc.register_timeout_seconds
                )
                await self.client.join(irc.channel)
            except (OSError, TimeoutError) as e:
                logger.warning("Reconnect attempt %d failed: %s", attempt, e)
                delay = min(delay * 2, irc.reconnect_max_wait_seconds)
                continue

            logger.info("Reconnected, rejoined %s", irc.channel)
            return

    async def stop(self) -> None:
        """Leave the channel and stop the bot."""
        async with self._stop_lock:
            if self._stopped:
                return
            await self._shutdown()
            self._stopped = True

    async def _shutdown(self) -> None:
        logger.info("Stopping Outage Bot")
        self._stop.set()

        if self.client and self._running:
            try:
                await self.client.part(self.config.irc.channel, "shutting down")
                await asyncio.sleep(self.config.defaults.shutdown_grace_seconds)
            except ConnectionError as e:
                logger.warning("Could not leave %s: %s", self.config.irc.channel, e)
        self._running = False

        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.parser:
            await self.parser.close()
        if self.client:
            await self.client.close()

        logger.info("Outage Bot stopped (%d event(s) announced)", self.stats.announced)


def setup_logging(verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    verbose : bool
        If True, set log level to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO

    coloredlogs.install(
        level=level,
        fmt=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def add_file_logging(log_path: str | Path, process_name: str = "outage-bot") -> Path:
    """
    Also write logs to ``<log_path>/<process_name>.log``.

    Parameters
    ----------
    log_path : str | Path
        Log directory, created if missing.
    process_name : str
        Log file name without extension.

    Returns
    -------
    Path
        Path of the log file.
    """
    log_dir = Path(log_path)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{process_name}.log"

    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logging.getLogger().addHandler(handler)
    return log_file


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Cloud status feed announcer for IRC",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (also enabled by the DEBUG environment variable)",
    )
    args = parser.parse_args()

    setup_logging(args.verbose or bool(os.environ.get("DEBUG")))

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("Configuration file not found: %s", config_path)
        sys.exit(1)

    try:
        bot = OutageBot(config_path)
    except Exception as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    log_file = add_file_logging(bot.config.defaults.log_path)
    logger.info("Logging to %s", log_file)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(bot.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    exit_code = 0
    try:
        loop.run_until_complete(bot.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error("Fatal error: %s", e)
        exit_code = 1
    finally:
        loop.run_until_complete(bot.stop())
        loop.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
