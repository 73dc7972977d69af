"""
Connection heartbeat.

Periodically pings the server with a process-specific tag and measures
the round trip from the echoed timestamp.
"""

import asyncio
import logging
import os
import time

from outage_bot.client import ChatClient
from outage_bot.stats import Stats

logger = logging.getLogger(__name__)


class Heartbeat:
    """
    Liveness probe for the chat connection.

    Attributes
    ----------
    tag : str
        Prefix identifying this process's probes.
    last_latency_ms : float | None
        Round trip of the last answered probe.
    """

    def __init__(
        self,
        client: ChatClient,
        interval_seconds: float,
        tag: str | None = None,
        stats: Stats | None = None,
    ):
        """
        Initialize the heartbeat.

        Parameters
        ----------
        client : ChatClient
            Connected chat client.
        interval_seconds : float
            Delay between probes.
        tag : str | None
            Probe tag, ``outage-bot-<pid>`` by default.
        stats : Stats | None
            Counters receiving the measured latency.
        """
        self.client = client
        self.interval_seconds = interval_seconds
        self.tag = tag or f"outage-bot-{os.getpid()}"
        self.last_latency_ms: float | None = None
        self.stats = stats
        self._installed = False
        self._awaiting_pong = False

    def install(self) -> None:
        """Register the pong listener, once."""
        if self._installed:
            return
        self.client.on("pong", self._on_pong)
        self._installed = True
        logger.debug("Heartbeat listener installed with tag %s", self.tag)

    def _on_pong(self, payload: str) -> None:
        tag, _, sent = payload.partition(":")
        if tag != self.tag:
            return

        try:
            sent_ms = float(sent)
        except ValueError:
            logger.warning("Malformed heartbeat reply: %s", payload)
            return

        self._awaiting_pong = False
        self.last_latency_ms = time.monotonic() * 1000 - sent_ms
        if self.stats is not None:
            self.stats.last_latency_ms = self.last_latency_ms
        logger.debug("Heartbeat latency: %.1f ms", self.last_latency_ms)

    async def probe(self) -> None:
        """Send one tagged PING."""
        if self._awaiting_pong:
            logger.warning("Previous heartbeat got no reply")
        self._awaiting_pong = True
        await self.client.ping(f"{self.tag}:{time.monotonic() * 1000:.0f}")

    async def run(self, stop: asyncio.Event) -> None:
        """
        Probe every ``interval_seconds`` until ``stop`` is set.

        Parameters
        ----------
        stop : asyncio.Event
            Shutdown signal.
        """
        self.install()

        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                pass
            else:
                break

            try:
                await self.probe()
            except ConnectionError as e:
                logger.error("Heartbeat failed: %s", e)
