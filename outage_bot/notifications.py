"""
Per-service subscriber registry.

Channel members subscribe to a service to be named in its announcements.
The registry lives in memory and is mirrored to a JSON file after every
change.
"""

import asyncio
import json
import logging
import os
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

ALL_SERVICES = "all"


class UnknownServiceError(LookupError):
    """Raised when a service name is neither configured nor 'all'."""

    def __init__(self, service: str):
        super().__init__(f"No such service: {service}")
        self.service = service


class NotificationRegistry:
    """
    Subscriber sets keyed by lower-cased service name.

    Subscribers are nicknames and match case-insensitively; the casing of
    the latest subscription is kept for display.

    Writes are whole-file rewrites with no locking; a single process is
    expected to own the file.
    """

    def __init__(self, path: str | Path, services: Iterable[str]):
        """
        Initialize the registry.

        Parameters
        ----------
        path : str | Path
            JSON file mirroring the registry.
        services : Iterable[str]
            Configured feed names.
        """
        self.path = Path(path)
        self._services = [name.lower() for name in services]
        self._subscribers: dict[str, set[str]] = {name: set() for name in self._services}

    @property
    def services(self) -> list[str]:
        """Configured service names, lower-cased, in configuration order."""
        return list(self._services)

    async def load(self) -> None:
        """
        Load subscribers from the registry file, if it exists.

        Raises
        ------
        ValueError
            If the file is not a JSON object of lists.
        """
        if not await asyncio.to_thread(self.path.exists):
            logger.info("No notification file at %s, starting empty", self.path)
            return

        raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid notification file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Invalid notification file {self.path}: expected an object")

        for service, names in data.items():
            key = service.lower()
            if key not in self._subscribers:
                logger.warning("Dropping subscribers of unconfigured service '%s'", service)
                continue
            if not isinstance(names, list):
                raise ValueError(
                    f"Invalid notification file {self.path}: '{service}' is not a list"
                )
            self._subscribers[key] = {str(name) for name in names}

        logger.info(
            "Loaded %d subscription(s) from %s",
            sum(len(names) for names in self._subscribers.values()),
            self.path,
        )

    def subscribers(self, service: str) -> set[str]:
        """
        Return a copy of a service's subscribers.

        Parameters
        ----------
        service : str
            Service name, any case.

        Returns
        -------
        set[str]
            Subscriber names, empty for unknown services.
        """
        return set(self._subscribers.get(service.lower(), ()))

    def _resolve(self, service: str) -> list[str]:
        key = service.lower()
        if key == ALL_SERVICES:
            return self.services
        if key not in self._subscribers:
            raise UnknownServiceError(service)
        return [key]

    async def subscribe(self, service: str, subscriber: str) -> list[str]:
        """
        Add a subscriber to one service or to all of them.

        Parameters
        ----------
        service : str
            Service name or 'all'.
        subscriber : str
            Name of the channel member.

        Returns
        -------
        list[str]
            Affected service names.

        Raises
        ------
        UnknownServiceError
            If the service is not configured.
        """
        targets = self._resolve(service)
        for key in targets:
            self._discard(key, subscriber)
            self._subscribers[key].add(subscriber)
        await self.save()
        logger.info("Subscribed %s to %s", subscriber, ", ".join(targets))
        return targets

    async def unsubscribe(self, service: str, subscriber: str) -> list[str]:
        """
        Remove a subscriber from one service or from all of them.

        Parameters
        ----------
        service : str
            Service name or 'all'.
        subscriber : str
            Name of the channel member.

        Returns
        -------
        list[str]
            Affected service names.

        Raises
        ------
        UnknownServiceError
            If the service is not configured.
        """
        targets = self._resolve(service)
        for key in targets:
            self._discard(key, subscriber)
        await self.save()
        logger.info("Unsubscribed %s from %s", subscriber, ", ".join(targets))
        return targets

    def _discard(self, key: str, subscriber: str) -> None:
        folded = subscriber.lower()
        self._subscribers[key] = {
            name for name in self._subscribers[key] if name.lower() != folded
        }

    def list_subscribers(self, service: str) -> list[str]:
        """
        Describe the subscribers of one service or of all of them.

        Parameters
        ----------
        service : str
            Service name or 'all'.

        Returns
        -------
        list[str]
            A single comma-joined line for one service, one
            ``service: names`` line per service for 'all'.

        Raises
        ------
        UnknownServiceError
            If the service is not configured.
        """
        targets = self._resolve(service)
        if service.lower() != ALL_SERVICES:
            return [self._format_names(targets[0])]
        return [f"{key}: {self._format_names(key)}" for key in targets]

    def _format_names(self, key: str) -> str:
        names = sorted(self._subscribers[key])
        return ", ".join(names) if names else "(none)"

    def to_dict(self) -> dict[str, list[str]]:
        """Serialize the registry, lists sorted."""
        return {key: sorted(names) for key, names in self._subscribers.items()}

    async def save(self) -> None:
        """Rewrite the registry file in one replace."""
        await asyncio.to_thread(self._write, json.dumps(self.to_dict(), indent=2))

    def _write(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, self.path)
        logger.debug("Notification file written: %s", self.path)
