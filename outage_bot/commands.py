"""
Chat command handling.

Parses messages addressed to the bot, runs the matching command and sends
its reply through flood protection.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from functools import partial

from outage_bot.client import ChatClient, Message
from outage_bot.flood import flood_protect
from outage_bot.notifications import NotificationRegistry, UnknownServiceError
from outage_bot.stats import Stats

logger = logging.getLogger(__name__)

ACKNOWLEDGEMENT = "ok"


class UsageError(Exception):
    """Raised by a command to have its help shown instead of a reply."""


@dataclass(frozen=True)
class CommandContext:
    """
    Where a command came from.

    Attributes
    ----------
    sender : str
        Nickname of the invoking user.
    target : str
        Channel the command was sent to, or the bot's nickname.
    private : bool
        Whether the command came as a direct message.
    """

    sender: str
    target: str
    private: bool


class Command:
    """
    Base class for chat commands.

    Subclasses set the class attributes and implement ``run``.
    """

    name = ""
    summary = ""
    usage = ""
    subcommands: dict[str, str] = {}

    async def run(self, args: list[str], context: CommandContext) -> list[str] | None:
        """
        Run the command.

        Returns
        -------
        list[str] | None
            Reply lines, or None for a plain acknowledgement.

        Raises
        ------
        UsageError
            If the arguments do not make sense.
        """
        raise NotImplementedError

    def help_lines(self) -> list[str]:
        """Usage, summary and subcommands of the command."""
        lines = [f"{self.usage or self.name}: {self.summary}"]
        lines.extend(f"  {name}: {text}" for name, text in self.subcommands.items())
        return lines


class UptimeCommand(Command):
    name = "uptime"
    summary = "time since start, number of announcements and server lag"
    usage = "uptime"

    def __init__(self, stats: Stats):
        self.stats = stats

    async def run(self, args: list[str], context: CommandContext) -> list[str] | None:
        started = self.stats.started_at.strftime("%Y-%m-%d %H:%M:%S UTC")
        reply = (
            f"up {self.stats.uptime()} (since {started}), "
            f"{self.stats.announced} event(s) announced"
        )
        if self.stats.last_latency_ms is not None:
            reply += f", lag {self.stats.last_latency_ms:.0f} ms"
        return [reply]


class FeedsCommand(Command):
    name = "feeds"
    summary = "list the watched feeds"
    usage = "feeds"

    def __init__(self, feeds: dict[str, str]):
        self.feeds = feeds

    async def run(self, args: list[str], context: CommandContext) -> list[str] | None:
        return [f"{name}: {url}" for name, url in self.feeds.items()]


class NotifyCommand(Command):
    name = "notify"
    summary = "get named in the announcements of a service"
    usage = "notify <add|delete|list> <service|all>"
    subcommands = {
        "add": "name me in announcements of <service>, or of every service",
        "delete": "stop naming me in announcements of <service>",
        "list": "show who is named in announcements of <service>",
    }

    def __init__(self, registry: NotificationRegistry):
        self.registry = registry

    async def run(self, args: list[str], context: CommandContext) -> list[str] | None:
        if len(args) != 2 or args[0].lower() not in self.subcommands:
            raise UsageError()

        action, service = args[0].lower(), args[1]
        try:
            if action == "add":
                await self.registry.subscribe(service, context.sender)
            elif action == "delete":
                await self.registry.unsubscribe(service, context.sender)
            else:
                return self.registry.list_subscribers(service)
        except UnknownServiceError as e:
            return [f"{e}. Known services: {', '.join(self.registry.services)}"]
        return None


class HelpCommand(Command):
    name = "help"
    summary = "list commands, or show how to use one"
    usage = "help [command]"

    def __init__(self, commands: dict[str, Command], prefix: str):
        self.commands = commands
        self.prefix = prefix

    async def run(self, args: list[str], context: CommandContext) -> list[str] | None:
        if not args:
            return [
                f"commands: {', '.join(sorted(self.commands))}",
                f"in the channel, start with '{self.prefix}'. "
                "Use 'help <command>' for details.",
            ]

        command = self.commands.get(args[0].lower())
        if command is None:
            return [f"no such command: {args[0]}"]
        return command.help_lines()


def build_commands(
    stats: Stats,
    feeds: dict[str, str],
    registry: NotificationRegistry,
    prefix: str,
) -> dict[str, Command]:
    """
    Create the built-in commands.

    Returns
    -------
    dict[str, Command]
        Command name to command.
    """
    commands: dict[str, Command] = {}
    for command in (
        UptimeCommand(stats),
        FeedsCommand(feeds),
        NotifyCommand(registry),
        HelpCommand(commands, prefix),
    ):
        commands[command.name] = command
    return commands


class CommandProcessor:
    """
    Dispatches chat messages to commands.

    A direct message is a command when its first word names one. A channel
    message must start with the command prefix, followed by the command.
    """

    def __init__(
        self,
        client: ChatClient,
        commands: dict[str, Command],
        *,
        prefix: str,
        flood_protect_ms: float,
        private_commands: Iterable[str] = (),
        number_replies: bool = False,
    ):
        """
        Initialize the processor.

        Parameters
        ----------
        client : ChatClient
            Connected chat client.
        commands : dict[str, Command]
            Command name to command.
        prefix : str
            Word introducing a command in the channel.
        flood_protect_ms : float
            Delay between two reply lines.
        private_commands : Iterable[str]
            Commands always answered by direct message.
        number_replies : bool
            Suffix multi-line direct message replies with ``(i/n)``.
        """
        self.client = client
        self.commands = commands
        self.prefix = prefix
        self.flood_protect_ms = flood_protect_ms
        self.private_commands = {name.lower() for name in private_commands}
        self.number_replies = number_replies

    def is_private(self, message: Message) -> bool:
        """Whether a message was sent to the bot directly."""
        return message.target.lower() == self.client.nick.lower()

    def parse(self, message: Message) -> tuple[str, list[str]] | None:
        """
        Extract the command name and arguments of a message.

        Parameters
        ----------
        message : Message
            Inbound message.

        Returns
        -------
        tuple[str, list[str]] | None
            Lower-cased command name and arguments, None when the message
            is not addressed to the bot.
        """
        words = message.text.split()

        if not self.is_private(message):
            if not words or words[0].lower() != self.prefix.lower():
                return None
            words = words[1:]

        if not words:
            return None
        return words[0].lower(), words[1:]

    async def handle(self, message: Message) -> None:
        """
        Run the command in a message, if any, and send the reply.

        Parameters
        ----------
        message : Message
            Inbound message.
        """
        parsed = self.parse(message)
        if parsed is None:
            return

        name, args = parsed
        command = self.commands.get(name)
        if command is None:
            logger.debug("Ignoring unknown command '%s' from %s", name, message.sender)
            return

        private = self.is_private(message)
        context = CommandContext(sender=message.sender, target=message.target, private=private)
        logger.info(
            "Command '%s' from %s%s",
            name,
            message.sender,
            "" if private else f" in {message.target}",
        )

        try:
            lines = await command.run(args, context)
        except UsageError:
            lines = command.help_lines()
        except Exception as e:
            logger.exception("Command '%s' failed", name)
            lines = [f"error running {name}: {e}"]

        if not lines:
            lines = [ACKNOWLEDGEMENT]

        await self.reply(message, name, lines)

    async def reply(self, message: Message, name: str, lines: list[str]) -> None:
        """
        Send reply lines to the right place.

        Private commands are answered by direct message. In the channel,
        the first line names the user being answered.

        Parameters
        ----------
        message : Message
            Message the reply answers.
        name : str
            Command name.
        lines : list[str]
            Reply lines.
        """
        private = self.is_private(message) or name in self.private_commands
        target = message.sender if private else message.target

        lines = list(lines)
        if private:
            if self.number_replies and len(lines) > 1:
                total = len(lines)
                lines = [f"{line} ({index}/{total})" for index, line in enumerate(lines, 1)]
        else:
            lines[0] = f"{message.sender}: {lines[0]}"

        await flood_protect(
            self.flood_protect_ms,
            [partial(self.client.say, target, line) for line in lines],
        )
