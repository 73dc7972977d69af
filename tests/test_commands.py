"""
Unit tests for chat command handling.

Tests cover message parsing, reply routing and the built-in commands.
"""

from unittest.mock import MagicMock

import pytest

from outage_bot.client import Message
from outage_bot.commands import (
    Command,
    CommandContext,
    CommandProcessor,
    UsageError,
    build_commands,
)
from outage_bot.notifications import NotificationRegistry
from outage_bot.stats import Stats


FEEDS = {
    "aws": "https://status.aws.amazon.com/rss/all.rss",
    "gcp": "https://status.cloud.google.com/en/feed.atom",
}


class BrokenCommand(Command):
    name = "broken"
    summary = "always fails"

    async def run(self, args: list[str], context: CommandContext) -> list[str] | None:
        raise RuntimeError("kaput")


@pytest.fixture
def processor(
    mock_client: MagicMock, registry: NotificationRegistry, stats: Stats
) -> CommandProcessor:
    """Create a processor with the built-in commands and no flood spacing."""
    commands = build_commands(stats, FEEDS, registry, "!outage")
    return CommandProcessor(
        mock_client,
        commands,
        prefix="!outage",
        flood_protect_ms=0,
        private_commands=["help"],
    )


def channel(text: str, sender: str = "alice") -> Message:
    return Message(sender=sender, target="#outages", text=text)


def direct(text: str, sender: str = "alice") -> Message:
    return Message(sender=sender, target="outage-bot", text=text)


def sent(client: MagicMock) -> list[tuple[str, str]]:
    return [(call.args[0], call.args[1]) for call in client.say.await_args_list]


class TestParse:
    """Tests for recognizing commands."""

    def test_channel_and_direct_parse_alike(self, processor: CommandProcessor) -> None:
        """Test a prefixed channel message and a direct message give the same command."""
        in_channel = processor.parse(channel("!outage notify add svcX"))
        in_private = processor.parse(direct("notify add svcX"))

        assert in_channel == ("notify", ["add", "svcX"])
        assert in_private == in_channel

    def test_prefix_case_insensitive(self, processor: CommandProcessor) -> None:
        """Test the prefix and command name ignore case."""
        assert processor.parse(channel("!OUTAGE Uptime")) == ("uptime", [])

    def test_channel_chatter_ignored(self, processor: CommandProcessor) -> None:
        """Test channel messages without the prefix are not commands."""
        assert processor.parse(channel("is aws down again?")) is None

    def test_prefix_alone_ignored(self, processor: CommandProcessor) -> None:
        """Test the prefix with no command is not a command."""
        assert processor.parse(channel("!outage")) is None

    def test_direct_nick_case_insensitive(self, processor: CommandProcessor) -> None:
        """Test direct messages are recognized whatever the nick case."""
        message = Message(sender="alice", target="Outage-Bot", text="uptime")

        assert processor.is_private(message) is True


class TestHandle:
    """Tests for running commands and routing replies."""

    async def test_unknown_command_ignored(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test unknown commands get no reply."""
        await processor.handle(channel("!outage frobnicate"))
        await processor.handle(direct("frobnicate"))

        mock_client.say.assert_not_awaited()

    async def test_channel_reply_names_sender(
        self,
        processor: CommandProcessor,
        mock_client: MagicMock,
        registry: NotificationRegistry,
    ) -> None:
        """Test a channel command is acknowledged in the channel, addressed to the sender."""
        await processor.handle(channel("!outage notify add aws"))

        assert sent(mock_client) == [("#outages", "alice: ok")]
        assert registry.subscribers("aws") == {"alice"}

    async def test_direct_reply_to_sender(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test a direct message is answered to the sender without name prefix."""
        await processor.handle(direct("notify add aws"))

        assert sent(mock_client) == [("alice", "ok")]

    async def test_private_command_answered_privately(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test help asked in the channel is answered by direct message."""
        await processor.handle(channel("!outage help"))

        replies = sent(mock_client)
        assert [target for target, _ in replies] == ["alice", "alice"]
        assert replies[0][1] == "commands: feeds, help, notify, uptime"
        assert "!outage" in replies[1][1]

    async def test_help_for_command(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test help for one command lists its subcommands."""
        await processor.handle(direct("help notify"))

        lines = [text for _, text in sent(mock_client)]
        assert lines[0].startswith("notify <add|delete|list> <service|all>: ")
        assert [line.split(":")[0].strip() for line in lines[1:]] == [
            "add",
            "delete",
            "list",
        ]

    async def test_help_unknown_command(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test help for an unknown command says so."""
        await processor.handle(direct("help frobnicate"))

        assert sent(mock_client) == [("alice", "no such command: frobnicate")]

    async def test_bad_usage_shows_help(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test wrong arguments reply with the command's help."""
        await processor.handle(channel("!outage notify"))

        replies = sent(mock_client)
        assert replies[0] == (
            "#outages",
            "alice: notify <add|delete|list> <service|all>: "
            "get named in the announcements of a service",
        )
        assert len(replies) == 4

    async def test_unknown_service_lists_known(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test subscribing to an unknown service names the known ones."""
        await processor.handle(channel("!outage notify add azure"))

        assert sent(mock_client) == [
            ("#outages", "alice: No such service: azure. Known services: aws, gcp")
        ]

    async def test_list_all(
        self,
        processor: CommandProcessor,
        mock_client: MagicMock,
        registry: NotificationRegistry,
    ) -> None:
        """Test listing every service gives one line per service."""
        await registry.subscribe("aws", "bob")

        await processor.handle(direct("notify list all"))

        assert sent(mock_client) == [("alice", "aws: bob"), ("alice", "gcp: (none)")]

    async def test_notify_delete(
        self,
        processor: CommandProcessor,
        mock_client: MagicMock,
        registry: NotificationRegistry,
    ) -> None:
        """Test unsubscribing through the command."""
        await registry.subscribe("all", "alice")

        await processor.handle(direct("notify delete gcp"))

        assert registry.subscribers("gcp") == set()
        assert registry.subscribers("aws") == {"alice"}

    async def test_notify_delete_ignores_nick_case(
        self,
        processor: CommandProcessor,
        mock_client: MagicMock,
        registry: NotificationRegistry,
    ) -> None:
        """Test a subscriber is removed whatever the casing of their nick."""
        await registry.subscribe("aws", "Bob")

        await processor.handle(channel("!outage notify delete aws", sender="bob"))

        assert registry.subscribers("aws") == set()
        assert sent(mock_client) == [("#outages", "bob: ok")]

    async def test_numbered_replies(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test multi-line direct replies are numbered when enabled."""
        processor.number_replies = True

        await processor.handle(direct("feeds"))

        assert sent(mock_client) == [
            ("alice", f"aws: {FEEDS['aws']} (1/2)"),
            ("alice", f"gcp: {FEEDS['gcp']} (2/2)"),
        ]

    async def test_single_line_not_numbered(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test single-line replies carry no counter."""
        processor.number_replies = True

        await processor.handle(direct("uptime"))

        assert not sent(mock_client)[0][1].endswith("(1/1)")

    async def test_command_failure_reported(
        self, processor: CommandProcessor, mock_client: MagicMock
    ) -> None:
        """Test a failing command replies with the error."""
        processor.commands["broken"] = BrokenCommand()

        await processor.handle(channel("!outage broken"))

        assert sent(mock_client) == [("#outages", "alice: error running broken: kaput")]


class TestBuiltins:
    """Tests for the built-in commands."""

    async def test_uptime(
        self, processor: CommandProcessor, mock_client: MagicMock, stats: Stats
    ) -> None:
        """Test uptime reports elapsed time and announcement count."""
        stats.announced = 3

        await processor.handle(channel("!outage uptime"))

        target, text = sent(mock_client)[0]
        assert target == "#outages"
        assert text.startswith("alice: up 0:00:0")
        assert text.endswith("3 event(s) announced")

    async def test_uptime_shows_lag(
        self, processor: CommandProcessor, mock_client: MagicMock, stats: Stats
    ) -> None:
        """Test uptime includes the last heartbeat round trip once measured."""
        stats.last_latency_ms = 42.4

        await processor.handle(channel("!outage uptime"))

        assert sent(mock_client)[0][1].endswith("0 event(s) announced, lag 42 ms")

    async def test_feeds(self, processor: CommandProcessor, mock_client: MagicMock) -> None:
        """Test feeds lists every watched feed."""
        await processor.handle(channel("!outage feeds"))

        assert sent(mock_client) == [
            ("#outages", f"alice: aws: {FEEDS['aws']}"),
            ("#outages", f"gcp: {FEEDS['gcp']}"),
        ]

    async def test_usage_error_raised_directly(self, registry: NotificationRegistry) -> None:
        """Test the notify command rejects unknown subcommands."""
        commands = build_commands(Stats(), FEEDS, registry, "!outage")
        context = CommandContext(sender="alice", target="#outages", private=False)

        with pytest.raises(UsageError):
            await commands["notify"].run(["subscribe", "aws"], context)
