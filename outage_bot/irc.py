"""
Minimal asyncio IRC client.

Speaks just enough of the IRC client protocol for the bot: registration
with optional TLS client certificate and SASL, keepalive, joining a
channel and exchanging messages.
"""

import asyncio
import base64
import contextlib
import inspect
import logging
import ssl
import tempfile
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from outage_bot.client import CertificateBundle, ConnectionSpec, Message

logger = logging.getLogger(__name__)

RPL_WELCOME = "001"
ERR_NICKNAMEINUSE = "433"
RPL_LOGGEDIN = "900"
RPL_SASLSUCCESS = "903"
SASL_FAILURES = {"902", "904", "905", "906", "907"}


@dataclass
class IRCLine:
    """
    One parsed protocol line.

    Attributes
    ----------
    prefix : str
        Source of the line, ``nick!user@host`` or a server name.
    command : str
        Command or three-digit numeric, upper-cased.
    params : list[str]
        Parameters, the trailing parameter last.
    """

    prefix: str = ""
    command: str = ""
    params: list[str] = field(default_factory=list)

    @property
    def nick(self) -> str:
        """Nickname part of the prefix."""
        return self.prefix.split("!", 1)[0]


def parse_line(line: str) -> IRCLine:
    """
    Parse a raw IRC line.

    Message tags are discarded.

    Parameters
    ----------
    line : str
        Line without its CRLF terminator.

    Returns
    -------
    IRCLine
        Parsed line.
    """
    if line.startswith("@"):
        _, _, line = line.partition(" ")

    prefix = ""
    if line.startswith(":"):
        prefix, _, line = line[1:].partition(" ")

    trailing = None
    if line.startswith(":"):
        line, trailing = "", line[1:]
    elif " :" in line:
        line, _, trailing = line.partition(" :")

    parts = line.split()
    params = parts[1:]
    if trailing is not None:
        params.append(trailing)

    return IRCLine(
        prefix=prefix,
        command=parts[0].upper() if parts else "",
        params=params,
    )


def build_ssl_context(spec: ConnectionSpec) -> ssl.SSLContext:
    """
    Create the TLS context for a connection.

    Parameters
    ----------
    spec : ConnectionSpec
        Connection settings.

    Returns
    -------
    ssl.SSLContext
        Context verifying the server unless told otherwise, loaded with
        the client certificate when one is configured.
    """
    context = ssl.create_default_context()

    if not spec.reject_unauthorized:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if spec.client_certificate:
        _load_client_certificate(context, spec.client_certificate)

    return context


def _load_client_certificate(context: ssl.SSLContext, bundle: CertificateBundle) -> None:
    # load_cert_chain only reads files
    with tempfile.TemporaryDirectory(prefix="outage-bot-") as tmp_dir:
        certfile = Path(tmp_dir) / "cert.pem"
        keyfile = Path(tmp_dir) / "key.pem"
        certfile.write_text(bundle.certificate, encoding="ascii")
        keyfile.write_text(bundle.private_key, encoding="ascii")
        context.load_cert_chain(certfile=str(certfile), keyfile=str(keyfile))


class IRCClient:
    """
    Asyncio IRC client.

    Reads the connection in a background task and dispatches events to
    handlers registered with ``on``. Coroutine handlers run as their own
    tasks so a slow handler never stalls the connection.
    """

    def __init__(self):
        """Initialize a disconnected client."""
        self.nick = ""
        self.registered = False
        self.connected = False
        self._spec: ConnectionSpec | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task | None = None
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._handler_tasks: set[asyncio.Task] = set()
        self._sasl_mechanism: str | None = None

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """
        Register a handler for an event.

        Parameters
        ----------
        event : str
            Event name: registered, message, pong, notice, error, raw, close.
        handler : Callable[..., Any]
            Function or coroutine function receiving the event arguments.
        """
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        """Remove a handler registered with ``on``."""
        with contextlib.suppress(ValueError):
            self._handlers[event].remove(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(*args)
            except Exception:
                logger.exception("Error in '%s' handler", event)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Error in event handler", exc_info=task.exception())

    async def connect(self, spec: ConnectionSpec) -> None:
        """
        Open the connection and start registration.

        Returns once the registration lines are sent; the ``registered``
        event fires when the server accepts the client.

        Parameters
        ----------
        spec : ConnectionSpec
            Connection settings.
        """
        self._spec = spec
        self.nick = spec.nick

        ssl_context = build_ssl_context(spec) if spec.tls else None

        logger.info(
            "Connecting to %s:%d%s",
            spec.host,
            spec.port,
            " (TLS)" if spec.tls else "",
        )
        self._reader, self._writer = await asyncio.open_connection(
            spec.host, spec.port, ssl=ssl_context
        )
        self.connected = True
        self._read_task = asyncio.create_task(self._read_loop())

        if spec.account and spec.account.password:
            self._sasl_mechanism = "PLAIN"
        elif spec.client_certificate:
            self._sasl_mechanism = "EXTERNAL"
        else:
            self._sasl_mechanism = None

        if self._sasl_mechanism:
            await self.send_raw("CAP REQ :sasl")

        await self.send_raw(f"NICK {spec.nick}")
        await self.send_raw(
            f"USER {spec.username or spec.nick} 0 * :{spec.gecos or spec.nick}"
        )

    async def _read_loop(self) -> None:
        """Background task reading and dispatching protocol lines."""
        if self._reader is None:
            return

        try:
            while True:
                raw = await self._reader.readline()
                if not raw:
                    logger.warning("IRC connection closed by server")
                    break

                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line:
                    continue

                self._emit("raw", line)
                await self._handle_line(parse_line(line))

        except (ConnectionError, OSError) as e:
            logger.error("IRC connection lost: %s", e)
        finally:
            self.connected = False
            self.registered = False
            if self._writer is not None:
                self._writer.close()
            self._emit("close")

    async def _handle_line(self, line: IRCLine) -> None:
        command = line.command
        params = line.params

        if command == "PING":
            await self.send_raw(f"PONG :{params[-1] if params else ''}")

        elif command == "PONG":
            self._emit("pong", params[-1] if params else "")

        elif command == RPL_WELCOME:
            if params:
                self.nick = params[0]
            self.registered = True
            logger.info("Registered as %s", self.nick)
            self._emit("registered")

        elif command == ERR_NICKNAMEINUSE and not self.registered:
            self.nick = f"{self.nick}_"
            logger.warning("Nickname in use, trying %s", self.nick)
            await self.send_raw(f"NICK {self.nick}")

        elif command == "CAP" and len(params) >= 3:
            await self._handle_cap(params[1].upper(), params[2].split())

        elif command == "AUTHENTICATE" and params and params[0] == "+":
            await self._authenticate()

        elif command == RPL_LOGGEDIN:
            logger.info("SASL: %s", params[-1] if params else "logged in")

        elif command == RPL_SASLSUCCESS:
            await self.send_raw("CAP END")

        elif command in SASL_FAILURES:
            logger.error("SASL authentication failed: %s", params[-1] if params else command)
            await self.send_raw("CAP END")

        elif command == "PRIVMSG" and len(params) >= 2:
            self._emit("message", Message(sender=line.nick, target=params[0], text=params[1]))

        elif command == "NOTICE" and len(params) >= 2:
            self._emit("notice", Message(sender=line.nick, target=params[0], text=params[1]))

        elif command == "ERROR":
            self._emit("error", params[-1] if params else "")

    async def _handle_cap(self, subcommand: str, capabilities: list[str]) -> None:
        if subcommand == "ACK" and "sasl" in capabilities and self._sasl_mechanism:
            await self.send_raw(f"AUTHENTICATE {self._sasl_mechanism}")
        elif subcommand == "NAK":
            logger.warning("Server refused capabilities: %s", " ".join(capabilities))
            await self.send_raw("CAP END")

    async def _authenticate(self) -> None:
        if self._sasl_mechanism == "PLAIN" and self._spec and self._spec.account:
            account = self._spec.account
            token = f"{account.account}\0{account.account}\0{account.password}"
            await self.send_raw(
                "AUTHENTICATE " + base64.b64encode(token.encode("utf-8")).decode("ascii"),
                secret=True,
            )
        else:
            await self.send_raw("AUTHENTICATE +")

    async def send_raw(self, line: str, secret: bool = False) -> None:
        """
        Send one protocol line.

        Parameters
        ----------
        line : str
            Line without terminator. CR and LF are stripped.
        secret : bool
            Keep the line out of the debug log.

        Raises
        ------
        ConnectionError
            If the client is not connected or the server closed the
            connection.
        """
        if not self.connected or self._writer is None or self._writer.is_closing():
            raise ConnectionError("IRC client is not connected")

        line = line.replace("\r", " ").replace("\n", " ")
        logger.debug(">> %s", "<redacted>" if secret else line)
        self._writer.write(f"{line}\r\n".encode("utf-8"))
        await self._writer.drain()

    async def join(self, channel: str) -> None:
        """Join a channel."""
        await self.send_raw(f"JOIN {channel}")

    async def part(self, channel: str, reason: str = "") -> None:
        """Leave a channel."""
        await self.send_raw(f"PART {channel} :{reason}" if reason else f"PART {channel}")

    async def say(self, target: str, text: str) -> None:
        """
        Send a message, one PRIVMSG per non-empty line.

        Parameters
        ----------
        target : str
            Channel or nickname.
        text : str
            Message text.
        """
        for line in text.splitlines():
            if line.strip():
                await self.send_raw(f"PRIVMSG {target} :{line}")

    async def ping(self, payload: str) -> None:
        """Send a PING the server echoes back as a ``pong`` event."""
        await self.send_raw(f"PING :{payload}")

    async def quit(self, reason: str = "outage-bot shutting down") -> None:
        """Send QUIT."""
        await self.send_raw(f"QUIT :{reason}")

    async def close(self) -> None:
        """Send QUIT, close the connection and cancel background tasks."""
        if self._writer is not None and not self._writer.is_closing():
            with contextlib.suppress(ConnectionError, OSError):
                await self.quit()

        if self._read_task is not None:
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task
            self._read_task = None

        for task in list(self._handler_tasks):
            task.cancel()
        self._handler_tasks.clear()

        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await self._writer.wait_closed()
            self._writer = None

        self._reader = None
        self.connected = False
        self.registered = False
        logger.debug("IRC client closed")
