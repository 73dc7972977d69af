"""
Protocol definition for the chat connection.

Defines the interface the bot's components use to talk to the channel.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class Message:
    """
    Inbound chat message.

    Attributes
    ----------
    sender : str
        Nickname of the author.
    target : str
        Channel name, or the bot's nickname for a direct message.
    text : str
        Message text.
    """

    sender: str
    target: str
    text: str


@runtime_checkable
class ChatClient(Protocol):
    """
    Protocol defining the connected chat client.

    Events emitted through ``on`` include at least ``registered`` (no
    argument), ``pong`` (the echoed payload) and ``message`` (a Message).
    """

    nick: str

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """
        Register a handler for an event.

        Handlers may be plain functions or coroutine functions.
        """
        ...

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        """Remove a handler registered with ``on``."""
        ...

    async def connect(self, spec: "ConnectionSpec") -> None:
        """Open the connection and start the registration handshake."""
        ...

    async def join(self, channel: str) -> None:
        """Join a channel."""
        ...

    async def part(self, channel: str, reason: str = "") -> None:
        """Leave a channel."""
        ...

    async def say(self, target: str, text: str) -> None:
        """Send a message to a channel or a nickname."""
        ...

    async def ping(self, payload: str) -> None:
        """Send a PING the server echoes back as a ``pong`` event."""
        ...

    async def close(self) -> None:
        """Disconnect and release resources."""
        ...


@dataclass(frozen=True)
class AccountCredential:
    """SASL account name and password."""

    account: str
    password: str = ""


@dataclass(frozen=True)
class CertificateBundle:
    """
    TLS client certificate material.

    Attributes
    ----------
    private_key : str
        PEM private key block.
    certificate : str
        PEM certificate block.
    """

    private_key: str
    certificate: str


@dataclass(frozen=True)
class ConnectionSpec:
    """
    Everything needed to open the chat connection.

    Attributes
    ----------
    host : str
        Server hostname.
    port : int
        Server port.
    tls : bool
        Whether to wrap the connection in TLS.
    reject_unauthorized : bool
        Whether to verify the server certificate.
    nick : str
        Nickname.
    username : str
        Username (ident).
    gecos : str
        Real name.
    account : AccountCredential | None
        Optional SASL account.
    client_certificate : CertificateBundle | None
        Optional TLS client certificate.
    """

    host: str
    port: int
    nick: str
    username: str = ""
    gecos: str = ""
    tls: bool = False
    reject_unauthorized: bool = True
    account: AccountCredential | None = None
    client_certificate: CertificateBundle | None = None
