"""
Connection bootstrap.

Builds the ConnectionSpec from configuration, including the client
certificate split out of a PEM bundle, then connects and waits until the
server has accepted the client.
"""

import asyncio
import contextlib
import getpass
import logging
import re
from collections.abc import Callable
from pathlib import Path

from outage_bot.client import (
    AccountCredential,
    CertificateBundle,
    ChatClient,
    ConnectionSpec,
)
from outage_bot.config import ServerConfig
from outage_bot.irc import IRCClient

logger = logging.getLogger(__name__)

PEM_BOUNDARY = re.compile(r"-----(BEGIN|END) ([A-Z0-9 ]+)-----")

PRIVATE_KEY = "private key"
CERTIFICATE = "certificate"

# Diagnostic events, logged only
PASSIVE_EVENTS = ("raw", "notice", "error", "close")


class CertificateBundleError(ValueError):
    """Raised when a PEM bundle does not hold exactly one key then one certificate."""


def _block_kind(label: str) -> str | None:
    if label.endswith("PRIVATE KEY"):
        return PRIVATE_KEY
    if label == "CERTIFICATE":
        return CERTIFICATE
    return None


def split_pem(text: str) -> CertificateBundle:
    """
    Split a PEM bundle into its private key and certificate blocks.

    Parameters
    ----------
    text : str
        PEM file content. The private key block must start at offset 0.

    Returns
    -------
    CertificateBundle
        The two blocks, each from its BEGIN line to the end of its END line.

    Raises
    ------
    CertificateBundleError
        If the key does not start the file, an END line has no matching
        BEGIN, a block appears twice, or a block is missing.
    """
    starts: dict[str, int] = {}
    blocks: dict[str, str] = {}

    for match in PEM_BOUNDARY.finditer(text):
        boundary, label = match.groups()
        kind = _block_kind(label)
        if kind is None:
            continue

        if boundary == "BEGIN":
            if kind in blocks or kind in starts:
                raise CertificateBundleError(f"More than one {kind} block")
            if kind == PRIVATE_KEY and match.start() != 0:
                raise CertificateBundleError(
                    "The private key block must start at the beginning of the file"
                )
            starts[kind] = match.start()
        else:
            if kind not in starts:
                raise CertificateBundleError(f"END {label} without a matching BEGIN")
            blocks[kind] = text[starts.pop(kind) : match.end()]

    for kind in (PRIVATE_KEY, CERTIFICATE):
        if kind not in blocks:
            raise CertificateBundleError(f"No complete {kind} block found")

    return CertificateBundle(
        private_key=blocks[PRIVATE_KEY] + "\n",
        certificate=blocks[CERTIFICATE] + "\n",
    )


def load_certificate_bundle(path: str | Path) -> CertificateBundle:
    """
    Read and split a PEM bundle file.

    Raises
    ------
    OSError
        If the file cannot be read.
    CertificateBundleError
        If the content is malformed.
    """
    path = Path(path)
    logger.info("Loading client certificate from %s", path)
    return split_pem(path.read_text(encoding="ascii"))


def build_connection_spec(
    server: ServerConfig,
    prompt: Callable[[str], str] = getpass.getpass,
) -> ConnectionSpec:
    """
    Assemble the ConnectionSpec.

    Prompts for the account password only when an account is configured
    without a password and no client certificate can stand in for it.

    Parameters
    ----------
    server : ServerConfig
        Server settings.
    prompt : Callable[[str], str]
        Password prompt.

    Returns
    -------
    ConnectionSpec
        Immutable connection settings.
    """
    certificate = None
    if server.client_certificate:
        certificate = load_certificate_bundle(server.client_certificate.path)

    account = None
    if server.account:
        password = server.account.password
        if not password and certificate is None:
            password = prompt(
                f"Enter services password for {server.nick}@{server.host}: "
            )
        account = AccountCredential(account=server.account.account, password=password)

    return ConnectionSpec(
        host=server.host,
        port=server.port,
        nick=server.nick,
        username=server.username,
        gecos=server.gecos,
        tls=server.tls,
        reject_unauthorized=server.reject_unauthorized,
        account=account,
        client_certificate=certificate,
    )


def _log_event(event: str) -> Callable[..., None]:
    def handler(*args) -> None:
        logger.debug("irc %s: %s", event, " ".join(str(arg) for arg in args))

    return handler


EVENT_LOGGERS = {event: _log_event(event) for event in PASSIVE_EVENTS}


async def connect_client(
    spec: ConnectionSpec,
    client: ChatClient | None = None,
    timeout: float | None = None,
) -> ChatClient:
    """
    Connect and wait for the server to accept the client.

    Parameters
    ----------
    spec : ConnectionSpec
        Connection settings.
    client : ChatClient | None
        Client to connect, a new IRCClient by default.
    timeout : float | None
        Maximum wait in seconds for registration. None waits forever.

    Returns
    -------
    ChatClient
        The registered client.

    Raises
    ------
    TimeoutError
        If registration did not complete in time. The client is closed.
    """
    if client is None:
        client = IRCClient()

    registered: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    def on_registered() -> None:
        if not registered.done():
            registered.set_result(None)
        client.off("registered", on_registered)

    client.on("registered", on_registered)
    # Reconnecting the same client must not stack listeners
    for event, log_handler in EVENT_LOGGERS.items():
        with contextlib.suppress(ValueError):
            client.off(event, log_handler)
        client.on(event, log_handler)

    await client.connect(spec)

    try:
        await asyncio.wait_for(registered, timeout=timeout)
    except TimeoutError:
        logger.error("Server did not accept the connection within %s seconds", timeout)
        await client.close()
        raise

    logger.info("Connected to %s:%d as %s", spec.host, spec.port, client.nick)
    return client
