"""
Announcement formatting.

Turns a FeedEntry into a single IRC line. Providers with a known feed
layout get their own renderer, every other feed uses ``render_generic``.
"""

import html
import re
from collections.abc import Callable, Iterable

from outage_bot.entries import FeedEntry

# UTF-8 bytes, leaving room for the relayed source and PRIVMSG prefix within
# the 512 byte IRC line.
MAX_LINE_BYTES = 400
MAX_SUMMARY_LENGTH = 200

Renderer = Callable[[FeedEntry], str]


def clean_text(content: str) -> str:
    """
    Reduce HTML content to a single line of plain text.

    Parameters
    ----------
    content : str
        Raw content possibly containing HTML.

    Returns
    -------
    str
        Cleaned plain text content.
    """
    text = re.sub(r"<[^>]+>", " ", content)
    text = html.unescape(text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with '...'."""
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def truncate_bytes(text: str, limit: int) -> str:
    """
    Cut ``text`` to at most ``limit`` UTF-8 bytes, marking the cut with '...'.

    Never splits a multi-byte character.
    """
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[: limit - 3].decode("utf-8", errors="ignore") + "..."


def _join(*parts: str) -> str:
    return truncate_bytes(" ".join(part for part in parts if part), MAX_LINE_BYTES)


def render_generic(entry: FeedEntry) -> str:
    """Render ``[SERVICE] title link``."""
    title = clean_text(entry.title) or "No title"
    return _join(f"[{entry.service.upper()}]", title, entry.link)


def render_aws(entry: FeedEntry) -> str:
    """
    Render an AWS Health Dashboard item.

    AWS titles carry the status ("Informational message: ..."), the
    description carries the details.
    """
    title = clean_text(entry.title) or "No title"
    summary = truncate(clean_text(entry.summary), MAX_SUMMARY_LENGTH)
    if summary:
        title = f"{title} - {summary}"
    published = f"({entry.published_at})" if entry.published_at else ""
    return _join("[AWS]", title, published, entry.link)


def render_gcp(entry: FeedEntry) -> str:
    """Render a Google Cloud incident update, stamped with its ISO date."""
    title = clean_text(entry.title) or "No title"
    updated = f"({entry.alternate_published_at})" if entry.alternate_published_at else ""
    return _join("[GCP]", title, updated, entry.link)


def render_azure(entry: FeedEntry) -> str:
    """Render an Azure status item; the link is often missing."""
    title = clean_text(entry.title) or "No title"
    summary = truncate(clean_text(entry.summary), MAX_SUMMARY_LENGTH)
    if summary:
        title = f"{title} - {summary}"
    return _join("[Azure]", title, entry.link)


SERVICE_RENDERERS: dict[str, Renderer] = {
    "aws": render_aws,
    "azure": render_azure,
    "gcp": render_gcp,
}


def build_renderers(services: Iterable[str]) -> dict[str, Renderer]:
    """
    Pick a renderer for each configured service.

    Parameters
    ----------
    services : Iterable[str]
        Configured feed names.

    Returns
    -------
    dict[str, Renderer]
        Feed name to renderer, generic renderer for unknown providers.
    """
    return {
        name: SERVICE_RENDERERS.get(name.lower(), render_generic)
        for name in services
    }
