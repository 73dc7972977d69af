"""
Flood protection for outbound actions.

IRC servers penalize bursts of lines, so everything the bot sends in a
batch goes through ``flood_protect``.
"""

import asyncio
import inspect
import logging
from collections.abc import Iterable
from typing import Any

logger = logging.getLogger(__name__)


async def flood_protect(spacing_ms: float, items: Iterable[Any]) -> list[Any]:
    """
    Run items one after the other with a minimum spacing between them.

    Parameters
    ----------
    spacing_ms : float
        Delay in milliseconds between the completion of an item and the
        start of the next one.
    items : Iterable[Any]
        Zero-argument callables, sync or async, or plain values returned
        as they are.

    Returns
    -------
    list[Any]
        Results in input order.

    Raises
    ------
    Exception
        The first exception raised by an item. Remaining items are not run.
    """
    results: list[Any] = []

    for index, item in enumerate(items):
        if index:
            await asyncio.sleep(spacing_ms / 1000)

        result = item() if callable(item) else item
        if inspect.isawaitable(result):
            result = await result
        results.append(result)

    logger.debug("Flood-protected batch of %d item(s) done", len(results))
    return results
