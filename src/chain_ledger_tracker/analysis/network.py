"""Network-wide daily transaction counts.

The source is either an HTTP(S) URL serving JSON pairs
`[["2025-09-23T00:00:00.000Z", "46814"], ...]` or the same pairs given
inline, e.g. `"2025-09-23T00:00:00.000Z","46814","2025-09-22T00:00:00.000Z","45821"`.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 10.0

_INLINE_PAIR_RE = re.compile(r'"([^"]+)"\s*,\s*"?(\d+)"?')


class NetworkCountError(Exception):
    """Raised when network transaction counts cannot be loaded."""


def _day_key(raw: str) -> str:
    text = raw.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        raise NetworkCountError(f"invalid date: {raw!r}") from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC)
    return parsed.date().isoformat()


def counts_from_pairs(pairs: Iterable[Any]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for entry in pairs:
        if not isinstance(entry, (list, tuple)) or len(entry) < 2:
            continue
        try:
            counts[_day_key(str(entry[0]))] = int(str(entry[1]).strip())
        except (NetworkCountError, ValueError) as e:
            logger.debug("Skipping network count entry %r: %s", entry, e)
    return counts


def parse_network_counts(raw: str) -> dict[str, int]:
    """Parse an inline count list (JSON pairs or quoted flat pairs)."""
    text = raw.strip()
    if not text:
        return {}
    if text.startswith("["):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise NetworkCountError(f"invalid JSON count list: {e}") from e
        if not isinstance(data, list):
            raise NetworkCountError("count list must be a JSON array")
        return counts_from_pairs(data)
    return counts_from_pairs(_INLINE_PAIR_RE.findall(text))


async def fetch_network_counts(url: str, *, timeout: float = DEFAULT_FETCH_TIMEOUT) -> dict[str, int]:
    """Download counts from a JSON endpoint."""
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
    except (aiohttp.ClientError, TimeoutError, json.JSONDecodeError) as e:
        raise NetworkCountError(f"failed to fetch {url}: {e}") from e
    if not isinstance(data, list):
        raise NetworkCountError("count endpoint must return a JSON array")
    return counts_from_pairs(data)


async def load_network_counts(source: str | None, *, timeout: float = DEFAULT_FETCH_TIMEOUT) -> dict[str, int]:
    """Load counts from a URL or inline value; failures yield an empty map."""
    if not source:
        return {}
    try:
        if source.startswith(("http://", "https://")):
            logger.info("Fetching network transaction counts from %s", source)
            counts = await fetch_network_counts(source, timeout=timeout)
        else:
            counts = parse_network_counts(source)
    except NetworkCountError as e:
        logger.warning("Network transaction counts unavailable: %s", e)
        return {}
    logger.info("Loaded network transaction counts for %d days", len(counts))
    return counts
