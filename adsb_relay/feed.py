"""Snapshot sources: where aircraft.json comes from.

Two sources, both answering "give me the next snapshot, or None":

- FileFeed:  dump1090 writing /run/dump1090-fa/aircraft.json on the same host.
             Change detection compares the file's stat signature; the service
             also reads it unconditionally on a slow fallback timer.
- HttpFeed:  dump1090's web endpoint (e.g. http://host/data/aircraft.json),
             fetched with an async HTTP client so the event loop never blocks.

PollSchedule implements the adaptive pacing: dump1090 rewrites its snapshot
about once a second, so when a poll returns the snapshot we already have,
the next poll comes sooner (fast interval) and returns to the normal
interval once a fresh one arrives.

Neither source raises on I/O or parse problems; they log and return None.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from .snapshot import Snapshot, parse_snapshot

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://127.0.0.1/data/aircraft.json"
DEFAULT_DIRECTORY = "/run/dump1090-fa"
SNAPSHOT_FILENAME = "aircraft.json"

# Seconds
DEFAULT_INTERVAL = 2.0
FAST_INTERVAL = 0.4


class PollSchedule:
    """Adaptive poll interval: fast retry after a duplicate snapshot."""

    def __init__(self, interval: float = DEFAULT_INTERVAL, fast_interval: float = FAST_INTERVAL):
        self.interval = interval
        self.fast_interval = fast_interval
        self.current = interval

    def next_delay(self, duplicate: bool) -> float:
        """Update and return the delay before the next poll."""
        self.current = self.fast_interval if duplicate else self.interval
        return self.current

    def reset(self) -> None:
        self.current = self.interval


class FileFeed:
    """Reads aircraft.json from a directory dump1090 writes into."""

    def __init__(self, directory: str | Path = DEFAULT_DIRECTORY, filename: str = SNAPSHOT_FILENAME):
        self.directory = Path(directory)
        self.path = self.directory / filename
        self._signature: tuple[int, int] | None = None

        self.reads = 0
        self.failures = 0

    def _stat_signature(self) -> tuple[int, int] | None:
        try:
            st = self.path.stat()
        except OSError:
            return None
        return st.st_mtime_ns, st.st_size

    def changed(self) -> bool:
        """True if the snapshot file appeared or was rewritten since the last read."""
        sig = self._stat_signature()
        return sig is not None and sig != self._signature

    async def fetch(self) -> Snapshot | None:
        """Read and parse the snapshot file, None if absent or malformed."""
        self._signature = self._stat_signature()
        if self._signature is None:
            return None
        try:
            body = await asyncio.to_thread(self.path.read_bytes)
        except OSError as e:
            self.failures += 1
            logger.warning("Cannot read %s: %s", self.path, e)
            return None
        self.reads += 1
        return parse_snapshot(body)

    def __repr__(self) -> str:
        return f"FileFeed({str(self.path)!r})"


class HttpFeed:
    """Polls dump1090's aircraft.json over HTTP."""

    def __init__(
        self,
        url: str = DEFAULT_URL,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": "adsb-relay/0.1"},
        )

        self.requests = 0
        self.failures = 0

    async def fetch(self) -> Snapshot | None:
        """GET the snapshot. Errors are logged and yield None."""
        self.requests += 1
        try:
            response = await self._client.get(self.url)
        except httpx.TimeoutException as e:
            self.failures += 1
            logger.debug("Feed request timed out: %s", e)
            return None
        except httpx.RequestError as e:
            self.failures += 1
            logger.debug("Feed request failed: %s", e)
            return None

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self.failures += 1
            logger.warning("Feed returned HTTP %s for %s", e.response.status_code, self.url)
            return None

        return parse_snapshot(response.content)

    async def close(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"HttpFeed({self.url!r})"
