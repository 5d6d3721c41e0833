"""The relay service: one object owning all runtime state.

Everything runs on a single asyncio loop:

    HTTP poll task    GET aircraft.json, adaptive delay (PollSchedule)
    file watch task   stat aircraft.json every watch_interval, read on change,
                      read unconditionally every dir_interval
    liveness task     (re)bind the TCP server every check_interval
    client handlers   owned by ConnectionManager

Every snapshot, whichever task fetched it, goes through handle_snapshot(),
which ingests and publishes without awaiting anything. Ingestion therefore
never interleaves with another event and needs no locks.
"""

from __future__ import annotations

import asyncio
import logging
import time

from .feed import FileFeed, HttpFeed, PollSchedule
from .projection import Projector
from .publisher import FileSink, Publisher, TextSink, UdpSink
from .server import ConnectionManager
from .snapshot import Snapshot
from .tracker import Reason, Track, TrackTable

logger = logging.getLogger(__name__)

# Seconds between status log lines
STATUS_INTERVAL = 10.0


class RelayService:
    """Feed → track table → sinks.

    Built from a config dict (see config.py). Sinks that cannot be opened at
    startup are reported and left out; the service keeps running on the rest.
    """

    def __init__(self, config: dict, http_transport=None):
        feed_cfg = config["feed"]
        radar = config["radar"]
        tracks_cfg = config["tracks"]
        output = config["output"]

        self.config = config
        self.projector = Projector(radar["latitude"], radar["longitude"], radar["height"])
        if not self.projector.ready:
            logger.error("No valid radar position, aircraft positions will be dropped")
        self.table = TrackTable(
            self.projector,
            timeout=tracks_cfg["timeout"],
            max_misses=tracks_cfg["max_misses"],
        )
        self.schedule = PollSchedule(feed_cfg["interval"], feed_cfg["fast_interval"])

        self.http_feed = None
        if feed_cfg.get("url"):
            self.http_feed = HttpFeed(feed_cfg["url"], timeout=feed_cfg["timeout"], transport=http_transport)
        self.file_feed = FileFeed(feed_cfg["directory"]) if feed_cfg.get("directory") else None

        self.connections = ConnectionManager(output["tcp_host"], output["tcp_port"])
        self.publisher = Publisher(
            file_sink=self._open_sink(FileSink, output.get("file"), truncate=output.get("truncate", False)),
            udp_sink=UdpSink(output["udp_host"], output["udp_port"]) if output.get("udp_port") else None,
            text_sink=self._open_sink(TextSink, output.get("text_file")),
            clients=self.connections,
        )

        self._tasks: list[asyncio.Task] = []
        self._stopped = asyncio.Event()
        self.started_at: float | None = None

    @staticmethod
    def _open_sink(sink_cls, path, **kwargs):
        if not path:
            return None
        sink = sink_cls(path, **kwargs)
        return sink if sink.writable else None

    def set_radar_position(self, lat: float, lon: float, height: float) -> bool:
        """Move the radar reference point; subsequent fixes use the new origin."""
        return self.projector.set_origin(lat, lon, height)

    def handle_snapshot(self, snapshot: Snapshot | None) -> list[tuple[Track, Reason]]:
        """Ingest one snapshot and publish the result. Updates poll pacing."""
        if snapshot is None:
            return []
        duplicate = self.table.is_duplicate(snapshot.now)
        self.schedule.next_delay(duplicate)
        emissions = self.table.ingest(snapshot)
        if duplicate:
            return emissions

        logger.debug(
            "Snapshot %.1f: %d aircraft, %d emitted, %d live",
            snapshot.now, len(snapshot.aircraft), len(emissions), len(self.table),
        )
        self.publisher.publish(emissions, time.time())
        return emissions

    async def poll_http(self) -> None:
        while True:
            try:
                self.handle_snapshot(await self.http_feed.fetch())
            except Exception:
                logger.exception("Failed to process snapshot from %r", self.http_feed)
            await asyncio.sleep(self.schedule.current)

    async def watch_directory(self) -> None:
        watch_interval = self.config["feed"]["watch_interval"]
        dir_interval = self.config["feed"]["dir_interval"]
        last_read = 0.0
        while True:
            now = time.monotonic()
            if self.file_feed.changed() or now - last_read >= dir_interval:
                last_read = now
                try:
                    self.handle_snapshot(await self.file_feed.fetch())
                except Exception:
                    logger.exception("Failed to process snapshot from %r", self.file_feed)
            await asyncio.sleep(watch_interval)

    async def check_server(self) -> None:
        interval = self.config["output"]["check_interval"]
        while True:
            await self.connections.ensure_listening()
            await asyncio.sleep(interval)

    async def report_status(self) -> None:
        while True:
            await asyncio.sleep(STATUS_INTERVAL)
            s = self.status()
            logger.info(
                "%d live tracks, %d snapshots (%d duplicates), %d messages, %d clients",
                s["live_tracks"], s["snapshots"], s["duplicates"], s["messages"], s["clients"],
            )

    async def start(self) -> None:
        """Bind the server and start the background tasks."""
        self.started_at = time.time()
        self.schedule.reset()
        if not await self.connections.ensure_listening():
            logger.error("TCP server unavailable, will keep retrying")

        self._tasks.append(asyncio.create_task(self.check_server(), name="check-server"))
        self._tasks.append(asyncio.create_task(self.report_status(), name="status"))
        if self.http_feed is not None:
            self._tasks.append(asyncio.create_task(self.poll_http(), name="poll-http"))
        if self.file_feed is not None:
            self._tasks.append(asyncio.create_task(self.watch_directory(), name="watch-dir"))
        logger.info("Feeds: %s", ", ".join(repr(f) for f in (self.http_feed, self.file_feed) if f) or "none")

    async def run(self) -> None:
        """Start and block until stop() is called."""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self.close()

    def stop(self) -> None:
        self._stopped.set()

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.connections.close()
        if self.http_feed is not None:
            await self.http_feed.close()
        self.publisher.close()

    def status(self) -> dict:
        return {
            "live_tracks": len(self.table),
            "snapshots": self.table.snapshots,
            "duplicates": self.table.duplicates,
            "resets": self.table.resets,
            "messages": self.publisher.messages,
            "clients": len(self.connections.clients),
            "listening": self.connections.listening,
            "poll_interval": self.schedule.current,
        }
