"""
Collection scheduler - background loop polling every registered agent.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from sentinel_hub.errors import DirectoryError, SinkError
from sentinel_hub.models import AgentRecord, CycleReport, utc_now

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0
DEFAULT_MAX_WORKERS = 16


class CollectionScheduler:
    """
    Polls every agent in the directory once per interval.

    A cycle runs as soon as the scheduler starts, then every `interval` seconds
    until stop() is called. Cycles run one after another on a single background
    thread, so they never overlap; fetches inside a cycle run concurrently on a
    thread pool. stop() does not interrupt fetches already in flight, it only
    prevents the next cycle from starting.
    """

    def __init__(
        self,
        directory,
        fetcher,
        sink,
        interval: float = DEFAULT_INTERVAL,
        max_workers: int = DEFAULT_MAX_WORKERS
    ):
        self.directory = directory
        self.fetcher = fetcher
        self.sink = sink
        self.interval = interval
        self.max_workers = max_workers
        self.last_report: Optional[CycleReport] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name='sentinel-collector', daemon=True)
        self._thread.start()
        logger.info("Collection scheduler started", extra={'context': {'interval_seconds': self.interval}})

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to exit and wait for the current cycle to finish"""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Collection scheduler stopped")

    def run(self) -> None:
        """Main loop; returns once stop() has been called"""
        while not self._stop_event.is_set():
            try:
                self.collect_once()
            except Exception:
                # Keep the loop alive whatever a cycle does; next tick retries.
                logger.exception("Collection cycle failed")
            if self._stop_event.wait(self.interval):
                break

    def collect_once(self) -> CycleReport:
        """Single collection cycle over a snapshot of the directory"""
        started = time.monotonic()
        report = CycleReport(started_at=utc_now())
        agents = self.directory.list()
        report.agents = len(agents)

        if agents:
            workers = min(self.max_workers, len(agents))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='sentinel-fetch') as pool:
                outcomes = list(pool.map(self._collect_agent, agents))

            for reachable, written in outcomes:
                if reachable:
                    report.online += 1
                else:
                    report.offline += 1
                if written:
                    report.samples_written += 1

        report.duration_ms = round((time.monotonic() - started) * 1000, 1)
        self.last_report = report

        logger.info(
            "Collection cycle finished",
            extra={'context': {
                'agents': report.agents,
                'online': report.online,
                'offline': report.offline,
                'samples_written': report.samples_written,
                'duration_ms': report.duration_ms,
            }}
        )
        return report

    def _collect_agent(self, record: AgentRecord):
        """Poll one agent and forward its sample. Returns (reachable, sample_written)."""
        result = self.fetcher.fetch(record)

        try:
            self.fetcher.record_outcome(result)
        except DirectoryError:
            logger.error(
                "Could not record agent status",
                exc_info=True,
                extra={'context': {'agent_id': record.id}}
            )

        if result.sample is None:
            return result.reachable, False

        try:
            self.sink.write(record.id, result.sample, utc_now())
        except SinkError:
            logger.error(
                "Could not write sample",
                exc_info=True,
                extra={'context': {'agent_id': record.id}}
            )
            return result.reachable, False

        return result.reachable, True
