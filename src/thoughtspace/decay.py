"""Periodic pheromone decay.

Thoughts nobody has retrieved for an hour lose a little weight every pass,
floored at the minimum. Never-accessed thoughts are left alone. Passes run
on a daemon thread and can also be triggered on demand.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone

from .constants import DECAY_IDLE_SECONDS, DECAY_INTERVAL_SECONDS, SCAN_PAGE_SIZE
from .errors import ThoughtSpaceError
from .pheromone import decay_weight
from .store import ThoughtFilter, ThoughtStore

logger = logging.getLogger(__name__)


class DecayScheduler:
    """Owns the decay timer and runs single-flight decay passes."""

    def __init__(
        self,
        store: ThoughtStore,
        interval: float = DECAY_INTERVAL_SECONDS,
        idle_seconds: float = DECAY_IDLE_SECONDS,
        page_size: int = SCAN_PAGE_SIZE,
    ):
        self.store = store
        self.interval = interval
        self.idle_seconds = idle_seconds
        self.page_size = page_size

        self.thread: threading.Thread | None = None
        self.stop_event = threading.Event()
        self._pass_lock = threading.Lock()

        self.passes_run = 0
        self.last_run: datetime | None = None
        self.last_updated = 0

    def run_decay_pass(self, now: datetime | None = None, cancellable: bool = False) -> int:
        """Decay every idle thought once.

        Args:
            now: Reference time (default: current UTC time)
            cancellable: Stop between pages once stop() was requested. Only
                the background loop sets this; on-demand passes always
                scan every idle thought.

        Returns:
            Number of thoughts whose weight changed. 0 if another pass was
            already running.
        """
        if not self._pass_lock.acquire(blocking=False):
            logger.debug("Decay pass already running, skipping")
            return 0
        try:
            return self._run(now or datetime.now(timezone.utc), cancellable)
        finally:
            self._pass_lock.release()

    def _run(self, now: datetime, cancellable: bool) -> int:
        idle = ThoughtFilter(last_accessed_before=now - timedelta(seconds=self.idle_seconds))
        updated = 0
        scanned = 0
        cursor = None
        while True:
            points, cursor = self.store.scroll(idle, page_size=self.page_size, cursor=cursor)
            for point in points:
                scanned += 1
                current = point.payload.get("pheromone_weight")
                if current is None:
                    continue
                new_weight = decay_weight(float(current))
                if new_weight == current:
                    continue
                try:
                    self.store.patch_payload(point.id, {"pheromone_weight": new_weight})
                    updated += 1
                except ThoughtSpaceError as e:
                    logger.warning(f"Decay write failed for {point.id}: {e}")
            if cursor is None:
                break
            if cancellable and self.stop_event.is_set():
                logger.info("Decay pass cancelled between pages")
                break

        self.passes_run += 1
        self.last_run = now
        self.last_updated = updated
        logger.info(f"Decay pass: {updated} of {scanned} idle thoughts decayed")
        return updated

    def start(self) -> bool:
        """Start the background thread.

        Returns:
            True if started, False if already running
        """
        if self.is_running():
            logger.warning("Decay scheduler already running")
            return False
        self.stop_event.clear()
        self.thread = threading.Thread(
            target=self._loop,
            name="ThoughtSpaceDecay",
            daemon=True,
        )
        self.thread.start()
        logger.info(f"Decay scheduler started ({self.interval}s interval)")
        return True

    def stop(self, timeout: float = 10) -> bool:
        """Stop the background thread.

        Returns:
            True if stopped cleanly, False on timeout
        """
        if not self.is_running():
            return True
        self.stop_event.set()
        self.thread.join(timeout=timeout)
        if self.thread.is_alive():
            logger.error(f"Decay scheduler failed to stop within {timeout}s")
            return False
        logger.info("Decay scheduler stopped")
        return True

    def is_running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def _loop(self):
        # First pass after one interval, not at startup
        while not self.stop_event.wait(self.interval):
            try:
                self.run_decay_pass(cancellable=True)
            except Exception:
                logger.exception("Decay pass failed; will retry next interval")
