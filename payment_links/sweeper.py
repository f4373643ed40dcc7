"""
Expiration sweeper background worker.

Moves overdue CREATED links to EXPIRED on a fixed period. Owned by the
application lifespan: started on startup, stopped on shutdown.
"""
import threading

import structlog

logger = structlog.get_logger(__name__)


class ExpirationSweeper:
    def __init__(self, service, interval_seconds: float = 60.0):
        """
        Args:
            service: Anything with ``expire_overdue() -> int``.
            interval_seconds: Delay between two sweeps.
        """
        self._service = service
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        """Run one sweep and return how many links were expired."""
        return self._service.expire_overdue()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="expiration-sweeper", daemon=True
        )
        self._thread.start()
        logger.info("expiration_sweeper_started", interval_seconds=self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("expiration_sweeper_stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                # Keep sweeping; the next period retries the same rows.
                logger.exception("expiration_sweep_failed")
