"""Reconciliation loop with signal handling and exponential backoff."""

from __future__ import annotations

import logging
import random
import signal
import threading
import time
from collections.abc import Callable
from types import FrameType

from .config import AppConfig
from .engine import CycleReport, Engine, Plan

logger = logging.getLogger(__name__)


class Daemon:
    """Reconciliation daemon: refresh -> diff -> gate -> apply -> sleep."""

    def __init__(self, config: AppConfig, engine: Engine, confirm: Callable[[Plan], bool] | None = None):
        self._config = config
        self._engine = engine
        self._confirm = confirm
        self._shutdown = threading.Event()
        self._consecutive_failures = 0

    def run_once(self, mode: str | None = None, destroy: bool = False) -> CycleReport:
        """Execute a single reconciliation cycle."""
        return self._cycle(mode or self._config.reconcile.mode, destroy=destroy)

    def run(self) -> None:
        """Run the reconciliation loop until shutdown signal."""
        self._install_signal_handlers()
        logger.info(
            "Daemon started in %s mode, reconciling every %ds",
            self._config.reconcile.mode,
            self._config.reconcile.interval_seconds,
        )

        while not self._shutdown.is_set():
            cycle_start = time.monotonic()

            try:
                self._cycle(self._config.reconcile.mode)
                self._consecutive_failures = 0
            except Exception:
                self._consecutive_failures += 1
                logger.exception(
                    "Cycle failed (consecutive failures: %d)",
                    self._consecutive_failures,
                )

            elapsed = time.monotonic() - cycle_start
            sleep_time = self._calculate_sleep(elapsed)
            logger.debug("Sleeping %.1fs before next cycle", sleep_time)
            self._interruptible_sleep(sleep_time)

        logger.info("Daemon stopped")

    def stop(self) -> None:
        self._shutdown.set()

    def _cycle(self, mode: str, destroy: bool = False) -> CycleReport:
        """One full reconciliation cycle."""
        report = self._engine.run_cycle(
            mode=mode,
            refresh=self._config.reconcile.refresh,
            confirm=self._confirm,
            cancel_event=self._shutdown,
            destroy=destroy,
        )
        if report.result is not None and not report.result.ok:
            logger.error(
                "Apply ended in %s: failed=%s blocked=%s",
                report.result.status.value,
                sorted(report.result.failed),
                report.result.blocked,
                extra={"status": report.result.status.value},
            )
        return report

    def _calculate_sleep(self, elapsed: float) -> float:
        """Determine how long to sleep, applying backoff and jitter."""
        base = self._config.reconcile.interval_seconds

        if self._consecutive_failures > 0:
            backoff = min(
                self._config.reconcile.backoff_base_seconds * (2 ** (self._consecutive_failures - 1)),
                self._config.reconcile.max_backoff_seconds,
            )
            base = backoff

        jitter = random.uniform(0, self._config.reconcile.jitter_seconds)

        return max(0.0, base - elapsed + jitter)

    def _interruptible_sleep(self, seconds: float) -> None:
        """Sleep until the deadline or until shutdown is requested."""
        self._shutdown.wait(timeout=seconds)

    def _install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)
        signal.signal(signal.SIGHUP, self._handle_reload)

    def _handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down after in-flight actions finish", sig_name)
        self._shutdown.set()

    def _handle_reload(self, signum: int, frame: FrameType | None) -> None:
        logger.info("Received SIGHUP, reloading declarations")
        try:
            self._engine.reload()
        except Exception:
            logger.exception("Reload failed; keeping previous declarations")
