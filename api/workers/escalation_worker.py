# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Standalone escalation worker.

Runs the escalation scheduler outside the web process. SIGTERM and SIGINT
stop it after the request being processed.

Usage:
    python -m workers.escalation_worker
"""

import logging
import signal
import sys

from observability.config import setup_observability

logger = logging.getLogger(__name__)


class EscalationWorker:
    """Owns a scheduler and its signal-driven shutdown."""

    def __init__(self, scheduler, notification_pool=None, shutdown_timeout: float = 30.0):
        self.scheduler = scheduler
        self.notification_pool = notification_pool
        self.shutdown_timeout = shutdown_timeout

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, stopping escalation worker")
        self.scheduler.request_stop()

    def run(self) -> None:
        """Run scans until a stop is requested."""
        logger.info(
            "Escalation worker starting",
            extra={"interval_seconds": self.scheduler.config.interval_seconds,
                   "batch_size": self.scheduler.config.batch_size}
        )
        self.scheduler.start()
        try:
            while not self.scheduler.wait(timeout=1.0):
                pass
        finally:
            self.scheduler.stop(timeout=self.shutdown_timeout)
            if self.notification_pool is not None:
                self.notification_pool.shutdown(wait=True)
            logger.info("Escalation worker stopped")


def main() -> int:
    setup_observability(service_name="aprovacao-escalation-worker")

    from app import build_services

    services = build_services()
    worker = EscalationWorker(services["scheduler"], services["notification_pool"])
    worker.install_signal_handlers()
    worker.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
