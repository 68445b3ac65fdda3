# deployment_service/run_billing_worker.py
"""Billing worker - rolls up last month's usage on an interval."""

import logging
import signal
import sys
import threading

from deployment_service.billing.engine import BillingEngine
from deployment_service.container import build_container

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


class BillingWorker:
    """
    Periodic billing roll-up.

    Each cycle bills the previous calendar month for every user with
    usage in it. Already-billed users are returned unchanged, so running
    the cycle repeatedly within a month is harmless.
    """

    def __init__(self, billing_engine: BillingEngine, poll_interval: float = 3600):
        """
        Initialize billing worker.

        Args:
            billing_engine: Engine to run the roll-up with
            poll_interval: Seconds between cycles
        """
        self.billing_engine = billing_engine
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()

        logger.info(f"Billing Worker initialized (poll interval: {poll_interval}s)")

    def start(self):
        """Install signal handlers and run cycles until stopped."""
        logger.info("=" * 80)
        logger.info("BILLING WORKER STARTED")
        logger.info("=" * 80)

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.run()

    def run(self):
        """Cycle loop; returns once stop() is called."""
        while not self._stop_event.is_set():
            self.run_cycle()
            self._stop_event.wait(self.poll_interval)

        logger.info("Billing Worker stopped")

    def stop(self):
        self._stop_event.set()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, stopping...")
        self.stop()

    def run_cycle(self) -> int:
        """Single billing cycle. Returns the number of users billed."""
        try:
            processed = self.billing_engine.process_monthly_billing()
            if processed > 0:
                logger.info(f"[billing] cycle billed {processed} user(s)")
            return processed
        except Exception as e:
            logger.error(f"Error in billing cycle: {e}", exc_info=True)
            return 0


def main():
    """Main entry point."""
    container = build_container()
    worker = BillingWorker(billing_engine=container.billing_engine)

    try:
        worker.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
