"""Background worker pools for processing jobs."""

import logging
import threading
import time
from typing import List

logger = logging.getLogger(__name__)


class WorkerPool:
    """Bounded team of threads polling the queue for one job type.

    Each thread processes one job at a time: claim, execute, record the
    outcome, then immediately look for the next due job, sleeping
    ``poll_interval`` seconds only when nothing is due.

    Shutdown is cooperative. ``stop_claiming`` stops new claims and
    ``wait_drained`` blocks until no thread is claiming or executing.
    """

    def __init__(self, queue, job_type: str, concurrency: int = 3, poll_interval: float = 2.0):
        self.queue = queue
        self.job_type = job_type
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._in_flight = 0
        self._idle = threading.Condition()

    def start(self):
        """Start the worker threads.

        A restart gets a fresh stop event; threads of the previous run that
        are still finishing a job exit on their own when it completes.
        """
        if self._threads and not self._stop_event.is_set():
            return
        self._stop_event = threading.Event()
        self._threads = []
        for index in range(self.concurrency):
            thread = threading.Thread(
                target=self.run,
                args=(self._stop_event,),
                name=f"{self.job_type}-worker-{index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.info(f"Started {self.concurrency} worker(s) for {self.job_type}")

    def run(self, stop_event: threading.Event):
        """Main worker loop."""
        while True:
            with self._idle:
                if stop_event.is_set():
                    break
                self._in_flight += 1

            job = None
            try:
                job = self.queue.process_next(self.job_type)
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
            finally:
                with self._idle:
                    self._in_flight -= 1
                    self._idle.notify_all()

            if job is None:
                stop_event.wait(self.poll_interval)

        logger.info(f"Worker {threading.current_thread().name} stopped")

    def stop_claiming(self):
        self._stop_event.set()

    def wait_drained(self, timeout: float) -> bool:
        """Block until no job is in flight or ``timeout`` elapses."""
        deadline = time.monotonic() + timeout
        with self._idle:
            while self._in_flight > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def join(self, timeout: float = 1.0):
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = [thread for thread in self._threads if thread.is_alive()]


def main():
    """Entry point for a standalone worker process (no HTTP server)."""
    from schema_trainer.config import settings
    from schema_trainer.main import build_container, run_migrations

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    container = build_container(settings)
    run_migrations(container)
    container.queue.start()
    logger.info("Worker process started")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    finally:
        container.queue.stop(graceful=True, timeout=settings.WORKER_SHUTDOWN_TIMEOUT)


if __name__ == "__main__":
    main()
