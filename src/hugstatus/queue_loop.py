from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from threading import Event

from hugstatus.config import QueueKeys
from hugstatus.observability import log_event, log_warning
from hugstatus.retry import RetryPolicy
from hugstatus.work_queue import WorkQueue, WorkQueueError


class QueueLoop(ABC):
    """Shared plumbing for the consumer loops.

    Every wait goes through ``stop_event`` so a shutdown request interrupts
    backoff and poll sleeps; the only other blocking call is the bounded pop.
    """

    name = "queue_loop"
    logger = logging.getLogger("hugstatus.queue_loop")

    def __init__(
        self,
        *,
        queue: WorkQueue,
        keys: QueueKeys,
        stop_event: Event,
        retry: RetryPolicy,
        pop_timeout_seconds: float,
        poll_interval_seconds: float,
    ) -> None:
        self._queue = queue
        self._keys = keys
        self._stop_event = stop_event
        self._retry = retry
        self._pop_timeout_seconds = pop_timeout_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._consecutive_failures = 0

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def run(self) -> None:
        log_event(self.logger, "loop_started", loop=self.name)
        while not self._stop_event.is_set():
            self.run_once()
        log_event(self.logger, "loop_stopped", loop=self.name)

    @abstractmethod
    def run_once(self) -> str:
        """Handle at most one popped payload and return the outcome name."""

    def _pop(self, key: str) -> str | None:
        """Return the next payload; ``None`` on timeout or a reported queue failure."""
        try:
            raw = self._queue.pop(key, self._pop_timeout_seconds)
        except WorkQueueError as exc:
            log_warning(
                self.logger,
                "queue_pop_failed",
                loop=self.name,
                key=key,
                error=str(exc),
            )
            self._back_off()
            return None
        if raw is None:
            # An idle timeout means the queue is reachable again.
            self._reset_failures()
        return raw

    def _push(self, key: str, payload: str) -> bool:
        """Push ``payload``, retrying until stored or shutdown is requested."""
        attempts = 0
        while True:
            try:
                self._queue.push(key, payload)
                return True
            except WorkQueueError as exc:
                attempts += 1
                log_warning(
                    self.logger,
                    "queue_push_failed",
                    loop=self.name,
                    key=key,
                    attempt=attempts,
                    error=str(exc),
                )
                if self._stop_event.is_set():
                    log_warning(
                        self.logger,
                        "queue_item_lost_on_shutdown",
                        loop=self.name,
                        key=key,
                        payload=payload,
                    )
                    return False
                self._pause(self._retry.delay(attempts))

    def _back_off(self) -> None:
        self._consecutive_failures += 1
        delay = self._retry.delay(self._consecutive_failures)
        log_event(
            self.logger,
            "loop_backoff",
            loop=self.name,
            consecutive_failures=self._consecutive_failures,
            delay_seconds=delay,
        )
        self._pause(delay)

    def _reset_failures(self) -> None:
        self._consecutive_failures = 0

    def _wait_poll_interval(self) -> None:
        self._pause(self._poll_interval_seconds)

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self._stop_event.wait(seconds)
