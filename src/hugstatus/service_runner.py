from __future__ import annotations

from collections.abc import Callable
import logging
import signal
import threading
import time
from types import FrameType

from hugstatus.completion_notifier import CompletionNotifier
from hugstatus.config import AppConfig, QueueConfig, TwitterConfig
from hugstatus.github_gateway import GitHubGateway
from hugstatus.notifier import NotificationSink, TwitterNotifier
from hugstatus.observability import log_event, log_warning
from hugstatus.pending_poller import PendingPoller
from hugstatus.queue_loop import QueueLoop
from hugstatus.resolver import StatusResolver
from hugstatus.retry import RetryPolicy
from hugstatus.work_queue import WorkQueue, WorkQueueError, open_work_queue


LOGGER = logging.getLogger("hugstatus.service_runner")
_SUPERVISE_INTERVAL_SECONDS = 0.5

QueueFactory = Callable[[QueueConfig], WorkQueue]
SinkFactory = Callable[[TwitterConfig], NotificationSink]
ResolverFactory = Callable[[AppConfig], StatusResolver]


class ServiceStartupError(RuntimeError):
    """The loops could not be built, usually because the queue is unreachable."""


def _default_resolver(config: AppConfig) -> StatusResolver:
    return StatusResolver(GitHubGateway(config.github.access_token))


class ServiceRunner:
    """Run both consumer loops on their own threads until asked to stop.

    Each loop gets its own queue connection, resolver and (for the notifier)
    sink; the loops share nothing but ``stop_event``.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        stop_event: threading.Event | None = None,
        queue_factory: QueueFactory = open_work_queue,
        sink_factory: SinkFactory = TwitterNotifier,
        resolver_factory: ResolverFactory = _default_resolver,
    ) -> None:
        self._config = config
        self._stop_event = stop_event or threading.Event()
        self._queue_factory = queue_factory
        self._sink_factory = sink_factory
        self._resolver_factory = resolver_factory
        self._crashed = threading.Event()
        self._queues: list[WorkQueue] = []

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def request_stop(self, reason: str) -> None:
        if not self._stop_event.is_set():
            log_event(LOGGER, "service_stopping", reason=reason)
        self._stop_event.set()

    def build_loops(self) -> tuple[QueueLoop, ...]:
        runtime = self._config.runtime
        queue_config = self._config.queue
        retry = RetryPolicy.from_runtime(runtime)

        pending_queue = self._open_queue()
        intake_queue = self._open_queue()
        poller = PendingPoller(
            queue=pending_queue,
            keys=queue_config.keys,
            resolver=self._resolver_factory(self._config),
            stop_event=self._stop_event,
            retry=retry,
            pop_timeout_seconds=queue_config.pop_timeout_seconds,
            poll_interval_seconds=runtime.poll_interval_seconds,
        )
        notifier = CompletionNotifier(
            queue=intake_queue,
            keys=queue_config.keys,
            resolver=self._resolver_factory(self._config),
            sink=self._sink_factory(self._config.twitter),
            stop_event=self._stop_event,
            retry=retry,
            pop_timeout_seconds=queue_config.pop_timeout_seconds,
            poll_interval_seconds=runtime.poll_interval_seconds,
            max_attempts=runtime.intake_max_attempts,
            expected_host=self._config.github.host,
        )
        return (poller, notifier)

    def run(self) -> bool:
        """Block until stopped; return ``False`` if a loop crashed."""
        try:
            try:
                loops = self.build_loops()
            except (WorkQueueError, ValueError, OSError) as exc:
                log_warning(
                    LOGGER,
                    "service_start_failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise ServiceStartupError(f"Service startup failed: {exc}") from exc
            threads = [
                threading.Thread(target=self._run_loop, args=(loop,), name=loop.name, daemon=True)
                for loop in loops
            ]
            for thread in threads:
                thread.start()
            log_event(
                LOGGER,
                "service_started",
                loops=",".join(loop.name for loop in loops),
                queue_backend=self._config.queue.backend,
            )

            while not self._stop_event.is_set() and any(t.is_alive() for t in threads):
                self._stop_event.wait(_SUPERVISE_INTERVAL_SECONDS)
            self.request_stop("loops_exited")
            self._join(threads)
        finally:
            self._close_queues()

        log_event(LOGGER, "service_stopped", crashed=self._crashed.is_set())
        return not self._crashed.is_set()

    def _run_loop(self, loop: QueueLoop) -> None:
        try:
            loop.run()
        except Exception as exc:  # noqa: BLE001
            self._crashed.set()
            LOGGER.exception(
                "event=service_loop_crashed loop=%s error_type=%s", loop.name, type(exc).__name__
            )
            self.request_stop(f"{loop.name}_crashed")

    def _join(self, threads: list[threading.Thread]) -> None:
        deadline = time.monotonic() + self._config.runtime.shutdown_grace_seconds
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        still_running = [thread.name for thread in threads if thread.is_alive()]
        if still_running:
            log_warning(
                LOGGER,
                "service_shutdown_grace_expired",
                grace_seconds=self._config.runtime.shutdown_grace_seconds,
                loops=",".join(still_running),
            )

    def _open_queue(self) -> WorkQueue:
        queue = self._queue_factory(self._config.queue)
        self._queues.append(queue)
        return queue

    def _close_queues(self) -> None:
        while self._queues:
            queue = self._queues.pop()
            try:
                queue.close()
            except Exception as exc:  # noqa: BLE001
                log_warning(LOGGER, "queue_close_failed", error_type=type(exc).__name__)


def install_signal_handlers(runner: ServiceRunner) -> None:
    """First SIGINT/SIGTERM asks for a graceful stop; a second one terminates."""

    def _handle(signum: int, frame: FrameType | None) -> None:
        _ = frame
        name = signal.Signals(signum).name
        runner.request_stop(f"signal_{name.lower()}")
        signal.signal(signum, signal.SIG_DFL)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_service(config: AppConfig) -> bool:
    runner = ServiceRunner(config)
    install_signal_handlers(runner)
    return runner.run()
