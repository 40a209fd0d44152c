from __future__ import annotations

import logging
from threading import Event
from typing import Literal

from hugstatus.config import QueueKeys
from hugstatus.messages import render_announcement, render_reply
from hugstatus.models import (
    CompletionRecord,
    PayloadError,
    SourceUrlError,
    TrackedItem,
    decode_completion_record,
    encode_completion_record,
    encode_tracked_item,
    parse_source_url,
)
from hugstatus.notifier import NotificationSink
from hugstatus.observability import log_event, log_warning
from hugstatus.queue_loop import QueueLoop
from hugstatus.resolver import StatusResolver
from hugstatus.retry import RetryPolicy
from hugstatus.work_queue import WorkQueue


CompletionOutcome = Literal[
    "idle",
    "invalid",
    "invalid_url",
    "routed",
    "requeued",
    "dead_lettered",
    "lost",
]


class CompletionNotifier(QueueLoop):
    """Route finished work to its list and post exactly one notification for it.

    The queue push always happens before the notification, so a notification
    is never sent for an item that was not stored. Records whose state cannot
    be resolved are retried through the intake list a bounded number of
    times and then parked on the dead-letter list.
    """

    name = "completion_notifier"
    logger = logging.getLogger("hugstatus.completion_notifier")

    def __init__(
        self,
        *,
        queue: WorkQueue,
        keys: QueueKeys,
        resolver: StatusResolver,
        sink: NotificationSink,
        stop_event: Event,
        retry: RetryPolicy,
        pop_timeout_seconds: float,
        poll_interval_seconds: float,
        max_attempts: int,
        expected_host: str = "github.com",
    ) -> None:
        super().__init__(
            queue=queue,
            keys=keys,
            stop_event=stop_event,
            retry=retry,
            pop_timeout_seconds=pop_timeout_seconds,
            poll_interval_seconds=poll_interval_seconds,
        )
        self._resolver = resolver
        self._sink = sink
        self._max_attempts = max_attempts
        self._expected_host = expected_host

    def run_once(self) -> CompletionOutcome:
        raw = self._pop(self._keys.intake)
        if raw is None:
            return "idle"

        try:
            record = decode_completion_record(raw)
        except PayloadError as exc:
            log_warning(self.logger, "completion_payload_invalid", error=str(exc), payload=raw)
            self._back_off()
            return "invalid"

        try:
            location = parse_source_url(record.source_url, expected_host=self._expected_host)
        except SourceUrlError as exc:
            log_warning(
                self.logger,
                "completion_url_invalid",
                pr_number=record.tracked_identifier,
                url=record.source_url,
                error=str(exc),
            )
            self._back_off()
            return "invalid_url"
        self._reset_failures()

        state = self._resolver.resolve(
            location.owner, location.repository, record.tracked_identifier
        )
        if state == "unknown":
            return self._retry_unresolved(record)

        item = TrackedItem(
            identifier=record.tracked_identifier,
            owner=location.owner,
            repository=location.repository,
            state=state,
        )
        key = self._keys.pending if state == "open" else self._keys.terminal(state)
        if not self._push(key, encode_tracked_item(item)):
            return "lost"
        log_event(
            self.logger,
            "completion_routed",
            repo_full_name=f"{item.owner}/{item.repository}",
            pr_number=item.identifier,
            state=state,
            key=key,
            reply=record.has_notification_ref,
        )
        self._notify(record, item)
        return "routed"

    def _notify(self, record: CompletionRecord, item: TrackedItem) -> None:
        if record.has_notification_ref:
            self._sink.post_reply(
                render_reply(item=item, state=item.state), record.notification_ref_id
            )
            return
        self._sink.post(render_announcement(item=item, state=item.state))

    def _retry_unresolved(self, record: CompletionRecord) -> CompletionOutcome:
        retried = record.next_attempt()
        if retried.attempts >= self._max_attempts:
            if not self._push(self._keys.intake_failed, encode_completion_record(retried)):
                return "lost"
            log_warning(
                self.logger,
                "completion_record_dead_lettered",
                pr_number=record.tracked_identifier,
                url=record.source_url,
                attempts=retried.attempts,
                key=self._keys.intake_failed,
            )
            return "dead_lettered"

        if not self._push(self._keys.intake, encode_completion_record(retried)):
            return "lost"
        log_event(
            self.logger,
            "completion_unresolved_requeued",
            pr_number=record.tracked_identifier,
            attempts=retried.attempts,
            max_attempts=self._max_attempts,
        )
        self._wait_poll_interval()
        return "requeued"
