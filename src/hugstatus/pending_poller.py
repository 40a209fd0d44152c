from __future__ import annotations

import logging
from threading import Event
from typing import Literal

from hugstatus.config import QueueKeys
from hugstatus.models import (
    TERMINAL_STATES,
    PayloadError,
    TrackedItem,
    decode_tracked_item,
    restate_tracked_payload,
)
from hugstatus.observability import log_event, log_warning
from hugstatus.queue_loop import QueueLoop
from hugstatus.resolver import StatusResolver
from hugstatus.retry import RetryPolicy
from hugstatus.work_queue import WorkQueue


PendingOutcome = Literal["idle", "invalid", "terminal", "requeued", "lost"]


class PendingPoller(QueueLoop):
    """Drain the pending list until every tracked pull request is closed or merged.

    Open or unresolved items go back to the tail of the pending list and the
    loop waits one poll interval; terminal items move to their archive list
    immediately.
    """

    name = "pending_poller"
    logger = logging.getLogger("hugstatus.pending_poller")

    def __init__(
        self,
        *,
        queue: WorkQueue,
        keys: QueueKeys,
        resolver: StatusResolver,
        stop_event: Event,
        retry: RetryPolicy,
        pop_timeout_seconds: float,
        poll_interval_seconds: float,
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

    def run_once(self) -> PendingOutcome:
        raw = self._pop(self._keys.pending)
        if raw is None:
            return "idle"

        try:
            item = decode_tracked_item(raw)
        except PayloadError as exc:
            log_warning(self.logger, "pending_payload_invalid", error=str(exc), payload=raw)
            self._back_off()
            return "invalid"
        self._reset_failures()

        # Stale re-queue of an already finished item: archive without asking GitHub.
        if item.is_terminal:
            return self._archive(item, raw, previous_state=item.state)

        state = self._resolver.resolve(item.owner, item.repository, item.identifier)
        if state in TERMINAL_STATES:
            moved = item.with_state(state)
            payload = restate_tracked_payload(raw, state)
            return self._archive(moved, payload, previous_state=item.state)

        payload = raw if state == "unknown" else restate_tracked_payload(raw, state)
        if not self._push(self._keys.pending, payload):
            return "lost"
        log_event(
            self.logger,
            "pull_request_requeued",
            repo_full_name=f"{item.owner}/{item.repository}",
            pr_number=item.identifier,
            previous_state=item.state,
            resolved_state=state,
        )
        self._wait_poll_interval()
        return "requeued"

    def _archive(self, item: TrackedItem, payload: str, *, previous_state: str) -> PendingOutcome:
        if not self._push(self._keys.terminal(item.state), payload):
            return "lost"
        log_event(
            self.logger,
            "pull_request_terminal",
            repo_full_name=f"{item.owner}/{item.repository}",
            pr_number=item.identifier,
            previous_state=previous_state,
            state=item.state,
        )
        return "terminal"
