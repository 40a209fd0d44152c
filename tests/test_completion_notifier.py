from __future__ import annotations

from collections import deque
import json
import threading

import pytest

from hugstatus.completion_notifier import CompletionNotifier
from hugstatus.config import QueueKeys
from hugstatus.models import ReviewState
from hugstatus.notifier import NotificationSink
from hugstatus.observability import configure_logging
from hugstatus.resolver import StatusResolver
from hugstatus.retry import RetryPolicy
from hugstatus.work_queue import WorkQueue, WorkQueueError


KEYS = QueueKeys()


class FakeQueue(WorkQueue):
    def __init__(self, journal: list[str]) -> None:
        self.lists: dict[str, deque[str]] = {}
        self.journal = journal
        self.push_failures = 0

    def push(self, key: str, payload: str) -> None:
        if self.push_failures:
            self.push_failures -= 1
            raise WorkQueueError("connection reset")
        self.journal.append(f"push {key}")
        self.lists.setdefault(key, deque()).append(payload)

    def pop(self, key: str, timeout_seconds: float) -> str | None:
        entries = self.lists.get(key)
        if not entries:
            return None
        return entries.popleft()

    def length(self, key: str) -> int:
        return len(self.lists.get(key, ()))

    def contents(self, key: str) -> list[str]:
        return list(self.lists.get(key, ()))


class FakeSink(NotificationSink):
    def __init__(self, journal: list[str]) -> None:
        self.journal = journal
        self.posts: list[str] = []
        self.replies: list[tuple[str, str]] = []

    def post(self, text: str) -> None:
        self.journal.append("post")
        self.posts.append(text)

    def post_reply(self, text: str, reference_id: str) -> None:
        self.journal.append("post_reply")
        self.replies.append((text, reference_id))


class RecordingEvent(threading.Event):
    def __init__(self) -> None:
        super().__init__()
        self.waits: list[float] = []

    def wait(self, timeout: float | None = None) -> bool:
        self.waits.append(0.0 if timeout is None else timeout)
        return self.is_set()


class FakeResolver(StatusResolver):
    def __init__(self, *states: ReviewState) -> None:
        self._states = list(states)
        self.calls: list[tuple[str, str, int]] = []

    def resolve(self, owner: str, repository: str, identifier: int) -> ReviewState:
        self.calls.append((owner, repository, identifier))
        return self._states.pop(0)


class Harness:
    def __init__(self, *states: ReviewState, max_attempts: int = 3) -> None:
        self.journal: list[str] = []
        self.queue = FakeQueue(self.journal)
        self.sink = FakeSink(self.journal)
        self.resolver = FakeResolver(*states)
        self.stop = RecordingEvent()
        self.notifier = CompletionNotifier(
            queue=self.queue,
            keys=KEYS,
            resolver=self.resolver,
            sink=self.sink,
            stop_event=self.stop,
            retry=RetryPolicy(base_seconds=5, max_seconds=300),
            pop_timeout_seconds=5,
            poll_interval_seconds=30,
            max_attempts=max_attempts,
        )

    def enqueue(self, raw: str) -> None:
        self.queue.lists.setdefault(KEYS.intake, deque()).append(raw)


def _record(tweet_id: str = "", url: str = "http://github.com/acme/widgets/pulls/7") -> str:
    return json.dumps({"TweetID": tweet_id, "URL": url, "PullRequestId": 7})


def test_closed_without_reference_posts_announcement_and_archives() -> None:
    harness = Harness("closed")
    harness.enqueue(_record())

    assert harness.notifier.run_once() == "routed"

    assert harness.resolver.calls == [("acme", "widgets", 7)]
    assert [json.loads(p) for p in harness.queue.contents(KEYS.closed)] == [
        {"id": 7, "owner": "acme", "repository": "widgets", "state": "closed"}
    ]
    assert harness.sink.posts == [
        "I fixed some typos in widgets but the PR was closed :( "
        "http://github.com/acme/widgets/pulls/7"
    ]
    assert harness.sink.replies == []
    assert harness.journal == [f"push {KEYS.closed}", "post"]


def test_merged_with_reference_replies_to_requester() -> None:
    harness = Harness("merged")
    harness.enqueue(_record(tweet_id="123"))

    assert harness.notifier.run_once() == "routed"

    assert len(harness.queue.contents(KEYS.merged)) == 1
    assert harness.sink.posts == []
    assert harness.sink.replies == [
        (
            "- @{handle} Thanks for the link. Our changes are already merged: "
            "http://github.com/acme/widgets/pulls/7",
            "123",
        )
    ]
    assert harness.journal == [f"push {KEYS.merged}", "post_reply"]


def test_open_pull_request_joins_pending_list() -> None:
    harness = Harness("open")
    harness.enqueue(_record())

    assert harness.notifier.run_once() == "routed"

    assert json.loads(harness.queue.contents(KEYS.pending)[0])["state"] == "open"
    assert harness.sink.posts == [
        "I fixed some typos in widgets and filed a PR: http://github.com/acme/widgets/pulls/7"
    ]
    assert harness.stop.waits == []


def test_foreign_host_is_dropped_without_side_effects(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("low")
    harness = Harness()
    harness.enqueue(_record(url="http://gitlab.com/acme/widgets"))

    assert harness.notifier.run_once() == "invalid_url"

    assert harness.journal == []
    assert harness.resolver.calls == []
    assert harness.stop.waits == [5]
    assert capsys.readouterr().err.count("event=completion_url_invalid") == 1


def test_url_without_repository_is_dropped() -> None:
    harness = Harness()
    harness.enqueue(_record(url="http://github.com/acme"))

    assert harness.notifier.run_once() == "invalid_url"
    assert harness.journal == []


@pytest.mark.parametrize("raw", ["", "{not json", '{"URL":"http://github.com/a/b"}'])
def test_malformed_records_back_off(raw: str, capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("low")
    harness = Harness()
    harness.enqueue(raw)

    assert harness.notifier.run_once() == "invalid"

    assert harness.journal == []
    assert harness.notifier.consecutive_failures == 1
    assert "event=completion_payload_invalid" in capsys.readouterr().err


def test_unknown_state_is_retried_then_dead_lettered(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("low")
    harness = Harness("unknown", "unknown", "unknown", max_attempts=3)
    harness.enqueue(_record(tweet_id="123"))

    assert harness.notifier.run_once() == "requeued"
    assert json.loads(harness.queue.contents(KEYS.intake)[0])["Attempts"] == 1
    assert harness.notifier.run_once() == "requeued"
    assert harness.notifier.run_once() == "dead_lettered"

    assert harness.queue.contents(KEYS.intake) == []
    assert json.loads(harness.queue.contents(KEYS.intake_failed)[0]) == {
        "TweetID": "123",
        "URL": "http://github.com/acme/widgets/pulls/7",
        "PullRequestId": 7,
        "Attempts": 3,
    }
    assert harness.sink.posts == []
    assert harness.sink.replies == []
    assert harness.stop.waits == [30, 30]
    assert "event=completion_record_dead_lettered" in capsys.readouterr().err


def test_unknown_then_resolved_routes_normally() -> None:
    harness = Harness("unknown", "merged")
    harness.enqueue(_record())

    assert harness.notifier.run_once() == "requeued"
    assert harness.notifier.run_once() == "routed"

    assert len(harness.queue.contents(KEYS.merged)) == 1
    assert len(harness.sink.posts) == 1


def test_no_notification_when_push_is_lost_on_shutdown() -> None:
    harness = Harness("merged")
    harness.enqueue(_record(tweet_id="123"))
    harness.queue.push_failures = 1
    harness.stop.set()

    assert harness.notifier.run_once() == "lost"

    assert harness.sink.replies == []
    assert harness.queue.contents(KEYS.merged) == []


def test_push_is_retried_before_notifying() -> None:
    harness = Harness("closed")
    harness.enqueue(_record())
    harness.queue.push_failures = 1

    assert harness.notifier.run_once() == "routed"

    assert harness.stop.waits == [5]
    assert harness.journal == [f"push {KEYS.closed}", "post"]


def test_respects_configured_github_host() -> None:
    harness = Harness("open")
    harness.notifier = CompletionNotifier(
        queue=harness.queue,
        keys=KEYS,
        resolver=harness.resolver,
        sink=harness.sink,
        stop_event=harness.stop,
        retry=RetryPolicy(base_seconds=5, max_seconds=300),
        pop_timeout_seconds=5,
        poll_interval_seconds=30,
        max_attempts=3,
        expected_host="ghe.example.com",
    )
    harness.enqueue(_record(url="https://ghe.example.com/team/app/pull/7"))

    assert harness.notifier.run_once() == "routed"
    assert harness.resolver.calls == [("team", "app", 7)]
