from __future__ import annotations

import pytest
import requests
from requests_oauthlib import OAuth1Session

from hugstatus.config import TwitterConfig
from hugstatus.notifier import TwitterNotifier
from hugstatus.observability import configure_logging


class FakeResponse:
    def __init__(self, status_code: int, payload: object) -> None:
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def json(self) -> object:
        return self._payload


class FakeSession:
    def __init__(self) -> None:
        self.posts: list[tuple[str, dict[str, object], float]] = []
        self.gets: list[tuple[str, dict[str, str], float]] = []
        self.post_responses: list[FakeResponse | Exception] = []
        self.get_responses: list[FakeResponse | Exception] = []

    def post(self, url: str, *, json: dict[str, object], timeout: float) -> FakeResponse:
        self.posts.append((url, json, timeout))
        return self._next(self.post_responses)

    def get(self, url: str, *, params: dict[str, str], timeout: float) -> FakeResponse:
        self.gets.append((url, params, timeout))
        return self._next(self.get_responses)

    @staticmethod
    def _next(responses: list[FakeResponse | Exception]) -> FakeResponse:
        outcome = responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _config() -> TwitterConfig:
    return TwitterConfig(
        consumer_key="ck",
        consumer_secret="cs",
        access_token="at",
        access_token_secret="ats",
        api_base_url="https://api.example.test/",
        request_timeout_seconds=7,
    )


def _notifier(session: FakeSession) -> TwitterNotifier:
    return TwitterNotifier(_config(), session=session)  # type: ignore[arg-type]


def test_default_session_signs_with_oauth1() -> None:
    notifier = TwitterNotifier(_config())

    assert isinstance(notifier._session, OAuth1Session)


def test_post_creates_tweet(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("low")
    session = FakeSession()
    session.post_responses.append(FakeResponse(201, {"data": {"id": "555", "text": "hi"}}))

    _notifier(session).post("I fixed some typos")

    assert session.posts == [
        ("https://api.example.test/2/tweets", {"text": "I fixed some typos"}, 7)
    ]
    assert "event=notification_posted" in capsys.readouterr().err


@pytest.mark.parametrize(
    "outcome",
    [
        FakeResponse(403, {"detail": "Forbidden"}),
        FakeResponse(201, ["not", "an", "object"]),
        requests.ConnectionError("offline"),
    ],
)
def test_post_failure_is_logged_not_raised(
    outcome: FakeResponse | Exception, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_logging("low")
    session = FakeSession()
    session.post_responses.append(outcome)

    _notifier(session).post("text")

    stderr = capsys.readouterr().err
    assert "event=notification_post_failed" in stderr
    assert "notification_posted" not in stderr


def test_post_reply_fills_author_handle_and_threads_the_reply() -> None:
    session = FakeSession()
    session.get_responses.append(
        FakeResponse(
            200,
            {
                "data": {"id": "123", "author_id": "9"},
                "includes": {"users": [{"id": "9", "username": "octocat"}]},
            },
        )
    )
    session.post_responses.append(FakeResponse(201, {"data": {"id": "777"}}))

    _notifier(session).post_reply("- @{handle} Thanks for the link.", "123")

    assert session.gets == [
        (
            "https://api.example.test/2/tweets/123",
            {"expansions": "author_id", "user.fields": "username"},
            7,
        )
    ]
    assert session.posts == [
        (
            "https://api.example.test/2/tweets",
            {
                "text": "- @octocat Thanks for the link.",
                "reply": {"in_reply_to_tweet_id": "123"},
            },
            7,
        )
    ]


@pytest.mark.parametrize(
    "lookup",
    [
        FakeResponse(404, {"errors": []}),
        FakeResponse(200, {"data": {"id": "123"}, "includes": {"users": []}}),
        FakeResponse(200, {"data": {"id": "123"}}),
    ],
)
def test_post_reply_skips_post_when_author_lookup_fails(
    lookup: FakeResponse, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_logging("low")
    session = FakeSession()
    session.get_responses.append(lookup)

    _notifier(session).post_reply("- @{handle} hi", "123")

    assert session.posts == []
    assert "event=notification_reply_lookup_failed" in capsys.readouterr().err


def test_post_reply_rejects_non_numeric_reference_without_calling_api() -> None:
    session = FakeSession()

    _notifier(session).post_reply("- @{handle} hi", "12a")

    assert session.gets == []
    assert session.posts == []


def test_post_reply_logs_post_failure(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("low")
    session = FakeSession()
    session.get_responses.append(
        FakeResponse(200, {"includes": {"users": [{"username": "octocat"}]}})
    )
    session.post_responses.append(FakeResponse(429, {"title": "Too Many Requests"}))

    _notifier(session).post_reply("- @{handle} hi", "123")

    stderr = capsys.readouterr().err
    assert "event=notification_post_failed" in stderr
    assert "reference_id=123" in stderr
    assert "notification_reply_posted" not in stderr
