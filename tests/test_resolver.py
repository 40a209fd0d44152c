from __future__ import annotations

import pytest

from hugstatus.github_gateway import GitHubPollingError
from hugstatus.models import PullRequestSnapshot
from hugstatus.observability import configure_logging
from hugstatus.resolver import StatusResolver


class FakeGateway:
    def __init__(self, outcome: PullRequestSnapshot | Exception) -> None:
        self.outcome = outcome
        self.calls: list[tuple[str, str, int]] = []

    def get_pull_request(self, owner: str, repository: str, number: int) -> PullRequestSnapshot:
        self.calls.append((owner, repository, number))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _snapshot(state: str, *, merged: bool = False) -> PullRequestSnapshot:
    return PullRequestSnapshot(number=42, title="t", state=state, merged=merged, html_url="u")


@pytest.mark.parametrize(
    "snapshot, expected",
    [
        (_snapshot("open"), "open"),
        (_snapshot("closed"), "closed"),
        (_snapshot("closed", merged=True), "merged"),
        (_snapshot("draft"), "unknown"),
        (_snapshot(""), "unknown"),
    ],
)
def test_resolve_maps_pull_request_to_state(snapshot: PullRequestSnapshot, expected: str) -> None:
    gateway = FakeGateway(snapshot)

    assert StatusResolver(gateway).resolve("acme", "widgets", 42) == expected  # type: ignore[arg-type]
    assert gateway.calls == [("acme", "widgets", 42)]


@pytest.mark.parametrize("error", [GitHubPollingError("404"), RuntimeError("boom")])
def test_resolve_reports_unknown_instead_of_raising(
    error: Exception, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_logging("high")
    resolver = StatusResolver(FakeGateway(error))  # type: ignore[arg-type]

    assert resolver.resolve("acme", "widgets", 42) == "unknown"

    stderr = capsys.readouterr().err
    assert "event=pull_request_state_unresolved" in stderr
    assert "repo_full_name=acme/widgets" in stderr
    assert f"error_type={type(error).__name__}" in stderr
