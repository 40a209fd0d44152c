from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging

from hugstatus.models import PullRequestSnapshot
from hugstatus.observability import log_event
from hugstatus.shell import CommandError, preview, run


LOGGER = logging.getLogger("hugstatus.github_gateway")
_GH_COMMAND_TIMEOUT_SECONDS = 60


class GitHubPollingError(RuntimeError):
    """Recoverable GitHub read failure; caller should retry on a later poll."""


@dataclass(frozen=True)
class _HttpReply:
    status: int
    headers: dict[str, str]
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class _CachedResponse:
    etag: str
    payload: object


@dataclass(frozen=True)
class GitHubGateway:
    """Read-only access to the GitHub REST API through the ``gh`` CLI.

    Each instance keeps its own ETag cache, so a loop polling the same pull
    request repeatedly gets ``304 Not Modified`` answers that do not count
    against the rate limit.
    """

    access_token: str
    _cache: dict[str, _CachedResponse] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    def get_pull_request(self, owner: str, repository: str, number: int) -> PullRequestSnapshot:
        path = f"/repos/{owner}/{repository}/pulls/{number}"
        snapshot = _pull_request_snapshot(self._get_json(path))
        # Closed and merged pull requests are not polled again.
        if snapshot.merged or snapshot.state == "closed":
            self._cache.pop(path, None)
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            repo_full_name=f"{owner}/{repository}",
            pr_number=snapshot.number,
            state=snapshot.state,
            merged=snapshot.merged,
        )
        return snapshot

    def _get_json(self, path: str) -> object:
        cached = self._cache.get(path)
        argv = ["gh", "api", "--method", "GET", "--include"]
        if cached is not None:
            argv.extend(["--header", f"If-None-Match: {cached.etag}"])
        argv.append(path)

        output = ""
        try:
            output = run(
                argv,
                env={"GH_TOKEN": self.access_token},
                check=False,
                timeout_seconds=_GH_COMMAND_TIMEOUT_SECONDS,
            )
            reply = _parse_http_reply(output)
            if reply.status == 304:
                if cached is None:
                    raise GitHubPollingError(f"304 Not Modified without a cached body for {path}")
                return cached.payload
            if not reply.ok:
                raise GitHubPollingError(
                    f"HTTP {reply.status} from GitHub: {reply.body.strip() or '<empty>'}"
                )
            payload = json.loads(reply.body)
        except (CommandError, GitHubPollingError, ValueError) as exc:
            log_event(
                LOGGER,
                "github_poll_get_failed",
                path=path,
                error_type=type(exc).__name__,
                error=str(exc),
                output=preview(output, limit=240),
            )
            raise GitHubPollingError(f"GitHub GET failed for path {path}: {exc}") from exc

        etag = reply.headers.get("etag")
        if etag:
            self._cache[path] = _CachedResponse(etag=etag, payload=payload)
        return payload


def _parse_http_reply(output: str) -> _HttpReply:
    lines = output.replace("\r\n", "\n").split("\n")
    # `gh --include` prints one header block per redirect hop; keep the last.
    starts = [index for index, line in enumerate(lines) if line.startswith("HTTP/")]
    if not starts:
        raise GitHubPollingError("gh output has no HTTP status line")
    start = starts[-1]

    _, _, after_version = lines[start].partition(" ")
    code, _, _ = after_version.partition(" ")
    if not code.isdigit():
        raise GitHubPollingError(f"Malformed HTTP status line: {lines[start]!r}")

    try:
        blank = lines.index("", start + 1)
    except ValueError:
        blank = len(lines)
    headers: dict[str, str] = {}
    for line in lines[start + 1 : blank]:
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    return _HttpReply(status=int(code), headers=headers, body="\n".join(lines[blank + 1 :]))


def _pull_request_snapshot(payload: object) -> PullRequestSnapshot:
    if not isinstance(payload, dict):
        raise GitHubPollingError("Unexpected GitHub response: expected object for pull request")
    number = payload.get("number")
    if isinstance(number, bool) or not isinstance(number, int):
        raise GitHubPollingError(f"Unexpected pull request number: {number!r}")
    merged = payload.get("merged")
    if not isinstance(merged, bool):
        raise GitHubPollingError(f"Unexpected pull request merged flag: {merged!r}")
    return PullRequestSnapshot(
        number=number,
        title=_text(payload.get("title")),
        state=_text(payload.get("state")).strip().lower(),
        merged=merged,
        html_url=_text(payload.get("html_url")),
    )


def _text(value: object) -> str:
    return "" if value is None else str(value)
