from __future__ import annotations

from dataclasses import dataclass, field, replace
import json
from json.decoder import scanstring
from typing import Literal, cast
from urllib.parse import urlparse


ReviewState = Literal["open", "closed", "merged", "unknown"]
TerminalState = Literal["closed", "merged"]

TERMINAL_STATES: frozenset[str] = frozenset({"closed", "merged"})
DEFAULT_TRACKED_STATE = "pending"

_TRACKED_ITEM_KEYS = ("id", "owner", "repository", "state", "title")
_WIRE_SEPARATORS = (",", ":")


class PayloadError(ValueError):
    """Raised when a queued payload cannot be decoded."""


class SourceUrlError(ValueError):
    """Raised when a completion record's source URL is not a usable review URL."""


@dataclass(frozen=True)
class TrackedItem:
    identifier: int
    owner: str
    repository: str
    state: str = DEFAULT_TRACKED_STATE
    title: str | None = None
    extra: tuple[tuple[str, object], ...] = field(default=(), compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def with_state(self, state: str) -> TrackedItem:
        return replace(self, state=state)

    def full_url(self) -> str:
        return f"http://github.com/{self.owner}/{self.repository}/pulls/{self.identifier}"


@dataclass(frozen=True)
class CompletionRecord:
    notification_ref_id: str
    source_url: str
    tracked_identifier: int
    attempts: int = 0

    @property
    def has_notification_ref(self) -> bool:
        return bool(self.notification_ref_id)

    def next_attempt(self) -> CompletionRecord:
        return replace(self, attempts=self.attempts + 1)


@dataclass(frozen=True)
class SourceLocation:
    url: str
    owner: str
    repository: str


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    title: str
    state: str
    merged: bool
    html_url: str


def encode_tracked_item(item: TrackedItem) -> str:
    payload: dict[str, object] = {
        "id": item.identifier,
        "owner": item.owner,
        "repository": item.repository,
        "state": item.state,
    }
    if item.title is not None:
        payload["title"] = item.title
    for key, value in item.extra:
        payload.setdefault(key, value)
    return json.dumps(payload, separators=_WIRE_SEPARATORS, ensure_ascii=False)


def restate_tracked_payload(raw: str, state: str) -> str:
    """Return ``raw`` with only its top-level ``state`` value replaced.

    Every other byte of the producer's payload is kept, including key order,
    whitespace and escapes. With duplicate keys the last one wins, matching
    ``json.loads``.
    """
    decoder = json.JSONDecoder()
    index = _skip_whitespace(raw, 0)
    if not raw.startswith("{", index):
        raise PayloadError("Payload must be a JSON object")
    index = _skip_whitespace(raw, index + 1)
    span: tuple[int, int] | None = None
    closing = index
    if raw.startswith("}", index):
        members = False
    else:
        members = True
        while True:
            if not raw.startswith('"', index):
                raise PayloadError(f"Expected object key at offset {index}")
            try:
                key, index = scanstring(raw, index + 1)
                index = _skip_whitespace(raw, index)
                if not raw.startswith(":", index):
                    raise PayloadError(f"Expected ':' at offset {index}")
                start = _skip_whitespace(raw, index + 1)
                _, end = decoder.raw_decode(raw, start)
            except json.JSONDecodeError as exc:
                raise PayloadError(f"Invalid JSON payload: {exc}") from exc
            if key == "state":
                span = (start, end)
            index = _skip_whitespace(raw, end)
            if raw.startswith(",", index):
                index = _skip_whitespace(raw, index + 1)
                continue
            if raw.startswith("}", index):
                break
            raise PayloadError(f"Expected ',' or '}}' at offset {index}")
        closing = index

    value = json.dumps(state, ensure_ascii=False)
    if span is not None:
        return raw[: span[0]] + value + raw[span[1] :]
    separator = "," if members else ""
    return f'{raw[:closing]}{separator}"state":{value}{raw[closing:]}'


def decode_tracked_item(raw: str) -> TrackedItem:
    data = _load_object(raw)
    state = data.get("state", DEFAULT_TRACKED_STATE)
    if not isinstance(state, str):
        raise PayloadError("state must be a string")
    title = data.get("title")
    if title is not None and not isinstance(title, str):
        raise PayloadError("title must be a string")
    return TrackedItem(
        identifier=_require_int(data, "id"),
        owner=_require_str(data, "owner"),
        repository=_require_str(data, "repository"),
        state=state,
        title=title,
        extra=tuple((key, value) for key, value in data.items() if key not in _TRACKED_ITEM_KEYS),
    )


def encode_completion_record(record: CompletionRecord) -> str:
    payload: dict[str, object] = {
        "TweetID": record.notification_ref_id,
        "URL": record.source_url,
        "PullRequestId": record.tracked_identifier,
    }
    if record.attempts:
        payload["Attempts"] = record.attempts
    return json.dumps(payload, separators=_WIRE_SEPARATORS, ensure_ascii=False)


def decode_completion_record(raw: str) -> CompletionRecord:
    if not raw.strip():
        raise PayloadError("No job: empty payload")
    data = _load_object(raw)
    # Producers are not consistent about key casing.
    folded = {key.lower(): value for key, value in data.items()}

    ref_id = folded.get("tweetid", "")
    if ref_id is None:
        ref_id = ""
    if isinstance(ref_id, int) and not isinstance(ref_id, bool):
        ref_id = str(ref_id)
    if not isinstance(ref_id, str):
        raise PayloadError("TweetID must be a string")

    source_url = folded.get("url")
    if not isinstance(source_url, str) or not source_url:
        raise PayloadError("URL is required and must be a non-empty string")

    attempts = folded.get("attempts", 0)
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 0:
        raise PayloadError("Attempts must be a non-negative integer")

    return CompletionRecord(
        notification_ref_id=ref_id.strip(),
        source_url=source_url,
        tracked_identifier=_require_int(folded, "pullrequestid", label="PullRequestId"),
        attempts=attempts,
    )


def parse_source_url(raw_url: str, *, expected_host: str = "github.com") -> SourceLocation:
    try:
        parsed = urlparse(raw_url.strip())
        hostname = parsed.hostname
    except ValueError as exc:
        raise SourceUrlError(f"Unparseable URL {raw_url!r}: {exc}") from exc

    if hostname is None or hostname.lower() != expected_host.lower():
        raise SourceUrlError(f"Not a {expected_host} URL: {raw_url!r}")

    segments = [segment for segment in parsed.path.split("/") if segment]
    if len(segments) < 2:
        raise SourceUrlError(f"URL does not name an owner and repository: {raw_url!r}")

    return SourceLocation(url=raw_url, owner=segments[0], repository=segments[1])


def as_review_state(value: str) -> ReviewState:
    if value in {"open", "closed", "merged"}:
        return cast(ReviewState, value)
    return "unknown"


def _load_object(raw: str) -> dict[str, object]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PayloadError(f"Invalid JSON payload: {exc}") from exc
    if not isinstance(data, dict):
        raise PayloadError("Payload must be a JSON object")
    return cast(dict[str, object], data)


def _require_int(data: dict[str, object], key: str, *, label: str | None = None) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise PayloadError(f"{label or key} is required and must be an integer")
    return value


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise PayloadError(f"{key} is required and must be a non-empty string")
    return value


def _skip_whitespace(raw: str, index: int) -> int:
    while index < len(raw) and raw[index] in " \t\n\r":
        index += 1
    return index
