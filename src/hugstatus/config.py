from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import Literal, cast


QueueBackend = Literal["redis", "sqlite"]

_QUEUE_BACKENDS: tuple[QueueBackend, ...] = ("redis", "sqlite")
_TWITTER_CREDENTIAL_KEYS = ("consumer_key", "consumer_secret", "access_token", "access_token_secret")


@dataclass(frozen=True)
class GitHubConfig:
    access_token: str
    host: str = "github.com"


@dataclass(frozen=True)
class TwitterConfig:
    consumer_key: str
    consumer_secret: str
    access_token: str
    access_token_secret: str
    api_base_url: str = "https://api.twitter.com"
    request_timeout_seconds: int = 30


@dataclass(frozen=True)
class QueueKeys:
    prefix: str = "hug"

    @property
    def pending(self) -> str:
        return f"{self.prefix}:pullrequests"

    @property
    def closed(self) -> str:
        return f"{self.prefix}:pullrequests:closed"

    @property
    def merged(self) -> str:
        return f"{self.prefix}:pullrequests:merged"

    @property
    def intake(self) -> str:
        return f"{self.prefix}:finished"

    @property
    def intake_failed(self) -> str:
        return f"{self.prefix}:finished:failed"

    def terminal(self, state: str) -> str:
        if state == "closed":
            return self.closed
        if state == "merged":
            return self.merged
        raise ValueError(f"Not a terminal state: {state!r}")


@dataclass(frozen=True)
class QueueConfig:
    backend: QueueBackend = "redis"
    url: str = "redis://localhost:6379/0"
    path: Path | None = None
    key_prefix: str = "hug"
    pop_timeout_seconds: int = 5

    @property
    def keys(self) -> QueueKeys:
        return QueueKeys(prefix=self.key_prefix)


@dataclass(frozen=True)
class RuntimeConfig:
    poll_interval_seconds: int = 30
    retry_base_seconds: int = 5
    retry_max_seconds: int = 300
    intake_max_attempts: int = 10
    shutdown_grace_seconds: int = 30
    log_dir: Path | None = None


@dataclass(frozen=True)
class AppConfig:
    github: GitHubConfig
    twitter: TwitterConfig
    queue: QueueConfig = QueueConfig()
    runtime: RuntimeConfig = RuntimeConfig()


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    github_data = _require_table(data, "github")
    twitter_data = _require_table(data, "twitter")
    queue_data = _optional_table(data, "queue") or {}
    runtime_data = _optional_table(data, "runtime") or {}

    github = GitHubConfig(
        access_token=_require_str(github_data, "access_token", table="github"),
        host=_str_with_default(github_data, "host", "github.com", table="github").lower(),
    )
    twitter = _parse_twitter_config(twitter_data)
    queue = _parse_queue_config(queue_data)
    runtime = _parse_runtime_config(runtime_data)

    return AppConfig(github=github, twitter=twitter, queue=queue, runtime=runtime)


def _parse_twitter_config(twitter_data: dict[str, object]) -> TwitterConfig:
    credentials = {
        key: _require_str(twitter_data, key, table="twitter") for key in _TWITTER_CREDENTIAL_KEYS
    }
    timeout = _int_with_default(twitter_data, "request_timeout_seconds", 30, table="twitter")
    if timeout < 1:
        raise ConfigError("twitter.request_timeout_seconds must be >= 1")
    return TwitterConfig(
        consumer_key=credentials["consumer_key"],
        consumer_secret=credentials["consumer_secret"],
        access_token=credentials["access_token"],
        access_token_secret=credentials["access_token_secret"],
        api_base_url=_str_with_default(
            twitter_data, "api_base_url", "https://api.twitter.com", table="twitter"
        ).rstrip("/"),
        request_timeout_seconds=timeout,
    )


def _parse_queue_config(queue_data: dict[str, object]) -> QueueConfig:
    raw_backend = _str_with_default(queue_data, "backend", "redis", table="queue").strip().lower()
    if raw_backend not in _QUEUE_BACKENDS:
        raise ConfigError("queue.backend must be one of: redis, sqlite")
    backend = cast(QueueBackend, raw_backend)

    path = _optional_path(queue_data, "path", table="queue")
    if backend == "sqlite" and path is None:
        raise ConfigError("queue.path is required when queue.backend = 'sqlite'")

    queue = QueueConfig(
        backend=backend,
        url=_str_with_default(queue_data, "url", "redis://localhost:6379/0", table="queue"),
        path=path,
        key_prefix=_str_with_default(queue_data, "key_prefix", "hug", table="queue"),
        pop_timeout_seconds=_int_with_default(queue_data, "pop_timeout_seconds", 5, table="queue"),
    )
    if queue.pop_timeout_seconds < 1:
        raise ConfigError("queue.pop_timeout_seconds must be >= 1")
    return queue


def _parse_runtime_config(runtime_data: dict[str, object]) -> RuntimeConfig:
    runtime = RuntimeConfig(
        poll_interval_seconds=_int_with_default(
            runtime_data, "poll_interval_seconds", 30, table="runtime"
        ),
        retry_base_seconds=_int_with_default(runtime_data, "retry_base_seconds", 5, table="runtime"),
        retry_max_seconds=_int_with_default(
            runtime_data, "retry_max_seconds", 300, table="runtime"
        ),
        intake_max_attempts=_int_with_default(
            runtime_data, "intake_max_attempts", 10, table="runtime"
        ),
        shutdown_grace_seconds=_int_with_default(
            runtime_data, "shutdown_grace_seconds", 30, table="runtime"
        ),
        log_dir=_optional_path(runtime_data, "log_dir", table="runtime"),
    )

    if runtime.poll_interval_seconds < 1:
        raise ConfigError("runtime.poll_interval_seconds must be >= 1")
    if runtime.retry_base_seconds < 1:
        raise ConfigError("runtime.retry_base_seconds must be >= 1")
    if runtime.retry_max_seconds < runtime.retry_base_seconds:
        raise ConfigError("runtime.retry_max_seconds must be >= runtime.retry_base_seconds")
    if runtime.intake_max_attempts < 1:
        raise ConfigError("runtime.intake_max_attempts must be >= 1")
    if runtime.shutdown_grace_seconds < 0:
        raise ConfigError("runtime.shutdown_grace_seconds must be >= 0")
    return runtime


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str, *, table: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{table}.{key} is required and must be a non-empty string")
    return value.strip()


def _str_with_default(data: dict[str, object], key: str, default: str, *, table: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{table}.{key} must be a non-empty string")
    return value.strip()


def _int_with_default(data: dict[str, object], key: str, default: int, *, table: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{table}.{key} must be an integer")
    return value


def _optional_path(data: dict[str, object], key: str, *, table: str) -> Path | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{table}.{key} must be a non-empty string if provided")
    return Path(value.strip()).expanduser()
