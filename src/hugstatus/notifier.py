from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import cast

import requests
from requests_oauthlib import OAuth1Session

from hugstatus.config import TwitterConfig
from hugstatus.messages import fill_handle
from hugstatus.observability import log_event, log_warning


LOGGER = logging.getLogger("hugstatus.notifier")


class NotificationError(RuntimeError):
    pass


class NotificationSink(ABC):
    """Best-effort social feed. Implementations log failures and never raise."""

    @abstractmethod
    def post(self, text: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def post_reply(self, text: str, reference_id: str) -> None:
        """Reply to ``reference_id``; ``{handle}`` in ``text`` becomes its author."""
        raise NotImplementedError


class TwitterNotifier(NotificationSink):
    def __init__(self, config: TwitterConfig, *, session: requests.Session | None = None) -> None:
        self._base_url = config.api_base_url.rstrip("/")
        self._timeout = config.request_timeout_seconds
        self._session = session or OAuth1Session(
            client_key=config.consumer_key,
            client_secret=config.consumer_secret,
            resource_owner_key=config.access_token,
            resource_owner_secret=config.access_token_secret,
        )

    def post(self, text: str) -> None:
        try:
            tweet_id = self._create_tweet({"text": text})
        except Exception as exc:  # noqa: BLE001
            log_warning(
                LOGGER,
                "notification_post_failed",
                error_type=type(exc).__name__,
                error=str(exc),
                text=text,
            )
            return
        log_event(LOGGER, "notification_posted", tweet_id=tweet_id, text=text)

    def post_reply(self, text: str, reference_id: str) -> None:
        try:
            handle = self._author_handle(reference_id)
        except Exception as exc:  # noqa: BLE001
            log_warning(
                LOGGER,
                "notification_reply_lookup_failed",
                reference_id=reference_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return

        reply_text = fill_handle(text, handle)
        try:
            tweet_id = self._create_tweet(
                {"text": reply_text, "reply": {"in_reply_to_tweet_id": reference_id}}
            )
        except Exception as exc:  # noqa: BLE001
            log_warning(
                LOGGER,
                "notification_post_failed",
                reference_id=reference_id,
                error_type=type(exc).__name__,
                error=str(exc),
                text=reply_text,
            )
            return
        log_event(
            LOGGER,
            "notification_reply_posted",
            reference_id=reference_id,
            tweet_id=tweet_id,
            text=reply_text,
        )

    def _create_tweet(self, body: dict[str, object]) -> str:
        response = self._session.post(
            f"{self._base_url}/2/tweets",
            json=body,
            timeout=self._timeout,
        )
        response.raise_for_status()
        data = _as_dict(_as_dict(response.json()).get("data"))
        return str(data.get("id", ""))

    def _author_handle(self, reference_id: str) -> str:
        if not reference_id.isdigit():
            raise NotificationError(f"Invalid tweet id {reference_id!r}")
        response = self._session.get(
            f"{self._base_url}/2/tweets/{reference_id}",
            params={"expansions": "author_id", "user.fields": "username"},
            timeout=self._timeout,
        )
        response.raise_for_status()
        payload = _as_dict(response.json())
        users = _as_dict(payload.get("includes")).get("users")
        if isinstance(users, list):
            for user in users:
                username = _as_dict(user).get("username")
                if isinstance(username, str) and username:
                    return username
        raise NotificationError(f"Tweet {reference_id} has no resolvable author")


def _as_dict(value: object) -> dict[str, object]:
    if not isinstance(value, dict):
        raise NotificationError("Unexpected Twitter response shape")
    return cast(dict[str, object], value)
