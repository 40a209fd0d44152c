from __future__ import annotations

import logging

from hugstatus.github_gateway import GitHubGateway
from hugstatus.models import ReviewState, as_review_state
from hugstatus.observability import log_event


LOGGER = logging.getLogger("hugstatus.resolver")


class StatusResolver:
    """Translate an upstream pull request into a routing state.

    Never raises: any failure to read the pull request is reported as
    ``unknown`` and the caller decides when to ask again.
    """

    def __init__(self, github: GitHubGateway) -> None:
        self._github = github

    def resolve(self, owner: str, repository: str, identifier: int) -> ReviewState:
        try:
            snapshot = self._github.get_pull_request(owner, repository, identifier)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "pull_request_state_unresolved",
                repo_full_name=f"{owner}/{repository}",
                pr_number=identifier,
                error_type=type(exc).__name__,
            )
            return "unknown"

        if snapshot.merged:
            return "merged"
        return as_review_state(snapshot.state)
