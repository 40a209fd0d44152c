from __future__ import annotations

from hugstatus.models import TrackedItem


HANDLE_PLACEHOLDER = "{handle}"

_ANNOUNCEMENT_TEMPLATES: dict[str, str] = {
    "open": "I fixed some typos in {repository} and filed a PR: {url}",
    "merged": "I fixed some typos in {repository} and the PR got merged: {url}",
    "closed": "I fixed some typos in {repository} but the PR was closed :( {url}",
}

_REPLY_TEMPLATES: dict[str, str] = {
    "open": "- @{handle} Thanks for the link. We checked the repository and filed a PR: {url}",
    "merged": "- @{handle} Thanks for the link. Our changes are already merged: {url}",
    "closed": (
        "- @{handle} Thanks for the link, but our pull request was already was closed: {url}"
    ),
}


def render_announcement(*, item: TrackedItem, state: str) -> str:
    """Top-level post for a pull request nobody asked us about."""
    template = _template_for(_ANNOUNCEMENT_TEMPLATES, state)
    return template.format(repository=item.repository, url=item.full_url())


def render_reply(*, item: TrackedItem, state: str) -> str:
    """Reply to the requester; keeps ``{handle}`` for the sink to fill in."""
    template = _template_for(_REPLY_TEMPLATES, state)
    return template.format(handle=HANDLE_PLACEHOLDER, url=item.full_url())


def fill_handle(text: str, handle: str) -> str:
    return text.replace(HANDLE_PLACEHOLDER, handle)


def _template_for(templates: dict[str, str], state: str) -> str:
    template = templates.get(state)
    if template is None:
        raise ValueError(f"No notification template for state {state!r}")
    return template
