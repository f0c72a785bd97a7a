"""
Merge Rewards webhook event classification
Turns a verified GitHub delivery into one typed domain event.

Handled events:
- pull_request (closed + merged = true) -> PullRequestMerged
- pull_request (opened / synchronize)   -> PullRequestOpened / PullRequestSynchronized
- installation (created / deleted)      -> InstallationCreated / InstallationDeleted
- installation_repositories             -> InstallationRepositoriesChanged
- ping                                  -> Ping
Anything else classifies as Unrecognized and is ignored by callers.
"""

import json
from dataclasses import dataclass, field
from typing import Optional

from errors import MalformedPayload
from installation_cache import InstallationRecord


@dataclass(frozen=True)
class PullRequestSummary:
    repository: str
    author: str
    additions: int
    deletions: int
    files_changed: int
    number: int
    title: str
    installation_id: Optional[int] = None

    def to_dict(self):
        return {
            "repository": self.repository,
            "author": self.author,
            "additions": self.additions,
            "deletions": self.deletions,
            "filesChanged": self.files_changed,
            "number": self.number,
            "title": self.title,
            "installationId": self.installation_id,
        }


# === Domain events ===

@dataclass(frozen=True)
class PullRequestMerged:
    summary: PullRequestSummary


@dataclass(frozen=True)
class PullRequestOpened:
    repository: str
    number: int
    author: str


@dataclass(frozen=True)
class PullRequestSynchronized:
    repository: str
    number: int
    author: str


@dataclass(frozen=True)
class InstallationCreated:
    record: InstallationRecord


@dataclass(frozen=True)
class InstallationDeleted:
    installation_id: int
    account_login: str


@dataclass(frozen=True)
class InstallationRepositoriesChanged:
    installation_id: int
    account_login: str
    added: tuple = field(default_factory=tuple)
    removed: tuple = field(default_factory=tuple)


@dataclass(frozen=True)
class Ping:
    zen: str = ""


@dataclass(frozen=True)
class Unrecognized:
    event_type: str
    action: Optional[str] = None

    @property
    def label(self):
        return f"{self.event_type}.{self.action}" if self.action else self.event_type


# =============================================================================
# PAYLOAD ACCESS
# =============================================================================

def parse_webhook_body(raw_body):
    """
    Parse a verified delivery body.
    Raises MalformedPayload unless it is a JSON object.
    """
    try:
        payload = json.loads(raw_body)
    except (ValueError, TypeError) as e:
        raise MalformedPayload(f"Invalid JSON payload: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedPayload("Webhook payload must be a JSON object")
    return payload


def _section(payload, key):
    value = payload.get(key)
    if not isinstance(value, dict):
        raise MalformedPayload(f"Payload is missing '{key}'")
    return value


def _text(mapping, key, where):
    value = mapping.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedPayload(f"Payload field '{where}.{key}' must be a non-empty string")
    return value


def _integer(mapping, key, where, default=None):
    value = mapping.get(key, default)
    # bool is an int subclass; GitHub never sends one for these fields
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedPayload(f"Payload field '{where}.{key}' must be an integer")
    return value


def _count(mapping, key, where):
    value = _integer(mapping, key, where, default=0)
    if value < 0:
        raise MalformedPayload(f"Payload field '{where}.{key}' must not be negative")
    return value


def _installation_record(installation):
    account = _section(installation, "account")
    repo_count = installation.get("repository_count")
    if not isinstance(repo_count, int) or isinstance(repo_count, bool):
        repo_count = 0
    return InstallationRecord(
        id=_integer(installation, "id", "installation"),
        account_login=_text(account, "login", "installation.account"),
        repository_selection=installation.get("repository_selection") or "selected",
        repository_count=repo_count,
    )


def _repo_names(entries):
    if entries is None:
        return ()
    if not isinstance(entries, list):
        raise MalformedPayload("Repository lists must be arrays")
    names = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise MalformedPayload("Repository list entries must be objects")
        names.append(_text(entry, "full_name", "repositories"))
    return tuple(names)

# =============================================================================
# CLASSIFIERS
# =============================================================================

def _classify_pull_request(payload):
    action = payload.get("action")
    pr = _section(payload, "pull_request")
    repository = _text(_section(payload, "repository"), "full_name", "repository")
    number = _integer(pr, "number", "pull_request")
    author = _text(_section(pr, "user"), "login", "pull_request.user")

    if action == "closed" and pr.get("merged") is True:
        installation = payload.get("installation")
        installation_id = None
        if isinstance(installation, dict):
            installation_id = _integer(installation, "id", "installation")
        summary = PullRequestSummary(
            repository=repository,
            author=author,
            additions=_count(pr, "additions", "pull_request"),
            deletions=_count(pr, "deletions", "pull_request"),
            files_changed=_count(pr, "changed_files", "pull_request"),
            number=number,
            title=pr.get("title") or "",
            installation_id=installation_id,
        )
        return PullRequestMerged(summary)
    if action == "opened":
        return PullRequestOpened(repository, number, author)
    if action == "synchronize":
        return PullRequestSynchronized(repository, number, author)
    return Unrecognized("pull_request", action)


def _classify_installation(payload):
    action = payload.get("action")
    installation = _section(payload, "installation")
    if action == "created":
        return InstallationCreated(_installation_record(installation))
    if action == "deleted":
        account = _section(installation, "account")
        return InstallationDeleted(
            installation_id=_integer(installation, "id", "installation"),
            account_login=_text(account, "login", "installation.account"),
        )
    return Unrecognized("installation", action)


def _classify_installation_repositories(payload):
    installation = _section(payload, "installation")
    account = _section(installation, "account")
    return InstallationRepositoriesChanged(
        installation_id=_integer(installation, "id", "installation"),
        account_login=_text(account, "login", "installation.account"),
        added=_repo_names(payload.get("repositories_added")),
        removed=_repo_names(payload.get("repositories_removed")),
    )


_CLASSIFIERS = {
    "pull_request": _classify_pull_request,
    "installation": _classify_installation,
    "installation_repositories": _classify_installation_repositories,
}


def classify(event_type, payload):
    """
    Map a GitHub event header and parsed payload to a domain event.
    Raises MalformedPayload when a handled event lacks required fields.
    """
    if event_type == "ping":
        zen = payload.get("zen")
        return Ping(zen if isinstance(zen, str) else "")

    classifier = _CLASSIFIERS.get(event_type)
    if classifier is None:
        action = payload.get("action")
        return Unrecognized(event_type or "unknown", action if isinstance(action, str) else None)
    return classifier(payload)
