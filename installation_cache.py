"""
Merge Rewards installation & token cache
One in-memory source of truth for which GitHub App installations belong to
which account, and for short-lived installation access tokens.

Both the OAuth callback and the installation webhooks write through here.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from errors import ConfigMissing, ExternalTimeout, GitHubAPIError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallationRecord:
    id: int
    account_login: str
    repository_selection: str = "selected"
    repository_count: int = 0

    @classmethod
    def from_api(cls, data):
        """Build a record from a GitHub installation object."""
        account = data.get("account") or {}
        return cls(
            id=data["id"],
            account_login=account.get("login", ""),
            repository_selection=data.get("repository_selection") or "selected",
            repository_count=data.get("repository_count") or 0,
        )

    def to_dict(self):
        return {
            "id": self.id,
            "accountLogin": self.account_login,
            "repositorySelection": self.repository_selection,
            "repositoryCount": self.repository_count,
        }


@dataclass(frozen=True)
class InstallationToken:
    token: str
    expires_at: datetime


def _utcnow():
    return datetime.now(timezone.utc)


class InstallationCache:
    def __init__(self, github, clock=None):
        self.github = github
        self.clock = clock or _utcnow
        self._lock = threading.Lock()
        self._tokens = {}          # installation id -> InstallationToken
        self._installations = {}   # account login -> {installation id: InstallationRecord}

    # =========================================================================
    # TOKENS
    # =========================================================================

    def get_installation_token(self, installation_id):
        """
        Return a usable token for the installation, exchanging a new one
        when the cached token has expired. Raises TokenExchangeFailed.
        """
        with self._lock:
            cached = self._tokens.get(installation_id)
        if cached and self.clock() < cached.expires_at:
            return cached.token

        token, expires_at = self.github.create_installation_token(installation_id)
        with self._lock:
            self._tokens[installation_id] = InstallationToken(token, expires_at)
        logger.info("installation token refreshed | installation=%s expires=%s",
                    installation_id, expires_at.isoformat())
        return token

    def invalidate_token(self, installation_id):
        with self._lock:
            return self._tokens.pop(installation_id, None) is not None

    # =========================================================================
    # INSTALLATIONS
    # =========================================================================

    def record_installations(self, account_login, installations):
        """Replace the installation set for an account."""
        with self._lock:
            self._installations[account_login] = {inst.id: inst for inst in installations}
        logger.info("installations recorded | login=%s count=%d", account_login, len(installations))

    def add_installation(self, record):
        with self._lock:
            self._installations.setdefault(record.account_login, {})[record.id] = record
        logger.info("installation added | login=%s installation=%s", record.account_login, record.id)

    def remove_installation(self, account_login, installation_id):
        """Forget an installation and any token cached for it."""
        with self._lock:
            removed = self._installations.get(account_login, {}).pop(installation_id, None)
            self._tokens.pop(installation_id, None)
        if removed:
            logger.info("installation removed | login=%s installation=%s", account_login, installation_id)
        return removed is not None

    def adjust_repository_count(self, installation_id, delta):
        with self._lock:
            for installs in self._installations.values():
                record = installs.get(installation_id)
                if record:
                    installs[installation_id] = replace(
                        record, repository_count=max(record.repository_count + delta, 0)
                    )
                    return installs[installation_id]
        return None

    def get_installations(self, account_login):
        with self._lock:
            return list(self._installations.get(account_login, {}).values())

    def find_installation(self, installation_id):
        with self._lock:
            for installs in self._installations.values():
                if installation_id in installs:
                    return installs[installation_id]
        return None

    def refresh_user_installations(self, account_login, user_token):
        """
        Re-resolve a user's installations from GitHub and cache them.
        Falls back to the app-level listing filtered by account when the
        user endpoint fails; if both fail the user ends up with none.
        """
        try:
            raw = self.github.list_user_installations(user_token)
        except (GitHubAPIError, ExternalTimeout) as e:
            logger.warning("user installations lookup failed | login=%s error=%s", account_login, e)
            try:
                raw = [
                    inst for inst in self.github.list_app_installations()
                    if (inst.get("account") or {}).get("login") == account_login
                ]
            except (GitHubAPIError, ExternalTimeout, ConfigMissing) as app_error:
                logger.error("app installations lookup failed | login=%s error=%s", account_login, app_error)
                raw = []

        records = [InstallationRecord.from_api(inst) for inst in raw]
        self.record_installations(account_login, records)
        return records
