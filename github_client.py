"""
Merge Rewards GitHub API client
Thin requests-based wrapper over the GitHub REST and OAuth endpoints the
service needs: OAuth code exchange, user lookup, installation listing,
installation token exchange, repository listing and issue comments.
"""

import logging
import time
from datetime import datetime, timezone
from urllib.parse import urlencode

import jwt
import requests

import config
from errors import (
    ConfigMissing,
    ExternalTimeout,
    GitHubAPIError,
    TokenExchangeFailed,
    UpstreamAuthExpired,
)

logger = logging.getLogger(__name__)

OAUTH_SCOPE = "user:email,read:org"
PER_PAGE = 100


def parse_github_timestamp(value):
    """Parse GitHub's `2024-01-01T00:00:00Z` timestamps into aware datetimes."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class GitHubClient:
    def __init__(self, app_id=None, private_key=None, client_id=None, client_secret=None,
                 api_url=None, web_url=None, timeout=None, session=None):
        self.app_id = str(app_id if app_id is not None else config.GITHUB_APP_ID)
        self.private_key = private_key if private_key is not None else config.GITHUB_PRIVATE_KEY
        self.client_id = client_id if client_id is not None else config.GITHUB_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.GITHUB_CLIENT_SECRET
        self.api_url = (api_url or config.GITHUB_API_URL).rstrip("/")
        self.web_url = (web_url or config.GITHUB_WEB_URL).rstrip("/")
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    # =========================================================================
    # AUTH HELPERS
    # =========================================================================

    def create_app_jwt(self):
        """Sign a short-lived GitHub App JWT (RS256, 10 minute lifetime)."""
        if not self.app_id or not self.private_key:
            raise ConfigMissing("GITHUB_APP_ID and GITHUB_PRIVATE_KEY are required")
        now = int(time.time())
        payload = {
            "iat": now - 60,  # allow for clock drift
            "exp": now + 10 * 60,
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    def authorize_url(self, scope=OAUTH_SCOPE):
        query = urlencode({"client_id": self.client_id, "scope": scope})
        return f"{self.web_url}/login/oauth/authorize?{query}"

    def install_url(self, app_slug):
        return f"{self.web_url}/apps/{app_slug}/installations/new"

    @staticmethod
    def _headers(authorization=None, accept="application/vnd.github+json"):
        headers = {
            "Accept": accept,
            "User-Agent": "merge-rewards",
        }
        if authorization:
            headers["Authorization"] = authorization
        return headers

    def _request(self, method, url, authorization=None, accept="application/vnd.github+json", **kwargs):
        try:
            resp = self.session.request(
                method,
                url,
                headers=self._headers(authorization, accept),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.exceptions.Timeout as e:
            raise ExternalTimeout(f"GitHub request timed out: {method} {url}") from e
        except requests.exceptions.RequestException as e:
            raise GitHubAPIError(f"GitHub connection error: {e}") from e

        if not resp.ok:
            logger.warning("github request failed | %s %s status=%d", method, url, resp.status_code)
        if resp.status_code == 401:
            raise UpstreamAuthExpired(upstream_status=401)
        if not resp.ok:
            try:
                detail = resp.json().get("message", resp.text)
            except ValueError:
                detail = resp.text
            raise GitHubAPIError(
                f"GitHub API {resp.status_code}: {detail}",
                upstream_status=resp.status_code,
            )
        return resp.json() if resp.content else None

    # =========================================================================
    # OAUTH
    # =========================================================================

    def exchange_oauth_code(self, code):
        """Exchange an OAuth `code` for a user access token."""
        data = self._request(
            "POST",
            f"{self.web_url}/login/oauth/access_token",
            accept="application/json",
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
            },
        ) or {}
        token = data.get("access_token")
        if not token:
            # GitHub answers 200 with an error body for bad or reused codes
            reason = data.get("error_description") or data.get("error") or "no access token returned"
            raise GitHubAPIError(f"GitHub OAuth failed: {reason}", status_code=400)
        return token

    def get_authenticated_user(self, user_token):
        return self._request("GET", f"{self.api_url}/user", authorization=f"token {user_token}")

    # =========================================================================
    # INSTALLATIONS
    # =========================================================================

    def list_user_installations(self, user_token):
        """Installations of this app visible to the user."""
        data = self._request(
            "GET",
            f"{self.api_url}/user/installations",
            authorization=f"token {user_token}",
            params={"per_page": PER_PAGE},
        ) or {}
        return [
            inst for inst in data.get("installations", [])
            if str(inst.get("app_id")) == self.app_id
        ]

    def list_app_installations(self):
        """Every installation of this app, authenticated as the app."""
        return self._request(
            "GET",
            f"{self.api_url}/app/installations",
            authorization=f"Bearer {self.create_app_jwt()}",
            params={"per_page": PER_PAGE},
        ) or []

    def create_installation_token(self, installation_id):
        """
        Exchange the app credential for an installation access token.
        Returns: (token, expires_at)
        """
        try:
            data = self._request(
                "POST",
                f"{self.api_url}/app/installations/{installation_id}/access_tokens",
                authorization=f"Bearer {self.create_app_jwt()}",
                json={},
            ) or {}
        except ExternalTimeout:
            raise
        except (GitHubAPIError, ConfigMissing) as e:
            raise TokenExchangeFailed(
                f"Failed to get installation token for {installation_id}: {e.message}"
            ) from e

        token = data.get("token")
        expires_at = data.get("expires_at")
        if not token or not expires_at:
            raise TokenExchangeFailed(f"Token response for installation {installation_id} was incomplete")
        return token, parse_github_timestamp(expires_at)

    # =========================================================================
    # REPOSITORIES & COMMENTS
    # =========================================================================

    def list_installation_repositories(self, installation_token):
        repos = []
        page = 1
        while True:
            data = self._request(
                "GET",
                f"{self.api_url}/installation/repositories",
                authorization=f"token {installation_token}",
                params={"per_page": PER_PAGE, "page": page},
            ) or {}
            batch = data.get("repositories", [])
            repos.extend(batch)
            if len(batch) < PER_PAGE or len(repos) >= data.get("total_count", 0):
                return repos
            page += 1

    def post_issue_comment(self, installation_token, repo_full_name, issue_number, body):
        """Post a comment on an issue or pull request."""
        return self._request(
            "POST",
            f"{self.api_url}/repos/{repo_full_name}/issues/{issue_number}/comments",
            authorization=f"token {installation_token}",
            json={"body": body},
        )
