from datetime import datetime, timezone

import jwt
import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from errors import (
    ConfigMissing,
    ExternalTimeout,
    GitHubAPIError,
    TokenExchangeFailed,
    UpstreamAuthExpired,
)
from github_client import GitHubClient, parse_github_timestamp


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.text = "" if body is None else str(body)
        self.content = b"" if body is None else b"x"

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers, "timeout": timeout, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(scope="module")
def rsa_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return pem, key.public_key()


def make_client(session, private_key="", app_id="123"):
    return GitHubClient(
        app_id=app_id,
        private_key=private_key,
        client_id="cid",
        client_secret="csecret",
        api_url="https://api.github.test",
        web_url="https://github.test",
        timeout=5,
        session=session,
    )


def test_parse_github_timestamp():
    assert parse_github_timestamp("2026-01-15T13:00:00Z") == datetime(2026, 1, 15, 13, tzinfo=timezone.utc)


def test_app_jwt_is_rs256_signed(rsa_key):
    pem, public_key = rsa_key
    token = make_client(FakeSession(), private_key=pem).create_app_jwt()

    claims = jwt.decode(token, public_key, algorithms=["RS256"])
    assert claims["iss"] == "123"
    assert claims["exp"] - claims["iat"] == 11 * 60


def test_app_jwt_requires_credentials():
    with pytest.raises(ConfigMissing):
        make_client(FakeSession(), private_key="").create_app_jwt()


def test_authorize_and_install_urls():
    client = make_client(FakeSession())
    assert client.authorize_url() == (
        "https://github.test/login/oauth/authorize?client_id=cid&scope=user%3Aemail%2Cread%3Aorg"
    )
    assert client.install_url("merge-rewards") == "https://github.test/apps/merge-rewards/installations/new"


def test_exchange_oauth_code():
    session = FakeSession(FakeResponse(body={"access_token": "gho_abc"}))

    assert make_client(session).exchange_oauth_code("code-1") == "gho_abc"
    call = session.calls[0]
    assert call["url"] == "https://github.test/login/oauth/access_token"
    assert call["headers"]["Accept"] == "application/json"
    assert call["json"] == {"client_id": "cid", "client_secret": "csecret", "code": "code-1"}
    assert call["timeout"] == 5


def test_exchange_oauth_code_error_body():
    session = FakeSession(FakeResponse(body={"error": "bad_verification_code",
                                             "error_description": "The code is incorrect or expired."}))
    with pytest.raises(GitHubAPIError) as excinfo:
        make_client(session).exchange_oauth_code("stale")
    assert excinfo.value.status_code == 400
    assert "incorrect or expired" in excinfo.value.message


def test_user_installations_filtered_to_this_app():
    session = FakeSession(FakeResponse(body={"installations": [
        {"id": 1, "app_id": 123},
        {"id": 2, "app_id": 999},
    ]}))

    installs = make_client(session).list_user_installations("gho_abc")

    assert [i["id"] for i in installs] == [1]
    assert session.calls[0]["headers"]["Authorization"] == "token gho_abc"


def test_unauthorized_maps_to_expired_auth():
    session = FakeSession(FakeResponse(401, {"message": "Bad credentials"}))
    with pytest.raises(UpstreamAuthExpired) as excinfo:
        make_client(session).get_authenticated_user("gho_old")
    assert excinfo.value.status_code == 401


def test_error_response_carries_upstream_status():
    session = FakeSession(FakeResponse(403, {"message": "Resource not accessible by integration"}))
    with pytest.raises(GitHubAPIError) as excinfo:
        make_client(session).get_authenticated_user("gho_abc")
    assert excinfo.value.upstream_status == 403
    assert excinfo.value.status_code == 502
    assert "not accessible" in excinfo.value.message


def test_timeout_maps_to_external_timeout():
    session = FakeSession(requests.exceptions.ReadTimeout("slow"))
    with pytest.raises(ExternalTimeout):
        make_client(session).get_authenticated_user("gho_abc")


def test_connection_error_maps_to_api_error():
    session = FakeSession(requests.exceptions.ConnectionError("refused"))
    with pytest.raises(GitHubAPIError):
        make_client(session).get_authenticated_user("gho_abc")


def test_create_installation_token(rsa_key):
    pem, _ = rsa_key
    session = FakeSession(FakeResponse(201, {"token": "ghs_xyz", "expires_at": "2026-01-15T13:00:00Z"}))

    token, expires_at = make_client(session, private_key=pem).create_installation_token(42)

    assert token == "ghs_xyz"
    assert expires_at == datetime(2026, 1, 15, 13, tzinfo=timezone.utc)
    call = session.calls[0]
    assert call["url"] == "https://api.github.test/app/installations/42/access_tokens"
    assert call["headers"]["Authorization"].startswith("Bearer ")


def test_create_installation_token_failure(rsa_key):
    pem, _ = rsa_key
    session = FakeSession(FakeResponse(404, {"message": "Not Found"}))
    with pytest.raises(TokenExchangeFailed):
        make_client(session, private_key=pem).create_installation_token(42)


def test_create_installation_token_without_app_key():
    with pytest.raises(TokenExchangeFailed):
        make_client(FakeSession()).create_installation_token(42)


def test_list_installation_repositories_paginates():
    first_page = [{"full_name": f"octo/r{i}"} for i in range(100)]
    session = FakeSession(
        FakeResponse(body={"total_count": 101, "repositories": first_page}),
        FakeResponse(body={"total_count": 101, "repositories": [{"full_name": "octo/last"}]}),
    )

    repos = make_client(session).list_installation_repositories("ghs_xyz")

    assert len(repos) == 101
    assert repos[-1]["full_name"] == "octo/last"
    assert [c["params"]["page"] for c in session.calls] == [1, 2]


def test_post_issue_comment():
    session = FakeSession(FakeResponse(201, {"id": 7}))

    assert make_client(session).post_issue_comment("ghs_xyz", "octo/widgets", 42, "thanks") == {"id": 7}
    call = session.calls[0]
    assert call["url"] == "https://api.github.test/repos/octo/widgets/issues/42/comments"
    assert call["json"] == {"body": "thanks"}
