import json
from datetime import datetime, timedelta, timezone

import base58
import pytest

from errors import SigningFailed
from installation_cache import InstallationCache
from reward_orchestrator import RewardOrchestrator
from server import build_services, create_app
from solana_rpc import UnsignedTransfer
from wallet_ledger import WalletLedger
from webhook_security import compute_github_signature

WEBHOOK_SECRET = "test-webhook-secret"
NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_address(seed):
    """A valid 32-byte base58 Solana address."""
    return base58.b58encode(bytes([seed]) * 32).decode()


CONTRIBUTOR_ADDRESS = make_address(7)


def run_now(func, *args):
    func(*args)


class FakeRpc:
    def __init__(self):
        self.balances = {}
        self.sent = []
        self.airdrops = []
        self.balance_error = None
        self.send_error = None
        self.confirm_error = None
        self.airdrop_error = None

    def get_balance(self, address):
        if self.balance_error:
            raise self.balance_error
        return self.balances.get(address, 0)

    def build_transfer(self, from_address, to_address, lamports):
        payload = json.dumps({"from": from_address, "to": to_address, "lamports": lamports}).encode()
        return UnsignedTransfer(payload=payload, last_valid_block_height=1234)

    def send_raw_transaction(self, signed_payload):
        if self.send_error:
            raise self.send_error
        transfer = json.loads(signed_payload[len(b"signed:"):])
        self.balances[transfer["from"]] = self.balances.get(transfer["from"], 0) - transfer["lamports"]
        self.balances[transfer["to"]] = self.balances.get(transfer["to"], 0) + transfer["lamports"]
        signature = f"sig{len(self.sent) + 1}" + "x" * 80
        self.sent.append((signature, transfer))
        return signature

    def confirm_transaction(self, signature, last_valid_block_height=None):
        if self.confirm_error:
            raise self.confirm_error

    def request_airdrop(self, address, lamports):
        if self.airdrop_error:
            raise self.airdrop_error
        self.balances[address] = self.balances.get(address, 0) + lamports
        self.airdrops.append((address, lamports))
        return f"airdrop{len(self.airdrops)}"


class FakeCustodian:
    def __init__(self, rpc, faucet_lamports=1_000_000_000):
        self.rpc = rpc
        self.faucet_lamports = faucet_lamports
        self.created = []
        self.sign_error = None

    def create_account(self):
        address = make_address(100 + len(self.created))
        self.created.append(address)
        return address

    def request_faucet(self, address):
        return self.rpc.request_airdrop(address, self.faucet_lamports)

    def sign_transaction(self, address, unsigned_payload):
        if self.sign_error:
            raise self.sign_error
        if address not in self.created:
            raise SigningFailed(f"No custodial key held for {address}")
        return b"signed:" + unsigned_payload


class FakeGitHub:
    def __init__(self):
        self.token_calls = []
        self.comments = []
        self.repos = {}
        self.user_installations = []
        self.app_installations = []
        self.user_installations_error = None
        self.repos_error = None
        self.token_lifetime = timedelta(hours=1)
        self.clock = lambda: NOW

    def authorize_url(self):
        return "https://github.com/login/oauth/authorize?client_id=cid"

    def install_url(self, slug):
        return f"https://github.com/apps/{slug}/installations/new"

    def exchange_oauth_code(self, code):
        return f"user-token-{code}"

    def get_authenticated_user(self, user_token):
        return {"login": "octocat"}

    def list_user_installations(self, user_token):
        if self.user_installations_error:
            raise self.user_installations_error
        return self.user_installations

    def list_app_installations(self):
        return self.app_installations

    def create_installation_token(self, installation_id):
        self.token_calls.append(installation_id)
        token = f"inst-token-{installation_id}-{len(self.token_calls)}"
        return token, self.clock() + self.token_lifetime

    def list_installation_repositories(self, installation_token):
        if self.repos_error:
            raise self.repos_error
        installation_id = int(installation_token.split("-")[2])
        return self.repos.get(installation_id, [])

    def post_issue_comment(self, installation_token, repo_full_name, issue_number, body):
        self.comments.append((installation_token, repo_full_name, issue_number, body))
        return {"id": len(self.comments)}


@pytest.fixture
def rpc():
    return FakeRpc()


@pytest.fixture
def custodian(rpc):
    return FakeCustodian(rpc)


@pytest.fixture
def ledger(rpc, custodian):
    return WalletLedger(rpc, custodian, background=run_now, sleep=lambda seconds: None,
                        cluster="devnet")


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def installations(github):
    return InstallationCache(github, clock=lambda: NOW)


@pytest.fixture
def orchestrator(ledger):
    return RewardOrchestrator(ledger)


@pytest.fixture
def services(ledger, installations, github, orchestrator):
    return build_services(
        ledger=ledger,
        installations=installations,
        github=github,
        orchestrator=orchestrator,
        webhook_secret=WEBHOOK_SECRET,
        frontend_url="http://frontend.test",
        background=run_now,
    )


@pytest.fixture
def app(services):
    return create_app(services=services, testing=True)


@pytest.fixture
def client(app):
    return app.test_client()


def sign(body, secret=WEBHOOK_SECRET):
    return compute_github_signature(body, secret)


def post_webhook(client, event, payload, secret=WEBHOOK_SECRET, signature=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    headers = {
        "X-GitHub-Event": event,
        "X-Hub-Signature-256": signature if signature is not None else sign(body, secret),
        "Content-Type": "application/json",
    }
    return client.post("/webhook", data=body, headers=headers)


def merged_pr_payload(repo="octo/widgets", author="alice", additions=50, changed_files=5,
                      deletions=3, number=42, installation_id=99, merged=True, action="closed"):
    return {
        "action": action,
        "pull_request": {
            "number": number,
            "title": "Add widget caching",
            "merged": merged,
            "additions": additions,
            "deletions": deletions,
            "changed_files": changed_files,
            "user": {"login": author},
        },
        "repository": {"full_name": repo},
        "installation": {"id": installation_id},
    }
