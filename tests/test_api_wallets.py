import pytest

from errors import LedgerUnavailable
from conftest import CONTRIBUTOR_ADDRESS, merged_pr_payload, post_webhook

REPO = "octo/widgets"


def test_index(client, ledger):
    ledger.create_wallet(REPO)
    data = client.get("/").get_json()
    assert data["status"] == "OK"
    assert data["wallets_created"] == 1
    assert data["contributors_registered"] == 0


def test_create_wallet(client, ledger, rpc):
    response = client.post(f"/wallet/create/{REPO}")

    assert response.status_code == 200
    data = response.get_json()
    assert data["repository"] == REPO
    assert data["fundingStatus"] == "pending"
    assert ledger.get_wallet(REPO).funding_status == "funded"
    assert rpc.airdrops[0][0] == data["address"]


def test_create_wallet_accepts_encoded_slash(client, ledger):
    assert client.post("/wallet/create/octo%2Fwidgets").status_code == 200
    assert ledger.has_wallet(REPO)


def test_create_wallet_twice_conflicts(client, ledger):
    first = client.post(f"/wallet/create/{REPO}").get_json()
    response = client.post(f"/wallet/create/{REPO}")

    assert response.status_code == 409
    assert response.get_json() == {"error": "Wallet already exists for this repository"}
    assert ledger.get_wallet(REPO).address == first["address"]


def test_get_wallet_refreshes_balance(client, ledger, rpc):
    wallet = ledger.create_wallet(REPO)
    rpc.balances[wallet.address] = 123

    data = client.get(f"/wallet/{REPO}").get_json()
    assert data["balance"] == 123
    assert data["balanceSol"] == pytest.approx(123e-9)


def test_get_wallet_serves_cache_when_ledger_down(client, ledger, rpc):
    ledger.create_wallet(REPO)
    rpc.balance_error = LedgerUnavailable("node down")

    response = client.get(f"/wallet/{REPO}")
    assert response.status_code == 200
    assert response.get_json()["balance"] == 1_000_000_000


def test_get_missing_wallet(client):
    response = client.get("/wallet/octo/missing")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Wallet not found for this repository"}


def test_fund_wallet(client, ledger):
    ledger.create_wallet(REPO)
    response = client.post(f"/wallet/fund/{REPO}")

    assert response.status_code == 200
    data = response.get_json()
    assert data["message"] == "Faucet request successful"
    assert data["explorerUrl"].endswith("?cluster=devnet")
    assert ledger.get_wallet(REPO).balance == 2_000_000_000


def test_fund_missing_wallet(client):
    assert client.post(f"/wallet/fund/{REPO}").status_code == 404


def test_fund_wallet_faucet_error(client, ledger, rpc):
    ledger.create_wallet(REPO)
    rpc.airdrop_error = LedgerUnavailable("airdrop limit reached")

    response = client.post(f"/wallet/fund/{REPO}")
    assert response.status_code == 502
    assert response.get_json() == {"error": "airdrop limit reached"}


def test_delete_and_list_wallets(client, ledger):
    ledger.create_wallet("octo/a")
    ledger.create_wallet("octo/b")

    assert client.delete("/wallet/octo/a").status_code == 200
    assert client.delete("/wallet/octo/a").status_code == 404

    data = client.get("/wallets").get_json()
    assert data["count"] == 1
    assert data["wallets"][0]["repository"] == "octo/b"


def test_register_contributor(client, ledger):
    response = client.post("/contributor/register",
                           json={"username": "alice", "solanaAddress": CONTRIBUTOR_ADDRESS})

    assert response.status_code == 200
    assert response.get_json() == {
        "message": "Solana address registered successfully",
        "username": "alice",
        "solanaAddress": CONTRIBUTOR_ADDRESS,
    }
    assert ledger.get_contributor_address("alice") == CONTRIBUTOR_ADDRESS


def test_register_contributor_accepts_payout_address_key(client, ledger):
    response = client.post("/contributor/register",
                           json={"username": "alice", "payoutAddress": CONTRIBUTOR_ADDRESS})
    assert response.status_code == 200
    assert ledger.get_contributor_address("alice") == CONTRIBUTOR_ADDRESS


@pytest.mark.parametrize("body", [
    {},
    {"username": "alice"},
    {"solanaAddress": CONTRIBUTOR_ADDRESS},
    {"username": "", "solanaAddress": CONTRIBUTOR_ADDRESS},
])
def test_register_contributor_requires_fields(client, body):
    response = client.post("/contributor/register", json=body)
    assert response.status_code == 400
    assert response.get_json() == {"error": "Username and Solana address are required"}


def test_register_contributor_rejects_bad_address(client, ledger):
    response = client.post("/contributor/register", json={"username": "alice", "solanaAddress": "nope"})
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("Invalid Solana address")
    assert ledger.get_contributor_address("alice") is None


def test_contributor_lookup_and_removal(client, ledger):
    ledger.register_contributor("alice", CONTRIBUTOR_ADDRESS)

    assert client.get("/contributor/alice").get_json() == {
        "username": "alice", "solanaAddress": CONTRIBUTOR_ADDRESS,
    }
    assert client.get("/contributors").get_json()["count"] == 1
    assert client.delete("/contributor/alice").status_code == 200
    assert client.get("/contributor/alice").status_code == 404
    assert client.delete("/contributor/alice").status_code == 404


def test_stats_include_webhook_events(client, ledger):
    ledger.create_wallet(REPO)
    ledger.register_contributor("alice", CONTRIBUTOR_ADDRESS)
    post_webhook(client, "pull_request", merged_pr_payload())
    post_webhook(client, "ping", {"zen": "hi"})

    data = client.get("/stats").get_json()
    assert data["totalWallets"] == 1
    assert data["totalContributors"] == 1
    assert data["totalTransactions"] == 1
    assert data["totalRewardsDistributed"] == pytest.approx(0.025)
    assert data["webhookEvents"] == {"PullRequestMerged": 1, "Ping": 1}


def test_recent_rewards(client, ledger):
    ledger.create_wallet(REPO)
    ledger.register_contributor("alice", CONTRIBUTOR_ADDRESS)
    post_webhook(client, "pull_request", merged_pr_payload(additions=5))
    post_webhook(client, "pull_request", merged_pr_payload())

    data = client.get("/rewards/recent?limit=1").get_json()
    assert data["count"] == 1
    assert data["rewards"][0]["status"] == "sent"
    assert data["rewards"][0]["amount"] == pytest.approx(0.025)

    assert client.get("/rewards/recent").get_json()["count"] == 2


def test_unknown_route_is_json_404(client):
    response = client.get("/nope")
    assert response.status_code == 404
    assert "error" in response.get_json()
