"""
Merge Rewards Wallet API - repository wallets, contributor addresses, stats
POST   /wallet/create/<repo>   - Create the custodial wallet for a repository
GET    /wallet/<repo>          - Wallet details (balance refreshed when the ledger answers)
POST   /wallet/fund/<repo>     - Request faucet funds
DELETE /wallet/<repo>          - Forget a repository wallet
GET    /wallets                - All repository wallets
POST   /contributor/register   - Register {username, solanaAddress}
GET    /contributor/<username> - Registered payout address
DELETE /contributor/<username> - Remove a registration
GET    /contributors           - All registrations
GET    /stats                  - Ledger and webhook statistics
GET    /rewards/recent         - Most recent reward outcomes

Repository names are "owner/name"; clients may URL-encode the slash.
"""

import logging
from urllib.parse import unquote

from flask import Blueprint, jsonify, request

from errors import ContributorNotFound, MalformedPayload, RewardsError, WalletNotFound
from services import get_services

logger = logging.getLogger(__name__)

wallets_bp = Blueprint('wallets', __name__)

MAX_RECENT_REWARDS = 200

# =============================================================================
# REPOSITORY WALLETS
# =============================================================================

@wallets_bp.route('/wallet/create/<path:repo_full_name>', methods=['POST'])
def create_wallet(repo_full_name):
    wallet = get_services().ledger.create_wallet(unquote(repo_full_name))
    return jsonify(wallet.to_dict()), 200


@wallets_bp.route('/wallet/fund/<path:repo_full_name>', methods=['POST'])
def fund_wallet(repo_full_name):
    receipt = get_services().ledger.fund_from_faucet(unquote(repo_full_name))
    return jsonify(receipt.to_dict()), 200


@wallets_bp.route('/wallet/<path:repo_full_name>', methods=['GET'])
def get_wallet(repo_full_name):
    repo = unquote(repo_full_name)
    ledger = get_services().ledger
    wallet = ledger.get_wallet(repo)
    if wallet is None:
        raise WalletNotFound()

    try:
        wallet = ledger.refresh_balance(repo) or wallet
    except RewardsError as e:
        # Serve the cached record when the ledger is slow or down
        logger.warning("balance refresh failed | repo=%s error=%s", repo, e)
    return jsonify(wallet.to_dict()), 200


@wallets_bp.route('/wallet/<path:repo_full_name>', methods=['DELETE'])
def delete_wallet(repo_full_name):
    repo = unquote(repo_full_name)
    if not get_services().ledger.remove_wallet(repo):
        raise WalletNotFound()
    return jsonify({"message": "Wallet removed", "repository": repo}), 200


@wallets_bp.route('/wallets', methods=['GET'])
def list_wallets():
    wallets = get_services().ledger.list_wallets()
    return jsonify({"wallets": [w.to_dict() for w in wallets], "count": len(wallets)}), 200

# =============================================================================
# CONTRIBUTORS
# =============================================================================

@wallets_bp.route('/contributor/register', methods=['POST'])
def register_contributor():
    data = request.get_json(silent=True) or {}
    username = data.get("username")
    address = data.get("solanaAddress") or data.get("payoutAddress")

    if not isinstance(username, str) or not username or not address:
        raise MalformedPayload("Username and Solana address are required")

    get_services().ledger.register_contributor(username, address)
    return jsonify({
        "message": "Solana address registered successfully",
        "username": username,
        "solanaAddress": address,
    }), 200


@wallets_bp.route('/contributor/<username>', methods=['GET'])
def get_contributor(username):
    address = get_services().ledger.get_contributor_address(username)
    if address is None:
        raise ContributorNotFound()
    return jsonify({"username": username, "solanaAddress": address}), 200


@wallets_bp.route('/contributor/<username>', methods=['DELETE'])
def delete_contributor(username):
    if not get_services().ledger.remove_contributor(username):
        raise ContributorNotFound()
    return jsonify({"message": "Contributor removed", "username": username}), 200


@wallets_bp.route('/contributors', methods=['GET'])
def list_contributors():
    contributors = get_services().ledger.list_contributors()
    return jsonify({"contributors": contributors, "count": len(contributors)}), 200

# =============================================================================
# STATS
# =============================================================================

@wallets_bp.route('/stats', methods=['GET'])
def stats():
    services = get_services()
    return jsonify({
        **services.ledger.statistics(),
        "webhookEvents": services.event_snapshot(),
    }), 200


@wallets_bp.route('/rewards/recent', methods=['GET'])
def recent_rewards():
    limit = request.args.get('limit', 50, type=int)
    limit = max(1, min(limit, MAX_RECENT_REWARDS))
    outcomes = get_services().orchestrator.recent_outcomes(limit)
    return jsonify({"rewards": [o.to_dict() for o in outcomes], "count": len(outcomes)}), 200
