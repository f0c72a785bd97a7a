"""
Merge Rewards server
GitHub App that pays contributors in SOL when their pull requests are merged.

Run:
    python server.py

Every piece of state (wallets, contributors, installations, tokens) lives
in memory on the services built by create_app().
"""

import logging
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

import config
from api_github import github_bp
from api_wallets import wallets_bp
from api_webhooks import webhooks_bp
from custodian import KeypairCustodian
from errors import RewardsError
from github_client import GitHubClient
from installation_cache import InstallationCache
from reward_orchestrator import RewardOrchestrator, ThankYouCommenter
from services import EXTENSION_KEY, Services
from solana_rpc import SolanaLedgerClient
from wallet_ledger import WalletLedger, run_in_thread

logger = logging.getLogger("merge_rewards")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# =============================================================================
# LOGGING
# =============================================================================

def configure_logging(level=None):
    """Attach one stream handler to the root logger (safe to call repeatedly)."""
    root = logging.getLogger()
    root.setLevel((level or config.LOG_LEVEL).upper())
    if not any(getattr(h, "_merge_rewards", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
        handler._merge_rewards = True
        root.addHandler(handler)

# =============================================================================
# APP FACTORY
# =============================================================================

def build_services(ledger=None, installations=None, github=None, orchestrator=None,
                   webhook_secret=None, frontend_url=None, background=None):
    """Wire the default collaborators, keeping any that were passed in."""
    background = background or run_in_thread
    github = github if github is not None else GitHubClient()
    if installations is None:
        installations = InstallationCache(github)
    if ledger is None:
        rpc = SolanaLedgerClient()
        ledger = WalletLedger(rpc, KeypairCustodian(rpc), background=background)
    if orchestrator is None:
        commenter = ThankYouCommenter(github, installations) if config.POST_THANK_YOU_COMMENTS else None
        orchestrator = RewardOrchestrator(ledger, commenter=commenter)

    return Services(
        ledger=ledger,
        installations=installations,
        github=github,
        orchestrator=orchestrator,
        webhook_secret=config.WEBHOOK_SECRET if webhook_secret is None else webhook_secret,
        frontend_url=frontend_url or config.FRONTEND_URL,
        background=background,
    )


def create_app(services=None, testing=False, **overrides):
    configure_logging()

    app = Flask(__name__)
    app.config["TESTING"] = testing
    app.config["RATELIMIT_ENABLED"] = not testing

    services = services or build_services(**overrides)
    app.extensions[EXTENSION_KEY] = services

    CORS(app, origins=[services.frontend_url], supports_credentials=True)

    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=["1000 per hour", "100 per minute"],
        storage_uri=config.REDIS_URL,
        strategy="fixed-window",
        headers_enabled=True,
    )

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(github_bp)
    app.register_blueprint(wallets_bp)

    # GitHub redelivers in bursts after outages
    limiter.limit("50 per minute")(webhooks_bp)

    _register_error_handlers(app)

    @app.route('/', methods=['GET'])
    def index():
        return jsonify({
            "status": "OK",
            "message": "GitHub App Server with Solana rewards",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "wallets_created": services.ledger.wallet_count(),
            "contributors_registered": services.ledger.contributor_count(),
        }), 200

    return app


def _register_error_handlers(app):
    @app.errorhandler(RewardsError)
    def rewards_error(e):
        if e.status_code >= 500:
            logger.error("request failed | %s %s status=%d error=%s",
                         request.method, request.path, e.status_code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(429)
    def ratelimit_handler(e):
        logger.warning("Rate limit exceeded: %s - %s", request.remote_addr, request.path)
        return jsonify({
            "error": "Rate limit exceeded",
            "message": "Too many requests. Please slow down and try again later.",
            "retry_after": e.description if hasattr(e, "description") else "60 seconds",
        }), 429

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def unexpected_error(e):
        logger.exception("Server error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    app = create_app()
    logger.info("Merge Rewards server starting on port %d (Solana %s)", config.PORT, config.SOLANA_CLUSTER)
    app.run(host="0.0.0.0", port=config.PORT, threaded=True)
