"""
Merge Rewards GitHub connection API
GET /github/connect                 - Start the GitHub OAuth flow
GET /github/install                 - Send the user to the app install page
GET /github/callback                - OAuth callback: resolve user + installations, back to frontend
GET /github/installation/<username> - Cached app installations for a user
GET /github/repos/<username>        - Repositories reachable through the user's installations
"""

import logging
from urllib.parse import quote

from flask import Blueprint, jsonify, redirect, request

import config
from errors import ConfigMissing, NoInstallationsFound, UpstreamAuthExpired
from services import get_services

logger = logging.getLogger(__name__)

github_bp = Blueprint('github', __name__)


@github_bp.route('/github/connect', methods=['GET'])
def github_connect():
    return redirect(get_services().github.authorize_url())


@github_bp.route('/github/install', methods=['GET'])
def github_install():
    if not config.GITHUB_APP_SLUG:
        raise ConfigMissing("GITHUB_APP_SLUG is not configured")
    return redirect(get_services().github.install_url(config.GITHUB_APP_SLUG))


@github_bp.route('/github/callback', methods=['GET'])
def github_callback():
    """
    Exchange the OAuth code, look up who connected and which installations
    they can see, then hand the browser back to the frontend.
    """
    code = request.args.get('code')
    if not code:
        return jsonify({"error": "Missing authorization code"}), 400

    services = get_services()
    user_token = services.github.exchange_oauth_code(code)
    user = services.github.get_authenticated_user(user_token) or {}
    username = user.get("login")
    if not username:
        return jsonify({"error": "GitHub did not return a username"}), 502

    logger.info("user connected | login=%s", username)
    installations = services.installations.refresh_user_installations(username, user_token)
    logger.info("installations resolved | login=%s count=%d", username, len(installations))

    return redirect(f"{services.frontend_url.rstrip('/')}/githubmanager/?username={quote(username)}")


@github_bp.route('/github/installation/<username>', methods=['GET'])
def github_installations(username):
    installations = get_services().installations.get_installations(username)
    if not installations:
        raise NoInstallationsFound()
    return jsonify({
        "username": username,
        "installations": [inst.to_dict() for inst in installations],
    }), 200


@github_bp.route('/github/repos/<username>', methods=['GET'])
def github_repos(username):
    """List every repository the user's installations can reach, with wallet info."""
    services = get_services()
    installations = services.installations.get_installations(username)
    if not installations:
        raise NoInstallationsFound()

    all_repos = []
    for installation in installations:
        token = services.installations.get_installation_token(installation.id)
        try:
            repos = services.github.list_installation_repositories(token)
        except UpstreamAuthExpired:
            services.installations.invalidate_token(installation.id)
            logger.warning("installation token rejected | login=%s installation=%s", username, installation.id)
            raise

        for repo in repos:
            wallet = services.ledger.get_wallet(repo["full_name"])
            all_repos.append({
                "name": repo.get("name"),
                "full_name": repo["full_name"],
                "private": repo.get("private", False),
                "description": repo.get("description"),
                "updated_at": repo.get("updated_at"),
                "installation_id": installation.id,
                "wallet": wallet.to_dict() if wallet else None,
            })

    return jsonify(all_repos), 200
