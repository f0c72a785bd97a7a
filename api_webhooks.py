"""
Merge Rewards GitHub Webhook Handler
POST /webhook        - Verify, classify and dispatch GitHub App deliveries
GET  /webhook/health - Webhook configuration check

Listens for:
- pull_request (action: closed + merged = true) → Score PR and pay the author in SOL
- installation (created / deleted)              → Track which accounts installed the app
- installation_repositories                     → Keep repository counts current
- ping                                          → Answer pong

The body is kept raw until the signature checks out; nothing is parsed
or trusted before that.
"""

import logging

from flask import Blueprint, jsonify, request

from errors import ConfigMissing, SignatureInvalid
from services import get_services
from webhook_events import (
    InstallationCreated,
    InstallationDeleted,
    InstallationRepositoriesChanged,
    Ping,
    PullRequestMerged,
    PullRequestOpened,
    PullRequestSynchronized,
    Unrecognized,
    classify,
    parse_webhook_body,
)
from webhook_security import verify_github_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__)

# =============================================================================
# EVENT HANDLERS
# =============================================================================

def _run_reward(orchestrator, summary):
    try:
        orchestrator.process(summary)
    except Exception:
        # Off the request thread there is no caller left to raise to
        logger.exception("reward pipeline crashed | repo=%s pr=%s", summary.repository, summary.number)


def handle_merged(services, event):
    summary = event.summary
    logger.info("PR merged | repo=%s pr=%s author=%s", summary.repository, summary.number, summary.author)
    services.background(_run_reward, services.orchestrator, event.summary)


def handle_pr_activity(services, event):
    logger.info("PR activity ignored | repo=%s pr=%s author=%s kind=%s",
                event.repository, event.number, event.author, type(event).__name__)


def handle_installation_created(services, event):
    record = event.record
    logger.info("app installed | login=%s installation=%s repos=%d",
                record.account_login, record.id, record.repository_count)
    services.installations.add_installation(record)


def handle_installation_deleted(services, event):
    logger.info("app uninstalled | login=%s installation=%s", event.account_login, event.installation_id)
    services.installations.remove_installation(event.account_login, event.installation_id)


def handle_repositories_changed(services, event):
    logger.info("installation repositories changed | installation=%s added=%d removed=%d",
                event.installation_id, len(event.added), len(event.removed))
    services.installations.adjust_repository_count(
        event.installation_id, len(event.added) - len(event.removed)
    )


def handle_unrecognized(services, event):
    logger.info("event ignored | type=%s", event.label)


EVENT_HANDLERS = {
    PullRequestMerged: handle_merged,
    PullRequestOpened: handle_pr_activity,
    PullRequestSynchronized: handle_pr_activity,
    InstallationCreated: handle_installation_created,
    InstallationDeleted: handle_installation_deleted,
    InstallationRepositoriesChanged: handle_repositories_changed,
    Unrecognized: handle_unrecognized,
}


def _event_label(event):
    if isinstance(event, Unrecognized):
        return f"unrecognized:{event.label}"
    return type(event).__name__

# =============================================================================
# WEBHOOK HANDLER
# =============================================================================

@webhooks_bp.route('/webhook', methods=['POST'])
def github_webhook():
    """Handle one GitHub App delivery."""
    services = get_services()

    if not services.webhook_secret:
        logger.error("WEBHOOK_SECRET not set, rejecting delivery")
        raise ConfigMissing()

    payload_body = request.get_data(cache=True)
    signature = request.headers.get('X-Hub-Signature-256', '')
    if not verify_github_signature(payload_body, signature, services.webhook_secret):
        logger.warning("invalid webhook signature | ip=%s delivery=%s",
                       request.remote_addr, request.headers.get('X-GitHub-Delivery'))
        raise SignatureInvalid()

    event_type = request.headers.get('X-GitHub-Event', '')
    payload = parse_webhook_body(payload_body)
    repository = payload.get("repository")
    repo = repository.get("full_name") if isinstance(repository, dict) else None
    logger.info("received %s event | repo=%s", event_type, repo)

    event = classify(event_type, payload)
    services.record_event(_event_label(event))

    if isinstance(event, Ping):
        logger.info("webhook ping received | zen=%s", event.zen)
        return jsonify({"message": "pong"}), 200

    EVENT_HANDLERS[type(event)](services, event)
    return "OK", 200

# =============================================================================
# HEALTH CHECK
# =============================================================================

@webhooks_bp.route('/webhook/health', methods=['GET'])
def webhook_health():
    """Simple health check for webhook endpoint."""
    services = get_services()
    return jsonify({
        "status": "ok",
        "webhook_secret_configured": bool(services.webhook_secret),
    }), 200
