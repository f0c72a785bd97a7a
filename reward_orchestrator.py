"""
Merge Rewards orchestrator
Drives one merged PR through the payout flow and records how it ended.

    Received -> Classified -> Ineligible
                           -> Eligible -> MissingWallet | MissingContributor
                                       -> PayoutAttempted -> Sent | Failed

Failed payouts are logged and recorded, never retried.
"""

import enum
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from errors import RewardsError
from reward_policy import RewardDecision, evaluate, lamports_to_sol, reward_lamports
from wallet_ledger import TransactionReceipt
from webhook_events import PullRequestSummary

logger = logging.getLogger(__name__)

MAX_OUTCOMES = 1000


class RewardStatus(enum.Enum):
    INELIGIBLE = "ineligible"
    MISSING_WALLET = "missing_wallet"
    MISSING_CONTRIBUTOR = "missing_contributor"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class RewardOutcome:
    status: RewardStatus
    summary: PullRequestSummary
    decision: RewardDecision
    lamports: int
    recorded_at: str
    receipt: Optional[TransactionReceipt] = None
    reason: Optional[str] = None

    @property
    def sent(self):
        return self.status is RewardStatus.SENT

    @property
    def amount(self):
        """Reward in SOL."""
        return lamports_to_sol(self.lamports)

    def to_dict(self):
        return {
            "status": self.status.value,
            "sent": self.sent,
            "pullRequest": self.summary.to_dict(),
            "decision": self.decision.to_dict(),
            "amount": self.amount,
            "lamports": self.lamports,
            "receipt": self.receipt.to_dict() if self.receipt else None,
            "reason": self.reason,
            "recordedAt": self.recorded_at,
        }


class RewardOrchestrator:
    def __init__(self, ledger, commenter=None, policy=evaluate, max_outcomes=MAX_OUTCOMES):
        self.ledger = ledger
        self.commenter = commenter
        self.policy = policy
        self._lock = threading.Lock()
        self._outcomes = deque(maxlen=max_outcomes)

    def process(self, summary):
        """Run the payout flow for a merged PR and return its terminal outcome."""
        logger.info("merged PR received | repo=%s pr=%s author=%s +%d -%d files=%d",
                    summary.repository, summary.number, summary.author,
                    summary.additions, summary.deletions, summary.files_changed)

        decision = self.policy(summary.additions, summary.files_changed)
        lamports = reward_lamports(decision.points)

        if not decision.qualifies:
            return self._finish(RewardStatus.INELIGIBLE, summary, decision, 0,
                                reason=f"PR too small ({summary.additions} additions, "
                                       f"{summary.files_changed} files)")

        wallet = self.ledger.get_wallet(summary.repository)
        if wallet is None:
            return self._finish(RewardStatus.MISSING_WALLET, summary, decision, lamports,
                                reason=f"No wallet configured for {summary.repository}")

        address = self.ledger.get_contributor_address(summary.author)
        if address is None:
            return self._finish(RewardStatus.MISSING_CONTRIBUTOR, summary, decision, lamports,
                                reason=f"{summary.author} has not registered a payout address")

        try:
            receipt = self.ledger.send_reward(wallet, address, lamports, summary.to_dict())
        except RewardsError as e:
            logger.error("reward payout failed | repo=%s pr=%s contributor=%s lamports=%d error=%s: %s",
                         summary.repository, summary.number, summary.author, lamports,
                         type(e).__name__, e.message)
            return self._finish(RewardStatus.FAILED, summary, decision, lamports,
                                reason=f"{type(e).__name__}: {e.message}")
        except Exception as e:
            logger.exception("reward payout crashed | repo=%s pr=%s contributor=%s lamports=%d",
                             summary.repository, summary.number, summary.author, lamports)
            return self._finish(RewardStatus.FAILED, summary, decision, lamports,
                                reason=f"{type(e).__name__}: {e}")

        return self._finish(RewardStatus.SENT, summary, decision, lamports, receipt=receipt)

    def _finish(self, status, summary, decision, lamports, receipt=None, reason=None):
        outcome = RewardOutcome(
            status=status,
            summary=summary,
            decision=decision,
            lamports=lamports,
            recorded_at=datetime.now(timezone.utc).isoformat(),
            receipt=receipt,
            reason=reason,
        )
        with self._lock:
            self._outcomes.append(outcome)
        logger.info("reward outcome | repo=%s pr=%s status=%s reason=%s",
                    summary.repository, summary.number, status.value, reason)

        if self.commenter is not None:
            self.commenter.post(outcome)
        return outcome

    def recent_outcomes(self, limit=50):
        """Newest first."""
        with self._lock:
            outcomes = list(self._outcomes)
        return list(reversed(outcomes))[:limit]

# =============================================================================
# THANK-YOU COMMENTS
# =============================================================================

def render_thank_you(outcome):
    summary = outcome.summary
    if outcome.status is RewardStatus.SENT:
        receipt = outcome.receipt
        return f"""## 🎉 Reward Sent!

Thanks @{summary.author} for your contribution!

**Reward**: {outcome.amount} SOL ({outcome.decision.points} points)
**Changes**: +{summary.additions} -{summary.deletions} across {summary.files_changed} files
**Transaction**: [{receipt.signature[:8]}...{receipt.signature[-8:]}]({receipt.explorer_url})
"""
    if outcome.status is RewardStatus.MISSING_CONTRIBUTOR:
        return f"""## 💰 Reward Waiting

Thanks @{summary.author}! This PR earned **{outcome.amount} SOL** ({outcome.decision.points} points),
but you have not registered a Solana payout address yet.
"""
    if outcome.status is RewardStatus.FAILED:
        return f"""## ⚠️ Reward Not Sent

Thanks @{summary.author}! This PR earned **{outcome.amount} SOL**, but the payout failed.
A maintainer has been notified through the service logs.
"""
    return None


class ThankYouCommenter:
    """Posts an acknowledgement on the merged PR. Best effort only."""

    def __init__(self, github, installations):
        self.github = github
        self.installations = installations

    def post(self, outcome):
        summary = outcome.summary
        body = render_thank_you(outcome)
        if body is None or summary.installation_id is None:
            return False
        try:
            token = self.installations.get_installation_token(summary.installation_id)
            self.github.post_issue_comment(token, summary.repository, summary.number, body)
        except RewardsError as e:
            logger.warning("thank-you comment failed | repo=%s pr=%s error=%s",
                           summary.repository, summary.number, e)
            return False
        return True
