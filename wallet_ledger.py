"""
Merge Rewards wallet ledger
In-memory registry of per-repository custodial wallets and contributor
payout addresses, plus the operations that move SOL between them.

Wallet lifecycle:
    create_wallet -> (background) faucet funding -> balance polled until it moves
    send_reward   -> balance check -> build -> sign -> submit -> confirm -> stats

All state is process memory: nothing survives a restart.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

import config
from errors import (
    InsufficientFunds,
    InvalidPayoutAddress,
    RewardsError,
    WalletAlreadyExists,
    WalletNotFound,
)
from reward_policy import LAMPORTS_PER_SOL, lamports_to_sol
from webhook_security import validate_solana_address

logger = logging.getLogger(__name__)

# Seconds to wait between balance polls after a faucet request
FUNDING_POLL_DELAYS = (1, 2, 4, 8, 16)

# Network fee for a single-signature transfer
LAMPORTS_PER_SIGNATURE = 5_000

FUNDING_PENDING = "pending"
FUNDING_REQUESTED = "requested"
FUNDING_CONFIRMED = "funded"
FUNDING_FAILED = "failed"


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def run_in_thread(func, *args):
    """Fire-and-forget runner used for funding and payouts."""
    threading.Thread(target=func, args=args, daemon=True).start()


@dataclass
class RepositoryWallet:
    address: str
    repository: str
    created_at: str
    balance: int = 0
    transaction_count: int = 0
    total_rewards_lamports: int = 0
    last_updated: Optional[str] = None
    funding_status: str = FUNDING_PENDING
    funding_error: Optional[str] = None

    @property
    def total_rewards_distributed(self):
        """Accumulated payouts in SOL."""
        return lamports_to_sol(self.total_rewards_lamports)

    def to_dict(self):
        return {
            "address": self.address,
            "repository": self.repository,
            "createdAt": self.created_at,
            "balance": self.balance,
            "balanceSol": lamports_to_sol(self.balance),
            "transactionCount": self.transaction_count,
            "totalRewardsDistributed": self.total_rewards_distributed,
            "lastUpdated": self.last_updated,
            "fundingStatus": self.funding_status,
            "fundingError": self.funding_error,
        }


@dataclass(frozen=True)
class FaucetReceipt:
    signature: str
    explorer_url: str
    message: str = "Faucet request successful"

    def to_dict(self):
        return {"signature": self.signature, "explorerUrl": self.explorer_url, "message": self.message}


@dataclass(frozen=True)
class TransactionReceipt:
    signature: str
    lamports: int
    recipient: str
    explorer_url: str

    @property
    def amount(self):
        return lamports_to_sol(self.lamports)

    def to_dict(self):
        return {
            "signature": self.signature,
            "amount": self.amount,
            "lamports": self.lamports,
            "recipient": self.recipient,
            "explorerUrl": self.explorer_url,
        }


class WalletLedger:
    def __init__(self, rpc, custodian, background=None, sleep=None,
                 funding_poll_delays=FUNDING_POLL_DELAYS, cluster=None):
        self.rpc = rpc
        self.custodian = custodian
        self.background = background or run_in_thread
        self.sleep = sleep or time.sleep
        self.funding_poll_delays = tuple(funding_poll_delays)
        self.cluster = cluster or config.SOLANA_CLUSTER
        self._lock = threading.Lock()
        self._repo_locks = {}
        self._wallets = {}       # repo full name -> RepositoryWallet
        self._contributors = {}  # github username -> payout address

    @contextmanager
    def _locked_repo(self, repo):
        """
        Hold the repository's lock. Entries for repositories without a wallet
        are pruned on release, so a waiter that wakes on a pruned lock retries.
        """
        while True:
            with self._lock:
                lock = self._repo_locks.setdefault(repo, threading.Lock())
            lock.acquire()
            with self._lock:
                if self._repo_locks.get(repo) is lock:
                    break
            lock.release()
        try:
            yield
        finally:
            with self._lock:
                if repo not in self._wallets and self._repo_locks.get(repo) is lock:
                    del self._repo_locks[repo]
            lock.release()

    # =========================================================================
    # REPOSITORY WALLETS
    # =========================================================================

    def create_wallet(self, repo):
        """
        Create the custodial wallet for a repository and kick off funding.
        Raises WalletAlreadyExists if the repository already has one.
        """
        with self._locked_repo(repo):
            with self._lock:
                if repo in self._wallets:
                    raise WalletAlreadyExists()

            address = self.custodian.create_account()
            wallet = RepositoryWallet(address=address, repository=repo, created_at=_now_iso())
            with self._lock:
                self._wallets[repo] = wallet
                snapshot = replace(wallet)

        logger.info("wallet created | repo=%s address=%s", repo, address)
        self.background(self._fund_new_wallet, repo)
        return snapshot

    def _fund_new_wallet(self, repo):
        wallet = self.get_wallet(repo)
        if wallet is None:
            return
        try:
            signature = self.custodian.request_faucet(wallet.address)
        except RewardsError as e:
            logger.warning("initial funding failed | repo=%s address=%s error=%s", repo, wallet.address, e)
            self._set_funding(repo, FUNDING_FAILED, str(e))
            return
        logger.info("initial funding requested | repo=%s tx=%s", repo, config.explorer_tx_url(signature, self.cluster))
        self._set_funding(repo, FUNDING_REQUESTED)
        self._await_funding(repo, wallet.balance)

    def _set_funding(self, repo, status, error=None):
        with self._lock:
            wallet = self._wallets.get(repo)
            if wallet is not None:
                wallet.funding_status = status
                wallet.funding_error = error

    def _await_funding(self, repo, previous_balance):
        """Poll the balance with growing delays until the faucet deposit shows up."""
        for delay in self.funding_poll_delays:
            self.sleep(delay)
            try:
                wallet = self.refresh_balance(repo)
            except RewardsError as e:
                logger.warning("balance poll failed | repo=%s error=%s", repo, e)
                continue
            if wallet is None:
                return
            if wallet.balance > previous_balance:
                self._set_funding(repo, FUNDING_CONFIRMED)
                logger.info("funding landed | repo=%s balance=%d", repo, wallet.balance)
                return
        logger.warning("funding not visible yet | repo=%s polls=%d", repo, len(self.funding_poll_delays))

    def get_wallet(self, repo):
        with self._lock:
            wallet = self._wallets.get(repo)
            return replace(wallet) if wallet else None

    def has_wallet(self, repo):
        with self._lock:
            return repo in self._wallets

    def remove_wallet(self, repo):
        with self._locked_repo(repo):
            with self._lock:
                removed = self._wallets.pop(repo, None)
        if removed:
            logger.info("wallet removed | repo=%s address=%s", repo, removed.address)
        return removed is not None

    def list_wallets(self):
        with self._lock:
            return [replace(w) for w in self._wallets.values()]

    def wallet_count(self):
        with self._lock:
            return len(self._wallets)

    def refresh_balance(self, repo):
        """
        Re-read a wallet's balance from the ledger.
        Returns the updated wallet, or None if the repository has no wallet.
        """
        with self._lock:
            wallet = self._wallets.get(repo)
            if wallet is None:
                return None
            address = wallet.address

        balance = self.rpc.get_balance(address)

        with self._lock:
            wallet = self._wallets.get(repo)
            if wallet is None or wallet.address != address:
                return None
            wallet.balance = balance
            wallet.last_updated = _now_iso()
            return replace(wallet)

    def fund_from_faucet(self, repo):
        """
        Ask the faucet for funds. Returns as soon as the request is accepted;
        the balance catches up in the background.
        """
        wallet = self.get_wallet(repo)
        if wallet is None:
            raise WalletNotFound()

        signature = self.custodian.request_faucet(wallet.address)
        self._set_funding(repo, FUNDING_REQUESTED)
        self.background(self._await_funding, repo, wallet.balance)
        logger.info("faucet requested | repo=%s tx=%s", repo, signature)
        return FaucetReceipt(signature, config.explorer_tx_url(signature, self.cluster))

    # =========================================================================
    # CONTRIBUTORS
    # =========================================================================

    def register_contributor(self, username, address):
        is_valid, error = validate_solana_address(address)
        if not is_valid:
            raise InvalidPayoutAddress(f"Invalid Solana address: {error}")
        with self._lock:
            self._contributors[username] = address
        logger.info("contributor registered | username=%s address=%s", username, address)

    def get_contributor_address(self, username):
        with self._lock:
            return self._contributors.get(username)

    def remove_contributor(self, username):
        with self._lock:
            return self._contributors.pop(username, None) is not None

    def list_contributors(self):
        with self._lock:
            return [
                {"username": username, "solanaAddress": address}
                for username, address in self._contributors.items()
            ]

    def contributor_count(self):
        with self._lock:
            return len(self._contributors)

    # =========================================================================
    # PAYOUTS
    # =========================================================================

    def send_reward(self, wallet, to_address, lamports, context=None):
        """
        Transfer `lamports` from a repository wallet to a contributor address.
        Both must already be resolved by the caller.

        Raises InsufficientFunds, SigningFailed, TransactionRejected,
        LedgerUnavailable or ExternalTimeout.
        """
        repo = wallet.repository
        context = context or {}

        with self._locked_repo(repo):
            with self._lock:
                record = self._wallets.get(repo)
            if record is None:
                raise WalletNotFound()

            balance = self.rpc.get_balance(record.address)
            needed = lamports + LAMPORTS_PER_SIGNATURE
            if balance < needed:
                raise InsufficientFunds(
                    f"Wallet for {repo} holds {balance} lamports, needs {needed} including fees"
                )

            logger.info("sending reward | repo=%s pr=%s to=%s lamports=%d",
                        repo, context.get("number"), to_address, lamports)
            unsigned = self.rpc.build_transfer(record.address, to_address, lamports)
            signed = self.custodian.sign_transaction(record.address, unsigned.payload)
            signature = self.rpc.send_raw_transaction(signed)
            self.rpc.confirm_transaction(signature, unsigned.last_valid_block_height)

            with self._lock:
                record.transaction_count += 1
                record.total_rewards_lamports += lamports
                record.balance = max(balance - needed, 0)
                record.last_updated = _now_iso()

        try:
            self.refresh_balance(repo)
        except RewardsError as e:
            logger.warning("post-payout balance refresh failed | repo=%s error=%s", repo, e)

        receipt = TransactionReceipt(
            signature=signature,
            lamports=lamports,
            recipient=to_address,
            explorer_url=config.explorer_tx_url(signature, self.cluster),
        )
        logger.info("reward sent | repo=%s to=%s lamports=%d tx=%s", repo, to_address, lamports, signature)
        return receipt

    # =========================================================================
    # STATS
    # =========================================================================

    def statistics(self):
        with self._lock:
            wallets = list(self._wallets.values())
            contributors = len(self._contributors)

        total_balance = sum(w.balance for w in wallets)
        total_rewards = sum(w.total_rewards_lamports for w in wallets)
        return {
            "totalWallets": len(wallets),
            "totalContributors": contributors,
            "totalBalance": total_balance / LAMPORTS_PER_SOL,
            "totalTransactions": sum(w.transaction_count for w in wallets),
            "totalRewardsDistributed": total_rewards / LAMPORTS_PER_SOL,
            "averageWalletBalance": (total_balance / len(wallets)) / LAMPORTS_PER_SOL if wallets else 0,
        }
