"""
Merge Rewards Solana RPC adapter
Wraps solana-py's Client for the handful of ledger calls the wallet ledger
makes, translating RPC and transport failures into service errors.
Every call runs under the client's bounded timeout.
"""

import logging
from dataclasses import dataclass

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

import config
from errors import ExternalTimeout, LedgerUnavailable, TransactionRejected

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnsignedTransfer:
    """Serialized, unsigned transfer plus the block height it stays valid to."""
    payload: bytes
    last_valid_block_height: int


class SolanaLedgerClient:
    def __init__(self, endpoint=None, timeout=None, client=None):
        self.endpoint = endpoint or config.SOLANA_RPC_URL
        self.timeout = timeout or config.RPC_TIMEOUT_SECONDS
        self.client = client or Client(self.endpoint, commitment=Confirmed, timeout=self.timeout)

    def _call(self, description, func, *args, rejected=LedgerUnavailable, **kwargs):
        try:
            return func(*args, **kwargs)
        except SolanaRpcException as e:
            if isinstance(e.__cause__, httpx.TimeoutException):
                raise ExternalTimeout(f"Solana RPC timed out during {description}") from e
            # SolanaRpcException carries no message of its own
            raise LedgerUnavailable(
                f"Solana RPC error during {description}: {e.error_msg} ({e.__cause__})"
            ) from e
        except RPCException as e:
            raise rejected(f"Solana RPC rejected {description}: {e}") from e

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_balance(self, address):
        """Balance of an account in lamports."""
        resp = self._call("get_balance", self.client.get_balance, Pubkey.from_string(address))
        return resp.value

    # =========================================================================
    # TRANSFERS
    # =========================================================================

    def build_transfer(self, from_address, to_address, lamports):
        """Build an unsigned SOL transfer paid for by the sender."""
        sender = Pubkey.from_string(from_address)
        transfer_ix = transfer(TransferParams(
            from_pubkey=sender,
            to_pubkey=Pubkey.from_string(to_address),
            lamports=lamports,
        ))
        latest = self._call("get_latest_blockhash", self.client.get_latest_blockhash).value
        message = Message.new_with_blockhash([transfer_ix], sender, latest.blockhash)
        return UnsignedTransfer(
            payload=bytes(Transaction.new_unsigned(message)),
            last_valid_block_height=latest.last_valid_block_height,
        )

    def send_raw_transaction(self, signed_payload):
        resp = self._call(
            "send_raw_transaction",
            self.client.send_raw_transaction,
            signed_payload,
            rejected=TransactionRejected,
        )
        return str(resp.value)

    def confirm_transaction(self, signature, last_valid_block_height=None):
        """Wait for confirmation; raises TransactionRejected if it landed with an error."""
        try:
            resp = self._call(
                "confirm_transaction",
                self.client.confirm_transaction,
                Signature.from_string(signature),
                Confirmed,
                last_valid_block_height=last_valid_block_height,
                rejected=TransactionRejected,
            )
        except (UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as e:
            raise ExternalTimeout(f"Transaction {signature} was not confirmed in time") from e

        statuses = resp.value or []
        status = statuses[0] if statuses else None
        if status is not None and status.err is not None:
            raise TransactionRejected(f"Transaction {signature} failed: {status.err}")

    # =========================================================================
    # FAUCET
    # =========================================================================

    def request_airdrop(self, address, lamports):
        """Devnet/testnet faucet deposit; returns the airdrop signature."""
        resp = self._call(
            "request_airdrop",
            self.client.request_airdrop,
            Pubkey.from_string(address),
            lamports,
        )
        logger.info("airdrop requested | address=%s lamports=%d", address, lamports)
        return str(resp.value)
