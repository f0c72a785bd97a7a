"""
Merge Rewards custodial signer
Holds repository wallet keypairs on the service's behalf: creates accounts,
asks the faucet to fund them and signs transfers for them. Keys live in
memory only and are lost on restart.
"""

import logging
import threading

import base58
from solders.keypair import Keypair
from solders.transaction import Transaction

import config
from errors import SigningFailed

logger = logging.getLogger(__name__)


class KeypairCustodian:
    def __init__(self, ledger_rpc, faucet_lamports=None):
        self.ledger_rpc = ledger_rpc
        self.faucet_lamports = faucet_lamports or config.FAUCET_LAMPORTS
        self._lock = threading.Lock()
        self._keypairs = {}

    def create_account(self):
        """Generate a new custodial account and return its address."""
        keypair = Keypair()
        address = str(keypair.pubkey())
        with self._lock:
            self._keypairs[address] = keypair
        logger.info("custodial account created | address=%s", address)
        return address

    def import_keypair(self, private_key_b58):
        """Take custody of an existing base58-encoded keypair; returns its address."""
        try:
            keypair = Keypair.from_bytes(base58.b58decode(private_key_b58))
        except ValueError as e:
            raise SigningFailed(f"Invalid private key: {e}") from e
        address = str(keypair.pubkey())
        with self._lock:
            self._keypairs[address] = keypair
        return address

    def holds(self, address):
        with self._lock:
            return address in self._keypairs

    def request_faucet(self, address):
        """Request faucet funds for an address; returns the faucet signature."""
        return self.ledger_rpc.request_airdrop(address, self.faucet_lamports)

    def sign_transaction(self, address, unsigned_payload):
        """Sign a serialized transaction with the keypair held for `address`."""
        with self._lock:
            keypair = self._keypairs.get(address)
        if keypair is None:
            raise SigningFailed(f"No custodial key held for {address}")

        try:
            tx = Transaction.from_bytes(unsigned_payload)
            tx.sign([keypair], tx.message.recent_blockhash)
        except Exception as e:
            raise SigningFailed(f"Signing failed for {address}: {e}") from e
        return bytes(tx)
