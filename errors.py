"""
Merge Rewards error taxonomy.
Every error carries the HTTP status it maps to when it reaches a route.
"""


class RewardsError(Exception):
    """Base class for exceptions in this service."""
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None, status_code=None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.message}


# === Webhook ===

class SignatureInvalid(RewardsError):
    """Raised when a webhook body does not match its signature header."""
    status_code = 401
    default_message = "Invalid signature"


class ConfigMissing(RewardsError):
    """Raised when a required setting (e.g. the webhook secret) is unset."""
    status_code = 500
    default_message = "Server configuration error"


class MalformedPayload(RewardsError):
    """Raised when a verified webhook body is not the JSON we expect."""
    status_code = 400
    default_message = "Invalid JSON payload"


# === GitHub ===

class GitHubAPIError(RewardsError):
    """Raised when GitHub returns an unexpected error response."""
    status_code = 502
    default_message = "GitHub API request failed"

    def __init__(self, message=None, status_code=None, upstream_status=None):
        super().__init__(message, status_code)
        self.upstream_status = upstream_status


class UpstreamAuthExpired(GitHubAPIError):
    """Raised when the GitHub session or token is no longer accepted."""
    status_code = 401
    default_message = "GitHub connection expired, please reconnect GitHub"


class TokenExchangeFailed(GitHubAPIError):
    """Raised when an installation access token cannot be obtained."""
    status_code = 502
    default_message = "Failed to obtain installation token"


class NoInstallationsFound(RewardsError):
    """Raised when a user has no cached GitHub App installations."""
    status_code = 404
    default_message = (
        "No GitHub App installations found. "
        "Please install the GitHub App on your repositories."
    )


# === Wallets ===

class WalletAlreadyExists(RewardsError):
    status_code = 409
    default_message = "Wallet already exists for this repository"


class WalletNotFound(RewardsError):
    status_code = 404
    default_message = "Wallet not found for this repository"


class InvalidPayoutAddress(RewardsError):
    status_code = 400
    default_message = "Invalid Solana address"


class ContributorNotFound(RewardsError):
    status_code = 404
    default_message = "Contributor not registered"


# === Ledger ===

class LedgerUnavailable(RewardsError):
    """Raised when the Solana RPC or custodian cannot be reached."""
    status_code = 502
    default_message = "Solana ledger unavailable"


class ExternalTimeout(RewardsError):
    """Raised when an external call does not answer within its timeout."""
    status_code = 504
    default_message = "External service timed out"


class InsufficientFunds(RewardsError):
    status_code = 400
    default_message = "Sender has insufficient balance"


class PayoutTransactionFailed(RewardsError):
    """Raised when a reward transfer could not be completed."""
    status_code = 502
    default_message = "Payout transaction failed"


class SigningFailed(PayoutTransactionFailed):
    default_message = "Custodian failed to sign the transaction"


class TransactionRejected(PayoutTransactionFailed):
    default_message = "Transaction was rejected by the network"
