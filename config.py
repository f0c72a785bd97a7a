"""
Merge Rewards configuration
All settings come from environment variables, read once at import time.
"""

import os

# =============================================================================
# GITHUB APP
# =============================================================================

WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")
GITHUB_APP_ID = os.getenv("GITHUB_APP_ID", "")
GITHUB_APP_SLUG = os.getenv("GITHUB_APP_SLUG", "")
# PEM text; deployments that cannot hold newlines pass "\n" escapes
GITHUB_PRIVATE_KEY = os.getenv("GITHUB_PRIVATE_KEY", "").replace("\\n", "\n")
GITHUB_CLIENT_ID = os.getenv("GITHUB_CLIENT_ID", "")
GITHUB_CLIENT_SECRET = os.getenv("GITHUB_CLIENT_SECRET", "")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_WEB_URL = os.getenv("GITHUB_WEB_URL", "https://github.com")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# =============================================================================
# SOLANA
# =============================================================================

SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.devnet.solana.com")
SOLANA_CLUSTER = os.getenv("SOLANA_CLUSTER", "devnet")
FAUCET_LAMPORTS = int(os.getenv("FAUCET_LAMPORTS", "1000000000"))  # 1 SOL

# =============================================================================
# TIMEOUTS & BEHAVIOR
# =============================================================================

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
RPC_TIMEOUT_SECONDS = float(os.getenv("RPC_TIMEOUT_SECONDS", "30"))
POST_THANK_YOU_COMMENTS = os.getenv("POST_THANK_YOU_COMMENTS", "false").lower() == "true"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
REDIS_URL = os.getenv("REDIS_URL", "memory://")
PORT = int(os.getenv("PORT", "3000"))


def explorer_tx_url(signature, cluster=None):
    """Explorer link for a transaction signature."""
    cluster = cluster or SOLANA_CLUSTER
    url = f"https://explorer.solana.com/tx/{signature}"
    if cluster and cluster != "mainnet-beta":
        url += f"?cluster={cluster}"
    return url
