"""
Merge Rewards webhook security helpers
Signature verification for GitHub deliveries and payout address validation.
"""

import hashlib
import hmac

import base58

SIGNATURE_PREFIX = "sha256="

# =============================================================================
# WEBHOOK SIGNATURES
# =============================================================================

def compute_github_signature(payload_body, secret):
    """Return the `sha256=<hex>` signature GitHub sends for a body."""
    mac = hmac.new(secret.encode("utf-8"), msg=payload_body, digestmod=hashlib.sha256)
    return SIGNATURE_PREFIX + mac.hexdigest()


def verify_github_signature(payload_body, signature_header, secret):
    """
    Verify GitHub webhook signature.
    An unset secret never verifies anything.
    Returns: is_valid (bool)
    """
    if not secret or not signature_header:
        return False

    if isinstance(payload_body, str):
        payload_body = payload_body.encode("utf-8")

    expected = compute_github_signature(payload_body, secret).encode("ascii")
    try:
        provided = signature_header.encode("ascii")
    except UnicodeEncodeError:
        return False

    if len(provided) != len(expected):
        return False

    return hmac.compare_digest(provided, expected)

# =============================================================================
# WALLET VALIDATION
# =============================================================================

def validate_solana_address(address):
    """
    Validate Solana wallet address format.
    Returns: (is_valid, error_message)
    """
    if not address or not isinstance(address, str):
        return False, "Wallet address is required"

    if address != address.strip():
        return False, "Wallet address must not contain surrounding whitespace"

    # Length check (Solana addresses are 32-44 chars)
    if len(address) < 32 or len(address) > 44:
        return False, f"Invalid address length: {len(address)} (expected 32-44)"

    try:
        decoded = base58.b58decode(address)
    except ValueError as e:
        return False, f"Invalid base58 encoding: {e}"

    if len(decoded) != 32:
        return False, "Address decodes to wrong byte length"

    return True, None
