"""
Grant wallet utility — the account the agent uses to authenticate to EigenAI.

The grant wallet is NOT the trading wallet. It only proves control of an
address that holds an EigenAI grant (an allocation of inference tokens):
EigenAI hands out a challenge message, we sign it, and the signature rides
along in the completion request body.

Key sources, in order:
  1. an explicit 0x-prefixed private key (EIGENAI_GRANT_PRIVATE_KEY)
  2. the MNEMONIC injected by EigenCompute KMS inside the TEE
     (BIP-44 path m/44'/60'/0'/0/0)

SECURITY RULES (enforced here):
  - Private keys and mnemonics are NEVER logged, returned, or written to disk.
  - Only the derived address is exposed externally.
  - All signing happens in-memory.

Usage:
    from agent.wallet import load_account, sign_message

    account = load_account("0x...")          # eth_account LocalAccount
    signed  = sign_message(account, "hello") # {"address", "signature", ...}
"""

import os
import re
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

Account.enable_unaudited_hdwallet_features()

PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
DERIVATION_PATH = "m/44'/60'/0'/0/0"


def is_valid_private_key(private_key: str) -> bool:
    return bool(PRIVATE_KEY_RE.match(private_key or ""))


def account_from_mnemonic(mnemonic: Optional[str] = None):
    """
    Derive the agent's account from a mnemonic (defaults to the KMS-injected
    MNEMONIC env var). Raises RuntimeError if none is available.
    """
    mnemonic = (mnemonic or os.environ.get("MNEMONIC", "")).strip()
    if not mnemonic:
        raise RuntimeError(
            "MNEMONIC not set. This is injected by EigenCompute KMS at runtime. "
            "Outside the TEE, set EIGENAI_GRANT_PRIVATE_KEY for local development."
        )
    return Account.from_mnemonic(mnemonic, account_path=DERIVATION_PATH)


def load_account(private_key: Optional[str] = None):
    """
    Return the grant wallet account.

    An explicit key wins; otherwise fall back to EIGENAI_GRANT_PRIVATE_KEY, then
    to the KMS mnemonic. A malformed key raises ValueError without echoing it.
    """
    key = (private_key or os.environ.get("EIGENAI_GRANT_PRIVATE_KEY", "")).strip()
    if key:
        if not is_valid_private_key(key):
            raise ValueError(
                "Grant wallet private key must be a 0x-prefixed 64-character hex string."
            )
        return Account.from_key(key)
    return account_from_mnemonic()


def sign_message(account, message: str) -> dict:
    """
    Sign a message with EIP-191 personal-message signing.
    Returns the signature components — safe to return from API endpoints.
    """
    signed = account.sign_message(encode_defunct(text=message))
    return {
        "address":   account.address,
        "message":   message,
        "signature": "0x" + bytes(signed.signature).hex(),
        "v": signed.v,
        "r": hex(signed.r),
        "s": hex(signed.s),
    }


def wallet_info(account=None) -> dict:
    """
    Public wallet info for the /info endpoint.
    NEVER includes the mnemonic or private key.
    """
    if account is None:
        return {"address": None, "key_source": "none (api-key auth)"}
    return {
        "address":    account.address,
        "key_source": "grant wallet",
    }
