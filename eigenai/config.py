"""
EigenAI gateway configuration.

Everything the gateway needs is injected once through a GatewayConfig; nothing
is read from the environment after construction. load_config() is the usual
entrypoint and mirrors how the scripts in this repo read their settings:

    .env / environment  ->  load_dotenv()  ->  GatewayConfig (frozen)

Environment variables:
  EIGENAI_API_KEY / EIGENCLOUD_API_KEY  — static key auth (takes precedence)
  EIGENAI_GRANT_PRIVATE_KEY             — grant wallet key (0x + 64 hex chars)
  MNEMONIC                              — KMS-injected grant wallet seed (TEE only)
  EIGENAI_API_URL                       — overrides the mode-specific base URL
  EIGENAI_MODEL                         — tool-calling model
  EIGENAI_REASONING_MODEL               — decision model used after the tool budget
  EIGENAI_CHAIN_ID                      — chain id folded into the signed message
  EIGENAI_EXPECTED_SIGNER               — EigenAI's signer address
  EIGENAI_TOOL_RESULT_BUDGET            — tool results before switching models
  EIGENAI_EXECUTE_TOOL                  — name of the trade-execution tool
  EIGENAI_MAX_TOKENS                    — default completion ceiling
  EIGENAI_TIMEOUT_S                     — HTTP timeout for completions
  EIGENAI_GRANT_TIMEOUT_S               — per-attempt timeout for the grant fetch
  EIGENAI_GRANT_RETRIES                 — retries on transient grant-fetch failures
  EIGENAI_VERIFY_LOCALLY                — verify signed responses before recording
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# ── Endpoints ────────────────────────────────────────────────────────────────
# API-key auth and wallet (grant) auth are served from different hosts.

API_KEY_BASE_URL = "https://eigenai.eigencloud.xyz"
GRANT_BASE_URL   = "https://determinal-api.eigenarcade.com"

# ── Models ───────────────────────────────────────────────────────────────────
# gpt-oss-120b-f16 only calls tools; qwen3 can produce the final text decision.

PRIMARY_MODEL   = "gpt-oss-120b-f16"
REASONING_MODEL = "qwen3-32b-128k-bf16"

# ── Signing ──────────────────────────────────────────────────────────────────
# EigenAI always signs with the mainnet chain id, whatever network we trade on.

MAINNET_CHAIN_ID = "1"
EXPECTED_SIGNER  = "0x7053bfb0433a16a2405de785d547b1b32cee0cf3"

DEFAULT_TOOL_RESULT_BUDGET = 8
DEFAULT_EXECUTE_TOOL       = "executeSwap"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip())
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)).strip())
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class GatewayConfig:
    api_key: str = field(default="", repr=False)
    private_key: str = field(default="", repr=False)
    mnemonic: str = field(default="", repr=False)
    api_url: Optional[str] = None
    model: str = PRIMARY_MODEL
    reasoning_model: str = REASONING_MODEL
    chain_id: str = MAINNET_CHAIN_ID
    expected_signer: str = EXPECTED_SIGNER
    tool_result_budget: int = DEFAULT_TOOL_RESULT_BUDGET
    execute_tool_name: str = DEFAULT_EXECUTE_TOOL
    max_tokens: int = 4096
    reasoning_max_tokens: int = 8192
    reasoning_temperature: float = 0.3
    request_timeout_s: float = 120.0
    grant_timeout_s: float = 20.0
    grant_retries: int = 2
    local_verification: bool = True

    @property
    def uses_api_key(self) -> bool:
        return bool(self.api_key)

    @property
    def base_url(self) -> str:
        """Base URL for the active auth mode, honouring an explicit override."""
        if self.api_url:
            return self.api_url.rstrip("/")
        return API_KEY_BASE_URL if self.uses_api_key else GRANT_BASE_URL

    @property
    def completions_url(self) -> str:
        # API-key auth lives under /v1, grant auth under /api.
        prefix = "v1" if self.uses_api_key else "api"
        return f"{self.base_url}/{prefix}/chat/completions"

    def describe(self) -> dict:
        """Public view of the config for logs and /info. Never includes secrets."""
        return {
            "backend":          self.base_url,
            "auth_mode":        "api-key" if self.uses_api_key else "wallet-grant",
            "model":            self.model,
            "reasoning_model":  self.reasoning_model,
            "chain_id":         self.chain_id,
            "expected_signer":  self.expected_signer,
            "tool_result_budget": self.tool_result_budget,
            "local_verification": self.local_verification,
        }


def load_config(**overrides) -> GatewayConfig:
    """
    Build a GatewayConfig from the environment (and .env, if present).
    Keyword overrides win over environment values.
    """
    load_dotenv()

    values = dict(
        api_key=(os.getenv("EIGENAI_API_KEY") or os.getenv("EIGENCLOUD_API_KEY") or "").strip(),
        private_key=os.getenv("EIGENAI_GRANT_PRIVATE_KEY", "").strip(),
        mnemonic=os.getenv("MNEMONIC", "").strip(),
        api_url=os.getenv("EIGENAI_API_URL", "").strip() or None,
        model=os.getenv("EIGENAI_MODEL", PRIMARY_MODEL).strip(),
        reasoning_model=os.getenv("EIGENAI_REASONING_MODEL", REASONING_MODEL).strip(),
        chain_id=os.getenv("EIGENAI_CHAIN_ID", MAINNET_CHAIN_ID).strip(),
        expected_signer=os.getenv("EIGENAI_EXPECTED_SIGNER", EXPECTED_SIGNER).strip(),
        tool_result_budget=max(1, _env_int("EIGENAI_TOOL_RESULT_BUDGET", DEFAULT_TOOL_RESULT_BUDGET)),
        execute_tool_name=os.getenv("EIGENAI_EXECUTE_TOOL", DEFAULT_EXECUTE_TOOL).strip(),
        max_tokens=_env_int("EIGENAI_MAX_TOKENS", 4096),
        request_timeout_s=_env_float("EIGENAI_TIMEOUT_S", 120.0),
        grant_timeout_s=_env_float("EIGENAI_GRANT_TIMEOUT_S", 20.0),
        grant_retries=max(0, _env_int("EIGENAI_GRANT_RETRIES", 2)),
        local_verification=_env_bool("EIGENAI_VERIFY_LOCALLY", True),
    )
    values.update(overrides)
    return GatewayConfig(**values)
