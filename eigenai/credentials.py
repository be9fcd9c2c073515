"""
EigenAI authentication.

Two modes, chosen once when the gateway is built:
  - API key:      X-API-Key header, nothing in the body, no network call.
  - Wallet grant: GET {base}/message?address=... returns a challenge, the grant
                  wallet signs it, and {grantMessage, grantSignature,
                  walletAddress} go into the request body.

A grant is fetched fresh for every wallet-authenticated request. The service
decides whether a grant is still live, so nothing is cached here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import httpx

from agent.wallet import account_from_mnemonic, is_valid_private_key, load_account, sign_message

from .config import GatewayConfig
from .errors import AuthError, ConfigurationError, parse_error_code

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


@dataclass(frozen=True)
class AuthFields:
    headers: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, str] = field(default_factory=dict)


class ApiKeyCredentials:
    mode = "api-key"

    def __init__(self, api_key: str):
        if not api_key:
            raise ConfigurationError("API key auth requires a non-empty key")
        self._api_key = api_key

    @property
    def api_key(self) -> str:
        return self._api_key

    @property
    def address(self) -> Optional[str]:
        return None

    async def auth_fields(self) -> AuthFields:
        return AuthFields(headers={**JSON_HEADERS, "X-API-Key": self._api_key})


class WalletCredentials:
    mode = "wallet"

    def __init__(
        self,
        account,
        base_url: str,
        http: httpx.AsyncClient,
        timeout_s: float = 20.0,
        retries: int = 2,
        backoff_s: float = 1.0,
    ):
        self._account = account
        self._base_url = base_url.rstrip("/")
        self._http = http
        self._timeout_s = timeout_s
        self._retries = retries
        self._backoff_s = backoff_s

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def account(self):
        return self._account

    async def fetch_grant_message(self) -> str:
        """
        Fetch the grant challenge for our wallet address.

        Connection errors and 5xx answers are retried with a capped exponential
        back-off; a 4xx means the grant itself is the problem and is raised at once.
        """
        url = f"{self._base_url}/message"
        last_err = "unknown error"
        last_status: Optional[int] = None
        last_body = None

        for attempt in range(self._retries + 1):
            try:
                r = await self._http.get(
                    url, params={"address": self.address}, timeout=self._timeout_s
                )
            except httpx.HTTPError as e:
                last_err = f"{type(e).__name__}: {e}"
                last_status = None
            else:
                if r.status_code < 400:
                    try:
                        message = r.json().get("message")
                    except (ValueError, AttributeError):
                        message = None
                    if not isinstance(message, str) or not message:
                        raise AuthError(
                            "Grant response did not contain a message",
                            stage="grant-fetch",
                            status_code=r.status_code,
                        )
                    return message

                last_status = r.status_code
                try:
                    last_body = r.json()
                except ValueError:
                    last_body = r.text
                last_err = f"HTTP {r.status_code}: {r.text[:220]}"
                if r.status_code < 500:
                    break

            if attempt < self._retries:
                delay = min(self._backoff_s * 2 ** attempt, 4)
                logger.warning(
                    "Grant fetch failed (%s), retrying in %.1fs (attempt %d/%d)",
                    last_err, delay, attempt + 1, self._retries + 1,
                )
                await asyncio.sleep(delay)

        raise AuthError(
            f"Failed to get grant message: {last_err}",
            stage="grant-fetch",
            status_code=last_status,
            code=parse_error_code(last_body),
            body=last_body,
        )

    def sign(self, message: str) -> str:
        # A signing failure means the key is misconfigured; never retried.
        try:
            return sign_message(self._account, message)["signature"]
        except Exception as e:
            raise AuthError(f"Failed to sign grant message: {type(e).__name__}", stage="grant-sign") from e

    async def auth_fields(self) -> AuthFields:
        grant_message = await self.fetch_grant_message()
        return AuthFields(
            headers=dict(JSON_HEADERS),
            body={
                "grantMessage": grant_message,
                "grantSignature": self.sign(grant_message),
                "walletAddress": self.address,
            },
        )


Credentials = Union[ApiKeyCredentials, WalletCredentials]


def build_credentials(config: GatewayConfig, http: httpx.AsyncClient) -> Credentials:
    """
    Pick the auth mode for a gateway. The API key wins when both are configured.
    In wallet mode an explicit private key wins over the KMS mnemonic; having
    none of the three is a configuration error.
    """
    if config.api_key:
        return ApiKeyCredentials(config.api_key)
    if config.private_key:
        if not is_valid_private_key(config.private_key):
            raise ConfigurationError(
                "EIGENAI_GRANT_PRIVATE_KEY must be a 0x-prefixed 64-character hex string."
            )
        account = load_account(config.private_key)
        key_source = "private key"
    elif config.mnemonic:
        try:
            account = account_from_mnemonic(config.mnemonic)
        except Exception:
            # the eth_account error quotes the words back
            raise ConfigurationError("MNEMONIC is not a valid BIP-39 mnemonic.") from None
        key_source = "KMS mnemonic"
    else:
        raise ConfigurationError(
            "EigenAI requires either an API key or a grant wallet private key.\n"
            "Set EIGENAI_API_KEY for simple auth, or EIGENAI_GRANT_PRIVATE_KEY "
            "(MNEMONIC inside the TEE) for verifiable inference."
        )
    logger.info("Using grant wallet %s (%s) for EigenAI auth", account.address, key_source)
    return WalletCredentials(
        account,
        config.base_url,
        http,
        timeout_s=config.grant_timeout_s,
        retries=config.grant_retries,
    )
