"""
Tests for auth-mode selection, the grant fetch and the grant wallet helpers.
"""

import httpx
import pytest
from eth_account import Account

from conftest import API_URL, FakeEigenAI
from agent.wallet import is_valid_private_key, load_account, sign_message, wallet_info
from eigenai.config import GatewayConfig
from eigenai.credentials import ApiKeyCredentials, WalletCredentials, build_credentials
from eigenai.errors import AuthError, ConfigurationError, ErrorCode


def _key(account) -> str:
    return "0x" + bytes(account.key).hex()


class TestBuildCredentials:
    def test_api_key_wins(self, grant_account):
        config = GatewayConfig(api_key="k", private_key=_key(grant_account))
        assert isinstance(build_credentials(config, httpx.AsyncClient()), ApiKeyCredentials)

    def test_wallet_mode(self, wallet_config, grant_account):
        credentials = build_credentials(wallet_config, httpx.AsyncClient())
        assert isinstance(credentials, WalletCredentials)
        assert credentials.address == grant_account.address

    def test_no_credential_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            build_credentials(GatewayConfig(), httpx.AsyncClient())

    def test_malformed_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc:
            build_credentials(GatewayConfig(private_key="0x1234"), httpx.AsyncClient())
        assert "0x1234" not in str(exc.value)

    def test_mnemonic_wallet(self):
        account, mnemonic = Account.create_with_mnemonic()
        credentials = build_credentials(GatewayConfig(mnemonic=mnemonic), httpx.AsyncClient())
        assert isinstance(credentials, WalletCredentials)
        assert credentials.address == account.address

    def test_private_key_wins_over_mnemonic(self, grant_account):
        _, mnemonic = Account.create_with_mnemonic()
        config = GatewayConfig(private_key=_key(grant_account), mnemonic=mnemonic)
        assert build_credentials(config, httpx.AsyncClient()).address == grant_account.address

    def test_bad_mnemonic_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc:
            build_credentials(GatewayConfig(mnemonic="alpha beta gamma"), httpx.AsyncClient())
        assert "alpha" not in str(exc.value)
        assert exc.value.__cause__ is None

    def test_configuration_error_is_auth_error(self):
        assert issubclass(ConfigurationError, AuthError)


class TestApiKeyCredentials:
    @pytest.mark.asyncio
    async def test_headers_only(self):
        fields = await ApiKeyCredentials("k").auth_fields()
        assert fields.headers == {"Content-Type": "application/json", "X-API-Key": "k"}
        assert fields.body == {}


class TestGrantFetch:
    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, grant_account):
        answers = [httpx.Response(503), httpx.Response(200, json={"message": "challenge"})]
        fake = FakeEigenAI(lambda r: answers.pop(0))
        async with fake.client() as http:
            credentials = WalletCredentials(grant_account, API_URL, http, retries=2, backoff_s=0)
            fields = await credentials.auth_fields()

        assert len(fake.requests) == 2
        assert fields.body["grantMessage"] == "challenge"
        assert fields.headers == {"Content-Type": "application/json"}

    @pytest.mark.asyncio
    async def test_retries_connection_errors_then_gives_up(self, grant_account):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        fake = FakeEigenAI(handler)
        async with fake.client() as http:
            credentials = WalletCredentials(grant_account, API_URL, http, retries=2, backoff_s=0)
            with pytest.raises(AuthError) as exc:
                await credentials.fetch_grant_message()

        assert len(fake.requests) == 3
        assert exc.value.stage == "grant-fetch"
        assert exc.value.status_code is None

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, grant_account):
        fake = FakeEigenAI(lambda r: httpx.Response(401, json={"error": {"code": "grant_expired"}}))
        async with fake.client() as http:
            credentials = WalletCredentials(grant_account, API_URL, http, retries=2, backoff_s=0)
            with pytest.raises(AuthError) as exc:
                await credentials.fetch_grant_message()

        assert len(fake.requests) == 1
        assert exc.value.status_code == 401
        assert exc.value.code is ErrorCode.GRANT_EXPIRED

    @pytest.mark.asyncio
    async def test_missing_message(self, grant_account):
        fake = FakeEigenAI(lambda r: httpx.Response(200, json={"nope": True}))
        async with fake.client() as http:
            credentials = WalletCredentials(grant_account, API_URL, http, backoff_s=0)
            with pytest.raises(AuthError):
                await credentials.fetch_grant_message()

    def test_signing_failure_is_auth_error(self, grant_account):
        class BrokenAccount:
            address = grant_account.address

            def sign_message(self, message):
                raise RuntimeError("hsm offline")

        credentials = WalletCredentials(BrokenAccount(), API_URL, httpx.AsyncClient())
        with pytest.raises(AuthError) as exc:
            credentials.sign("challenge")
        assert exc.value.stage == "grant-sign"


class TestWallet:
    def test_private_key_validation(self):
        assert is_valid_private_key("0x" + "ab" * 32)
        assert not is_valid_private_key("ab" * 32)
        assert not is_valid_private_key("0x" + "ab" * 31)
        assert not is_valid_private_key("0x" + "zz" * 32)

    def test_load_account_from_key(self, grant_account):
        assert load_account(_key(grant_account)).address == grant_account.address

    def test_load_account_rejects_bad_key(self):
        with pytest.raises(ValueError):
            load_account("0xnothex")

    def test_load_account_from_mnemonic(self, monkeypatch):
        monkeypatch.delenv("EIGENAI_GRANT_PRIVATE_KEY", raising=False)
        account, mnemonic = Account.create_with_mnemonic()
        monkeypatch.setenv("MNEMONIC", mnemonic)
        assert load_account().address == account.address

    def test_missing_mnemonic(self, monkeypatch):
        monkeypatch.delenv("EIGENAI_GRANT_PRIVATE_KEY", raising=False)
        monkeypatch.delenv("MNEMONIC", raising=False)
        with pytest.raises(RuntimeError):
            load_account()

    def test_sign_message(self, grant_account):
        signed = sign_message(grant_account, "hello")
        assert signed["address"] == grant_account.address
        assert signed["signature"].startswith("0x")
        assert len(signed["signature"]) == 132

    def test_wallet_info_never_exposes_key(self, grant_account):
        info = wallet_info(grant_account)
        assert info["address"] == grant_account.address
        assert _key(grant_account)[2:] not in str(info)
