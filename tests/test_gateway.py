"""
End-to-end tests for VerifiableGateway against a fake EigenAI backend.
"""

import json

import httpx
import pytest
from eth_account import Account

from conftest import API_URL, ChunkStream, FakeEigenAI, completion_body, sign_text
from eigenai.errors import ConfigurationError
from eigenai.gateway import VerifiableGateway
from eigenai.config import GatewayConfig
from eigenai.models import ToolDefinition
from eigenai.sinks import InMemoryVerificationSink
from eigenai.streaming import Finish, TextDelta

CONVERSATION = [
    {"role": "system", "content": "S"},
    {"role": "user", "content": "U"},
    {"role": "assistant", "tool_calls": [
        {"tool_call_id": "a", "tool_name": "getPrice", "input": {"token": "WETH"}},
        {"tool_call_id": "b", "tool_name": "getPrice", "input": {"token": "AERO"}},
    ]},
    {"role": "tool", "results": [
        {"tool_call_id": "a", "output": "3000"},
        {"tool_call_id": "b", "output": "1.2"},
    ]},
]


def _budget_conversation(n):
    calls = [{"tool_call_id": f"c{i}", "tool_name": "getPrice", "input": {}} for i in range(n)]
    results = [{"tool_call_id": f"c{i}", "output": f"r{i}"} for i in range(n)]
    return [
        {"role": "user", "content": "Decide."},
        {"role": "assistant", "tool_calls": calls},
        {"role": "tool", "results": results},
    ]


class TestComplete:
    @pytest.mark.asyncio
    async def test_signed_text_response_is_recorded(self, config, signer):
        prompt = "SU" + "3000" + "1.2"
        signature = sign_text(signer, "1gpt-oss-120b-f16" + prompt + "Buy WETH")
        fake = FakeEigenAI(lambda r: httpx.Response(200, json=completion_body("Buy WETH", signature=signature)))
        sink = InMemoryVerificationSink()

        async with fake.client() as http:
            async with VerifiableGateway(config, sink=sink, http_client=http) as gateway:
                response = await gateway.complete(CONVERSATION, tools=[ToolDefinition(name="getPrice")])

        assert response.text == "Buy WETH"
        body = fake.json_bodies()[0]
        assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "tool", "assistant", "tool"]
        assert body["max_tokens"] == config.max_tokens

        [record] = sink.all()
        assert record.request_prompt == prompt
        assert record.status == "verified"

    @pytest.mark.asyncio
    async def test_tool_call_response_not_recorded(self, config):
        tool_calls = [{"id": "x", "type": "function", "function": {"name": "getPrice", "arguments": "{}"}}]
        fake = FakeEigenAI(lambda r: httpx.Response(
            200, json=completion_body(None, tool_calls=tool_calls, finish_reason="tool_calls", signature="0xabc")
        ))
        sink = InMemoryVerificationSink()
        async with fake.client() as http:
            gateway = VerifiableGateway(config, sink=sink, http_client=http)
            response = await gateway.complete(CONVERSATION)

        assert response.tool_calls[0].id == "x"
        assert sink.all() == []

    @pytest.mark.asyncio
    async def test_budget_routes_to_reasoning_model(self, config):
        reply = json.dumps({"reasoning": "r", "trade_decisions": [
            {"token": "ALL", "action": "HOLD", "amount_usd": 0, "rationale": "wait"}
        ]})
        fake = FakeEigenAI(lambda r: httpx.Response(200, json=completion_body(reply, model="qwen3-32b-128k-bf16")))
        async with fake.client() as http:
            gateway = VerifiableGateway(config, http_client=http)
            response = await gateway.complete(_budget_conversation(config.tool_result_budget))

        assert fake.json_bodies()[0]["model"] == config.reasoning_model
        assert response.text == reply

    @pytest.mark.asyncio
    async def test_below_budget_uses_primary_model(self, config):
        fake = FakeEigenAI(lambda r: httpx.Response(200, json=completion_body("ok")))
        async with fake.client() as http:
            gateway = VerifiableGateway(config, http_client=http)
            await gateway.complete(_budget_conversation(config.tool_result_budget - 1))
        assert fake.json_bodies()[0]["model"] == config.model


class TestStream:
    @pytest.mark.asyncio
    async def test_stream(self, config):
        chunks = ['data: {"choices":[{"delta":{"content":"Hi"}}]}\n', "data: [DONE]\n"]
        fake = FakeEigenAI(lambda r: httpx.Response(200, stream=ChunkStream(chunks)))
        async with fake.client() as http:
            gateway = VerifiableGateway(config, http_client=http)
            events = [e async for e in gateway.stream(CONVERSATION)]
        assert [e.delta for e in events if isinstance(e, TextDelta)] == ["Hi"]
        assert "tools" not in fake.json_bodies()[0]

    @pytest.mark.asyncio
    async def test_stream_past_budget_replays_decision(self, config):
        fake = FakeEigenAI(lambda r: httpx.Response(500))
        async with fake.client() as http:
            gateway = VerifiableGateway(config, http_client=http)
            events = [e async for e in gateway.stream(_budget_conversation(config.tool_result_budget))]

        [delta] = [e for e in events if isinstance(e, TextDelta)]
        assert json.loads(delta.delta)["trade_decisions"][0]["action"] == "HOLD"
        assert isinstance(events[-1], Finish)


class TestLifecycle:
    def test_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            VerifiableGateway(GatewayConfig(), http_client=httpx.AsyncClient())

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, config):
        http = httpx.AsyncClient()
        async with VerifiableGateway(config, http_client=http):
            pass
        assert not http.is_closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self, config):
        gateway = VerifiableGateway(config)
        await gateway.aclose()
        assert gateway._http.is_closed

    @pytest.mark.asyncio
    async def test_mnemonic_grant_wallet(self, signer):
        account, mnemonic = Account.create_with_mnemonic()

        def handler(request):
            if request.url.path == "/message":
                return httpx.Response(200, json={"message": "challenge"})
            return httpx.Response(200, json=completion_body("Hold."))

        fake = FakeEigenAI(handler)
        config = GatewayConfig(mnemonic=mnemonic, api_url=API_URL, expected_signer=signer.address)
        async with fake.client() as http:
            gateway = VerifiableGateway(config, http_client=http)
            assert gateway.wallet_address == account.address
            assert gateway.info()["wallet"]["address"] == account.address
            await gateway.complete([{"role": "user", "content": "hi"}])

        [body] = fake.json_bodies()
        assert body["walletAddress"] == account.address
        assert fake.requests[-1].url.path == "/api/chat/completions"

    def test_info(self, config):
        info = VerifiableGateway(config, http_client=httpx.AsyncClient()).info()
        assert info["auth_mode"] == "api-key"
        assert info["wallet"]["address"] is None
        assert "test-key" not in json.dumps(info)
