"""
Shared fixtures: a throwaway EigenAI signer and a fake EigenAI backend.

The fake backend is an httpx.MockTransport; every component (grant fetch,
openai SDK, streaming client) shares the same httpx.AsyncClient, so one
handler sees all the traffic a test generates.
"""

import json
from typing import Callable, List, Optional

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from eigenai.config import GatewayConfig

API_URL = "https://eigenai.test"


def sign_text(account, text: str) -> str:
    signed = Account.sign_message(encode_defunct(text=text), private_key=account.key)
    return "0x" + bytes(signed.signature).hex()


def completion_body(
    content: Optional[str] = None,
    model: str = "gpt-oss-120b-f16",
    tool_calls: Optional[list] = None,
    finish_reason: str = "stop",
    signature: Optional[str] = None,
    usage: Optional[dict] = None,
    id: str = "chatcmpl-1",
) -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    body = {
        "id": id,
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": usage or {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }
    if signature:
        body["signature"] = signature
    return body


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered as the given chunks, one network read each."""

    def __init__(self, chunks: List[str]):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk.encode()


class FakeEigenAI:
    """Records requests and answers each one with `handler(request)`."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.handler(request)

    def json_bodies(self, path_suffix: str = "/chat/completions") -> List[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith(path_suffix)]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def signer():
    """Stands in for EigenAI's signing key."""
    return Account.create()


@pytest.fixture
def grant_account():
    return Account.create()


@pytest.fixture
def config(signer):
    return GatewayConfig(api_key="test-key", api_url=API_URL, expected_signer=signer.address)


@pytest.fixture
def wallet_config(signer, grant_account):
    return GatewayConfig(
        private_key="0x" + bytes(grant_account.key).hex(),
        api_url=API_URL,
        expected_signer=signer.address,
    )
