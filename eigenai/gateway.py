"""
VerifiableGateway — the one object callers construct.

    async with VerifiableGateway(load_config(), trade_executor=executor, sink=sink) as gw:
        response = await gw.complete(conversation, tools=tools)
        async for event in gw.stream(conversation):
            ...

It wires credentials, the completion and streaming clients, the decision
fallback and the verification sink around one shared httpx.AsyncClient, and
holds no per-call state, so concurrent calls on one instance are fine.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, List, Optional, Sequence

import httpx

from agent.trading import TradeExecutor
from agent.wallet import wallet_info

from .client import CompletionClient
from .config import GatewayConfig, load_config
from .credentials import build_credentials
from .fallback import DecisionFallbackEngine, ModelRole
from .messages import reconstruct_full_output, reconstruct_full_prompt, to_wire_messages
from .models import (
    ChatMessage,
    CompletionRequest,
    CompletionResponse,
    ToolChoice,
    ToolDefinition,
    Turn,
    parse_conversation,
)
from .sinks import VerificationSink, adeliver
from .streaming import (
    Finish,
    ResponseMetadata,
    StreamEvent,
    StreamingClient,
    StreamStart,
    TextDelta,
    TextEnd,
    TextStart,
)
from .verifier import VerificationResult, build_record, verify_signature

logger = logging.getLogger(__name__)


class VerifiableGateway:
    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        trade_executor: Optional[TradeExecutor] = None,
        sink: Optional[VerificationSink] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or load_config()
        self.sink = sink
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.config.request_timeout_s)

        self.credentials = build_credentials(self.config, self._http)
        self.client = CompletionClient(self.config, self.credentials, self._http)
        self.streaming = StreamingClient(self.config, self.credentials, self._http, sink=sink)
        self.fallback = DecisionFallbackEngine(self.config, self.client, trade_executor, sink=sink)

        logger.info(
            "EigenAI gateway ready: %s (%s), model=%s",
            self.config.base_url, self.credentials.mode, self.config.model,
        )

    @property
    def wallet_address(self) -> Optional[str]:
        return self.credentials.address

    def info(self) -> dict:
        """Public config plus the grant wallet address. Never includes secrets."""
        return {
            **self.config.describe(),
            "wallet": wallet_info(getattr(self.credentials, "account", None)),
        }

    # ── Requests ─────────────────────────────────────────────────────────────

    def build_request(
        self,
        conversation: Sequence[Any],
        tools: Optional[List[ToolDefinition]] = None,
        tool_choice: Optional[ToolChoice] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        stream: bool = False,
    ) -> CompletionRequest:
        """Convert accumulated turns (models or raw dicts) into a wire request."""
        turns: List[Turn] = parse_conversation([
            t.model_dump() if hasattr(t, "model_dump") else t for t in conversation
        ])
        return CompletionRequest(
            messages=to_wire_messages(turns),
            model=self.config.model,
            max_tokens=max_tokens if max_tokens is not None else self.config.max_tokens,
            temperature=temperature,
            top_p=top_p,
            tools=tools or None,
            tool_choice=tool_choice,
            stream=stream,
        )

    async def complete(
        self,
        conversation: Sequence[Any],
        tools: Optional[List[ToolDefinition]] = None,
        tool_choice: Optional[ToolChoice] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> CompletionResponse:
        request = self.build_request(conversation, tools, tool_choice, max_tokens, temperature, top_p)

        if self.fallback.select_role(request.messages) is ModelRole.REASONING:
            return await self.fallback.decide(request.messages, abort=abort)

        response = await self.client.complete(request, abort=abort)
        # Tool-calling turns only gather data; they are never recorded.
        if response.signature and not response.tool_calls:
            await adeliver(self.sink, self._record(request.messages, response))
        return response

    async def stream(
        self,
        conversation: Sequence[Any],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a text completion. Tools are not sent on the streaming path.
        A conversation past its tool budget is answered by the decision
        fallback and replayed as a single-delta stream.
        """
        request = self.build_request(
            conversation, max_tokens=max_tokens, temperature=temperature, top_p=top_p, stream=True
        )

        if self.fallback.select_role(request.messages) is ModelRole.REASONING:
            response = await self.fallback.decide(request.messages, abort=abort)
            async for event in _replay(response):
                yield event
            return

        async for event in self.streaming.stream(request, abort=abort):
            yield event

    def verify(
        self,
        request_messages: List[ChatMessage],
        response: CompletionResponse,
        chain_id: Optional[str] = None,
        expected_signer: Optional[str] = None,
    ) -> VerificationResult:
        return verify_signature(
            request_messages,
            response,
            chain_id or self.config.chain_id,
            expected_signer or self.config.expected_signer,
        )

    def _record(self, messages: List[ChatMessage], response: CompletionResponse):
        return build_record(
            request_prompt=reconstruct_full_prompt(messages),
            response_model=response.model,
            response_output=reconstruct_full_output(response.choices),
            signature=response.signature or "",
            usage=response.usage,
            chain_id=self.config.chain_id,
            expected_signer=self.config.expected_signer,
            verify=self.config.local_verification,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "VerifiableGateway":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


async def _replay(response: CompletionResponse) -> AsyncIterator[StreamEvent]:
    text_id = f"text-{response.id}"
    yield StreamStart()
    yield TextStart(id=text_id)
    if response.text:
        yield TextDelta(id=text_id, delta=response.text)
    yield TextEnd(id=text_id)
    yield ResponseMetadata(id=response.id, model_id=response.model)
    yield Finish(usage=response.usage, signature=response.signature or "")
