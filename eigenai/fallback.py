"""
Decision fallback: two-model routing.

gpt-oss-120b-f16 is good at calling tools but will not produce the final text
decision. Once a conversation holds `tool_result_budget` tool results, the
gateway stops sending it to the primary model and instead:

  1. returns a fixed EXECUTED decision if the execute tool was already called;
  2. otherwise asks the reasoning model (qwen3) for a JSON trading decision,
     built from the original request, the tool calls made and their results;
  3. executes the first BUY/SELL decision through the TradeExecutor and
     annotates its rationale with the outcome.

Whatever happens, the caller gets back a decision. A failed reasoning call
becomes an explicit HOLD-all.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from enum import Enum
from typing import List, Optional

from pydantic import ValidationError

from agent.trading import TradeExecutor, TradeResult

from .client import CompletionClient
from .config import GatewayConfig
from .errors import AbortedError, GatewayError
from .messages import called_tool_names, count_tool_results, reconstruct_full_output, reconstruct_full_prompt
from .models import (
    ChatMessage,
    Choice,
    CompletionRequest,
    CompletionResponse,
    DecisionSet,
    FinishReason,
    Usage,
)
from .sinks import VerificationSink, adeliver
from .verifier import build_record

logger = logging.getLogger(__name__)

DECISION_MODE_SUFFIX = (
    "\n\nYou are now in DECISION MODE. Based on the gathered data, make your final trading decision."
)
RESULT_SEPARATOR = "\n\n---\n\n"
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

EXECUTED_DECISION = {
    "reasoning": "Trade was executed via executeSwap tool call.",
    "trade_decisions": [
        {
            "token": "EXECUTED",
            "action": "EXECUTED",
            "amount_usd": 0,
            "rationale": "Trade executed - see swap transaction logs for details",
        }
    ],
}


class ModelRole(str, Enum):
    PRIMARY = "primary"
    REASONING = "reasoning"


def select_role(tool_result_count: int, budget: int) -> ModelRole:
    return ModelRole.REASONING if tool_result_count >= budget else ModelRole.PRIMARY


def _dumps(obj) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def hold_decision(reasoning: str, rationale: str) -> str:
    return _dumps({
        "reasoning": reasoning,
        "trade_decisions": [
            {"token": "ALL", "action": "HOLD", "amount_usd": 0, "rationale": rationale}
        ],
    })


def build_decision_prompt(messages: List[ChatMessage]) -> str:
    user_message = next((m.content or "" for m in messages if m.role == "user"), "")

    calls = []
    for m in messages:
        if m.role == "assistant":
            calls.extend(f"- {tc.name}({tc.arguments or '{}'})" for tc in m.tool_calls or [])

    results = [m.content for m in messages if m.role == "tool" and m.content]

    return f"""Based on the following market data gathered from various tools, make a trading decision.

## Original Request
{user_message}

## Tools Called
{chr(10).join(calls) if calls else "No tool calls recorded"}

## Gathered Data ({len(results)} results)
{RESULT_SEPARATOR.join(results)}

## Your Task
Analyze this data and provide a JSON trading decision.

IMPORTANT: Do NOT use <think> tags or any reasoning prefix. Output ONLY the raw JSON object directly.

Required JSON format:
{{
  "reasoning": "Your analysis of the market data...",
  "trade_decisions": [
    {{
      "token": "TOKEN_SYMBOL",
      "action": "BUY" | "SELL" | "HOLD",
      "amount_usd": number,
      "via": "WETH" | null,
      "rationale": "Why this specific action..."
    }}
  ]
}}

IMPORTANT for multi-hop routing:
- If the token doesn't have a direct pool with USDC (e.g., meme coins like BRETT, PONKE), set "via": "WETH"
- If the token has a direct USDC pool (e.g., WETH, AERO), set "via": null
- WETH is the main hub token on Aerodrome - most tokens pair with it

If no clear opportunity exists, use action "HOLD" for all positions.
Your response must start with {{ and end with }} - no other text allowed."""


def decision_messages(messages: List[ChatMessage]) -> List[ChatMessage]:
    """System prompt (switched to decision mode) plus the decision prompt. No tool traffic."""
    out = []
    system_prompt = next((m.content for m in messages if m.role == "system"), None)
    if system_prompt:
        out.append(ChatMessage(role="system", content=system_prompt + DECISION_MODE_SUFFIX))
    out.append(ChatMessage(role="user", content=build_decision_prompt(messages)))
    return out


def parse_decision(text: str) -> Optional[DecisionSet]:
    """The outermost {...} in `text` as a DecisionSet, or None if there isn't a usable one."""
    if not text:
        return None
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        return None
    try:
        return DecisionSet.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError):
        return None


def annotation_for(result: TradeResult) -> str:
    if result.executed and result.tx_hash:
        return f"[EXECUTED: TX {result.tx_hash}]"
    if result.dry_run:
        return "[DRY RUN: Trade simulated only]"
    return f"[EXECUTION FAILED: {result.error or 'unknown error'}]"


def synthetic_response(text: str, model: str) -> CompletionResponse:
    return CompletionResponse(
        id=f"reasoned-{int(time.time() * 1000)}",
        model=model,
        choices=[Choice(message=ChatMessage(role="assistant", content=text), finish_reason=FinishReason.STOP)],
        usage=Usage(),
    )


class DecisionFallbackEngine:
    def __init__(
        self,
        config: GatewayConfig,
        client: CompletionClient,
        trade_executor: Optional[TradeExecutor] = None,
        sink: Optional[VerificationSink] = None,
    ):
        self._config = config
        self._client = client
        self._trade_executor = trade_executor
        self._sink = sink

    def select_role(self, messages: List[ChatMessage]) -> ModelRole:
        return select_role(count_tool_results(messages), self._config.tool_result_budget)

    def trade_already_executed(self, messages: List[ChatMessage]) -> bool:
        return self._config.execute_tool_name in called_tool_names(messages)

    async def decide(
        self,
        messages: List[ChatMessage],
        abort: Optional[asyncio.Event] = None,
    ) -> CompletionResponse:
        """
        Produce the final decision for a conversation that has used up its tool budget.
        Only AbortedError (and task cancellation) escapes.
        """
        logger.info(
            "Tool result limit reached (%d/%d), switching to reasoning model",
            count_tool_results(messages), self._config.tool_result_budget,
        )
        if self.trade_already_executed(messages):
            logger.info("%s already called; returning EXECUTED decision", self._config.execute_tool_name)
            return synthetic_response(_dumps(EXECUTED_DECISION), self._config.model)

        text = await self._reason(messages, abort)
        return synthetic_response(text, self._config.reasoning_model)

    async def _reason(self, messages: List[ChatMessage], abort: Optional[asyncio.Event]) -> str:
        request = CompletionRequest(
            messages=decision_messages(messages),
            model=self._config.reasoning_model,
            max_tokens=self._config.reasoning_max_tokens,
            temperature=self._config.reasoning_temperature,
        )
        logger.debug(
            "Reasoning context: system=%s tool_calls=%d tool_results=%d",
            request.messages[0].role == "system",
            len(called_tool_names(messages)), count_tool_results(messages),
        )

        try:
            response = await self._client.complete(request, abort=abort)
        except AbortedError:
            raise
        except GatewayError as e:
            logger.error("Reasoning model call failed: %s", e.message)
            return hold_decision(
                "Reasoning model unavailable. Defaulting to HOLD.",
                "Reasoning model call failed - holding positions for safety",
            )
        except Exception:
            logger.exception("Reasoning model call error")
            return hold_decision(
                "Reasoning model error. Defaulting to HOLD.",
                "Error calling reasoning model - holding for safety",
            )

        content = response.text
        logger.info("Reasoning response: %.200s", content)

        if response.signature:
            await adeliver(self._sink, build_record(
                request_prompt=reconstruct_full_prompt(request.messages),
                response_model=response.model or self._config.reasoning_model,
                response_output=reconstruct_full_output(response.choices),
                signature=response.signature,
                usage=response.usage,
                chain_id=self._config.chain_id,
                expected_signer=self._config.expected_signer,
                verify=self._config.local_verification,
            ))

        if not content:
            return hold_decision(
                "Reasoning model returned an empty response. Defaulting to HOLD.",
                "Empty response from reasoning model",
            )
        return await self.execute_decision(content) or content

    async def execute_decision(self, content: str) -> Optional[str]:
        """
        Execute the first trade decision in `content` if it is a BUY/SELL of at
        least $1. Returns the annotated decision JSON, or None when nothing was
        attempted (the caller then keeps the text as it was).
        """
        decision = parse_decision(content)
        if decision is None or not decision.trade_decisions:
            return None

        first = decision.trade_decisions[0]
        action = (first.action or "").upper()
        if action not in ("BUY", "SELL"):
            return None
        if not first.amount_usd or first.amount_usd < 1:
            logger.info("Skipping trade execution: amount too small ($%s)", first.amount_usd or 0)
            return None
        token = (first.token or "").upper()
        if not token:
            return None
        if self._trade_executor is None:
            logger.warning("No trade executor configured; %s %s not executed", action, token)
            return None

        via = (first.via or "").upper() or None
        logger.info("Executing %s: $%s %s%s", action, first.amount_usd, token, f" via {via}" if via else "")
        try:
            result = await self._trade_executor.quote_and_execute(token, action, first.amount_usd, via)
        except Exception as e:
            logger.exception("Trade executor raised")
            result = TradeResult(error=f"{type(e).__name__}: {e}")

        note = annotation_for(result)
        first.rationale = f"{first.rationale} {note}" if first.rationale else note
        return _dumps(decision.model_dump(mode="json", exclude_unset=True))
