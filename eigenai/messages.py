"""
Conversation conversion between the agent framework and the EigenAI wire format.

The framework accumulates a step's tool calls into ONE assistant turn and all
their results into ONE tool turn. The OpenAI-compatible protocol EigenAI
speaks wants each call in its own assistant message, immediately followed by
its result:

    assistant: tool_calls=[A, B]          assistant: tool_calls=[A]
    tool:      result_A, result_B   ==>   tool:      result_A
                                          assistant: tool_calls=[B]
                                          tool:      result_B

The flat prompt string EigenAI hashes before signing is every message's
content concatenated with no separators, so reconstruct_full_prompt() must be
kept byte-exact with what to_wire_messages() produces.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Sequence

from .models import (
    AssistantTurn,
    ChatMessage,
    Choice,
    SystemTurn,
    ToolCall,
    ToolTurn,
    Turn,
    UserTurn,
)


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _arguments_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return "{}"
    return _compact_json(value)


def _output_text(output: Any) -> str:
    """
    Tool outputs come as a string, a list of content parts, or arbitrary JSON.
    Text parts contribute their text; anything else is serialised as JSON.
    """
    if isinstance(output, str):
        return output
    if isinstance(output, list):
        pieces = []
        for part in output:
            if isinstance(part, dict) and part.get("type") == "text" and part.get("text"):
                pieces.append(part["text"])
            else:
                pieces.append(_compact_json(part))
        return "".join(pieces)
    return _compact_json(output)


def to_wire_messages(turns: Sequence[Turn]) -> List[ChatMessage]:
    """
    Rebuild the strict call/result alternation from accumulated turns.

    Results are looked up by call id across every tool turn, so a result may
    arrive in any later tool turn. A call with no result yet emits only its
    assistant half. Results whose call never appears are dropped.
    """
    results: Dict[str, str] = {}
    for turn in turns:
        if isinstance(turn, ToolTurn):
            for result in turn.results:
                results[result.tool_call_id] = _output_text(result.output)

    messages: List[ChatMessage] = []
    for turn in turns:
        if isinstance(turn, SystemTurn):
            messages.append(ChatMessage(role="system", content=turn.content))
        elif isinstance(turn, UserTurn):
            messages.append(ChatMessage(role="user", content=turn.text))
        elif isinstance(turn, AssistantTurn):
            if not turn.tool_calls:
                if turn.text and turn.text.strip():
                    messages.append(ChatMessage(role="assistant", content=turn.text))
                continue
            for part in turn.tool_calls:
                call = ToolCall(
                    id=part.tool_call_id,
                    name=part.tool_name,
                    arguments=_arguments_text(part.input),
                )
                messages.append(ChatMessage(role="assistant", content=None, tool_calls=[call]))
                if part.tool_call_id in results:
                    messages.append(ChatMessage(
                        role="tool",
                        tool_call_id=part.tool_call_id,
                        content=results[part.tool_call_id],
                    ))
    return messages


def reconstruct_full_prompt(messages: Iterable[ChatMessage]) -> str:
    return "".join(m.content or "" for m in messages)


def reconstruct_full_output(choices: Iterable[Choice]) -> str:
    return "".join(c.message.content or "" for c in choices)


def count_tool_results(messages: Iterable[ChatMessage]) -> int:
    return sum(1 for m in messages if m.role == "tool")


def called_tool_names(messages: Iterable[ChatMessage]) -> List[str]:
    """Names of every tool the assistant called, in call order."""
    names = []
    for m in messages:
        if m.role == "assistant":
            names.extend(tc.name for tc in m.tool_calls or [])
    return names
