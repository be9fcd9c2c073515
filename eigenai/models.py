"""
Request / response schemas for the EigenAI gateway.

Two conversation shapes live here:
  - accumulated turns (SystemTurn, UserTurn, AssistantTurn, ToolTurn): what
    the calling agent framework hands us, with every tool call of a step in one
    assistant turn and every result in one tool turn;
  - ChatMessage: the OpenAI-compatible wire message EigenAI expects, where each
    tool call sits in its own assistant message followed by its result.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationInfo, model_validator


# ── Wire messages ─────────────────────────────────────────────────────────────

class ToolCall(BaseModel):
    id: str
    name: str
    arguments: str = "{}"

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_wire(cls, data: dict) -> "ToolCall":
        function = data.get("function") or {}
        return cls(
            id=data.get("id") or "",
            name=function.get("name") or "",
            arguments=function.get("arguments") or "{}",
        )


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_tool_fields(self, info: ValidationInfo) -> "ChatMessage":
        received = bool(info.context and info.context.get("received"))
        if self.tool_calls and self.content is not None and not received:
            raise ValueError("assistant messages carrying tool_calls must have content=None")
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool messages must carry tool_call_id")
        return self

    def to_wire(self) -> dict:
        # content is always sent, null included: the server hashes it.
        msg: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id:
            msg["tool_call_id"] = self.tool_call_id
        return msg

    @classmethod
    def from_wire(cls, data: dict) -> "ChatMessage":
        """
        Parse a message as it was received. Content next to tool_calls is kept
        verbatim because it is part of what EigenAI signed; only messages we
        build ourselves must leave it empty.
        """
        tool_calls = [ToolCall.from_wire(tc) for tc in data.get("tool_calls") or []]
        return cls.model_validate(
            {
                "role": data.get("role") or "assistant",
                "content": data.get("content"),
                "tool_calls": tool_calls or None,
                "tool_call_id": data.get("tool_call_id"),
            },
            context={"received": True},
        )


class ToolDefinition(BaseModel):
    name: str
    description: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_wire(self) -> dict:
        function: Dict[str, Any] = {"name": self.name, "parameters": self.parameters}
        if self.description is not None:
            function["description"] = self.description
        return {"type": "function", "function": function}


ToolChoice = Union[Literal["auto", "none", "required"], str]


def tool_choice_to_wire(choice: Optional[ToolChoice]) -> Union[str, dict, None]:
    """'auto' / 'none' / 'required' pass through; any other value names a tool."""
    if choice is None:
        return None
    if choice in ("auto", "none", "required"):
        return choice
    return {"type": "function", "function": {"name": choice}}


class CompletionRequest(BaseModel):
    messages: List[ChatMessage]
    model: str
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    tools: Optional[List[ToolDefinition]] = None
    tool_choice: Optional[ToolChoice] = None
    stream: bool = False

    @model_validator(mode="after")
    def _check_tool_results_reference_calls(self) -> "CompletionRequest":
        seen = set()
        for msg in self.messages:
            for tc in msg.tool_calls or []:
                seen.add(tc.id)
            if msg.role == "tool" and msg.tool_call_id not in seen:
                raise ValueError(f"tool result {msg.tool_call_id!r} has no preceding tool call")
        return self

    def to_body(self) -> dict:
        """JSON body without auth fields."""
        body: Dict[str, Any] = {
            "messages": [m.to_wire() for m in self.messages],
            "model": self.model,
        }
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if self.top_p is not None:
            body["top_p"] = self.top_p
        if self.tools:
            body["tools"] = [t.to_wire() for t in self.tools]
            body["tool_choice"] = tool_choice_to_wire(self.tool_choice) or "auto"
        if self.stream:
            body["stream"] = True
        return body


# ── Responses ────────────────────────────────────────────────────────────────

class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool-calls"
    CONTENT_FILTER = "content-filter"

    @classmethod
    def from_wire(cls, reason: Optional[str]) -> "FinishReason":
        return {
            "stop": cls.STOP,
            "length": cls.LENGTH,
            "tool_calls": cls.TOOL_CALLS,
            "content_filter": cls.CONTENT_FILTER,
        }.get(reason or "", cls.STOP)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_wire(cls, data: Optional[dict]) -> "Usage":
        data = data or {}
        return cls(
            prompt_tokens=data.get("prompt_tokens") or 0,
            completion_tokens=data.get("completion_tokens") or 0,
            total_tokens=data.get("total_tokens") or 0,
        )


class Choice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: FinishReason = FinishReason.STOP


class CompletionResponse(BaseModel):
    id: str = ""
    model: str = ""
    choices: List[Choice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    signature: Optional[str] = None

    @property
    def text(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""

    @property
    def tool_calls(self) -> List[ToolCall]:
        if not self.choices:
            return []
        return list(self.choices[0].message.tool_calls or [])

    @property
    def finish_reason(self) -> FinishReason:
        return self.choices[0].finish_reason if self.choices else FinishReason.STOP

    @classmethod
    def from_wire(cls, data: dict) -> "CompletionResponse":
        choices = [
            Choice(
                index=c.get("index", i),
                message=ChatMessage.from_wire(c.get("message") or {}),
                finish_reason=FinishReason.from_wire(c.get("finish_reason")),
            )
            for i, c in enumerate(data.get("choices") or [])
        ]
        return cls(
            id=data.get("id") or "",
            model=data.get("model") or "",
            choices=choices,
            usage=Usage.from_wire(data.get("usage")),
            signature=data.get("signature") or None,
        )


# ── Verification ─────────────────────────────────────────────────────────────

class VerificationRecord(BaseModel):
    """One signed response, checked locally and ready for the verification sink."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_prompt: str
    response_model: str
    response_output: str
    signature: str
    usage: Usage = Field(default_factory=Usage)
    chain_id: str
    expected_signer: str
    recovered_signer: Optional[str] = None
    is_valid: bool = False
    error: Optional[str] = None
    request_hash: str = ""
    response_hash: str = ""

    @property
    def status(self) -> str:
        if self.error:
            return "error"
        if self.recovered_signer is None:
            return "pending"
        return "verified" if self.is_valid else "invalid"


# ── Accumulated turns ────────────────────────────────────────────────────────

class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class SystemTurn(BaseModel):
    role: Literal["system"] = "system"
    content: str


class UserTurn(BaseModel):
    role: Literal["user"] = "user"
    content: Union[str, List[TextPart]]

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content)


class ToolCallPart(BaseModel):
    tool_call_id: str
    tool_name: str
    input: Any = None


class AssistantTurn(BaseModel):
    role: Literal["assistant"] = "assistant"
    text: Optional[str] = None
    tool_calls: List[ToolCallPart] = Field(default_factory=list)


class ToolResultPart(BaseModel):
    tool_call_id: str
    tool_name: Optional[str] = None
    output: Any = None


class ToolTurn(BaseModel):
    role: Literal["tool"] = "tool"
    results: List[ToolResultPart] = Field(default_factory=list)


Turn = Annotated[
    Union[SystemTurn, UserTurn, AssistantTurn, ToolTurn],
    Field(discriminator="role"),
]

_conversation_adapter = TypeAdapter(List[Turn])


def parse_conversation(data: Any) -> List[Turn]:
    """Validate a raw list of turn dicts (e.g. from a JSON request body)."""
    return _conversation_adapter.validate_python(data)


# ── Decisions ────────────────────────────────────────────────────────────────

class TradeDecision(BaseModel):
    model_config = ConfigDict(extra="allow")

    token: Optional[str] = None
    action: Optional[str] = None
    amount_usd: Optional[float] = None
    via: Optional[str] = None
    rationale: Optional[str] = None


class DecisionSet(BaseModel):
    model_config = ConfigDict(extra="allow")

    reasoning: Optional[str] = None
    trade_decisions: List[TradeDecision]
