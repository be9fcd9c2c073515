"""
EigenAI streaming completions (server-sent events).

Event sequence for one call:

    StreamStart → TextStart → TextDelta* → TextEnd → ResponseMetadata → Finish

The HTTP request is made on the first pull, so nothing touches the network
until the caller starts iterating. Each call opens exactly one connection and
the iterator cannot be restarted.

SSE framing is handled by StreamAccumulator: chunks are buffered, split on
newlines, and only complete `data:` lines are parsed. A malformed line is
dropped and the stream carries on. The signature and usage normally arrive on
the last chunk; once the transport ends, a verification record is built from
everything accumulated, provided a signature showed up.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError

from .cancel import abortable
from .config import GatewayConfig
from .credentials import Credentials
from .errors import TransportError, parse_error_code
from .messages import reconstruct_full_prompt
from .models import CompletionRequest, FinishReason, Usage, VerificationRecord
from .sinks import VerificationSink, adeliver
from .verifier import build_record

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


# ── Events ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StreamStart:
    type: str = "stream-start"


@dataclass(frozen=True)
class TextStart:
    id: str
    type: str = "text-start"


@dataclass(frozen=True)
class TextDelta:
    id: str
    delta: str
    type: str = "text-delta"


@dataclass(frozen=True)
class TextEnd:
    id: str
    type: str = "text-end"


@dataclass(frozen=True)
class ResponseMetadata:
    id: str
    model_id: str
    type: str = "response-metadata"


@dataclass(frozen=True)
class Finish:
    usage: Usage
    signature: str = ""
    finish_reason: FinishReason = FinishReason.STOP
    type: str = "finish"


StreamEvent = Union[StreamStart, TextStart, TextDelta, TextEnd, ResponseMetadata, Finish]


# ── SSE accumulation ─────────────────────────────────────────────────────────
# Any chunk that fails to validate, in JSON syntax or in shape, is dropped whole.

class ChunkDelta(BaseModel):
    content: Optional[str] = None


class ChunkChoice(BaseModel):
    delta: Optional[ChunkDelta] = None


class ChunkUsage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class StreamChunk(BaseModel):
    id: Optional[str] = None
    model: Optional[str] = None
    signature: Optional[str] = None
    choices: Optional[List[ChunkChoice]] = None
    usage: Optional[ChunkUsage] = None

    @property
    def content(self) -> Optional[str]:
        if not self.choices or self.choices[0].delta is None:
            return None
        return self.choices[0].delta.content


@dataclass
class StreamAccumulator:
    """Per-call parsing state. Discard after the terminal event."""

    text_id: str
    response_model: str = ""
    response_id: str = ""
    buffer: str = ""
    full_content: str = ""
    final_signature: str = ""
    final_usage: Usage = field(default_factory=Usage)

    def feed(self, chunk: str) -> List[TextDelta]:
        """Consume one transport chunk, returning the text deltas it completed."""
        self.buffer += chunk
        lines = self.buffer.split("\n")
        self.buffer = lines.pop()

        deltas: List[TextDelta] = []
        for line in lines:
            delta = self._parse_line(line)
            if delta:
                deltas.append(TextDelta(id=self.text_id, delta=delta))
        return deltas

    def discard(self) -> None:
        self.buffer = ""

    def _parse_line(self, line: str) -> Optional[str]:
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX):].strip()
        if not data or data == DONE_SENTINEL:
            return None
        try:
            chunk = StreamChunk.model_validate_json(data)
        except ValidationError:
            logger.debug("Dropping malformed stream chunk: %.120s", data)
            return None

        if chunk.model:
            self.response_model = chunk.model
        if chunk.id:
            self.response_id = chunk.id
        if chunk.signature:
            self.final_signature = chunk.signature

        if chunk.usage is not None:
            prompt = chunk.usage.prompt_tokens or 0
            completion = chunk.usage.completion_tokens or 0
            self.final_usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=prompt + completion,
            )

        content = chunk.content
        if content:
            self.full_content += content
            return content
        return None


# ── Client ───────────────────────────────────────────────────────────────────

async def _next_chunk(chunks: AsyncIterator[str]) -> Optional[str]:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


class StreamingClient:
    def __init__(
        self,
        config: GatewayConfig,
        credentials: Credentials,
        http: httpx.AsyncClient,
        sink: Optional[VerificationSink] = None,
    ):
        self._config = config
        self._credentials = credentials
        self._http = http
        self._sink = sink

    async def stream(
        self,
        request: CompletionRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a completion as StreamEvents.

        Raises AuthError / TransportError on the first pull if the request
        cannot be made or is answered non-2xx, and AbortedError if `abort`
        fires mid-stream. Malformed chunks never raise.
        """
        auth = await abortable(self._credentials.auth_fields(), abort)
        body = {**request.to_body(), "stream": True, **auth.body}
        acc = StreamAccumulator(
            text_id=f"text-{int(time.time() * 1000)}",
            response_model=request.model,
        )

        try:
            async with self._http.stream(
                "POST", self._config.completions_url, json=body, headers=auth.headers
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    try:
                        err_body = response.json()
                    except ValueError:
                        err_body = response.text
                    code = parse_error_code(err_body)
                    logger.error("EigenAI stream error %s (%s)", response.status_code, code.value)
                    raise TransportError(
                        f"EigenAI API error: {response.status_code}",
                        status_code=response.status_code,
                        code=code,
                        body=err_body,
                    )

                yield StreamStart()
                yield TextStart(id=acc.text_id)

                chunks = response.aiter_text().__aiter__()
                while True:
                    try:
                        chunk = await abortable(_next_chunk(chunks), abort)
                    except BaseException:
                        acc.discard()
                        raise
                    if chunk is None:
                        break
                    for delta in acc.feed(chunk):
                        yield delta
        except httpx.HTTPError as e:
            raise TransportError(f"EigenAI stream failed: {e}") from e

        yield TextEnd(id=acc.text_id)

        if acc.final_signature:
            await adeliver(self._sink, self._record(request, acc))

        yield ResponseMetadata(id=acc.response_id, model_id=acc.response_model)
        yield Finish(usage=acc.final_usage, signature=acc.final_signature)

    def _record(self, request: CompletionRequest, acc: StreamAccumulator) -> VerificationRecord:
        return build_record(
            request_prompt=reconstruct_full_prompt(request.messages),
            response_model=acc.response_model,
            response_output=acc.full_content,
            signature=acc.final_signature,
            usage=acc.final_usage,
            chain_id=self._config.chain_id,
            expected_signer=self._config.expected_signer,
            verify=self._config.local_verification,
        )
