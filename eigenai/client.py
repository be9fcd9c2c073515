"""
EigenAI completion client — one request, one response.

Goes through the OpenAI SDK (EigenAI is OpenAI-compatible) but reads the raw
JSON body back, because the field we care most about, `signature`, is an
EigenAI extension that must reach the verifier untouched.

Endpoints by auth mode:
  API key      → {base}/v1/chat/completions   (X-API-Key header)
  Wallet grant → {base}/api/chat/completions  (grant fields in the body)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx
import openai
from openai import AsyncOpenAI

from .cancel import abortable
from .config import GatewayConfig
from .credentials import Credentials
from .errors import ProtocolParseError, TransportError, parse_error_code
from .models import CompletionRequest, CompletionResponse

logger = logging.getLogger(__name__)


class CompletionClient:
    def __init__(self, config: GatewayConfig, credentials: Credentials, http: httpx.AsyncClient):
        self._config = config
        self._credentials = credentials
        api_base = config.completions_url[: -len("/chat/completions")]
        # The SDK insists on a bearer value, but EigenAI reads X-API-Key or the
        # grant fields instead; the Authorization header is stripped per request.
        self._openai = AsyncOpenAI(
            base_url=api_base,
            api_key=credentials.address or "x-api-key",
            max_retries=0,
            timeout=config.request_timeout_s,
            http_client=http,
        )

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    async def complete(
        self,
        request: CompletionRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> CompletionResponse:
        """
        Run one non-streaming completion.

        Raises AuthError when credentials cannot be produced, TransportError on
        non-2xx or connection failure, ProtocolParseError on an unusable body.
        """
        return await abortable(self._complete(request), abort)

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        auth = await self._credentials.auth_fields()
        body = request.to_body()
        body.pop("stream", None)

        logger.debug(
            "POST %s model=%s messages=%d tools=%d",
            self._config.completions_url, request.model,
            len(request.messages), len(request.tools or []),
        )
        try:
            raw = await self._openai.chat.completions.with_raw_response.create(
                **body,
                extra_headers={"Authorization": openai.Omit(), **auth.headers},
                extra_body=auth.body or None,
            )
        except openai.APIStatusError as e:
            code = parse_error_code(e.body)
            logger.error("EigenAI API error %s (%s)", e.status_code, code.value)
            raise TransportError(
                f"EigenAI API error: {e.status_code}",
                status_code=e.status_code,
                code=code,
                body=e.body,
            ) from e
        except openai.APIConnectionError as e:
            raise TransportError(f"EigenAI unreachable: {e}") from e

        try:
            data = raw.http_response.json()
        except ValueError as e:
            raise ProtocolParseError("EigenAI returned a non-JSON completion body") from e
        if not isinstance(data, dict) or not isinstance(data.get("choices"), list):
            raise ProtocolParseError("EigenAI completion body has no choices")

        try:
            response = CompletionResponse.from_wire(data)
        except (ValueError, TypeError, AttributeError) as e:
            raise ProtocolParseError(f"Malformed EigenAI completion: {e}") from e

        logger.info(
            "EigenAI %s finished (%s), %d tool call(s), signed=%s",
            response.model, response.finish_reason.value,
            len(response.tool_calls), bool(response.signature),
        )
        return response
