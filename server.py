"""
HTTP server entrypoint for EigenCompute TEE deployment.
Exposes the verifiable inference gateway as a small REST API binding to 0.0.0.0.

Endpoints:
  POST /complete  — run one completion (JSON body: {"conversation": [...], "tools": [...]})
  POST /verify    — check a signed response (JSON body: {"request": {"messages": [...]}, "response": {...}})
  GET  /health    — liveness probe (returns {"status": "ok"})
  GET  /info      — returns backend/model/signer config (public values only)

Environment variables (injected by TEE at runtime):
  EIGENAI_API_KEY, EIGENAI_GRANT_PRIVATE_KEY or MNEMONIC (KMS) — one is required
  EIGENAI_API_URL  — defaults to the endpoint for the auth mode
  EIGENAI_MODEL    — defaults to gpt-oss-120b-f16
  VERIFICATION_LOG — JSONL file receiving verification records (optional)
  APP_PORT         — defaults to 8080
  LOG_LEVEL        — defaults to INFO
"""

import os
import json
import asyncio
import concurrent.futures
import logging
import threading
import http.server
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import ValidationError

from agent.trading import DryRunTradeExecutor
from eigenai.config import load_config
from eigenai.errors import AuthError, GatewayError, TransportError
from eigenai.gateway import VerifiableGateway
from eigenai.models import ChatMessage, CompletionResponse, ToolDefinition
from eigenai.sinks import InMemoryVerificationSink, JsonlVerificationSink

load_dotenv()

logger = logging.getLogger(__name__)

PORT = int(os.getenv("APP_PORT", "8080"))


class GatewayRunner:
    """Runs the async gateway on one background event loop for the threaded server."""

    def __init__(self, gateway: VerifiableGateway, timeout_s: float = 300.0):
        self.gateway = gateway
        self.timeout_s = timeout_s
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, name="gateway-loop", daemon=True)
        self._thread.start()

    def run(self, coro):
        """Run `coro` on the gateway loop. On timeout the coroutine is cancelled too."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(self.timeout_s)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def close(self):
        self.run(self.gateway.aclose())
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join()
        self.loop.close()


class Handler(http.server.BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        logger.info("[%s] %s", self.address_string(), format % args)

    @property
    def runner(self) -> GatewayRunner:
        return self.server.runner

    def send_json(self, code: int, data):
        body = json.dumps(data, indent=2).encode()
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def read_json_body(self):
        length = int(self.headers.get("Content-Length", 0))
        if not length:
            return None
        return json.loads(self.rfile.read(length))

    def do_GET(self):
        path = urlparse(self.path).path
        if path == "/health":
            self.send_json(200, {"status": "ok"})
        elif path == "/info":
            # wallet address only, keys never exposed
            self.send_json(200, self.runner.gateway.info())
        else:
            self.send_json(404, {"error": "not_found"})

    def do_POST(self):
        path = urlparse(self.path).path
        try:
            body = self.read_json_body()
        except Exception:
            self.send_json(400, {"error": "invalid_json_body"})
            return

        if path == "/verify":
            self.handle_verify(body)
        elif path == "/complete":
            self.handle_complete(body)
        else:
            self.send_json(404, {"error": "not_found"})

    def handle_verify(self, body):
        if not isinstance(body, dict) or "request" not in body or "response" not in body:
            self.send_json(400, {"error": "body must be {\"request\": {\"messages\": [...]}, \"response\": {...}}"})
            return
        try:
            messages = [ChatMessage.from_wire(m) for m in (body["request"] or {}).get("messages") or []]
            response = CompletionResponse.from_wire(body["response"] or {})
        except (ValidationError, AttributeError, TypeError) as e:
            self.send_json(400, {"error": "invalid_verify_body", "detail": str(e)})
            return

        result = self.runner.gateway.verify(
            messages, response,
            chain_id=body.get("chain_id"),
            expected_signer=body.get("expected_signer"),
        )
        self.send_json(200, result.to_dict())

    def handle_complete(self, body):
        if not isinstance(body, dict) or not isinstance(body.get("conversation"), list):
            self.send_json(400, {"error": "body must be {\"conversation\": [...]}"})
            return
        try:
            tools = [ToolDefinition.model_validate(t) for t in body.get("tools") or []]
            response = self.runner.run(self.runner.gateway.complete(
                body["conversation"],
                tools=tools,
                tool_choice=body.get("tool_choice"),
                max_tokens=body.get("max_tokens"),
                temperature=body.get("temperature"),
                top_p=body.get("top_p"),
            ))
        except ValidationError as e:
            self.send_json(400, {"error": "invalid_conversation", "detail": str(e)})
            return
        except AuthError as e:
            self.send_json(401, {"error": "auth_failed", "code": e.code.value, "detail": e.message})
            return
        except TransportError as e:
            self.send_json(502, {"error": "upstream_error", "code": e.code.value,
                                 "status_code": e.status_code, "detail": e.message})
            return
        except GatewayError as e:
            self.send_json(502, {"error": "upstream_error", "detail": e.message})
            return
        except concurrent.futures.TimeoutError:
            logger.error("Completion timed out after %ss", self.runner.timeout_s)
            self.send_json(504, {"error": "upstream_timeout", "timeout_s": self.runner.timeout_s})
            return

        self.send_json(200, response.model_dump(mode="json"))


def make_server(runner: GatewayRunner, host: str = "0.0.0.0", port: int = PORT):
    server = http.server.ThreadingHTTPServer((host, port), Handler)
    server.runner = runner
    return server


def build_gateway() -> VerifiableGateway:
    log_path = os.getenv("VERIFICATION_LOG", "").strip()
    sink = JsonlVerificationSink(log_path) if log_path else InMemoryVerificationSink()
    return VerifiableGateway(load_config(), trade_executor=DryRunTradeExecutor(), sink=sink)


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    runner = GatewayRunner(build_gateway())
    server = make_server(runner)
    info = runner.gateway.info()
    logger.info("EigenAI gateway server listening on 0.0.0.0:%d", PORT)
    logger.info("  Backend : %s (%s)", info["backend"], info["auth_mode"])
    logger.info("  Model   : %s → %s", info["model"], info["reasoning_model"])
    try:
        server.serve_forever()
    finally:
        runner.close()
