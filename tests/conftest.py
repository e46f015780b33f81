"""Shared fakes for the gateway tests.

Upstream providers are simulated with :class:`httpx.MockTransport`, so every
test drives the real :class:`~llmgateway.providers.transport.HttpTransport`
(URL building, headers, JSON encoding, status mapping) without a network.
"""

import asyncio
import json
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
from tenacity import wait_none

from llmgateway.providers import (
    ActiveConfig,
    AuditRecord,
    HttpTransport,
    LLMGateway,
)

OPENAI_CONFIG = ActiveConfig(
    provider="openai",
    model="gpt-4o-mini",
    api_url="https://api.openai.test/v1/",
    encrypted_key="sk-test",
)

OLLAMA_CONFIG = ActiveConfig(
    provider="ollama",
    model="llama3",
    api_url="http://localhost:11434",
)


def chat_reply(text: str) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def tool_reply(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    return {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {"type": "function", "function": {"name": name, "arguments": json.dumps(arguments)}}
                    ],
                }
            }
        ]
    }


def error_reply(message: str) -> dict[str, Any]:
    return {"error": {"message": message}}


class StaticCredentialStore:
    def __init__(self, active: ActiveConfig | None) -> None:
        self.active = active

    async def get_active_config(self) -> ActiveConfig | None:
        return self.active


class RecordingAuditSink:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def record(self, record: AuditRecord) -> None:
        self.records.append(record)


class ScriptedUpstream:
    """``httpx.MockTransport`` handler answering from a script of replies.

    Each reply is ``(status, body)`` or an exception to raise.  The last reply
    repeats once the script runs out.  Setting :attr:`gate` holds every
    request until the event is set.
    """

    def __init__(self, *replies: tuple[int, Any] | Exception) -> None:
        self.replies = list(replies) or [(200, chat_reply("OK"))]
        self.requests: list[httpx.Request] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        status, body = reply
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    @property
    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
async def make_gateway() -> AsyncGenerator[Callable[..., LLMGateway], None]:
    """Factory building an :class:`LLMGateway` against a :class:`ScriptedUpstream`."""
    clients: list[httpx.AsyncClient] = []

    def _make(
        upstream: ScriptedUpstream,
        active: ActiveConfig | None = OPENAI_CONFIG,
        max_retries: int = 1,
        **kwargs: Any,
    ) -> LLMGateway:
        client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        clients.append(client)
        kwargs.setdefault("audit_sink", RecordingAuditSink())
        return LLMGateway(
            StaticCredentialStore(active),
            transport=HttpTransport(client=client, max_retries=max_retries, retry_wait=wait_none()),
            **kwargs,
        )

    yield _make

    for client in clients:
        await client.aclose()
