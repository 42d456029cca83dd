from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, List

import httpx
import openai
import pytest

from valuestor_trader.config.settings import ReasoningConfig
from valuestor_trader.errors import ReasoningServiceError
from valuestor_trader.monitoring.metrics import METRICS
from valuestor_trader.strategy.reasoning import OpenAIReasoningService


class FakeCompletions:
    def __init__(self, outcomes: List[Any]) -> None:
        self.outcomes = outcomes
        self.requests: List[dict] = []

    async def create(self, **request: Any) -> Any:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))])


class FakeClient:
    def __init__(self, outcomes: List[Any]) -> None:
        self.completions = FakeCompletions(outcomes)
        self.chat = SimpleNamespace(completions=self.completions)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.example/v1/chat/completions"))


def _service(outcomes: List[Any], **overrides: Any) -> tuple[OpenAIReasoningService, FakeClient]:
    client = FakeClient(outcomes)
    config = ReasoningConfig(api_key="sk-test", backoff_max_seconds=0, **overrides)
    return OpenAIReasoningService(config, client=client), client  # type: ignore[arg-type]


def _complete(service: OpenAIReasoningService, **kwargs: Any) -> str:
    return asyncio.run(service.complete("system", "user", temperature=0.3, max_tokens=100, **kwargs))


def test_json_mode_requests_json_object() -> None:
    service, client = _service(['{"decision": "skip"}'])

    assert _complete(service) == '{"decision": "skip"}'
    request = client.completions.requests[0]
    assert request["response_format"] == {"type": "json_object"}
    assert request["messages"][0] == {"role": "system", "content": "system"}
    assert request["max_tokens"] == 100


def test_transient_errors_are_retried() -> None:
    service, client = _service([_connection_error(), '{"ok": true}'])

    assert _complete(service, json_mode=False) == '{"ok": true}'
    assert "response_format" not in client.completions.requests[1]
    assert METRICS.get("reasoning.retries") == 1


def test_exhausted_retries_raise_service_error() -> None:
    service, client = _service([_connection_error(), _connection_error()], max_attempts=2)

    with pytest.raises(ReasoningServiceError):
        _complete(service)
    assert len(client.completions.requests) == 2


def test_non_transient_errors_are_not_retried() -> None:
    service, client = _service([openai.OpenAIError("bad request"), "{}"])

    with pytest.raises(ReasoningServiceError):
        _complete(service)
    assert len(client.completions.requests) == 1


def test_empty_content_becomes_empty_object() -> None:
    service, client = _service([None])

    assert _complete(service) == "{}"
    asyncio.run(service.aclose())
    assert client.closed
