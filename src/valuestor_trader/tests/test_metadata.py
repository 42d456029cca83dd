from __future__ import annotations

from typing import Any, List

import requests

from valuestor_trader.config.settings import MetadataConfig
from valuestor_trader.ingestion.metadata import EMPTY_DOCUMENT, MetadataClient


class StubResponse:
    def __init__(self, payload: Any, status: int = 200) -> None:
        self._payload = payload
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class StubSession:
    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)
        self.urls: List[str] = []

    def get(self, url: str, **_: Any) -> StubResponse:
        self.urls.append(url)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(session: StubSession, **overrides: Any) -> MetadataClient:
    return MetadataClient(MetadataConfig(**overrides), session=session)  # type: ignore[arg-type]


def test_ipfs_uri_is_rewritten_through_gateway() -> None:
    session = StubSession(StubResponse({"description": "Solar", "category": "Sustainability", "tags": ["a", "b"]}))
    client = _client(session, ipfs_gateway="https://gateway.example/ipfs")

    document = client.fetch("ipfs://bafyabc")

    assert session.urls == ["https://gateway.example/ipfs/bafyabc"]
    assert document.description == "Solar"
    assert document.category == "sustainability"
    assert document.tags == ("a", "b")


def test_successful_documents_are_cached() -> None:
    session = StubSession(StubResponse({"description": "once"}))
    client = _client(session)

    first = client.fetch("https://meta.example/1.json")
    second = client.fetch("https://meta.example/1.json")

    assert first is second
    assert len(session.urls) == 1


def test_failures_degrade_to_empty_document_and_are_retried_later() -> None:
    session = StubSession(
        requests.ConnectionError("down"),
        StubResponse({}, status=404),
        StubResponse(ValueError("not json")),
        StubResponse(["not", "an", "object"]),
        StubResponse({"description": "recovered"}),
    )
    client = _client(session)
    uri = "https://meta.example/flaky.json"

    for _ in range(4):
        assert client.fetch(uri) == EMPTY_DOCUMENT
    assert client.fetch(uri).description == "recovered"


def test_empty_fields_are_treated_as_absent() -> None:
    session = StubSession(StubResponse({"description": "", "category": "", "tags": ""}))
    document = _client(session).fetch("https://meta.example/blank.json")

    assert document == EMPTY_DOCUMENT


def test_loose_fields_are_kept_as_present() -> None:
    session = StubSession(StubResponse({"description": "   ", "category": "  ", "tags": "solo"}))
    document = _client(session).fetch("https://meta.example/loose.json")

    assert document.description == "   "
    assert document.category == "  "
    assert document.tags == ("solo",)


def test_empty_uri_is_not_fetched() -> None:
    session = StubSession()
    assert _client(session).fetch("") == EMPTY_DOCUMENT
    assert session.urls == []
