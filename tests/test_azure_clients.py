import json

import httpx
import pytest

from azure_ai.chat import ChatClient, parse_sse_line
from azure_ai import document_intelligence
from azure_ai.document_intelligence import DocumentIntelligenceClient, extract_fields
from azure_ai.embeddings import EmbeddingError, EmbeddingsClient, parse_embedding_response
from azure_ai.utils import AzureAPIError, is_retryable_error, parse_azure_error
from bmo.config import ChatSettings, DocumentIntelligenceSettings, EmbeddingSettings, RetrySettings

RETRY = RetrySettings(max_retries=2, delay=0, analysis_max_retries=1, analysis_delay=0)
EMBEDDINGS = EmbeddingSettings(endpoint="https://embed.test/embeddings", api_key="k", dimensions=128)
CHAT = ChatSettings(endpoint="https://chat.test/completions", api_key="k")
DOCINT = DocumentIntelligenceSettings(
    endpoint="https://docint.test/",
    api_key="k",
    poll_max_attempts=3,
    poll_initial_delay=0,
    poll_max_delay=0,
)


class Recorder:
    """Replays canned responses and counts calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


# Error helpers

def test_retryable_errors():
    assert is_retryable_error(httpx.ConnectError("boom"))
    assert is_retryable_error(AzureAPIError("x", status_code=503))
    assert is_retryable_error(AzureAPIError("x", status_code=429))
    assert is_retryable_error(AzureAPIError("x", status_code=408))
    assert not is_retryable_error(AzureAPIError("x", status_code=400))
    assert not is_retryable_error(ValueError("no status"))


def test_parse_azure_error_shapes():
    assert parse_azure_error('{"error": {"message": "quota exceeded"}}') == "quota exceeded"
    assert parse_azure_error({"message": "bad input"}) == "bad input"
    assert parse_azure_error("plain text failure") == "plain text failure"
    assert parse_azure_error(b"") == "Unknown Azure API error"


# Embeddings

def test_parse_embedding_response_shapes():
    vector = [0.1, 0.2]
    assert parse_embedding_response({"data": [{"embedding": vector}]}) == vector
    assert parse_embedding_response([{"embedding": vector}]) == vector
    assert parse_embedding_response([vector]) == vector
    assert parse_embedding_response({"embedding": vector}) == vector
    assert parse_embedding_response({"unexpected": True}) == []


async def test_embed_retries_server_errors():
    vector = [0.5] * 128
    recorder = Recorder(
        httpx.Response(503, json={"error": {"message": "busy"}}),
        httpx.Response(200, json={"data": [{"embedding": vector}]}),
    )
    client = EmbeddingsClient(EMBEDDINGS, RETRY, transport=httpx.MockTransport(recorder))

    assert await client.embed("invoice 42") == vector
    assert len(recorder.requests) == 2
    body = json.loads(recorder.requests[0].content)
    assert body["dimensions"] == 128
    assert recorder.requests[0].headers["api-key"] == "k"


async def test_embed_does_not_retry_client_errors():
    recorder = Recorder(httpx.Response(400, json={"error": {"message": "bad request"}}))
    client = EmbeddingsClient(EMBEDDINGS, RETRY, transport=httpx.MockTransport(recorder))

    with pytest.raises(AzureAPIError) as exc_info:
        await client.embed("invoice 42")
    assert exc_info.value.status_code == 400
    assert "bad request" in str(exc_info.value)
    assert len(recorder.requests) == 1


async def test_embed_gives_up_after_max_retries():
    recorder = Recorder(httpx.Response(500, text="down"))
    client = EmbeddingsClient(EMBEDDINGS, RETRY, transport=httpx.MockTransport(recorder))

    with pytest.raises(AzureAPIError):
        await client.embed("invoice 42")
    assert len(recorder.requests) == 3


async def test_embed_rejects_wrong_dimensions():
    recorder = Recorder(httpx.Response(200, json={"data": [{"embedding": [0.1] * 64}]}))
    client = EmbeddingsClient(EMBEDDINGS, RETRY, transport=httpx.MockTransport(recorder))

    with pytest.raises(EmbeddingError, match="expected 128"):
        await client.embed("invoice 42")


async def test_embed_empty_text_makes_no_request():
    recorder = Recorder(httpx.Response(200, json={}))
    client = EmbeddingsClient(EMBEDDINGS, RETRY, transport=httpx.MockTransport(recorder))

    with pytest.raises(EmbeddingError):
        await client.embed("   ")
    assert recorder.requests == []


async def test_embed_batch_orders_by_index():
    first, second = [1.0] * 128, [2.0] * 128
    recorder = Recorder(httpx.Response(200, json={"data": [
        {"index": 1, "embedding": second},
        {"index": 0, "embedding": first},
    ]}))
    client = EmbeddingsClient(EMBEDDINGS, RETRY, transport=httpx.MockTransport(recorder))

    assert await client.embed_batch(["a", "b"]) == [first, second]
    assert await client.embed_batch([]) == []


# Chat

async def test_chat_complete_returns_content():
    recorder = Recorder(httpx.Response(200, json={"choices": [{"message": {"content": "Hello"}}]}))
    client = ChatClient(CHAT, RETRY, transport=httpx.MockTransport(recorder))

    reply = await client.complete([{"role": "user", "content": "hi"}], temperature=0.1, max_tokens=50)

    assert reply == "Hello"
    body = json.loads(recorder.requests[0].content)
    assert body["temperature"] == 0.1
    assert body["max_tokens"] == 50
    assert body["stream"] is False


async def test_chat_complete_unexpected_payload():
    recorder = Recorder(httpx.Response(200, json={"choices": []}))
    client = ChatClient(CHAT, RETRY, transport=httpx.MockTransport(recorder))

    with pytest.raises(AzureAPIError, match="Unexpected chat response format"):
        await client.complete([{"role": "user", "content": "hi"}])


def test_parse_sse_line():
    assert parse_sse_line('data: {"choices": [{"delta": {"content": "Hi"}}]}') == "Hi"
    assert parse_sse_line('data: {"choices": [{"delta": {}}]}') is None
    assert parse_sse_line(": keep-alive") is None
    assert parse_sse_line("data: not json") is None


async def test_chat_stream_yields_tokens_until_done():
    body = "\n".join([
        'data: {"choices": [{"delta": {"content": "Hel"}}]}',
        "",
        'data: {"choices": [{"delta": {"content": "lo"}}]}',
        "data: [DONE]",
        'data: {"choices": [{"delta": {"content": "ignored"}}]}',
    ])
    recorder = Recorder(httpx.Response(200, text=body, headers={"content-type": "text/event-stream"}))
    client = ChatClient(CHAT, RETRY, transport=httpx.MockTransport(recorder))

    tokens = [token async for token in client.stream([{"role": "user", "content": "hi"}])]
    assert tokens == ["Hel", "lo"]


async def test_chat_stream_raises_on_http_error():
    recorder = Recorder(httpx.Response(401, json={"error": {"message": "invalid key"}}))
    client = ChatClient(CHAT, RETRY, transport=httpx.MockTransport(recorder))

    with pytest.raises(AzureAPIError, match="invalid key"):
        async for _ in client.stream([{"role": "user", "content": "hi"}]):
            pass


# Document Intelligence

ANALYZE_RESULT = {
    "status": "succeeded",
    "analyzeResult": {
        "documents": [{
            "fields": {
                "VendorName": {"content": "Contoso", "confidence": 0.92},
                "InvoiceTotal": {"content": "$120.00", "confidence": 0.41},
                "InvoiceId": {"content": "INV-7", "confidence": 0},
            }
        }]
    },
}


def test_extract_fields_minimum_confidence():
    fields, min_confidence = extract_fields(ANALYZE_RESULT)

    assert fields["VendorName"] == {"value": "Contoso", "confidence": 0.92}
    # zero confidence counts as certain
    assert fields["InvoiceId"]["confidence"] == 1.0
    assert min_confidence == 0.41


def test_extract_fields_without_documents():
    assert extract_fields({"analyzeResult": {"documents": []}}) == ({}, 1.0)


def _docint_handler(poll_statuses):
    polls = iter(poll_statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, headers={"Operation-Location": "https://docint.test/operations/1"})
        return httpx.Response(200, json=next(polls))

    return handler


async def test_analyze_polls_until_succeeded():
    handler = _docint_handler([{"status": "running"}, ANALYZE_RESULT])
    client = DocumentIntelligenceClient(DOCINT, RETRY, transport=httpx.MockTransport(handler))

    result = await client.analyze(b"%PDF-1.4")
    assert result["status"] == "succeeded"


async def test_analyze_reports_failure():
    handler = _docint_handler([{"status": "failed", "error": {"message": "corrupt file"}}])
    client = DocumentIntelligenceClient(DOCINT, RETRY, transport=httpx.MockTransport(handler))

    with pytest.raises(AzureAPIError, match="Analysis failed: corrupt file"):
        await client.analyze(b"%PDF-1.4")


async def test_analyze_times_out():
    handler = _docint_handler([{"status": "running"}] * 3)
    client = DocumentIntelligenceClient(DOCINT, RETRY, transport=httpx.MockTransport(handler))

    with pytest.raises(AzureAPIError, match="Analysis timeout"):
        await client.analyze(b"%PDF-1.4")


async def test_submit_requires_operation_location():
    transport = httpx.MockTransport(lambda request: httpx.Response(202))
    client = DocumentIntelligenceClient(DOCINT, RETRY, transport=transport)

    with pytest.raises(AzureAPIError, match="No operation location"):
        await client.submit(b"%PDF-1.4")


def _record_sleeps(monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(document_intelligence.asyncio, "sleep", fake_sleep)
    return delays


def _polling_client(handler):
    config = DocumentIntelligenceSettings(endpoint="https://docint.test/", api_key="k", poll_initial_delay=0.5)
    return DocumentIntelligenceClient(config, RETRY, transport=httpx.MockTransport(handler))


async def test_poll_delay_grows_between_polls(monkeypatch):
    delays = _record_sleeps(monkeypatch)
    client = _polling_client(_docint_handler([{"status": "running"}] * 3 + [ANALYZE_RESULT]))

    await client.analyze(b"%PDF-1.4")

    assert delays == pytest.approx([0.5, 0.75, 1.125])


def _operation_handler(poll):
    """Accept the analysis, then answer every poll with ``poll()``."""
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        if request.method == "POST":
            return httpx.Response(202, headers={"Operation-Location": "https://docint.test/operations/1"})
        return poll()

    return handler, methods


async def test_poll_gives_up_after_max_attempts(monkeypatch):
    delays = _record_sleeps(monkeypatch)
    handler, methods = _operation_handler(lambda: httpx.Response(200, json={"status": "running"}))
    client = _polling_client(handler)

    with pytest.raises(AzureAPIError, match="Analysis timeout"):
        await client.analyze(b"%PDF-1.4")

    assert methods.count("GET") == 20
    assert delays == pytest.approx([0.5, 0.75, 1.125, 1.6875] + [2.0] * 16)


async def test_poll_http_error_is_not_retried(monkeypatch):
    delays = _record_sleeps(monkeypatch)
    handler, methods = _operation_handler(lambda: httpx.Response(500, text="operation store unavailable"))
    client = _polling_client(handler)

    with pytest.raises(AzureAPIError, match="polling error: operation store unavailable") as exc_info:
        await client.analyze(b"%PDF-1.4")

    assert exc_info.value.status_code == 500
    assert methods == ["POST", "GET"]
    assert delays == []
