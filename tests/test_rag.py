from datetime import date
from types import SimpleNamespace

import pytest

from azure_ai.embeddings import EmbeddingError
from bmo.pipelines import rag
from bmo.pipelines.rag import (
    AccountInfo,
    DocumentHit,
    answer_question,
    build_rag_context,
    get_account_info,
    prepare_messages,
    stream_completion,
)

from conftest import post_entry


class BrokenEmbedder:
    async def embed(self, text):
        raise EmbeddingError("embeddings endpoint unavailable")


class FakeChat:
    def __init__(self, tokens=(), fail_stream_after=None, reply="Cash is 500."):
        self.tokens = list(tokens)
        self.fail_stream_after = fail_stream_after
        self.reply = reply
        self.completed = []

    async def complete(self, messages, **kwargs):
        self.completed.append(messages)
        return self.reply

    async def stream(self, messages, **kwargs):
        for i, token in enumerate(self.tokens):
            if self.fail_stream_after is not None and i >= self.fail_stream_after:
                raise RuntimeError("connection reset")
            yield token
        if self.fail_stream_after is not None and self.fail_stream_after >= len(self.tokens):
            raise RuntimeError("connection reset")


def test_build_rag_context_sections():
    documents = [
        DocumentHit(document_id="d1", file_name="invoice.pdf", content="x" * 300, similarity=0.876),
    ]
    transactions = [
        SimpleNamespace(
            transaction_date=date(2024, 3, 1), description=None, transaction_type="expense",
            amount=42.5, currency_code="EUR",
        ),
    ]
    accounts = [AccountInfo("a1", "1000", "Cash", "asset", "debit", 1250.0)]

    context = build_rag_context(documents, transactions, accounts)

    assert "## Relevant Documents:" in context
    assert "- invoice.pdf (relevance: 87.6%)" in context
    assert f"  Content: {'x' * 200}..." in context
    assert "- 2024-03-01: expense - 42.50 EUR" in context
    assert "- 1000: Cash (Balance: 1250.0)" in context


def test_build_rag_context_limits_and_empty():
    assert build_rag_context([], [], []) == ""

    accounts = [AccountInfo(f"a{i}", f"{1000 + i}", f"Account {i}", "asset", "debit", 0) for i in range(5)]
    context = build_rag_context([], [], accounts)
    assert context.count("\n- ") == 3


async def test_account_info_uses_posted_balances(session, company, ledger):
    await post_entry(session, company.id, ledger["cash"], ledger["sales"], 700)

    info = {a.account_code: a.current_balance for a in await get_account_info(session, company.id)}

    assert info["1000"] == 700
    assert info["4000"] == 700
    assert info["6000"] == 0


async def test_prepare_messages_survives_embedding_failure(session, company, ledger):
    await post_entry(session, company.id, ledger["rent"], ledger["cash"], 900, description="Warehouse rent")
    history = [{"role": "user", "content": f"q{i}"} for i in range(8)]

    messages = await prepare_messages(session, company.id, history, "rent", embedder=BrokenEmbedder())

    assert messages[0]["role"] == "system"
    assert "Warehouse rent" in messages[0]["content"]
    assert "## Relevant Documents:" not in messages[0]["content"]
    # Only the most recent turns are kept
    assert [m["content"] for m in messages[1:-1]] == ["q3", "q4", "q5", "q6", "q7"]
    assert messages[-1] == {"role": "user", "content": "rent"}


async def test_answer_question(session, company, ledger):
    chat = FakeChat(reply="You have no rent yet.")

    reply = await answer_question(session, company.id, [], "rent?", chat=chat, embedder=BrokenEmbedder())

    assert reply == "You have no rent yet."
    assert chat.completed[0][-1]["content"] == "rent?"


async def test_stream_completion_passes_tokens_through():
    chat = FakeChat(tokens=["Cash ", "is ", "fine."])

    tokens = [t async for t in stream_completion([{"role": "user", "content": "hi"}], chat=chat)]

    assert tokens == ["Cash ", "is ", "fine."]
    assert chat.completed == []


async def test_stream_completion_falls_back_before_first_token():
    chat = FakeChat(tokens=["never"], fail_stream_after=0, reply="Fallback answer")

    tokens = [t async for t in stream_completion([{"role": "user", "content": "hi"}], chat=chat)]

    assert tokens == ["Fallback answer"]


async def test_stream_completion_reraises_mid_stream():
    chat = FakeChat(tokens=["one", "two"], fail_stream_after=1)
    received = []

    with pytest.raises(RuntimeError):
        async for token in stream_completion([{"role": "user", "content": "hi"}], chat=chat):
            received.append(token)
    assert received == ["one"]


async def test_stream_answer_uses_default_clients(monkeypatch, session, company):
    chat = FakeChat(tokens=["ok"])
    monkeypatch.setattr(rag, "get_chat_client", lambda: chat)
    monkeypatch.setattr(rag, "get_embeddings_client", lambda: BrokenEmbedder())

    tokens = [t async for t in rag.stream_answer(session, company.id, [], "hello")]

    assert tokens == ["ok"]
