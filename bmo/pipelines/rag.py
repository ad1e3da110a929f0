"""Retrieval-augmented chat over a company's documents, transactions and accounts."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from azure_ai.chat import ChatClient, ChatMessage, get_chat_client
from azure_ai.embeddings import EmbeddingsClient, get_embeddings_client
from bmo import models
from bmo.config import settings
from bmo.store.documents import search_documents_by_vector
from bmo.store.transactions import natural_balance, posted_line_totals
from bmo.store.transactions import search_transactions as _search_transactions
from bmo.tenancy import tenant_select

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are B-mo, an AI accounting assistant. You help users understand their financial data, transactions, documents, and accounts.

Context from the database:
{context}

Answer questions based on this context. If the information isn't available in the context, say so. Be concise and helpful."""


@dataclass
class DocumentHit:
    document_id: str
    file_name: str
    content: str
    similarity: float
    extracted_data: dict | None = None


@dataclass
class AccountInfo:
    """An active account with its balance from posted lines."""
    account_id: str
    account_code: str
    account_name: str
    account_type: str
    balance_type: str
    current_balance: float


async def search_documents(
    session: AsyncSession,
    company_id: str,
    query: str,
    *,
    limit: int | None = None,
    threshold: float | None = None,
    embedder: EmbeddingsClient | None = None,
) -> list[DocumentHit]:
    """Embed the query and return the closest documents."""
    embedder = embedder or get_embeddings_client()
    embedding = await embedder.embed(query)
    matches = await search_documents_by_vector(
        session,
        company_id,
        embedding,
        threshold=settings.rag.chat_threshold if threshold is None else threshold,
        limit=limit or settings.rag.chat_limit,
    )
    return [
        DocumentHit(
            document_id=m.document_id,
            file_name=m.file_name,
            content=json.dumps(m.extracted_data) if m.extracted_data else "No extracted data available",
            similarity=m.similarity,
            extracted_data=m.extracted_data,
        )
        for m in matches
    ]


async def search_transactions(
    session: AsyncSession,
    company_id: str,
    query: str,
    limit: int | None = None,
) -> list[models.Transaction]:
    return await _search_transactions(session, company_id, query, limit or settings.rag.transaction_limit)


async def get_account_info(
    session: AsyncSession,
    company_id: str,
    account_ids: Iterable[str] | None = None,
) -> list[AccountInfo]:
    """Active accounts ordered by code, each with its posted balance."""
    query = tenant_select(models.ChartOfAccount, company_id).where(models.ChartOfAccount.is_active.is_(True))
    if account_ids:
        query = query.where(models.ChartOfAccount.id.in_(list(account_ids)))
    accounts = (await session.execute(query.order_by(models.ChartOfAccount.account_code))).scalars().all()

    totals = await posted_line_totals(session, company_id)

    result = []
    for account in accounts:
        debit, credit = totals.get(account.id, (0.0, 0.0))
        result.append(
            AccountInfo(
                account_id=account.id,
                account_code=account.account_code,
                account_name=account.account_name,
                account_type=account.account_type,
                balance_type=account.balance_type,
                current_balance=natural_balance(account.balance_type, debit, credit),
            )
        )
    return result


def build_rag_context(
    documents: Sequence[DocumentHit],
    transactions: Sequence[models.Transaction],
    accounts: Sequence[AccountInfo] | None = None,
) -> str:
    """Render search results as the context block of the system prompt."""
    parts: list[str] = []

    if documents:
        parts.append("## Relevant Documents:")
        for doc in documents[:3]:
            parts.append(f"- {doc.file_name} (relevance: {doc.similarity * 100:.1f}%)")
            parts.append(f"  Content: {doc.content[:200]}...")

    if transactions:
        parts.append("\n## Related Transactions:")
        for txn in transactions[:5]:
            parts.append(
                f"- {txn.transaction_date}: {txn.description or txn.transaction_type} - "
                f"{txn.amount:.2f} {txn.currency_code or 'USD'}"
            )

    if accounts:
        parts.append("\n## Account Information:")
        for account in accounts[:3]:
            parts.append(f"- {account.account_code}: {account.account_name} (Balance: {account.current_balance or 0})")

    return "\n".join(parts)


async def prepare_messages(
    session: AsyncSession,
    company_id: str,
    history: Sequence[ChatMessage],
    question: str,
    *,
    embedder: EmbeddingsClient | None = None,
) -> list[ChatMessage]:
    """Gather context and build the message list sent to the chat model."""
    try:
        documents = await search_documents(session, company_id, question, embedder=embedder)
    except Exception as e:
        logger.warning(f"Document search failed, continuing without documents: {e}", extra={"company_id": company_id})
        await session.rollback()
        documents = []

    transactions = await search_transactions(session, company_id, question)
    accounts = await get_account_info(session, company_id)
    context = build_rag_context(documents, transactions, accounts)
    logger.debug(
        f"RAG context: {len(documents)} document(s), {len(transactions)} transaction(s), {len(accounts)} account(s)"
    )

    window = settings.rag.history_window
    recent = list(history)[-window:] if window else []
    return [
        {"role": "system", "content": SYSTEM_PROMPT.format(context=context)},
        *recent,
        {"role": "user", "content": question},
    ]


async def answer_question(
    session: AsyncSession,
    company_id: str,
    history: Sequence[ChatMessage],
    question: str,
    *,
    chat: ChatClient | None = None,
    embedder: EmbeddingsClient | None = None,
) -> str:
    chat = chat or get_chat_client()
    messages = await prepare_messages(session, company_id, history, question, embedder=embedder)
    return await chat.complete(messages)


async def stream_answer(
    session: AsyncSession,
    company_id: str,
    history: Sequence[ChatMessage],
    question: str,
    *,
    chat: ChatClient | None = None,
    embedder: EmbeddingsClient | None = None,
) -> AsyncIterator[str]:
    """Yield the assistant's reply token by token.

    If the stream fails before the first token, the non-streaming
    completion is used instead and yielded as a single chunk.
    """
    chat = chat or get_chat_client()
    messages = await prepare_messages(session, company_id, history, question, embedder=embedder)
    async for token in stream_completion(messages, chat=chat):
        yield token


async def stream_completion(messages: list[ChatMessage], *, chat: ChatClient | None = None) -> AsyncIterator[str]:
    """Stream a completion. A stream that fails before its first token is replaced by one regular completion."""
    chat = chat or get_chat_client()
    sent = False
    try:
        async for token in chat.stream(messages):
            sent = True
            yield token
    except Exception as e:
        if sent:
            logger.error(f"Chat stream interrupted: {e}", exc_info=True)
            raise
        logger.warning(f"Streaming failed, using regular completion: {e}")
        yield await chat.complete(messages)
