"""B-mo assistant endpoints (plain and Server-Sent Events)."""
from __future__ import annotations

import json
import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from azure_ai.utils import AzureAPIError
from bmo.auth import require_company
from bmo.db import get_session
from bmo.errors import BmoError
from bmo.pipelines.rag import answer_question, prepare_messages, stream_completion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    history: list[Message] = Field(default_factory=list)


def _sse(payload: dict | str) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


@router.post("")
async def chat(
    payload: ChatRequest,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    try:
        reply = await answer_question(
            session, company_id, [m.model_dump() for m in payload.history], payload.message
        )
    except (BmoError, AzureAPIError):
        raise
    except Exception as e:
        logger.error(f"Unexpected chat error: {e}", exc_info=True, extra={"company_id": company_id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return {"message": reply}


@router.post("/stream")
async def chat_stream(
    payload: ChatRequest,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Stream the reply as ``data: {"content": ...}`` events ending with ``data: [DONE]``.

    Context is gathered before the response starts, so database errors
    surface as normal error responses.
    """
    messages = await prepare_messages(
        session, company_id, [m.model_dump() for m in payload.history], payload.message
    )

    async def events():
        try:
            async for token in stream_completion(messages):
                yield _sse({"content": token})
        except Exception as e:
            logger.error(f"Chat stream failed: {e}", extra={"company_id": company_id})
            yield _sse({"error": str(e)})
        yield _sse("[DONE]")

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
