"""
Field assistant API -- document-grounded answers streamed as SSE.

  POST /api/v1/field-assistant  -- {messages, context, conversationId?}

Order of checks (each failure is a JSON error, nothing is streamed):
  1. Bearer token            -> 401
  2. Structural limits       -> 400
  3. Prompt injection        -> 400 (audited)
  4. Daily tenant quota      -> 429 with limit/used/resets_at/tier
  5. Pipeline up to the first event (in buffered mode: model call and
     review) -> 502 on upstream model failure

Stream format (OpenAI-compatible deltas):
  data: {"choices": [{"delta": {"content": "..."}}]}
  data: {"retraction": {"reason": "..."}}        (speculative mode only)
  data: {"metadata": {...}}
  data: [DONE]
"""

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ...errors import FieldAssistantError, InputRejected
from ...orchestration.field_assistant import StreamEvent
from ..middleware.auth import AuthContext, verify_api_key
from ..middleware.rate_limit import enforce_quota, quota_headers
from ..models.requests import parse_field_assistant_request
from ..models.responses import ErrorResponse, QuotaExceededResponse

logger = logging.getLogger(__name__)
router = APIRouter()

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse_data(data: dict | str) -> str:
    """Format one data-only Server-Sent Event."""
    if isinstance(data, str):
        return f"data: {data}\n\n"
    return f"data: {json.dumps(data, default=str)}\n\n"


def _event_payload(event: StreamEvent) -> dict:
    if event.kind == "content":
        return {"choices": [{"delta": {"content": event.content}}]}
    if event.kind == "retraction":
        return {"retraction": {"reason": event.reason}}
    return {"metadata": event.metadata.to_dict() if event.metadata else {}}


async def _sse_stream(first: StreamEvent, events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    yield _sse_data(_event_payload(first))
    try:
        async for event in events:
            yield _sse_data(_event_payload(event))
    except FieldAssistantError as e:
        logger.error(f"[FieldAssistant] Stream aborted after start: {e.message}")
        yield _sse_data({"error": e.message})
    yield _sse_data("[DONE]")


@router.post(
    "/field-assistant",
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": QuotaExceededResponse},
        502: {"model": ErrorResponse},
    },
)
async def field_assistant(
    request: Request,
    auth: AuthContext = Depends(verify_api_key),
) -> StreamingResponse:
    """Answer a technician's question from the tenant's uploaded documents."""
    try:
        payload = await request.json()
    except ValueError as e:
        raise InputRejected("Invalid messages format") from e

    orchestrator = request.app.state.orchestrator
    body = parse_field_assistant_request(payload, orchestrator.config.limits)

    run = await orchestrator.start(body, auth)
    quota = enforce_quota(request.app.state.quota_store, auth.tenant_id, auth.tier)

    logger.info(
        f"[FieldAssistant] tenant={auth.tenant_id} messages={len(body.messages)} "
        f"context={body.context.context_type} used={quota.used}/{quota.limit or 'unlimited'}"
    )

    events = run.events()
    first = await anext(events)

    return StreamingResponse(
        _sse_stream(first, events),
        media_type="text/event-stream",
        headers={**STREAM_HEADERS, **quota_headers(quota)},
    )
