"""
OpenAI-compatible chat completion endpoints.

Implements /v1/chat/completions and /v1/models so OpenAI client libraries
can use the orchestrator as if it were a model. Each completion runs in a
throwaway session seeded with the request's messages; tools always run
automatically here.
"""

import json
import logging
import time
import uuid
from dataclasses import replace
from typing import Generator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from ...errors import OrchestrationError
from ...models import AppConfig, ConversationTurn, MediaPart, Role, TextPart
from ...orchestration import LoopState, OrchestrationSession, RunOptions
from ...tools import ToolRegistry
from ...tracing import TracingContext
from ..dependencies import (
    build_orchestrator,
    flush_tracing,
    get_app_config,
    get_registry,
    new_execution_id,
)
from ..schemas import (
    ChatCompletionChoice,
    ChatCompletionMessage,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    ErrorResponse,
    ModelInfo,
    ModelListResponse,
    UsageInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Model information
MODEL_ID = "toolloop"
MODEL_CREATED = int(time.time())

FINISH_REASONS = {
    LoopState.COMPLETE: "stop",
    LoopState.TRUNCATED: "length",
}

_ROLES = {"system": Role.SYSTEM, "user": Role.USER, "assistant": Role.MODEL}


@router.get(
    "/v1/models",
    response_model=ModelListResponse,
    summary="List models",
    description="List available models. Returns toolloop as the only model.",
)
def list_models() -> ModelListResponse:
    return ModelListResponse(
        data=[ModelInfo(id=MODEL_ID, created=MODEL_CREATED, owned_by="toolloop")]
    )


def message_to_turn(message: ChatMessage) -> ConversationTurn:
    """Convert an OpenAI-format message into a conversation turn."""
    parts: list = []
    text = message.get_text_content()
    if text:
        parts.append(TextPart(text))
    parts.extend(MediaPart(url=url) for url in message.get_media_urls())
    return ConversationTurn(role=_ROLES[message.role], content=tuple(parts))


def _create_sse_chunk(
    content: str,
    model: str,
    completion_id: str,
    finish_reason: Optional[str] = None,
) -> str:
    """Create a Server-Sent Events formatted chunk for streaming responses."""
    chunk = {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": {"content": content} if content else {},
                "finish_reason": finish_reason,
            }
        ],
    }
    return f"data: {json.dumps(chunk)}\n\n"


def _generate_streaming_response(
    answer: str, model: str, finish_reason: str
) -> Generator[str, None, None]:
    """Generate SSE chunks; the whole answer is sent as a single chunk."""
    completion_id = f"chatcmpl-{uuid.uuid4().hex[:12]}"
    yield _create_sse_chunk(answer, model, completion_id)
    yield _create_sse_chunk("", model, completion_id, finish_reason=finish_reason)
    yield "data: [DONE]\n\n"


@router.post(
    "/v1/chat/completions",
    response_model=ChatCompletionResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Structural violation"},
        502: {"model": ErrorResponse, "description": "Model endpoint failure"},
    },
    summary="Create chat completion",
    description=(
        "Run the conversation through the bounded tool loop. finish_reason is "
        "'stop' when the model answered and 'length' when the turn budget ran out."
    ),
)
def create_chat_completion(
    body: ChatCompletionRequest,
    request: Request,
    registry: ToolRegistry = Depends(get_registry),
    app_config: AppConfig = Depends(get_app_config),
):
    if not any(msg.role == "user" for msg in body.messages):
        logger.warning("No user message found in request")
        raise HTTPException(status_code=400, detail="No user message found in the request.")
    if body.messages[-1].role == "assistant":
        raise HTTPException(
            status_code=400, detail="The last message must not be an assistant message."
        )

    execution_id = new_execution_id()
    query = [m for m in body.messages if m.role == "user"][-1].get_text_content()
    logger.info("[%s] Processing chat completion request: %s", execution_id, query[:100])

    tracing_context = TracingContext(execution_id=execution_id)
    tracing_context.start_trace(
        name="chat_completion",
        query=query,
        metadata={"model": body.model, "stream": body.stream},
    )

    session = OrchestrationSession(
        max_turns=body.max_turns or app_config.orchestrator.max_turns,
    )
    generation = app_config.generation
    overrides = {}
    if body.temperature is not None:
        overrides["temperature"] = body.temperature
    if body.max_tokens is not None:
        overrides["max_tokens"] = body.max_tokens
    options = RunOptions(explicit_control=False)
    if overrides:
        options.generation = replace(generation, **overrides)

    orchestrator = build_orchestrator(request, execution_id, tracing_context)
    try:
        result = orchestrator.run(
            session,
            [message_to_turn(m) for m in body.messages],
            registry,
            options=options,
        )
    except OrchestrationError as e:
        tracing_context.end_trace(output=str(e), status="error")
        flush_tracing()
        raise

    answer = result.text
    finish_reason = FINISH_REASONS.get(result.status, "error")
    tracing_context.end_trace(
        output=answer,
        status="success",
        metadata={"loop_status": result.status.value, "turn_count": result.turn_count},
    )
    flush_tracing()

    if body.stream:
        return StreamingResponse(
            _generate_streaming_response(answer, MODEL_ID, finish_reason),
            media_type="text/event-stream",
        )

    usage = (result.response.usage if result.response else None) or {}
    prompt_tokens = usage.get("prompt_tokens") or sum(
        len(msg.get_text_content().split()) * 2 for msg in body.messages
    )
    completion_tokens = usage.get("completion_tokens") or len(answer.split()) * 2

    return ChatCompletionResponse(
        model=MODEL_ID,
        choices=[
            ChatCompletionChoice(
                index=0,
                message=ChatCompletionMessage(content=answer),
                finish_reason=finish_reason,
            )
        ],
        usage=UsageInfo(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )
