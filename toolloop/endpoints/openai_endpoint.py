"""
OpenAI-compatible model endpoint.

Uses the ``openai`` SDK's native function calling, so it works against
OpenAI itself, vLLM/SGLang servers, and Gemini's OpenAI-compatible API
(the default). SDK exceptions are mapped onto the orchestration taxonomy:
transport problems become ``EndpointUnavailable``, rejected requests become
``InvalidRequest``.
"""

import json
import logging
from typing import Any, Optional, Sequence

import json_repair
import openai
from openai import OpenAI

from ..errors import EndpointUnavailable, InvalidRequest
from ..models import (
    ConversationTurn,
    GenerationConfig,
    MediaPart,
    ModelEndpointConfig,
    ModelResponse,
    Role,
    TextPart,
    ToolInvocationRequest,
    ToolInvocationResult,
)
from ..tools.registry import ToolDeclaration
from .tool_defs import build_response_format, build_tool_definitions

logger = logging.getLogger(__name__)


def format_tool_result(result: ToolInvocationResult) -> str:
    """Render a tool result as the content of a ``tool`` message."""
    if result.error is not None:
        return json.dumps({"error": result.error.to_dict()})
    if isinstance(result.output, str):
        return result.output
    return json.dumps(result.output, default=str)


def _user_content(turn: ConversationTurn) -> Any:
    """Plain string for text-only turns, a part list when media is present."""
    if not any(isinstance(p, MediaPart) for p in turn.content):
        return turn.text
    parts: list[dict] = []
    for part in turn.content:
        if isinstance(part, TextPart):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, MediaPart):
            parts.append({"type": "image_url", "image_url": {"url": part.url}})
    return parts


def history_to_messages(history: Sequence[ConversationTurn]) -> list[dict]:
    """
    Convert conversation history into chat-completion messages.

    Model turns become ``assistant`` messages with ``tool_calls``; each tool
    result becomes its own ``tool`` message keyed by ``tool_call_id``.
    """
    messages: list[dict] = []
    for turn in history:
        if turn.role is Role.SYSTEM:
            messages.append({"role": "system", "content": turn.text})
        elif turn.role is Role.USER:
            messages.append({"role": "user", "content": _user_content(turn)})
        elif turn.role is Role.MODEL:
            message: dict = {"role": "assistant", "content": turn.text or None}
            requests = turn.tool_requests
            if requests:
                message["tool_calls"] = [
                    {
                        "id": request.reference_id,
                        "type": "function",
                        "function": {
                            "name": request.name,
                            "arguments": json.dumps(request.input, default=str),
                        },
                    }
                    for request in requests
                ]
            messages.append(message)
        elif turn.role is Role.TOOL:
            for result in turn.tool_results:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.reference_id,
                        "content": format_tool_result(result),
                    }
                )
    return messages


def _parse_arguments(raw: Optional[str]) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Repairing malformed tool arguments: %s", raw[:200])
        return json_repair.loads(raw)


def parse_completion(response: Any) -> ModelResponse:
    """Convert a chat completion into a ModelResponse."""
    if not response.choices:
        raise InvalidRequest("Model endpoint returned no choices")

    choice = response.choices[0]
    message = choice.message

    requests = [
        ToolInvocationRequest(
            name=call.function.name,
            input=_parse_arguments(call.function.arguments),
            reference_id=call.id or "",
        )
        for call in (message.tool_calls or [])
    ]

    usage = None
    if response.usage:
        usage = {
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "total_tokens": response.usage.total_tokens,
        }

    content = (TextPart(message.content),) if message.content else ()
    return ModelResponse(
        content=content,
        requests=tuple(requests),
        finish_reason=choice.finish_reason,
        usage=usage,
    )


class OpenAIModelEndpoint:
    """Model endpoint backed by an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout: float = 60.0,
        client: Optional[OpenAI] = None,
    ):
        self.base_url = base_url
        self.model = model
        self._client = client or OpenAI(
            base_url=base_url,
            api_key=api_key or "not-needed",  # local servers do not require auth
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config: ModelEndpointConfig) -> "OpenAIModelEndpoint":
        return cls(
            base_url=config.base_url,
            model=config.model,
            api_key=config.api_key,
            timeout=config.timeout,
        )

    def invoke(
        self,
        history: Sequence[ConversationTurn],
        tool_declarations: Sequence[ToolDeclaration],
        generation: GenerationConfig,
    ) -> ModelResponse:
        create_kwargs: dict = {
            "model": self.model,
            "messages": history_to_messages(history),
        }
        if tool_declarations:
            create_kwargs["tools"] = build_tool_definitions(tool_declarations)
        if generation.temperature is not None:
            create_kwargs["temperature"] = generation.temperature
        if generation.max_tokens is not None:
            create_kwargs["max_tokens"] = generation.max_tokens
        if generation.stop:
            create_kwargs["stop"] = generation.stop
        if generation.output_schema is not None:
            create_kwargs["response_format"] = build_response_format(
                generation.output_schema
            )

        try:
            response = self._client.chat.completions.create(**create_kwargs)
        except (
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ) as e:
            logger.error("Model endpoint %s unavailable: %s", self.base_url, e)
            raise EndpointUnavailable(f"Model endpoint unavailable: {e}") from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                raise EndpointUnavailable(f"Model endpoint error: {e}") from e
            logger.error("Model endpoint rejected request: %s", e)
            raise InvalidRequest(f"Model endpoint rejected request: {e}") from e

        return parse_completion(response)

    def close(self) -> None:
        """Close the underlying OpenAI client."""
        try:
            self._client.close()
        except Exception as e:
            logger.debug("Error closing OpenAI client: %s", e)
