"""
Pydantic schemas for the API.

Session endpoints expose the orchestration loop directly (including
explicit-control suspension and resumption). The chat-completion schemas
match the OpenAI Chat API format so OpenAI-compatible clients can use the
service as a model.
"""

import time
import uuid
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..models import MediaPart, ToolError, ToolInvocationRequest, ToolInvocationResult
from ..orchestration import OrchestrationSession, RunResult

RunStatus = Literal["COMPLETE", "SUSPENDED_FOR_CALLER", "TRUNCATED", "CANCELLED"]


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""

    status: Literal["healthy", "unhealthy"]
    version: str
    model: str


class ToolInfo(BaseModel):
    """A registered tool as advertised to the model."""

    name: str
    description: str
    input_schema: dict
    output_schema: Optional[dict] = None


class ToolListResponse(BaseModel):
    """Response body for /v1/tools endpoint."""

    object: Literal["list"] = "list"
    data: list[ToolInfo]


class ToolRequestModel(BaseModel):
    """A tool invocation the model asked for."""

    name: str
    input: Any = None
    reference_id: str

    @classmethod
    def from_request(cls, request: ToolInvocationRequest) -> "ToolRequestModel":
        return cls(name=request.name, input=request.input, reference_id=request.reference_id)


class ToolErrorModel(BaseModel):
    """Error payload for a tool result."""

    kind: str = Field(default="ToolExecutionError", description="Error category")
    message: str


class ToolResultInput(BaseModel):
    """A caller-produced result for a pending tool request."""

    name: str
    reference_id: str = Field(..., min_length=1)
    output: Any = None
    error: Optional[ToolErrorModel] = None

    def to_result(self) -> ToolInvocationResult:
        return ToolInvocationResult(
            name=self.name,
            reference_id=self.reference_id,
            output=self.output,
            error=ToolError(kind=self.error.kind, message=self.error.message)
            if self.error
            else None,
        )


class MediaInput(BaseModel):
    """Image or other media attached to a prompt."""

    url: str = Field(..., description="http(s) URL or data URI")
    content_type: Optional[str] = None

    def to_part(self) -> MediaPart:
        return MediaPart(url=self.url, content_type=self.content_type)


class CreateSessionRequest(BaseModel):
    """Request body for POST /v1/sessions."""

    max_turns: Optional[int] = Field(default=None, ge=1, description="Turn budget per run")
    explicit_control: Optional[bool] = Field(
        default=None, description="Return tool requests to the caller instead of running them"
    )
    system_prompt: Optional[str] = Field(default=None, description="Initial system turn")


class SessionResponse(BaseModel):
    """A session's settings and full history."""

    session_id: str
    max_turns: int
    explicit_control: bool
    turn_count: int
    history: list[dict]
    pending_requests: list[ToolRequestModel] = Field(default_factory=list)

    @classmethod
    def from_session(cls, session: OrchestrationSession) -> "SessionResponse":
        data = session.to_dict()
        return cls(
            pending_requests=[
                ToolRequestModel.from_request(r) for r in session.pending_requests
            ],
            **data,
        )


class SessionListResponse(BaseModel):
    """Response body for GET /v1/sessions."""

    object: Literal["list"] = "list"
    data: list[str]


class RunRequest(BaseModel):
    """Request body for POST /v1/sessions/{id}/run."""

    prompt: Optional[str] = Field(
        default=None, description="User message; omit to continue the existing history"
    )
    media: list[MediaInput] = Field(default_factory=list)
    max_turns: Optional[int] = Field(default=None, ge=1)
    explicit_control: Optional[bool] = None
    tools: Optional[list[str]] = Field(
        default=None, description="Restrict the run to these registered tools"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "prompt": "What is the weather in Baltimore?",
                "max_turns": 5,
            }
        }
    }


class ToolResultsRequest(BaseModel):
    """Request body for POST /v1/sessions/{id}/tool-results."""

    results: list[ToolResultInput] = Field(..., min_length=1)
    resume: bool = Field(default=True, description="Continue the run after recording results")


class RunResponse(BaseModel):
    """Terminal state of a run."""

    session_id: str
    status: RunStatus
    text: str = ""
    pending_requests: list[ToolRequestModel] = Field(default_factory=list)
    turn_count: int
    tools_used: list[str] = Field(default_factory=list)
    output: Any = None

    @classmethod
    def from_result(cls, result: RunResult) -> "RunResponse":
        output = result.output
        if isinstance(output, BaseModel):
            output = output.model_dump(mode="json")
        return cls(
            session_id=result.session_id,
            status=result.status.value,
            text=result.text,
            pending_requests=[
                ToolRequestModel.from_request(r) for r in result.pending_requests
            ],
            turn_count=result.turn_count,
            tools_used=result.tools_used,
            output=output,
        )


class ContentPart(BaseModel):
    """A single part of multimodal content."""

    type: Literal["text", "image_url"] = Field(
        ..., description="The type of content part"
    )
    text: Optional[str] = Field(default=None, description="Text content (for type='text')")
    image_url: Optional[dict] = Field(
        default=None, description="Image URL object (for type='image_url')"
    )


class ChatMessage(BaseModel):
    """A single message in a chat conversation."""

    role: Literal["system", "user", "assistant"] = Field(
        ..., description="The role of the message author"
    )
    content: Union[str, list[ContentPart]] = Field(
        ..., description="The content of the message (string or list of content parts)"
    )

    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v):
        """Normalize content to handle both string and list formats."""
        if isinstance(v, list):
            return [
                ContentPart(**item) if isinstance(item, dict) else item for item in v
            ]
        return v

    def get_text_content(self) -> str:
        """Extract text content regardless of format."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.text for part in self.content if part.type == "text" and part.text
        )

    def get_media_urls(self) -> list[str]:
        """Image URLs attached to the message."""
        if isinstance(self.content, str):
            return []
        return [
            part.image_url["url"]
            for part in self.content
            if part.type == "image_url" and part.image_url and part.image_url.get("url")
        ]


class ChatCompletionRequest(BaseModel):
    """Request body for /v1/chat/completions endpoint."""

    model: str = Field(default="toolloop", description="Model ID to use (always toolloop)")
    messages: list[ChatMessage] = Field(
        ..., description="List of messages in the conversation", min_length=1
    )
    temperature: Optional[float] = Field(
        default=None, ge=0.0, le=2.0, description="Sampling temperature"
    )
    max_tokens: Optional[int] = Field(
        default=None, ge=1, le=8192, description="Maximum tokens in response"
    )
    max_turns: Optional[int] = Field(
        default=None, ge=1, description="Model round-trips allowed for this completion"
    )
    stream: Optional[bool] = Field(
        default=False, description="Whether to stream responses (single chunk)"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "model": "toolloop",
                "messages": [{"role": "user", "content": "What is the weather in Baltimore?"}],
            }
        }
    }


class ChatCompletionMessage(BaseModel):
    """Message in a chat completion response."""

    role: Literal["assistant"] = "assistant"
    content: str


class ChatCompletionChoice(BaseModel):
    """A single choice in a chat completion response."""

    index: int = 0
    message: ChatCompletionMessage
    finish_reason: Literal["stop", "length", "error"] = "stop"


class UsageInfo(BaseModel):
    """Token usage information."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """Response body for /v1/chat/completions endpoint."""

    id: str = Field(default_factory=lambda: f"chatcmpl-{uuid.uuid4().hex[:12]}")
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str = "toolloop"
    choices: list[ChatCompletionChoice]
    usage: UsageInfo = Field(default_factory=UsageInfo)


class ModelInfo(BaseModel):
    """Information about an available model."""

    id: str
    object: Literal["model"] = "model"
    created: int = Field(default_factory=lambda: int(time.time()))
    owned_by: str = "toolloop"


class ModelListResponse(BaseModel):
    """Response body for /v1/models endpoint."""

    object: Literal["list"] = "list"
    data: list[ModelInfo]


class ErrorDetail(BaseModel):
    """Error detail in OpenAI format, plus orchestration context."""

    message: str
    type: str = "server_error"
    code: Optional[str] = None
    session_id: Optional[str] = None
    turn_count: Optional[int] = None


class ErrorResponse(BaseModel):
    """Error response in OpenAI format."""

    error: ErrorDetail
