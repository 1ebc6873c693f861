"""
Conversation data model.

Turns are immutable once built; the orchestrator only ever appends them to a
session's history. Every part serializes to a JSON-friendly dict tagged by
``type`` so a suspended session can be stored and resumed elsewhere.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Role(str, Enum):
    """Author of a conversation turn."""

    SYSTEM = "system"
    USER = "user"
    MODEL = "model"
    TOOL = "tool"


@dataclass(frozen=True)
class TextPart:
    """Plain text segment."""

    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class MediaPart:
    """Reference to an image or other media (URL or data URI)."""

    url: str
    content_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {"type": "media", "url": self.url, "content_type": self.content_type}


@dataclass(frozen=True)
class ToolInvocationRequest:
    """A model's request to run a named tool with structured input."""

    name: str
    input: Any = field(default_factory=dict)
    reference_id: str = ""

    def to_dict(self) -> dict:
        return {
            "type": "tool_request",
            "name": self.name,
            "input": self.input,
            "reference_id": self.reference_id,
        }


@dataclass(frozen=True)
class ToolError:
    """Error payload carried by a tool result instead of output."""

    kind: str
    message: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


@dataclass(frozen=True)
class ToolInvocationResult:
    """Outcome of one tool request, paired to it by ``reference_id``."""

    name: str
    reference_id: str
    output: Any = None
    error: Optional[ToolError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        return {
            "type": "tool_result",
            "name": self.name,
            "reference_id": self.reference_id,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
        }


Part = Union[TextPart, MediaPart, ToolInvocationRequest, ToolInvocationResult]


def part_from_dict(data: dict) -> Part:
    """Rebuild a content part from its ``to_dict`` form."""
    part_type = data.get("type")
    if part_type == "text":
        return TextPart(text=data.get("text", ""))
    if part_type == "media":
        return MediaPart(url=data["url"], content_type=data.get("content_type"))
    if part_type == "tool_request":
        return ToolInvocationRequest(
            name=data["name"],
            input=data.get("input", {}),
            reference_id=data.get("reference_id", ""),
        )
    if part_type == "tool_result":
        error_data = data.get("error")
        return ToolInvocationResult(
            name=data["name"],
            reference_id=data.get("reference_id", ""),
            output=data.get("output"),
            error=ToolError(**error_data) if error_data else None,
        )
    raise ValueError(f"Unknown content part type: {part_type!r}")


@dataclass(frozen=True)
class ConversationTurn:
    """One role-tagged unit of conversation history."""

    role: Role
    content: tuple = ()

    def __post_init__(self) -> None:
        # Accept lists and plain strings for convenience; store a tuple.
        content = self.content
        if isinstance(content, str):
            content = (TextPart(content),)
        elif not isinstance(content, tuple):
            content = tuple(content)
        object.__setattr__(self, "content", content)
        object.__setattr__(self, "role", Role(self.role))

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def tool_requests(self) -> list[ToolInvocationRequest]:
        return [p for p in self.content if isinstance(p, ToolInvocationRequest)]

    @property
    def tool_results(self) -> list[ToolInvocationResult]:
        return [p for p in self.content if isinstance(p, ToolInvocationResult)]

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": [p.to_dict() for p in self.content],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationTurn":
        return cls(
            role=Role(data["role"]),
            content=tuple(part_from_dict(p) for p in data.get("content", [])),
        )


@dataclass(frozen=True)
class ModelResponse:
    """
    What the model endpoint returned for one round-trip.

    A tagged variant: ``kind`` is ``"final"`` when there are no tool
    requests, otherwise ``"tool_requests"``. Text emitted alongside tool
    requests is kept in ``content``.
    """

    content: tuple = ()
    requests: tuple = ()
    finish_reason: Optional[str] = None
    usage: Optional[dict] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "content", tuple(self.content))
        object.__setattr__(self, "requests", tuple(self.requests))

    @classmethod
    def final(cls, text: str, **kwargs: Any) -> "ModelResponse":
        return cls(content=(TextPart(text),), **kwargs)

    @classmethod
    def tool_requests(
        cls,
        requests: list[ToolInvocationRequest],
        text: Optional[str] = None,
        **kwargs: Any,
    ) -> "ModelResponse":
        content = (TextPart(text),) if text else ()
        return cls(content=content, requests=tuple(requests), **kwargs)

    @property
    def kind(self) -> str:
        return "tool_requests" if self.requests else "final"

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    def to_turn(self) -> ConversationTurn:
        """The ``model`` turn recording this response in history."""
        return ConversationTurn(role=Role.MODEL, content=self.content + self.requests)
