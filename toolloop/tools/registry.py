"""
Tool Registry - the set of tools available to one orchestration run.

Each tool is declared once (name, description, input/output schema) and
paired with a handler. Schemas are pydantic model classes, which are
validated on every invocation, or plain JSON-schema dicts, which are only
advertised to the model.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, ValidationError

from ..cancellation import CancellationToken
from ..errors import ToolExecutionError, UnknownToolError

logger = logging.getLogger(__name__)

EMPTY_OBJECT_SCHEMA: dict = {"type": "object", "properties": {}}


def _is_model(schema: Any) -> bool:
    return isinstance(schema, type) and issubclass(schema, BaseModel)


def _json_schema(schema: Any) -> Optional[dict]:
    if schema is None:
        return None
    if _is_model(schema):
        return schema.model_json_schema()
    if isinstance(schema, dict):
        return schema
    raise TypeError(
        f"Tool schema must be a pydantic model class or a dict, got {type(schema).__name__}"
    )


@dataclass(frozen=True)
class ToolDeclaration:
    """What the model is told about a tool."""

    name: str
    description: str
    input_schema: Any = None
    output_schema: Any = None

    @property
    def input_json_schema(self) -> dict:
        return _json_schema(self.input_schema) or dict(EMPTY_OBJECT_SCHEMA)

    @property
    def output_json_schema(self) -> Optional[dict]:
        return _json_schema(self.output_schema)


@dataclass
class ToolContext:
    """Per-invocation context for handlers that declare a ``context`` parameter."""

    reference_id: str
    session_id: Optional[str] = None
    cancel_token: Optional[CancellationToken] = None


def _accepts_context(handler: Callable) -> bool:
    try:
        return "context" in inspect.signature(handler).parameters
    except (TypeError, ValueError):
        return False


@dataclass
class ToolDefinition:
    """A declaration bound to its handler."""

    declaration: ToolDeclaration
    handler: Callable[..., Any]
    accepts_context: bool = False

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def description(self) -> str:
        return self.declaration.description

    def invoke(self, input: Any, context: Optional[ToolContext] = None) -> Any:
        """
        Validate input, run the handler and validate its output.

        Returns:
            A JSON-friendly output value.

        Raises:
            ToolExecutionError: On validation failure. Handler exceptions
                propagate unchanged; the dispatcher converts them.
        """
        value = self._validate_input(input)
        if self.accepts_context:
            raw = self.handler(value, context=context)
        else:
            raw = self.handler(value)
        return self._validate_output(raw)

    def _validate_input(self, input: Any) -> Any:
        schema = self.declaration.input_schema
        if not _is_model(schema):
            return input
        try:
            return schema.model_validate(input if input is not None else {})
        except ValidationError as e:
            raise ToolExecutionError(
                f"Invalid input for tool '{self.name}': {e}", tool_name=self.name
            ) from e

    def _validate_output(self, raw: Any) -> Any:
        schema = self.declaration.output_schema
        if _is_model(schema):
            try:
                model = raw if isinstance(raw, schema) else schema.model_validate(raw)
            except ValidationError as e:
                raise ToolExecutionError(
                    f"Invalid output from tool '{self.name}': {e}", tool_name=self.name
                ) from e
            return model.model_dump(mode="json")
        if isinstance(raw, BaseModel):
            return raw.model_dump(mode="json")
        return raw


class ToolRegistry:
    """Tools available to a run, keyed by unique name."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        description: str,
        handler: Callable[..., Any],
        input_schema: Any = None,
        output_schema: Any = None,
    ) -> ToolDefinition:
        """Register a tool with its metadata."""
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        # Fail fast on unusable schemas
        _json_schema(input_schema)
        _json_schema(output_schema)

        tool = ToolDefinition(
            declaration=ToolDeclaration(
                name=name,
                description=description,
                input_schema=input_schema,
                output_schema=output_schema,
            ),
            handler=handler,
            accepts_context=_accepts_context(handler),
        )
        self._tools[name] = tool
        logger.debug("Registered tool '%s'", name)
        return tool

    def define_tool(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        input_schema: Any = None,
        output_schema: Any = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """
        Decorator form of ``register``.

        The tool name defaults to the function name and the description to
        the first line of its docstring.
        """

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            doc = inspect.getdoc(func) or ""
            self.register(
                name=name or func.__name__,
                description=description or doc.split("\n", 1)[0],
                handler=func,
                input_schema=input_schema,
                output_schema=output_schema,
            )
            return func

        return decorator

    def lookup(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool by name, or None when it is not registered."""
        return self._tools.get(name)

    get = lookup

    def declarations(self, names: Optional[Iterable[str]] = None) -> list[ToolDeclaration]:
        """
        Declarations to advertise to the model.

        Args:
            names: Restrict to these tools. Every name must be registered.

        Raises:
            UnknownToolError: If a requested name is not registered.
        """
        if names is None:
            return [tool.declaration for tool in self._tools.values()]
        result = []
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                raise UnknownToolError(f"Tool '{name}' is not registered")
            result.append(tool.declaration)
        return result

    def subset(self, names: Iterable[str]) -> "ToolRegistry":
        """
        A registry holding only the named tools.

        Raises:
            UnknownToolError: If a requested name is not registered.
        """
        restricted = ToolRegistry()
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                raise UnknownToolError(f"Tool '{name}' is not registered")
            restricted._tools[name] = tool
        return restricted

    def all_tools(self) -> dict[str, ToolDefinition]:
        """Get a copy of all registered tools."""
        return self._tools.copy()

    def get_tools_summary(self) -> str:
        """Get formatted summary of all tools for prompts and the CLI."""
        return "\n".join(
            f"- {name}: {tool.description}" for name, tool in self._tools.items()
        )

    def clear(self) -> None:
        """Remove all registered tools."""
        self._tools.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
