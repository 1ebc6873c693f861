"""Tests for ToolRegistry."""

import pytest
from pydantic import BaseModel

from toolloop.errors import ToolExecutionError, UnknownToolError
from toolloop.tools import ToolContext, ToolRegistry


class Location(BaseModel):
    location: str


class Forecast(BaseModel):
    summary: str


class TestRegistration:
    """Tests for registering tools."""

    def test_register_and_lookup(self):
        """Registered tools can be looked up by name."""
        registry = ToolRegistry()
        registry.register("getWeather", "Weather", lambda p: "sunny")

        assert "getWeather" in registry
        assert len(registry) == 1
        assert registry.lookup("getWeather").description == "Weather"
        assert registry.lookup("missing") is None

    def test_duplicate_name_rejected(self):
        """Tool names are unique."""
        registry = ToolRegistry()
        registry.register("t", "first", lambda p: None)
        with pytest.raises(ValueError, match="already registered"):
            registry.register("t", "second", lambda p: None)

    def test_bad_schema_rejected(self):
        """Schemas must be pydantic models or dicts."""
        with pytest.raises(TypeError):
            ToolRegistry().register("t", "t", lambda p: None, input_schema="string")

    def test_define_tool_decorator(self):
        """The decorator takes name and description from the function."""
        registry = ToolRegistry()

        @registry.define_tool(input_schema=Location)
        def get_weather(params):
            """Gets the current weather in a given location.

            More detail here.
            """
            return "sunny"

        tool = registry.get("get_weather")
        assert tool.description == "Gets the current weather in a given location."
        assert tool.invoke({"location": "x"}) == "sunny"

    def test_summary_and_clear(self):
        """The summary lists every tool; clear empties the registry."""
        registry = ToolRegistry()
        registry.register("a", "Does a", lambda p: None)
        registry.register("b", "Does b", lambda p: None)

        assert registry.get_tools_summary() == "- a: Does a\n- b: Does b"
        registry.clear()
        assert len(registry) == 0


class TestDeclarations:
    """Tests for declarations and subsets."""

    def test_declarations_all(self):
        """All declarations in registration order."""
        registry = ToolRegistry()
        registry.register("a", "A", lambda p: None)
        registry.register("b", "B", lambda p: None, input_schema=Location)

        declarations = registry.declarations()

        assert [d.name for d in declarations] == ["a", "b"]
        assert declarations[1].input_json_schema["properties"]["location"]["type"] == "string"

    def test_declarations_unknown_name(self):
        """Asking for an unregistered tool raises."""
        with pytest.raises(UnknownToolError):
            ToolRegistry().declarations(["nope"])

    def test_subset(self):
        """subset keeps only the named tools."""
        registry = ToolRegistry()
        registry.register("a", "A", lambda p: None)
        registry.register("b", "B", lambda p: None)

        restricted = registry.subset(["b"])

        assert "b" in restricted
        assert "a" not in restricted
        assert "a" in registry

    def test_subset_unknown(self):
        with pytest.raises(UnknownToolError):
            ToolRegistry().subset(["nope"])

    def test_output_schema_advertised(self):
        """Output schemas are exposed as JSON schema."""
        registry = ToolRegistry()
        registry.register("f", "F", lambda p: None, output_schema=Forecast)
        assert "summary" in registry.get("f").declaration.output_json_schema["properties"]
        registry.register("g", "G", lambda p: None)
        assert registry.get("g").declaration.output_json_schema is None


class TestInvoke:
    """Tests for ToolDefinition.invoke."""

    def test_pydantic_input_validated(self):
        """Handlers with a model schema receive a model instance."""
        registry = ToolRegistry()
        registry.register("w", "W", lambda p: p.location.upper(), input_schema=Location)

        assert registry.get("w").invoke({"location": "baltimore"}) == "BALTIMORE"

    def test_invalid_input(self):
        """Input that fails validation raises ToolExecutionError."""
        registry = ToolRegistry()
        registry.register("w", "W", lambda p: p, input_schema=Location)

        with pytest.raises(ToolExecutionError, match="Invalid input for tool 'w'"):
            registry.get("w").invoke({"city": "x"})

    def test_dict_schema_not_validated(self):
        """Dict schemas are only advertised; input passes through."""
        registry = ToolRegistry()
        registry.register("w", "W", lambda p: p, input_schema={"type": "object"})

        assert registry.get("w").invoke({"anything": 1}) == {"anything": 1}

    def test_output_validated_and_dumped(self):
        """Output schema results are returned as plain dicts."""
        registry = ToolRegistry()
        registry.register("f", "F", lambda p: {"summary": "dry"}, output_schema=Forecast)

        assert registry.get("f").invoke({}) == {"summary": "dry"}

    def test_invalid_output(self):
        """Output that fails the schema raises ToolExecutionError."""
        registry = ToolRegistry()
        registry.register("f", "F", lambda p: {"wrong": 1}, output_schema=Forecast)

        with pytest.raises(ToolExecutionError, match="Invalid output"):
            registry.get("f").invoke({})

    def test_model_output_without_schema(self):
        """A pydantic return value is dumped even without an output schema."""
        registry = ToolRegistry()
        registry.register("f", "F", lambda p: Forecast(summary="wet"))

        assert registry.get("f").invoke({}) == {"summary": "wet"}

    def test_context_passed_when_declared(self):
        """Handlers naming a context parameter receive the ToolContext."""
        registry = ToolRegistry()

        def handler(params, context):
            return context.reference_id

        tool = registry.register("c", "C", handler)

        assert tool.accepts_context is True
        assert tool.invoke({}, ToolContext(reference_id="r-9")) == "r-9"
