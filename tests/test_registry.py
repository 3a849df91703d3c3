import pytest
from pydantic import BaseModel

from codebot.models import ToolResult
from codebot.registry import ToolNotFoundError, ToolRegistry, ToolValidationError
from codebot.tools import Tool


class EchoInput(BaseModel):
    message: str


class Echo(Tool):
    name = "Echo"
    description = "Returns its message."
    input_model = EchoInput

    def __init__(self) -> None:
        self.seen = []

    async def execute(self, params: EchoInput) -> ToolResult:
        self.seen.append(params)
        return ToolResult(succeeded=True, payload=params.message)


def test_names_and_descriptions_keep_registration_order(registry):
    assert registry.names()[:2] == ["ReadFile", "WriteFile"]
    assert "translate_text" in registry
    assert {"name", "description"} == set(registry.descriptions()[0])
    assert len(registry) == len(registry.descriptions())


def test_duplicate_registration_rejected():
    registry = ToolRegistry([Echo()])
    with pytest.raises(ValueError, match="already registered"):
        registry.register(Echo())


def test_unknown_tool_lists_available_names():
    registry = ToolRegistry([Echo()])
    with pytest.raises(ToolNotFoundError) as info:
        registry.get("Missing")
    assert info.value.name == "Missing"
    assert "Available tools: Echo" in str(info.value)


async def test_execute_validates_before_running():
    echo = Echo()
    registry = ToolRegistry([echo])

    with pytest.raises(ToolValidationError, match="Invalid input for Echo"):
        await registry.execute("Echo", {"msg": "wrong field"})
    assert echo.seen == []


async def test_execute_passes_parsed_input():
    echo = Echo()
    registry = ToolRegistry([echo])

    result = await registry.execute("Echo", {"message": "hi"})

    assert result == ToolResult(succeeded=True, payload="hi")
    assert echo.seen == [EchoInput(message="hi")]


async def test_execute_unknown_tool_raises():
    with pytest.raises(ToolNotFoundError):
        await ToolRegistry().execute("Echo", {})
