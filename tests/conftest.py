import pytest

from codebot.graph import GraphEvents
from codebot.llm import ChatModel
from codebot.nodes import StageNodes
from codebot.registry import ToolRegistry
from codebot.tools import MemoryStore, build_tools


class ScriptedModel(ChatModel):
    """Returns canned responses in order. An exception in the script is raised instead."""

    name = "scripted"

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[list[dict]] = []

    def script(self, *responses) -> "ScriptedModel":
        self.responses.extend(responses)
        return self

    def prompt(self, index: int = -1) -> str:
        return self.calls[index][-1]["content"]

    async def invoke(self, messages: list[dict]) -> str:
        self.calls.append(messages)
        if not self.responses:
            raise AssertionError("ScriptedModel has no response left")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def stream(self, messages: list[dict]):
        text = await self.invoke(messages)
        for start in range(0, len(text), 5):
            yield text[start : start + 5]


class RecordingEvents(GraphEvents):
    def __init__(self) -> None:
        self.stages = []
        self.fragments = []
        self.tool_calls = []

    def stage_started(self, stage) -> None:
        self.stages.append(stage)

    def fragment(self, text: str) -> None:
        self.fragments.append(text)

    def tool_called(self, name, tool_input) -> None:
        self.tool_calls.append((name, tool_input))


@pytest.fixture
def model():
    return ScriptedModel()


@pytest.fixture
def memory():
    return MemoryStore()


@pytest.fixture
def registry(model, memory):
    return ToolRegistry(build_tools(memory, model, command_timeout=5))


@pytest.fixture
def events():
    return RecordingEvents()


@pytest.fixture
def nodes(model, registry, events):
    return StageNodes(model, registry, events)
