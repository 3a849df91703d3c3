import json

import pytest

from codebot.graph import AgentGraph, Stage
from codebot.llm import ModelInvocationError
from codebot.models import ErrorKind, ExecutionContext, ExecutionStatus, Role
from codebot.nodes import StageNodes


def _analysis(task_type="code_creation", subtasks=1) -> str:
    return json.dumps(
        {"task_type": task_type, "subtasks": [{"id": str(i + 1), "description": "do it"} for i in range(subtasks)]}
    )


def _plan(*steps: dict) -> str:
    return "```json\n" + json.dumps({"plan": list(steps)}) + "\n```"


def _call(tool: str, tool_input: dict) -> str:
    return json.dumps({"tool": tool, "input": tool_input})


def _report(success: bool, additional_steps=()) -> str:
    return json.dumps({"success": success, "errors": [], "additional_steps": list(additional_steps)})


ERROR_REPORT = json.dumps(
    {
        "error_type": "ToolNotFound",
        "cause": "The plan used a tool that does not exist.",
        "resolution": "Use one of the listed tools.",
        "user_message": "I tried to use a tool I do not have.",
    }
)


@pytest.fixture
def graph(nodes, events):
    return AgentGraph(nodes, events)


async def _run(graph: AgentGraph, text: str) -> ExecutionContext:
    return await graph.run(ExecutionContext.for_request(text))


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


async def test_direct_response_never_executes(graph, model, events):
    model.script(_analysis("simple_response", subtasks=0), "A closure keeps its enclosing scope alive.")

    context = await _run(graph, "what is a closure?")

    assert events.stages == [
        Stage.TRANSLATE_INPUT,
        Stage.ANALYZE_TASK,
        Stage.PLAN_EXECUTION,
        Stage.GENERATE_RESPONSE,
    ]
    assert len(model.calls) == 2
    assert [m.role for m in context.transcript] == [Role.USER, Role.ASSISTANT]
    assert context.transcript[-1].content == "A closure keeps its enclosing scope alive."
    assert context.direct_response is True
    assert context.status is ExecutionStatus.COMPLETED


async def test_tool_chain_writes_file_and_verifies(graph, model, events, tmp_path):
    target = tmp_path / "x.txt"
    model.script(
        _analysis(),
        _plan({"step_id": "1", "action": "create x.txt", "tool": "WriteFile", "tool_inputs": {"path": str(target), "content": "hi"}}),
        _call("WriteFile", {"path": str(target), "content": "hi"}),
        _report(True),
        f"Created {target.name} containing 'hi'.",
    )

    context = await _run(graph, "create a file named x.txt with content 'hi'")

    assert target.read_text() == "hi"
    assert events.stages[3:] == [Stage.EXECUTE_STEP, Stage.VERIFY_RESULT, Stage.GENERATE_RESPONSE]
    assert context.step_index == context.total_steps == 1
    assert context.verified is True
    assert "x.txt" in context.transcript[-1].content
    assert len(context.transcript) == 2


async def test_unknown_tool_is_a_failed_step_not_a_crash(graph, model, events):
    model.script(
        _analysis(),
        _plan({"step_id": "1", "action": "launch", "tool": "DeployRocket"}),
        _call("DeployRocket", {"target": "moon"}),
        json.dumps({"success": False, "errors": [{"step_id": "1", "error": "unknown tool"}]}),
        ERROR_REPORT,
        "The rocket could not be deployed because that tool does not exist.",
    )

    context = await _run(graph, "deploy the rocket")

    result = context.step_results[0]
    assert not result.outcome.succeeded
    assert "ReadFile" in result.outcome.error_message
    assert context.step_index == 1
    assert context.verified is False
    assert events.stages[3:] == [
        Stage.EXECUTE_STEP,
        Stage.VERIFY_RESULT,
        Stage.HANDLE_ERROR,
        Stage.GENERATE_RESPONSE,
    ]
    assert context.last_error.kind is ErrorKind.TOOL_NOT_FOUND
    assert context.transcript[-2].content == "I tried to use a tool I do not have."


async def test_malformed_plan_is_explained(graph, model, events):
    model.script(
        _analysis(),
        "I will first create the file and then check it.",
        json.dumps({"error_type": "ParseError", "cause": "no JSON", "resolution": "retry", "user_message": "The plan was unreadable."}),
        "Sorry, I could not plan that task. Please try again.",
    )

    context = await _run(graph, "create a file")

    assert events.stages == [
        Stage.TRANSLATE_INPUT,
        Stage.ANALYZE_TASK,
        Stage.PLAN_EXECUTION,
        Stage.HANDLE_ERROR,
        Stage.GENERATE_RESPONSE,
    ]
    assert context.last_error.kind is ErrorKind.PARSE_ERROR
    assert [m.content for m in context.transcript[1:]] == [
        "The plan was unreadable.",
        "Sorry, I could not plan that task. Please try again.",
    ]


# ---------------------------------------------------------------------------
# Follow-up steps
# ---------------------------------------------------------------------------


async def test_follow_up_rounds_are_bounded(model, registry, events):
    graph = AgentGraph(StageNodes(model, registry, events, max_follow_up_rounds=1), events)
    extra = {"step_id": "2", "action": "check again", "tool": "ListFiles"}
    model.script(
        _analysis(),
        _plan({"step_id": "1", "action": "think", "tool": "direct_response"}, {"step_id": "1b", "action": "think more"}),
        "Nothing to run.",
        "Nothing here either.",
        _report(False, [extra]),
        "Still nothing to run.",
        _report(True, [{"step_id": "3", "action": "forever", "tool": "ListFiles"}]),
        "All done.",
    )

    context = await _run(graph, "keep checking")

    assert context.follow_up_rounds == 1
    assert context.total_steps == 3
    assert context.step_index == 3
    assert context.verified is True
    assert context.transcript[-1].content == "All done."
    assert model.responses == []


# ---------------------------------------------------------------------------
# Transport failures
# ---------------------------------------------------------------------------


async def test_translation_failure_propagates(graph, model):
    model.script(ModelInvocationError("no route to host"))
    with pytest.raises(ModelInvocationError):
        await _run(graph, "파일 목록을 보여줘")


async def test_analysis_transport_failure_goes_to_handle_error(graph, model, events):
    model.script(ModelInvocationError("503"), "not json either", "Sorry, the model is unavailable.")

    context = await _run(graph, "list files")

    assert events.stages == [
        Stage.TRANSLATE_INPUT,
        Stage.ANALYZE_TASK,
        Stage.HANDLE_ERROR,
        Stage.GENERATE_RESPONSE,
    ]
    assert context.last_error.kind is ErrorKind.MODEL_INVOCATION_ERROR
    assert context.transcript[-1].content == "Sorry, the model is unavailable."


async def test_plan_transport_failure_is_handled(graph, model):
    model.script(_analysis(), ModelInvocationError("reset"), ERROR_REPORT, "Please retry.")

    context = await _run(graph, "list files")

    assert context.last_error.kind is ErrorKind.MODEL_INVOCATION_ERROR
    assert "plan_execution" in context.last_error.message
    assert context.transcript[-1].content == "Please retry."


async def test_response_failure_after_error_is_terminal(graph, model, events):
    model.script(
        _analysis(),
        "no plan here",
        ModelInvocationError("down"),
        ModelInvocationError("still down"),
    )

    context = await _run(graph, "create a file")

    assert events.stages[-2:] == [Stage.HANDLE_ERROR, Stage.GENERATE_RESPONSE]
    assert context.status is ExecutionStatus.ERROR
    assert context.last_error.kind is ErrorKind.RESPONSE_GENERATION_ERROR
    assert "standard" in context.last_error.message


async def test_streaming_graph_yields_single_answer(model, registry, events):
    graph = AgentGraph(StageNodes(model, registry, events, stream=True), events)
    model.script(_analysis("simple_response", 0), "Closures capture variables.")

    context = await _run(graph, "what is a closure?")

    assert context.transcript[-1].content == "Closures capture variables."
    assert len(context.transcript) == 2
    assert "".join(events.fragments) == "Closures capture variables."
