# nodes.py
# The seven stage nodes of the task-execution graph.
#
# Each node reads an ExecutionContext and returns a StageOutcome. Nodes
# never mutate the context and never raise for bad model output; the only
# exception that escapes a node is ModelInvocationError, and the driver
# decides what that means for the stage that raised it.

import logging
import traceback
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from codebot.context import Continue, ContextUpdate, Fail, StageOutcome
from codebot.llm import ChatModel, ModelInvocationError, collect
from codebot.models import (
    ErrorInfo,
    ErrorKind,
    ErrorReport,
    ExecutionContext,
    ExecutionPlan,
    ExecutionStatus,
    Message,
    Role,
    Step,
    StepResult,
    TaskAnalysis,
    TaskType,
    ToolResult,
    VerificationReport,
)
from codebot.parsing import ParseError, clean_translation, contains_json_candidate, extract_json, is_english_like
from codebot.prompts import (
    DIRECT_RESPONSE_PROMPT,
    EXECUTE_STEP_PROMPT,
    GENERATE_RESPONSE_PROMPT,
    HANDLE_ERROR_PROMPT,
    PLANNING_PROMPT,
    TASK_ANALYSIS_PROMPT,
    TRANSLATE_INPUT_PROMPT,
    VERIFY_RESULT_PROMPT,
    render,
    to_json,
)
from codebot.registry import ToolNotFoundError, ToolRegistry, ToolValidationError
from codebot.tools import normalize_tool_input

if TYPE_CHECKING:
    from codebot.graph import GraphEvents

logger = logging.getLogger(__name__)

# Planner sentinel meaning "answer from knowledge, run nothing".
DIRECT_RESPONSE_TOOL = "direct_response"


def _error(kind: ErrorKind, message: str, trace: str | None = None) -> ErrorInfo:
    logger.info("%s: %s", kind.value, message)
    return ErrorInfo(kind=kind, message=message, trace=trace)


class StageNodes:
    """
    Stage implementations bound to one session's model and tool registry.

    stream=True makes the plan and response stages read the model as a
    token stream. Fragments are concatenated before anything is parsed.
    """

    def __init__(
        self,
        model: ChatModel,
        registry: ToolRegistry,
        events: "GraphEvents | None" = None,
        stream: bool = False,
        max_follow_up_rounds: int = 3,
    ) -> None:
        if events is None:
            from codebot.graph import GraphEvents

            events = GraphEvents()
        self._model = model
        self._registry = registry
        self._events = events
        self._stream = stream
        self._max_follow_up_rounds = max_follow_up_rounds

    async def _call(self, messages: list[dict], stream: bool = False) -> str:
        on_fragment = self._events.fragment if stream else None
        raw = await collect(self._model, messages, stream=stream, on_fragment=on_fragment)
        logger.debug("Model output:\n%s", raw)
        return raw

    # ------------------------------------------------------------------
    # translate_input
    # ------------------------------------------------------------------

    async def translate_input(self, context: ExecutionContext) -> StageOutcome:
        text = context.latest_message
        if is_english_like(text):
            logger.debug("Input is English-like, skipping translation")
            return Continue(ContextUpdate(status=ExecutionStatus.RUNNING))

        raw = await self._call(render(TRANSLATE_INPUT_PROMPT, user_request=text))
        translated = clean_translation(raw)
        self._events.translated(translated)
        return Continue(
            ContextUpdate(
                messages=[Message(role=Role.ASSISTANT, content=translated)],
                status=ExecutionStatus.RUNNING,
            )
        )

    # ------------------------------------------------------------------
    # analyze_task
    # ------------------------------------------------------------------

    async def analyze_task(self, context: ExecutionContext) -> StageOutcome:
        raw = await self._call(render(TASK_ANALYSIS_PROMPT, user_request=context.latest_message))
        try:
            analysis = TaskAnalysis.model_validate(extract_json(raw))
        except (ParseError, ValidationError) as exc:
            return Fail(
                _error(ErrorKind.PARSE_ERROR, f"Could not parse task analysis: {exc}", traceback.format_exc())
            )

        self._events.task_analyzed(analysis)
        return Continue(ContextUpdate(current_task=analysis, status=ExecutionStatus.RUNNING))

    # ------------------------------------------------------------------
    # plan_execution
    # ------------------------------------------------------------------

    async def plan_execution(self, context: ExecutionContext) -> StageOutcome:
        task = context.current_task
        if task is None:
            # Keep whatever made analysis fail; this error replaces it.
            prior = context.last_error.message if context.last_error else None
            return Fail(_error(ErrorKind.MISSING_TASK_ANALYSIS, "No task analysis available for planning.", prior))

        if task.task_type is TaskType.SIMPLE_RESPONSE or not task.subtasks:
            logger.info("Direct response: %s with %d subtasks", task.task_type.value, len(task.subtasks))
            return Continue(
                ContextUpdate(direct_response=True, execution_plan=None, status=ExecutionStatus.COMPLETED)
            )

        messages = render(
            PLANNING_PROMPT,
            task_analysis=to_json(task),
            available_tools=to_json(self._registry.descriptions()),
        )
        raw = await self._call(messages, stream=self._stream)
        try:
            plan = ExecutionPlan.model_validate(extract_json(raw))
        except (ParseError, ValidationError) as exc:
            return Fail(
                _error(ErrorKind.PARSE_ERROR, f"Could not parse execution plan: {exc}", traceback.format_exc())
            )

        if not plan.steps or (len(plan.steps) == 1 and plan.steps[0].tool == DIRECT_RESPONSE_TOOL):
            logger.info("Planner chose a direct response")
            return Continue(ContextUpdate(direct_response=True, status=ExecutionStatus.COMPLETED))

        self._events.plan_created(plan)
        return Continue(
            ContextUpdate(
                execution_plan=plan,
                total_steps=len(plan.steps),
                step_index=0,
                step_results=[],
                direct_response=False,
                status=ExecutionStatus.RUNNING,
            )
        )

    # ------------------------------------------------------------------
    # execute_step
    # ------------------------------------------------------------------

    async def execute_step(self, context: ExecutionContext) -> StageOutcome:
        plan = context.execution_plan
        index = context.step_index
        total = context.total_steps
        if plan is None or index is None or total is None or index >= total:
            return Fail(
                _error(ErrorKind.MISSING_STEP, f"No step to execute (index={index}, total={total}).")
            )

        step = plan.steps[index]
        self._events.step_started(index, total, step)
        messages = render(
            EXECUTE_STEP_PROMPT,
            current_step=to_json(step),
            available_tools=to_json(self._registry.descriptions()),
        )
        raw = await self._call(messages)

        last_error: ErrorInfo | None = None
        if not contains_json_candidate(raw):
            result = self._no_tool_result(step, raw)
        else:
            try:
                tool_name, tool_input = self._parse_tool_call(raw)
            except ParseError as exc:
                return Fail(
                    _error(ErrorKind.PARSE_ERROR, f"Could not parse tool call for step {step.step_id}: {exc}", exc.raw)
                )
            if tool_name == DIRECT_RESPONSE_TOOL:
                result = self._no_tool_result(step, raw)
            else:
                result, last_error = await self._run_tool(step, tool_name, tool_input)

        self._events.step_finished(result)
        next_index = index + 1
        fields: dict[str, Any] = {
            "step_results": [*(context.step_results or []), result],
            "step_index": next_index,
            "status": ExecutionStatus.COMPLETED if next_index >= total else ExecutionStatus.RUNNING,
        }
        if last_error is not None:
            fields["last_error"] = last_error
        return Continue(ContextUpdate(**fields))

    @staticmethod
    def _no_tool_result(step: Step, raw: str) -> StepResult:
        return StepResult(
            step_id=step.step_id,
            outcome=ToolResult(
                succeeded=True,
                payload={"message": "Step completed without a tool call.", "response": raw.strip()},
            ),
        )

    @staticmethod
    def _parse_tool_call(raw: str) -> tuple[str, Any]:
        data = extract_json(raw)
        name = data.get("tool")
        if not isinstance(name, str) or not name.strip():
            raise ParseError("Tool call has no tool name.", raw)
        tool_input = data.get("input", data.get("tool_inputs"))
        return name.strip(), {} if tool_input is None else tool_input

    async def _run_tool(self, step: Step, name: str, tool_input: Any) -> tuple[StepResult, ErrorInfo | None]:
        tool_input = normalize_tool_input(name, tool_input)
        self._events.tool_called(name, tool_input)
        recorded = tool_input if isinstance(tool_input, dict) else {"value": tool_input}

        outcome: ToolResult | None = None
        error: ErrorInfo | None = None
        try:
            outcome = await self._registry.execute(name, tool_input)
        except ToolNotFoundError as exc:
            error = _error(ErrorKind.TOOL_NOT_FOUND, str(exc))
        except ToolValidationError as exc:
            error = _error(ErrorKind.TOOL_EXECUTION_ERROR, str(exc))
        except Exception as exc:
            logger.warning("Tool %s raised %s", name, type(exc).__name__, exc_info=True)
            error = _error(
                ErrorKind.TOOL_EXECUTION_ERROR,
                f"Tool {name} failed: {type(exc).__name__}: {exc}",
                traceback.format_exc(),
            )

        if outcome is None:
            outcome = ToolResult(succeeded=False, error_message=error.message)
        elif not outcome.succeeded:
            error = _error(
                ErrorKind.TOOL_EXECUTION_ERROR,
                f"Tool {name} failed: {outcome.error_message or 'no details'}",
            )

        return StepResult(step_id=step.step_id, tool=name, input=recorded, outcome=outcome), error

    # ------------------------------------------------------------------
    # verify_result
    # ------------------------------------------------------------------

    async def verify_result(self, context: ExecutionContext) -> StageOutcome:
        plan = context.execution_plan
        if context.step_results is None or plan is None:
            return Fail(_error(ErrorKind.MISSING_RESULTS, "No execution results to verify."))

        messages = render(
            VERIFY_RESULT_PROMPT,
            execution_results=to_json(context.step_results),
            original_plan=to_json(plan),
        )
        raw = await self._call(messages)
        try:
            report = VerificationReport.model_validate(extract_json(raw))
        except (ParseError, ValidationError) as exc:
            return Fail(
                _error(ErrorKind.PARSE_ERROR, f"Could not parse verification report: {exc}", traceback.format_exc())
            )

        self._events.verified(report)

        if report.additional_steps:
            if context.follow_up_rounds < self._max_follow_up_rounds:
                steps = [*plan.steps, *report.additional_steps]
                logger.info("Verification appended %d step(s)", len(report.additional_steps))
                self._events.plan_created(ExecutionPlan(steps=steps))
                return Continue(
                    ContextUpdate(
                        execution_plan=ExecutionPlan(steps=steps),
                        total_steps=len(steps),
                        requires_follow_up=True,
                        follow_up_rounds=context.follow_up_rounds + 1,
                        verification_report=report,
                        status=ExecutionStatus.RUNNING,
                    )
                )
            logger.warning(
                "Ignoring %d additional step(s): follow-up limit of %d reached",
                len(report.additional_steps),
                self._max_follow_up_rounds,
            )

        return Continue(
            ContextUpdate(
                verified=report.success,
                verification_report=report,
                requires_follow_up=False,
                status=ExecutionStatus.COMPLETED if report.success else ExecutionStatus.ERROR,
            )
        )

    # ------------------------------------------------------------------
    # generate_response
    # ------------------------------------------------------------------

    async def generate_response(self, context: ExecutionContext) -> StageOutcome:
        path = "direct" if context.direct_response else "standard"
        if context.direct_response:
            messages = render(
                DIRECT_RESPONSE_PROMPT,
                original_request=context.original_request,
                task_analysis=to_json(context.current_task),
            )
        else:
            messages = render(
                GENERATE_RESPONSE_PROMPT,
                original_request=context.original_request,
                execution_results=to_json(context.step_results or []),
                verification_report=to_json(context.verification_report),
            )

        try:
            text = await self._call(messages, stream=self._stream)
        except ModelInvocationError as exc:
            return Fail(
                _error(
                    ErrorKind.RESPONSE_GENERATION_ERROR,
                    f"Response generation failed ({path} path): {exc}",
                    traceback.format_exc(),
                )
            )

        return Continue(
            ContextUpdate(
                messages=[Message(role=Role.ASSISTANT, content=text.strip())],
                status=ExecutionStatus.COMPLETED,
            )
        )

    # ------------------------------------------------------------------
    # handle_error
    # ------------------------------------------------------------------

    async def handle_error(self, context: ExecutionContext) -> StageOutcome:
        error = context.last_error
        if error is None:
            logger.info("handle_error reached without a recorded error")
            return Continue(ContextUpdate(status=ExecutionStatus.ERROR))

        snapshot = {
            "current_task": context.current_task.model_dump(mode="json") if context.current_task else None,
            "step_index": context.step_index,
            "total_steps": context.total_steps,
        }
        messages = render(
            HANDLE_ERROR_PROMPT,
            error_info=error.model_dump_json(indent=2),
            context=to_json(snapshot),
        )

        raw = ""
        try:
            raw = await self._call(messages)
            report = ErrorReport.model_validate(extract_json(raw))
        except (ModelInvocationError, ParseError, ValidationError) as exc:
            logger.warning("Error report unavailable (%s), building one from the recorded error", exc)
            report = self._fallback_report(error, raw)
        if not report.user_message.strip():
            report = report.model_copy(update={"user_message": self._fallback_report(error, raw).user_message})

        self._events.error_handled(report)
        return Continue(
            ContextUpdate(
                error_report=report,
                messages=[Message(role=Role.ASSISTANT, content=report.user_message)],
                status=ExecutionStatus.ERROR,
            )
        )

    @staticmethod
    def _fallback_report(error: ErrorInfo, raw: str) -> ErrorReport:
        return ErrorReport(
            error_type=error.kind.value,
            cause=error.message,
            resolution="",
            user_message=raw.strip() or f"Sorry, something went wrong: {error.message}",
        )
