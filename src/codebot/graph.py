# graph.py
# Router and driver for the task-execution graph.
#
# Edges:
#   translate_input -> analyze_task -> plan_execution      (fixed)
#   plan_execution / execute_step / verify_result -> route()
#   handle_error -> generate_response                      (fixed)
#   generate_response -> end
#
# The driver owns the loop and nothing else: no retries, no step
# bookkeeping. Nodes contain their own failures.

import logging
import traceback
from enum import Enum
from typing import Any, Awaitable, Callable

from codebot.context import Fail, StageOutcome, merge_context
from codebot.llm import ModelInvocationError
from codebot.models import (
    ErrorInfo,
    ErrorKind,
    ErrorReport,
    ExecutionContext,
    ExecutionPlan,
    ExecutionStatus,
    Step,
    StepResult,
    TaskAnalysis,
    VerificationReport,
)
from codebot.nodes import StageNodes

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    TRANSLATE_INPUT = "translate_input"
    ANALYZE_TASK = "analyze_task"
    PLAN_EXECUTION = "plan_execution"
    EXECUTE_STEP = "execute_step"
    VERIFY_RESULT = "verify_result"
    GENERATE_RESPONSE = "generate_response"
    HANDLE_ERROR = "handle_error"


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


def route(context: ExecutionContext) -> Stage:
    """Pick the next stage. Pure: same context, same answer."""
    if context.status is ExecutionStatus.ERROR:
        return Stage.HANDLE_ERROR

    if (
        context.execution_plan is not None
        and context.step_index is not None
        and context.total_steps is not None
        and context.step_index < context.total_steps
    ):
        return Stage.EXECUTE_STEP

    # Nothing was executed on the direct path, so there is nothing to verify.
    if context.direct_response and context.status is ExecutionStatus.COMPLETED:
        return Stage.GENERATE_RESPONSE

    if context.status is ExecutionStatus.COMPLETED and context.verified is None:
        return Stage.VERIFY_RESULT

    return Stage.GENERATE_RESPONSE


# ---------------------------------------------------------------------------
# Observer
# ---------------------------------------------------------------------------


class GraphEvents:
    """No-op progress observer. display.RichGraphEvents renders these."""

    def stage_started(self, stage: Stage) -> None:
        pass

    def translated(self, text: str) -> None:
        pass

    def task_analyzed(self, analysis: TaskAnalysis) -> None:
        pass

    def plan_created(self, plan: ExecutionPlan) -> None:
        pass

    def step_started(self, index: int, total: int, step: Step) -> None:
        pass

    def tool_called(self, name: str, tool_input: Any) -> None:
        pass

    def step_finished(self, result: StepResult) -> None:
        pass

    def verified(self, report: VerificationReport) -> None:
        pass

    def error_handled(self, report: ErrorReport) -> None:
        pass

    def fragment(self, text: str) -> None:
        pass


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class AgentGraph:
    """
    Runs one request from a fresh context to a final response.

    A transport failure while translating propagates to the caller.
    Transport failures in later stages become a ModelInvocationError on
    last_error and are explained by handle_error.
    """

    def __init__(self, nodes: StageNodes, events: GraphEvents | None = None) -> None:
        self._events = events or GraphEvents()
        self._nodes: dict[Stage, Callable[[ExecutionContext], Awaitable[StageOutcome]]] = {
            Stage.TRANSLATE_INPUT: nodes.translate_input,
            Stage.ANALYZE_TASK: nodes.analyze_task,
            Stage.PLAN_EXECUTION: nodes.plan_execution,
            Stage.EXECUTE_STEP: nodes.execute_step,
            Stage.VERIFY_RESULT: nodes.verify_result,
            Stage.GENERATE_RESPONSE: nodes.generate_response,
            Stage.HANDLE_ERROR: nodes.handle_error,
        }

    async def _run_stage(self, stage: Stage, context: ExecutionContext) -> ExecutionContext:
        self._events.stage_started(stage)
        logger.debug("Entering %s (status=%s)", stage.value, context.status.value)
        try:
            outcome = await self._nodes[stage](context)
        except ModelInvocationError as exc:
            if stage is Stage.TRANSLATE_INPUT:
                raise
            logger.warning("Model call failed in %s: %s", stage.value, exc)
            outcome = Fail(
                ErrorInfo(
                    kind=ErrorKind.MODEL_INVOCATION_ERROR,
                    message=f"Model call failed during {stage.value}: {exc}",
                    trace=traceback.format_exc(),
                )
            )

        context = merge_context(context, outcome)
        logger.debug("Leaving %s (status=%s)", stage.value, context.status.value)
        return context

    async def run(self, context: ExecutionContext) -> ExecutionContext:
        context = await self._run_stage(Stage.TRANSLATE_INPUT, context)
        context = await self._run_stage(Stage.ANALYZE_TASK, context)

        # A failed model call leaves nothing for the planner to work from.
        if context.last_error is None or context.last_error.kind is not ErrorKind.MODEL_INVOCATION_ERROR:
            context = await self._run_stage(Stage.PLAN_EXECUTION, context)

        stage = route(context)
        while True:
            logger.info("Router -> %s", stage.value)
            context = await self._run_stage(stage, context)
            if stage is Stage.GENERATE_RESPONSE:
                return context
            stage = Stage.GENERATE_RESPONSE if stage is Stage.HANDLE_ERROR else route(context)
