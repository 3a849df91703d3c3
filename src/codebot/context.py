# context.py
# Stage outcomes and the single merge rule that applies them.
#
# Every stage node returns either Continue(update) or Fail(error, update).
# merge_context() is the only place an ExecutionContext is advanced:
#   - fields present on the update overwrite the same-named context fields
#   - messages are appended to the transcript, never replace it
#   - Fail additionally forces status=error and last_error=<error>
#
# Plan and cursor invariants are checked here so no stage can break them.

from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, Field

from codebot.models import (
    ErrorInfo,
    ErrorReport,
    ExecutionContext,
    ExecutionPlan,
    ExecutionStatus,
    Message,
    StepResult,
    TaskAnalysis,
    VerificationReport,
)


class ContextInvariantError(Exception):
    """Raised when an update would shrink the plan or move the cursor out of bounds."""


class ContextUpdate(BaseModel):
    """
    Partial context produced by a stage.

    Only fields explicitly passed to the constructor are applied, so
    ContextUpdate(execution_plan=None) clears the plan while
    ContextUpdate() leaves it untouched.
    """

    messages: list[Message] = Field(default_factory=list)
    status: ExecutionStatus | None = None
    current_task: TaskAnalysis | None = None
    execution_plan: ExecutionPlan | None = None
    step_index: int | None = None
    total_steps: int | None = None
    step_results: list[StepResult] | None = None
    last_error: ErrorInfo | None = None
    verified: bool | None = None
    direct_response: bool | None = None
    verification_report: VerificationReport | None = None
    error_report: ErrorReport | None = None
    requires_follow_up: bool | None = None
    follow_up_rounds: int | None = None

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


@dataclass(frozen=True)
class Continue:
    update: ContextUpdate = field(default_factory=ContextUpdate)


@dataclass(frozen=True)
class Fail:
    error: ErrorInfo
    update: ContextUpdate = field(default_factory=ContextUpdate)


StageOutcome = Union[Continue, Fail]


# ---------------------------------------------------------------------------
# Invariant checks
# ---------------------------------------------------------------------------


def _check_plan(old: ExecutionPlan | None, new: ExecutionPlan | None) -> None:
    if old is None:
        return
    if new is None:
        raise ContextInvariantError("An existing execution plan cannot be removed.")
    if len(new.steps) < len(old.steps):
        raise ContextInvariantError(
            f"Execution plan shrank from {len(old.steps)} to {len(new.steps)} steps."
        )
    for index, step in enumerate(old.steps):
        if new.steps[index] != step:
            raise ContextInvariantError(f"Existing plan step at index {index} was replaced.")


def _check_cursor(old: ExecutionContext, new: ExecutionContext) -> None:
    if new.step_index is None:
        return
    if old.step_index is not None and new.step_index < old.step_index:
        raise ContextInvariantError(
            f"Step cursor moved backwards from {old.step_index} to {new.step_index}."
        )
    if new.total_steps is not None and not 0 <= new.step_index <= new.total_steps:
        raise ContextInvariantError(
            f"Step cursor {new.step_index} is outside 0..{new.total_steps}."
        )
    if new.execution_plan is not None and new.total_steps != len(new.execution_plan.steps):
        raise ContextInvariantError(
            f"total_steps={new.total_steps} does not match a plan of "
            f"{len(new.execution_plan.steps)} steps."
        )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def merge_context(context: ExecutionContext, outcome: StageOutcome) -> ExecutionContext:
    """Apply a stage outcome and return the next context. The input is not modified."""
    changes = outcome.update.changes()
    if isinstance(outcome, Fail):
        changes["status"] = ExecutionStatus.ERROR
        changes["last_error"] = outcome.error

    messages = changes.pop("messages", [])
    changes["transcript"] = [*context.transcript, *messages]

    # These context fields are not optional; None here means "leave as is".
    for name in ("status", "requires_follow_up", "follow_up_rounds"):
        if name in changes and changes[name] is None:
            del changes[name]

    if "execution_plan" in changes:
        _check_plan(context.execution_plan, changes["execution_plan"])

    merged = context.model_copy(update=changes)
    _check_cursor(context, merged)
    return merged
