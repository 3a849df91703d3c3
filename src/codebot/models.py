# models.py
# Data contracts for the codebot task-execution graph.
# Schema and validation only; stages and the driver hold the behaviour.

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field, field_validator


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class TaskType(str, Enum):
    SIMPLE_RESPONSE = "simple_response"
    CODE_CREATION = "code_creation"
    CODE_MODIFICATION = "code_modification"
    CODE_ANALYSIS = "code_analysis"
    ENVIRONMENT_SETUP = "environment_setup"


class ErrorKind(str, Enum):
    PARSE_ERROR = "ParseError"
    MISSING_TASK_ANALYSIS = "MissingTaskAnalysis"
    MISSING_STEP = "MissingStep"
    MISSING_RESULTS = "MissingResults"
    TOOL_NOT_FOUND = "ToolNotFound"
    TOOL_EXECUTION_ERROR = "ToolExecutionError"
    RESPONSE_GENERATION_ERROR = "ResponseGenerationError"
    MODEL_INVOCATION_ERROR = "ModelInvocationError"


def _as_str(value: Any) -> Any:
    # Models emit ids as either "1" or 1.
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    return value


IdStr = Annotated[str, BeforeValidator(_as_str)]


class Message(BaseModel):
    """One transcript entry."""

    role: Role
    content: str


# ---------------------------------------------------------------------------
# Analysis and planning
# ---------------------------------------------------------------------------


class Subtask(BaseModel):
    id: IdStr = Field(..., description="Subtask identifier as emitted by the model.")
    description: str = ""
    candidate_tools: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("potential_tools", "candidate_tools", "candidateTools"),
    )
    dependencies: list[IdStr] = Field(
        default_factory=list,
        description="Advisory only. Steps are never reordered on this field.",
    )


class TaskAnalysis(BaseModel):
    """Classification of a request produced by the analyze stage."""

    task_type: TaskType = Field(..., validation_alias=AliasChoices("task_type", "taskType"))
    subtasks: list[Subtask] = Field(default_factory=list)

    @field_validator("subtasks", mode="before")
    @classmethod
    def null_subtasks(cls, value: Any) -> Any:
        return [] if value is None else value


class Step(BaseModel):
    """A single action node in an execution plan."""

    step_id: IdStr = Field(..., validation_alias=AliasChoices("step_id", "stepId", "id"))
    action: str = ""
    tool: str = Field(default="", description="Tool name, or the direct_response sentinel.")
    tool_inputs: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("tool_inputs", "toolInputs")
    )
    validation: str = Field(default="", description="How the step's result should be judged.")

    @field_validator("tool", "action", "validation", mode="before")
    @classmethod
    def null_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("tool_inputs", mode="before")
    @classmethod
    def null_inputs(cls, value: Any) -> Any:
        return {} if value is None else value


class ExecutionPlan(BaseModel):
    """Ordered steps. Steps are appended, never removed or reordered."""

    steps: list[Step] = Field(default_factory=list, validation_alias=AliasChoices("plan", "steps"))


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ToolResult(BaseModel):
    """Outcome of a single tool invocation."""

    succeeded: bool
    payload: Any = None
    error_message: str | None = None


class StepResult(BaseModel):
    step_id: str
    tool: str | None = None
    input: dict[str, Any] | None = None
    outcome: ToolResult


class ErrorInfo(BaseModel):
    message: str
    kind: ErrorKind
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    trace: str | None = None


class VerificationIssue(BaseModel):
    step_id: IdStr = ""
    error: str = ""
    resolution: str = ""


class VerificationReport(BaseModel):
    success: bool
    errors: list[VerificationIssue] = Field(default_factory=list)
    additional_steps: list[Step] = Field(
        default_factory=list,
        validation_alias=AliasChoices("additional_steps", "additionalSteps"),
    )

    @field_validator("errors", "additional_steps", mode="before")
    @classmethod
    def null_lists(cls, value: Any) -> Any:
        return [] if value is None else value


class ErrorReport(BaseModel):
    """Explanation of a failure produced by the handle-error stage."""

    error_type: str = Field(..., validation_alias=AliasChoices("error_type", "errorType"))
    cause: str = ""
    resolution: str = ""
    user_message: str = Field(..., validation_alias=AliasChoices("user_message", "userMessage"))


# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------


class ExecutionContext(BaseModel):
    """
    The single request-scoped record threaded through every stage.

    Stages never mutate it in place; they return a ContextUpdate that
    context.merge_context applies to produce the next context.
    """

    transcript: list[Message] = Field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.IDLE
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
    requires_follow_up: bool = False
    follow_up_rounds: int = 0

    @classmethod
    def for_request(cls, text: str) -> "ExecutionContext":
        return cls(transcript=[Message(role=Role.USER, content=text)])

    @property
    def original_request(self) -> str:
        return self.transcript[0].content if self.transcript else ""

    @property
    def latest_message(self) -> str:
        return self.transcript[-1].content if self.transcript else ""
