# display.py
# All terminal output for codebot.
#
# The graph never formats strings. It reports progress through
# GraphEvents; RichGraphEvents below turns those into panels and tables.
#
# Colour language:
#   cyan    - routing and stage transitions
#   blue    - model output (translation, streamed text)
#   yellow  - verification
#   green   - success
#   red     - failures and halts
#   magenta - tool calls

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from codebot.graph import GraphEvents, Stage
from codebot.models import (
    ErrorReport,
    ExecutionPlan,
    Step,
    StepResult,
    TaskAnalysis,
    VerificationReport,
)

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _compact(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def banner(provider: str, model: str, tools: list[str]) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Codebot[/bold cyan]\n"
            "[dim]Analyze, plan, execute and verify coding tasks[/dim]\n\n"
            f"[dim]Provider :[/dim] [white]{escape(provider)}[/white]\n"
            f"[dim]Model    :[/dim] [white]{escape(model)}[/white]\n"
            f"[dim]Tools    :[/dim] [white]{escape(', '.join(tools))}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def chat_help() -> None:
    console.print("[dim]Type a request. /clear clears the screen, /exit or /quit leaves.[/dim]")


def prompt_received(prompt: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW REQUEST[/cyan]", style="cyan"))
    console.print(
        Panel(
            Text(prompt, style="white"),
            title=_label("USER PROMPT", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Analysis and planning
# ---------------------------------------------------------------------------


def stage_started(stage: Stage) -> None:
    console.print(_label("STAGE", "cyan"), f"[cyan] {stage.value}[/cyan]")


def translated(text: str) -> None:
    console.print(
        Panel(
            Text(text, style="white"),
            title=_label("TRANSLATED REQUEST", "blue"),
            border_style="blue",
            padding=(0, 2),
        )
    )


def task_analyzed(analysis: TaskAnalysis) -> None:
    console.print(
        f"  [dim]Task type:[/dim] [bold white]{analysis.task_type.value}[/bold white]"
        f"  [dim]({len(analysis.subtasks)} subtask(s))[/dim]"
    )


def plan_parsed(plan: ExecutionPlan) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("ID", justify="center", width=4)
    table.add_column("Tool", style="bold white", width=16)
    table.add_column("Inputs", style="dim white", width=32)
    table.add_column("Action", style="white")

    for step in plan.steps:
        table.add_row(
            Text(step.step_id),
            Text(step.tool),
            Text(_mono(_compact(step.tool_inputs), 30)),
            Text(step.action),
        )

    console.print(
        Panel(
            table,
            title=_label("EXECUTION PLAN", "cyan"),
            subtitle=f"[dim]{len(plan.steps)} step(s)[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def step_start(index: int, total: int, step: Step) -> None:
    console.print()
    console.print(f"[bold cyan]  STEP [{index + 1}/{total}][/bold cyan]  [white]{escape(step.action)}[/white]")


def tool_call(name: str, tool_input: Any) -> None:
    console.print(f"  [magenta]Tool[/magenta]     [bold white]{escape(name)}[/bold white]  [dim]{escape(_mono(_compact(tool_input)))}[/dim]")


def step_result(result: StepResult) -> None:
    outcome = result.outcome
    if outcome.succeeded:
        console.print(f"  [bold green]✓[/bold green] [white]{escape(_mono(_compact(outcome.payload), 140))}[/white]")
    else:
        console.print(f"  [bold red]✗[/bold red] [red]{escape(_mono(outcome.error_message or 'failed', 140))}[/red]")


# ---------------------------------------------------------------------------
# Verification and errors
# ---------------------------------------------------------------------------


def verification(report: VerificationReport) -> None:
    console.print()
    if report.additional_steps:
        console.print(
            _label("VERIFY", "yellow"),
            f"[yellow] {len(report.additional_steps)} follow-up step(s) requested[/yellow]",
        )
    elif report.success:
        console.print(_label("VERIFY ✓", "green"), "[green] All steps completed successfully.[/green]")
    else:
        console.print(_label("VERIFY ✗", "red"), "[red] Verification reported problems.[/red]")

    for issue in report.errors:
        console.print(f"  [yellow]step {escape(issue.step_id or '?')}:[/yellow] [white]{escape(issue.error)}[/white]")
        if issue.resolution:
            console.print(f"  [dim]resolution: {escape(issue.resolution)}[/dim]")


def error_explained(report: ErrorReport) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]{escape(report.error_type)}[/bold red]\n\n"
            f"[white]{escape(report.cause)}[/white]"
            + (f"\n\n[dim]{escape(report.resolution)}[/dim]" if report.resolution else ""),
            title=_label("ERROR", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Final result
# ---------------------------------------------------------------------------


def fragment(text: str) -> None:
    console.print(text, end="", style="blue", markup=False, highlight=False)


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            Text(result, style="white"),
            title=_label("RESULT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            Text(reason, style="bold white"),
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Graph observer
# ---------------------------------------------------------------------------


class RichGraphEvents(GraphEvents):
    """Renders graph progress. echo_stream prints model fragments as they arrive."""

    def __init__(self, echo_stream: bool = False, show_stages: bool = False) -> None:
        self._echo_stream = echo_stream
        self._show_stages = show_stages
        self._streaming = False

    def _end_stream(self) -> None:
        if self._streaming:
            console.print()
            self._streaming = False

    def stage_started(self, stage: Stage) -> None:
        self._end_stream()
        if self._show_stages:
            stage_started(stage)

    def translated(self, text: str) -> None:
        translated(text)

    def task_analyzed(self, analysis: TaskAnalysis) -> None:
        task_analyzed(analysis)

    def plan_created(self, plan: ExecutionPlan) -> None:
        self._end_stream()
        plan_parsed(plan)

    def step_started(self, index: int, total: int, step: Step) -> None:
        step_start(index, total, step)

    def tool_called(self, name: str, tool_input: Any) -> None:
        tool_call(name, tool_input)

    def step_finished(self, result: StepResult) -> None:
        step_result(result)

    def verified(self, report: VerificationReport) -> None:
        verification(report)

    def error_handled(self, report: ErrorReport) -> None:
        error_explained(report)

    def fragment(self, text: str) -> None:
        if self._echo_stream:
            self._streaming = True
            fragment(text)
