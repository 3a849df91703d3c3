# cli.py
# Entry point. Config and wiring only; no graph logic lives here.
#
#   codebot run "create hello.py that prints hello"
#   codebot chat --provider ollama --model llama3

import asyncio
import logging
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.prompt import Prompt

from codebot import display
from codebot.agent import AgentManager
from codebot.config import Provider, Settings
from codebot.llm import ModelInvocationError
from codebot.logging_config import setup_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Codebot: a coding assistant that analyzes, plans and executes tasks with tools.",
    no_args_is_help=True,
)

EXIT_COMMANDS = {"/exit", "/quit"}

ProviderOption = Annotated[Optional[Provider], typer.Option("--provider", "-p", help="Model provider.")]
ModelOption = Annotated[Optional[str], typer.Option("--model", "-m", help="Model name.")]
TemperatureOption = Annotated[
    Optional[float], typer.Option("--temperature", "-t", min=0.0, max=2.0, help="Sampling temperature.")
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show stage transitions and INFO logs.")]
DebugOption = Annotated[bool, typer.Option("--debug", "-d", help="DEBUG logs, including raw model output.")]
StreamOption = Annotated[
    Optional[bool], typer.Option("--stream/--no-stream", help="Stream plan and response generation.")
]
AiStreamOption = Annotated[bool, typer.Option("--ai-stream", "-a", help="Echo model output as it arrives.")]


def _load_settings(
    provider: Optional[Provider],
    model: Optional[str],
    temperature: Optional[float],
    stream: Optional[bool],
) -> Settings:
    load_dotenv()
    overrides = {
        "provider": provider,
        "model": model,
        "temperature": temperature,
        "stream": stream,
    }
    return Settings().model_copy(update={k: v for k, v in overrides.items() if v is not None})


def _start_session(settings: Settings, verbose: bool, debug: bool, ai_stream: bool) -> AgentManager:
    setup_logging(settings.log_level, verbose=verbose, debug=debug)
    events = display.RichGraphEvents(echo_stream=ai_stream, show_stages=verbose or debug)
    try:
        agent = AgentManager(settings, events=events)
    except ModelInvocationError as exc:
        display.halt(str(exc))
        raise typer.Exit(code=1) from exc

    display.banner(settings.provider.value, settings.model, agent.registry.names())
    return agent


@app.command(help="Run a single task and print the answer.")
def run(
    task: Annotated[str, typer.Argument(help="What you want done, in plain language.")],
    provider: ProviderOption = None,
    model: ModelOption = None,
    temperature: TemperatureOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    stream: StreamOption = None,
    ai_stream: AiStreamOption = False,
) -> None:
    settings = _load_settings(provider, model, temperature, stream)
    agent = _start_session(settings, verbose, debug, ai_stream)

    display.prompt_received(task)
    try:
        answer = asyncio.run(agent.run(task))
    except ModelInvocationError as exc:
        logger.debug("Transport failure", exc_info=True)
        display.halt(f"Model call failed: {exc}")
        raise typer.Exit(code=1) from exc
    display.final_result(answer)


async def _chat_loop(agent: AgentManager) -> None:
    while True:
        try:
            text = Prompt.ask("[bold cyan]you[/bold cyan]").strip()
        except (EOFError, KeyboardInterrupt):
            display.console.print()
            return

        if not text:
            continue
        if text.lower() in EXIT_COMMANDS:
            return
        if text.lower() == "/clear":
            display.console.clear()
            continue

        display.prompt_received(text)
        try:
            answer = await agent.run(text)
        except ModelInvocationError as exc:
            logger.debug("Transport failure", exc_info=True)
            display.halt(f"Model call failed: {exc}")
            continue
        display.final_result(answer)


@app.command(help="Start an interactive session.")
def chat(
    provider: ProviderOption = None,
    model: ModelOption = None,
    temperature: TemperatureOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    stream: StreamOption = None,
    ai_stream: AiStreamOption = False,
) -> None:
    settings = _load_settings(provider, model, temperature, stream)
    agent = _start_session(settings, verbose, debug, ai_stream)
    display.chat_help()
    asyncio.run(_chat_loop(agent))


if __name__ == "__main__":
    app()
