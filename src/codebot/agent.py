# agent.py
# Session owner.
#
# AgentManager builds the model, memory store and tool registry once and
# runs each utterance through a fresh ExecutionContext. Presentation is
# left to whoever passes the events observer.

import logging

from codebot.config import Settings
from codebot.graph import AgentGraph, GraphEvents
from codebot.llm import ChatModel, build_model
from codebot.models import ErrorKind, ExecutionContext, Role
from codebot.nodes import StageNodes
from codebot.registry import ToolRegistry
from codebot.tools import MemoryStore, build_tools

logger = logging.getLogger(__name__)


def final_answer(context: ExecutionContext) -> str:
    """The user-visible text of a finished run."""
    error = context.last_error
    if error is not None and error.kind is ErrorKind.RESPONSE_GENERATION_ERROR:
        if context.error_report is not None:
            return context.error_report.user_message
        return f"Sorry, I could not produce a response. {error.message}"

    # transcript[0] is the request itself
    if len(context.transcript) > 1 and context.transcript[-1].role is Role.ASSISTANT:
        return context.transcript[-1].content

    if error is not None:
        return f"Sorry, the request could not be completed. {error.message}"
    return "Sorry, no response was produced."


class AgentManager:
    """
    One interactive session.

    Example:
        agent = AgentManager(Settings())
        answer = await agent.run("Create hello.py that prints hello")
    """

    def __init__(
        self,
        settings: Settings,
        model: ChatModel | None = None,
        events: GraphEvents | None = None,
    ) -> None:
        self.settings = settings
        self.model = model or build_model(settings.model_options(), settings)
        self.memory = MemoryStore()
        self.registry = ToolRegistry(build_tools(self.memory, self.model, settings.command_timeout))

        nodes = StageNodes(
            self.model,
            self.registry,
            events,
            stream=settings.stream,
            max_follow_up_rounds=settings.max_follow_up_rounds,
        )
        self._graph = AgentGraph(nodes, events)
        logger.debug("Session ready with tools: %s", ", ".join(self.registry.names()))

    async def process(self, text: str) -> ExecutionContext:
        """Run one utterance and return the final context. ModelInvocationError may escape from translation."""
        return await self._graph.run(ExecutionContext.for_request(text))

    async def run(self, text: str) -> str:
        context = await self.process(text)
        logger.info("Request finished with status=%s", context.status.value)
        return final_answer(context)
