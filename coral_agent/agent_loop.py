"""The outer loop: take a prompt, run rounds until the model stops using tools.

    loop = AgentLoop(agent, repeating_prompt_stream(prompt, delay=5, max_reps=100))
    history = await loop.execute()

Any error from a round ends the loop and propagates.
"""

from __future__ import annotations

import logging

from coral_agent.agent import Agent
from coral_agent.messages import AssistantMessage, UserMessage, user_text
from coral_agent.prompt_sources import PromptSource

logger = logging.getLogger(__name__)

DEFAULT_ITERATION_TOOL_QUOTA: int | None = 64


class AgentLoop:
    """Drives an Agent with prompts from a PromptSource.

    Args:
        agent: The agent to run
        source: Supplies prompts and decides when the loop is finished
        iteration_tool_quota: Maximum tool-using rounds per prompt. Large
            enough for real work, small enough to catch a model stuck calling
            tools. None removes the limit.
    """

    def __init__(
        self,
        agent: Agent,
        source: PromptSource,
        iteration_tool_quota: int | None = DEFAULT_ITERATION_TOOL_QUOTA,
    ):
        if iteration_tool_quota is not None and iteration_tool_quota < 1:
            raise ValueError("iteration_tool_quota must be >= 1 or None")
        if iteration_tool_quota is None:
            logger.warning(
                "iteration tool quota is unlimited; a model that never stops calling tools "
                "will burn tokens indefinitely"
            )
        self.agent = agent
        self.source = source
        self.iteration_tool_quota = iteration_tool_quota

    async def execute(self) -> list[UserMessage | AssistantMessage]:
        """Run until the source is finished or out of prompts.

        Returns:
            The full message history
        """
        logger.info("Starting Coral agent loop")
        quota = "unlimited" if self.iteration_tool_quota is None else str(self.iteration_tool_quota)

        messages: list[UserMessage | AssistantMessage] = []
        iterations = 0
        while True:
            prompt = await self.source.next_prompt()
            if prompt is None:
                break
            iterations += 1

            # An iteration always starts with the loop prompt
            messages.append(user_text(await prompt.evaluate()))

            depth = 0
            while True:
                depth += 1
                logger.info("Tool iteration %d/%s [prompt iteration %d]", depth, quota, iterations)

                result = await self.agent.run_completion(messages)
                if result.texts:
                    logger.info('"%s"', "".join(result.texts))
                messages = result.messages

                if result.tools_used == 0:
                    logger.info("Prompt iteration [%d] finished - no tools used", iterations)
                    break
                await self.agent.claim_tool_iteration()

                if depth == self.iteration_tool_quota:
                    logger.warning("Prompt iteration [%d] finished - tool quota reached", iterations)
                    break

            await self.agent.claim_iteration()
            if await self.source.is_finished():
                break

        logger.info("Coral agent loop finished after %d prompt iterations", iterations)
        return messages
