"""Where the loop's prompts come from, and when it stops.

    # the same prompt five times, one minute apart
    source = repeating_prompt_stream("Check for new mentions", delay=60, max_reps=5)

    # any iterable or async iterable of prompts
    source = SequencePromptSource(["first task", "second task"])

Implement PromptSource for anything else.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterable, AsyncIterator, Iterable, Iterator, Union

from coral_agent.prompt import EvaluatedPrompt

logger = logging.getLogger(__name__)

PromptLike = Union[EvaluatedPrompt, str]


class PromptSource(ABC):
    @abstractmethod
    async def next_prompt(self) -> EvaluatedPrompt | None:
        """The next prompt, or None when there are no more."""

    @abstractmethod
    async def is_finished(self) -> bool:
        """Checked after each prompt's rounds; True ends the loop."""


class RepeatingPromptSource(PromptSource):
    """The same prompt ``max_reps`` times, ``delay`` seconds apart."""

    def __init__(
        self,
        prompt: PromptLike,
        delay: float | None = None,
        max_reps: int = 1,
    ):
        if max_reps < 0:
            raise ValueError("max_reps must be >= 0")
        self.prompt = EvaluatedPrompt.coerce(prompt)
        self.delay = delay
        self.max_reps = max_reps
        self.reps = 0

    async def next_prompt(self) -> EvaluatedPrompt | None:
        if self.reps >= self.max_reps:
            return None
        if self.reps > 0 and self.delay:
            await asyncio.sleep(self.delay)
        self.reps += 1
        return self.prompt

    async def is_finished(self) -> bool:
        return self.reps >= self.max_reps


class SequencePromptSource(PromptSource):
    """Prompts from a sync or async iterable. Finished once it is exhausted."""

    def __init__(self, prompts: Iterable[PromptLike] | AsyncIterable[PromptLike]):
        self._async: AsyncIterator[PromptLike] | None = None
        self._sync: Iterator[PromptLike] | None = None
        if hasattr(prompts, "__aiter__"):
            self._async = prompts.__aiter__()  # type: ignore[union-attr]
        else:
            self._sync = iter(prompts)  # type: ignore[arg-type]
        self._peeked: PromptLike | None = None
        self._exhausted = False

    async def _advance(self) -> PromptLike | None:
        try:
            if self._async is not None:
                return await self._async.__anext__()
            return next(self._sync)  # type: ignore[arg-type]
        except (StopIteration, StopAsyncIteration):
            self._exhausted = True
            return None

    async def next_prompt(self) -> EvaluatedPrompt | None:
        if self._peeked is not None:
            prompt, self._peeked = self._peeked, None
        else:
            prompt = await self._advance()
        if prompt is None:
            return None
        return EvaluatedPrompt.coerce(prompt)

    async def is_finished(self) -> bool:
        if self._exhausted:
            return True
        if self._peeked is None:
            self._peeked = await self._advance()
        return self._exhausted


def repeating_prompt_stream(
    prompt: PromptLike,
    delay: float | None = None,
    max_reps: int = 1,
) -> RepeatingPromptSource:
    return RepeatingPromptSource(prompt, delay=delay, max_reps=max_reps)
