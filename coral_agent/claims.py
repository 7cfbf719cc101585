"""Budget claims against the Coral server.

When an agent runs in a remote session it is paid by making claims: it
claims to have done some work for some amount. The server answers with the
budget left after the claim. The server never lets an agent go over budget,
so a remaining budget at or below the floor means the agent should stop -
continuing would be free work.

    claims = ClaimManager(
        ClaimConfig(
            input_token_cost=per_million(ClaimAmount.usd(1.25)),
            output_token_cost=per_million(ClaimAmount.usd(10.0)),
            base_tool_call_cost=ClaimAmount.usd(0.01),
            custom_tool_cost={"coral_send_message": ClaimAmount.usd(0.10)},
            min_budget=ClaimAmount.usd(0.50),
        ),
        config,
    )

Claims are only sent when ``CORAL_SEND_CLAIMS=1`` (``config.send_claims``);
the orchestrator sets it in remote sessions. Locally nothing is sent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from coral_agent.api import ClaimAmount, CoralApiClient, McpToolName
from coral_agent.completion import Usage
from coral_agent.config import CoralConfig
from coral_agent.errors import BudgetExhaustedError

logger = logging.getLogger(__name__)

ZERO = ClaimAmount.micro_coral(0)


def per_million(amount: ClaimAmount) -> ClaimAmount:
    """Price per token from a price per million tokens."""
    return amount / 1_000_000


@dataclass(frozen=True)
class ClaimConfig:
    """Prices and policy for one agent. Every cost defaults to zero (no claim).

    Attributes:
        input_token_cost: Per input token. Token usage is reported optionally
            by model providers; check yours reports it before relying on it.
        output_token_cost: Per output token.
        min_budget: The agent stops once the remaining budget is at or below this.
        base_tool_call_cost: Claimed after every tool call, Coral tools included.
        custom_tool_cost: Per tool name, claimed in addition to the base cost.
        base_iteration_cost: Claimed once per prompt iteration.
        base_tool_iteration_cost: Claimed once per tool iteration (one
            completion request that used tools).
        exit_on_budget_exhausted: Raise BudgetExhaustedError when the floor is
            reached. Without it the agent keeps working for free.
    """

    input_token_cost: ClaimAmount = ZERO
    output_token_cost: ClaimAmount = ZERO
    min_budget: ClaimAmount = ZERO
    base_tool_call_cost: ClaimAmount = ZERO
    custom_tool_cost: Mapping[str, ClaimAmount] = field(default_factory=dict)
    base_iteration_cost: ClaimAmount = ZERO
    base_tool_iteration_cost: ClaimAmount = ZERO
    exit_on_budget_exhausted: bool = True

    def cost_for_tool(self, name: str | McpToolName) -> ClaimAmount | None:
        return self.custom_tool_cost.get(str(name))


class ClaimManager:
    """Turns billable events into claims and enforces the budget floor."""

    def __init__(
        self,
        claim_config: ClaimConfig,
        config: CoralConfig,
        api: CoralApiClient | None = None,
    ):
        config.require_claims()
        self.claim_config = claim_config
        self.send_claims = config.send_claims
        self.session_id: str = config.session_id  # type: ignore[assignment]
        self.api = api or CoralApiClient(config.api_url)  # type: ignore[arg-type]

    async def claim_tokens(self, usage: Usage) -> None:
        """Claim for the tokens of one completion."""
        cfg = self.claim_config
        if cfg.input_token_cost.is_zero() and cfg.output_token_cost.is_zero():
            logger.info("not claiming tokens because input_token_cost and output_token_cost are zero")
            return

        if usage.input_tokens + usage.output_tokens != usage.total_tokens:
            # The provider only reported a total; bill it all at the output price
            if not cfg.input_token_cost.is_zero():
                logger.warning(
                    "provider only reported total token usage, input_token_cost will be ignored! "
                    "token cost will be claimed using output_token_cost"
                )
            logger.info("claiming %s for %d tokens", cfg.output_token_cost, usage.total_tokens)
            await self.claim(cfg.output_token_cost * usage.total_tokens)
        elif usage.total_tokens == 0:
            logger.warning("provider reported zero tokens!")
        else:
            logger.info("claiming %s for %d input tokens", cfg.input_token_cost, usage.input_tokens)
            await self.claim(cfg.input_token_cost * usage.input_tokens)
            logger.info("claiming %s for %d output tokens", cfg.output_token_cost, usage.output_tokens)
            await self.claim(cfg.output_token_cost * usage.output_tokens)

    async def claim_iteration(self) -> None:
        """Claim for one prompt iteration."""
        cost = self.claim_config.base_iteration_cost
        if cost.is_zero():
            logger.info("not claiming prompt iteration because base_iteration_cost is zero")
            return
        logger.info("claiming %s for one prompt iteration", cost)
        await self.claim(cost)

    async def claim_tool_iteration(self) -> None:
        """Claim for one tool iteration."""
        cost = self.claim_config.base_tool_iteration_cost
        if cost.is_zero():
            logger.info("not claiming tool iteration because base_tool_iteration_cost is zero")
            return
        logger.info("claiming %s for one tool iteration", cost)
        await self.claim(cost)

    async def claim_tool_call(self, name: str) -> None:
        """Claim the base cost of a tool call, then any custom cost for ``name``."""
        base = self.claim_config.base_tool_call_cost
        if not base.is_zero():
            logger.info("claiming %s as a base cost for tool '%s'", base, name)
            await self.claim(base)

        custom = self.claim_config.cost_for_tool(name)
        if custom is not None:
            logger.info("claiming %s as an additional cost for tool '%s'", custom, name)
            await self.claim(custom)

    async def claim(self, amount: ClaimAmount) -> int | None:
        """Send one claim and enforce the budget floor.

        Returns:
            The remaining budget in micro-coral, or None if nothing was sent.

        Raises:
            ApiError: If the claim request failed
            BudgetExhaustedError: If the remaining budget is at or below the floor
                and exit_on_budget_exhausted is set
        """
        if not self.send_claims:
            return None
        if amount.is_zero():
            # Don't spam the server with zero claims
            return None

        budget = await self.api.claim_payment(self.session_id, amount)
        logger.debug("claimed %s, remaining budget %d micro-coral", amount, budget.remaining_budget)

        if self.claim_config.exit_on_budget_exhausted:
            # For a USD floor the server's coral price is the only rate available;
            # the server flags it as approximate
            min_micro = self.claim_config.min_budget.to_micro_coral(budget.coral_usd_price)
            if budget.remaining_budget <= min_micro:
                raise BudgetExhaustedError(budget.remaining_budget, min_micro)
        return budget.remaining_budget
