"""Coral server REST API: wire records and an async client.

Only the two endpoints the engine needs are wrapped - payment claims and
telemetry. Records use camelCase on the wire (the server's convention) and
snake_case in Python.

Usage:
    async with CoralApiClient(config.api_url) as api:
        budget = await api.claim_payment(config.session_id, ClaimAmount.usd(0.25))
        print(budget.remaining_budget, budget.coral_usd_price)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Literal, Optional

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from coral_agent.errors import ApiError

logger = logging.getLogger(__name__)

MICRO_CORAL_PER_CORAL = 1_000_000
# Remote budgets are signed 64-bit
MAX_MICRO_CORAL = 2**63 - 1

CLAIM_PATH = "/api/v1/internal/claim/{session_id}"
TELEMETRY_PATH = "/api/v1/telemetry/{session_id}"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Claim amounts
# ---------------------------------------------------------------------------


class ClaimUnit(str, Enum):
    USD = "usd"
    CORAL = "coral"
    MICRO_CORAL = "micro_coral"


class ClaimAmount(_WireModel):
    """An amount of money in one of three units.

    Micro-coral amounts are integers; scaling truncates toward zero.
    Cross-unit arithmetic is deliberately absent - converting USD needs the
    server-supplied coral price, see ``to_micro_coral``.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    type: ClaimUnit
    amount: int | float

    @classmethod
    def usd(cls, amount: float) -> "ClaimAmount":
        return cls(type=ClaimUnit.USD, amount=float(amount))

    @classmethod
    def coral(cls, amount: float) -> "ClaimAmount":
        return cls(type=ClaimUnit.CORAL, amount=float(amount))

    @classmethod
    def micro_coral(cls, amount: int) -> "ClaimAmount":
        return cls(type=ClaimUnit.MICRO_CORAL, amount=int(amount))

    def _scaled(self, value: float) -> "ClaimAmount":
        if self.type is ClaimUnit.MICRO_CORAL:
            value = int(value)
        return ClaimAmount(type=self.type, amount=value)

    def __mul__(self, n: int) -> "ClaimAmount":
        return self._scaled(self.amount * n)

    def __truediv__(self, n: int) -> "ClaimAmount":
        if self.type is ClaimUnit.MICRO_CORAL:
            return self._scaled(int(self.amount) // n)
        return self._scaled(self.amount / n)

    def is_zero(self) -> bool:
        return self.amount == 0

    def to_micro_coral(self, coral_usd_price: float | None = None) -> int:
        """Express this amount in micro-coral.

        USD amounts require the server's coral price. The server warns that
        price is approximate; it is only used for the budget floor check.
        A positive USD amount at a non-positive price saturates to
        ``MAX_MICRO_CORAL``.
        """
        if self.is_zero():
            return 0
        if self.type is ClaimUnit.MICRO_CORAL:
            return int(self.amount)
        if self.type is ClaimUnit.CORAL:
            return int(self.amount * MICRO_CORAL_PER_CORAL)
        if coral_usd_price is None:
            raise ValueError("converting USD to micro-coral requires the server's coral_usd_price")
        if coral_usd_price <= 0:
            return MAX_MICRO_CORAL
        return min(MAX_MICRO_CORAL, int((self.amount / coral_usd_price) * MICRO_CORAL_PER_CORAL))

    def __str__(self) -> str:
        if self.type is ClaimUnit.USD:
            return f"${self.amount:g}"
        if self.type is ClaimUnit.CORAL:
            return f"{self.amount:g} coral"
        return f"{int(self.amount)} micro-coral"


class PaymentClaimRequest(_WireModel):
    amount: ClaimAmount


class RemainingBudget(_WireModel):
    remaining_budget: int
    coral_usd_price: float


# ---------------------------------------------------------------------------
# Coral tools and resources
# ---------------------------------------------------------------------------


class McpToolName(str, Enum):
    """Tools exposed by the Coral MCP server."""

    CORAL_SEND_MESSAGE = "coral_send_message"
    CORAL_CREATE_THREAD = "coral_create_thread"
    CORAL_CLOSE_THREAD = "coral_close_thread"
    CORAL_ADD_PARTICIPANT = "coral_add_participant"
    CORAL_REMOVE_PARTICIPANT = "coral_remove_participant"
    CORAL_WAIT_FOR_MESSAGE = "coral_wait_for_message"
    CORAL_WAIT_FOR_MENTION = "coral_wait_for_mention"
    CORAL_WAIT_FOR_AGENT = "coral_wait_for_agent"

    def __str__(self) -> str:
        return self.value


class McpResources(str, Enum):
    """Resources exposed by the Coral MCP server."""

    INSTRUCTION = "coral://instruction"
    STATE = "coral://state"

    def __str__(self) -> str:
        return self.value


class CoralMessage(_WireModel):
    id: str
    thread_id: str = Field(validation_alias=AliasChoices("threadId", "thread_id"))
    sender_name: Optional[str] = None
    text: Optional[str] = None


class SendMessageSuccess(_WireModel):
    """Result payload of a successful coral_send_message call."""

    type: Literal["send_message_success"] = "send_message_success"
    message: CoralMessage


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class TelemetryTarget(_WireModel):
    """A Coral message that telemetry should be attached to."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    message_id: str
    thread_id: str


class TelemetryDocument(_WireModel):
    id: str
    text: str


class TelemetryMessages(_WireModel):
    format: Literal["OpenAI", "Generic"]
    data: list[dict[str, Any]]


class Telemetry(_WireModel):
    model_description: str
    preamble: Optional[str] = None
    resources: list[TelemetryDocument] = Field(default_factory=list)
    tools: list[TelemetryDocument] = Field(default_factory=list)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    additional_params: dict[str, Any] = Field(default_factory=dict)
    messages: TelemetryMessages


class TelemetryPost(_WireModel):
    targets: list[TelemetryTarget]
    data: Telemetry


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class CoralApiClient:
    """Async client for the Coral server REST API.

    The underlying httpx client is created lazily and reused; pass
    ``transport`` to substitute one (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy init)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CoralApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        client = self._get_client()
        try:
            response = await client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ApiError(
                f"api error {e.response.status_code} for POST {path}: {e.response.text[:200]}",
                status_code=e.response.status_code,
                original=e,
            ) from e
        except httpx.HTTPError as e:
            raise ApiError(f"api error for POST {path}: {e}", original=e) from e
        return response

    async def claim_payment(self, session_id: str, amount: ClaimAmount) -> RemainingBudget:
        """Claim ``amount`` against the session budget.

        Returns:
            The remaining budget after the claim, in micro-coral, and the
            server's current coral price in USD.

        Raises:
            ApiError: On transport failure or non-2xx response
        """
        body = PaymentClaimRequest(amount=amount).model_dump(mode="json", by_alias=True)
        response = await self._post(CLAIM_PATH.format(session_id=session_id), body)
        try:
            return RemainingBudget.model_validate(response.json())
        except ValueError as e:
            raise ApiError(f"malformed claim response: {e}", original=e) from e

    async def add_telemetry(self, session_id: str, post: TelemetryPost) -> None:
        """Attach telemetry to the targeted messages.

        Raises:
            ApiError: On transport failure or non-2xx response
        """
        body = post.model_dump(mode="json", by_alias=True)
        await self._post(TELEMETRY_PATH.format(session_id=session_id), body)
        logger.debug("Posted telemetry for %d targets", len(post.targets))
