"""Tests for coral_agent.api - claim amounts, wire records and the REST client.

HTTP is served by httpx.MockTransport; nothing leaves the process.
"""

from __future__ import annotations

import json

import httpx
import pytest

from coral_agent.api import (
    ClaimAmount,
    ClaimUnit,
    CoralApiClient,
    CoralMessage,
    MAX_MICRO_CORAL,
    McpResources,
    McpToolName,
    Telemetry,
    TelemetryMessages,
    TelemetryPost,
    TelemetryTarget,
)
from coral_agent.errors import ApiError


# ---------------------------------------------------------------------------
# ClaimAmount
# ---------------------------------------------------------------------------


class TestClaimAmount:
    def test_constructors(self):
        assert ClaimAmount.usd(1) == ClaimAmount(type=ClaimUnit.USD, amount=1.0)
        assert ClaimAmount.coral(2).type is ClaimUnit.CORAL
        assert ClaimAmount.micro_coral(3).amount == 3

    def test_micro_coral_division_truncates(self):
        amount = ClaimAmount.micro_coral(7) / 2
        assert amount.amount == 3
        assert isinstance(amount.amount, int)

    def test_micro_coral_stays_integer_on_multiply(self):
        amount = ClaimAmount.micro_coral(3) * 4
        assert amount == ClaimAmount.micro_coral(12)

    def test_usd_scaling(self):
        assert (ClaimAmount.usd(2.0) / 1_000_000).amount == pytest.approx(2e-6)
        assert (ClaimAmount.usd(0.5) * 3).amount == pytest.approx(1.5)

    def test_is_zero(self):
        assert ClaimAmount.usd(0).is_zero()
        assert ClaimAmount.micro_coral(0).is_zero()
        assert not ClaimAmount.coral(0.1).is_zero()

    def test_to_micro_coral(self):
        assert ClaimAmount.micro_coral(42).to_micro_coral() == 42
        assert ClaimAmount.coral(1.5).to_micro_coral() == 1_500_000
        # $1 at $0.5 per coral is 2 coral
        assert ClaimAmount.usd(1.0).to_micro_coral(0.5) == 2_000_000

    def test_usd_conversion_needs_price(self):
        with pytest.raises(ValueError):
            ClaimAmount.usd(1.0).to_micro_coral()

    def test_zero_usd_price(self):
        assert ClaimAmount.usd(1.0).to_micro_coral(0.0) == MAX_MICRO_CORAL
        assert ClaimAmount.usd(0).to_micro_coral(0.0) == 0
        assert ClaimAmount.usd(0).to_micro_coral() == 0

    def test_wire_form(self):
        assert ClaimAmount.usd(0.25).model_dump(mode="json", by_alias=True) == {
            "type": "usd",
            "amount": 0.25,
        }

    def test_str(self):
        assert str(ClaimAmount.usd(0.5)) == "$0.5"
        assert str(ClaimAmount.micro_coral(10)) == "10 micro-coral"


class TestRecords:
    def test_enums_render_as_values(self):
        assert str(McpToolName.CORAL_SEND_MESSAGE) == "coral_send_message"
        assert str(McpResources.INSTRUCTION) == "coral://instruction"

    def test_coral_message_accepts_both_spellings(self):
        assert CoralMessage.model_validate({"id": "m", "threadId": "t"}).thread_id == "t"
        assert CoralMessage.model_validate({"id": "m", "thread_id": "t"}).thread_id == "t"

    def test_telemetry_post_is_camel_case(self):
        post = TelemetryPost(
            targets=[TelemetryTarget(message_id="m", thread_id="t")],
            data=Telemetry(
                model_description="gpt",
                max_tokens=10,
                messages=TelemetryMessages(format="Generic", data=[]),
            ),
        )
        body = post.model_dump(mode="json", by_alias=True)
        assert body["targets"] == [{"messageId": "m", "threadId": "t"}]
        assert body["data"]["modelDescription"] == "gpt"
        assert body["data"]["maxTokens"] == 10


# ---------------------------------------------------------------------------
# CoralApiClient
# ---------------------------------------------------------------------------


def _client(handler) -> CoralApiClient:
    return CoralApiClient("http://coral.test/", transport=httpx.MockTransport(handler))


class TestCoralApiClient:
    @pytest.mark.asyncio
    async def test_claim_payment(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"remainingBudget": 900, "coralUsdPrice": 0.25})

        async with _client(handler) as api:
            budget = await api.claim_payment("s1", ClaimAmount.micro_coral(100))

        assert seen["url"] == "http://coral.test/api/v1/internal/claim/s1"
        assert seen["body"] == {"amount": {"type": "micro_coral", "amount": 100}}
        assert budget.remaining_budget == 900
        assert budget.coral_usd_price == 0.25

    @pytest.mark.asyncio
    async def test_non_2xx_is_api_error(self):
        api = _client(lambda request: httpx.Response(403, text="budget locked"))
        with pytest.raises(ApiError) as exc_info:
            await api.claim_payment("s1", ClaimAmount.usd(1))
        assert exc_info.value.status_code == 403
        assert isinstance(exc_info.value.original, httpx.HTTPStatusError)
        await api.close()

    @pytest.mark.asyncio
    async def test_transport_failure_is_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        api = _client(handler)
        with pytest.raises(ApiError) as exc_info:
            await api.claim_payment("s1", ClaimAmount.usd(1))
        assert exc_info.value.status_code is None
        await api.close()

    @pytest.mark.asyncio
    async def test_malformed_claim_response(self):
        api = _client(lambda request: httpx.Response(200, json={"unexpected": True}))
        with pytest.raises(ApiError, match="malformed"):
            await api.claim_payment("s1", ClaimAmount.usd(1))
        await api.close()

    @pytest.mark.asyncio
    async def test_add_telemetry(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        post = TelemetryPost(
            targets=[TelemetryTarget(message_id="m", thread_id="t")],
            data=Telemetry(
                model_description="gpt",
                messages=TelemetryMessages(format="OpenAI", data=[{"role": "user", "content": "hi"}]),
            ),
        )
        async with _client(handler) as api:
            await api.add_telemetry("s1", post)

        assert seen["path"] == "/api/v1/telemetry/s1"
        assert seen["body"]["data"]["messages"]["format"] == "OpenAI"

    @pytest.mark.asyncio
    async def test_client_is_lazy_and_closable(self):
        api = _client(lambda request: httpx.Response(204))
        assert api._client is None
        await api.add_telemetry("s1", TelemetryPost(
            targets=[],
            data=Telemetry(model_description="m", messages=TelemetryMessages(format="Generic", data=[])),
        ))
        assert api._client is not None
        await api.close()
        assert api._client is None
