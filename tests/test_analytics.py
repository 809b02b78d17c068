from __future__ import annotations

import json

import httpx
import pytest

from core.analytics import AnalyticsClient, AnalyticsStrategy
from core.pipeline import ProcessingError

BASE_URL = "https://analytics.example.com"


def _client(handler, api_key="secret"):
    return AnalyticsClient(api_key, base_url=BASE_URL, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_request():
    def handler(request):
        raise AssertionError("no request expected")

    response = await _client(handler, api_key=None).call("text/generate", {})
    assert not response.success
    assert response.error.code == "auth_error"


@pytest.mark.asyncio
async def test_forecast_call_posts_versioned_endpoint():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"forecast": [1, 2, 3]})

    response = await _client(handler).time_series_forecast([1.0, 2.0], 3, frequency="weekly")
    assert response.success
    assert response.data == {"forecast": [1, 2, 3]}
    assert seen["url"] == f"{BASE_URL}/v1/forecasting/timeseries"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {"data": [1.0, 2.0], "periods": 3, "frequency": "weekly", "seasonality": True}


@pytest.mark.asyncio
async def test_error_body_message_and_code_are_used():
    def handler(request):
        return httpx.Response(422, json={"message": "periods must be positive", "code": "validation_error"})

    response = await _client(handler).call("forecasting/timeseries", {"periods": 0}, api_version="v2")
    assert response.error.message == "periods must be positive"
    assert response.error.code == "validation_error"


@pytest.mark.asyncio
async def test_error_without_body_uses_status_code():
    def handler(request):
        return httpx.Response(503, text="upstream unavailable")

    response = await _client(handler).generate_text("hello")
    assert response.error.message == "API request failed"
    assert response.error.code == "status_503"


@pytest.mark.asyncio
async def test_transport_failure_is_request_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    response = await _client(handler).analyze_document("text", "summary")
    assert response.error.code == "request_error"


@pytest.mark.asyncio
async def test_invalid_json_is_reported():
    def handler(request):
        return httpx.Response(200, text="<html>")

    response = await _client(handler).call("text/generate", {})
    assert response.error.code == "invalid_response"


@pytest.mark.asyncio
async def test_strategy_wraps_mapped_input_and_raises_on_failure():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        if len(bodies) == 1:
            return httpx.Response(200, json={"summary": {"totalSales": 10}})
        return httpx.Response(400, json={"message": "bad data", "code": "invalid_input"})

    strategy = AnalyticsStrategy(_client(handler), "business-analytics")
    assert await strategy({"businessData": []}) == {"summary": {"totalSales": 10}}
    assert bodies[0] == {"input": {"businessData": []}}

    with pytest.raises(ProcessingError) as excinfo:
        await strategy({"businessData": []})
    assert excinfo.value.code == "invalid_input"
    assert excinfo.value.message == "bad data"
