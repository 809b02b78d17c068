"""Client for the AI/analytics HTTP endpoint.

Every call returns an `AnalyticsResponse` envelope instead of raising, so
callers decide how a failure propagates. `AnalyticsStrategy` adapts the client
into a processing strategy that raises `ProcessingError` on failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

import httpx

from core.pipeline import ErrorInfo, ProcessingError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deepseek.com"


@dataclass(frozen=True)
class AnalyticsResponse:
    success: bool
    data: Any = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def failure(cls, message: str, code: str) -> "AnalyticsResponse":
        return cls(success=False, error=ErrorInfo(message=message, code=code))


class AnalyticsClient:
    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = "v1",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._timeout = timeout
        self._transport = transport

    async def call(self, endpoint: str, data: Dict[str, Any], *, api_version: Optional[str] = None) -> AnalyticsResponse:
        if not self._api_key:
            logger.error("Analytics API key is not configured")
            return AnalyticsResponse.failure("API key is not configured", "auth_error")

        url = f"{self._base_url}/{api_version or self._api_version}/{endpoint.strip('/')}"
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=data, headers=headers)
        except httpx.HTTPError as exc:
            logger.exception("Error calling analytics endpoint %s", endpoint)
            return AnalyticsResponse.failure(str(exc) or "Unknown error occurred", "request_error")

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            return AnalyticsResponse.failure(
                str(body.get("message") or "API request failed"),
                str(body.get("code") or f"status_{response.status_code}"),
            )

        try:
            payload = response.json()
        except ValueError:
            return AnalyticsResponse.failure("Analytics endpoint returned invalid JSON", "invalid_response")
        return AnalyticsResponse(success=True, data=payload)

    async def time_series_forecast(
        self,
        data: List[float],
        periods: int,
        *,
        frequency: Literal["daily", "weekly", "monthly"] = "daily",
        seasonality: bool = True,
    ) -> AnalyticsResponse:
        return await self.call(
            "forecasting/timeseries",
            {"data": list(data), "periods": periods, "frequency": frequency, "seasonality": seasonality},
        )

    async def generate_text(
        self, prompt: str, *, max_tokens: int = 1000, temperature: float = 0.7, top_p: float = 0.9
    ) -> AnalyticsResponse:
        return await self.call(
            "text/generate",
            {"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature, "top_p": top_p},
        )

    async def analyze_document(
        self, text: str, analysis_type: Literal["summary", "entities", "sentiment", "keywords"]
    ) -> AnalyticsResponse:
        return await self.call("document/analyze", {"text": text, "analysis_type": analysis_type})


class AnalyticsStrategy:
    """Default processing strategy: send the mapped parameters to the endpoint."""

    def __init__(self, client: AnalyticsClient, endpoint: str):
        self.client = client
        self.endpoint = endpoint

    async def __call__(self, mapped: Any) -> Any:
        response = await self.client.call(self.endpoint, {"input": mapped})
        if not response.success:
            error = response.error or ErrorInfo("Processing failed")
            raise ProcessingError(error.message or "Processing failed", error.code)
        return response.data
