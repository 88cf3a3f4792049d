from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from typing import Any

import httpx
from loguru import logger

from app.core.config import Settings, get_settings
from app.domain import CandleSeries, TokenCandidate, TokenMetrics
from app.services.errors import ExternalFetchError

from .normalize import normalize_candidate, normalize_candles, normalize_metrics


class TokenFeedClient:
    """Thin wrapper around the token/price data feed."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        graduating_path: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = base_url or str(settings.feed_base_url)
        self.graduating_path = graduating_path or settings.feed_graduating_path
        self.timeout = timeout or settings.feed_timeout_seconds
        key = api_key if api_key is not None else settings.feed_api_key
        headers = {"Accept": "application/json"}
        if key:
            headers["x-api-key"] = key
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=transport,
        )

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        logger.info("Feed GET {} params={}", path, params)
        try:
            response = self.client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise ExternalFetchError(f"feed request timed out: {path}", source="feed") from exc
        except httpx.HTTPStatusError as exc:
            raise ExternalFetchError(
                f"feed returned {exc.response.status_code} for {path}", source="feed"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalFetchError(f"feed request failed for {path}: {exc}", source="feed") from exc

    def list_candidates(self) -> list[TokenCandidate]:
        payload = self._get(self.graduating_path)
        if isinstance(payload, dict):
            payload = payload.get("tokens") or payload.get("data") or []
        if not isinstance(payload, list):
            return []
        return [normalize_candidate(item) for item in payload if isinstance(item, dict)]

    def iter_candidates(self) -> Iterator[TokenCandidate]:
        yield from self.list_candidates()

    def fetch_metrics(self, token_address: str) -> TokenMetrics:
        payload = self._get(f"/tokens/{token_address}")
        if not isinstance(payload, dict):
            raise ExternalFetchError(f"token {token_address} not found", source="feed")
        return normalize_metrics(payload, token_address)

    def fetch_candles(
        self,
        token_address: str,
        *,
        granularity: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> CandleSeries:
        params: dict[str, Any] = {"type": granularity}
        if start is not None:
            params["time_from"] = int(start.timestamp())
        if end is not None:
            params["time_to"] = int(end.timestamp())
        payload = self._get(f"/chart/{token_address}", params=params)
        candles = normalize_candles(payload)
        if limit is not None:
            candles = candles[:limit]
        return CandleSeries(token_address=token_address, granularity=granularity, candles=candles)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "TokenFeedClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
