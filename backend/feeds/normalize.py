from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser

from app.domain import Candle, TokenCandidate, TokenMetrics


def _as_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return 0.0


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


def _as_int(value: Any) -> int:
    return int(_as_float(value))


def _parse_timestamp(value: Any) -> datetime | None:
    if value in (None, "", 0):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = float(value)
        # Some payloads report milliseconds.
        if seconds > 1e12:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return _parse_timestamp(int(stripped))
        try:
            parsed = date_parser.isoparse(stripped)
        except (ValueError, OverflowError):
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _primary_pool(raw: dict[str, Any]) -> dict[str, Any]:
    pools = raw.get("pools")
    if isinstance(pools, list) and pools and isinstance(pools[0], dict):
        return pools[0]
    return {}


def _nested(mapping: dict[str, Any], *keys: str) -> Any:
    current: Any = mapping
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def normalize_candidate(raw: dict[str, Any]) -> TokenCandidate:
    token = raw.get("token") if isinstance(raw.get("token"), dict) else {}
    pool = _primary_pool(raw)

    created = _nested(token, "creation", "created_time") or token.get("createdAt")

    return TokenCandidate(
        mint=token.get("mint") or None,
        name=token.get("name") or None,
        symbol=token.get("symbol") or None,
        image=token.get("image") or None,
        market_cap=_as_float(_nested(pool, "marketCap", "usd")),
        volume_24h=_as_float(_nested(pool, "txns", "volume24h")),
        holders=_as_int(raw.get("holders")),
        created_time=_parse_timestamp(created),
        raw_data=raw,
    )


def normalize_metrics(raw: dict[str, Any], mint: str) -> TokenMetrics:
    candidate = normalize_candidate(raw)
    return TokenMetrics(
        mint=candidate.mint or mint,
        market_cap=candidate.market_cap,
        volume_24h=candidate.volume_24h,
        holders=candidate.holders,
    )


def normalize_candles(raw: Any) -> list[Candle]:
    if isinstance(raw, dict):
        entries = raw.get("oclhv") or raw.get("candles") or []
    elif isinstance(raw, list):
        entries = raw
    else:
        entries = []

    candles: list[Candle] = []
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("time") is None:
            continue
        # threshold checks need both extremes
        high = _optional_float(entry.get("high"))
        low = _optional_float(entry.get("low"))
        if high is None or low is None:
            continue
        candles.append(
            Candle(
                time=_as_int(entry.get("time")),
                open=_as_float(entry.get("open")),
                high=high,
                low=low,
                close=_as_float(entry.get("close")),
                volume=_as_float(entry.get("volume")),
            )
        )
    candles.sort(key=lambda candle: candle.time)
    return candles
