from __future__ import annotations

import base64
import json
from datetime import datetime, timezone

import httpx
import pytest

from app.services.errors import ExternalFetchError
from feeds import SolanaRpcClient, TokenFeedClient
from feeds.normalize import normalize_candidate, normalize_candles

GRADUATING = [
    {
        "token": {
            "mint": "MINT_A",
            "name": "Alpha",
            "symbol": "ALP",
            "image": "https://img.example/a.png",
            "creation": {"created_time": 1_700_000_000},
        },
        "pools": [{"marketCap": {"usd": 412_000.5}, "txns": {"volume24h": 88_000}}],
        "holders": 731,
    },
    {"token": {"mint": "MINT_B", "symbol": "BET", "createdAt": "2023-11-14T22:13:20Z"}, "pools": []},
]


def _feed(handler, settings) -> TokenFeedClient:
    return TokenFeedClient(transport=httpx.MockTransport(handler), settings=settings)


def test_normalize_candidate_reads_nested_fields():
    candidate = normalize_candidate(GRADUATING[0])
    assert candidate.mint == "MINT_A"
    assert candidate.display_name == "Alpha"
    assert candidate.market_cap == pytest.approx(412_000.5)
    assert candidate.volume_24h == 88_000
    assert candidate.holders == 731
    assert candidate.created_time == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


def test_normalize_candidate_tolerates_sparse_payload():
    candidate = normalize_candidate(GRADUATING[1])
    assert candidate.display_name == "BET"
    assert candidate.market_cap == 0.0
    assert candidate.holders == 0
    assert candidate.created_time == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_list_candidates_sends_api_key(test_settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"tokens": GRADUATING})

    with _feed(handler, test_settings) as feed:
        candidates = feed.list_candidates()

    assert [candidate.mint for candidate in candidates] == ["MINT_A", "MINT_B"]
    assert seen[0].url.path == "/tokens/multi/graduating"
    assert seen[0].headers["x-api-key"] == "test-key"


def test_fetch_metrics(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/tokens/MINT_A"
        return httpx.Response(200, json=GRADUATING[0])

    metrics = _feed(handler, test_settings).fetch_metrics("MINT_A")

    assert metrics.mint == "MINT_A"
    assert metrics.holders == 731
    assert metrics.volume_24h == 88_000


def test_fetch_candles_sorted_and_windowed(test_settings):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(request.url.params)
        return httpx.Response(
            200,
            json={
                "oclhv": [
                    {"time": 1_700_000_600, "open": 1, "close": 2, "high": 3, "low": 0.5},
                    {"time": 1_700_000_300, "open": 1, "close": 1, "high": 1, "low": 1},
                    {"open": 9},
                ]
            },
        )

    start = datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
    end = datetime.fromtimestamp(1_700_003_600, tz=timezone.utc)
    series = _feed(handler, test_settings).fetch_candles("MINT_A", granularity="5m", start=start, end=end)

    assert [candle.time for candle in series.candles] == [1_700_000_300, 1_700_000_600]
    assert series.candles[1].high == 3
    assert captured == {"type": "5m", "time_from": "1700000000", "time_to": "1700003600"}


def test_normalize_candles_drops_entries_without_extremes():
    candles = normalize_candles(
        [
            {"time": 1_700_000_000, "open": 1, "close": 1, "high": 900_000},
            {"time": 1_700_000_300, "open": 1, "close": 1, "high": "n/a", "low": 1},
            {"time": 1_700_000_600, "open": 1, "close": 1, "high": 2, "low": "0"},
        ]
    )

    assert [(candle.time, candle.high, candle.low) for candle in candles] == [(1_700_000_600, 2.0, 0.0)]


def test_feed_http_error_is_wrapped(test_settings):
    feed = _feed(lambda request: httpx.Response(500, text="boom"), test_settings)
    with pytest.raises(ExternalFetchError) as excinfo:
        feed.fetch_metrics("MINT_A")
    assert excinfo.value.source == "feed"
    assert "500" in str(excinfo.value)


def test_feed_timeout_is_wrapped(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ExternalFetchError, match="timed out"):
        _feed(handler, test_settings).list_candidates()


def _rpc(results: dict, settings, calls: list | None = None) -> SolanaRpcClient:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if calls is not None:
            calls.append(payload)
        body = results[payload["method"]]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], **body})

    return SolanaRpcClient(transport=httpx.MockTransport(handler), settings=settings)


def test_rpc_get_balance(test_settings):
    calls = []
    rpc = _rpc({"getBalance": {"result": {"context": {"slot": 1}, "value": 42}}}, test_settings, calls)

    assert rpc.get_balance("TREASURY") == 42
    assert calls[0]["params"][0] == "TREASURY"


def test_rpc_error_body_raises(test_settings):
    rpc = _rpc({"getBalance": {"error": {"code": -32602, "message": "invalid address"}}}, test_settings)
    with pytest.raises(ExternalFetchError, match="invalid address") as excinfo:
        rpc.get_balance("nope")
    assert excinfo.value.source == "chain"


def test_rpc_account_data_size(test_settings):
    data = base64.b64encode(b"\x00" * 165).decode()
    rpc = _rpc(
        {"getAccountInfo": {"result": {"value": {"data": [data, "base64"], "lamports": 1}}}},
        test_settings,
    )
    assert rpc.get_account_data_size("TREASURY") == 165


def test_rpc_send_transaction(test_settings):
    rpc = _rpc(
        {
            "getLatestBlockhash": {"result": {"value": {"blockhash": "HASH", "lastValidBlockHeight": 9}}},
            "sendTransaction": {"result": "5igna7ure"},
        },
        test_settings,
    )
    assert rpc.get_latest_blockhash() == "HASH"
    assert rpc.send_transaction("c2lnbmVk") == "5igna7ure"
