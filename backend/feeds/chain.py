"""JSON-RPC chain client and the treasury wallet that signs payouts."""

from __future__ import annotations

import base64
from itertools import count
from typing import Any, Callable

import httpx
from loguru import logger

from app.core.config import Settings, get_settings
from app.services.errors import ExternalFetchError, PayoutFailure, PayoutFailureReason

LAMPORTS_PER_SOL = 1_000_000_000

# (recipient, lamports, recent_blockhash) -> base64 signed transaction
TransactionBuilder = Callable[[str, int, str], str]


class SolanaRpcClient:
    """Minimal JSON-RPC client for the calls the payout path needs."""

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.rpc_url = rpc_url or str(settings.chain_rpc_url)
        self.timeout = timeout or settings.chain_timeout_seconds
        self.client = httpx.Client(timeout=self.timeout, transport=transport)
        self._ids = count(1)

    def _call(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC {} params={}", method, params)
        try:
            response = self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            raise ExternalFetchError(f"rpc {method} timed out", source="chain") from exc
        except httpx.HTTPStatusError as exc:
            raise ExternalFetchError(
                f"rpc {method} returned {exc.response.status_code}", source="chain"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalFetchError(f"rpc {method} failed: {exc}", source="chain") from exc

        if not isinstance(body, dict):
            raise ExternalFetchError(f"rpc {method} returned a malformed body", source="chain")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ExternalFetchError(f"rpc {method} rejected: {message}", source="chain")
        return body.get("result")

    @staticmethod
    def _value(result: Any) -> Any:
        if isinstance(result, dict) and "value" in result:
            return result["value"]
        return result

    def get_balance(self, address: str) -> int:
        return int(self._value(self._call("getBalance", [address, {"commitment": "confirmed"}])) or 0)

    def get_minimum_balance_for_rent_exemption(self, data_size: int) -> int:
        return int(self._call("getMinimumBalanceForRentExemption", [data_size]))

    def get_account_data_size(self, address: str) -> int:
        info = self._value(
            self._call("getAccountInfo", [address, {"encoding": "base64", "commitment": "confirmed"}])
        )
        if not isinstance(info, dict):
            return 0
        if isinstance(info.get("space"), int):
            return info["space"]
        data = info.get("data")
        if isinstance(data, list) and data and isinstance(data[0], str):
            return len(base64.b64decode(data[0]))
        return 0

    def get_latest_blockhash(self) -> str:
        value = self._value(self._call("getLatestBlockhash", [{"commitment": "confirmed"}]))
        if not isinstance(value, dict) or not value.get("blockhash"):
            raise ExternalFetchError("rpc getLatestBlockhash returned no blockhash", source="chain")
        return value["blockhash"]

    def send_transaction(self, signed_transaction: str) -> str:
        signature = self._call(
            "sendTransaction",
            [signed_transaction, {"encoding": "base64", "preflightCommitment": "confirmed"}],
        )
        if not isinstance(signature, str) or not signature:
            raise ExternalFetchError("rpc sendTransaction returned no signature", source="chain")
        return signature

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SolanaRpcClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TreasuryWallet:
    """Treasury signer: reserve accounting plus signed transfer submission.

    Signing is delegated to ``builder`` so key material never passes through
    this process's configuration layer.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        public_key: str,
        builder: TransactionBuilder,
        *,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.rpc = rpc
        self.public_key = public_key
        self.builder = builder
        self.base_fee_lamports = settings.payout_base_fee_lamports
        self.fee_buffer_lamports = settings.payout_fee_buffer_lamports
        self.rent_fallback_lamports = settings.payout_rent_fallback_lamports

    def balance(self) -> int:
        return self.rpc.get_balance(self.public_key)

    def rent_exempt_minimum(self) -> int:
        try:
            data_size = self.rpc.get_account_data_size(self.public_key)
            return self.rpc.get_minimum_balance_for_rent_exemption(data_size)
        except ExternalFetchError as exc:
            logger.warning(
                "Could not fetch rent-exempt minimum ({}); using fallback {} lamports",
                exc,
                self.rent_fallback_lamports,
            )
            return self.rent_fallback_lamports

    def required_reserve(self) -> int:
        rent = self.rent_exempt_minimum()
        reserve = rent + self.base_fee_lamports + self.fee_buffer_lamports
        logger.info(
            "Treasury reserve {} lamports (rent={}, fee={}, buffer={})",
            reserve,
            rent,
            self.base_fee_lamports,
            self.fee_buffer_lamports,
        )
        return reserve

    def transfer(self, recipient: str, lamports: int) -> str:
        blockhash = self.rpc.get_latest_blockhash()
        try:
            signed = self.builder(recipient, lamports, blockhash)
        except Exception as exc:  # noqa: BLE001
            raise PayoutFailure(
                PayoutFailureReason.SIGNER_UNAVAILABLE, f"could not sign transfer: {exc}"
            ) from exc
        return self.rpc.send_transaction(signed)
