"""Wallet token holdings fetched over Solana JSON-RPC."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol, Sequence

from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.types import TokenAccountOpts
from solders.pubkey import Pubkey
from tenacity import RetryError, Retrying, stop_after_attempt, wait_fixed

from ..config.settings import RPCConfig, get_app_config
from ..errors import HoldingsUnavailableError
from ..monitoring.logger import get_logger


class HoldingsSource(Protocol):
    def list_held_tokens(self, owner: str) -> List[str]:
        ...


def _normalize_response(result: Any) -> Dict[str, Any]:
    if isinstance(result, dict):
        return result
    if hasattr(result, "to_json"):
        payload = result.to_json()
        if isinstance(payload, str):
            payload = json.loads(payload)
        if isinstance(payload, dict):
            return payload
    raise ValueError(f"Unexpected RPC response type {type(result).__name__}")


def _ui_amount(token_amount: Dict[str, Any]) -> float:
    ui_amount = token_amount.get("uiAmount")
    if ui_amount is not None:
        try:
            return float(ui_amount)
        except (TypeError, ValueError):
            pass
    try:
        return int(token_amount.get("amount", 0)) / (10 ** int(token_amount.get("decimals", 0)))
    except (TypeError, ValueError):
        return 0.0


def extract_held_mints(response: Dict[str, Any]) -> List[str]:
    """Return the mints of parsed token accounts holding a positive balance.

    Mints are de-duplicated, keeping the order in which accounts were listed.
    """
    result = response.get("result", response)
    accounts = result.get("value", []) if isinstance(result, dict) else []
    mints: List[str] = []
    seen: set[str] = set()
    for entry in accounts:
        try:
            info = entry["account"]["data"]["parsed"]["info"]
        except (KeyError, TypeError):
            continue
        mint = info.get("mint")
        if not mint or mint in seen:
            continue
        if _ui_amount(info.get("tokenAmount") or {}) > 0:
            mints.append(mint)
            seen.add(mint)
    return mints


class SolanaHoldingsSource:
    """Lists SPL token mints held by a wallet, trying each RPC endpoint in turn."""

    def __init__(
        self,
        config: Optional[RPCConfig] = None,
        clients: Optional[Sequence[Client]] = None,
    ) -> None:
        self._config = config or get_app_config().rpc
        self._endpoints = [str(self._config.primary_url), *map(str, self._config.fallback_urls)]
        if clients is None:
            clients = [
                Client(
                    endpoint,
                    commitment=Commitment(self._config.commitment),
                    timeout=self._config.request_timeout,
                )
                for endpoint in self._endpoints
            ]
        self._clients = list(clients)
        self._program_id = Pubkey.from_string(self._config.token_program_id)
        self._logger = get_logger(__name__)

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._config.max_retry_attempts),
            wait=wait_fixed(self._config.retry_backoff_seconds),
        )

    def _fetch_accounts(self, owner: Pubkey) -> Dict[str, Any]:
        last_exc: Optional[Exception] = None
        for endpoint, client in zip(self._endpoints, self._clients):
            try:
                response = client.get_token_accounts_by_owner_json_parsed(
                    owner, TokenAccountOpts(program_id=self._program_id)
                )
                return _normalize_response(response)
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                self._logger.warning("Token account listing failed on %s: %s", endpoint, exc)
        if last_exc is not None:
            raise last_exc
        raise RuntimeError("No RPC clients configured")

    def list_held_tokens(self, owner: str) -> List[str]:
        try:
            owner_key = Pubkey.from_string(owner)
        except ValueError as exc:
            raise HoldingsUnavailableError(f"Invalid wallet public key {owner!r}") from exc
        try:
            response = self._retrying()(self._fetch_accounts, owner_key)
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            raise HoldingsUnavailableError(
                f"Failed to fetch token balances for {owner}: {cause}"
            ) from cause
        mints = extract_held_mints(response)
        self._logger.debug("Wallet %s holds %d tokens with positive balance", owner, len(mints))
        return mints


__all__ = ["HoldingsSource", "SolanaHoldingsSource", "extract_held_mints"]
