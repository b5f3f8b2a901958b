"""Batched token price lookups against the Raydium mint price API."""

from __future__ import annotations

import math
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import requests
from cachetools import TTLCache
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import PricingConfig, get_app_config
from ..datalake.schemas import PriceBatchResult
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS

DEFAULT_HEADERS = {"Accept": "application/json", "User-Agent": "solana-tranche-watch/0.1"}


class PriceSource(Protocol):
    def fetch_prices(self, mints: Iterable[str]) -> PriceBatchResult:
        ...


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    if size <= 0:
        raise ValueError("Batch size must be positive")
    return [list(items[idx : idx + size]) for idx in range(0, len(items), size)]


def parse_price(value: Any) -> Optional[float]:
    """Return a usable price from a Raydium ``data`` entry, or None when unpriced."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price < 0:
        return None
    return price


class RaydiumPriceSource:
    """Resolves USD prices for mints in bounded, concurrently issued batches.

    A batch that still fails after the configured retries contributes its
    mints to ``failed_mints`` instead of aborting the whole lookup.
    """

    def __init__(
        self,
        config: Optional[PricingConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().pricing
        self._session = session or requests.Session()
        self._logger = get_logger(__name__)
        self._url = f"{str(self._config.base_url).rstrip('/')}/{self._config.price_endpoint.lstrip('/')}"
        self._cache: TTLCache[str, float] = TTLCache(
            maxsize=4096, ttl=self._config.cache_ttl_seconds
        )
        self._cache_lock = threading.Lock()

    @property
    def url(self) -> str:
        return self._url

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._config.max_retry_attempts),
            wait=wait_exponential(multiplier=self._config.retry_backoff_seconds, max=10),
            retry=retry_if_exception_type((requests.RequestException, ValueError)),
            reraise=True,
        )

    def _get(self, mints: Sequence[str]) -> Dict[str, Any]:
        response = self._session.get(
            self._url,
            params={"mints": ",".join(mints)},
            headers=DEFAULT_HEADERS,
            timeout=self._config.http_timeout,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Unexpected Raydium payload type {type(payload).__name__}")
        if payload.get("success") is False:
            raise ValueError(f"Raydium reported failure: {payload.get('msg', 'unknown error')}")
        data = payload.get("data")
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Raydium data type {type(data).__name__}")
        return data

    def _fetch_batch(self, batch: List[str]) -> Tuple[List[str], Optional[Dict[str, float]]]:
        try:
            data = self._retrying()(self._get, batch)
        except (requests.RequestException, ValueError) as exc:
            self._logger.warning(
                "Error fetching prices from Raydium API for %d mints: %s",
                len(batch),
                exc,
                extra={"batch_head": batch[0] if batch else None},
            )
            METRICS.increment("pricing.batch_failures")
            return batch, None
        prices: Dict[str, float] = {}
        for mint in batch:
            price = parse_price(data.get(mint))
            if price is not None:
                prices[mint] = price
        return batch, prices

    def fetch_prices(self, mints: Iterable[str]) -> PriceBatchResult:
        ordered_unique = list(dict.fromkeys(mints))
        result = PriceBatchResult()
        if not ordered_unique:
            return result

        with self._cache_lock:
            cached = {mint: self._cache[mint] for mint in ordered_unique if mint in self._cache}
        missing = [mint for mint in ordered_unique if mint not in cached]
        batches = chunked(missing, self._config.batch_size)
        result.total_batches = len(batches)

        outcomes: List[Tuple[List[str], Optional[Dict[str, float]]]] = []
        workers = min(self._config.max_concurrent_batches, len(batches))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                outcomes.extend(executor.map(self._fetch_batch, batches))
        else:
            outcomes.extend(self._fetch_batch(batch) for batch in batches)

        fetched: Dict[str, float] = {}
        failed: List[str] = []
        for batch, prices in outcomes:
            if prices is None:
                failed.extend(batch)
                result.failed_batches += 1
                continue
            fetched.update(prices)

        if fetched:
            with self._cache_lock:
                for mint, price in fetched.items():
                    self._cache[mint] = price

        for mint in ordered_unique:
            if mint in cached:
                result.prices[mint] = cached[mint]
            elif mint in fetched:
                result.prices[mint] = fetched[mint]
        result.failed_mints = tuple(failed)
        METRICS.increment("pricing.batches", float(len(batches)))
        return result


__all__ = ["PriceSource", "RaydiumPriceSource", "chunked", "parse_price"]
