"""One watch cycle: holdings, prices, tranche changes, notifications, snapshot."""

from __future__ import annotations

import threading
import uuid
from typing import Dict, List, Optional, Sequence

from .config.settings import AppConfig, PartialFetchPolicy, get_app_config
from .core.detector import detect_transitions
from .datalake.export import CsvHoldingsExporter, HoldingsExporter
from .datalake.schemas import PricedToken, RunReport, TransitionEvent
from .datalake.snapshot_store import JsonSnapshotStore, SnapshotStore
from .errors import HoldingsUnavailableError, SnapshotCorruptedError
from .ingestion.holdings import HoldingsSource, SolanaHoldingsSource
from .ingestion.pricing import PriceSource, RaydiumPriceSource
from .monitoring.logger import get_logger, log_context
from .monitoring.metrics import METRICS, performance_monitor
from .notifications.telegram import LoggingNotifier, Notifier, TelegramNotifier
from .utils.constants import FIXED_TOKEN_SUPPLY, utc_now


def _direction(event: TransitionEvent) -> str:
    if event.previous_tranche is None:
        return "->"
    return "up to" if event.tranche.rank > event.previous_tranche.rank else "down to"


class RunGuard:
    """Single-slot guard; a second caller is turned away instead of queued."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


class TrancheOrchestrator:
    """Drives a full cycle against injected collaborators."""

    def __init__(
        self,
        holdings_source: HoldingsSource,
        price_source: PriceSource,
        notifier: Notifier,
        snapshot_store: SnapshotStore,
        exporter: Optional[HoldingsExporter] = None,
        *,
        owner: str,
        supply: float = FIXED_TOKEN_SUPPLY,
        partial_policy: PartialFetchPolicy = PartialFetchPolicy.CARRY_FORWARD,
        log_priced_tokens: bool = True,
    ) -> None:
        if supply <= 0:
            raise ValueError("Token supply constant must be positive")
        if not owner:
            raise ValueError("A wallet owner key is required")
        self._holdings = holdings_source
        self._prices = price_source
        self._notifier = notifier
        self._store = snapshot_store
        self._exporter = exporter
        self._owner = owner
        self._supply = float(supply)
        self._partial_policy = partial_policy
        self._log_priced_tokens = log_priced_tokens
        self._guard = RunGuard()
        self._logger = get_logger(__name__)

    @property
    def running(self) -> bool:
        return self._guard.busy

    def run_once(self) -> Optional[RunReport]:
        """Execute one cycle, or return None when another cycle is in flight."""
        if not self._guard.try_acquire():
            self._logger.warning("Previous run still in progress; skipping this trigger")
            METRICS.increment("orchestrator.run_skipped_overlap")
            return None
        try:
            with log_context(run_id=uuid.uuid4().hex[:12], owner=self._owner):
                with performance_monitor("orchestrator.run"):
                    return self._run()
        finally:
            self._guard.release()

    def _run(self) -> RunReport:
        report = RunReport(started_at=utc_now())
        self._logger.info("Running the tranche watch cycle")
        try:
            report.held = list(self._holdings.list_held_tokens(self._owner))
        except HoldingsUnavailableError:
            METRICS.increment("orchestrator.run_aborted.holdings")
            raise
        METRICS.gauge("tokens.held", len(report.held))
        if not report.held:
            self._logger.info("No tokens with a balance above 0.")
            report.finished_at = utc_now()
            return report

        batch = self._prices.fetch_prices(report.held)
        report.failed_batches = batch.failed_batches
        current = self._partition(report, batch.prices)
        if batch.is_partial:
            self._logger.warning(
                "%d of %d price batches failed; %d tokens treated as unpriced this run",
                batch.failed_batches,
                batch.total_batches,
                len(batch.failed_mints),
            )

        self._export(report)

        try:
            previous = self._store.load()
        except SnapshotCorruptedError:
            METRICS.increment("orchestrator.run_aborted.snapshot")
            self._logger.error("Snapshot is corrupt; aborting run without notifying or saving")
            raise

        report.events = detect_transitions(current, previous)
        METRICS.increment("transitions.detected", len(report.events))
        for event in report.events:
            with log_context(mint=event.mint, tranche=event.tranche.value):
                self._logger.info(
                    "Tranche change for %s: %s %s %s",
                    event.mint,
                    event.previous_tranche.value if event.previous_tranche else "unpriced",
                    _direction(event),
                    event.tranche.value,
                    extra={"market_cap": event.market_cap},
                )
                try:
                    self._notifier.notify(event.mint, event.tranche, event.market_cap)
                except Exception as exc:  # noqa: BLE001
                    report.notifications_failed += 1
                    METRICS.increment("notifications.failed")
                    self._logger.warning("Notification for %s failed: %s", event.mint, exc)

        self._store.save(self._next_snapshot(current, previous, batch.failed_mints))
        report.snapshot_saved = True

        if self._log_priced_tokens:
            self._logger.info("Coins with the highest market cap:")
            for token in report.priced:
                self._logger.info("Mint: %s, Market Cap: %s", token.mint, token.market_cap)
        report.finished_at = utc_now()
        return report

    def _next_snapshot(
        self,
        current: Dict[str, float],
        previous: Dict[str, float],
        failed_mints: Sequence[str],
    ) -> Dict[str, float]:
        if not failed_mints or self._partial_policy is PartialFetchPolicy.PERSIST:
            return current
        carried = {mint: previous[mint] for mint in failed_mints if mint in previous and mint not in current}
        if carried:
            self._logger.warning(
                "Pricing was incomplete; carrying forward previous caps for %d tokens", len(carried)
            )
        return {**current, **carried}

    def _partition(self, report: RunReport, prices: Dict[str, float]) -> Dict[str, float]:
        priced: List[PricedToken] = []
        current: Dict[str, float] = {}
        for mint in report.held:
            price = prices.get(mint)
            if price is None:
                report.unpriced.append(mint)
                continue
            token = PricedToken(mint=mint, price=price, market_cap=price * self._supply)
            priced.append(token)
            current[mint] = token.market_cap
        # Stable sort keeps holdings order among equal caps.
        priced.sort(key=lambda token: token.market_cap, reverse=True)
        report.priced = priced
        METRICS.gauge("tokens.priced", len(priced))
        METRICS.gauge("tokens.unpriced", len(report.unpriced))
        return current

    def _export(self, report: RunReport) -> None:
        if self._exporter is None:
            return
        try:
            self._exporter.export(report.priced, report.unpriced)
        except OSError as exc:
            METRICS.increment("export.failures")
            self._logger.warning("Failed to export holdings CSV files: %s", exc)


def build_orchestrator(config: Optional[AppConfig] = None, *, dry_run: bool = False) -> TrancheOrchestrator:
    """Wire the production collaborators from configuration."""

    cfg = config or get_app_config()
    if not cfg.wallet.public_key:
        raise ValueError("wallet.public_key (or SOLANA_PUBLIC_KEY) must be configured")
    notifier: Notifier
    if dry_run or not cfg.telegram.enabled:
        notifier = LoggingNotifier()
    else:
        notifier = TelegramNotifier(cfg.telegram)
    exporter = CsvHoldingsExporter(cfg.storage) if cfg.storage.export_enabled else None
    return TrancheOrchestrator(
        SolanaHoldingsSource(cfg.rpc),
        RaydiumPriceSource(cfg.pricing),
        notifier,
        JsonSnapshotStore(cfg.storage.snapshot_path),
        exporter,
        owner=cfg.wallet.public_key,
        supply=cfg.pricing.supply_constant,
        partial_policy=cfg.orchestrator.partial_fetch_policy,
        log_priced_tokens=cfg.monitoring.log_priced_tokens,
    )


__all__ = ["RunGuard", "TrancheOrchestrator", "build_orchestrator"]
