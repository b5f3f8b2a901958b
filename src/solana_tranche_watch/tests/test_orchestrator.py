"""Tests for the run orchestrator."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

import pytest

from solana_tranche_watch.config import settings
from solana_tranche_watch.config.settings import PartialFetchPolicy
from solana_tranche_watch.core.tranches import Tranche
from solana_tranche_watch.datalake.export import CsvHoldingsExporter
from solana_tranche_watch.datalake.schemas import PriceBatchResult
from solana_tranche_watch.datalake.snapshot_store import JsonSnapshotStore
from solana_tranche_watch.errors import (
    HoldingsUnavailableError,
    NotificationError,
    SnapshotCorruptedError,
)
from solana_tranche_watch.monitoring.metrics import METRICS
from solana_tranche_watch.orchestrator import TrancheOrchestrator

OWNER = "11111111111111111111111111111111"
SUPPLY = 1_000_000_000

class FakeHoldingsSource:
    def __init__(self, mints: list[str]) -> None:
        self.mints = mints
        self.owners: list[str] = []

    def list_held_tokens(self, owner: str) -> list[str]:
        self.owners.append(owner)
        return list(self.mints)

class FakePriceSource:
    """Returns market caps expressed as prices for the fixed supply."""

    def __init__(self, caps: dict[str, float], failed: Iterable[str] = ()) -> None:
        self.caps = caps
        self.failed = tuple(failed)
        self.requests: list[list[str]] = []

    def fetch_prices(self, mints) -> PriceBatchResult:
        mints = list(mints)
        self.requests.append(mints)
        prices = {
            mint: self.caps[mint] / SUPPLY
            for mint in mints
            if mint in self.caps and mint not in self.failed
        }
        return PriceBatchResult(
            prices=prices,
            failed_mints=self.failed,
            failed_batches=1 if self.failed else 0,
            total_batches=2 if self.failed else 1,
        )

class RecordingNotifier:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.sent: list[tuple[str, Tranche, float]] = []

    def notify(self, mint: str, tranche: Tranche, market_cap: float) -> None:
        if mint in self.fail_for:
            raise NotificationError(f"cannot deliver {mint}")
        self.sent.append((mint, tranche, market_cap))

def _orchestrator(
    tmp_path: Path,
    holdings: FakeHoldingsSource,
    prices: FakePriceSource,
    notifier: RecordingNotifier,
    *,
    exporter=None,
    partial_policy: PartialFetchPolicy = PartialFetchPolicy.CARRY_FORWARD,
) -> tuple[TrancheOrchestrator, JsonSnapshotStore]:
    store = JsonSnapshotStore(tmp_path / "tmp_data_previous.json")
    orchestrator = TrancheOrchestrator(
        holdings,
        prices,
        notifier,
        store,
        exporter,
        owner=OWNER,
        supply=SUPPLY,
        partial_policy=partial_policy,
    )
    return orchestrator, store

def test_first_and_second_run_scenario(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["A", "B"])
    prices = FakePriceSource({"A": 50_000.0, "B": 2_000_000.0})
    notifier = RecordingNotifier()
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, notifier)

    first = orchestrator.run_once()

    assert first is not None
    assert [(mint, tranche) for mint, tranche, _ in notifier.sent] == [
        ("A", Tranche.UNBONDED_BONDED),
        ("B", Tranche.UNBONDED_BONDED),
    ]
    assert store.load() == pytest.approx({"A": 50_000.0, "B": 2_000_000.0})
    assert first.snapshot_saved
    assert holdings.owners == [OWNER]

    notifier.sent.clear()
    prices.caps["A"] = 150_000.0

    second = orchestrator.run_once()

    assert second is not None
    assert len(notifier.sent) == 1
    mint, tranche, cap = notifier.sent[0]
    assert (mint, tranche) == ("A", Tranche.UP_TO_100K)
    assert cap == pytest.approx(150_000.0)
    assert store.load() == pytest.approx({"A": 150_000.0, "B": 2_000_000.0})

def test_snapshot_saved_even_without_transitions(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["A"])
    prices = FakePriceSource({"A": 450_000.0})
    notifier = RecordingNotifier()
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, notifier)
    store.save({"A": 420_000.0})

    report = orchestrator.run_once()

    assert report is not None and report.events == []
    assert notifier.sent == []
    assert store.load() == pytest.approx({"A": 450_000.0})

def test_unpriced_and_dropped_tokens_leave_the_snapshot(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["A", "U"])
    prices = FakePriceSource({"A": 700_000.0})
    notifier = RecordingNotifier()
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, notifier)
    store.save({"A": 600_000.0, "Gone": 10_000.0})

    report = orchestrator.run_once()

    assert report is not None
    assert report.unpriced == ["U"]
    assert notifier.sent == []
    assert store.load() == pytest.approx({"A": 700_000.0})

def test_priced_tokens_are_sorted_and_exported(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["Small", "U1", "Big", "Mid", "U2"])
    prices = FakePriceSource({"Small": 10_000.0, "Big": 25_000_000.0, "Mid": 800_000.0})
    exporter = CsvHoldingsExporter(settings.StorageConfig(export_dir=tmp_path / "out"))
    orchestrator, _ = _orchestrator(tmp_path, holdings, prices, RecordingNotifier(), exporter=exporter)

    report = orchestrator.run_once()

    assert report is not None
    assert [token.mint for token in report.priced] == ["Big", "Mid", "Small"]
    with exporter.bonded_path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0] == ["Mint", "MarketCap"]
    assert [row[0] for row in rows[1:]] == ["Big", "Mid", "Small"]
    assert float(rows[1][1]) == pytest.approx(25_000_000.0)
    unbonded = exporter.unbonded_path.read_text(encoding="utf-8").splitlines()
    assert unbonded == ["Mint", "U1", "U2"]

def test_notifier_failure_does_not_block_persistence(tmp_path: Path) -> None:
    METRICS.reset()
    holdings = FakeHoldingsSource(["A", "B"])
    prices = FakePriceSource({"A": 200_000.0, "B": 300_000.0})
    notifier = RecordingNotifier(fail_for={"A"})
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, notifier)

    report = orchestrator.run_once()

    assert report is not None
    assert report.notifications_failed == 1
    assert [mint for mint, _, _ in notifier.sent] == ["B"]
    assert set(store.load()) == {"A", "B"}
    assert METRICS.get("notifications.failed") == 1

def test_corrupt_snapshot_aborts_before_notifying(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["A"])
    prices = FakePriceSource({"A": 200_000.0})
    notifier = RecordingNotifier()
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, notifier)
    store.path.write_text("{oops", encoding="utf-8")

    with pytest.raises(SnapshotCorruptedError):
        orchestrator.run_once()

    assert notifier.sent == []
    assert store.path.read_text(encoding="utf-8") == "{oops"
    assert not orchestrator.running

def test_holdings_failure_aborts_run(tmp_path: Path) -> None:
    class BrokenHoldings:
        def list_held_tokens(self, owner: str) -> list[str]:
            raise HoldingsUnavailableError("rpc down")

    prices = FakePriceSource({})
    orchestrator, store = _orchestrator(tmp_path, BrokenHoldings(), prices, RecordingNotifier())
    store.save({"A": 1.0})

    with pytest.raises(HoldingsUnavailableError):
        orchestrator.run_once()

    assert prices.requests == []
    assert store.load() == {"A": 1.0}

def test_empty_wallet_leaves_snapshot_untouched(tmp_path: Path) -> None:
    prices = FakePriceSource({})
    orchestrator, store = _orchestrator(tmp_path, FakeHoldingsSource([]), prices, RecordingNotifier())
    store.save({"A": 1.0})

    report = orchestrator.run_once()

    assert report is not None and report.held == []
    assert not report.snapshot_saved
    assert prices.requests == []
    assert store.load() == {"A": 1.0}

def test_partial_pricing_carries_forward_failed_mints(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["A", "B", "C"])
    prices = FakePriceSource({"A": 600_000.0, "B": 2_000_000.0, "C": 50_000.0}, failed=["B"])
    notifier = RecordingNotifier()
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, notifier)
    store.save({"A": 400_000.0, "B": 2_000_000.0})

    report = orchestrator.run_once()

    assert report is not None
    assert report.failed_batches == 1
    assert report.unpriced == ["B"]
    assert [(mint, tranche) for mint, tranche, _ in notifier.sent] == [
        ("A", Tranche.FROM_100K_TO_500K),
        ("C", Tranche.UNBONDED_BONDED),
    ]
    assert report.snapshot_saved
    assert store.load() == pytest.approx({"A": 600_000.0, "B": 2_000_000.0, "C": 50_000.0})

def test_recovered_pricing_does_not_repeat_notifications(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["A", "B", "C"])
    prices = FakePriceSource({"A": 600_000.0, "B": 2_000_000.0, "C": 50_000.0}, failed=["B"])
    notifier = RecordingNotifier()
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, notifier)
    store.save({"A": 400_000.0, "B": 2_000_000.0})

    orchestrator.run_once()
    notifier.sent.clear()
    prices.failed = ()
    report = orchestrator.run_once()

    assert report is not None and report.events == []
    assert notifier.sent == []
    assert store.load() == pytest.approx({"A": 600_000.0, "B": 2_000_000.0, "C": 50_000.0})

def test_failed_mint_missing_from_previous_snapshot_stays_absent(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["A", "B"])
    prices = FakePriceSource({"A": 600_000.0, "B": 2_000_000.0}, failed=["B"])
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, RecordingNotifier())
    store.save({"A": 600_000.0})

    orchestrator.run_once()

    assert store.load() == pytest.approx({"A": 600_000.0})

def test_partial_pricing_persists_when_configured(tmp_path: Path) -> None:
    holdings = FakeHoldingsSource(["A", "B"])
    prices = FakePriceSource({"A": 600_000.0, "B": 2_000_000.0}, failed=["B"])
    orchestrator, store = _orchestrator(
        tmp_path,
        holdings,
        prices,
        RecordingNotifier(),
        partial_policy=PartialFetchPolicy.PERSIST,
    )
    store.save({"A": 400_000.0, "B": 2_000_000.0})

    report = orchestrator.run_once()

    assert report is not None and report.snapshot_saved
    assert store.load() == pytest.approx({"A": 600_000.0})

def test_overlapping_trigger_is_dropped(tmp_path: Path) -> None:
    METRICS.reset()
    nested_results: list[object] = []

    class ReentrantHoldings(FakeHoldingsSource):
        def list_held_tokens(self, owner: str) -> list[str]:
            nested_results.append(orchestrator.run_once())
            return super().list_held_tokens(owner)

    holdings = ReentrantHoldings(["A"])
    orchestrator, _ = _orchestrator(
        tmp_path, holdings, FakePriceSource({"A": 1_000.0}), RecordingNotifier()
    )

    report = orchestrator.run_once()

    assert report is not None
    assert nested_results == [None]
    assert METRICS.get("orchestrator.run_skipped_overlap") == 1
    assert not orchestrator.running

def test_invalid_construction_arguments(tmp_path: Path) -> None:
    store = JsonSnapshotStore(tmp_path / "s.json")
    with pytest.raises(ValueError):
        TrancheOrchestrator(
            FakeHoldingsSource([]), FakePriceSource({}), RecordingNotifier(), store, owner=OWNER, supply=0
        )
    with pytest.raises(ValueError):
        TrancheOrchestrator(
            FakeHoldingsSource([]), FakePriceSource({}), RecordingNotifier(), store, owner=""
        )


def test_transition_log_states_direction(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    holdings = FakeHoldingsSource(["Up", "Down"])
    prices = FakePriceSource({"Up": 2_000_000.0, "Down": 90_000.0})
    orchestrator, store = _orchestrator(tmp_path, holdings, prices, RecordingNotifier())
    store.save({"Up": 200_000.0, "Down": 4_000_000.0})

    with caplog.at_level("INFO", logger="solana_tranche_watch.orchestrator"):
        orchestrator.run_once()

    messages = [record.getMessage() for record in caplog.records]
    assert "Tranche change for Up: 0-100k up to 500k-1M" in messages
    assert "Tranche change for Down: 1M-3M down to unbonded-bonded" in messages
