"""Data models shared by ingestion, detection, and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..core.tranches import Tranche


@dataclass(slots=True, frozen=True)
class TransitionEvent:
    """A token entered a new tranche, or was priced for the first time."""

    mint: str
    tranche: Tranche
    market_cap: float
    previous_tranche: Optional[Tranche] = None

    @property
    def is_newly_bonded(self) -> bool:
        return self.previous_tranche is None


@dataclass(slots=True, frozen=True)
class PricedToken:
    """A held token with a resolvable price."""

    mint: str
    price: float
    market_cap: float


@dataclass(slots=True)
class PriceBatchResult:
    """Outcome of pricing a list of mints in bounded batches."""

    prices: Dict[str, float] = field(default_factory=dict)
    failed_mints: Tuple[str, ...] = ()
    failed_batches: int = 0
    total_batches: int = 0

    @property
    def is_partial(self) -> bool:
        return self.failed_batches > 0


@dataclass(slots=True)
class RunReport:
    """Summary of one orchestrator cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    held: List[str] = field(default_factory=list)
    priced: List[PricedToken] = field(default_factory=list)
    unpriced: List[str] = field(default_factory=list)
    events: List[TransitionEvent] = field(default_factory=list)
    failed_batches: int = 0
    notifications_failed: int = 0
    snapshot_saved: bool = False


__all__ = ["PriceBatchResult", "PricedToken", "RunReport", "TransitionEvent"]
