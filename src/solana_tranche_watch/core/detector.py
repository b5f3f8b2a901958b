"""Tranche transition detection between two market-cap snapshots."""

from __future__ import annotations

from typing import List, Mapping

from ..datalake.schemas import TransitionEvent
from .tranches import Tranche, classify_market_cap


def detect_transitions(
    current: Mapping[str, float],
    previous: Mapping[str, float],
) -> List[TransitionEvent]:
    """Return the notify-worthy changes from ``previous`` to ``current``.

    A mint missing from ``previous`` is reported as newly bonded, whatever its
    cap. A mint present in both is reported only when its tranche changed.
    Mints that only exist in ``previous`` are not reported. Events follow the
    iteration order of ``current``.
    """
    events: List[TransitionEvent] = []
    for mint, market_cap in current.items():
        previous_cap = previous.get(mint)
        if previous_cap is None:
            events.append(
                TransitionEvent(mint=mint, tranche=Tranche.UNBONDED_BONDED, market_cap=market_cap)
            )
            continue
        current_tranche = classify_market_cap(market_cap)
        previous_tranche = classify_market_cap(previous_cap)
        if current_tranche is not previous_tranche:
            events.append(
                TransitionEvent(
                    mint=mint,
                    tranche=current_tranche,
                    market_cap=market_cap,
                    previous_tranche=previous_tranche,
                )
            )
    return events


__all__ = ["detect_transitions"]
