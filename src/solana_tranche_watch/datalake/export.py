"""CSV export of the priced and unpriced holdings of a run."""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Iterable, Optional, Protocol, Sequence

from ..config.settings import StorageConfig, get_app_config
from ..monitoring.logger import get_logger
from ..utils.fs import atomic_write_text
from .schemas import PricedToken


class HoldingsExporter(Protocol):
    def export(self, priced: Sequence[PricedToken], unpriced: Sequence[str]) -> None:
        ...


def _render_csv(header: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


class CsvHoldingsExporter:
    """Writes ``Mint,MarketCap`` for bonded tokens and ``Mint`` for unbonded ones."""

    def __init__(self, config: Optional[StorageConfig] = None) -> None:
        self._config = config or get_app_config().storage
        self._logger = get_logger(__name__)

    @property
    def bonded_path(self) -> Path:
        return Path(self._config.export_dir) / self._config.bonded_csv_name

    @property
    def unbonded_path(self) -> Path:
        return Path(self._config.export_dir) / self._config.unbonded_csv_name

    def export(self, priced: Sequence[PricedToken], unpriced: Sequence[str]) -> None:
        # Callers pass priced tokens already sorted by market cap, descending.
        bonded = _render_csv(
            ("Mint", "MarketCap"),
            ((token.mint, repr(token.market_cap)) for token in priced),
        )
        unbonded = _render_csv(("Mint",), ((mint,) for mint in unpriced))
        atomic_write_text(self.bonded_path, bonded)
        self._logger.info("Data saved to %s", self.bonded_path, extra={"rows": len(priced)})
        atomic_write_text(self.unbonded_path, unbonded)
        self._logger.info("Data saved to %s", self.unbonded_path, extra={"rows": len(unpriced)})


__all__ = ["CsvHoldingsExporter", "HoldingsExporter"]
