"""Persistence of the market-cap snapshot compared between runs."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Dict, Mapping, Protocol

from ..errors import SnapshotCorruptedError
from ..monitoring.logger import get_logger
from ..utils.fs import atomic_write_text


class SnapshotStore(Protocol):
    """Interface for the comparison state read at run start and replaced at run end."""

    def load(self) -> Dict[str, float]:
        ...

    def save(self, market_caps: Mapping[str, float]) -> None:
        ...


class JsonSnapshotStore:
    """Stores the mint -> market cap mapping as a single JSON object.

    ``load`` returns an empty mapping when no snapshot was written yet and
    raises :class:`SnapshotCorruptedError` when the file exists but cannot be
    parsed into a mapping of mint strings to finite numbers. ``save`` replaces
    the whole file atomically.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._logger = get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> Dict[str, float]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._logger.info("No previous snapshot at %s; treating run as first run", self._path)
            return {}
        except (OSError, UnicodeDecodeError) as exc:
            raise SnapshotCorruptedError(self._path, f"unreadable ({exc})") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SnapshotCorruptedError(self._path, f"invalid JSON ({exc.msg})") from exc
        if not isinstance(payload, dict):
            raise SnapshotCorruptedError(
                self._path, f"expected an object, found {type(payload).__name__}"
            )

        market_caps: Dict[str, float] = {}
        for mint, value in payload.items():
            if not mint:
                raise SnapshotCorruptedError(self._path, "empty mint key")
            # bool is an int subclass but never a valid cap
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise SnapshotCorruptedError(self._path, f"non-numeric market cap for {mint}")
            if not math.isfinite(value):
                raise SnapshotCorruptedError(self._path, f"non-finite market cap for {mint}")
            market_caps[mint] = float(value)
        self._logger.debug("Loaded snapshot with %d tokens from %s", len(market_caps), self._path)
        return market_caps

    def save(self, market_caps: Mapping[str, float]) -> None:
        payload = {str(mint): float(value) for mint, value in market_caps.items()}
        invalid = [mint for mint, value in payload.items() if not math.isfinite(value)]
        if invalid:
            raise ValueError(f"Refusing to persist non-finite market caps for {invalid}")
        atomic_write_text(self._path, json.dumps(payload, indent=2))
        self._logger.info("Saved snapshot with %d tokens to %s", len(payload), self._path)


__all__ = ["JsonSnapshotStore", "SnapshotStore"]
