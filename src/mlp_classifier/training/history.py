"""Append-only per-epoch training history."""

from __future__ import annotations

import json
import math
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel


class EpochRecord(BaseModel, frozen=True):
    """Metrics for one completed epoch.

    ``learning_rate`` is the rate used for every optimizer step of this
    epoch; a reduction decided at its end shows up in the next record.
    """

    epoch: int
    train_loss: float
    train_accuracy: float
    val_loss: float
    val_accuracy: float
    learning_rate: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.train_loss) and math.isfinite(self.val_loss)


def _json_safe(value: float) -> float | None:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


class TrainingHistory:
    """Ordered epoch records, frozen once the run that produced them ends."""

    def __init__(self) -> None:
        self._records: list[EpochRecord] = []
        self._frozen = False

    def append(self, record: EpochRecord) -> None:
        if self._frozen:
            raise RuntimeError("TrainingHistory is frozen; the run has ended")
        self._records.append(record)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def records(self) -> tuple[EpochRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[EpochRecord]:
        return iter(tuple(self._records))

    def __getitem__(self, idx: int) -> EpochRecord:
        return self._records[idx]

    def column(self, name: str) -> list[float]:
        """All values of one metric, e.g. ``history.column("val_loss")``."""
        if name not in EpochRecord.model_fields:
            raise KeyError(f"Unknown history column: {name!r}")
        return [getattr(record, name) for record in self._records]

    def to_dict(self) -> dict[str, list[Any]]:
        """Column-oriented dict, the shape plotting and reporting code expects.

        Non-finite metrics become None so the result stays valid JSON.
        """
        return {
            name: [_json_safe(value) for value in self.column(name)]
            for name in EpochRecord.model_fields
        }

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, allow_nan=False)
        logger.info(f"Saved training history ({len(self)} epochs) to {path}")
