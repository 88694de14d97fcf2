"""Improvement tracking shared by the plateau-driven callbacks."""

from __future__ import annotations

import math

from mlp_classifier.config import ThresholdMode


class PlateauTracker:
    """Tracks a monitored metric where lower is better.

    The first observed value initialises ``best`` without counting as a
    non-improving epoch. Afterwards ``value`` improves on ``best`` when
    ``best - value > min_delta`` (``threshold_mode="abs"``) or
    ``best - value > min_delta * |best|`` (``"rel"``). ``inclusive`` turns the
    strict comparison into ``>=`` so exact ties at the threshold count.

    Non-finite values never improve; a non-finite ``best`` is replaced by the
    next finite value.

    Args:
        min_delta: Minimum decrease that counts as an improvement.
        threshold_mode: ``"abs"`` or ``"rel"``.
        inclusive: Whether a decrease of exactly the threshold counts.
    """

    def __init__(
        self,
        min_delta: float = 0.0,
        threshold_mode: ThresholdMode = "abs",
        inclusive: bool = False,
    ) -> None:
        if min_delta < 0:
            raise ValueError(f"min_delta must be >= 0, got {min_delta}")
        if threshold_mode not in ("abs", "rel"):
            raise ValueError(f"Unknown threshold_mode: {threshold_mode!r}")
        self.min_delta = min_delta
        self.threshold_mode = threshold_mode
        self.inclusive = inclusive
        self.reset()

    def reset(self) -> None:
        self.history: list[float] = []
        self.best: float | None = None
        self.best_epoch: int | None = None
        self.epochs_since_improvement = 0

    def is_improvement(self, value: float) -> bool:
        if not math.isfinite(value):
            return False
        if self.best is None or not math.isfinite(self.best):
            return True
        threshold = self.min_delta
        if self.threshold_mode == "rel":
            threshold *= abs(self.best)
        decrease = self.best - value
        return decrease >= threshold if self.inclusive else decrease > threshold

    def update(self, epoch: int, value: float) -> bool:
        """Record ``value`` for ``epoch``; return True when it is a new best."""
        self.history.append(value)
        first = self.best is None
        if first or self.is_improvement(value):
            self.best = value
            self.best_epoch = epoch
            self.epochs_since_improvement = 0
            return True
        self.epochs_since_improvement += 1
        return False
