"""Learning-rate reduction on a plateaued validation loss."""

from __future__ import annotations

from enum import Enum

from loguru import logger

from mlp_classifier.callbacks.base import PlateauTracker
from mlp_classifier.config import ReduceLROnPlateauConfig, ThresholdMode


class ReduceLROnPlateauState(str, Enum):
    TRACKING = "tracking"
    PATIENT = "patient"


class ReduceLROnPlateau:
    """Multiply the learning rate by ``factor`` when the monitored loss stalls.

    After more than ``patience`` non-improving epochs the rate is reduced,
    clamped at ``min_lr``, and the counter starts over. Training continues.

    Args:
        patience: Non-improving epochs tolerated before reducing.
        factor: Multiplier in ``(0, 1)``.
        min_lr: Lower bound for the learning rate.
        min_delta: Minimum decrease that counts as an improvement.
        threshold_mode: ``"abs"`` or ``"rel"`` interpretation of ``min_delta``.
        inclusive: Count a decrease of exactly ``min_delta`` as improvement.
    """

    def __init__(
        self,
        patience: int = 2,
        factor: float = 0.1,
        min_lr: float = 0.0,
        min_delta: float = 0.0001,
        threshold_mode: ThresholdMode = "abs",
        inclusive: bool = False,
    ) -> None:
        if patience < 0:
            raise ValueError(f"patience must be >= 0, got {patience}")
        if not 0.0 < factor < 1.0:
            raise ValueError(f"factor must be in (0, 1), got {factor}")
        if min_lr < 0:
            raise ValueError(f"min_lr must be >= 0, got {min_lr}")
        self.patience = patience
        self.factor = factor
        self.min_lr = min_lr
        self.tracker = PlateauTracker(min_delta, threshold_mode, inclusive)
        self.state = ReduceLROnPlateauState.TRACKING
        self.initial_learning_rate: float | None = None
        self.learning_rate: float | None = None
        self.reductions: list[tuple[int, float]] = []

    @classmethod
    def from_config(cls, config: ReduceLROnPlateauConfig) -> ReduceLROnPlateau:
        return cls(
            patience=config.patience,
            factor=config.factor,
            min_lr=config.min_lr,
            min_delta=config.min_delta,
            threshold_mode=config.threshold_mode,
            inclusive=config.inclusive,
        )

    def reset(self, learning_rate: float) -> None:
        self.tracker.reset()
        self.state = ReduceLROnPlateauState.TRACKING
        self.initial_learning_rate = learning_rate
        self.learning_rate = learning_rate
        self.reductions = []

    @property
    def multiplier(self) -> float:
        """Current rate as a fraction of the rate the run started with."""
        if self.learning_rate is None or not self.initial_learning_rate:
            return 1.0
        return self.learning_rate / self.initial_learning_rate

    @property
    def epochs_since_improvement(self) -> int:
        return self.tracker.epochs_since_improvement

    def on_epoch_end(self, epoch: int, value: float) -> float:
        """Observe one epoch's monitored value; return the rate for the next epoch."""
        if self.learning_rate is None:
            raise RuntimeError("Call reset(learning_rate) before the first epoch")
        if self.tracker.update(epoch, value):
            self.state = ReduceLROnPlateauState.TRACKING
            return self.learning_rate

        self.state = ReduceLROnPlateauState.PATIENT
        if self.tracker.epochs_since_improvement > self.patience:
            old_lr = self.learning_rate
            self.learning_rate = max(old_lr * self.factor, self.min_lr)
            self.tracker.epochs_since_improvement = 0
            self.state = ReduceLROnPlateauState.TRACKING
            if self.learning_rate < old_lr:
                self.reductions.append((epoch, self.learning_rate))
                logger.warning(
                    f"ReduceLROnPlateau at epoch {epoch}: learning rate "
                    f"{old_lr:.3g} -> {self.learning_rate:.3g}"
                )
            else:
                logger.info(
                    f"ReduceLROnPlateau at epoch {epoch}: already at min_lr "
                    f"{self.min_lr:.3g}"
                )
        return self.learning_rate
