"""Early stopping on a plateaued validation loss."""

from __future__ import annotations

from enum import Enum

from loguru import logger

from mlp_classifier.callbacks.base import PlateauTracker
from mlp_classifier.config import EarlyStoppingConfig, ThresholdMode
from mlp_classifier.models.network import ModelSnapshot, ModelState


class EarlyStoppingState(str, Enum):
    TRACKING = "tracking"
    PATIENT = "patient"
    FIRED = "fired"


class EarlyStopping:
    """Signal a stop once the monitored loss stops improving.

    Fires when more than ``patience`` consecutive epochs pass without an
    improvement larger than ``min_delta``. With ``restore_best_weights`` the
    model weights are snapshotted at every new best so the controller can
    reinstate them on stop.

    Args:
        patience: Non-improving epochs tolerated before firing.
        min_delta: Minimum decrease that counts as an improvement.
        restore_best_weights: Keep a snapshot of the best weights.
        threshold_mode: ``"abs"`` or ``"rel"`` interpretation of ``min_delta``.
        inclusive: Count a decrease of exactly ``min_delta`` as improvement.
    """

    def __init__(
        self,
        patience: int = 5,
        min_delta: float = 0.0,
        restore_best_weights: bool = False,
        threshold_mode: ThresholdMode = "abs",
        inclusive: bool = False,
    ) -> None:
        if patience < 0:
            raise ValueError(f"patience must be >= 0, got {patience}")
        self.patience = patience
        self.restore_best_weights = restore_best_weights
        self.tracker = PlateauTracker(min_delta, threshold_mode, inclusive)
        self.best_snapshot: ModelSnapshot | None = None
        self.state = EarlyStoppingState.TRACKING
        self.stopped_epoch: int | None = None

    @classmethod
    def from_config(cls, config: EarlyStoppingConfig) -> EarlyStopping:
        return cls(
            patience=config.patience,
            min_delta=config.min_delta,
            restore_best_weights=config.restore_best_weights,
            threshold_mode=config.threshold_mode,
            inclusive=config.inclusive,
        )

    def reset(self) -> None:
        self.tracker.reset()
        self.best_snapshot = None
        self.state = EarlyStoppingState.TRACKING
        self.stopped_epoch = None

    @property
    def fired(self) -> bool:
        return self.state is EarlyStoppingState.FIRED

    @property
    def best(self) -> float | None:
        return self.tracker.best

    @property
    def best_epoch(self) -> int | None:
        return self.tracker.best_epoch

    @property
    def epochs_since_improvement(self) -> int:
        return self.tracker.epochs_since_improvement

    def on_epoch_end(
        self, epoch: int, value: float, model_state: ModelState | None = None
    ) -> bool:
        """Observe one epoch's monitored value; return True once fired."""
        if self.fired:
            return True
        if self.tracker.update(epoch, value):
            self.state = EarlyStoppingState.TRACKING
            if self.restore_best_weights and model_state is not None:
                self.best_snapshot = model_state.snapshot()
                logger.debug(f"EarlyStopping: snapshot best weights at epoch {epoch}")
            return False

        self.state = EarlyStoppingState.PATIENT
        if self.tracker.epochs_since_improvement > self.patience:
            self.state = EarlyStoppingState.FIRED
            self.stopped_epoch = epoch
            logger.warning(
                f"EarlyStopping fired at epoch {epoch}: no improvement on "
                f"{self.tracker.best:.6f} (epoch {self.tracker.best_epoch}) for "
                f"{self.tracker.epochs_since_improvement} epochs"
            )
            return True
        return False

    def restore(self, model_state: ModelState) -> bool:
        """Load the best snapshot into ``model_state``; False if none was kept."""
        if self.best_snapshot is None:
            return False
        model_state.restore(self.best_snapshot)
        logger.info(f"Restored best weights from epoch {self.tracker.best_epoch}")
        return True
