"""Composite of the epoch-end observers driven by the training controller."""

from __future__ import annotations

from dataclasses import dataclass

from mlp_classifier.callbacks.early_stopping import EarlyStopping
from mlp_classifier.callbacks.reduce_lr import ReduceLROnPlateau
from mlp_classifier.config import TrainingConfig
from mlp_classifier.models.network import ModelState


@dataclass(frozen=True)
class CallbackDecision:
    """Outcome of one epoch-end: whether to stop and the next learning rate."""

    stop: bool
    learning_rate: float


class CallbackController:
    """Runs EarlyStopping and ReduceLROnPlateau independently each epoch.

    The observers share no counters. Either may be omitted.
    """

    def __init__(
        self,
        early_stopping: EarlyStopping | None = None,
        reduce_lr: ReduceLROnPlateau | None = None,
    ) -> None:
        self.early_stopping = early_stopping
        self.reduce_lr = reduce_lr
        self._learning_rate: float | None = None

    @classmethod
    def from_config(cls, config: TrainingConfig) -> CallbackController:
        return cls(
            early_stopping=(
                EarlyStopping.from_config(config.early_stopping)
                if config.early_stopping is not None
                else None
            ),
            reduce_lr=(
                ReduceLROnPlateau.from_config(config.reduce_lr)
                if config.reduce_lr is not None
                else None
            ),
        )

    def on_train_start(self, learning_rate: float) -> None:
        self._learning_rate = learning_rate
        if self.early_stopping is not None:
            self.early_stopping.reset()
        if self.reduce_lr is not None:
            self.reduce_lr.reset(learning_rate)

    def on_epoch_end(
        self, epoch: int, value: float, model_state: ModelState | None = None
    ) -> CallbackDecision:
        if self._learning_rate is None:
            raise RuntimeError("Call on_train_start() before on_epoch_end()")
        stop = False
        if self.early_stopping is not None:
            stop = self.early_stopping.on_epoch_end(epoch, value, model_state)
        if self.reduce_lr is not None:
            self._learning_rate = self.reduce_lr.on_epoch_end(epoch, value)
        return CallbackDecision(stop=stop, learning_rate=self._learning_rate)

    def restore_best_weights(self, model_state: ModelState) -> bool:
        """Reinstate EarlyStopping's best snapshot when it was configured to keep one."""
        if self.early_stopping is None or not self.early_stopping.restore_best_weights:
            return False
        return self.early_stopping.restore(model_state)
