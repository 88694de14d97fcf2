"""Tests for the TrainingController state machine."""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence

import numpy as np
import pytest
import torch

from mlp_classifier.config import (
    EarlyStoppingConfig,
    ReduceLROnPlateauConfig,
    TrainingConfig,
)
from mlp_classifier.data.dataset import DatasetSplit
from mlp_classifier.data.preprocessing import (
    flatten_images,
    one_hot_encode,
    scale_features,
)
from mlp_classifier.errors import DivergenceError, TopologyError
from mlp_classifier.models.builder import ModelTopology, build_mlp_topology
from mlp_classifier.models.network import ModelState
from mlp_classifier.training.controller import TrainerState, TrainingController
from mlp_classifier.training.step import StepOutput


class ScriptedStep:
    """Optimizer step that replays a scripted loss per epoch.

    Each train step fills every weight with the 1-based epoch number so that
    restored weights reveal which epoch they came from. The validation split
    must fit in one batch: each ``eval_step`` call advances the epoch.
    """

    def __init__(
        self,
        val_losses: Sequence[float],
        train_losses: Sequence[float] | None = None,
        on_eval: Callable[[int], None] | None = None,
    ) -> None:
        self.val_losses = list(val_losses)
        self.train_losses = list(train_losses) if train_losses is not None else None
        self.on_eval = on_eval
        self.epoch = 0
        self.learning_rates: list[float] = []

    def train_step(
        self,
        state: ModelState,
        images: torch.Tensor,
        labels: torch.Tensor,
        learning_rate: float,
    ) -> StepOutput:
        self.learning_rates.append(learning_rate)
        with torch.no_grad():
            for p in state.module.parameters():
                p.fill_(float(self.epoch + 1))
        loss = self.train_losses[self.epoch] if self.train_losses else 0.5
        return StepOutput(loss=loss, accuracy=0.5, num_samples=int(images.shape[0]))

    def eval_step(
        self, state: ModelState, images: torch.Tensor, labels: torch.Tensor
    ) -> StepOutput:
        loss = self.val_losses[self.epoch]
        self.epoch += 1
        if self.on_eval is not None:
            self.on_eval(self.epoch)
        return StepOutput(loss=loss, accuracy=0.25, num_samples=int(images.shape[0]))


@pytest.fixture()
def topology() -> ModelTopology:
    return build_mlp_topology(6, 3, hidden_width=4, hidden_layers=1, dropout_rate=0.0)


def _config(**overrides: object) -> TrainingConfig:
    base: dict[str, object] = {
        "batch_size": 4,
        "max_epochs": 10,
        "learning_rate": 0.1,
        "validation_split": None,
        "early_stopping": None,
        "reduce_lr": None,
    }
    base.update(overrides)
    return TrainingConfig(**base)  # type: ignore[arg-type]


class TestLifecycle:
    def test_starts_idle(self) -> None:
        controller = TrainingController()
        assert controller.state is TrainerState.IDLE
        assert len(controller.history) == 0

    def test_max_epochs_reached(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([1.0, 0.9, 0.8])
        result = TrainingController(step).start(
            topology, _config(max_epochs=3), tiny_split, tiny_val_split
        )
        assert result.state is TrainerState.MAX_EPOCHS_REACHED
        assert [r.epoch for r in result.history] == [1, 2, 3]
        assert result.history.column("val_loss") == [1.0, 0.9, 0.8]
        assert result.history.frozen

    def test_run_state_exposed_after_start(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([1.0, 1.0, 1.0])
        config = _config(
            max_epochs=3,
            learning_rate=0.1,
            reduce_lr=ReduceLROnPlateauConfig(patience=0, factor=0.5, min_delta=0.0),
        )
        controller = TrainingController(step)
        result = controller.start(topology, config, tiny_split, tiny_val_split)
        assert controller.model_state is result.model_state
        assert controller.callbacks is not None
        assert controller.callbacks.reduce_lr is not None
        # Epochs 2 and 3 stall, so the rate halves twice; two steps per epoch.
        assert step.learning_rates == pytest.approx([0.1, 0.1, 0.1, 0.1, 0.05, 0.05])
        assert controller.learning_rate == pytest.approx(0.025)

    def test_batches_per_epoch(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        # The 4-row validation split also takes two eval batches per epoch.
        step = ScriptedStep([1.0] * 4)
        TrainingController(step).start(
            topology, _config(max_epochs=2, batch_size=3), tiny_split, tiny_val_split
        )
        # 8 rows in batches of 3 -> 3 steps per epoch.
        assert len(step.learning_rates) == 6

    def test_epoch_metrics_are_sample_weighted(
        self, topology: ModelTopology, tiny_val_split: DatasetSplit
    ) -> None:
        class BatchSizeLoss(ScriptedStep):
            def train_step(self, state, images, labels, learning_rate):  # type: ignore[no-untyped-def]
                n = int(images.shape[0])
                return StepOutput(loss=float(n), accuracy=1.0, num_samples=n)

        train = DatasetSplit(torch.rand(5, 6), one_hot_encode(torch.tensor([0, 1, 2, 0, 1]), 3))
        result = TrainingController(BatchSizeLoss([1.0])).start(
            topology, _config(max_epochs=1, batch_size=4), train, tiny_val_split
        )
        # Batches of 4 and 1: (4*4 + 1*1) / 5.
        assert result.history[0].train_loss == pytest.approx(17 / 5)

    def test_cannot_start_twice(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        controller = TrainingController(ScriptedStep([1.0, 1.0]))
        controller.start(topology, _config(max_epochs=1), tiny_split, tiny_val_split)
        with pytest.raises(RuntimeError):
            controller.start(topology, _config(max_epochs=1), tiny_split, tiny_val_split)

    def test_history_frozen_after_run(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        result = TrainingController(ScriptedStep([1.0])).start(
            topology, _config(max_epochs=1), tiny_split, tiny_val_split
        )
        with pytest.raises(RuntimeError):
            result.history.append(result.history[0])


class TestValidationSource:
    def test_requires_validation_source(
        self, topology: ModelTopology, tiny_split: DatasetSplit
    ) -> None:
        with pytest.raises(ValueError):
            TrainingController(ScriptedStep([1.0])).start(
                topology, _config(), tiny_split
            )

    def test_splits_from_config_fraction(
        self, topology: ModelTopology, tiny_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([1.0])
        TrainingController(step).start(
            topology, _config(max_epochs=1, validation_split=0.25), tiny_split
        )
        # 8 rows, 2 held out -> 6 train rows -> 2 batches of 4/2.
        assert len(step.learning_rates) == 2


class TestTopologyCheck:
    def test_input_width_mismatch(
        self, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        wrong = build_mlp_topology(7, 3, hidden_width=4, hidden_layers=1)
        with pytest.raises(TopologyError):
            TrainingController(ScriptedStep([1.0])).start(
                wrong, _config(), tiny_split, tiny_val_split
            )

    def test_class_count_mismatch(
        self, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        wrong = build_mlp_topology(6, 4, hidden_width=4, hidden_layers=1)
        controller = TrainingController(ScriptedStep([1.0]))
        with pytest.raises(TopologyError):
            controller.start(wrong, _config(), tiny_split, tiny_val_split)
        assert controller.state is TrainerState.IDLE

    def test_validation_feature_width_mismatch(
        self, topology: ModelTopology, tiny_split: DatasetSplit
    ) -> None:
        val = DatasetSplit(torch.rand(4, 7), one_hot_encode(torch.tensor([0, 1, 2, 0]), 3))
        step = ScriptedStep([1.0])
        controller = TrainingController(step)
        with pytest.raises(TopologyError, match="validation feature width"):
            controller.start(topology, _config(), tiny_split, val)
        assert controller.state is TrainerState.IDLE
        assert step.learning_rates == []

    def test_validation_class_count_mismatch(
        self, topology: ModelTopology, tiny_split: DatasetSplit
    ) -> None:
        val = DatasetSplit(torch.rand(4, 6), one_hot_encode(torch.tensor([0, 1, 2, 3]), 4))
        controller = TrainingController(ScriptedStep([1.0]))
        with pytest.raises(TopologyError, match="validation label width"):
            controller.start(topology, _config(), tiny_split, val)
        assert controller.state is TrainerState.IDLE


class TestEarlyStoppingRun:
    def test_stops_at_epoch_five(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([0.9, 0.85, 0.86, 0.87, 0.88, 0.1, 0.1])
        config = _config(
            early_stopping=EarlyStoppingConfig(
                patience=2, min_delta=0.001, restore_best_weights=False
            )
        )
        result = TrainingController(step).start(
            topology, config, tiny_split, tiny_val_split
        )
        assert result.state is TrainerState.STOPPED
        assert result.stop_reason == "early_stopping"
        assert len(result.history) == 5
        assert result.best_epoch == 2

    def test_restores_best_weights(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([0.9, 0.85, 0.86, 0.87, 0.88])
        config = _config(
            early_stopping=EarlyStoppingConfig(
                patience=2, min_delta=0.001, restore_best_weights=True
            )
        )
        result = TrainingController(step).start(
            topology, config, tiny_split, tiny_val_split
        )
        # Weights were filled with 5.0 in epoch 5 but the best epoch was 2.
        for value in result.model_state.state_dict().values():
            assert torch.all(value == 2.0)

    def test_keeps_last_weights_without_restore(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([0.9, 0.85, 0.86, 0.87, 0.88])
        config = _config(
            early_stopping=EarlyStoppingConfig(
                patience=2, min_delta=0.001, restore_best_weights=False
            )
        )
        result = TrainingController(step).start(
            topology, config, tiny_split, tiny_val_split
        )
        for value in result.model_state.state_dict().values():
            assert torch.all(value == 5.0)


class TestReduceLROnPlateauRun:
    def test_learning_rate_drops_after_epoch_four(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([1.0, 0.9, 0.91, 0.92, 0.93])
        config = _config(
            max_epochs=5,
            learning_rate=0.1,
            reduce_lr=ReduceLROnPlateauConfig(patience=1, factor=0.1, min_delta=0.0),
        )
        controller = TrainingController(step)
        result = controller.start(topology, config, tiny_split, tiny_val_split)
        assert result.history.column("learning_rate") == pytest.approx(
            [0.1, 0.1, 0.1, 0.1, 0.01]
        )
        # Epoch 5's optimizer steps received the reduced rate.
        assert step.learning_rates[-1] == pytest.approx(0.01)
        assert result.state is TrainerState.MAX_EPOCHS_REACHED

    def test_reduction_precedes_early_stop(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([1.0] * 10)
        config = _config(
            early_stopping=EarlyStoppingConfig(patience=3, min_delta=0.0),
            reduce_lr=ReduceLROnPlateauConfig(patience=1, factor=0.5, min_delta=0.0),
        )
        result = TrainingController(step).start(
            topology, config, tiny_split, tiny_val_split
        )
        assert result.state is TrainerState.STOPPED
        assert len(result.history) == 5
        assert result.history.column("learning_rate") == pytest.approx(
            [0.1, 0.1, 0.1, 0.05, 0.05]
        )


class TestDivergence:
    def test_two_consecutive_nan_epochs_abort(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        nan = math.nan
        step = ScriptedStep([0.4, nan, nan, 0.3], train_losses=[0.5, nan, nan, 0.3])
        controller = TrainingController(step)
        with pytest.raises(DivergenceError) as exc_info:
            controller.start(topology, _config(), tiny_split, tiny_val_split)

        assert exc_info.value.epoch == 3
        assert exc_info.value.history is controller.history
        assert [r.epoch for r in controller.history] == [1, 2]
        assert controller.history.frozen
        assert controller.state is TrainerState.DIVERGED

    def test_isolated_nan_epochs_are_survivable(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        nan = math.nan
        step = ScriptedStep([0.4, nan, 0.3, nan, 0.2])
        result = TrainingController(step).start(
            topology, _config(max_epochs=5), tiny_split, tiny_val_split
        )
        assert result.state is TrainerState.MAX_EPOCHS_REACHED
        assert len(result.history) == 5

    def test_non_finite_train_loss_counts(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        inf = math.inf
        step = ScriptedStep([0.4, 0.4, 0.4], train_losses=[0.5, inf, inf])
        with pytest.raises(DivergenceError):
            TrainingController(step).start(
                topology, _config(), tiny_split, tiny_val_split
            )


class TestOtherTerminations:
    def test_converges_at_loss_floor(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        step = ScriptedStep([0.5, 0.3, 0.15, 0.1])
        result = TrainingController(step).start(
            topology, _config(loss_floor=0.2), tiny_split, tiny_val_split
        )
        assert result.state is TrainerState.CONVERGED
        assert len(result.history) == 3

    def test_request_stop_finishes_current_epoch(
        self, topology: ModelTopology, tiny_split: DatasetSplit, tiny_val_split: DatasetSplit
    ) -> None:
        controller = TrainingController()

        def stop_in_epoch_two(epoch: int) -> None:
            if epoch == 2:
                controller.request_stop()

        controller._step = ScriptedStep([1.0] * 10, on_eval=stop_in_epoch_two)
        result = controller.start(topology, _config(), tiny_split, tiny_val_split)
        assert result.state is TrainerState.STOPPED
        assert result.stop_reason == "cancelled"
        assert len(result.history) == 2


class TestTorchTraining:
    @pytest.fixture()
    def separable(
        self, raw_train: tuple[np.ndarray, np.ndarray]
    ) -> DatasetSplit:
        images, labels = raw_train
        return DatasetSplit(
            scale_features(flatten_images(images)), one_hot_encode(labels, 2)
        )

    def test_loss_decreases(self, separable: DatasetSplit) -> None:
        topology = build_mlp_topology(16, 2, hidden_width=16, hidden_layers=1, dropout_rate=0.0)
        config = _config(
            max_epochs=15, batch_size=16, learning_rate=0.1, momentum=0.9,
            validation_split=0.25,
        )
        result = TrainingController().start(topology, config, separable)
        losses = result.history.column("train_loss")
        assert len(losses) == 15
        assert losses[-1] < losses[0]
        assert all(math.isfinite(v) for v in losses)

    def test_runs_are_reproducible(self, separable: DatasetSplit) -> None:
        topology = build_mlp_topology(16, 2, hidden_width=8, hidden_layers=1, dropout_rate=0.0)
        config = _config(max_epochs=3, batch_size=16, validation_split=0.25, shuffle=True)
        first = TrainingController().start(topology, config, separable)
        second = TrainingController().start(topology, config, separable)
        assert first.history.to_dict() == second.history.to_dict()
