"""Epoch/batch training loop with callback-driven termination."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import torch
from loguru import logger

from mlp_classifier.callbacks.controller import CallbackController
from mlp_classifier.config import TrainingConfig
from mlp_classifier.data.dataset import DatasetSplit, make_dataloader
from mlp_classifier.data.preprocessing import split_validation
from mlp_classifier.errors import DivergenceError, TopologyError
from mlp_classifier.models.builder import ModelTopology
from mlp_classifier.models.network import ModelState
from mlp_classifier.training.history import EpochRecord, TrainingHistory
from mlp_classifier.training.step import OptimizerStep, StepOutput, TorchOptimizerStep


class TrainerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CONVERGED = "converged"
    STOPPED = "stopped"
    MAX_EPOCHS_REACHED = "max_epochs_reached"
    DIVERGED = "diverged"


@dataclass(frozen=True)
class TrainingResult:
    """Artifacts of a finished run, handed to evaluation/reporting code."""

    state: TrainerState
    history: TrainingHistory
    model_state: ModelState
    stop_reason: str
    best_epoch: int | None


@dataclass
class _EpochTotals:
    loss: float = 0.0
    accuracy: float = 0.0
    samples: int = 0

    def add(self, output: StepOutput) -> None:
        self.loss += output.loss * output.num_samples
        self.accuracy += output.accuracy * output.num_samples
        self.samples += output.num_samples

    def mean(self) -> tuple[float, float]:
        if self.samples == 0:
            return math.nan, math.nan
        return self.loss / self.samples, self.accuracy / self.samples


class TrainingController:
    """Owns one training run: Idle -> Running -> a terminal state.

    Each epoch walks the training split in ``config.batch_size`` batches,
    calling the optimizer-step capability once per batch, then evaluates the
    validation split without updating weights, records the epoch and hands
    the validation loss to the callbacks. Steps run strictly in order because
    each one mutates the shared ModelState.

    Terminal states:
        STOPPED: early stopping fired (best weights restored when configured)
            or :meth:`request_stop` was called.
        CONVERGED: validation loss reached ``config.loss_floor``.
        MAX_EPOCHS_REACHED: ``config.max_epochs`` epochs completed.
        DIVERGED: two consecutive epochs had a non-finite loss; the run
            raises :class:`DivergenceError`.

    A controller runs once; build a new one to train again.

    Args:
        step: Optimizer-step capability. Defaults to a
            :class:`TorchOptimizerStep` built from the run's config.
    """

    def __init__(self, step: OptimizerStep | None = None) -> None:
        self._step = step
        self.state = TrainerState.IDLE
        self.history = TrainingHistory()
        self.model_state: ModelState | None = None
        self.callbacks: CallbackController | None = None
        self.learning_rate: float | None = None
        self.stop_reason = ""
        self._stop_requested = False

    def request_stop(self) -> None:
        """Ask the run to stop once the current epoch has completed."""
        logger.info("Stop requested; finishing the current epoch")
        self._stop_requested = True

    def start(
        self,
        topology: ModelTopology,
        config: TrainingConfig,
        train_data: DatasetSplit,
        validation_data: DatasetSplit | None = None,
        callbacks: CallbackController | None = None,
    ) -> TrainingResult:
        """Run training to a terminal state and return its artifacts.

        Args:
            topology: Network layout from :class:`ModelBuilder`.
            config: Training hyperparameters.
            train_data: Prepared training split.
            validation_data: Prepared validation split. When omitted the tail
                ``config.validation_split`` fraction of ``train_data`` is held
                out.
            callbacks: Overrides the callbacks derived from ``config``.

        Raises:
            RuntimeError: If this controller has already run.
            ValueError: If no validation data can be obtained.
            TopologyError: If the topology does not match the data widths.
            DivergenceError: If the loss stays non-finite for two epochs.
        """
        if self.state is not TrainerState.IDLE:
            raise RuntimeError(
                f"TrainingController already used (state={self.state.value})"
            )
        train_data, validation_data = self._resolve_splits(config, train_data, validation_data)
        self._check_topology(topology, train_data, "training")
        self._check_topology(topology, validation_data, "validation")

        model_state = ModelState.from_topology(topology, seed=config.seed)
        callbacks = callbacks or CallbackController.from_config(config)
        callbacks.on_train_start(config.learning_rate)
        step = self._step or TorchOptimizerStep.from_config(config)
        self.model_state = model_state
        self.callbacks = callbacks
        self._step = step
        self.learning_rate = config.learning_rate
        self.state = TrainerState.RUNNING
        logger.info(
            f"Training: {len(train_data)} train / {len(validation_data)} val "
            f"samples, batch_size={config.batch_size}, "
            f"max_epochs={config.max_epochs}, lr={config.learning_rate}"
        )

        try:
            self._run(config, step, model_state, callbacks, train_data, validation_data)
        finally:
            self.history.freeze()

        best_epoch = None
        if callbacks.early_stopping is not None:
            best_epoch = callbacks.early_stopping.best_epoch
        logger.info(
            f"Training finished: {self.state.value} after {len(self.history)} "
            f"epoch(s) ({self.stop_reason})"
        )
        return TrainingResult(
            state=self.state,
            history=self.history,
            model_state=model_state,
            stop_reason=self.stop_reason,
            best_epoch=best_epoch,
        )

    def _resolve_splits(
        self,
        config: TrainingConfig,
        train_data: DatasetSplit,
        validation_data: DatasetSplit | None,
    ) -> tuple[DatasetSplit, DatasetSplit]:
        if validation_data is not None:
            return train_data, validation_data
        if config.validation_split is None:
            raise ValueError(
                "Either pass validation_data or set config.validation_split"
            )
        (images, labels), (val_images, val_labels) = split_validation(
            train_data.images, train_data.labels, config.validation_split
        )
        return DatasetSplit(images, labels), DatasetSplit(val_images, val_labels)

    @staticmethod
    def _check_topology(
        topology: ModelTopology, split: DatasetSplit, name: str
    ) -> None:
        if topology.input_width != split.feature_width:
            raise TopologyError(
                f"Topology input width {topology.input_width} != {name} feature "
                f"width {split.feature_width}"
            )
        if topology.output_width != split.num_classes:
            raise TopologyError(
                f"Topology output width {topology.output_width} != {name} label "
                f"width {split.num_classes}"
            )

    def _run(
        self,
        config: TrainingConfig,
        step: OptimizerStep,
        model_state: ModelState,
        callbacks: CallbackController,
        train_data: DatasetSplit,
        validation_data: DatasetSplit,
    ) -> None:
        learning_rate = config.learning_rate
        previous_finite = True
        for epoch in range(1, config.max_epochs + 1):
            record = self._run_epoch(
                epoch,
                config,
                step,
                model_state,
                learning_rate,
                train_data,
                validation_data,
            )

            if not record.is_finite:
                if not previous_finite:
                    self.state = TrainerState.DIVERGED
                    self.stop_reason = "diverged"
                    self.history.freeze()
                    raise DivergenceError(
                        f"Loss was non-finite for epochs {epoch - 1} and {epoch} "
                        f"(lr={record.learning_rate}); lower the learning rate",
                        epoch=epoch,
                        history=self.history,
                    )
                logger.warning(
                    f"Epoch {epoch}: non-finite loss (train={record.train_loss}, "
                    f"val={record.val_loss})"
                )
            previous_finite = record.is_finite

            self.history.append(record)
            logger.info(
                f"Epoch {epoch}/{config.max_epochs}: "
                f"loss={record.train_loss:.4f} acc={record.train_accuracy:.4f} "
                f"val_loss={record.val_loss:.4f} val_acc={record.val_accuracy:.4f} "
                f"lr={record.learning_rate:.3g}"
            )

            decision = callbacks.on_epoch_end(epoch, record.val_loss, model_state)
            learning_rate = decision.learning_rate
            self.learning_rate = learning_rate

            if decision.stop:
                self.state = TrainerState.STOPPED
                self.stop_reason = "early_stopping"
                callbacks.restore_best_weights(model_state)
                return
            if config.loss_floor is not None and record.val_loss <= config.loss_floor:
                self.state = TrainerState.CONVERGED
                self.stop_reason = f"val_loss <= {config.loss_floor}"
                return
            if epoch == config.max_epochs:
                break
            if self._stop_requested:
                self.state = TrainerState.STOPPED
                self.stop_reason = "cancelled"
                return

        self.state = TrainerState.MAX_EPOCHS_REACHED
        self.stop_reason = f"max_epochs={config.max_epochs}"

    def _run_epoch(
        self,
        epoch: int,
        config: TrainingConfig,
        step: OptimizerStep,
        model_state: ModelState,
        learning_rate: float,
        train_data: DatasetSplit,
        validation_data: DatasetSplit,
    ) -> EpochRecord:
        generator = None
        if config.shuffle:
            generator = torch.Generator().manual_seed(config.seed + epoch)

        train_totals = _EpochTotals()
        loader = make_dataloader(train_data, config.batch_size, config.shuffle, generator)
        for batch_idx, batch in enumerate(loader):
            output = step.train_step(
                model_state, batch["images"], batch["labels"], learning_rate
            )
            train_totals.add(output)
            logger.debug(f"Epoch {epoch} batch {batch_idx}: loss={output.loss:.4f}")

        val_totals = _EpochTotals()
        for batch in make_dataloader(validation_data, config.batch_size):
            val_totals.add(
                step.eval_step(model_state, batch["images"], batch["labels"])
            )

        train_loss, train_acc = train_totals.mean()
        val_loss, val_acc = val_totals.mean()
        return EpochRecord(
            epoch=epoch,
            train_loss=train_loss,
            train_accuracy=train_acc,
            val_loss=val_loss,
            val_accuracy=val_acc,
            learning_rate=learning_rate,
        )
