"""Optimizer-step capability: one gradient update or evaluation per batch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import torch
from loguru import logger
from torchmetrics.functional.classification import multiclass_accuracy

from mlp_classifier.config import TrainingConfig
from mlp_classifier.losses import build_loss_fn
from mlp_classifier.models.network import ModelState


@dataclass(frozen=True)
class StepOutput:
    """Loss and accuracy for one batch of ``num_samples`` rows."""

    loss: float
    accuracy: float
    num_samples: int


class OptimizerStep(Protocol):
    """What the training controller needs from the numeric backend."""

    def train_step(
        self,
        state: ModelState,
        images: torch.Tensor,
        labels: torch.Tensor,
        learning_rate: float,
    ) -> StepOutput: ...

    def eval_step(
        self, state: ModelState, images: torch.Tensor, labels: torch.Tensor
    ) -> StepOutput: ...


def build_optimizer(
    name: str,
    params: list[torch.nn.Parameter],
    learning_rate: float,
    momentum: float = 0.0,
) -> torch.optim.Optimizer:
    """Factory for torch optimizers: ``"sgd"``, ``"rmsprop"`` or ``"adam"``.

    ``momentum`` feeds SGD and RMSprop; Adam ignores it.
    """
    if name == "sgd":
        return torch.optim.SGD(params, lr=learning_rate, momentum=momentum)
    if name == "rmsprop":
        return torch.optim.RMSprop(params, lr=learning_rate, momentum=momentum)
    if name == "adam":
        return torch.optim.Adam(params, lr=learning_rate)
    msg = f"Unknown optimizer: {name!r}. Use 'sgd', 'rmsprop' or 'adam'."
    raise ValueError(msg)


def _batch_accuracy(probs: torch.Tensor, labels: torch.Tensor) -> float:
    return float(
        multiclass_accuracy(
            probs,
            labels.argmax(dim=1),
            num_classes=probs.shape[1],
            average="micro",
        )
    )


class TorchOptimizerStep:
    """Autograd-backed :class:`OptimizerStep`.

    The torch optimizer is created lazily for the first ModelState it sees and
    rebuilt if a different state is passed in, so momentum buffers never leak
    between networks. The learning rate is written into every param group on
    each step, which is how plateau reductions take effect.

    Args:
        loss: Loss name understood by :func:`build_loss_fn`.
        optimizer: Optimizer name understood by :func:`build_optimizer`.
        momentum: Momentum for SGD/RMSprop.
    """

    def __init__(
        self,
        loss: str = "categorical_crossentropy",
        optimizer: str = "sgd",
        momentum: float = 0.0,
    ) -> None:
        self.loss_fn = build_loss_fn(loss)
        self.optimizer_name = optimizer
        self.momentum = momentum
        self._optimizer: torch.optim.Optimizer | None = None
        self._bound: ModelState | None = None

    @classmethod
    def from_config(cls, config: TrainingConfig) -> TorchOptimizerStep:
        return cls(
            loss=config.loss, optimizer=config.optimizer, momentum=config.momentum
        )

    def _optimizer_for(
        self, state: ModelState, learning_rate: float
    ) -> torch.optim.Optimizer:
        if self._optimizer is None or self._bound is not state:
            logger.debug(f"Creating {self.optimizer_name} optimizer (lr={learning_rate})")
            self._optimizer = build_optimizer(
                self.optimizer_name,
                list(state.module.parameters()),
                learning_rate,
                self.momentum,
            )
            self._bound = state
        for group in self._optimizer.param_groups:
            group["lr"] = learning_rate
        return self._optimizer

    def train_step(
        self,
        state: ModelState,
        images: torch.Tensor,
        labels: torch.Tensor,
        learning_rate: float,
    ) -> StepOutput:
        optimizer = self._optimizer_for(state, learning_rate)
        state.module.train()
        optimizer.zero_grad()
        probs = state.module(images)
        loss = self.loss_fn(probs, labels)
        loss.backward()
        optimizer.step()
        return StepOutput(
            loss=float(loss.detach()),
            accuracy=_batch_accuracy(probs.detach(), labels),
            num_samples=int(images.shape[0]),
        )

    def eval_step(
        self, state: ModelState, images: torch.Tensor, labels: torch.Tensor
    ) -> StepOutput:
        state.module.eval()
        with torch.no_grad():
            probs = state.module(images)
            loss = self.loss_fn(probs, labels)
        return StepOutput(
            loss=float(loss),
            accuracy=_batch_accuracy(probs, labels),
            num_samples=int(images.shape[0]),
        )
