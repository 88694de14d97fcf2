"""Loss functions over softmax probabilities and one-hot targets."""

from __future__ import annotations

import torch
import torch.nn as nn
import torch.nn.functional as F


class CategoricalCrossEntropy(nn.Module):
    """Cross-entropy between predicted probabilities and one-hot targets.

    The network already ends in a softmax, so this takes probabilities rather
    than logits. Probabilities are clamped to ``[eps, 1]`` before the log so a
    saturated softmax yields a large finite loss instead of ``inf``.

    Parameters
    ----------
    eps:
        Lower clamp for probabilities.
    """

    def __init__(self, eps: float = 1e-7) -> None:
        super().__init__()
        self.eps = eps

    def forward(self, probs: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        """Mean over the batch of ``-sum(targets * log(probs))``.

        Parameters
        ----------
        probs:
            Model output of shape ``(B, C)``, rows summing to 1.
        targets:
            One-hot targets of shape ``(B, C)``.
        """
        log_probs = probs.clamp(min=self.eps, max=1.0).log()
        return -(targets * log_probs).sum(dim=1).mean()


class MeanSquaredError(nn.Module):
    """Mean squared error between probabilities and one-hot targets."""

    def forward(self, probs: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        return F.mse_loss(probs, targets)


def build_loss_fn(name: str) -> nn.Module:
    """Factory for loss functions.

    Parameters
    ----------
    name:
        ``"categorical_crossentropy"`` or ``"mean_squared_error"``.
    """
    if name == "categorical_crossentropy":
        return CategoricalCrossEntropy()
    if name == "mean_squared_error":
        return MeanSquaredError()
    msg = (
        f"Unknown loss function: {name!r}. "
        "Use 'categorical_crossentropy' or 'mean_squared_error'."
    )
    raise ValueError(msg)
