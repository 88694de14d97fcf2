"""Type aliases and TypedDicts for mlp_classifier inter-module contracts."""

from typing import TypedDict

import torch


class ClassificationBatch(TypedDict):
    """A single batch handed to the optimizer-step capability.

    images: Float tensor of shape (B, H*W), scaled to [0, 1].
    labels: Float tensor of shape (B, C), one-hot encoded.
    """

    images: torch.Tensor
    labels: torch.Tensor
