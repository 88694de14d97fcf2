"""Pure tensor transforms that turn raw image arrays into training data.

Every function here is stateless and returns new tensors; inputs may be numpy
arrays or torch tensors.
"""

from __future__ import annotations

from typing import Any

import torch
from loguru import logger

from mlp_classifier.errors import DomainError, RangeError, ShapeError


def _as_tensor(data: Any) -> torch.Tensor:
    if isinstance(data, torch.Tensor):
        return data
    return torch.as_tensor(data)


def flatten_images(images: Any) -> torch.Tensor:
    """Reshape an (N, H, W) image tensor into (N, H*W).

    Row ``i`` of the result is the row-major flattening of ``images[i]``.

    Raises:
        ShapeError: If the input is not rank 3 or any dimension is zero.
    """
    tensor = _as_tensor(images)
    if tensor.ndim != 3:
        raise ShapeError(
            f"Expected a rank-3 (N, H, W) tensor, got shape {tuple(tensor.shape)}"
        )
    n, h, w = tensor.shape
    if n == 0 or h == 0 or w == 0:
        raise ShapeError(f"All dimensions must be > 0, got {(n, h, w)}")
    return tensor.reshape(n, h * w)


def unflatten_images(flat: Any, height: int, width: int) -> torch.Tensor:
    """Inverse of :func:`flatten_images`.

    Raises:
        ShapeError: If ``flat`` is not rank 2 or ``height * width`` differs
            from its row width.
    """
    tensor = _as_tensor(flat)
    if tensor.ndim != 2:
        raise ShapeError(
            f"Expected a rank-2 (N, H*W) tensor, got shape {tuple(tensor.shape)}"
        )
    if height <= 0 or width <= 0 or height * width != tensor.shape[1]:
        raise ShapeError(
            f"Cannot reshape rows of width {tensor.shape[1]} into "
            f"({height}, {width})"
        )
    return tensor.reshape(tensor.shape[0], height, width)


def scale_features(
    features: Any, min_value: float = 0.0, max_value: float = 255.0
) -> torch.Tensor:
    """Map ``[min_value, max_value]`` onto ``[0, 1]`` as float32.

    Use the same range for every split so they stay comparable.

    Raises:
        RangeError: If ``max_value <= min_value``.
    """
    if max_value == min_value:
        raise RangeError(f"Degenerate scaling range: min == max == {min_value}")
    if max_value < min_value:
        raise RangeError(
            f"Inverted scaling range: min={min_value} > max={max_value}"
        )
    tensor = _as_tensor(features).to(torch.float32)
    return (tensor - min_value) / (max_value - min_value)


def one_hot_encode(labels: Any, num_classes: int | None = None) -> torch.Tensor:
    """Encode integer class labels as float32 one-hot rows.

    Args:
        labels: Rank-1 integer sequence with values in ``[0, num_classes - 1]``.
        num_classes: Vector width. Inferred as ``max(labels) + 1`` when omitted.

    Raises:
        ShapeError: If ``labels`` is not a non-empty rank-1 integer sequence.
        DomainError: If any label falls outside ``[0, num_classes - 1]``.
    """
    tensor = _as_tensor(labels)
    if tensor.ndim != 1 or tensor.numel() == 0:
        raise ShapeError(
            f"Expected a non-empty rank-1 label sequence, got shape "
            f"{tuple(tensor.shape)}"
        )
    if tensor.is_floating_point() or tensor.dtype == torch.bool:
        raise ShapeError(f"Labels must be integers, got dtype {tensor.dtype}")
    tensor = tensor.to(torch.long)

    low = int(tensor.min())
    high = int(tensor.max())
    if num_classes is None:
        num_classes = high + 1
    if num_classes <= 0 or low < 0 or high >= num_classes:
        raise DomainError(
            f"Labels span [{low}, {high}] but must lie in [0, {num_classes - 1}]"
        )
    encoded = torch.zeros(tensor.shape[0], num_classes, dtype=torch.float32)
    encoded[torch.arange(tensor.shape[0]), tensor] = 1.0
    return encoded


def decode_one_hot(labels: torch.Tensor) -> torch.Tensor:
    """Return class indices (argmax) for one-hot or probability rows."""
    return labels.argmax(dim=1)


def shuffle_dataset(
    images: torch.Tensor, labels: torch.Tensor, seed: int
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Apply one seeded permutation jointly to images and labels.

    ``images'[i] = images[perm[i]]`` and ``labels'[i] = labels[perm[i]]``.

    Returns:
        ``(shuffled_images, shuffled_labels, perm)``.

    Raises:
        ShapeError: If the row counts differ.
    """
    if images.shape[0] != labels.shape[0]:
        raise ShapeError(
            f"Row count mismatch: {images.shape[0]} images vs "
            f"{labels.shape[0]} labels"
        )
    generator = torch.Generator().manual_seed(seed)
    perm = torch.randperm(images.shape[0], generator=generator)
    return images[perm], labels[perm], perm


def split_validation(
    images: torch.Tensor, labels: torch.Tensor, fraction: float
) -> tuple[tuple[torch.Tensor, torch.Tensor], tuple[torch.Tensor, torch.Tensor]]:
    """Hold out the trailing ``int(N * fraction)`` rows as a validation split.

    Returns:
        ``((train_images, train_labels), (val_images, val_labels))``.

    Raises:
        ValueError: If ``fraction`` is not in ``(0, 1)``.
        ShapeError: If the row counts differ or either side would be empty.
    """
    if not 0.0 < fraction < 1.0:
        raise ValueError(f"validation fraction must be in (0, 1), got {fraction}")
    if images.shape[0] != labels.shape[0]:
        raise ShapeError(
            f"Row count mismatch: {images.shape[0]} images vs "
            f"{labels.shape[0]} labels"
        )
    n = images.shape[0]
    n_val = int(n * fraction)
    if n_val == 0 or n_val == n:
        raise ShapeError(
            f"validation fraction {fraction} leaves an empty split for {n} samples"
        )
    cut = n - n_val
    logger.debug(f"Validation split: {cut} train / {n_val} validation rows")
    return (images[:cut], labels[:cut]), (images[cut:], labels[cut:])
