"""In-memory dataset split and batch loaders for prepared tensors."""

from __future__ import annotations

from dataclasses import dataclass

import torch
from torch.utils.data import (
    BatchSampler,
    DataLoader,
    Dataset,
    RandomSampler,
    SequentialSampler,
)

from mlp_classifier.errors import ShapeError
from mlp_classifier.types import ClassificationBatch


@dataclass(frozen=True, eq=False)
class DatasetSplit(Dataset[tuple[torch.Tensor, torch.Tensor]]):
    """Prepared features and one-hot labels with matching row order.

    Indexing with a list of row indices returns the whole batch at once, which
    lets :func:`make_dataloader` slice batches without per-sample collation.

    Args:
        images: Float tensor of shape (N, H*W), N > 0.
        labels: Float tensor of shape (N, C), one-hot rows.

    Raises:
        ShapeError: If either tensor is not rank 2, the row counts differ or
            the split is empty.
    """

    images: torch.Tensor
    labels: torch.Tensor

    def __post_init__(self) -> None:
        if self.images.ndim != 2 or self.labels.ndim != 2:
            raise ShapeError(
                f"Expected rank-2 images and labels, got "
                f"{tuple(self.images.shape)} and {tuple(self.labels.shape)}"
            )
        if self.images.shape[0] != self.labels.shape[0]:
            raise ShapeError(
                f"Row count mismatch: {self.images.shape[0]} images vs "
                f"{self.labels.shape[0]} labels"
            )
        if self.images.shape[0] == 0:
            raise ShapeError("A dataset split needs at least one row")

    def __len__(self) -> int:
        return int(self.images.shape[0])

    def __getitem__(self, idx: int | list[int]) -> tuple[torch.Tensor, torch.Tensor]:
        return self.images[idx], self.labels[idx]

    @property
    def feature_width(self) -> int:
        return int(self.images.shape[1])

    @property
    def num_classes(self) -> int:
        return int(self.labels.shape[1])


def _collate_fn(item: tuple[torch.Tensor, torch.Tensor]) -> ClassificationBatch:
    """Wrap an (images, labels) slice as a ClassificationBatch dict."""
    images, labels = item
    return {"images": images, "labels": labels}


def make_dataloader(
    split: DatasetSplit,
    batch_size: int,
    shuffle: bool = False,
    generator: torch.Generator | None = None,
) -> DataLoader[ClassificationBatch]:
    """Iterate ``split`` in batches of ``batch_size``; the last batch may be short.

    Batches are produced in the calling thread so that optimizer steps stay
    strictly ordered.
    """
    base_sampler = (
        RandomSampler(split, generator=generator)
        if shuffle
        else SequentialSampler(split)
    )
    return DataLoader(
        split,
        sampler=BatchSampler(base_sampler, batch_size=batch_size, drop_last=False),
        batch_size=None,
        num_workers=0,
        collate_fn=_collate_fn,
    )
