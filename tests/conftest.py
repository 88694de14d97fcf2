"""Shared pytest fixtures for mlp_classifier tests."""

from pathlib import Path

import numpy as np
import pytest
import torch

from mlp_classifier.data.dataset import DatasetSplit
from mlp_classifier.data.preprocessing import one_hot_encode


def _make_raw(n: int, seed: int) -> tuple[np.ndarray, np.ndarray]:
    """Two-class 4x4 uint8 images: class 0 lights the top half, class 1 the bottom."""
    rng = np.random.default_rng(seed)
    labels = np.arange(n) % 2
    images = rng.integers(0, 40, size=(n, 4, 4)).astype(np.uint8)
    images[labels == 0, :2, :] += 200
    images[labels == 1, 2:, :] += 200
    return images, labels.astype(np.int64)


@pytest.fixture()
def raw_train() -> tuple[np.ndarray, np.ndarray]:
    """64 raw training images of shape (4, 4) with labels in {0, 1}."""
    return _make_raw(64, seed=0)


@pytest.fixture()
def raw_test() -> tuple[np.ndarray, np.ndarray]:
    """16 raw test images drawn like ``raw_train``."""
    return _make_raw(16, seed=1)


@pytest.fixture()
def npz_path(
    tmp_path: Path,
    raw_train: tuple[np.ndarray, np.ndarray],
    raw_test: tuple[np.ndarray, np.ndarray],
) -> Path:
    """An mnist.npz-style archive holding ``raw_train`` and ``raw_test``."""
    path = tmp_path / "mnist.npz"
    np.savez(
        path,
        x_train=raw_train[0],
        y_train=raw_train[1],
        x_test=raw_test[0],
        y_test=raw_test[1],
    )
    return path


@pytest.fixture()
def tiny_split() -> DatasetSplit:
    """8 samples, 6 features, 3 classes."""
    generator = torch.Generator().manual_seed(0)
    images = torch.rand(8, 6, generator=generator)
    labels = one_hot_encode(torch.tensor([0, 1, 2, 0, 1, 2, 0, 1]), 3)
    return DatasetSplit(images, labels)


@pytest.fixture()
def tiny_val_split() -> DatasetSplit:
    """4 samples, 6 features, 3 classes."""
    generator = torch.Generator().manual_seed(1)
    images = torch.rand(4, 6, generator=generator)
    labels = one_hot_encode(torch.tensor([2, 1, 0, 2]), 3)
    return DatasetSplit(images, labels)
