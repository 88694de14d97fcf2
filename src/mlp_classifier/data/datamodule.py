"""LightningDataModule that prepares raw (N, H, W) image arrays for training."""

from pathlib import Path
from typing import Any

import lightning as L
import numpy as np
import torch
from loguru import logger
from torch.utils.data import DataLoader

from mlp_classifier.config import DataModuleConfig
from mlp_classifier.data.dataset import DatasetSplit, make_dataloader
from mlp_classifier.data.preprocessing import (
    flatten_images,
    one_hot_encode,
    scale_features,
    shuffle_dataset,
    split_validation,
)
from mlp_classifier.types import ClassificationBatch

NPZ_KEYS: tuple[str, ...] = ("x_train", "y_train", "x_test", "y_test")


def load_npz_arrays(path: Path) -> dict[str, np.ndarray]:
    """Load the raw train/test arrays from an ``.npz`` archive.

    Raises:
        KeyError: If any of ``x_train``, ``y_train``, ``x_test``, ``y_test``
            is missing.
    """
    with np.load(path) as archive:
        missing = [key for key in NPZ_KEYS if key not in archive.files]
        if missing:
            raise KeyError(f"{path} is missing arrays: {missing}")
        arrays = {key: archive[key] for key in NPZ_KEYS}
    logger.info(
        f"Loaded {path}: train={arrays['x_train'].shape}, "
        f"test={arrays['x_test'].shape}"
    )
    return arrays


class ArrayDataModule(L.LightningDataModule):
    """DataModule over in-memory train/test image arrays.

    Pipeline per split: flatten (N, H, W) -> (N, H*W), scale
    ``[0, max_pixel_value]`` -> ``[0, 1]``, one-hot encode labels. The train
    split is then shuffled jointly with ``seed`` and, when
    ``validation_split`` is set, its tail is held out for validation.

    ``num_classes`` is inferred from the train labels when not configured and
    shared with the test split, so both are encoded with the same width.

    Args:
        train_images: Raw (N, H, W) training images.
        train_labels: (N,) integer training labels.
        test_images: Optional raw (M, H, W) test images.
        test_labels: Optional (M,) integer test labels.
        config: DataModuleConfig; if provided, flat kwargs are ignored.
        max_pixel_value: Upper end of the raw intensity range.
        num_classes: Number of classes; inferred from train labels when None.
        batch_size: Batch size for the DataLoaders.
        validation_split: Fraction of the shuffled train split to hold out.
        seed: Seed for the joint shuffle.
        **kwargs: Absorbs extra Hydra-injected keys.
    """

    def __init__(
        self,
        train_images: Any,
        train_labels: Any,
        test_images: Any | None = None,
        test_labels: Any | None = None,
        config: DataModuleConfig | None = None,
        *,
        max_pixel_value: float = 255.0,
        num_classes: int | None = None,
        batch_size: int = 128,
        validation_split: float | None = None,
        seed: int = 42,
        **kwargs: Any,
    ) -> None:
        super().__init__()
        if config is not None:
            self._config = config
        else:
            self._config = DataModuleConfig(
                max_pixel_value=max_pixel_value, num_classes=num_classes
            )
        self._raw_train = (train_images, train_labels)
        self._raw_test = (
            (test_images, test_labels)
            if test_images is not None and test_labels is not None
            else None
        )
        self._batch_size = batch_size
        self._validation_split = validation_split
        self._seed = seed

        self._num_classes = self._config.num_classes
        self._image_shape: tuple[int, int] | None = None
        self._train_split: DatasetSplit | None = None
        self._val_split: DatasetSplit | None = None
        self._test_split: DatasetSplit | None = None

    @classmethod
    def from_npz(
        cls, config: DataModuleConfig, **kwargs: Any
    ) -> "ArrayDataModule":
        """Build a data module from the archive at ``config.path``."""
        arrays = load_npz_arrays(Path(config.path))
        return cls(
            arrays["x_train"],
            arrays["y_train"],
            arrays["x_test"],
            arrays["y_test"],
            config=config,
            **kwargs,
        )

    @property
    def num_classes(self) -> int:
        """Number of classes, inferred from train labels on first access."""
        if self._num_classes is None:
            labels = torch.as_tensor(self._raw_train[1])
            self._num_classes = int(labels.max()) + 1
            logger.info(f"Inferred num_classes={self._num_classes} from train labels")
        return self._num_classes

    @property
    def image_shape(self) -> tuple[int, int]:
        """(H, W) of the raw training images."""
        if self._image_shape is None:
            images = torch.as_tensor(self._raw_train[0])
            self._image_shape = (int(images.shape[-2]), int(images.shape[-1]))
        return self._image_shape

    @property
    def feature_width(self) -> int:
        height, width = self.image_shape
        return height * width

    def _prepare(self, images: Any, labels: Any) -> tuple[torch.Tensor, torch.Tensor]:
        features = scale_features(
            flatten_images(images), 0.0, self._config.max_pixel_value
        )
        return features, one_hot_encode(labels, self.num_classes)

    def setup(self, stage: str | None = None) -> None:
        """Prepare splits for the given stage.

        Args:
            stage: "fit" prepares train (+ validation), "test" prepares test,
                None prepares both.
        """
        if stage in ("fit", None):
            images, labels = self._prepare(*self._raw_train)
            images, labels, _ = shuffle_dataset(images, labels, self._seed)
            if self._validation_split is not None:
                (images, labels), (val_images, val_labels) = split_validation(
                    images, labels, self._validation_split
                )
                self._val_split = DatasetSplit(val_images, val_labels)
            self._train_split = DatasetSplit(images, labels)
            logger.info(
                f"Setup fit: train={len(self._train_split)}, "
                f"val={len(self._val_split) if self._val_split else 0} samples, "
                f"{self.num_classes} classes"
            )

        if stage in ("test", None):
            if self._raw_test is None:
                raise RuntimeError("No test arrays were provided")
            self._test_split = DatasetSplit(*self._prepare(*self._raw_test))
            logger.info(f"Setup test: {len(self._test_split)} samples")

    @property
    def train_split(self) -> DatasetSplit:
        if self._train_split is None:
            raise RuntimeError("Call setup('fit') first")
        return self._train_split

    @property
    def val_split(self) -> DatasetSplit | None:
        """Held-out validation split, or None when validation_split is unset."""
        if self._train_split is None:
            raise RuntimeError("Call setup('fit') first")
        return self._val_split

    @property
    def test_split(self) -> DatasetSplit:
        if self._test_split is None:
            raise RuntimeError("Call setup('test') first")
        return self._test_split

    def train_dataloader(self) -> DataLoader[ClassificationBatch]:
        return make_dataloader(self.train_split, self._batch_size)

    def val_dataloader(self) -> DataLoader[ClassificationBatch]:
        split = self.val_split
        if split is None:
            raise RuntimeError("No validation split: set validation_split")
        return make_dataloader(split, self._batch_size)

    def test_dataloader(self) -> DataLoader[ClassificationBatch]:
        return make_dataloader(self.test_split, self._batch_size)
