"""Data pipeline for mlp_classifier."""

from mlp_classifier.data.datamodule import ArrayDataModule, load_npz_arrays
from mlp_classifier.data.dataset import DatasetSplit, make_dataloader
from mlp_classifier.data.preprocessing import (
    decode_one_hot,
    flatten_images,
    one_hot_encode,
    scale_features,
    shuffle_dataset,
    split_validation,
    unflatten_images,
)

__all__ = [
    "ArrayDataModule",
    "DatasetSplit",
    "decode_one_hot",
    "flatten_images",
    "load_npz_arrays",
    "make_dataloader",
    "one_hot_encode",
    "scale_features",
    "shuffle_dataset",
    "split_validation",
    "unflatten_images",
]
