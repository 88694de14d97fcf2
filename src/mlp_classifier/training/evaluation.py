"""Held-out evaluation of a trained ModelState."""

from __future__ import annotations

import torch
from loguru import logger
from torchmetrics.classification import MulticlassAccuracy

from mlp_classifier.data.dataset import DatasetSplit, make_dataloader
from mlp_classifier.losses import build_loss_fn
from mlp_classifier.models.network import ModelState


def evaluate(
    model_state: ModelState,
    split: DatasetSplit,
    batch_size: int = 128,
    loss: str = "categorical_crossentropy",
) -> dict[str, float]:
    """Loss and top-1 accuracy over ``split`` with dropout disabled.

    Returns:
        ``{"loss": ..., "accuracy": ...}`` averaged over all samples.
    """
    loss_fn = build_loss_fn(loss)
    accuracy = MulticlassAccuracy(num_classes=split.num_classes, top_k=1, average="micro")
    total_loss = 0.0
    for batch in make_dataloader(split, batch_size):
        probs = model_state.predict(batch["images"])
        with torch.no_grad():
            total_loss += float(loss_fn(probs, batch["labels"])) * probs.shape[0]
        accuracy.update(probs, batch["labels"].argmax(dim=1))
    metrics = {
        "loss": total_loss / len(split),
        "accuracy": float(accuracy.compute()),
    }
    logger.info(
        f"Evaluation on {len(split)} samples: loss={metrics['loss']:.4f} "
        f"accuracy={metrics['accuracy']:.4f}"
    )
    return metrics
