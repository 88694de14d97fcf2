"""Exception taxonomy for mlp_classifier.

Each error is raised by the component that would otherwise produce corrupted
data and is never caught inside the package.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mlp_classifier.training.history import TrainingHistory


class ShapeError(ValueError):
    """Tensor rank or dimension mismatch."""


class RangeError(ValueError):
    """Degenerate or inverted scaling range."""


class DomainError(ValueError):
    """Class label outside ``[0, num_classes - 1]``."""


class TopologyError(ValueError):
    """Inconsistent layer widths or an invalid output layer."""


class DivergenceError(RuntimeError):
    """Loss stayed non-finite for two consecutive epochs.

    Args:
        message: Human-readable description.
        epoch: The epoch at which the run was aborted.
        history: Frozen history holding every epoch recorded before the abort.
    """

    def __init__(
        self, message: str, epoch: int, history: TrainingHistory
    ) -> None:
        super().__init__(message)
        self.epoch = epoch
        self.history = history
