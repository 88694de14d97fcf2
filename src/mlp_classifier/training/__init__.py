"""Training control for mlp_classifier."""

from mlp_classifier.training.controller import (
    TrainerState,
    TrainingController,
    TrainingResult,
)
from mlp_classifier.training.evaluation import evaluate
from mlp_classifier.training.history import EpochRecord, TrainingHistory
from mlp_classifier.training.step import (
    OptimizerStep,
    StepOutput,
    TorchOptimizerStep,
    build_optimizer,
)

__all__ = [
    "EpochRecord",
    "OptimizerStep",
    "StepOutput",
    "TorchOptimizerStep",
    "TrainerState",
    "TrainingController",
    "TrainingHistory",
    "TrainingResult",
    "build_optimizer",
    "evaluate",
]
