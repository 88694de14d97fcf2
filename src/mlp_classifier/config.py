"""Pydantic frozen configuration models for mlp_classifier."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

ThresholdMode = Literal["abs", "rel"]


class DataModuleConfig(BaseModel, frozen=True):
    """Configuration for ArrayDataModule.

    ``path`` points at an ``.npz`` archive holding ``x_train``, ``y_train``,
    ``x_test`` and ``y_test``. ``max_pixel_value`` is the upper end of the raw
    intensity range and is applied identically to every split.
    """

    path: str = ""
    max_pixel_value: float = Field(default=255.0, gt=0)
    num_classes: int | None = Field(default=None, gt=0)


class ModelConfig(BaseModel, frozen=True):
    """Hidden-layer layout for the dense classifier."""

    hidden_width: int = Field(default=512, gt=0)
    hidden_layers: int = Field(default=2, ge=1)
    dropout_rate: float = Field(default=0.2, ge=0.0, lt=1.0)
    activation: Literal["relu", "sigmoid", "tanh"] = "relu"


class EarlyStoppingConfig(BaseModel, frozen=True):
    """Stop training once validation loss has not improved for ``patience`` epochs."""

    patience: int = Field(default=5, ge=0)
    min_delta: float = Field(default=0.001, ge=0.0)
    restore_best_weights: bool = True
    threshold_mode: ThresholdMode = "abs"
    inclusive: bool = False


class ReduceLROnPlateauConfig(BaseModel, frozen=True):
    """Multiply the learning rate by ``factor`` when validation loss plateaus."""

    patience: int = Field(default=2, ge=0)
    factor: float = Field(default=0.1, gt=0.0, lt=1.0)
    min_lr: float = Field(default=0.0, ge=0.0)
    min_delta: float = Field(default=0.0001, ge=0.0)
    threshold_mode: ThresholdMode = "abs"
    inclusive: bool = False


class TrainingConfig(BaseModel, frozen=True):
    """Immutable snapshot of everything a training run needs.

    ``validation_split`` is only consulted when the caller does not supply an
    explicit validation split. ``loss_floor`` enables the optional
    convergence stop.
    """

    loss: Literal["categorical_crossentropy", "mean_squared_error"] = (
        "categorical_crossentropy"
    )
    optimizer: Literal["sgd", "rmsprop", "adam"] = "sgd"
    learning_rate: float = Field(default=0.01, gt=0.0)
    momentum: float = Field(default=0.9, ge=0.0, lt=1.0)
    batch_size: int = Field(default=128, gt=0)
    max_epochs: int = Field(default=20, gt=0)
    validation_split: float | None = Field(default=0.1, gt=0.0, lt=1.0)
    seed: int = 42
    shuffle: bool = False
    loss_floor: float | None = None
    early_stopping: EarlyStoppingConfig | None = EarlyStoppingConfig()
    reduce_lr: ReduceLROnPlateauConfig | None = ReduceLROnPlateauConfig()

    @model_validator(mode="after")
    def _min_lr_below_learning_rate(self) -> "TrainingConfig":
        """A min_lr above the starting rate would raise the rate on first reduction."""
        if self.reduce_lr is not None and self.reduce_lr.min_lr > self.learning_rate:
            raise ValueError(
                f"reduce_lr.min_lr ({self.reduce_lr.min_lr}) must not exceed "
                f"learning_rate ({self.learning_rate})"
            )
        return self
