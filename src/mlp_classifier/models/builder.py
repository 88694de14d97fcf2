"""Declarative network topology: layer specs, an append-only builder and presets."""

from __future__ import annotations

from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field, model_validator

from mlp_classifier.errors import TopologyError

Activation = Literal["relu", "sigmoid", "tanh", "softmax", "linear"]


class LayerSpec(BaseModel, frozen=True):
    """One layer of the network.

    Dense layers consume ``input_width`` features and emit ``units``.
    Dropout layers pass their width through unchanged.
    """

    kind: Literal["dense", "dropout"]
    input_width: int = Field(gt=0)
    units: int | None = Field(default=None, gt=0)
    activation: Activation | None = None
    rate: float | None = Field(default=None, ge=0.0, lt=1.0)

    @model_validator(mode="after")
    def _fields_match_kind(self) -> "LayerSpec":
        if self.kind == "dense" and (self.units is None or self.activation is None):
            raise ValueError("dense layers need units and activation")
        if self.kind == "dropout" and self.rate is None:
            raise ValueError("dropout layers need rate")
        return self

    @property
    def output_width(self) -> int:
        if self.kind == "dense":
            return self.units  # type: ignore[return-value]
        return self.input_width


class ModelTopology(BaseModel, frozen=True):
    """Immutable, validated layer sequence produced by :class:`ModelBuilder`."""

    input_width: int = Field(gt=0)
    num_classes: int = Field(gt=0)
    layers: tuple[LayerSpec, ...]

    @property
    def output_width(self) -> int:
        return self.layers[-1].output_width

    def describe(self) -> str:
        """One line per layer, e.g. ``dense 784->512 relu``."""
        lines = []
        for layer in self.layers:
            if layer.kind == "dense":
                lines.append(
                    f"dense {layer.input_width}->{layer.units} {layer.activation}"
                )
            else:
                lines.append(f"dropout {layer.input_width} rate={layer.rate}")
        return "\n".join(lines)


class ModelBuilder:
    """Accumulates layer specs in order; :meth:`build` returns a ModelTopology.

    Width consistency is checked as each layer is appended: a dense layer
    declaring an ``input_width`` must match the width emitted by the layer
    before it. No numeric computation happens here.

    Example::

        topology = (
            ModelBuilder(input_width=784)
            .add_dense(512, "relu")
            .add_dropout(0.2)
            .add_dense(10, "softmax")
            .build(num_classes=10)
        )
    """

    def __init__(self, input_width: int) -> None:
        if input_width <= 0:
            raise TopologyError(f"input_width must be > 0, got {input_width}")
        self._input_width = input_width
        self._layers: list[LayerSpec] = []

    @property
    def current_width(self) -> int:
        """Width emitted by the last appended layer (or the input width)."""
        if not self._layers:
            return self._input_width
        return self._layers[-1].output_width

    def add_dense(
        self,
        units: int,
        activation: Activation = "relu",
        input_width: int | None = None,
    ) -> ModelBuilder:
        if input_width is not None and input_width != self.current_width:
            position = len(self._layers)
            raise TopologyError(
                f"Layer {position} expects input width {input_width} but the "
                f"previous layer emits {self.current_width}"
            )
        if units <= 0:
            raise TopologyError(f"Dense units must be > 0, got {units}")
        self._layers.append(
            LayerSpec(
                kind="dense",
                input_width=self.current_width,
                units=units,
                activation=activation,
            )
        )
        return self

    def add_dropout(self, rate: float) -> ModelBuilder:
        if not 0.0 <= rate < 1.0:
            raise TopologyError(f"Dropout rate must be in [0, 1), got {rate}")
        self._layers.append(
            LayerSpec(kind="dropout", input_width=self.current_width, rate=rate)
        )
        return self

    def build(self, num_classes: int) -> ModelTopology:
        """Validate the output layer and freeze the topology.

        Raises:
            TopologyError: If there are no layers, or the final layer is not a
                softmax dense layer of width ``num_classes``.
        """
        if not self._layers:
            raise TopologyError("Topology has no layers")
        last = self._layers[-1]
        if last.kind != "dense":
            raise TopologyError("The final layer must be dense")
        if last.units != num_classes:
            raise TopologyError(
                f"Final layer width {last.units} != num_classes {num_classes}"
            )
        if last.activation != "softmax":
            raise TopologyError(
                f"Final layer must use softmax for categorical cross-entropy, "
                f"got {last.activation}"
            )
        topology = ModelTopology(
            input_width=self._input_width,
            num_classes=num_classes,
            layers=tuple(self._layers),
        )
        logger.debug(f"Built topology:\n{topology.describe()}")
        return topology


def build_mlp_topology(
    input_width: int,
    num_classes: int,
    hidden_width: int = 512,
    hidden_layers: int = 2,
    dropout_rate: float = 0.2,
    activation: Activation = "relu",
) -> ModelTopology:
    """Hidden dense blocks, each followed by dropout, then a softmax head.

    With the defaults this is Dense(512) -> Dropout(0.2) -> Dense(512) ->
    Dropout(0.2) -> Dense(num_classes, softmax).
    """
    builder = ModelBuilder(input_width)
    for _ in range(hidden_layers):
        builder.add_dense(hidden_width, activation)
        if dropout_rate > 0:
            builder.add_dropout(dropout_rate)
    builder.add_dense(num_classes, "softmax")
    return builder.build(num_classes)
