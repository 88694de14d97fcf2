"""Model topology and network construction."""

from mlp_classifier.models.builder import (
    LayerSpec,
    ModelBuilder,
    ModelTopology,
    build_mlp_topology,
)
from mlp_classifier.models.network import ModelSnapshot, ModelState, build_network

__all__ = [
    "LayerSpec",
    "ModelBuilder",
    "ModelSnapshot",
    "ModelState",
    "ModelTopology",
    "build_mlp_topology",
    "build_network",
]
