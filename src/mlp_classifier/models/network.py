"""Compose torch layers from a ModelTopology and own the learned weights."""

from __future__ import annotations

import copy
from pathlib import Path

import torch
from loguru import logger
from torch import nn

from mlp_classifier.models.builder import LayerSpec, ModelTopology

ModelSnapshot = dict[str, torch.Tensor]

_ACTIVATIONS: dict[str, type[nn.Module]] = {
    "relu": nn.ReLU,
    "sigmoid": nn.Sigmoid,
    "tanh": nn.Tanh,
    "linear": nn.Identity,
}


def _layer_modules(spec: LayerSpec) -> list[nn.Module]:
    if spec.kind == "dropout":
        return [nn.Dropout(p=spec.rate)]  # type: ignore[arg-type]
    modules: list[nn.Module] = [nn.Linear(spec.input_width, spec.units)]  # type: ignore[arg-type]
    if spec.activation == "softmax":
        modules.append(nn.Softmax(dim=1))
    else:
        modules.append(_ACTIVATIONS[spec.activation]())  # type: ignore[index]
    return modules


def build_network(topology: ModelTopology) -> nn.Sequential:
    """Translate the topology into an ``nn.Sequential`` in layer order.

    The output layer keeps its softmax, so the network emits class
    probabilities rather than logits.
    """
    modules: list[nn.Module] = []
    for spec in topology.layers:
        modules.extend(_layer_modules(spec))
    return nn.Sequential(*modules)


class ModelState:
    """Learned weights of one network instance.

    The training controller is the only caller allowed to mutate it during a
    run. ``snapshot``/``restore`` back best-weight retention.
    """

    def __init__(self, module: nn.Module, topology: ModelTopology) -> None:
        self.module = module
        self.topology = topology

    @classmethod
    def from_topology(cls, topology: ModelTopology, seed: int | None = None) -> ModelState:
        """Build and initialise the network; ``seed`` makes init deterministic."""
        if seed is not None:
            with torch.random.fork_rng(devices=[]):
                torch.manual_seed(seed)
                module = build_network(topology)
        else:
            module = build_network(topology)
        n_params = sum(p.numel() for p in module.parameters())
        logger.info(f"Initialised network with {n_params:,} parameters")
        return cls(module, topology)

    def snapshot(self) -> ModelSnapshot:
        """Deep copy of the current weights."""
        return copy.deepcopy(self.module.state_dict())

    def restore(self, snapshot: ModelSnapshot) -> None:
        self.module.load_state_dict(snapshot)

    def state_dict(self) -> ModelSnapshot:
        return self.module.state_dict()

    def predict(self, images: torch.Tensor) -> torch.Tensor:
        """Class probabilities for ``images`` with dropout disabled."""
        self.module.eval()
        with torch.no_grad():
            return self.module(images)  # type: ignore[no-any-return]

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        torch.save(self.module.state_dict(), path)
        logger.info(f"Saved model state to {path}")
