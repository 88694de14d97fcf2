"""Training entrypoint for mlp_classifier.

Usage:
    mlp-train                                   # defaults
    mlp-train data.path=/data/mnist.npz         # point at the dataset
    mlp-train training.max_epochs=5             # override epochs
    mlp-train training.early_stopping=null      # disable early stopping
"""

import json
import sys
from pathlib import Path

import hydra
import lightning as L
from hydra.core.hydra_config import HydraConfig
from loguru import logger
from omegaconf import DictConfig, OmegaConf

from mlp_classifier.config import DataModuleConfig, ModelConfig, TrainingConfig
from mlp_classifier.data.datamodule import ArrayDataModule
from mlp_classifier.models.builder import build_mlp_topology
from mlp_classifier.training.controller import TrainingController, TrainingResult
from mlp_classifier.training.evaluation import evaluate


def load_configs(
    cfg: DictConfig,
) -> tuple[DataModuleConfig, ModelConfig, TrainingConfig]:
    """Validate the composed Hydra config into frozen pydantic models."""
    return (
        DataModuleConfig.model_validate(OmegaConf.to_container(cfg.data, resolve=True)),
        ModelConfig.model_validate(OmegaConf.to_container(cfg.model, resolve=True)),
        TrainingConfig.model_validate(
            OmegaConf.to_container(cfg.training, resolve=True)
        ),
    )


def run_training(cfg: DictConfig, output_dir: Path) -> TrainingResult:
    """Prepare data, train, evaluate on the test split and save artifacts.

    Writes ``history.json``, ``model_state.pt`` and ``test_metrics.json``
    under ``output_dir``.
    """
    data_cfg, model_cfg, training_cfg = load_configs(cfg)

    datamodule = ArrayDataModule.from_npz(
        data_cfg,
        batch_size=training_cfg.batch_size,
        validation_split=training_cfg.validation_split,
        seed=training_cfg.seed,
    )
    datamodule.setup("fit")
    datamodule.setup("test")

    topology = build_mlp_topology(
        input_width=datamodule.feature_width,
        num_classes=datamodule.num_classes,
        hidden_width=model_cfg.hidden_width,
        hidden_layers=model_cfg.hidden_layers,
        dropout_rate=model_cfg.dropout_rate,
        activation=model_cfg.activation,
    )
    logger.info(f"Topology:\n{topology.describe()}")

    controller = TrainingController()
    result = controller.start(
        topology, training_cfg, datamodule.train_split, datamodule.val_split
    )

    result.history.save(output_dir / "history.json")
    result.model_state.save(output_dir / "model_state.pt")
    metrics = evaluate(
        result.model_state,
        datamodule.test_split,
        batch_size=training_cfg.batch_size,
        loss=training_cfg.loss,
    )
    with open(output_dir / "test_metrics.json", "w") as f:
        json.dump(metrics, f, indent=2)
    return result


@hydra.main(version_base=None, config_path="conf", config_name="train_mnist_mlp")
def main(cfg: DictConfig) -> None:
    """Run training with the given Hydra config."""
    logger.remove()
    logger.add(sys.stderr, level=cfg.get("log_level", "INFO"))

    logger.info(f"Configuration:\n{OmegaConf.to_yaml(cfg)}")

    # Seed everything for reproducibility
    L.seed_everything(cfg.get("seed", 42), workers=True)

    output_dir = Path(HydraConfig.get().runtime.output_dir)
    run_training(cfg, output_dir)


if __name__ == "__main__":
    main()
