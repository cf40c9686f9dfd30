# ABOUTME: Declares the PyTorch Lightning feed-forward network used as the neural performance regressor.
# ABOUTME: Trains on standardized targets with early stopping and exposes a deterministic inference wrapper.

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pytorch_lightning as pl
import torch
from pytorch_lightning.callbacks import Callback, EarlyStopping
from torch import nn
from torch.utils.data import DataLoader, TensorDataset
from torchmetrics.regression import MeanAbsoluteError

from src.common.config import RegressorConfig


@dataclass
class FeedForwardConfig:
    """Configuration values needed by the feed-forward performance module."""

    input_dim: int
    hidden_units: Sequence[int]
    dropout: float
    learning_rate: float
    weight_decay: float


class PerformanceNetwork(pl.LightningModule):
    """Linear/ReLU/LayerNorm/Dropout stack regressing a single standardized score."""

    def __init__(self, config: FeedForwardConfig) -> None:
        super().__init__()
        self.config = config

        layers = []
        in_dim = config.input_dim
        for units in config.hidden_units:
            layers.append(nn.Linear(in_dim, units))
            layers.append(nn.ReLU())
            layers.append(nn.LayerNorm(units))
            layers.append(nn.Dropout(config.dropout))
            in_dim = units
        layers.append(nn.Linear(in_dim, 1))
        self.network = nn.Sequential(*layers)

        self.criterion = nn.MSELoss()
        self.val_mae = MeanAbsoluteError()

    def forward(self, features: torch.Tensor) -> torch.Tensor:
        return self.network(features).squeeze(-1)

    def training_step(self, batch, batch_idx):
        features, targets = batch
        loss = self.criterion(self.forward(features), targets)
        self.log("train_loss", loss, prog_bar=False, on_step=False, on_epoch=True)
        return loss

    def validation_step(self, batch, batch_idx):
        features, targets = batch
        preds = self.forward(features)
        loss = self.criterion(preds, targets)
        self.val_mae.update(preds, targets)
        self.log("val_loss", loss, prog_bar=False, on_step=False, on_epoch=True)
        return loss

    def on_validation_epoch_end(self):
        self.log("val_mae", self.val_mae.compute())
        self.val_mae.reset()

    def configure_optimizers(self):
        return torch.optim.AdamW(
            self.parameters(),
            lr=self.config.learning_rate,
            weight_decay=self.config.weight_decay,
        )


class RestoreBestWeights(Callback):
    """Keeps the weights from the epoch with the lowest val_loss and restores them when fitting ends."""

    def __init__(self, monitor: str = "val_loss") -> None:
        self.monitor = monitor
        self.best_score = float("inf")
        self.best_state: Optional[Dict[str, torch.Tensor]] = None

    def on_validation_epoch_end(self, trainer, pl_module):
        if trainer.sanity_checking:
            return
        score = trainer.callback_metrics.get(self.monitor)
        if score is None:
            return
        score = float(score)
        if score < self.best_score:
            self.best_score = score
            self.best_state = copy.deepcopy(pl_module.state_dict())

    def on_fit_end(self, trainer, pl_module):
        if self.best_state is not None:
            pl_module.load_state_dict(self.best_state)


class NetworkEstimator:
    """Inference wrapper: eval mode, no gradients, targets mapped back to their original scale."""

    def __init__(self, module: PerformanceNetwork, target_mean: float, target_scale: float) -> None:
        self.module = module.cpu().eval()
        self.target_mean = float(target_mean)
        self.target_scale = float(target_scale)

    def predict(self, features: np.ndarray) -> np.ndarray:
        self.module.eval()
        with torch.no_grad():
            outputs = self.module(torch.as_tensor(features, dtype=torch.float32))
        return outputs.cpu().numpy().astype(np.float64) * self.target_scale + self.target_mean

    def __getstate__(self):
        return {
            "config": asdict(self.module.config),
            "state_dict": self.module.state_dict(),
            "target_mean": self.target_mean,
            "target_scale": self.target_scale,
        }

    def __setstate__(self, state):
        config = FeedForwardConfig(**state["config"])
        module = PerformanceNetwork(config)
        module.load_state_dict(state["state_dict"])
        self.module = module.eval()
        self.target_mean = state["target_mean"]
        self.target_scale = state["target_scale"]


def train_network(
    x_train: np.ndarray,
    y_train: np.ndarray,
    x_val: np.ndarray,
    y_val: np.ndarray,
    config: RegressorConfig,
) -> NetworkEstimator:
    """Fit a PerformanceNetwork with Lightning and wrap the best weights for inference."""

    pl.seed_everything(config.seed, workers=True)

    target_mean = float(np.mean(y_train))
    target_scale = float(np.std(y_train)) or 1.0

    module = PerformanceNetwork(
        FeedForwardConfig(
            input_dim=x_train.shape[1],
            hidden_units=tuple(config.hidden_units),
            dropout=config.dropout,
            learning_rate=config.learning_rate,
            weight_decay=config.weight_decay,
        )
    )

    train_loader = _loader(x_train, y_train, target_mean, target_scale, config, shuffle=True)
    val_loader = None
    callbacks = []
    if len(x_val):
        val_loader = _loader(x_val, y_val, target_mean, target_scale, config, shuffle=False)
        callbacks = [
            EarlyStopping(monitor="val_loss", mode="min", patience=config.patience),
            RestoreBestWeights(monitor="val_loss"),
        ]

    trainer = pl.Trainer(
        max_epochs=config.max_epochs,
        accelerator=config.accelerator,
        devices=1,
        logger=False,
        enable_checkpointing=False,
        enable_progress_bar=False,
        enable_model_summary=False,
        deterministic=True,
        num_sanity_val_steps=0,
        callbacks=callbacks,
    )
    trainer.fit(module, train_loader, val_loader)
    return NetworkEstimator(module, target_mean, target_scale)


def _loader(features, targets, target_mean, target_scale, config: RegressorConfig, shuffle: bool) -> DataLoader:
    dataset = TensorDataset(
        torch.as_tensor(features, dtype=torch.float32),
        torch.as_tensor((np.asarray(targets) - target_mean) / target_scale, dtype=torch.float32),
    )
    generator = torch.Generator().manual_seed(config.seed) if shuffle else None
    return DataLoader(
        dataset,
        batch_size=max(1, min(config.batch_size, len(dataset))),
        shuffle=shuffle,
        generator=generator,
        num_workers=0,
    )
