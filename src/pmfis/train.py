"""
pmfis.train

ANFIS-style hybrid tuning of a FuzzyInferenceSystem with fixed rule structure.

Each epoch:
  1) Least squares: with the membership functions fixed, the output is linear
     in the consequent parameters, so they are solved in closed form
     (ridge-stabilized normal equations over the normalized firing design matrix).
  2) Gradient descent: one Adam step on the membership-function parameters,
     minimizing MSE over the samples for which at least one rule fires.
     Parameters are then re-sorted / clamped to remain valid shapes.

The parameters with the lowest training loss seen are returned as a new system.
Only numeric parameters change: inputs, MF shapes, rules and weights are kept.

Errors:
  - ConfigurationError: X / y size mismatch or wrong number of columns
  - TrainerFailure    : no usable samples, singular solve or non-finite loss
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import torch

from .errors import ConfigurationError, TrainerFailure
from .fis import FuzzyInferenceSystem
from .model import FISModule

logger = logging.getLogger(__name__)


@dataclass
class TrainConfig:
    """
    Hybrid trainer configuration.
    """
    epochs: int = 100
    lr: float = 1e-2
    ridge: float = 1e-8
    error_goal: float = 0.0  # stop once training MSE <= error_goal
    tune_inputs: bool = True
    seed: int = 1337
    device: str = "cpu"  # "cuda" or "cpu"


def _set_seed(seed: int) -> None:
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)


def _to_device(device: str) -> torch.device:
    if device == "cuda" and torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def design_matrix(wbar: torch.Tensor, x: torch.Tensor, kind: str) -> torch.Tensor:
    """
    Regressors of the consequent least-squares problem.

      constant: Phi = wbar                          (N, R)
      linear  : Phi[n, r*(D+1) + j] = wbar[n, r] * [x, 1][n, j]   (N, R*(D+1))
    """
    if kind == "constant":
        return wbar
    xa = torch.cat([x, torch.ones(x.shape[0], 1, dtype=x.dtype, device=x.device)], dim=1)
    return (wbar.unsqueeze(2) * xa.unsqueeze(1)).reshape(x.shape[0], -1)


def solve_consequents(phi: torch.Tensor, y: torch.Tensor, ridge: float) -> torch.Tensor:
    """
    argmin ||phi @ theta - y||^2 + ridge * ||theta||^2
    """
    gram = phi.t() @ phi
    eye = torch.eye(gram.shape[0], dtype=gram.dtype, device=gram.device)
    rhs = phi.t() @ y
    try:
        return torch.linalg.solve(gram + ridge * eye, rhs)
    except RuntimeError:
        # singular even with ridge: fall back to the minimum-norm solution
        return torch.linalg.lstsq(phi.cpu(), y.cpu().unsqueeze(1), driver="gelsd").solution.squeeze(1).to(y.device)


class HybridTrainer:
    """
    Implements the Trainer protocol used by pmfis.reduction.RulePruner:

      tune(fis, X, y, epochs) -> fis with re-tuned parameters
    """

    def __init__(self, cfg: Optional[TrainConfig] = None):
        self.cfg = cfg or TrainConfig()
        self.history: List[Dict[str, float]] = []

    def tune(self, fis: FuzzyInferenceSystem, X, y, epochs: Optional[int] = None) -> FuzzyInferenceSystem:
        cfg = self.cfg
        epochs = int(epochs if epochs is not None else cfg.epochs)
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64).reshape(-1)
        if X.ndim != 2 or X.shape[1] != fis.num_inputs:
            raise ConfigurationError(f"Expected X with {fis.num_inputs} columns, got shape {X.shape}.")
        if X.shape[0] != y.shape[0]:
            raise ConfigurationError(f"Input/output size mismatch: {X.shape[0]} vs {y.shape[0]}.")

        finite = np.isfinite(X).all(axis=1) & np.isfinite(y)
        if not finite.any():
            raise TrainerFailure("No finite training samples.")

        _set_seed(cfg.seed)
        device = _to_device(cfg.device)

        model = FISModule(fis).to(device)
        model.consequent.requires_grad_(False)
        xt = torch.from_numpy(X[finite]).to(device)
        yt = torch.from_numpy(y[finite]).to(device)

        optimizer = None
        if cfg.tune_inputs and len(model.mf_params) > 0:
            optimizer = torch.optim.Adam(model.mf_params.parameters(), lr=cfg.lr)

        best_loss = float("inf")
        best_state = None
        self.history = []

        for epoch in range(1, epochs + 1):
            # 1) least-squares consequents
            with torch.no_grad():
                wbar, valid = model.normalized_firing(xt)
                if not bool(valid.any()):
                    raise TrainerFailure(f"No rule fires for any training sample (epoch {epoch}).")
                phi = design_matrix(wbar[valid], xt[valid], model.kind)
                theta = solve_consequents(phi, yt[valid], cfg.ridge)
                if not torch.isfinite(theta).all():
                    raise TrainerFailure(f"Least-squares solve produced non-finite parameters (epoch {epoch}).")
                model.consequent.copy_(theta.reshape(model.num_rules, -1))

            # 2) gradient step on membership functions
            if optimizer is not None:
                optimizer.zero_grad(set_to_none=True)
            y_pred, valid = model(xt)
            loss = torch.mean((y_pred[valid] - yt[valid]) ** 2)
            loss_value = float(loss.detach().item())
            if not np.isfinite(loss_value):
                raise TrainerFailure(f"Training loss became non-finite (epoch {epoch}).")

            self.history.append({"epoch": epoch, "train_loss": loss_value, "n_valid": int(valid.sum())})
            if loss_value < best_loss:
                best_loss = loss_value
                best_state = copy.deepcopy(model.state_dict())

            if loss_value <= cfg.error_goal:
                break

            if optimizer is not None:
                loss.backward()
                optimizer.step()
                model.constrain_()

        if best_state is not None:
            model.load_state_dict(best_state)

        logger.debug("Tuned %d-rule system: best train MSE %.6g after %d epochs", fis.num_rules, best_loss, len(self.history))
        return model.to_fis(fis)
