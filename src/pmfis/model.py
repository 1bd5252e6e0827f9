"""
pmfis.model

Differentiable PyTorch mirror of a FuzzyInferenceSystem, used to re-tune the
numeric parameters of a (reduced) system.

Model structure (same as pmfis.engine):
  For each rule i:
    IF x1 is MF[i1] AND ... AND xD is MF[iD]   (min conjunction, 0 = don't care)
    THEN y_i = w_i0 + sum_j w_ij * x_j        (linear)  or  y_i = c_i  (constant)

  y = sum_i(f_i * weight_i * y_i) / sum_i(f_i * weight_i)

Learnable:
  - the parameters of every input membership function
  - the consequent parameters (normally set by least squares, see pmfis.train)

The rule structure (antecedent index pattern, consequent pairing, weights) is
held in buffers and never changes.
"""

from __future__ import annotations

from typing import List, Tuple

import torch
import torch.nn as nn

from .errors import ConfigurationError
from .fis import FuzzyInferenceSystem


def _ramp_up(x: torch.Tensor, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    width = b - a
    safe = torch.where(width > 0, width, torch.ones_like(width))
    return torch.where(width > 0, (x - a) / safe, (x >= b).to(x.dtype))


def _ramp_down(x: torch.Tensor, c: torch.Tensor, d: torch.Tensor) -> torch.Tensor:
    width = d - c
    safe = torch.where(width > 0, width, torch.ones_like(width))
    return torch.where(width > 0, (d - x) / safe, (x <= c).to(x.dtype))


def membership(shape: str, x: torch.Tensor, p: torch.Tensor) -> torch.Tensor:
    """
    Torch version of pmfis.membership for one MF; x: (N,), p: (n_params,).
    """
    if shape == "trimf":
        y = torch.minimum(_ramp_up(x, p[0], p[1]), _ramp_down(x, p[1], p[2]))
    elif shape == "trapmf":
        up = _ramp_up(x, p[0], p[1])
        down = _ramp_down(x, p[2], p[3])
        y = torch.minimum(torch.minimum(up, down), torch.ones_like(x))
    elif shape == "gaussmf":
        y = torch.exp(-((x - p[1]) ** 2) / (2.0 * p[0] ** 2))
    elif shape == "gbellmf":
        y = 1.0 / (1.0 + torch.abs((x - p[2]) / p[0]) ** (2.0 * p[1]))
    else:
        raise ConfigurationError(f"Unsupported membership function shape '{shape}'.")
    return torch.clamp(y, 0.0, 1.0)


class FISModule(nn.Module):
    """
    Forward pass:
      1) membership degrees per input and MF
      2) gather the degrees each rule references -> (N, R, D)
      3) min over inputs -> firing (N, R)
      4) weighted average of the rule consequents
    """

    def __init__(self, fis: FuzzyInferenceSystem, dtype: torch.dtype = torch.float64):
        super().__init__()
        if fis.num_rules == 0:
            raise ConfigurationError("Cannot build a model for a system without rules.")
        kinds = {f.kind for f in fis.output.functions}
        if len(kinds) != 1:
            raise ConfigurationError("All output functions must be of the same kind to be tuned together.")
        self.kind = kinds.pop()
        self.num_inputs = fis.num_inputs
        self.num_rules = fis.num_rules

        self.shapes: List[List[str]] = [[mf.shape for mf in v.membership_functions] for v in fis.inputs]
        self.mf_params = nn.ParameterList()
        self._offsets: List[int] = []
        for var in fis.inputs:
            self._offsets.append(len(self.mf_params))
            for mf in var.membership_functions:
                self.mf_params.append(nn.Parameter(torch.tensor(mf.params, dtype=dtype)))

        ante = torch.tensor(fis.antecedent_matrix(), dtype=torch.long)
        num_mfs = torch.tensor([v.num_mfs for v in fis.inputs], dtype=torch.long)
        self.register_buffer("dont_care", ante == 0)
        self.register_buffer("invalid", (ante < 0) | (ante > num_mfs.unsqueeze(0)))
        # clamp so that gather stays in range; masked entries are overwritten later
        self.register_buffer("gather_index", torch.clamp(ante - 1, min=0))
        self.register_buffer("weights", torch.tensor([r.weight for r in fis.rules], dtype=dtype))

        # consequent rows in rule order
        rows = [fis.output.functions[r.consequent].params for r in fis.rules]
        self.consequent = nn.Parameter(torch.tensor(rows, dtype=dtype))
        self._consequent_index = [r.consequent for r in fis.rules]

    def memberships(self, x: torch.Tensor) -> List[torch.Tensor]:
        """
        Per input j: (N, num_mfs_j), with a zero column for inputs without MFs.
        """
        out = []
        for j, shapes in enumerate(self.shapes):
            if not shapes:
                out.append(torch.zeros(x.shape[0], 1, dtype=x.dtype, device=x.device))
                continue
            cols = [
                membership(shape, x[:, j], self.mf_params[self._offsets[j] + k])
                for k, shape in enumerate(shapes)
            ]
            out.append(torch.stack(cols, dim=1))
        return out

    def firing(self, x: torch.Tensor) -> torch.Tensor:
        """
        (N, D) -> (N, R) min-conjunction firing strengths.
        """
        mus = self.memberships(x)
        per_input = []
        for j, mu in enumerate(mus):
            idx = self.gather_index[:, j].clamp(max=mu.shape[1] - 1)
            per_input.append(mu[:, idx])  # (N, R)
        degrees = torch.stack(per_input, dim=2)  # (N, R, D)
        degrees = torch.where(self.invalid.unsqueeze(0), torch.zeros_like(degrees), degrees)
        degrees = torch.where(self.dont_care.unsqueeze(0), torch.ones_like(degrees), degrees)
        return torch.amin(degrees, dim=2)

    def rule_outputs(self, x: torch.Tensor) -> torch.Tensor:
        """
        (N, R) consequent output per rule.
        """
        if self.kind == "constant":
            return self.consequent[:, 0].unsqueeze(0).expand(x.shape[0], -1)
        return x @ self.consequent[:, :-1].t() + self.consequent[:, -1]

    def normalized_firing(self, x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Returns (normalized weighted firing (N, R), valid mask (N,)).
        Rows where nothing fires are all zero and marked invalid.
        """
        w = self.firing(x) * self.weights
        total = w.sum(dim=1, keepdim=True)
        valid = total.squeeze(1) > 0
        safe = torch.where(total > 0, total, torch.ones_like(total))
        return w / safe, valid

    def forward(self, x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Returns:
          y_pred: (N,) (0 where no rule fires; check the mask)
          valid : (N,) bool, True where at least one rule fired
        """
        wbar, valid = self.normalized_firing(x)
        y = torch.sum(wbar * self.rule_outputs(x), dim=1)
        return y, valid

    @torch.no_grad()
    def constrain_(self) -> None:
        """
        Restore parameter validity after a gradient step.
        """
        k = 0
        for shapes in self.shapes:
            for shape in shapes:
                p = self.mf_params[k]
                if shape in ("trimf", "trapmf"):
                    p.copy_(torch.sort(p).values)
                elif shape == "gaussmf":
                    p[0].clamp_(min=1e-6)
                elif shape == "gbellmf":
                    if torch.abs(p[0]) < 1e-6:
                        p[0].fill_(1e-6)
                k += 1

    def to_fis(self, template: FuzzyInferenceSystem) -> FuzzyInferenceSystem:
        """
        Copy of `template` carrying this module's current parameters.
        """
        input_params = []
        k = 0
        for shapes in self.shapes:
            params = []
            for _shape in shapes:
                params.append(self.mf_params[k].detach().cpu().tolist())
                k += 1
            input_params.append(params)

        rows = self.consequent.detach().cpu().tolist()
        output_params = [None] * self.num_rules
        for r, fn_index in enumerate(self._consequent_index):
            output_params[fn_index] = rows[r]
        return template.with_parameters(input_params=input_params, output_params=output_params)

    def extra_repr(self) -> str:
        return f"num_inputs={self.num_inputs}, num_rules={self.num_rules}, consequent={self.kind}"
