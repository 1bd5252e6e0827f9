"""
pmfis.membership

Membership functions for fuzzy input variables.

Supported shapes (parameter order follows the MATLAB Fuzzy Logic Toolbox, so
systems exported from it can be loaded unchanged):

  trimf   [a, b, c]        a <= b <= c
  trapmf  [a, b, c, d]     a <= b <= c <= d
  gaussmf [sigma, c]       sigma > 0
  gbellmf [a, b, c]        a != 0

Piecewise-linear shapes return 0 outside their support and the continuous value
at every breakpoint: a triangle is exactly 1 at its peak and exactly 0 at its
feet. NaN inputs evaluate to 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple, Union

import numpy as np

from .errors import ConfigurationError

ArrayLike = Union[float, np.ndarray]

# shape -> number of parameters
SHAPES: Dict[str, int] = {
    "trimf": 3,
    "trapmf": 4,
    "gaussmf": 2,
    "gbellmf": 3,
}


def _trimf(x: np.ndarray, a: float, b: float, c: float) -> np.ndarray:
    y = np.zeros_like(x)
    if a != b:
        rise = (a < x) & (x < b)
        y[rise] = (x[rise] - a) / (b - a)
    if b != c:
        fall = (b < x) & (x < c)
        y[fall] = (c - x[fall]) / (c - b)
    y[x == b] = 1.0
    return y


def _trapmf(x: np.ndarray, a: float, b: float, c: float, d: float) -> np.ndarray:
    y = np.zeros_like(x)
    if a != b:
        rise = (a < x) & (x < b)
        y[rise] = (x[rise] - a) / (b - a)
    if c != d:
        fall = (c < x) & (x < d)
        y[fall] = (d - x[fall]) / (d - c)
    y[(b <= x) & (x <= c)] = 1.0
    return y


def _gaussmf(x: np.ndarray, sigma: float, c: float) -> np.ndarray:
    y = np.exp(-((x - c) ** 2) / (2.0 * sigma ** 2))
    return np.where(np.isnan(x), 0.0, y)


def _gbellmf(x: np.ndarray, a: float, b: float, c: float) -> np.ndarray:
    with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
        y = 1.0 / (1.0 + np.abs((x - c) / a) ** (2.0 * b))
    return np.where(np.isnan(x), 0.0, y)


_EVALUATORS = {
    "trimf": _trimf,
    "trapmf": _trapmf,
    "gaussmf": _gaussmf,
    "gbellmf": _gbellmf,
}


def _check_params(shape: str, params: Tuple[float, ...]) -> None:
    if shape not in SHAPES:
        raise ConfigurationError(f"Unknown membership function shape '{shape}'. Known: {sorted(SHAPES)}")
    if len(params) != SHAPES[shape]:
        raise ConfigurationError(
            f"{shape} expects {SHAPES[shape]} parameters, got {len(params)}: {list(params)}"
        )
    if not all(np.isfinite(params)):
        raise ConfigurationError(f"{shape} parameters must be finite: {list(params)}")
    if shape in ("trimf", "trapmf") and any(p > q for p, q in zip(params, params[1:])):
        raise ConfigurationError(f"{shape} parameters must be non-decreasing: {list(params)}")
    if shape == "gaussmf" and params[0] <= 0.0:
        raise ConfigurationError(f"gaussmf sigma must be positive: {list(params)}")
    if shape == "gbellmf" and params[0] == 0.0:
        raise ConfigurationError(f"gbellmf width must be non-zero: {list(params)}")


@dataclass(frozen=True)
class MembershipFunction:
    """
    One fuzzy set of an input variable.

    Immutable once built. `evaluate` is a pure function of its input.
    """
    shape: str
    params: Tuple[float, ...]
    name: str = ""

    def __post_init__(self):
        params = tuple(float(p) for p in self.params)
        object.__setattr__(self, "params", params)
        _check_params(self.shape, params)

    def evaluate(self, x: ArrayLike) -> ArrayLike:
        """
        Degree of membership of x (scalar or array) in [0, 1].
        """
        arr = np.atleast_1d(np.asarray(x, dtype=np.float64))
        y = _EVALUATORS[self.shape](arr, *self.params)
        y = np.clip(y, 0.0, 1.0)
        if np.ndim(x) == 0:
            return float(y[0])
        return y.reshape(np.shape(x))

    __call__ = evaluate

    def with_params(self, params) -> "MembershipFunction":
        return MembershipFunction(shape=self.shape, params=tuple(params), name=self.name)

    def to_dict(self) -> Dict:
        return {"name": self.name, "type": self.shape, "params": list(self.params)}

    @staticmethod
    def from_dict(obj: Dict) -> "MembershipFunction":
        return MembershipFunction(
            shape=obj["type"],
            params=tuple(obj["params"]),
            name=obj.get("name", ""),
        )
