"""
pmfis.fis

Data model of a first-order (or zero-order) Sugeno fuzzy inference system.

Conceptually, for each rule i:
  IF x1 is MF[i1] AND x2 is MF[i2] AND ... THEN y_i = consequent_i(x)

Conventions:
  - Antecedent entries are 1-based membership-function indices per input;
    0 means "don't care" (the input is omitted from the rule).
  - Rule.consequent is a 0-based index into OutputVariable.functions. Every
    rule owns exactly one output function, so the two collections always have
    the same length.
  - Everything is immutable (frozen dataclasses holding tuples). Derived
    systems (subset, re-tuned parameters) are newly allocated and never share
    mutable storage with the system they came from.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError
from .membership import MembershipFunction
from .utils import read_json, write_json


@dataclass(frozen=True)
class InputVariable:
    name: str
    membership_functions: Tuple[MembershipFunction, ...]
    range: Tuple[float, float] = (0.0, 1.0)

    def __post_init__(self):
        object.__setattr__(self, "membership_functions", tuple(self.membership_functions))
        object.__setattr__(self, "range", tuple(float(v) for v in self.range))

    @property
    def num_mfs(self) -> int:
        return len(self.membership_functions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "range": list(self.range),
            "membership_functions": [mf.to_dict() for mf in self.membership_functions],
        }

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "InputVariable":
        return InputVariable(
            name=obj["name"],
            membership_functions=tuple(
                MembershipFunction.from_dict(m) for m in obj.get("membership_functions", [])
            ),
            range=tuple(obj.get("range", (0.0, 1.0))),
        )


@dataclass(frozen=True)
class OutputFunction:
    """
    Consequent of one rule.

      constant: y = c                         params = [c]
      linear  : y = a1*x1 + ... + an*xn + c   params = [a1, ..., an, c]
    """
    kind: str
    params: Tuple[float, ...]
    name: str = ""

    def __post_init__(self):
        if self.kind not in ("constant", "linear"):
            raise ConfigurationError(f"Unknown output function kind '{self.kind}'.")
        object.__setattr__(self, "params", tuple(float(p) for p in self.params))
        if self.kind == "constant" and len(self.params) != 1:
            raise ConfigurationError("constant output function takes exactly one parameter.")
        if self.kind == "linear" and len(self.params) < 1:
            raise ConfigurationError("linear output function needs at least an offset.")

    def evaluate(self, X: np.ndarray) -> np.ndarray:
        """
        X: (N, D) -> (N,)
        """
        if self.kind == "constant":
            return np.full(X.shape[0], self.params[0], dtype=np.float64)
        coef = np.asarray(self.params[:-1], dtype=np.float64)
        return X @ coef + self.params[-1]

    def with_params(self, params) -> "OutputFunction":
        return OutputFunction(kind=self.kind, params=tuple(params), name=self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.kind, "params": list(self.params)}

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "OutputFunction":
        return OutputFunction(kind=obj["type"], params=tuple(obj["params"]), name=obj.get("name", ""))


@dataclass(frozen=True)
class OutputVariable:
    name: str
    functions: Tuple[OutputFunction, ...]
    range: Tuple[float, float] = (0.0, 1.0)

    def __post_init__(self):
        object.__setattr__(self, "functions", tuple(self.functions))
        object.__setattr__(self, "range", tuple(float(v) for v in self.range))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "range": list(self.range),
            "functions": [f.to_dict() for f in self.functions],
        }

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "OutputVariable":
        return OutputVariable(
            name=obj["name"],
            functions=tuple(OutputFunction.from_dict(f) for f in obj.get("functions", [])),
            range=tuple(obj.get("range", (0.0, 1.0))),
        )


@dataclass(frozen=True)
class Rule:
    antecedent: Tuple[int, ...]
    consequent: int
    weight: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "antecedent", tuple(int(i) for i in self.antecedent))
        object.__setattr__(self, "consequent", int(self.consequent))
        object.__setattr__(self, "weight", float(self.weight))

    def to_dict(self) -> Dict[str, Any]:
        return {"antecedent": list(self.antecedent), "consequent": self.consequent, "weight": self.weight}

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "Rule":
        return Rule(
            antecedent=tuple(obj["antecedent"]),
            consequent=obj["consequent"],
            weight=obj.get("weight", 1.0),
        )


@dataclass(frozen=True)
class FuzzyInferenceSystem:
    """
    Inputs, one output variable and the rule base.

    Structural invariants are checked on construction and raise
    ConfigurationError. Antecedent indices outside an input's MF range are NOT
    rejected: such a rule simply never fires.
    """
    inputs: Tuple[InputVariable, ...]
    output: OutputVariable
    rules: Tuple[Rule, ...]
    name: str = "fis"
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(self, "metadata", dict(self.metadata))
        self._validate()

    def _validate(self) -> None:
        n_in = len(self.inputs)
        if n_in == 0:
            raise ConfigurationError("A fuzzy inference system needs at least one input.")
        if len(self.output.functions) != len(self.rules):
            raise ConfigurationError(
                f"Output has {len(self.output.functions)} functions but there are {len(self.rules)} rules."
            )
        for i, rule in enumerate(self.rules):
            if len(rule.antecedent) != n_in:
                raise ConfigurationError(
                    f"Rule {i} antecedent has {len(rule.antecedent)} entries, expected {n_in}."
                )
        refs = sorted(r.consequent for r in self.rules)
        if refs != list(range(len(self.rules))):
            raise ConfigurationError("Rule consequent indices must reference each output function exactly once.")
        for k, fn in enumerate(self.output.functions):
            if fn.kind == "linear" and len(fn.params) != n_in + 1:
                raise ConfigurationError(
                    f"Linear output function {k} has {len(fn.params)} params, expected {n_in + 1}."
                )

    @property
    def num_inputs(self) -> int:
        return len(self.inputs)

    @property
    def num_rules(self) -> int:
        return len(self.rules)

    @property
    def input_names(self) -> List[str]:
        return [v.name for v in self.inputs]

    def antecedent_matrix(self) -> np.ndarray:
        """
        (R, D) integer matrix of antecedent indices.
        """
        if not self.rules:
            return np.zeros((0, self.num_inputs), dtype=np.int64)
        return np.array([r.antecedent for r in self.rules], dtype=np.int64)

    def rule_outputs(self, X: np.ndarray) -> np.ndarray:
        """
        Consequent output of every rule for every sample: (N, R).
        """
        if not self.rules:
            return np.zeros((X.shape[0], 0), dtype=np.float64)
        cols = [self.output.functions[r.consequent].evaluate(X) for r in self.rules]
        return np.stack(cols, axis=1)

    def subset(self, indices: Iterable[int]) -> "FuzzyInferenceSystem":
        """
        New system holding only the rules at `indices` (plus their output functions).

        Rules keep their original relative order whatever order `indices` is given in.
        Consequent references are renumbered to the new positions.
        """
        keep = sorted({int(i) for i in indices})
        n = self.num_rules
        bad = [i for i in keep if i < 0 or i >= n]
        if bad:
            raise ConfigurationError(f"Rule indices out of range [0, {n}): {bad}")

        functions = []
        rules = []
        for new_pos, i in enumerate(keep):
            rule = self.rules[i]
            functions.append(self.output.functions[rule.consequent])
            rules.append(replace(rule, consequent=new_pos))

        return FuzzyInferenceSystem(
            inputs=self.inputs,
            output=replace(self.output, functions=tuple(functions)),
            rules=tuple(rules),
            name=self.name,
            metadata=self.metadata,
        )

    def with_parameters(
        self,
        input_params: Optional[Sequence[Sequence[Sequence[float]]]] = None,
        output_params: Optional[Sequence[Sequence[float]]] = None,
    ) -> "FuzzyInferenceSystem":
        """
        Copy with new numeric parameters and the same rule structure.

        input_params[j][k] replaces the params of MF k of input j.
        output_params[k] replaces the params of output function k.
        """
        inputs = self.inputs
        if input_params is not None:
            if len(input_params) != self.num_inputs:
                raise ConfigurationError("input_params must have one entry per input.")
            new_inputs = []
            for var, params in zip(self.inputs, input_params):
                if len(params) != var.num_mfs:
                    raise ConfigurationError(f"input '{var.name}' expects {var.num_mfs} parameter sets.")
                mfs = tuple(mf.with_params(p) for mf, p in zip(var.membership_functions, params))
                new_inputs.append(replace(var, membership_functions=mfs))
            inputs = tuple(new_inputs)

        output = self.output
        if output_params is not None:
            if len(output_params) != len(self.output.functions):
                raise ConfigurationError("output_params must have one entry per output function.")
            output = replace(
                self.output,
                functions=tuple(f.with_params(p) for f, p in zip(self.output.functions, output_params)),
            )

        return FuzzyInferenceSystem(
            inputs=inputs, output=output, rules=self.rules, name=self.name, metadata=self.metadata
        )

    def same_structure(self, other: "FuzzyInferenceSystem") -> bool:
        """
        True when both systems have the same inputs/MF shapes and the same rules.
        """
        if self.num_inputs != other.num_inputs or self.rules != other.rules:
            return False
        for a, b in zip(self.inputs, other.inputs):
            if [m.shape for m in a.membership_functions] != [m.shape for m in b.membership_functions]:
                return False
        return [f.kind for f in self.output.functions] == [f.kind for f in other.output.functions]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": "sugeno",
            "inputs": [v.to_dict() for v in self.inputs],
            "output": self.output.to_dict(),
            "rules": [r.to_dict() for r in self.rules],
            "metadata": dict(self.metadata),
        }

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "FuzzyInferenceSystem":
        if obj.get("type", "sugeno") != "sugeno":
            raise ConfigurationError(f"Unsupported system type '{obj.get('type')}'; only sugeno is supported.")
        return FuzzyInferenceSystem(
            inputs=tuple(InputVariable.from_dict(v) for v in obj["inputs"]),
            output=OutputVariable.from_dict(obj["output"]),
            rules=tuple(Rule.from_dict(r) for r in obj.get("rules", [])),
            name=obj.get("name", "fis"),
            metadata=dict(obj.get("metadata", {})),
        )

    def to_json(self, path: str | Path) -> None:
        write_json(self.to_dict(), path, sort_keys=False)

    @staticmethod
    def from_json(path: str | Path) -> "FuzzyInferenceSystem":
        return FuzzyInferenceSystem.from_dict(read_json(path))
