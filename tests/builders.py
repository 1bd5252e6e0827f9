import numpy as np
import pandas as pd

from pmfis.fis import FuzzyInferenceSystem, InputVariable, OutputFunction, OutputVariable, Rule
from pmfis.membership import MembershipFunction


def two_mf_input(name):
    return InputVariable(
        name=name,
        membership_functions=(
            MembershipFunction("trimf", (-1.0, 0.0, 1.0), name="low"),
            MembershipFunction("trimf", (0.0, 1.0, 2.0), name="high"),
        ),
    )


def grid_fis(constants=(1.0, 2.0, 3.0, 4.0)):
    """
    2 inputs x 2 MFs -> 4 rules (low,low) (low,high) (high,low) (high,high)
    with constant consequents.
    """
    rules = (
        Rule((1, 1), 0),
        Rule((1, 2), 1),
        Rule((2, 1), 2),
        Rule((2, 2), 3),
    )
    output = OutputVariable(
        name="pm2p5_y",
        functions=tuple(OutputFunction("constant", (c,), name=f"out{i}") for i, c in enumerate(constants)),
    )
    return FuzzyInferenceSystem(
        inputs=(two_mf_input("pm2p5_x"), two_mf_input("relative_humidity")),
        output=output,
        rules=rules,
        name="grid",
    )


def linear_fis(coefs=((1.0, 0.0), (2.0, 1.0))):
    """
    1 input, 2 rules (low, high) with linear consequents [a, c].
    """
    output = OutputVariable(
        name="pm2p5_y",
        functions=tuple(OutputFunction("linear", c) for c in coefs),
    )
    return FuzzyInferenceSystem(
        inputs=(two_mf_input("pm2p5_x"),),
        output=output,
        rules=(Rule((1,), 0), Rule((2,), 1)),
        name="linear",
    )


def calibration_frame(n=12, seed=0):
    rng = np.random.default_rng(seed)
    x1 = rng.random(n)
    x2 = rng.random(n)
    return pd.DataFrame(
        {
            "valid_at": pd.date_range("2024-01-01", periods=n, freq="h"),
            "sensor_id": np.where(np.arange(n) % 2 == 0, "s1", "s2"),
            "pm2p5_x": x1,
            "relative_humidity": x2,
            "pm2p5_y": 1.0 + 3.0 * x1 + 0.5 * x2,
        }
    )


