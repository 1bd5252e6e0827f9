import pytest
import yaml

from pmfis.config import ReductionConfig
from pmfis.errors import ConfigurationError


def test_defaults():
    cfg = ReductionConfig()
    assert cfg.feature_names is None
    assert cfg.floor_rule_count == 2
    assert cfg.activation_method == "binary"
    assert cfg.retrain is False
    assert cfg.warm_start is False


def test_from_yaml(tmp_path):
    path = tmp_path / "sweep.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "feature_names": ["pm2p5_x", "relative_humidity"],
                "activation_method": "WAM",
                "floor_rule_count": 3,
                "retrain": True,
                "epoch_budget": 20,
            }
        )
    )
    cfg = ReductionConfig.from_yaml(path)
    assert cfg.activation_method == "weighted"
    assert cfg.floor_rule_count == 3
    assert cfg.epoch_budget == 20
    assert cfg.to_dict()["feature_names"] == ["pm2p5_x", "relative_humidity"]


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert ReductionConfig.from_yaml(path) == ReductionConfig()


@pytest.mark.parametrize(
    "overrides",
    [
        {"floor_rule_count": 0},
        {"epoch_budget": 0},
        {"exact_rule_count": 0},
        {"activation_method": "max"},
        {"feature_names": []},
        {"feature_names": ["pm2p5_x", "pm2p5_y"]},
        {"n_jobs": 0},
    ],
)
def test_invalid_values(overrides):
    with pytest.raises(ConfigurationError):
        ReductionConfig(**overrides)


def test_unknown_key():
    with pytest.raises(ConfigurationError):
        ReductionConfig.from_dict({"floor": 2})
