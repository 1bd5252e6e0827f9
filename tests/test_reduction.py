import numpy as np
import pytest

from builders import grid_fis
from pmfis.errors import ConfigurationError, TrainerFailure
from pmfis.reduction import RulePruner, rank_rules


class ShiftTrainer:
    """Adds 1.0 to every output parameter and records what it was given."""

    def __init__(self):
        self.seen = []

    def tune(self, fis, X, y, epochs):
        self.seen.append(fis)
        params = [[p + 1.0 for p in f.params] for f in fis.output.functions]
        return fis.with_parameters(output_params=params)


class FailingTrainer:
    def __init__(self, fail_on_rules):
        self.fail_on_rules = fail_on_rules

    def tune(self, fis, X, y, epochs):
        if fis.num_rules == self.fail_on_rules:
            raise np.linalg.LinAlgError("singular matrix")
        return fis


class DroppingTrainer:
    def tune(self, fis, X, y, epochs):
        return fis.subset([0])


def _xy():
    X = np.array([[0.25, 0.5], [0.75, 0.25]])
    return X, np.array([2.0, 3.0])


def test_rank_rules_descending_and_stable():
    np.testing.assert_array_equal(rank_rules([5, 1, 3]), [0, 2, 1])
    np.testing.assert_array_equal(rank_rules([1, 2, 2, 1]), [1, 2, 0, 3])
    np.testing.assert_array_equal(rank_rules([np.nan, 1.0, 2.0]), [2, 1, 0])


def test_sweep_to_floor_one():
    fis = grid_fis().subset([0, 1, 2])
    steps = list(RulePruner().sweep(fis, [5, 1, 3], floor=1))
    assert [s.kept_indices for s in steps] == [(0, 1, 2), (0, 2), (0,)]
    assert [s.iteration for s in steps] == [1, 2, 3]
    assert [s.num_rules for s in steps] == [3, 2, 1]


def test_sweep_kept_sets_are_nested(fis):
    steps = list(RulePruner().sweep(fis, [0.1, 0.9, 0.4, 0.6], floor=2))
    assert len(steps) == 3
    for bigger, smaller in zip(steps, steps[1:]):
        assert set(smaller.kept_indices) < set(bigger.kept_indices)
        assert len(bigger.kept_indices) - len(smaller.kept_indices) == 1
    assert steps[-1].kept_indices == (1, 3)


def test_reduced_rules_keep_original_order(fis):
    steps = list(RulePruner().sweep(fis, [0.1, 0.9, 0.4, 0.6], floor=2))
    last = steps[-1].fis
    assert [r.antecedent for r in last.rules] == [(1, 2), (2, 2)]
    assert [f.params for f in last.output.functions] == [(2.0,), (4.0,)]


def test_floor_equal_to_rule_count_gives_one_step(fis):
    steps = list(RulePruner().sweep(fis, [1, 2, 3, 4], floor=4))
    assert len(steps) == 1
    assert steps[0].kept_indices == (0, 1, 2, 3)


def test_exact_keeps_top_rules(fis):
    step = RulePruner().exact(fis, [0.1, 0.9, 0.4, 0.6], 2)
    assert step.kept_indices == (1, 3)
    assert step.final_fis.num_rules == 2


@pytest.mark.parametrize("floor", [0, 5, -1])
def test_invalid_floor_raises_immediately(fis, floor):
    with pytest.raises(ConfigurationError):
        RulePruner().sweep(fis, [1, 2, 3, 4], floor=floor)


def test_importance_length_must_match(fis):
    with pytest.raises(ConfigurationError):
        RulePruner().sweep(fis, [1, 2, 3])
    with pytest.raises(ConfigurationError):
        RulePruner().exact(fis, [1, 2, 3, 4, 5], 2)


def test_retraining_needs_matching_data():
    X, y = _xy()
    with pytest.raises(ConfigurationError):
        RulePruner(trainer=ShiftTrainer(), X=X, y=y[:1])
    with pytest.raises(ConfigurationError):
        RulePruner(trainer=ShiftTrainer())
    with pytest.raises(ConfigurationError):
        RulePruner(epochs=0)


def test_trainer_output_is_the_final_system(fis):
    X, y = _xy()
    steps = list(RulePruner(ShiftTrainer(), X, y).sweep(fis, [4, 3, 2, 1], floor=3))
    assert [f.params[0] for f in steps[0].final_fis.output.functions] == [2.0, 3.0, 4.0, 5.0]
    assert [f.params[0] for f in steps[1].final_fis.output.functions] == [2.0, 3.0, 4.0]
    # the untuned reduced system is kept alongside
    assert [f.params[0] for f in steps[1].fis.output.functions] == [1.0, 2.0, 3.0]


def test_base_system_is_not_mutated(fis):
    X, y = _xy()
    before = fis.to_dict()
    list(RulePruner(ShiftTrainer(), X, y).sweep(fis, [4, 3, 2, 1], floor=1))
    assert fis.to_dict() == before


def test_cold_start_tunes_from_base_parameters(fis):
    X, y = _xy()
    trainer = ShiftTrainer()
    list(RulePruner(trainer, X, y).sweep(fis, [4, 3, 2, 1], floor=3))
    assert [f.params[0] for f in trainer.seen[1].output.functions] == [1.0, 2.0, 3.0]


def test_warm_start_tunes_from_previous_result(fis):
    X, y = _xy()
    trainer = ShiftTrainer()
    steps = list(RulePruner(trainer, X, y, warm_start=True).sweep(fis, [4, 3, 2, 1], floor=2))
    assert [f.params[0] for f in trainer.seen[1].output.functions] == [2.0, 3.0, 4.0]
    assert [f.params[0] for f in steps[2].final_fis.output.functions] == [4.0, 5.0]


def test_trainer_failure_is_recorded_and_sweep_continues(fis):
    X, y = _xy()
    steps = list(RulePruner(FailingTrainer(3), X, y).sweep(fis, [4, 3, 2, 1], floor=2))
    assert len(steps) == 3
    assert [s.failed for s in steps] == [False, True, False]
    failure = steps[1].failure
    assert isinstance(failure, TrainerFailure)
    assert failure.iteration == 2
    assert isinstance(failure.__cause__, np.linalg.LinAlgError)
    assert steps[1].final_fis is None
    assert steps[2].final_fis.num_rules == 2


def test_structure_change_counts_as_failure(fis):
    X, y = _xy()
    step = RulePruner(DroppingTrainer(), X, y).exact(fis, [4, 3, 2, 1], 3)
    assert step.failed
    assert step.tuned_fis is None


def test_pruner_rank_matches_rank_rules():
    np.testing.assert_array_equal(RulePruner.rank([0.2, 0.8, 0.5]), rank_rules([0.2, 0.8, 0.5]))


class RejectingTrainer:
    def tune(self, fis, X, y, epochs):
        raise ConfigurationError("mixed consequent kinds")


def test_configuration_error_from_trainer_propagates(fis):
    X, y = _xy()
    steps = RulePruner(RejectingTrainer(), X, y).sweep(fis, [4, 3, 2, 1], floor=2)
    with pytest.raises(ConfigurationError):
        next(steps)
    with pytest.raises(ConfigurationError):
        RulePruner(RejectingTrainer(), X, y).exact(fis, [4, 3, 2, 1], 2)
