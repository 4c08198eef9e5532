"""
Tests for replicate runs, operating characteristics and threshold calibration.
"""

import numpy as np
import pytest

from calibration import (
    NULL_SCENARIOS,
    calibrate_c_poc,
    calibrate_early_termination,
    null_scenario,
    operating_characteristics,
    run_replicates,
)
from core import TrialConfig
from outcomes import null_flat_scenario, unfavorable_scenario


@pytest.fixture
def small_config():
    return TrialConfig(dose_levels=(1, 2, 3), n_stages=2, cohort_size=6, n_sims=200)


class TestOperatingCharacteristics:

    def test_rates_are_consistent(self, small_config, model):
        oc = run_replicates(small_config, model, n_trials=6, base_seed=3)
        assert oc.n_trials == 6
        assert oc.early_termination_rate + oc.completion_rate == pytest.approx(1.0)
        assert oc.poc_detection_rate <= oc.completion_rate
        assert oc.selection_prob.sum() <= oc.completion_rate + 1e-12
        assert oc.mean_n_per_dose.sum() == pytest.approx(oc.mean_sample_size)
        assert oc.mean_sample_size <= small_config.max_sample_size
        lo, hi = oc.poc_ci
        assert lo <= oc.poc_detection_rate <= hi

    def test_termination_stages_counted(self, small_config):
        oc = run_replicates(small_config, unfavorable_scenario(3), n_trials=4, base_seed=0)
        n_terminated = round(oc.early_termination_rate * oc.n_trials)
        assert sum(oc.termination_stages.values()) == n_terminated

    def test_replicates_reproducible(self, small_config, model):
        a = run_replicates(small_config, model, n_trials=3, base_seed=8)
        b = run_replicates(small_config, model, n_trials=3, base_seed=8)
        np.testing.assert_array_equal(a.selection_prob, b.selection_prob)
        assert a.mean_sample_size == b.mean_sample_size

    def test_favourable_scenario_completes(self, favourable_config, favourable_model):
        oc = run_replicates(favourable_config, favourable_model, n_trials=4, base_seed=1)
        assert oc.completion_rate > 0
        assert oc.n_poc <= oc.n_completed
        assert oc.poc_detection_rate <= oc.completion_rate
        assert oc.selection_prob.sum() == pytest.approx(oc.poc_detection_rate)
        assert oc.mean_sample_size <= favourable_config.max_sample_size
        if oc.completion_rate == 1.0:
            assert oc.mean_sample_size == favourable_config.max_sample_size

    def test_no_trials(self, small_config, model):
        with pytest.raises(ValueError):
            run_replicates(small_config, model, n_trials=0)
        with pytest.raises(ValueError):
            operating_characteristics([], 3)


class TestCalibration:

    def test_c_poc(self, small_config):
        cal = calibrate_c_poc(
            small_config, null_flat_scenario(3), candidates=(0.5, 0.95), n_trials=3, target_rate=0.1
        )
        assert cal.parameter == "c_poc"
        assert cal.values == (0.5, 0.95)
        assert len(cal.rates) == 2
        assert cal.optimal_value in cal.values
        assert cal.achieved_rate == cal.rates[cal.values.index(cal.optimal_value)]
        for oc in cal.characteristics:
            assert oc.poc_detection_rate <= oc.completion_rate

    def test_early_termination(self, small_config):
        cal = calibrate_early_termination(small_config, threshold="c_E", candidates=(0.7, 0.9), n_trials=3)
        assert cal.parameter == "c_E"
        assert cal.target_rate == 0.80
        assert all(0.0 <= r <= 1.0 for r in cal.rates)
        assert cal.optimal_value in (0.7, 0.9)

    def test_unknown_threshold(self, small_config):
        with pytest.raises(ValueError):
            calibrate_early_termination(small_config, threshold="c_poc", n_trials=1)


class TestNullScenarios:

    @pytest.mark.parametrize("name", sorted(NULL_SCENARIOS))
    def test_doses_identical(self, name):
        m = null_scenario(name, 4)
        assert m.n_doses == 4
        assert m.name == name
        for arr in (m.p_YI, m.p_YT_given_I, m.p_YE_given_I):
            np.testing.assert_array_equal(arr, np.broadcast_to(arr[0], arr.shape))

    def test_flat_sits_on_lower_bounds(self):
        marg = null_scenario("flat", 3).marginals()
        np.testing.assert_allclose(marg["immune"], 0.25)
        np.testing.assert_allclose(marg["efficacy"], 0.20)

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="unknown null scenario"):
            null_scenario("favourable", 3)

    def test_c_poc_under_flat(self, small_config):
        cal = calibrate_c_poc(small_config, null_scenario("flat", 3), candidates=(0.9,), n_trials=2)
        assert cal.optimal_value == 0.9
        assert cal.characteristics[0].poc_detection_rate <= cal.characteristics[0].completion_rate
