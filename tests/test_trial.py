"""
Tests for the multi-stage trial controller.
"""

from dataclasses import replace

import numpy as np
import pytest

from core import TrialConfig
from outcomes import ProbabilityModel, default_probability_model
from trial import StageController, TrialPhase, run_trial


def always(y_i, y_t, y_e):
    """Outcome generator returning the same triple for every patient."""

    def _fn(dose, model, rng):
        return (y_i, y_t, y_e)

    return _fn


class TestCompletedTrial:
    """Trials that run every stage."""

    def test_sample_size(self, open_config, model):
        result = run_trial(open_config, model, seed=11, outcome_fn=always(1, 0, 1))
        assert not result.terminated_early
        assert result.termination_stage is None
        assert result.n_enrolled == open_config.n_stages * open_config.cohort_size
        assert len(result.history) == open_config.n_stages
        assert [r.stage for r in result.records[:6]] == [1] * 6
        assert sorted({r.stage for r in result.records}) == [1, 2, 3]

    def test_stage_one_split(self, open_config, model):
        cfg = replace(open_config, cohort_size=10, n_stages=1)
        result = run_trial(cfg, model, seed=3, outcome_fn=always(1, 0, 1))
        assert result.history[0].counts.tolist() == [4, 3, 3]
        np.testing.assert_allclose(result.history[0].allocation, [1 / 3] * 3)

    def test_every_stage_enrolls_cohort(self, config, model):
        result = run_trial(config, model, seed=21)
        for h in result.history:
            assert int(h.counts.sum()) == config.cohort_size
            assert h.allocation.sum() == pytest.approx(1.0)
            assert np.all(h.counts[h.allocation == 0] == 0)

    def test_allocation_table(self, open_config, model):
        result = run_trial(open_config, model, seed=5, outcome_fn=always(1, 0, 1))
        rows = result.allocation_table()
        assert len(rows) == open_config.n_stages * open_config.n_doses
        assert sum(r["n"] for r in rows) == result.n_enrolled
        assert result.n_per_dose().sum() == result.n_enrolled

    def test_same_seed_same_result(self, config, model):
        a = run_trial(config, model, seed=42)
        b = run_trial(config, model, seed=42)
        assert a.records == b.records
        assert a.final_od == b.final_od
        assert a.terminated_early == b.terminated_early
        for ha, hb in zip(a.history, b.history):
            np.testing.assert_array_equal(ha.allocation, hb.allocation)
            np.testing.assert_array_equal(ha.snapshot.imm_draws, hb.snapshot.imm_draws)

    def test_final_dose_is_admissible(self, config, model):
        for seed in range(5):
            result = run_trial(config, model, seed=seed)
            if result.final_od is not None:
                assert result.final_od in result.history[-1].admissible
                assert result.poc_validated


class TestFavourableScenario:
    """Generated outcomes under a safe, active scenario run every stage."""

    def test_runs_every_stage(self, favourable_config, favourable_model):
        for seed in range(3):
            result = run_trial(favourable_config, favourable_model, seed=seed)
            assert not result.terminated_early
            assert result.termination_stage is None
            assert len(result.history) == favourable_config.n_stages
            assert result.n_enrolled == favourable_config.n_stages * favourable_config.cohort_size

    def test_adaptive_allocation_follows_admissible_set(self, favourable_config, favourable_model):
        result = run_trial(favourable_config, favourable_model, seed=4)
        for prev, h in zip(result.history, result.history[1:]):
            assert prev.admissible
            assert h.allocation.sum() == pytest.approx(1.0)
            outside = [j for j in range(favourable_config.n_doses) if j not in prev.admissible]
            assert np.all(h.allocation[outside] == 0)
            assert np.all(h.counts[outside] == 0)
            assert int(h.counts.sum()) == favourable_config.cohort_size

    def test_same_seed_same_stages(self, favourable_config, favourable_model):
        a = run_trial(favourable_config, favourable_model, seed=17)
        b = run_trial(favourable_config, favourable_model, seed=17)
        assert len(a.history) == len(b.history) == favourable_config.n_stages
        assert a.records == b.records
        assert a.final_od == b.final_od
        assert a.decision.poc_by_dose == b.decision.poc_by_dose
        for ha, hb in zip(a.history, b.history):
            assert ha.admissible == hb.admissible
            np.testing.assert_array_equal(ha.allocation, hb.allocation)
            np.testing.assert_array_equal(ha.counts, hb.counts)
            np.testing.assert_array_equal(ha.snapshot.imm_draws, hb.snapshot.imm_draws)
            np.testing.assert_array_equal(ha.snapshot.tox_draws, hb.snapshot.tox_draws)
            np.testing.assert_array_equal(ha.snapshot.eff_draws, hb.snapshot.eff_draws)

    def test_poc_validated(self, favourable_config, favourable_model):
        results = [run_trial(favourable_config, favourable_model, seed=seed) for seed in range(5)]
        validated = [r for r in results if r.poc_validated]
        assert validated
        for r in validated:
            assert r.final_od is not None
            assert r.final_od in r.history[-1].admissible
            assert r.final_od in r.decision.candidates
            assert r.decision.poc_probability >= favourable_config.c_poc


class TestEarlyTermination:

    def test_all_toxic_stops_at_stage_one(self, config, model):
        result = run_trial(config, model, seed=1, outcome_fn=always(0, 1, 0))
        assert result.terminated_early
        assert result.termination_stage == 1
        assert result.termination_reason == "Empty admissible set"
        assert result.n_enrolled == config.cohort_size
        assert result.final_od is None
        assert not result.poc_validated

    def test_toxic_example(self):
        cfg = TrialConfig(dose_levels=(1, 2, 3), n_stages=5, cohort_size=15, phi_T=0.1, c_T=0.9, n_sims=500)
        model = ProbabilityModel(
            p_YI=[0.3, 0.3, 0.3],
            p_YT_given_I=[[0.3, 0.3], [0.45, 0.45], [0.6, 0.6]],
            p_YE_given_I=[[0.4, 0.4], [0.4, 0.4], [0.4, 0.4]],
        )
        for seed in range(3):
            result = run_trial(cfg, model, seed=seed)
            assert result.terminated_early
            assert result.termination_stage == 1
            assert result.n_enrolled == 15

    def test_sample_size_is_multiple_of_cohort(self, config, model):
        for seed in range(4):
            result = run_trial(config, model, seed=100 + seed)
            stages = result.termination_stage if result.terminated_early else config.n_stages
            assert result.n_enrolled == stages * config.cohort_size

    def test_disabled_runs_all_stages(self, config, model):
        cfg = replace(config, enable_early_termination=False)
        result = run_trial(cfg, model, seed=1, outcome_fn=always(0, 1, 0))
        assert not result.terminated_early
        assert result.n_enrolled == cfg.max_sample_size
        # empty admissible set falls back to equal allocation
        np.testing.assert_allclose(result.history[1].allocation, [1 / 3] * 3)
        assert result.final_od is None
        assert result.decision.reason == "No admissible doses"


class TestController:

    def test_malformed_outcome(self, config, model):
        with pytest.raises(ValueError):
            run_trial(config, model, seed=1, outcome_fn=always(1, 2, 0))

    def test_short_outcome(self, config, model):
        with pytest.raises(ValueError):
            run_trial(config, model, seed=1, outcome_fn=lambda d, m, r: (1, 0))

    def test_model_dose_mismatch(self, model):
        with pytest.raises(ValueError):
            StageController(TrialConfig(dose_levels=(1, 2)), model)

    def test_runs_once(self, config, model):
        controller = StageController(config, model, seed=9)
        controller.run()
        assert controller.state.phase is TrialPhase.DONE
        with pytest.raises(RuntimeError):
            controller.run()

    def test_posterior_is_last_snapshot(self, config):
        result = run_trial(config, default_probability_model(), seed=2)
        assert result.posterior is result.history[-1].snapshot
        assert result.posterior.stage == len(result.history)
