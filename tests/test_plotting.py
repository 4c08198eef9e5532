"""
Smoke tests for the matplotlib figures.
"""

import matplotlib.pyplot as plt
import pytest

from calibration import calibrate_c_poc, run_replicates
from core import TrialConfig, dose_labels
from outcomes import null_flat_scenario
from plotting import (
    plot_allocation_by_stage,
    plot_calibration_curve,
    plot_enrolment,
    plot_posterior_summary,
    plot_selection,
    plot_true_scenario,
)
from trial import run_trial


@pytest.fixture
def result(config, model):
    return run_trial(config, model, seed=4)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


class TestFigures:

    def test_posterior_summary(self, result):
        snap = result.posterior
        fig = plot_posterior_summary(snap.tox, result.config.n_doses, labels=dose_labels(result.config))
        assert len(fig.axes) == 1
        fig = plot_posterior_summary(snap.imm, result.config.n_doses)
        assert fig.axes[0].get_legend() is None

    def test_trial_figures(self, result):
        assert plot_allocation_by_stage(result).axes
        assert plot_enrolment(result).axes

    def test_scenario(self, model):
        ax = plot_true_scenario(model).axes[0]
        assert len(ax.get_lines()) == 3

    def test_replicate_figures(self, model):
        cfg = TrialConfig(dose_levels=(1, 2, 3), n_stages=1, n_sims=100)
        oc = run_replicates(cfg, model, n_trials=2)
        assert plot_selection(oc).axes
        cal = calibrate_c_poc(cfg, null_flat_scenario(3), candidates=(0.8, 0.9), n_trials=2)
        assert plot_calibration_curve(cal).axes
