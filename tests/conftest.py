"""Shared fixtures for the dose-finding tests."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from core import TrialConfig
from isotonic import credible_interval
from outcomes import ProbabilityModel, default_probability_model
from posterior import PatientRecord, PosteriorSummary
from snapshot import PosteriorSnapshot, marginal_draws


@pytest.fixture
def config():
    """Three-dose design with the default thresholds and a small draw count."""
    return TrialConfig(dose_levels=(1, 2, 3), n_sims=400)


@pytest.fixture
def open_config():
    """Every admissibility test switched off, so each informative dose is admissible."""
    return TrialConfig(dose_levels=(1, 2, 3), n_sims=300, c_T=None, c_E=None, c_I=None)


@pytest.fixture
def model():
    return default_probability_model()


@pytest.fixture
def rng():
    return np.random.default_rng(2024)


@pytest.fixture
def make_records():
    """Build patient records from (dose, Y_I, Y_T, Y_E) rows."""

    def _make(rows, stage=1):
        return [
            PatientRecord(id=k + 1, dose=d, stage=stage, Y_I=i, Y_T=t, Y_E=e)
            for k, (d, i, t, e) in enumerate(rows)
        ]

    return _make


def _summary(dose, group, draws):
    draws = np.asarray(draws, dtype=float)
    lo, hi = credible_interval(draws)
    m = float(draws.mean())
    return PosteriorSummary(
        dose=dose,
        group=group,
        alpha_post=1.0,
        beta_post=1.0,
        draws=draws,
        mean=m,
        var=float(draws.var()),
        adjusted_draws=draws,
        adjusted_mean=m,
        ci_lower=lo,
        ci_upper=hi,
    )


@pytest.fixture
def make_snapshot():
    """
    Hand-built PosteriorSnapshot from adjusted draws.

    imm: (draw, dose); tox, eff: (draw, dose, group). Doses flagged as not
    informative get NaN columns and no summaries.
    """

    def _make(imm, tox, eff, informative=None, stage=1):
        imm = np.array(imm, dtype=float)
        tox = np.array(tox, dtype=float)
        eff = np.array(eff, dtype=float)
        J = imm.shape[1]
        info = np.ones(J, dtype=bool) if informative is None else np.asarray(informative, dtype=bool)
        imm[:, ~info] = np.nan
        tox[:, ~info, :] = np.nan
        eff[:, ~info, :] = np.nan

        imm_s, tox_s, eff_s = [], [], []
        for j in range(J):
            if not info[j]:
                continue
            imm_s.append(_summary(j, None, imm[:, j]))
            for g in (0, 1):
                tox_s.append(_summary(j, g, tox[:, j, g]))
                eff_s.append(_summary(j, g, eff[:, j, g]))

        return PosteriorSnapshot(
            stage=stage,
            informative=info,
            imm=tuple(imm_s),
            tox=tuple(tox_s),
            eff=tuple(eff_s),
            imm_draws=imm,
            tox_draws=tox,
            eff_draws=eff,
            tox_marginal=marginal_draws(tox, imm),
            eff_marginal=marginal_draws(eff, imm),
        )

    return _make


@pytest.fixture
def constant_snapshot(make_snapshot):
    """
    Deterministic snapshot: low toxicity everywhere, immune response and
    efficacy rising with dose. Expected utilities are 25.75, 46.0 and 64.15.
    """
    n = 200
    imm = np.tile([0.2, 0.5, 0.6], (n, 1))
    tox = np.full((n, 3, 2), 0.05)
    eff = np.repeat(np.tile([0.3, 0.5, 0.7], (n, 1))[:, :, None], 2, axis=2)
    return make_snapshot(imm, tox, eff)


@pytest.fixture
def favourable_config():
    """Large cohorts and a lenient PoC threshold so trials reach final selection."""
    return TrialConfig(dose_levels=(1, 2, 3), n_stages=3, cohort_size=60, n_sims=400, c_poc=0.7)


@pytest.fixture
def favourable_model():
    """Rare toxicity, strong efficacy and a steep immune response gradient."""
    return ProbabilityModel(
        p_YI=[0.15, 0.5, 0.8],
        p_YT_given_I=[[0.01, 0.02], [0.01, 0.02], [0.02, 0.03]],
        p_YE_given_I=[[0.5, 0.6], [0.6, 0.7], [0.7, 0.8]],
        name="favourable",
    )
