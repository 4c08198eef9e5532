# snapshot.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple
import logging
import numpy as np

from core import TrialConfig
from isotonic import constraint_for
from posterior import (
    NoInformationError,
    PatientRecord,
    PosteriorSummary,
    beta_posterior,
    compute_rn,
    prior_summary,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PosteriorSnapshot:
    """
    Isotonic-adjusted posterior state after one stage.

    Draw arrays are laid out (draw, dose) or (draw, dose, group) where group is
    the immune status Y_I. Columns of doses without enrolled patients are NaN.
    """

    stage: int
    informative: np.ndarray  # (dose,) bool
    imm: Tuple[PosteriorSummary, ...]
    tox: Tuple[PosteriorSummary, ...]
    eff: Tuple[PosteriorSummary, ...]

    imm_draws: np.ndarray  # (draw, dose)
    tox_draws: np.ndarray  # (draw, dose, group)
    eff_draws: np.ndarray  # (draw, dose, group)
    tox_marginal: np.ndarray  # (draw, dose)
    eff_marginal: np.ndarray  # (draw, dose)

    @property
    def n_doses(self) -> int:
        return int(self.informative.shape[0])

    @property
    def imm_mean(self) -> np.ndarray:
        return _means(self.imm, self.n_doses, grouped=False)

    @property
    def tox_mean(self) -> np.ndarray:
        return _means(self.tox, self.n_doses, grouped=True)

    @property
    def eff_mean(self) -> np.ndarray:
        return _means(self.eff, self.n_doses, grouped=True)

    @property
    def tox_marginal_mean(self) -> np.ndarray:
        return _column_means(self.tox_marginal)

    @property
    def eff_marginal_mean(self) -> np.ndarray:
        return _column_means(self.eff_marginal)

    def summary_rows(self) -> List[Dict[str, object]]:
        """Flat table of adjusted summaries (one row per outcome/dose/group) for display."""
        rows: List[Dict[str, object]] = []
        for outcome, cells in (("immune", self.imm), ("toxicity", self.tox), ("efficacy", self.eff)):
            for c in cells:
                rows.append(
                    {
                        "outcome": outcome,
                        "dose": c.dose,
                        "group": c.group,
                        "alpha_post": c.alpha_post,
                        "beta_post": c.beta_post,
                        "mean": c.mean,
                        "var": c.var,
                        "adjusted_mean": c.adjusted_mean,
                        "ci_lower": c.ci_lower,
                        "ci_upper": c.ci_upper,
                    }
                )
        return rows


def _means(cells: Sequence[PosteriorSummary], n_doses: int, grouped: bool) -> np.ndarray:
    out = np.full((n_doses, 2) if grouped else (n_doses,), np.nan)
    for c in cells:
        if grouped:
            out[c.dose, int(c.group)] = c.adjusted_mean
        else:
            out[c.dose] = c.adjusted_mean
    return out


def _column_means(draws: np.ndarray) -> np.ndarray:
    out = np.full(draws.shape[1], np.nan)
    for j in range(draws.shape[1]):
        col = draws[:, j]
        if not np.all(np.isnan(col)):
            out[j] = float(col.mean())
    return out


def marginal_draws(group_draws: np.ndarray, imm_draws: np.ndarray) -> np.ndarray:
    """
    Marginal over immune status, draw by draw:
      (1 - pi_I) * p(.|I=0) + pi_I * p(.|I=1)
    """
    group_draws = np.asarray(group_draws, dtype=float)
    imm_draws = np.asarray(imm_draws, dtype=float)
    if group_draws.shape[:2] != imm_draws.shape or group_draws.shape[2] != 2:
        raise ValueError(
            f"dimension mismatch: group draws {group_draws.shape}, immune draws {imm_draws.shape}"
        )
    return (1.0 - imm_draws) * group_draws[:, :, 0] + imm_draws * group_draws[:, :, 1]


def _draw_array(cells: Sequence[PosteriorSummary], n_sims: int, n_doses: int, grouped: bool) -> np.ndarray:
    shape = (n_sims, n_doses, 2) if grouped else (n_sims, n_doses)
    out = np.full(shape, np.nan)
    for c in cells:
        if grouped:
            out[:, c.dose, int(c.group)] = c.adjusted_draws
        else:
            out[:, c.dose] = c.adjusted_draws
    out.setflags(write=False)
    return out


def update_posteriors(
    records: Sequence[PatientRecord],
    config: TrialConfig,
    rng: np.random.Generator,
    stage: int,
) -> PosteriorSnapshot:
    """
    Recompute the full posterior state from the cumulative patient records:
    statistics -> Beta posteriors -> isotonic adjustment -> marginals.

    Doses with nobody enrolled are left out (no information). Inside an enrolled
    dose, an immune-status cell with nobody in it carries the prior.
    """
    J = config.n_doses
    a, b = config.prior_alpha, config.prior_beta

    imm_raw: List[PosteriorSummary] = []
    informative = np.zeros(J, dtype=bool)
    for stat in compute_rn(records, "Y_I", J):
        try:
            imm_raw.append(beta_posterior(stat, rng, config.n_sims, a, b))
        except NoInformationError:
            logger.debug("stage %d: dose %d has no patients, skipped", stage, stat.dose)
            continue
        informative[stat.dose] = True
    informative.setflags(write=False)

    def grouped(outcome: str) -> List[PosteriorSummary]:
        cells: List[PosteriorSummary] = []
        for stat in compute_rn(records, outcome, J, group="Y_I"):
            if not informative[stat.dose]:
                continue
            try:
                cells.append(beta_posterior(stat, rng, config.n_sims, a, b))
            except NoInformationError:
                cells.append(prior_summary(stat, rng, config.n_sims, a, b))
        return cells

    tox_raw = grouped("Y_T")
    eff_raw = grouped("Y_E")

    if imm_raw:
        imm = constraint_for(config.imm_constraint).adjust(imm_raw)
        tox = constraint_for(config.tox_constraint).adjust(tox_raw)
        eff = constraint_for(config.eff_constraint).adjust(eff_raw)
    else:
        imm, tox, eff = [], [], []

    imm_draws = _draw_array(imm, config.n_sims, J, grouped=False)
    tox_draws = _draw_array(tox, config.n_sims, J, grouped=True)
    eff_draws = _draw_array(eff, config.n_sims, J, grouped=True)

    return PosteriorSnapshot(
        stage=int(stage),
        informative=informative,
        imm=tuple(imm),
        tox=tuple(tox),
        eff=tuple(eff),
        imm_draws=imm_draws,
        tox_draws=tox_draws,
        eff_draws=eff_draws,
        tox_marginal=marginal_draws(tox_draws, imm_draws),
        eff_marginal=marginal_draws(eff_draws, imm_draws),
    )
