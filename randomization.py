# randomization.py
from __future__ import annotations

from typing import Sequence
import logging
import numpy as np

from core import TrialConfig
from snapshot import PosteriorSnapshot

logger = logging.getLogger(__name__)


def expected_utility(pi_I, pi_T, pi_E, utility_table: np.ndarray) -> np.ndarray:
    """
    Expected utility of a dose from P(I=1), P(T=1|I) and P(E=1|I), with T and E
    conditionally independent given I. utility_table is indexed [T, E, I].

    pi_I has shape (...); pi_T and pi_E have shape (..., 2), last axis = I.
    Works on posterior means (one value per dose) or on draws.
    """
    u = np.asarray(utility_table, dtype=float)
    pi_I = np.asarray(pi_I, dtype=float)
    pi_T = np.asarray(pi_T, dtype=float)
    pi_E = np.asarray(pi_E, dtype=float)

    total = np.zeros(np.broadcast(pi_I, pi_T[..., 0]).shape)
    for i, weight in ((0, 1.0 - pi_I), (1, pi_I)):
        t = pi_T[..., i]
        e = pi_E[..., i]
        u_i = (
            u[0, 0, i] * (1 - t) * (1 - e)
            + u[0, 1, i] * (1 - t) * e
            + u[1, 0, i] * t * (1 - e)
            + u[1, 1, i] * t * e
        )
        total = total + weight * u_i
    return total


def dose_utilities(snapshot: PosteriorSnapshot, config: TrialConfig) -> np.ndarray:
    """Expected utility per dose at the adjusted posterior means (NaN for doses without data)."""
    util = expected_utility(snapshot.imm_mean, snapshot.tox_mean, snapshot.eff_mean, config.utility_table)
    for j in range(config.n_doses):
        if not np.isnan(util[j]):
            logger.debug(
                "stage %d dose %d: pi_I=%.3f tox|I=(%.3f, %.3f) eff|I=(%.3f, %.3f) utility=%.2f",
                snapshot.stage, j, snapshot.imm_mean[j],
                snapshot.tox_mean[j, 0], snapshot.tox_mean[j, 1],
                snapshot.eff_mean[j, 0], snapshot.eff_mean[j, 1], util[j],
            )
    return util


def equal_allocation(n_doses: int) -> np.ndarray:
    return np.full(int(n_doses), 1.0 / int(n_doses))


def adaptive_allocation(
    admissible: Sequence[int],
    snapshot: PosteriorSnapshot,
    config: TrialConfig,
) -> np.ndarray:
    """
    Allocation probabilities proportional to expected utility over the
    admissible set; zero elsewhere. Falls back to equal weights over the
    admissible set when every score is zero.
    """
    probs = np.zeros(config.n_doses)
    if len(admissible) == 0:
        return probs

    idx = np.asarray(admissible, dtype=int)
    scores = np.maximum(dose_utilities(snapshot, config)[idx], 0.0)
    if scores.sum() > 0:
        probs[idx] = scores / scores.sum()
    else:
        probs[idx] = 1.0 / len(idx)
    return probs


def cohort_counts(probs: np.ndarray, cohort_size: int) -> np.ndarray:
    """
    Split a cohort across doses by largest remainder, so the counts always sum
    to cohort_size and doses with probability 0 get nobody. Remainder ties go
    to the lower dose (equal allocation gives the extra patients to the lowest doses).
    """
    probs = np.asarray(probs, dtype=float)
    if probs.ndim != 1 or np.any(probs < 0) or not np.isclose(probs.sum(), 1.0, atol=1e-6):
        raise ValueError(f"allocation must be a probability vector, got {probs}")

    quotas = probs * int(cohort_size)
    counts = np.floor(quotas).astype(int)
    left = int(cohort_size) - int(counts.sum())
    if left > 0:
        frac = np.where(probs > 0, quotas - counts, -1.0)
        order = np.argsort(-frac, kind="stable")
        counts[order[:left]] += 1
    return counts
