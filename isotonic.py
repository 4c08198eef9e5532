# isotonic.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Sequence, Tuple
import numpy as np
from scipy.optimize import isotonic_regression

from posterior import PosteriorSummary


VARIANCE_FLOOR = 1e-12


def inverse_variance_weights(var: np.ndarray) -> np.ndarray:
    v = np.asarray(var, dtype=float)
    return 1.0 / np.maximum(v, VARIANCE_FLOOR)


def weighted_pava(y: np.ndarray, w: np.ndarray) -> np.ndarray:
    """
    Weighted Pool-Adjacent-Violators: closest non-decreasing sequence to y
    under weights w. Violating blocks get their shared weighted mean.
    """
    y = np.asarray(y, dtype=float)
    if y.size <= 1 or np.all(np.diff(y) >= 0):
        return y.copy()
    return np.asarray(isotonic_regression(y, weights=np.asarray(w, dtype=float), increasing=True).x)


def pava_rows(mat: np.ndarray, w: np.ndarray) -> np.ndarray:
    """
    Row-wise PAVA over a (draw, dose) matrix. Row k of the output is the
    monotone fit of row k of the input, so draw indexing is preserved.
    """
    mat = np.asarray(mat, dtype=float)
    out = np.empty_like(mat)
    for k in range(mat.shape[0]):
        out[k] = weighted_pava(mat[k], w)
    return out


def biviso(y: np.ndarray, w: np.ndarray, max_iter: int = 10000, tol: float = 1e-12) -> np.ndarray:
    """
    Bivariate isotonic regression of a (dose, group) matrix: the weighted
    least-squares fit that is non-decreasing down every column and along every row.

    Solved with Dykstra's alternating projections, each projection being a
    weighted PAVA along one axis.
    """
    y = np.asarray(y, dtype=float)
    w = np.asarray(w, dtype=float)
    if y.shape != w.shape or y.ndim != 2:
        raise ValueError(f"biviso needs matching 2-D arrays, got {y.shape} and {w.shape}")

    x = y.copy()
    p = np.zeros_like(y)
    q = np.zeros_like(y)
    for _ in range(int(max_iter)):
        z = x + p
        a = np.column_stack([weighted_pava(z[:, g], w[:, g]) for g in range(y.shape[1])])
        p = z - a

        z = a + q
        b = np.vstack([weighted_pava(z[d, :], w[d, :]) for d in range(y.shape[0])])
        q = z - b

        if np.max(np.abs(b - x)) < tol:
            x = b
            break
        x = b
    return x


def credible_interval(draws: np.ndarray) -> Tuple[float, float]:
    lo, hi = np.percentile(draws, [2.5, 97.5])
    return float(lo), float(hi)


def _by_group(summaries: Sequence[PosteriorSummary]) -> Dict[object, List[PosteriorSummary]]:
    groups: Dict[object, List[PosteriorSummary]] = {}
    for s in summaries:
        groups.setdefault(s.group, []).append(s)
    for g in groups:
        groups[g].sort(key=lambda s: s.dose)
    return groups


class MonotonicityConstraint(ABC):
    """Makes posterior summaries non-decreasing in dose."""

    name: str = ""

    @abstractmethod
    def adjust(self, summaries: Sequence[PosteriorSummary]) -> List[PosteriorSummary]:
        ...


class DoseMonotone(MonotonicityConstraint):
    """
    1-D constraint. Every Monte-Carlo draw (row across doses) is passed through
    weighted PAVA with inverse posterior variance weights. Grouped summaries are
    adjusted along dose within each group independently.
    """

    name = "pava"

    def adjust(self, summaries: Sequence[PosteriorSummary]) -> List[PosteriorSummary]:
        out: List[PosteriorSummary] = []
        for _, cells in _by_group(summaries).items():
            draws = np.column_stack([c.draws for c in cells])  # (draw, dose)
            weights = inverse_variance_weights([c.var for c in cells])
            adjusted = pava_rows(draws, weights)
            for j, c in enumerate(cells):
                col = adjusted[:, j].copy()
                col.setflags(write=False)
                lo, hi = credible_interval(col)
                out.append(
                    replace(c, adjusted_draws=col, adjusted_mean=float(col.mean()), ci_lower=lo, ci_upper=hi)
                )
        out.sort(key=lambda s: (s.dose, -1 if s.group is None else s.group))
        return out


class DoseGroupMonotone(MonotonicityConstraint):
    """
    2-D constraint over (dose, group). Bivariate isotonic regression is applied
    to the matrix of posterior means (not per draw), weighted by inverse variance.

    Approximation: adjusted draws are the unadjusted draws shifted by the change
    in mean (fitted - posterior mean) and clipped to [0, 1]. They are not draws
    from a re-derived joint posterior; the 95% interval is read off them.
    """

    name = "biviso"

    def adjust(self, summaries: Sequence[PosteriorSummary]) -> List[PosteriorSummary]:
        groups = _by_group(summaries)
        keys = sorted(groups)
        if any(k is None for k in keys):
            raise ValueError("biviso needs grouped summaries")
        doses = [c.dose for c in groups[keys[0]]]
        for k in keys:
            if [c.dose for c in groups[k]] != doses:
                raise ValueError("biviso needs the same doses in every group")

        means = np.column_stack([[c.mean for c in groups[k]] for k in keys])  # (dose, group)
        var = np.column_stack([[c.var for c in groups[k]] for k in keys])
        fitted = biviso(means, inverse_variance_weights(var))

        out: List[PosteriorSummary] = []
        for gi, k in enumerate(keys):
            for j, c in enumerate(groups[k]):
                shift = float(fitted[j, gi]) - c.mean
                col = np.clip(c.draws + shift, 0.0, 1.0)
                col.setflags(write=False)
                lo, hi = credible_interval(col)
                out.append(
                    replace(c, adjusted_draws=col, adjusted_mean=float(fitted[j, gi]), ci_lower=lo, ci_upper=hi)
                )
        out.sort(key=lambda s: (s.dose, s.group))
        return out


_CONSTRAINTS = {
    DoseMonotone.name: DoseMonotone,
    DoseGroupMonotone.name: DoseGroupMonotone,
}


def constraint_for(name: str) -> MonotonicityConstraint:
    try:
        return _CONSTRAINTS[name]()
    except KeyError:
        raise ValueError(f"unknown monotonicity constraint {name!r}") from None
