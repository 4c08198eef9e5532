# posterior.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence
import numpy as np


OUTCOMES = ("Y_I", "Y_T", "Y_E")


class NoInformationError(ValueError):
    """No patients enrolled for a dose/group: there is no posterior to draw from."""


@dataclass(frozen=True)
class PatientRecord:
    id: int
    dose: int  # 0-based index into TrialConfig.dose_levels
    stage: int  # 1-based
    Y_I: int
    Y_T: int
    Y_E: int


@dataclass(frozen=True)
class DoseGroupStatistic:
    dose: int
    group: Optional[int]
    r: int
    n: int


@dataclass(frozen=True, eq=False)
class PosteriorSummary:
    dose: int
    group: Optional[int]
    alpha_post: float
    beta_post: float
    draws: np.ndarray
    mean: float
    var: float

    # filled in by the isotonic adjuster
    adjusted_draws: Optional[np.ndarray] = None
    adjusted_mean: Optional[float] = None
    ci_lower: Optional[float] = None
    ci_upper: Optional[float] = None


def compute_rn(
    records: Sequence[PatientRecord],
    outcome: str,
    n_doses: int,
    group: Optional[str] = None,
) -> List[DoseGroupStatistic]:
    """
    Cumulative successes r and trials n per dose (and per group level 0/1 of `group`).

    Always returns the complete grid, ordered by dose then group, with zeros
    where nobody was enrolled.
    """
    if outcome not in OUTCOMES:
        raise ValueError(f"unknown outcome column {outcome!r}")
    if group is not None and group not in OUTCOMES:
        raise ValueError(f"unknown group column {group!r}")

    n_groups = 1 if group is None else 2
    r = np.zeros((n_doses, n_groups), dtype=int)
    n = np.zeros((n_doses, n_groups), dtype=int)
    for rec in records:
        if not (0 <= rec.dose < n_doses):
            raise ValueError(f"patient {rec.id} has dose index {rec.dose} outside 0..{n_doses - 1}")
        g = 0 if group is None else int(getattr(rec, group))
        r[rec.dose, g] += int(getattr(rec, outcome))
        n[rec.dose, g] += 1

    out: List[DoseGroupStatistic] = []
    for d in range(n_doses):
        for g in range(n_groups):
            out.append(
                DoseGroupStatistic(
                    dose=d,
                    group=None if group is None else g,
                    r=int(r[d, g]),
                    n=int(n[d, g]),
                )
            )
    return out


def beta_variance(a: float, b: float) -> float:
    return (a * b) / ((a + b) ** 2 * (a + b + 1.0))


def beta_posterior(
    stat: DoseGroupStatistic,
    rng: np.random.Generator,
    n_sims: int,
    alpha: float = 1.0,
    beta: float = 1.0,
) -> PosteriorSummary:
    """
    Conjugate Beta-Binomial update with Monte-Carlo draws:
      alpha_post = r + alpha, beta_post = n - r + beta

    Raises NoInformationError when n == 0.
    """
    if stat.n == 0:
        label = f"dose {stat.dose}" if stat.group is None else f"dose {stat.dose}, group {stat.group}"
        raise NoInformationError(f"no enrolled patients for {label}")
    if not (0 <= stat.r <= stat.n):
        raise ValueError(f"invalid statistic r={stat.r}, n={stat.n}")

    a = float(stat.r) + float(alpha)
    b = float(stat.n - stat.r) + float(beta)
    draws = rng.beta(a, b, size=int(n_sims))
    draws.setflags(write=False)
    return PosteriorSummary(
        dose=stat.dose,
        group=stat.group,
        alpha_post=a,
        beta_post=b,
        draws=draws,
        mean=a / (a + b),
        var=beta_variance(a, b),
    )


def prior_summary(
    stat: DoseGroupStatistic,
    rng: np.random.Generator,
    n_sims: int,
    alpha: float = 1.0,
    beta: float = 1.0,
) -> PosteriorSummary:
    """
    Posterior of an empty immune-status cell inside an enrolled dose: the prior itself.
    """
    a, b = float(alpha), float(beta)
    draws = rng.beta(a, b, size=int(n_sims))
    draws.setflags(write=False)
    return PosteriorSummary(
        dose=stat.dose,
        group=stat.group,
        alpha_post=a,
        beta_post=b,
        draws=draws,
        mean=a / (a + b),
        var=beta_variance(a, b),
    )
