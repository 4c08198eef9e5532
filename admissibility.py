# admissibility.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
import math
import numpy as np

from core import TrialConfig
from snapshot import PosteriorSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DoseCheck:
    dose: int
    informative: bool
    p_tox_safe: float  # P(marginal toxicity < phi_T)
    p_eff_good: float  # P(marginal efficacy > phi_E)
    p_imm_good: float  # P(immune response > phi_I)
    tox_ok: bool
    eff_ok: bool
    imm_ok: bool

    @property
    def admissible(self) -> bool:
        return self.informative and self.tox_ok and self.eff_ok and self.imm_ok


def _passes(prob: float, threshold: Optional[float]) -> bool:
    if threshold is None:
        return True
    return prob >= float(threshold)


def evaluate_admissibility(
    snapshot: PosteriorSnapshot,
    config: TrialConfig,
) -> Tuple[Tuple[int, ...], List[DoseCheck]]:
    """
    Posterior-probability admissibility of every dose:

      P(tox < phi_T) >= c_T,  P(eff > phi_E) >= c_E,  P(imm > phi_I) >= c_I

    Probabilities are the fraction of adjusted draws satisfying the inequality.
    A test whose threshold is None is inactive. Doses without enrolled patients
    are never admissible. Returns the ordered admissible dose indices (possibly
    empty) and the per-dose checks.
    """
    checks: List[DoseCheck] = []
    for j in range(config.n_doses):
        if not bool(snapshot.informative[j]):
            checks.append(
                DoseCheck(j, False, math.nan, math.nan, math.nan, False, False, False)
            )
            continue

        p_tox = float(np.mean(snapshot.tox_marginal[:, j] < config.phi_T))
        p_eff = float(np.mean(snapshot.eff_marginal[:, j] > config.phi_E))
        p_imm = float(np.mean(snapshot.imm_draws[:, j] > config.phi_I))
        check = DoseCheck(
            dose=j,
            informative=True,
            p_tox_safe=p_tox,
            p_eff_good=p_eff,
            p_imm_good=p_imm,
            tox_ok=_passes(p_tox, config.c_T),
            eff_ok=_passes(p_eff, config.c_E),
            imm_ok=_passes(p_imm, config.c_I),
        )
        checks.append(check)
        logger.debug(
            "stage %d dose %d: P(tox<%.2f)=%.3f (c_T=%s) P(eff>%.2f)=%.3f (c_E=%s) "
            "P(imm>%.2f)=%.3f (c_I=%s) -> %s",
            snapshot.stage, j, config.phi_T, p_tox, config.c_T, config.phi_E, p_eff, config.c_E,
            config.phi_I, p_imm, config.c_I, "admissible" if check.admissible else "excluded",
        )

    admissible = tuple(c.dose for c in checks if c.admissible)
    return admissible, checks
