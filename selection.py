# selection.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple
import logging
import numpy as np

from core import TrialConfig
from randomization import dose_utilities, expected_utility
from snapshot import PosteriorSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinalDecision:
    final_dose: Optional[int]  # 0-based dose index, None = no decision
    final_utility: Optional[float]
    poc_validated: bool
    poc_probability: float
    reason: str

    best_dose: Optional[int] = None
    candidates: Tuple[int, ...] = ()
    poc_by_dose: Dict[int, float] = field(default_factory=dict)
    utilities: Dict[int, float] = field(default_factory=dict)

    @classmethod
    def no_decision(cls, reason: str, **kwargs) -> "FinalDecision":
        return cls(final_dose=None, final_utility=None, poc_validated=False, poc_probability=0.0, reason=reason, **kwargs)


def poc_probabilities(
    admissible: Sequence[int],
    best: int,
    imm_draws: np.ndarray,
    delta_poc: float,
) -> Dict[int, float]:
    """
    PoC_i = P(pi_I[i] < delta_poc * pi_I[best]) for every admissible i != best,
    from paired immune-response draws (draw k of dose i against draw k of best).
    """
    ref = float(delta_poc) * imm_draws[:, best]
    return {int(i): float(np.mean(imm_draws[:, i] < ref)) for i in admissible if int(i) != int(best)}


def posterior_expected_utility(dose: int, snapshot: PosteriorSnapshot, config: TrialConfig) -> float:
    """Expected utility averaged over the adjusted posterior draws of one dose."""
    per_draw = expected_utility(
        snapshot.imm_draws[:, dose],
        snapshot.tox_draws[:, dose, :],
        snapshot.eff_draws[:, dose, :],
        config.utility_table,
    )
    return float(np.mean(per_draw))


def select_final_dose(
    admissible: Sequence[int],
    snapshot: PosteriorSnapshot,
    config: TrialConfig,
) -> FinalDecision:
    """
    Terminal rule after the last stage.

    j* is the admissible dose with the highest expected utility at the posterior
    means. Every other admissible dose i is compared with j* on immune response;
    P_final holds the doses with PoC_i >= c_poc, plus j* itself once any dose
    qualifies. PoC is established when P_final is non-empty, and the member with
    the largest posterior expected utility is selected. Otherwise no dose is
    declared.
    """
    admissible = tuple(int(i) for i in admissible)
    if not admissible:
        return FinalDecision.no_decision("No admissible doses")

    util = dose_utilities(snapshot, config)
    best = admissible[int(np.argmax([util[i] for i in admissible]))]
    poc = poc_probabilities(admissible, best, snapshot.imm_draws, config.delta_poc)
    max_poc = max(poc.values()) if poc else 0.0

    passing = [i for i in admissible if i in poc and poc[i] >= config.c_poc]
    if not passing:
        reason = (
            "PoC not established: single admissible dose"
            if len(admissible) == 1
            else f"PoC not established: no admissible dose has PoC >= {config.c_poc}"
        )
        logger.info("final selection: best dose %d, max PoC %.3f, %s", best, max_poc, reason)
        return FinalDecision.no_decision(reason, best_dose=best, poc_by_dose=poc)

    candidates = tuple(sorted(set(passing) | {best}))
    eu = {i: posterior_expected_utility(i, snapshot, config) for i in candidates}
    chosen = max(candidates, key=lambda i: eu[i])
    decision = FinalDecision(
        final_dose=chosen,
        final_utility=eu[chosen],
        poc_validated=True,
        poc_probability=max(poc[i] for i in passing),
        reason=f"PoC established against best dose {best}; selected by posterior expected utility",
        best_dose=best,
        candidates=candidates,
        poc_by_dose=poc,
        utilities=eu,
    )
    logger.info(
        "final selection: best dose %d, P_final %s, selected %d (utility %.2f, PoC %.3f)",
        best, list(candidates), chosen, decision.final_utility, decision.poc_probability,
    )
    return decision
