# calibration.py
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging
import math
import numpy as np
from scipy.stats import binomtest

from core import TrialConfig
from outcomes import ProbabilityModel, flat_scenario, null_flat_scenario, unfavorable_scenario
from trial import TrialResult, run_trial

logger = logging.getLogger(__name__)

# PoC false-positive calibration scenarios: every dose identical
NULL_SCENARIOS: Dict[str, Callable[[int], ProbabilityModel]] = {
    "null_flat": null_flat_scenario,
    "flat": flat_scenario,
}


def null_scenario(name: str, n_doses: int) -> ProbabilityModel:
    """Build the named null scenario for n_doses doses."""
    try:
        builder = NULL_SCENARIOS[name]
    except KeyError:
        raise ValueError(f"unknown null scenario {name!r}, expected one of {sorted(NULL_SCENARIOS)}") from None
    return builder(int(n_doses))


@dataclass(frozen=True, eq=False)
class OperatingCharacteristics:
    n_trials: int
    n_completed: int
    n_poc: int
    early_termination_rate: float
    completion_rate: float
    poc_detection_rate: float
    poc_se: float
    early_termination_ci: Tuple[float, float]
    poc_ci: Tuple[float, float]
    selection_prob: np.ndarray  # (dose,) share of all trials selecting each dose
    mean_n_per_dose: np.ndarray  # (dose,)
    mean_sample_size: float
    termination_stages: Dict[int, int]


def _exact_ci(k: int, n: int) -> Tuple[float, float]:
    ci = binomtest(int(k), int(n)).proportion_ci(confidence_level=0.95, method="exact")
    return float(ci.low), float(ci.high)


def operating_characteristics(results: Sequence[TrialResult], n_doses: int) -> OperatingCharacteristics:
    n = len(results)
    if n == 0:
        raise ValueError("no trial results to summarize")

    completed = [r for r in results if not r.terminated_early]
    # PoC is only reachable from final selection, so n_poc <= n_completed
    n_poc = sum(1 for r in completed if r.poc_validated)
    n_term = n - len(completed)

    selection = np.zeros(n_doses)
    n_per_dose = np.zeros(n_doses)
    stages: Dict[int, int] = {}
    for r in results:
        n_per_dose += r.n_per_dose()
        if r.final_od is not None:
            selection[r.final_od] += 1
        if r.terminated_early:
            stages[int(r.termination_stage)] = stages.get(int(r.termination_stage), 0) + 1

    p_poc = n_poc / n
    return OperatingCharacteristics(
        n_trials=n,
        n_completed=len(completed),
        n_poc=n_poc,
        early_termination_rate=n_term / n,
        completion_rate=len(completed) / n,
        poc_detection_rate=p_poc,
        poc_se=math.sqrt(p_poc * (1 - p_poc) / n),
        early_termination_ci=_exact_ci(n_term, n),
        poc_ci=_exact_ci(n_poc, n),
        selection_prob=selection / n,
        mean_n_per_dose=n_per_dose / n,
        mean_sample_size=float(np.mean([r.n_enrolled for r in results])),
        termination_stages=dict(sorted(stages.items())),
    )


def run_replicates(
    config: TrialConfig,
    model: ProbabilityModel,
    n_trials: int,
    base_seed: int = 0,
) -> OperatingCharacteristics:
    """Run n_trials independent trials, replicate k seeded with base_seed + k."""
    if int(n_trials) <= 0:
        raise ValueError(f"n_trials must be positive, got {n_trials}")
    results = [run_trial(config, model, seed=int(base_seed) + k) for k in range(1, int(n_trials) + 1)]
    oc = operating_characteristics(results, config.n_doses)
    logger.info(
        "%s: %d trials, completion %.3f, PoC %.3f, mean N %.1f",
        model.name, oc.n_trials, oc.completion_rate, oc.poc_detection_rate, oc.mean_sample_size,
    )
    return oc


@dataclass(frozen=True, eq=False)
class CalibrationResult:
    parameter: str
    values: Tuple[float, ...]
    rates: Tuple[float, ...]
    characteristics: Tuple[OperatingCharacteristics, ...]
    target_rate: float
    optimal_value: float
    achieved_rate: float


def _closest(rates: Sequence[float], target: float) -> int:
    return int(np.argmin(np.abs(np.asarray(rates) - float(target))))


def calibrate_c_poc(
    config: TrialConfig,
    null_model: ProbabilityModel,
    candidates: Sequence[float] = (0.5, 0.6, 0.7, 0.8, 0.85, 0.9, 0.95),
    n_trials: int = 1000,
    target_rate: float = 0.10,
    base_seed: int = 10000,
) -> CalibrationResult:
    """
    Sweep c_poc under a null (flat) scenario and keep the value whose PoC
    detection rate is closest to the target false-positive rate.
    """
    ocs: List[OperatingCharacteristics] = []
    for i, c_poc in enumerate(candidates, start=1):
        cfg = replace(config, c_poc=float(c_poc))
        oc = run_replicates(cfg, null_model, n_trials, base_seed=base_seed * i)
        logger.info("c_poc=%.3f: PoC rate %.3f (SE %.3f), completion %.3f", c_poc, oc.poc_detection_rate, oc.poc_se, oc.completion_rate)
        ocs.append(oc)

    rates = [oc.poc_detection_rate for oc in ocs]
    best = _closest(rates, target_rate)
    return CalibrationResult(
        parameter="c_poc",
        values=tuple(float(v) for v in candidates),
        rates=tuple(rates),
        characteristics=tuple(ocs),
        target_rate=float(target_rate),
        optimal_value=float(candidates[best]),
        achieved_rate=float(rates[best]),
    )


def calibrate_early_termination(
    config: TrialConfig,
    threshold: str = "c_T",
    candidates: Sequence[float] = tuple(np.round(np.arange(0.70, 1.0, 0.05), 2)),
    model: Optional[ProbabilityModel] = None,
    n_trials: int = 1000,
    target_rate: float = 0.80,
    base_seed: int = 20000,
) -> CalibrationResult:
    """
    Sweep one credibility threshold (c_T, c_E or c_I) under an unfavourable
    scenario and keep the value whose early-termination rate is closest to the target.
    """
    if threshold not in ("c_T", "c_E", "c_I"):
        raise ValueError(f"threshold must be c_T, c_E or c_I, got {threshold!r}")
    if model is None:
        model = unfavorable_scenario(config.n_doses)

    ocs: List[OperatingCharacteristics] = []
    for i, value in enumerate(candidates, start=1):
        cfg = replace(config, **{threshold: float(value)})
        oc = run_replicates(cfg, model, n_trials, base_seed=base_seed * i)
        lo, hi = oc.early_termination_ci
        logger.info("%s=%.3f: early termination %.3f [%.3f, %.3f]", threshold, value, oc.early_termination_rate, lo, hi)
        ocs.append(oc)

    rates = [oc.early_termination_rate for oc in ocs]
    best = _closest(rates, target_rate)
    return CalibrationResult(
        parameter=threshold,
        values=tuple(float(v) for v in candidates),
        rates=tuple(rates),
        characteristics=tuple(ocs),
        target_rate=float(target_rate),
        optimal_value=float(candidates[best]),
        achieved_rate=float(rates[best]),
    )
