# trial.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
import logging
import numpy as np

from admissibility import DoseCheck, evaluate_admissibility
from core import TrialConfig
from outcomes import ProbabilityModel, generate_outcome
from posterior import PatientRecord
from randomization import adaptive_allocation, cohort_counts, equal_allocation
from selection import FinalDecision, select_final_dose
from snapshot import PosteriorSnapshot, update_posteriors

logger = logging.getLogger(__name__)

OutcomeFn = Callable[[int, ProbabilityModel, np.random.Generator], Tuple[int, int, int]]


class TrialPhase(Enum):
    INIT = "init"
    STAGE = "stage"
    CONTINUE = "continue"
    TERMINATED_EARLY = "terminated_early"
    FINAL_SELECTION = "final_selection"
    DONE = "done"


@dataclass(frozen=True, eq=False)
class StageRecord:
    stage: int
    allocation: np.ndarray  # probabilities used to enroll this stage
    counts: np.ndarray  # patients enrolled per dose this stage
    snapshot: PosteriorSnapshot
    admissible: Tuple[int, ...]
    checks: Tuple[DoseCheck, ...]


@dataclass
class TrialState:
    phase: TrialPhase = TrialPhase.INIT
    stage: int = 0
    records: List[PatientRecord] = field(default_factory=list)
    history: List[StageRecord] = field(default_factory=list)
    next_allocation: Optional[np.ndarray] = None
    terminated_early: bool = False
    termination_stage: Optional[int] = None
    termination_reason: Optional[str] = None


@dataclass(frozen=True, eq=False)
class TrialResult:
    config: TrialConfig
    decision: FinalDecision
    records: Tuple[PatientRecord, ...]
    history: Tuple[StageRecord, ...]
    terminated_early: bool
    termination_stage: Optional[int]
    termination_reason: Optional[str]
    seed: Optional[int] = None

    @property
    def final_od(self) -> Optional[int]:
        return self.decision.final_dose

    @property
    def poc_validated(self) -> bool:
        return self.decision.poc_validated

    @property
    def n_enrolled(self) -> int:
        return len(self.records)

    @property
    def posterior(self) -> Optional[PosteriorSnapshot]:
        """Posterior state at the last stage run."""
        return self.history[-1].snapshot if self.history else None

    def allocation_table(self) -> List[Dict[str, object]]:
        """One row per (stage, dose): allocation probability and patients enrolled."""
        rows: List[Dict[str, object]] = []
        for h in self.history:
            for j in range(self.config.n_doses):
                rows.append(
                    {
                        "stage": h.stage,
                        "dose": j,
                        "prob": float(h.allocation[j]),
                        "n": int(h.counts[j]),
                    }
                )
        return rows

    def n_per_dose(self) -> np.ndarray:
        out = np.zeros(self.config.n_doses, dtype=int)
        for rec in self.records:
            out[rec.dose] += 1
        return out


def _validate_outcome(raw) -> Tuple[int, int, int]:
    try:
        y = tuple(int(v) for v in raw)
    except (TypeError, ValueError):
        raise ValueError(f"outcome generator returned {raw!r}, expected (Y_I, Y_T, Y_E)") from None
    if len(y) != 3 or any(v not in (0, 1) for v in y) or any(float(v) != float(r) for v, r in zip(y, raw)):
        raise ValueError(f"outcome generator returned {raw!r}, expected three 0/1 indicators")
    return y  # type: ignore[return-value]


class StageController:
    """
    Runs one trial: INIT -> STAGE_i (i = 1..n_stages) -> CONTINUE | TERMINATED_EARLY
    -> FINAL_SELECTION.

    Each stage enrolls exactly cohort_size patients, then recomputes the whole
    posterior state from the cumulative records. The controller owns its
    TrialState and its random streams; two controllers never share either.
    """

    def __init__(
        self,
        config: TrialConfig,
        model: ProbabilityModel,
        seed: Optional[int] = None,
        outcome_fn: OutcomeFn = generate_outcome,
    ) -> None:
        if model.n_doses != config.n_doses:
            raise ValueError(
                f"probability model has {model.n_doses} doses, config has {config.n_doses}"
            )
        self.config = config
        self.model = model
        self.seed = seed
        self.outcome_fn = outcome_fn

        outcome_seq, posterior_seq = np.random.SeedSequence(seed).spawn(2)
        self._outcome_rng = np.random.default_rng(outcome_seq)
        self._posterior_rng = np.random.default_rng(posterior_seq)
        self.state = TrialState()

    # -------------------------
    # Stage steps
    # -------------------------
    def _allocation_for(self, stage: int) -> np.ndarray:
        if stage == 1 or self.state.next_allocation is None:
            return equal_allocation(self.config.n_doses)
        return self.state.next_allocation

    def _enroll(self, stage: int, counts: np.ndarray) -> None:
        for dose, n in enumerate(counts):
            for _ in range(int(n)):
                y_i, y_t, y_e = _validate_outcome(self.outcome_fn(dose, self.model, self._outcome_rng))
                self.state.records.append(
                    PatientRecord(
                        id=len(self.state.records) + 1,
                        dose=dose,
                        stage=stage,
                        Y_I=y_i,
                        Y_T=y_t,
                        Y_E=y_e,
                    )
                )

    def run_stage(self, stage: int) -> StageRecord:
        cfg = self.config
        self.state.phase = TrialPhase.STAGE
        self.state.stage = stage

        allocation = self._allocation_for(stage)
        counts = cohort_counts(allocation, cfg.cohort_size)
        logger.info("stage %d: allocation %s -> patients %s", stage, np.round(allocation, 3).tolist(), counts.tolist())
        self._enroll(stage, counts)

        snapshot = update_posteriors(self.state.records, cfg, self._posterior_rng, stage)
        admissible, checks = evaluate_admissibility(snapshot, cfg)
        logger.info("stage %d: admissible set %s (N=%d)", stage, list(admissible), len(self.state.records))

        record = StageRecord(
            stage=stage,
            allocation=allocation,
            counts=counts,
            snapshot=snapshot,
            admissible=admissible,
            checks=tuple(checks),
        )
        self.state.history.append(record)

        if not admissible and cfg.enable_early_termination:
            self.state.phase = TrialPhase.TERMINATED_EARLY
            self.state.terminated_early = True
            self.state.termination_stage = stage
            self.state.termination_reason = "Empty admissible set"
            logger.info("stage %d: trial terminated early, no dose meets the admissibility criteria", stage)
            return record

        self.state.phase = TrialPhase.CONTINUE
        if stage < cfg.n_stages:
            if admissible:
                self.state.next_allocation = adaptive_allocation(admissible, snapshot, cfg)
            else:
                logger.warning("stage %d: empty admissible set, equal allocation for the next stage", stage)
                self.state.next_allocation = equal_allocation(cfg.n_doses)
        return record

    # -------------------------
    # Whole trial
    # -------------------------
    def run(self) -> TrialResult:
        if self.state.phase is not TrialPhase.INIT:
            raise RuntimeError("a StageController runs one trial only")
        cfg = self.config

        for stage in range(1, cfg.n_stages + 1):
            self.run_stage(stage)
            if self.state.terminated_early:
                break

        if self.state.terminated_early:
            decision = FinalDecision.no_decision(
                f"Trial terminated early at stage {self.state.termination_stage}: {self.state.termination_reason}"
            )
        else:
            self.state.phase = TrialPhase.FINAL_SELECTION
            last = self.state.history[-1]
            decision = select_final_dose(last.admissible, last.snapshot, cfg)
        self.state.phase = TrialPhase.DONE

        return TrialResult(
            config=cfg,
            decision=decision,
            records=tuple(self.state.records),
            history=tuple(self.state.history),
            terminated_early=self.state.terminated_early,
            termination_stage=self.state.termination_stage,
            termination_reason=self.state.termination_reason,
            seed=self.seed,
        )


def run_trial(
    config: TrialConfig,
    model: ProbabilityModel,
    seed: Optional[int] = None,
    outcome_fn: OutcomeFn = generate_outcome,
) -> TrialResult:
    """Simulate one trial. Same config, model and seed give identical results."""
    return StageController(config, model, seed=seed, outcome_fn=outcome_fn).run()
