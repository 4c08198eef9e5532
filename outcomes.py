# outcomes.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Tuple
import math
import numpy as np

from core import DEFAULTS


# -------------------------
# Gumbel model for (T, E) given immune status
# -------------------------
def gumbel_cell_probs(p_t: float, p_e: float, rho: float) -> np.ndarray:
    """
    Joint cell probabilities of (T, E) with marginals p_t, p_e and Gumbel
    association rho, ordered [(T0,E0), (T0,E1), (T1,E0), (T1,E1)].
    """
    t, e = float(p_t), float(p_e)
    k = t * e * (1 - t) * (1 - e) * (math.exp(rho) - 1) / (math.exp(rho) + 1)
    return np.array(
        [
            (1 - t) * (1 - e) + k,
            (1 - t) * e - k,
            t * (1 - e) - k,
            t * e + k,
        ],
        dtype=float,
    )


@dataclass(frozen=True, eq=False)
class ProbabilityModel:
    """
    True outcome model per dose: P(I=1), P(T=1|I), P(E=1|I) with Gumbel
    association rho0 (I=0) and rho1 (I=1).
    """

    p_YI: np.ndarray  # (dose,)
    p_YT_given_I: np.ndarray  # (dose, I)
    p_YE_given_I: np.ndarray  # (dose, I)
    rho0: float = 1.5
    rho1: float = 2.0
    name: str = "custom"
    cells: np.ndarray = field(init=False, repr=False)  # (dose, I, 4)

    def __post_init__(self) -> None:
        p_i = np.array(self.p_YI, dtype=float)
        p_t = np.array(self.p_YT_given_I, dtype=float)
        p_e = np.array(self.p_YE_given_I, dtype=float)
        if p_i.ndim != 1 or p_i.size == 0:
            raise ValueError(f"p_YI must be a non-empty vector, got shape {p_i.shape}")
        J = p_i.size
        for name, arr in (("p_YT_given_I", p_t), ("p_YE_given_I", p_e)):
            if arr.shape != (J, 2):
                raise ValueError(f"{name} must have shape ({J}, 2), got {arr.shape}")
        for name, arr in (("p_YI", p_i), ("p_YT_given_I", p_t), ("p_YE_given_I", p_e)):
            if np.any(arr < 0) or np.any(arr > 1):
                raise ValueError(f"{name} must contain probabilities in [0, 1]")

        cells = np.empty((J, 2, 4))
        for j in range(J):
            for i, rho in ((0, self.rho0), (1, self.rho1)):
                c = gumbel_cell_probs(p_t[j, i], p_e[j, i], rho)
                if np.any(c < -1e-12):
                    raise ValueError(f"Gumbel cell probabilities invalid at dose {j}, I={i}: {c}")
                c = np.clip(c, 0.0, None)
                cells[j, i] = c / c.sum()

        for arr in (p_i, p_t, p_e, cells):
            arr.setflags(write=False)
        object.__setattr__(self, "p_YI", p_i)
        object.__setattr__(self, "p_YT_given_I", p_t)
        object.__setattr__(self, "p_YE_given_I", p_e)
        object.__setattr__(self, "cells", cells)

    @property
    def n_doses(self) -> int:
        return int(self.p_YI.size)

    def marginals(self) -> Dict[str, np.ndarray]:
        """True marginal immune, toxicity and efficacy rates per dose."""
        w = self.p_YI[:, None]
        return {
            "immune": self.p_YI.copy(),
            "toxicity": ((1 - w) * self.p_YT_given_I[:, :1] + w * self.p_YT_given_I[:, 1:]).ravel(),
            "efficacy": ((1 - w) * self.p_YE_given_I[:, :1] + w * self.p_YE_given_I[:, 1:]).ravel(),
        }


def generate_outcome(dose: int, model: ProbabilityModel, rng: np.random.Generator) -> Tuple[int, int, int]:
    """
    One patient at `dose` (0-based): draw immune status, then the (T, E) cell
    from the Gumbel joint for that status. Returns (Y_I, Y_T, Y_E).
    """
    y_i = int(rng.random() < model.p_YI[dose])
    cell = int(rng.choice(4, p=model.cells[dose, y_i]))
    y_t = int(cell >= 2)
    y_e = int(cell in (1, 3))
    return y_i, y_t, y_e


# -------------------------
# Scenarios
# -------------------------
def default_probability_model() -> ProbabilityModel:
    return ProbabilityModel(
        p_YI=[0.2, 0.4, 0.6],
        p_YT_given_I=[[0.1, 0.3], [0.3, 0.5], [0.5, 0.7]],
        p_YE_given_I=[[0.2, 0.4], [0.4, 0.6], [0.6, 0.8]],
        rho0=1.5,
        rho1=2.0,
        name="default",
    )


def flat_scenario(
    n_doses: int,
    phi_I_lower: float = 0.25,
    phi_E_lower: float = 0.20,
    toxicity_low: float = 0.02,
    rho0: float = 1.5,
    rho1: float = 2.0,
) -> ProbabilityModel:
    """
    Every dose identical at the lower bounds. P(E|I=1) is set 0.05 above the
    target marginal and P(E|I=0) solved so the marginal efficacy equals phi_E_lower.
    """
    p_e1 = min(phi_E_lower + 0.05, 1.0)
    p_e0 = (phi_E_lower - phi_I_lower * p_e1) / (1 - phi_I_lower)
    p_e0 = max(0.0, min(p_e0, 1.0))
    return ProbabilityModel(
        p_YI=np.full(n_doses, phi_I_lower),
        p_YT_given_I=np.full((n_doses, 2), toxicity_low),
        p_YE_given_I=np.tile([p_e0, p_e1], (n_doses, 1)),
        rho0=rho0,
        rho1=rho1,
        name="flat",
    )


def null_flat_scenario(
    n_doses: int = 5,
    phi_I: float = 0.20,
    phi_E: float = 0.25,
    tox_flat: float = 0.05,
    rho0: float = 1.5,
    rho1: float = 2.0,
) -> ProbabilityModel:
    """Null scenario for PoC calibration: both conditional efficacies equal phi_E."""
    return ProbabilityModel(
        p_YI=np.full(n_doses, phi_I),
        p_YT_given_I=np.full((n_doses, 2), tox_flat),
        p_YE_given_I=np.full((n_doses, 2), phi_E),
        rho0=rho0,
        rho1=rho1,
        name="null_flat",
    )


def unfavorable_scenario(
    n_doses: int,
    p_immune: float = 0.10,
    p_toxicity: float = 0.80,
    p_efficacy: float = 0.10,
    rho0: float = 1.5,
    rho1: float = 2.0,
) -> ProbabilityModel:
    """Unsafe and inactive at every dose; used to calibrate early termination."""
    return ProbabilityModel(
        p_YI=np.full(n_doses, p_immune),
        p_YT_given_I=np.full((n_doses, 2), p_toxicity),
        p_YE_given_I=np.full((n_doses, 2), p_efficacy),
        rho0=rho0,
        rho1=rho1,
        name="unfavorable",
    )


def model_from_mapping(mapping: Mapping[str, object], defaults: Mapping[str, object] = DEFAULTS) -> ProbabilityModel:
    """Build the true scenario from a flat mapping (e.g. Streamlit session_state)."""
    def get(key: str) -> object:
        return mapping[key] if key in mapping else defaults[key]

    return ProbabilityModel(
        p_YI=np.asarray(get("p_YI"), dtype=float),
        p_YT_given_I=np.asarray(get("p_YT_given_I"), dtype=float),
        p_YE_given_I=np.asarray(get("p_YE_given_I"), dtype=float),
        rho0=float(get("rho0")),
        rho1=float(get("rho1")),
        name="custom",
    )
