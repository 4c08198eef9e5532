# core.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple
import numpy as np


# -------------------------
# Defaults (single source)
# -------------------------
def default_utility_table() -> np.ndarray:
    """
    Utility of an outcome triple, indexed [T, E, I] (0/1 each).
    """
    u = np.zeros((2, 2, 2), dtype=float)
    # I = 0 (no immune response)
    u[0, 0, 0] = 0.0
    u[0, 1, 0] = 80.0
    u[1, 0, 0] = 0.0
    u[1, 1, 0] = 30.0
    # I = 1 (immune response)
    u[0, 0, 1] = 10.0
    u[0, 1, 1] = 100.0
    u[1, 0, 1] = 0.0
    u[1, 1, 1] = 40.0
    return u


DEFAULTS: Dict[str, object] = {
    # Design
    "dose_levels": [1, 2, 3],
    "n_stages": 3,
    "cohort_size": 6,
    "n_sims": 1000,
    "seed": 123,

    # Admissibility targets and credibility thresholds
    "phi_T": 0.30,
    "c_T": 0.90,
    "phi_E": 0.20,
    "c_E": 0.75,
    "phi_I": 0.10,
    "c_I": 0.65,

    # Proof of concept
    "c_poc": 0.90,
    "delta_poc": 0.80,

    # Beta prior
    "prior_alpha": 1.0,
    "prior_beta": 1.0,

    # Flags / monotonicity strategies
    "enable_early_termination": True,
    "imm_constraint": "pava",
    "tox_constraint": "biviso",
    "eff_constraint": "biviso",

    # True scenario (editable in the UI)
    "p_YI": [0.2, 0.4, 0.6],
    "p_YT_given_I": [[0.1, 0.3], [0.3, 0.5], [0.5, 0.7]],
    "p_YE_given_I": [[0.2, 0.4], [0.4, 0.6], [0.6, 0.8]],
    "rho0": 1.5,
    "rho1": 2.0,

    # Replicates / calibration
    "n_trials": 200,
    "calib_n_trials": 100,
    "calib_target_poc": 0.10,
    "calib_target_et": 0.80,
    "calib_threshold": "c_T",
    "calib_null_scenario": "null_flat",

    # Storage for last results
    "last_result": None,
    "last_replicates": None,
    "last_calibration": None,
}

# widget keys derived from the list-valued defaults above
SCENARIO_WIDGET_PREFIX = "true_"


CONSTRAINT_NAMES = ("pava", "biviso")


class ConfigurationError(ValueError):
    """Raised when a trial configuration cannot be run."""


def _as_float(name: str, value: object) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


def _check_rate(name: str, value: float) -> None:
    if not (0.0 < _as_float(name, value) < 1.0):
        raise ConfigurationError(f"{name} must lie in (0, 1), got {value!r}")


def _check_credibility(name: str, value: Optional[float]) -> None:
    if value is None:
        return
    if not (0.0 <= _as_float(name, value) <= 1.0):
        raise ConfigurationError(f"{name} must lie in [0, 1], got {value!r}")


@dataclass(frozen=True)
class TrialConfig:
    dose_levels: Tuple[object, ...]
    n_stages: int = 3
    cohort_size: int = 6

    phi_T: float = 0.30
    c_T: Optional[float] = 0.90
    phi_E: float = 0.20
    c_E: Optional[float] = 0.75
    phi_I: float = 0.10
    c_I: Optional[float] = 0.65

    c_poc: float = 0.90
    delta_poc: float = 0.80

    utility_table: np.ndarray = field(default_factory=default_utility_table, compare=False)
    n_sims: int = 1000
    prior_alpha: float = 1.0
    prior_beta: float = 1.0

    enable_early_termination: bool = True
    imm_constraint: str = "pava"
    tox_constraint: str = "biviso"
    eff_constraint: str = "biviso"

    def __post_init__(self) -> None:
        levels = tuple(self.dose_levels)
        if len(levels) == 0:
            raise ConfigurationError("dose_levels must not be empty")
        object.__setattr__(self, "dose_levels", levels)

        for name in ("n_stages", "cohort_size", "n_sims"):
            value = getattr(self, name)
            number = _as_float(name, value)
            if isinstance(value, bool) or not number.is_integer() or number <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
            object.__setattr__(self, name, int(number))

        _check_rate("phi_T", self.phi_T)
        _check_rate("phi_E", self.phi_E)
        _check_rate("phi_I", self.phi_I)
        _check_credibility("c_T", self.c_T)
        _check_credibility("c_E", self.c_E)
        _check_credibility("c_I", self.c_I)
        _check_credibility("c_poc", self.c_poc)
        if self.c_poc is None:
            raise ConfigurationError("c_poc is required")
        if not (_as_float("delta_poc", self.delta_poc) > 0.0):
            raise ConfigurationError(f"delta_poc must be positive, got {self.delta_poc!r}")
        alpha = _as_float("prior_alpha", self.prior_alpha)
        beta = _as_float("prior_beta", self.prior_beta)
        if not (alpha > 0 and beta > 0):
            raise ConfigurationError("prior_alpha and prior_beta must be positive")

        table = np.array(self.utility_table, dtype=float)
        if table.shape != (2, 2, 2):
            raise ConfigurationError(f"utility_table must have shape (2, 2, 2), got {table.shape}")
        if not np.all(np.isfinite(table)):
            raise ConfigurationError("utility_table must be finite")
        table.setflags(write=False)
        object.__setattr__(self, "utility_table", table)

        for name in ("imm_constraint", "tox_constraint", "eff_constraint"):
            if getattr(self, name) not in CONSTRAINT_NAMES:
                raise ConfigurationError(
                    f"{name} must be one of {CONSTRAINT_NAMES}, got {getattr(self, name)!r}"
                )
        if self.imm_constraint != "pava":
            # immune response has no grouping axis
            raise ConfigurationError("imm_constraint only supports 'pava'")

    @property
    def n_doses(self) -> int:
        return len(self.dose_levels)

    @property
    def max_sample_size(self) -> int:
        return self.n_stages * self.cohort_size


_CONFIG_KEYS = (
    "n_stages", "cohort_size", "phi_T", "c_T", "phi_E", "c_E", "phi_I", "c_I",
    "c_poc", "delta_poc", "n_sims", "prior_alpha", "prior_beta",
    "enable_early_termination", "imm_constraint", "tox_constraint", "eff_constraint",
)


def config_from_mapping(mapping: Mapping[str, object], defaults: Mapping[str, object] = DEFAULTS) -> TrialConfig:
    """
    Build a TrialConfig from a flat mapping (plain dict or Streamlit session_state),
    falling back to DEFAULTS for missing keys.
    """
    def get(key: str) -> object:
        if key in mapping:
            return mapping[key]
        return defaults[key]

    kwargs = {k: get(k) for k in _CONFIG_KEYS}
    utility = mapping["utility_table"] if "utility_table" in mapping else default_utility_table()
    return TrialConfig(
        dose_levels=tuple(get("dose_levels")),  # type: ignore[arg-type]
        utility_table=np.asarray(utility, dtype=float),
        **kwargs,  # type: ignore[arg-type]
    )


def dose_labels(config: TrialConfig) -> list:
    return [f"D{i + 1}\n{lvl}" for i, lvl in enumerate(config.dose_levels)]


# -------------------------
# Streamlit session helpers
# -------------------------
def init_state(st, defaults: Dict[str, object] = DEFAULTS) -> None:
    """
    Initialize session_state BEFORE widgets are created.
    """
    for k, v in defaults.items():
        if k not in st.session_state:
            st.session_state[k] = v


def reset_to_defaults(st, defaults: Dict[str, object] = DEFAULTS) -> None:
    """
    Reset relevant keys and hard-rerun.
    Put the reset button BEFORE any widgets on a page.
    """
    for k in [k for k in st.session_state.keys() if str(k).startswith(SCENARIO_WIDGET_PREFIX)]:
        del st.session_state[k]
    for k, v in defaults.items():
        st.session_state[k] = v
    st.rerun()
