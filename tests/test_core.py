"""
Tests for trial configuration: defaults, validation and mapping overlay.
"""

import numpy as np
import pytest

from core import (
    DEFAULTS,
    ConfigurationError,
    TrialConfig,
    config_from_mapping,
    default_utility_table,
    dose_labels,
)


class TestTrialConfig:
    """Validation of TrialConfig."""

    def test_defaults(self, config):
        assert config.n_doses == 3
        assert config.max_sample_size == 18
        assert config.c_T == 0.90
        assert config.tox_constraint == "biviso"
        assert config.imm_constraint == "pava"

    def test_dose_levels_become_tuple(self):
        cfg = TrialConfig(dose_levels=[10, 20])
        assert cfg.dose_levels == (10, 20)

    def test_empty_dose_levels(self):
        with pytest.raises(ConfigurationError):
            TrialConfig(dose_levels=())

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"n_sims": 0},
            {"n_stages": 0},
            {"cohort_size": -3},
            {"cohort_size": 2.5},
            {"phi_T": 0.0},
            {"phi_E": 1.2},
            {"c_T": 1.5},
            {"c_I": -0.1},
            {"delta_poc": 0.0},
            {"prior_alpha": 0.0},
            {"utility_table": np.zeros((2, 2))},
            {"utility_table": np.full((2, 2, 2), np.nan)},
            {"tox_constraint": "spline"},
            {"imm_constraint": "biviso"},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            TrialConfig(dose_levels=(1, 2, 3), **kwargs)

    @pytest.mark.parametrize(
        "field, value",
        [
            ("phi_T", None),
            ("phi_E", "high"),
            ("c_T", "strict"),
            ("delta_poc", None),
            ("prior_beta", "flat"),
            ("n_sims", None),
            ("cohort_size", "six"),
            ("n_stages", float("inf")),
        ],
    )
    def test_non_numeric_values_name_the_field(self, field, value):
        with pytest.raises(ConfigurationError, match=field):
            TrialConfig(dose_levels=(1, 2, 3), **{field: value})

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            TrialConfig(dose_levels=(1,), n_sims=0)

    def test_none_threshold_allowed(self):
        cfg = TrialConfig(dose_levels=(1, 2), c_T=None, c_E=None)
        assert cfg.c_T is None
        assert cfg.c_E is None

    def test_utility_table_read_only(self, config):
        with pytest.raises(ValueError):
            config.utility_table[0, 0, 0] = 5.0


class TestDefaults:
    """Default utility table and mapping overlay."""

    def test_default_utility_values(self):
        u = default_utility_table()
        assert u.shape == (2, 2, 2)
        assert u[0, 1, 0] == 80
        assert u[1, 1, 0] == 30
        assert u[0, 0, 1] == 10
        assert u[0, 1, 1] == 100
        assert u[1, 1, 1] == 40
        assert u[0, 0, 0] == 0 and u[1, 0, 0] == 0 and u[1, 0, 1] == 0

    def test_config_from_defaults(self):
        cfg = config_from_mapping(DEFAULTS)
        assert cfg.n_doses == len(DEFAULTS["dose_levels"])
        assert cfg.cohort_size == DEFAULTS["cohort_size"]
        np.testing.assert_array_equal(cfg.utility_table, default_utility_table())

    def test_mapping_overlays_defaults(self):
        cfg = config_from_mapping({"n_stages": 5, "c_T": None, "dose_levels": ["a", "b"]})
        assert cfg.n_stages == 5
        assert cfg.c_T is None
        assert cfg.dose_levels == ("a", "b")
        assert cfg.cohort_size == DEFAULTS["cohort_size"]

    def test_mapping_invalid_raises(self):
        with pytest.raises(ConfigurationError):
            config_from_mapping({"phi_T": 2.0})

    def test_dose_labels(self, config):
        assert dose_labels(config) == ["D1\n1", "D2\n2", "D3\n3"]
