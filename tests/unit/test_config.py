"""Tests for ShapeConfig and the precondition checker.

Tests:
    - Default threshold and policy
    - Validation of threshold, error_mode and dtype
    - from_cfg with dicts and attribute objects
    - check() in raise and abort modes
"""

import os
from types import SimpleNamespace

import pytest
import torch

from tileshape_core.config import DEFAULT_ZERO_THRESHOLD, ShapeConfig
from tileshape_core.errors import ReductionError, ShapeError, check


class TestShapeConfigValidation:
    """Test validation of configuration fields."""

    def test_defaults(self):
        """Default threshold is single precision epsilon, errors raise."""
        config = ShapeConfig()
        assert config.zero_threshold == DEFAULT_ZERO_THRESHOLD
        assert config.zero_threshold == pytest.approx(1.1920929e-07)
        assert config.error_mode == "raise"
        assert config.dtype == torch.float32

    def test_negative_threshold(self):
        with pytest.raises(ValueError, match="zero_threshold must be finite and non-negative"):
            ShapeConfig(zero_threshold=-1e-3)

    def test_non_finite_threshold(self):
        with pytest.raises(ValueError, match="zero_threshold"):
            ShapeConfig(zero_threshold=float("inf"))
        with pytest.raises(ValueError, match="zero_threshold"):
            ShapeConfig(zero_threshold=float("nan"))

    def test_non_numeric_threshold(self):
        with pytest.raises(ValueError, match="real number"):
            ShapeConfig(zero_threshold="0.1")

    def test_zero_threshold_warns(self):
        """A threshold of 0 is legal but disables zero detection."""
        with pytest.warns(UserWarning, match="no tile will ever be reported as zero"):
            ShapeConfig(zero_threshold=0.0)

    def test_invalid_error_mode(self):
        with pytest.raises(ValueError, match="error_mode must be one of"):
            ShapeConfig(error_mode="ignore")

    def test_integer_dtype_rejected(self):
        with pytest.raises(ValueError, match="floating point"):
            ShapeConfig(dtype=torch.int64)

    def test_frozen(self):
        config = ShapeConfig()
        with pytest.raises(Exception):
            config.zero_threshold = 1.0


class TestShapeConfigFromCfg:
    def test_from_dict_ignores_unknown_keys(self):
        config = ShapeConfig.from_cfg({"zero_threshold": 1e-4, "seed": 3})
        assert config.zero_threshold == 1e-4
        assert config.error_mode == "raise"

    def test_from_object(self):
        cfg = SimpleNamespace(zero_threshold=0.5, error_mode="abort", other=1)
        config = ShapeConfig.from_cfg(cfg)
        assert config.zero_threshold == 0.5
        assert config.error_mode == "abort"

    def test_to_dict_round_trip(self):
        config = ShapeConfig(zero_threshold=0.25, dtype=torch.float64)
        assert ShapeConfig.from_cfg(config.to_dict()) == config


class TestCheck:
    """check() raises or aborts depending on error_mode."""

    def test_passes_on_true(self):
        check(True, "never raised")

    def test_raises_shape_error(self):
        with pytest.raises(ShapeError, match="bad tile"):
            check(False, "bad tile")

    def test_shape_error_is_value_error(self):
        with pytest.raises(ValueError):
            check(False, "bad tile", ShapeConfig())

    def test_abort_mode_logs_and_aborts(self, monkeypatch, caplog):
        calls = []
        monkeypatch.setattr(os, "abort", lambda: calls.append(True))
        with caplog.at_level("CRITICAL", logger="tileshape_core.errors"):
            with pytest.raises(ShapeError):
                check(False, "bad tile", ShapeConfig(error_mode="abort"))
        assert calls == [True]
        assert "bad tile" in caplog.text

    def test_reduction_error_is_runtime_error(self):
        assert issubclass(ReductionError, RuntimeError)
