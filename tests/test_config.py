"""Tests for engine configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from paylinq_formula.config import CONFIG_FILENAME, DEFAULT_CONFIG, load_config
from paylinq_formula.formulas.parser import MAX_DEPTH_LIMIT


def _write_config(directory: Path, data: object) -> None:
    (directory / CONFIG_FILENAME).write_text(yaml.dump(data))


class TestLoadConfig:
    def test_defaults(self) -> None:
        assert load_config() == DEFAULT_CONFIG

    def test_missing_file_means_defaults(self, tmp_path: Path) -> None:
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_file_values(self, tmp_path: Path) -> None:
        _write_config(tmp_path, {"max_depth": 10, "logging_enabled": False})
        config = load_config(tmp_path)
        assert config["max_depth"] == 10
        assert config["logging_enabled"] is False
        assert config["max_formula_length"] == DEFAULT_CONFIG["max_formula_length"]

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("")
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_equality_block_flattened(self, tmp_path: Path) -> None:
        _write_config(tmp_path, {"equality": {"abs_tol": 0.005}})
        config = load_config(tmp_path)
        assert config["equality_abs_tol"] == 0.005
        assert config["equality_rel_tol"] == DEFAULT_CONFIG["equality_rel_tol"]
        assert "equality" not in config

    def test_overrides_win_over_file(self, tmp_path: Path) -> None:
        _write_config(tmp_path, {"max_depth": 10})
        config = load_config(tmp_path, overrides={"max_depth": 20})
        assert config["max_depth"] == 20

    def test_overrides_not_mutated(self) -> None:
        overrides = {"equality": {"rel_tol": 0}}
        load_config(overrides=overrides)
        assert overrides == {"equality": {"rel_tol": 0}}

    def test_integer_tolerance_becomes_float(self) -> None:
        config = load_config(overrides={"equality_rel_tol": 0})
        assert config["equality_rel_tol"] == 0.0
        assert isinstance(config["equality_rel_tol"], float)


class TestConfigErrors:
    def test_unknown_key(self) -> None:
        with pytest.raises(ValueError, match="Unknown config key"):
            load_config(overrides={"max_dept": 10})

    def test_unknown_equality_key(self) -> None:
        with pytest.raises(ValueError, match="Unknown key"):
            load_config(overrides={"equality": {"epsilon": 1e-9}})

    def test_equality_not_mapping(self) -> None:
        with pytest.raises(ValueError, match="must be a mapping"):
            load_config(overrides={"equality": 0.01})

    @pytest.mark.parametrize("value", [0, -1, "64", True, 1.5])
    def test_max_depth_must_be_positive_int(self, value: object) -> None:
        with pytest.raises(ValueError, match="positive integer"):
            load_config(overrides={"max_depth": value})

    def test_max_depth_upper_bound(self) -> None:
        assert load_config(overrides={"max_depth": MAX_DEPTH_LIMIT})["max_depth"] == MAX_DEPTH_LIMIT
        with pytest.raises(ValueError, match="at most"):
            load_config(overrides={"max_depth": 100_000})

    def test_negative_tolerance(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            load_config(overrides={"equality_abs_tol": -0.1})

    def test_bool_flags(self) -> None:
        with pytest.raises(ValueError, match="true or false"):
            load_config(overrides={"logging_enabled": "yes"})

    def test_non_mapping_file(self, tmp_path: Path) -> None:
        _write_config(tmp_path, ["max_depth", 10])
        with pytest.raises(ValueError, match="YAML mapping"):
            load_config(tmp_path)
