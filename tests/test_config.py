"""
tests/test_config.py — Unit tests for core.config.load_config.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from core.config import GuardConfig, SafetyThresholds, load_config


@pytest.fixture()
def yaml_file(tmp_path: Path):
    def _write(text: str) -> Path:
        path = tmp_path / "sentinel.yaml"
        path.write_text(text, encoding="utf-8")
        return path
    return _write


class TestDefaults:

    def test_defaults_from_empty_file(self, tmp_path: Path) -> None:
        empty = tmp_path / "empty.yaml"
        empty.write_text("", encoding="utf-8")
        cfg = load_config(empty)
        assert isinstance(cfg, GuardConfig)
        assert cfg.thresholds.max_rpm == 6000.0
        assert cfg.thresholds.max_temp == 95.0
        assert cfg.oracle.backend == "rules"
        assert cfg.pipeline.max_commit_attempts == 3

    def test_power_ceiling_in_kw(self) -> None:
        assert SafetyThresholds(max_power_watts=5000.0).max_power_kw == pytest.approx(5.0)

    def test_config_is_frozen(self) -> None:
        cfg = GuardConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.thresholds.max_rpm = 1.0  # type: ignore[misc]

    def test_repository_yaml_loads(self) -> None:
        repo_yaml = Path(__file__).resolve().parent.parent / "config" / "sentinel.yaml"
        cfg = load_config(repo_yaml)
        assert cfg.thresholds.allowed_ports == (502, 4840)
        assert cfg.server.port == 7860


class TestOverrides:

    def test_file_values_applied(self, yaml_file) -> None:
        cfg = load_config(yaml_file("thresholds:\n  max_rpm: 4000\noracle:\n  timeout_ms: 250\n"))
        assert cfg.thresholds.max_rpm == 4000
        assert cfg.oracle.timeout_ms == 250
        assert cfg.thresholds.max_temp == 95.0

    def test_overrides_merge_on_top(self, yaml_file) -> None:
        path = yaml_file("thresholds:\n  max_rpm: 4000\n")
        cfg = load_config(path, overrides={"thresholds": {"max_temp": 80}})
        assert cfg.thresholds.max_rpm == 4000
        assert cfg.thresholds.max_temp == 80

    def test_env_var_used(self, yaml_file, monkeypatch: pytest.MonkeyPatch) -> None:
        path = yaml_file("pipeline:\n  max_commit_attempts: 5\n")
        monkeypatch.setenv("SENTINEL_CONFIG", str(path))
        assert load_config().pipeline.max_commit_attempts == 5


class TestValidation:

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_unknown_key_rejected(self, yaml_file) -> None:
        with pytest.raises(ValueError):
            load_config(yaml_file("scorer:\n  bogus: 1\n"))

    def test_non_mapping_rejected(self, yaml_file) -> None:
        with pytest.raises(ValueError):
            load_config(yaml_file("- just\n- a list\n"))

    @pytest.mark.parametrize(
        "text",
        [
            "thresholds:\n  max_rpm: 0\n",
            "physics:\n  temp_warning_c: 120\n",
            "scorer:\n  jailbreak_threshold: 1.5\n",
            "scorer:\n  shingle_size: 1\n",
            "oracle:\n  backend: cloud\n",
            "oracle:\n  timeout_ms: 0\n",
            "pipeline:\n  max_commit_attempts: 0\n",
        ],
    )
    def test_out_of_range_values(self, yaml_file, text: str) -> None:
        with pytest.raises(ValueError):
            load_config(yaml_file(text))
