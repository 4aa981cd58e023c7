"""Tests for configuration layering and validation."""

from pathlib import Path

import pytest

from screencap.config import (
    Config,
    config_defaults,
    config_to_dict,
    load_config,
    validate_config_dict,
    validate_config_file,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in config_defaults():
        monkeypatch.delenv(f"SCREENCAP_{key.upper()}", raising=False)
    monkeypatch.delenv("SCREENCAP_CONFIG", raising=False)
    monkeypatch.delenv("SCREENCAP_CONFIG_PATH", raising=False)


def test_defaults_round_trip(tmp_path):
    config = load_config(config_path=tmp_path / "missing.yaml")

    assert config.filename_prefix == "screenshot"
    assert config.collision_policy == "suffix"
    assert config.output_dir is None
    assert isinstance(config.fallback_dir, Path)
    assert config.fallback_subdir_path == config.fallback_root / "Screenshots"
    assert set(config_to_dict(config)) == set(config_defaults())


def test_file_then_env_then_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("filename_prefix: shot\ncollision_policy: fail\nmax_suffix: 5\n")
    monkeypatch.setenv("SCREENCAP_MAX_SUFFIX", "7")
    monkeypatch.setenv("SCREENCAP_ENABLE_NOTIFICATION", "off")
    monkeypatch.setenv("SCREENCAP_CAPTURE_TIMEOUT", "2.5")

    config = load_config(config_path=path, overrides={"filename_prefix": "cli", "output_dir": None})

    assert config.filename_prefix == "cli"
    assert config.collision_policy == "fail"
    assert config.max_suffix == 7
    assert config.enable_notification is False
    assert config.capture_timeout == 2.5


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "alt.yaml"
    path.write_text("timestamp_style: epoch\n")
    monkeypatch.setenv("SCREENCAP_CONFIG", str(path))

    assert load_config().timestamp_style == "epoch"


def test_paths_are_expanded(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("output_dir: ~/shots\n")

    config = load_config(config_path=path)

    assert config.output_dir == Path.home() / "shots"


def test_invalid_env_number_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("SCREENCAP_PROBE_TIMEOUT", "soon")

    config = load_config(config_path=tmp_path / "missing.yaml")

    assert config.probe_timeout == 5.0


def test_string_paths_become_paths():
    config = Config(output_dir="/tmp/a", fallback_dir="/tmp/b", fallback_root="/tmp/c")

    assert config.output_dir == Path("/tmp/a")
    assert config.fallback_dir == Path("/tmp/b")


class TestValidation:
    def test_valid(self):
        assert validate_config_dict({"collision_policy": "fail", "max_suffix": 3, "output_dir": None}) == []

    def test_unknown_key(self):
        assert validate_config_dict({"format": "jpg"}) == ["Unknown config key: format"]

    def test_bad_values(self):
        errors = validate_config_dict({
            "timestamp_style": "iso",
            "max_suffix": 0,
            "capture_timeout": 0,
            "enable_notification": "yes",
        })

        assert "timestamp_style must be one of: datetime, epoch" in errors
        assert "max_suffix must be >= 1" in errors
        assert "capture_timeout must be > 0" in errors
        assert "enable_notification must be a boolean" in errors

    def test_not_a_mapping(self):
        assert validate_config_dict(["a"]) == ["Config must be a mapping/object"]

    def test_file_validation(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("collision_policy: overwrite\n")

        assert validate_config_file(path) == ["collision_policy must be one of: fail, suffix"]

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("a: [unclosed\n")

        with pytest.raises(ValueError):
            validate_config_file(path)
