"""Configuration management for screencap.

Configuration priority (highest to lowest):
1. CLI overrides (passed to load_config)
2. Environment variables (SCREENCAP_*)
3. Config file (~/.config/screencap/config.yaml)
4. Built-in defaults
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Any

import yaml
from platformdirs import user_config_dir, user_desktop_dir, user_downloads_dir

ENV_PREFIX = "SCREENCAP"
CONFIG_DIR = Path(user_config_dir("screencap"))
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.yaml"

TIMESTAMP_STYLES = {"datetime", "epoch"}
COLLISION_POLICIES = {"fail", "suffix"}


@dataclass
class Config:
    """screencap configuration."""

    # Binary paths
    wayland_capture: str = "wayland-capture"

    # Save target resolution
    output_dir: Optional[Path] = None  # Preferred directory, used when writable
    fallback_dir: Path = field(default_factory=lambda: Path(user_downloads_dir()))
    fallback_root: Path = field(default_factory=lambda: Path(user_desktop_dir()))
    fallback_subdir: str = "Screenshots"

    # Filenames
    filename_prefix: str = "screenshot"
    timestamp_style: str = "datetime"  # datetime: YYYYMMDD_HHMMSS, epoch: seconds
    collision_policy: str = "suffix"  # fail or suffix
    max_suffix: int = 99

    # Behavior
    capture_all_displays: bool = False
    enable_notification: bool = True
    permission_ttl: float = 30.0

    # Timeouts (seconds)
    probe_timeout: float = 5.0
    capture_timeout: float = 10.0
    save_timeout: float = 10.0

    def __post_init__(self):
        # Convert string paths to Path objects
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        if isinstance(self.fallback_dir, str):
            self.fallback_dir = Path(self.fallback_dir)
        if isinstance(self.fallback_root, str):
            self.fallback_root = Path(self.fallback_root)

    @property
    def fallback_subdir_path(self) -> Path:
        return self.fallback_root / self.fallback_subdir


PATH_KEYS = {
    "output_dir",
    "fallback_dir",
    "fallback_root",
}
INT_KEYS = {"max_suffix"}
FLOAT_KEYS = {"permission_ttl", "probe_timeout", "capture_timeout", "save_timeout"}
BOOL_KEYS = {"capture_all_displays", "enable_notification"}


def _env(name: str) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}_{name}")


def _config_path_from_env() -> Optional[Path]:
    value = _env("CONFIG") or _env("CONFIG_PATH")
    if value:
        return Path(value).expanduser()
    return None


def _load_config_file(path: Path, strict: bool = False) -> dict:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except Exception as exc:
        if strict:
            raise ValueError(f"Failed to parse config file {path}: {exc}")
        return {}

    if not isinstance(data, dict):
        if strict:
            raise ValueError(f"Config file {path} must be a mapping")
        return {}

    return data


def _expand_path(value: Any) -> Any:
    if value is None:
        return value
    return str(Path(value).expanduser())


def config_defaults() -> dict:
    return {
        "wayland_capture": "wayland-capture",
        "output_dir": None,
        "fallback_dir": str(Path(user_downloads_dir())),
        "fallback_root": str(Path(user_desktop_dir())),
        "fallback_subdir": "Screenshots",
        "filename_prefix": "screenshot",
        "timestamp_style": "datetime",
        "collision_policy": "suffix",
        "max_suffix": 99,
        "capture_all_displays": False,
        "enable_notification": True,
        "permission_ttl": 30.0,
        "probe_timeout": 5.0,
        "capture_timeout": 10.0,
        "save_timeout": 10.0,
    }


def _load_env_overrides() -> dict:
    config: dict[str, Any] = {}

    for key in config_defaults():
        value = _env(key.upper())
        if value is None:
            continue
        if key in PATH_KEYS:
            config[key] = _expand_path(value)
        elif key in INT_KEYS:
            try:
                config[key] = int(value)
            except ValueError:
                continue
        elif key in FLOAT_KEYS:
            try:
                config[key] = float(value)
            except ValueError:
                continue
        elif key in BOOL_KEYS:
            config[key] = value.lower() in ("true", "1", "yes", "on")
        else:
            config[key] = value

    return config


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    return config_path or _config_path_from_env() or DEFAULT_CONFIG_PATH


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[dict] = None,
    strict: bool = False,
) -> Config:
    """Load configuration from all sources."""
    resolved_path = resolve_config_path(config_path)

    config_dict = config_defaults()
    file_config = _load_config_file(resolved_path, strict=strict)
    config_dict.update(file_config)
    config_dict.update(_load_env_overrides())

    if overrides:
        for key, value in overrides.items():
            if value is not None:
                config_dict[key] = value

    for key in PATH_KEYS:
        if key in config_dict and config_dict[key] is not None:
            config_dict[key] = _expand_path(config_dict[key])

    return Config(**config_dict)


def config_schema() -> dict:
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {
            "wayland_capture": {"type": "string"},
            "output_dir": {"type": ["string", "null"]},
            "fallback_dir": {"type": "string"},
            "fallback_root": {"type": "string"},
            "fallback_subdir": {"type": "string"},
            "filename_prefix": {"type": "string"},
            "timestamp_style": {"type": "string", "enum": sorted(TIMESTAMP_STYLES)},
            "collision_policy": {"type": "string", "enum": sorted(COLLISION_POLICIES)},
            "max_suffix": {"type": "integer", "minimum": 1},
            "capture_all_displays": {"type": "boolean"},
            "enable_notification": {"type": "boolean"},
            "permission_ttl": {"type": "number", "minimum": 0},
            "probe_timeout": {"type": "number", "exclusiveMinimum": 0},
            "capture_timeout": {"type": "number", "exclusiveMinimum": 0},
            "save_timeout": {"type": "number", "exclusiveMinimum": 0},
        },
        "additionalProperties": False,
    }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config_dict(data: Any) -> list[str]:
    errors: list[str] = []
    if not isinstance(data, dict):
        return ["Config must be a mapping/object"]

    schema = config_schema()
    props = schema.get("properties", {})
    allowed_keys = set(props.keys())

    for key in data.keys():
        if key not in allowed_keys:
            errors.append(f"Unknown config key: {key}")

    def check_type(key: str, value: Any, expected: str) -> bool:
        if expected == "string" and not isinstance(value, str):
            errors.append(f"{key} must be a string")
        elif expected == "integer" and not _is_int(value):
            errors.append(f"{key} must be an integer")
        elif expected == "number" and not _is_number(value):
            errors.append(f"{key} must be a number")
        elif expected == "boolean" and not isinstance(value, bool):
            errors.append(f"{key} must be a boolean")
        else:
            return True
        return False

    for key, value in data.items():
        if key not in props:
            continue
        spec = props[key]
        expected = spec.get("type")
        if isinstance(expected, list):
            if value is None and "null" in expected:
                continue
            if "string" in expected and isinstance(value, str):
                continue
            errors.append(f"{key} must be one of types: {', '.join(expected)}")
            continue
        if not check_type(key, value, expected):
            continue

        if "enum" in spec and value not in spec["enum"]:
            errors.append(f"{key} must be one of: {', '.join(spec['enum'])}")
        if "minimum" in spec and value < spec["minimum"]:
            errors.append(f"{key} must be >= {spec['minimum']}")
        if "exclusiveMinimum" in spec and value <= spec["exclusiveMinimum"]:
            errors.append(f"{key} must be > {spec['exclusiveMinimum']}")

    return errors


def validate_config_file(config_path: Optional[Path] = None) -> list[str]:
    path = resolve_config_path(config_path)
    if not path.exists():
        return []
    data = _load_config_file(path, strict=True)
    return validate_config_dict(data)


def config_to_dict(config: Config) -> dict:
    def _format(value: Any) -> Any:
        if isinstance(value, Path):
            return str(value)
        return value

    return {
        "wayland_capture": config.wayland_capture,
        "output_dir": _format(config.output_dir) if config.output_dir else None,
        "fallback_dir": _format(config.fallback_dir),
        "fallback_root": _format(config.fallback_root),
        "fallback_subdir": config.fallback_subdir,
        "filename_prefix": config.filename_prefix,
        "timestamp_style": config.timestamp_style,
        "collision_policy": config.collision_policy,
        "max_suffix": config.max_suffix,
        "capture_all_displays": config.capture_all_displays,
        "enable_notification": config.enable_notification,
        "permission_ttl": config.permission_ttl,
        "probe_timeout": config.probe_timeout,
        "capture_timeout": config.capture_timeout,
        "save_timeout": config.save_timeout,
    }
