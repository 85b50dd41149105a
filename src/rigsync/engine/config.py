"""Frozen dataclass config hierarchy for rig synchronization runs.

Loading precedence: defaults -> YAML file -> CLI overrides -> freeze.

The frozen guarantee prevents accidental mutation while an engine is
running. The serialized config is written next to every replay report so
a run can be reproduced.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import cv2
import yaml

INTERPOLATION_FLAGS: dict[str, int] = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
    "lanczos4": cv2.INTER_LANCZOS4,
}

# ---------------------------------------------------------------------------
# Section configs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncConfig:
    """Config for the frame synchronization engine.

    Attributes:
        match_tolerance_ns: Maximum stamp difference for two images to be
            considered the same capture instant.
        eviction_timeout_ns: Age (relative to the newest stamp seen) after
            which an incomplete bundle is promoted with missing slots.
        max_queue_length: Maximum number of ready bundles kept; the oldest
            are discarded beyond this.
        use_hardware_timestamps: Prefer the hardware stamp over the system
            stamp when an image carries a valid one.
    """

    match_tolerance_ns: int = 5_000_000
    eviction_timeout_ns: int = 200_000_000
    max_queue_length: int = 100
    use_hardware_timestamps: bool = True

    def __post_init__(self) -> None:
        if self.match_tolerance_ns < 0:
            raise ValueError(
                f"match_tolerance_ns must be >= 0, got {self.match_tolerance_ns}"
            )
        if self.eviction_timeout_ns <= self.match_tolerance_ns:
            raise ValueError(
                "eviction_timeout_ns must be greater than match_tolerance_ns "
                f"({self.eviction_timeout_ns} <= {self.match_tolerance_ns})"
            )
        if self.max_queue_length < 1:
            raise ValueError(
                f"max_queue_length must be >= 1, got {self.max_queue_length}"
            )


@dataclass(frozen=True)
class UndistortionConfig:
    """Config for image undistortion before bundling.

    Attributes:
        enabled: Undistort images and emit bundles against the
            distortion-free rig. When False images pass through unchanged.
        interpolation: One of ``nearest``, ``linear``, ``cubic``,
            ``lanczos4``.
    """

    enabled: bool = True
    interpolation: str = "linear"

    def __post_init__(self) -> None:
        if self.interpolation not in INTERPOLATION_FLAGS:
            raise ValueError(
                f"interpolation must be one of {sorted(INTERPOLATION_FLAGS)}, "
                f"got {self.interpolation!r}"
            )

    @property
    def interpolation_flag(self) -> int:
        """OpenCV interpolation constant."""
        return INTERPOLATION_FLAGS[self.interpolation]


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RigSyncConfig:
    """Top-level frozen config for a replay run.

    Attributes:
        run_id: Unique run identifier (timestamp-based by default).
        rig_path: Path to the rig calibration YAML.
        output_dir: Directory for run artifacts (config copy, report).
        sync: Synchronization engine config.
        undistortion: Undistortion config.
    """

    run_id: str = ""
    rig_path: str = ""
    output_dir: str = ""
    sync: SyncConfig = dataclasses.field(default_factory=SyncConfig)
    undistortion: UndistortionConfig = dataclasses.field(
        default_factory=UndistortionConfig
    )


_SECTIONS: dict[str, type] = {
    "sync": SyncConfig,
    "undistortion": UndistortionConfig,
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _generate_run_id() -> str:
    """Return a run identifier of the form "run_YYYYMMDD_HHMMSS"."""
    return f"run_{datetime.now():%Y%m%d_%H%M%S}"


def _default_output_dir(run_id: str) -> str:
    return str(Path(f"~/rigsync/runs/{run_id}").expanduser())


def _merge_section_config(
    defaults: dict[str, Any], overrides: dict[str, Any]
) -> dict[str, Any]:
    """Shallow-merge *overrides* onto *defaults*, returning a new dict."""
    merged = dict(defaults)
    merged.update(overrides)
    return merged


def _apply_nested_overrides(
    flat: dict[str, Any], nested: dict[str, Any]
) -> dict[str, Any]:
    """Flatten nested dict overrides to dot-notation and merge onto *flat*.

    Overrides may arrive as dot-notation keys ("sync.max_queue_length") or
    as nested dicts ({"sync": {"max_queue_length": 10}}).

    Args:
        flat: Existing flat override dict (dot-notation keys).
        nested: Override source; may be nested or already flat.

    Returns:
        New flat dict combining both sources, nested taking precedence.
    """
    result = dict(flat)
    for key, value in nested.items():
        if isinstance(value, dict):
            for subkey, subvalue in value.items():
                result[f"{key}.{subkey}"] = subvalue
        else:
            result[key] = value
    return result


def _build_section_dict_from_dotted(
    flat: dict[str, Any],
) -> dict[str, dict[str, Any]]:
    """Convert dot-notation keys to a nested section->field mapping.

    Top-level keys (no dot) land in a special "__top__" bucket.
    """
    nested: dict[str, Any] = {"__top__": {}}
    for key, value in flat.items():
        if "." in key:
            section, _, field_name = key.partition(".")
            nested.setdefault(section, {})[field_name] = value
        else:
            nested["__top__"][key] = value
    return nested


def _coerce(value: Any, type_name: str, key: str) -> Any:
    """Convert a string override to the annotated field type."""
    if not isinstance(value, str):
        return value
    try:
        if type_name == "bool":
            lowered = value.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(value)
        if type_name == "int":
            return int(value.replace("_", ""))
        if type_name == "float":
            return float(value)
    except ValueError as exc:
        raise ValueError(
            f"invalid value {value!r} for {key} (expected {type_name})"
        ) from exc
    return value


def _check_and_coerce(
    cls: type, kwargs: dict[str, Any], prefix: str = ""
) -> dict[str, Any]:
    """Reject unknown keys and coerce string values for a dataclass."""
    types = {f.name: str(f.type) for f in dataclasses.fields(cls)}
    unknown = set(kwargs) - set(types)
    if unknown:
        raise ValueError(
            f"unknown config key(s): {', '.join(prefix + k for k in sorted(unknown))}"
        )
    return {k: _coerce(v, types[k], prefix + k) for k, v in kwargs.items()}


# ---------------------------------------------------------------------------
# Public factory
# ---------------------------------------------------------------------------


def load_config(
    yaml_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> RigSyncConfig:
    """Construct a frozen :class:`RigSyncConfig` using layered overrides.

    Loading precedence (lowest to highest priority):

    1. Dataclass field defaults
    2. YAML file (*yaml_path*)
    3. CLI overrides (*cli_overrides*)
    4. Freeze

    Args:
        yaml_path: Optional path to a YAML config file.
        cli_overrides: Optional dict of overrides, dot-notation or nested.
            String values are converted to the field type.
        run_id: Explicit run identifier. Auto-generated if not provided.

    Returns:
        Frozen :class:`RigSyncConfig` with all overrides applied.

    Raises:
        ValueError: Unknown keys or invalid values.
    """
    section_kwargs: dict[str, dict[str, Any]] = {name: {} for name in _SECTIONS}
    top_kwargs: dict[str, Any] = {}

    layers: list[dict[str, Any]] = []
    if yaml_path is not None:
        with Path(yaml_path).open() as fh:
            raw: dict[str, Any] = yaml.safe_load(fh) or {}
        layers.append(raw)
    if cli_overrides is not None:
        layers.append(cli_overrides)

    for layer in layers:
        nested = _build_section_dict_from_dotted(_apply_nested_overrides({}, layer))
        for name in _SECTIONS:
            section_kwargs[name] = _merge_section_config(
                section_kwargs[name], nested.pop(name, {})
            )
        top_kwargs = _merge_section_config(top_kwargs, nested.pop("__top__"))
        if nested:
            raise ValueError(f"unknown config section(s): {', '.join(sorted(nested))}")

    resolved_run_id = run_id or top_kwargs.pop("run_id", None) or _generate_run_id()
    top_kwargs.pop("run_id", None)
    resolved_output_dir = top_kwargs.pop(
        "output_dir", _default_output_dir(resolved_run_id)
    )
    top_kwargs = _check_and_coerce(RigSyncConfig, top_kwargs)

    sections = {
        name: cls(**_check_and_coerce(cls, section_kwargs[name], f"{name}."))
        for name, cls in _SECTIONS.items()
    }
    return RigSyncConfig(
        run_id=resolved_run_id,
        output_dir=str(resolved_output_dir),
        **sections,
        **top_kwargs,
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_config(config: RigSyncConfig) -> str:
    """Serialize *config* to a YAML string loadable by :func:`load_config`."""
    return yaml.dump(
        dataclasses.asdict(config), default_flow_style=False, sort_keys=True
    )


__all__ = [
    "INTERPOLATION_FLAGS",
    "RigSyncConfig",
    "SyncConfig",
    "UndistortionConfig",
    "load_config",
    "serialize_config",
]
