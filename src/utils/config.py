"""Configuration loading for the road elevation engine.

Configuration files are YAML documents residing in the ``configs/``
directory at the project root.  :func:`load_config` reads such a file
into a plain dictionary and :class:`EngineConfig` turns that
dictionary into a validated, typed set of parameters that is passed
explicitly to every pass of the pipeline.

Keys may be written either in snake_case (``step_meters``) or in the
camelCase spelling used by external tooling (``stepMeters``).  Unknown
keys are logged and ignored so that a configuration file can carry
settings for other tools as well.
"""

import re
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .logging import get_logger

logger = get_logger(__name__)

BLEND_FUNCTIONS = ("linear", "cosine", "smoothstep", "quintic", "exponential")
POST_SMOOTHING_TYPES = ("gaussian", "box")


class ConfigError(ValueError):
    """Raised when a configuration value is out of range."""


def load_config(path: str) -> Dict[str, Any]:
    """Load a YAML configuration file into a dictionary.

    Parameters
    ----------
    path : str
        Path to the YAML configuration file.

    Returns
    -------
    dict
        Parsed configuration dictionary.  A missing or empty file
        yields an empty dict.
    """
    cfg_path = Path(path)
    if not cfg_path.is_file():
        logger.warning("Configuration file %s not found, using defaults", cfg_path)
        return {}
    with open(cfg_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{cfg_path}: top level of a configuration file must be a mapping")
    return data


def _snake_case(key: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', key).lower()


@dataclass
class EngineConfig:
    """Parameters shared by all passes of a generation run."""

    step_meters: float = 2.0
    """Longitudinal spacing between cross-sections in metres."""

    max_grade_percent: float = 8.0
    """Maximum longitudinal grade between adjacent road samples."""

    connection_tolerance_meters: float = 10.0
    """Distance within which an endpoint connects to another edge."""

    blend_distance_meters: float = 30.0
    """Length over which a junction elevation merges into a road's own
    profile."""

    tunnel_min_clearance_meters: float = 5.0
    """Rock cover required between the tunnel ceiling and the terrain."""

    tunnel_interior_height_meters: float = 5.0
    """Clear height between tunnel floor and ceiling."""

    tunnel_max_grade_percent: float = 6.0
    """Maximum grade allowed inside a tunnel."""

    short_bridge_max_length_meters: float = 50.0
    """Bridges shorter than this use a linear profile."""

    medium_bridge_max_length_meters: float = 200.0
    """Bridges up to this length sag; longer bridges arch."""

    terrain_sample_count: int = 20
    """Number of terrain samples taken along a tunnel path."""

    max_bank_angle_radians: float = 0.14
    """Upper limit of the bank (roll) angle, about 8 degrees."""

    smoothing_window: int = 5
    """Moving-average window (samples, odd) applied before grade limiting."""

    blend_function: str = "smoothstep"
    """Falloff shape, one of linear, cosine, smoothstep, quintic,
    exponential."""

    slope_window: int = 3
    """Half window (samples) for the through-road slope at T junctions."""

    straight_angle_tolerance_degrees: float = 30.0
    """Two arms closer than this to 180 degrees count as passing
    straight through."""

    plateau_priority_tolerance: int = 0
    """Largest priority spread at which a Y/X/Complex junction is
    flattened into a plateau."""

    enable_plateau_smoothing: bool = True

    endpoint_taper_strength: float = 0.0
    """Pull of free (non-junction) road ends back toward the original
    terrain, 0 disables tapering."""

    endpoint_taper_distance_meters: float = 30.0

    curvature_to_bank_scale: float = 500.0
    """Curvature (1/m) multiplied by this saturates at full bank."""

    bank_strength: float = 1.0
    """Fraction of the maximum bank angle applied at saturation."""

    bank_transition_meters: float = 20.0
    """Length of the moving average that eases bank angle changes."""

    enable_banking: bool = True

    suppress_banking_at_junctions: bool = True

    terrain_falloff_meters: float = 8.0
    """Distance beyond the road edge over which terrain blends back to
    its original height."""

    exclude_structures: bool = True
    """Keep bridge and tunnel cross-sections out of terrain writing."""

    include_structures_in_masks: bool = False

    enable_post_smoothing: bool = False

    post_smoothing_type: str = "gaussian"

    post_smoothing_sigma: float = 1.0
    """Gaussian sigma or box size in pixels."""

    post_smoothing_mask_extension_meters: float = 2.0

    max_workers: int = 1
    """Thread workers for per-edge passes; 1 runs them inline."""

    def validate(self) -> List[str]:
        """Return a list of problems, empty when the configuration is usable."""
        errors: List[str] = []
        positive = (
            "step_meters", "max_grade_percent", "connection_tolerance_meters",
            "blend_distance_meters", "tunnel_interior_height_meters",
            "tunnel_max_grade_percent", "short_bridge_max_length_meters",
            "medium_bridge_max_length_meters", "bank_transition_meters",
            "endpoint_taper_distance_meters", "post_smoothing_sigma",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")
        if self.tunnel_min_clearance_meters < 0:
            errors.append("tunnel_min_clearance_meters must not be negative")
        if self.terrain_falloff_meters < 0:
            errors.append("terrain_falloff_meters must not be negative")
        if self.medium_bridge_max_length_meters < self.short_bridge_max_length_meters:
            errors.append("medium_bridge_max_length_meters must be >= short_bridge_max_length_meters")
        if self.terrain_sample_count < 2:
            errors.append("terrain_sample_count must be at least 2")
        if not 0 <= self.max_bank_angle_radians < 1.5:
            errors.append("max_bank_angle_radians must lie in [0, 1.5)")
        if self.smoothing_window < 1 or self.smoothing_window % 2 == 0:
            errors.append("smoothing_window must be a positive odd integer")
        if self.slope_window < 1:
            errors.append("slope_window must be at least 1")
        if self.blend_function not in BLEND_FUNCTIONS:
            errors.append(f"blend_function must be one of {', '.join(BLEND_FUNCTIONS)}")
        if self.post_smoothing_type not in POST_SMOOTHING_TYPES:
            errors.append(f"post_smoothing_type must be one of {', '.join(POST_SMOOTHING_TYPES)}")
        if not 0 <= self.endpoint_taper_strength <= 1:
            errors.append("endpoint_taper_strength must lie in [0, 1]")
        if self.max_workers < 1:
            errors.append("max_workers must be at least 1")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build a configuration from a (possibly camelCase) mapping.

        Raises
        ------
        ConfigError
            If any value fails :meth:`validate`.
        """
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = _snake_case(key)
            if name not in known:
                logger.warning("Ignoring unknown configuration key '%s'", key)
                continue
            default = getattr(cls, name)
            if isinstance(default, bool):
                kwargs[name] = bool(value)
            elif isinstance(default, int):
                kwargs[name] = int(value)
            elif isinstance(default, float):
                kwargs[name] = float(value)
            else:
                kwargs[name] = value
        config = cls(**kwargs)
        errors = config.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        return config

    @classmethod
    def from_yaml(cls, path: str) -> "EngineConfig":
        """Load and validate a configuration from a YAML file."""
        return cls.from_dict(load_config(path))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
