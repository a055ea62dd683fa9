"""Falloff curves.

Each function maps a normalised distance ``t`` in [0, 1] to a blend
factor in [0, 1] with ``f(0) = 0`` and ``f(1) = 1``; inputs outside the
interval are clamped.  Propagation weights are ``1 - f(d / D)``, so a
boundary condition has full effect at its source and none from the
blend distance ``D`` onward.  All curves are monotone non-decreasing.
"""

from typing import Callable, Dict

import numpy as np

EXPONENTIAL_RATE = 3.0


def linear(t):
    return np.clip(t, 0.0, 1.0)


def cosine(t):
    t = np.clip(t, 0.0, 1.0)
    return 0.5 - 0.5 * np.cos(np.pi * t)


def smoothstep(t):
    t = np.clip(t, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def quintic(t):
    t = np.clip(t, 0.0, 1.0)
    return t * t * t * (t * (6.0 * t - 15.0) + 10.0)


def exponential(t):
    """Exponential decay rescaled to reach exactly 1 at ``t = 1``."""
    t = np.clip(t, 0.0, 1.0)
    floor = np.exp(-EXPONENTIAL_RATE)
    return 1.0 - (np.exp(-EXPONENTIAL_RATE * t) - floor) / (1.0 - floor)


BLEND_FUNCTIONS: Dict[str, Callable] = {
    "linear": linear,
    "cosine": cosine,
    "smoothstep": smoothstep,
    "quintic": quintic,
    "exponential": exponential,
}


def get_blend_function(name: str) -> Callable:
    try:
        return BLEND_FUNCTIONS[name]
    except KeyError:
        raise ValueError(f"unknown blend function '{name}'") from None


def falloff_weight(distance, blend_distance: float, function: Callable = smoothstep):
    """Influence of a boundary condition at ``distance`` from its source."""
    d = np.asarray(distance, dtype=float)
    weight = 1.0 - function(d / blend_distance)
    return np.where(d < blend_distance, weight, 0.0)
