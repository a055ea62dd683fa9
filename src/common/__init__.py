"""Cross-cutting pieces: diagnostics, cancellation and input adapters."""

from .diagnostics import (
    DegenerateGeometryError,
    RoadNetworkWarning,
    JunctionAmbiguityWarning,
    GradeViolationWarning,
    ClearanceViolationWarning,
    EdgeFailure,
    Diagnostics,
)
from .cancellation import CancellationToken, is_cancelled

__all__ = [
    "DegenerateGeometryError",
    "RoadNetworkWarning",
    "JunctionAmbiguityWarning",
    "GradeViolationWarning",
    "ClearanceViolationWarning",
    "EdgeFailure",
    "Diagnostics",
    "CancellationToken",
    "is_cancelled",
]
