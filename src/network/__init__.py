"""Road network topology and graph-wide junction passes."""

from .junction import Junction, JunctionMember, JunctionType, MemberRole, UnifiedRoadNetwork
from .topology import NetworkTopologyBuilder, classify_junction
from .harmonizer import NetworkJunctionHarmonizer, HarmonizationResult
from .surface import (
    JunctionSurfaceCalculator,
    SurfaceConstraintResult,
    primary_surface_elevation,
    constrained_edge_elevations,
    apply_edge_constraints,
    local_slope,
)

__all__ = [
    "Junction",
    "JunctionMember",
    "JunctionType",
    "MemberRole",
    "UnifiedRoadNetwork",
    "NetworkTopologyBuilder",
    "classify_junction",
    "NetworkJunctionHarmonizer",
    "HarmonizationResult",
    "JunctionSurfaceCalculator",
    "SurfaceConstraintResult",
    "primary_surface_elevation",
    "constrained_edge_elevations",
    "apply_edge_constraints",
    "local_slope",
]
