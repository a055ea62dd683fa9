"""Elevation profiles for bridges and tunnels.

Structure edges do not follow the terrain.  Their elevation is an
independent profile between an entry and an exit elevation taken from
the regular roads they connect to (the junction's harmonised
elevation), or from the terrain at the portal when nothing connects.

Bridges choose a curve by length:

=====================  ==========  ======================================
length                 curve       offset from the straight line
=====================  ==========  ======================================
< short limit (50 m)   Linear      none
<= medium limit (200)  Parabolic   ``-4 * sag * t * (1 - t)``,
                                   ``sag = min(0.005 * L, 2)``
> medium limit         Arch        ``+4 * rise * t * (1 - t)``,
                                   ``rise = min(0.01 * L, 10)``
=====================  ==========  ======================================

Tunnels sample the terrain along their path.  The floor must stay at or
below ``max(terrain) - clearance - interior_height``.  When the
straight line between the portals already does so at its midpoint the
tunnel is Linear; otherwise an S-curve descends (smoothstep) over the
first quarter of the length to that floor, stays level over the middle
half and climbs back over the last quarter.

Profiles are validated against a maximum grade.  Violations are
reported as warnings and the profile is kept as computed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from src.common.cancellation import CancellationToken, is_cancelled
from src.common.diagnostics import ClearanceViolationWarning, GradeViolationWarning, RoadNetworkWarning
from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadEdge
from src.utils.logging import get_logger

from .banking import default_edge_elevations
from .blend_functions import smoothstep

logger = get_logger(__name__)

SAG_RATIO = 0.005
MAX_SAG = 2.0
ARCH_RATIO = 0.01
MAX_ARCH_RISE = 10.0
S_CURVE_RAMP = 0.25
SMOOTHSTEP_PEAK_SLOPE = 1.5
VALIDATION_SAMPLES = 101


class StructureCurveType(Enum):
    LINEAR = "linear"
    PARABOLIC = "parabolic"
    ARCH = "arch"
    S_CURVE = "s_curve"


@dataclass
class StructureElevationProfile:
    """Elevation profile of one bridge or tunnel edge."""

    entry_elevation: float
    exit_elevation: float
    length: float
    curve_type: StructureCurveType = StructureCurveType.LINEAR
    is_tunnel: bool = False

    curve_amplitude: float = 0.0
    """Sag depth (Parabolic) or rise (Arch) at mid-span."""

    floor_elevation: float = float("nan")
    """Level floor of an S-curve tunnel."""

    min_clearance: float = 0.0
    """Clearance required above a tunnel ceiling."""

    achieved_clearance: float = float("nan")
    """Tunnel: rock cover over the lowest ceiling.  Bridge: smallest
    deck height over the terrain samples."""

    terrain_along_path: np.ndarray = field(default_factory=lambda: np.empty(0))
    lowest_point_elevation: float = float("nan")
    highest_point_elevation: float = float("nan")
    max_grade_percent: float = 0.0
    average_grade_percent: float = 0.0

    elevations: np.ndarray = field(default_factory=lambda: np.empty(0))
    """Profile sampled at the edge's cross-section distances."""

    is_valid: bool = True
    validation_message: str = ""

    def elevation_at(self, distance):
        """Profile elevation at an arc-length distance (scalar or array)."""
        d = np.asarray(distance, dtype=float)
        if self.length <= 0:
            return np.full_like(d, self.entry_elevation) if d.ndim else float(self.entry_elevation)
        t = np.clip(d / self.length, 0.0, 1.0)
        base = self.entry_elevation + (self.exit_elevation - self.entry_elevation) * t
        bump = 4.0 * self.curve_amplitude * t * (1.0 - t)
        if self.curve_type is StructureCurveType.PARABOLIC:
            z = base - bump
        elif self.curve_type is StructureCurveType.ARCH:
            z = base + bump
        elif self.curve_type is StructureCurveType.S_CURVE:
            floor = self.floor_elevation
            descent = self.entry_elevation + (floor - self.entry_elevation) * smoothstep(t / S_CURVE_RAMP)
            ascent = floor + (self.exit_elevation - floor) * smoothstep((t - (1.0 - S_CURVE_RAMP)) / S_CURVE_RAMP)
            z = np.where(t < S_CURVE_RAMP, descent, np.where(t > 1.0 - S_CURVE_RAMP, ascent, floor))
        else:
            z = base
        return float(z) if np.ndim(z) == 0 else z

    def to_record(self) -> Dict:
        return {
            "entry_elevation": self.entry_elevation,
            "exit_elevation": self.exit_elevation,
            "length": self.length,
            "curve_type": self.curve_type.value,
            "is_tunnel": self.is_tunnel,
            "curve_amplitude": self.curve_amplitude,
            "min_clearance": self.min_clearance,
            "achieved_clearance": self.achieved_clearance,
            "lowest_point_elevation": self.lowest_point_elevation,
            "highest_point_elevation": self.highest_point_elevation,
            "max_grade_percent": self.max_grade_percent,
            "average_grade_percent": self.average_grade_percent,
            "terrain_along_path": self.terrain_along_path.tolist(),
            "is_valid": self.is_valid,
            "validation_message": self.validation_message,
        }


@dataclass
class StructureResult:
    profiles: Dict[int, StructureElevationProfile] = field(default_factory=dict)
    warnings: List[RoadNetworkWarning] = field(default_factory=list)
    unprocessed: List[int] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class StructureElevationCalculator:
    """Compute elevation profiles for structure edges."""

    short_bridge_max_length: float = 50.0
    medium_bridge_max_length: float = 200.0
    tunnel_min_clearance: float = 5.0
    tunnel_interior_height: float = 5.0
    tunnel_max_grade_percent: float = 6.0
    bridge_max_grade_percent: float = 8.0
    terrain_sample_count: int = 20
    exclude_structures: bool = True
    """When False, profiles are also written to the cross-sections."""

    def select_bridge_curve(self, length: float) -> StructureCurveType:
        if length < self.short_bridge_max_length:
            return StructureCurveType.LINEAR
        if length <= self.medium_bridge_max_length:
            return StructureCurveType.PARABOLIC
        return StructureCurveType.ARCH

    def bridge_profile(self, entry: float, exit: float, length: float) -> StructureElevationProfile:
        """Profile of a bridge between two elevations."""
        curve = self.select_bridge_curve(length) if length > 0 else StructureCurveType.LINEAR
        amplitude = 0.0
        if curve is StructureCurveType.PARABOLIC:
            amplitude = min(SAG_RATIO * length, MAX_SAG)
        elif curve is StructureCurveType.ARCH:
            amplitude = min(ARCH_RATIO * length, MAX_ARCH_RISE)
        return StructureElevationProfile(
            entry_elevation=float(entry),
            exit_elevation=float(exit),
            length=float(max(length, 0.0)),
            curve_type=curve,
            curve_amplitude=amplitude,
        )

    def required_floor(self, terrain: np.ndarray) -> float:
        return float(np.max(terrain)) - self.tunnel_min_clearance - self.tunnel_interior_height

    def tunnel_profile(self, entry: float, exit: float, length: float,
                       terrain: np.ndarray) -> StructureElevationProfile:
        """Profile of a tunnel below the sampled terrain.

        Parameters
        ----------
        entry, exit : float
            Portal elevations.
        length : float
            Tunnel length in metres.
        terrain : numpy.ndarray
            Terrain elevations sampled along the path.
        """
        profile = StructureElevationProfile(
            entry_elevation=float(entry),
            exit_elevation=float(exit),
            length=float(max(length, 0.0)),
            is_tunnel=True,
            min_clearance=self.tunnel_min_clearance,
            terrain_along_path=np.asarray(terrain, dtype=float),
        )
        if length <= 0 or len(terrain) == 0:
            return profile
        floor = self.required_floor(profile.terrain_along_path)
        if 0.5 * (entry + exit) <= floor:
            profile.curve_type = StructureCurveType.LINEAR
        else:
            profile.curve_type = StructureCurveType.S_CURVE
            profile.floor_elevation = floor
        return profile

    def clearance_within_grade(self, profile: StructureElevationProfile) -> Optional[float]:
        """Clearance reachable by an S-curve held to the grade limit.

        Returns None when the required floor is reachable.
        """
        if profile.curve_type is not StructureCurveType.S_CURVE:
            return None
        ramp = S_CURVE_RAMP * profile.length
        max_drop = (self.tunnel_max_grade_percent / 100.0) * ramp / SMOOTHSTEP_PEAK_SLOPE
        reachable = max(profile.entry_elevation, profile.exit_elevation) - max_drop
        if profile.floor_elevation >= reachable - 1e-9:
            return None
        top = float(np.max(profile.terrain_along_path))
        return top - (reachable + self.tunnel_interior_height)

    def finalize(self, profile: StructureElevationProfile, edge_id: int) -> List[RoadNetworkWarning]:
        """Fill in statistics and validate the grade and clearance."""
        warnings: List[RoadNetworkWarning] = []
        stations = np.linspace(0.0, profile.length, VALIDATION_SAMPLES)
        z = np.atleast_1d(profile.elevation_at(stations))
        profile.lowest_point_elevation = float(np.min(z))
        profile.highest_point_elevation = float(np.max(z))
        if profile.length > 0:
            profile.max_grade_percent = float(np.max(np.abs(np.diff(z) / np.diff(stations))) * 100.0)
            profile.average_grade_percent = abs(profile.exit_elevation - profile.entry_elevation) / profile.length * 100.0

        terrain = profile.terrain_along_path
        if len(terrain):
            along = np.atleast_1d(profile.elevation_at(np.linspace(0.0, profile.length, len(terrain))))
            if profile.is_tunnel:
                ceiling = profile.lowest_point_elevation + self.tunnel_interior_height
                profile.achieved_clearance = float(np.max(terrain)) - ceiling
            else:
                profile.achieved_clearance = float(np.min(along - terrain))

        limit = self.tunnel_max_grade_percent if profile.is_tunnel else self.bridge_max_grade_percent
        messages = []
        if profile.max_grade_percent > limit + 1e-9:
            kind = "tunnel" if profile.is_tunnel else "bridge"
            messages.append(f"max grade {profile.max_grade_percent:.2f}% exceeds {limit:.2f}%")
            warnings.append(GradeViolationWarning(
                f"{kind} edge {edge_id}: profile grade {profile.max_grade_percent:.2f}% "
                f"exceeds {limit:.2f}%",
                edge_id=edge_id, grade_percent=profile.max_grade_percent, limit_percent=limit,
            ))
        achievable = self.clearance_within_grade(profile)
        if achievable is not None:
            messages.append(f"clearance {achievable:.2f} m reachable within grade")
            warnings.append(ClearanceViolationWarning(
                f"tunnel edge {edge_id}: only {achievable:.2f} m of the required "
                f"{self.tunnel_min_clearance:.2f} m clearance is reachable within "
                f"{self.tunnel_max_grade_percent:.2f}% grade",
                edge_id=edge_id, achieved_clearance=achievable,
                required_clearance=self.tunnel_min_clearance,
            ))
        profile.is_valid = not messages
        profile.validation_message = "; ".join(messages) if messages else "ok"
        return warnings

    def resolve_endpoint_elevations(self, edge: RoadEdge, network) -> Tuple[float, float]:
        """Entry and exit elevation of a structure edge.

        A junction at the structure's start (end) with at least one
        non-structure road supplies the entry (exit) through its
        harmonised elevation; otherwise the portal terrain is used.
        """
        entry = edge.cross_sections[0].original_terrain_elevation
        exit = edge.cross_sections[-1].original_terrain_elevation
        for junction in network.junctions_for_edge(edge.edge_id):
            if not junction.is_harmonized():
                continue
            if not any(not network.edge(m.edge_id).is_structure for m in junction.members):
                continue
            for m in junction.members:
                if m.edge_id != edge.edge_id or m.is_through:
                    continue
                if m.is_edge_start:
                    entry = junction.harmonized_elevation
                else:
                    exit = junction.harmonized_elevation
        return float(entry), float(exit)

    def terrain_along(self, edge: RoadEdge, heightmap: HeightmapGrid) -> np.ndarray:
        distances = np.linspace(0.0, edge.length, self.terrain_sample_count)
        positions = np.array([edge.spline.position_at(d) for d in distances])
        return heightmap.sample_many(positions)

    def calculate(self, edge: RoadEdge, network, heightmap: HeightmapGrid) -> Tuple[StructureElevationProfile, List[RoadNetworkWarning]]:
        """Build, validate and attach the profile of one structure edge."""
        entry, exit = self.resolve_endpoint_elevations(edge, network)
        terrain = self.terrain_along(edge, heightmap)
        if edge.is_tunnel:
            profile = self.tunnel_profile(entry, exit, edge.length, terrain)
        else:
            profile = self.bridge_profile(entry, exit, edge.length)
            profile.terrain_along_path = terrain
        warnings = self.finalize(profile, edge.edge_id)
        profile.elevations = np.atleast_1d(profile.elevation_at(edge.distances()))
        edge.structure_profile = profile
        if not self.exclude_structures:
            for cs, z in zip(edge.cross_sections, profile.elevations):
                cs.target_elevation = float(z)
                default_edge_elevations(cs)
        logger.debug("Edge %d %s profile: %s, %.1f -> %.1f m over %.1f m", edge.edge_id,
                     "tunnel" if edge.is_tunnel else "bridge", profile.curve_type.value,
                     entry, exit, profile.length)
        return profile, warnings

    def apply(self, network, heightmap: HeightmapGrid,
              cancel_token: Optional[CancellationToken] = None) -> StructureResult:
        """Profile every structure edge of ``network``."""
        result = StructureResult()
        structures = [e for e in network.edges.values() if e.is_structure and e.cross_sections]
        for pos, edge in enumerate(structures):
            if is_cancelled(cancel_token):
                result.cancelled = True
                result.unprocessed = [e.edge_id for e in structures[pos:]]
                break
            profile, warnings = self.calculate(edge, network, heightmap)
            result.profiles[edge.edge_id] = profile
            result.warnings.extend(warnings)
        logger.info("Structure profiles: %d computed, %d warnings",
                    len(result.profiles), len(result.warnings))
        return result
