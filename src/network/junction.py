"""Junctions and the unified road network.

A :class:`Junction` is a node where two or more road edges meet.  Each
incident edge is recorded as a :class:`JunctionMember` holding the
cross-section closest to the node and the member's role:

* ``THROUGH`` when the node lies strictly inside the edge's span;
* ``TERMINATING`` when the node sits at (or within tolerance of) one of
  the edge's own endpoints.

:class:`UnifiedRoadNetwork` aggregates the edges, the junctions and an
adjacency index from edge id to incident junction ids.  The network is
built once per run; afterwards only cross-section fields change.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set

import numpy as np

from src.roadgeometry.cross_section import CrossSection
from src.roadgeometry.road_edge import RoadEdge


class JunctionType(Enum):
    T = "T"
    Y = "Y"
    X = "X"
    COMPLEX = "Complex"


class MemberRole(Enum):
    THROUGH = "through"
    TERMINATING = "terminating"


@dataclass
class JunctionMember:
    """One edge's participation in a junction."""
    edge_id: int
    cross_section: CrossSection
    role: MemberRole
    is_edge_start: bool = False
    """For terminating members, whether the edge starts (rather than
    ends) at the junction."""

    @property
    def is_through(self) -> bool:
        return self.role is MemberRole.THROUGH

    @property
    def priority(self) -> int:
        return self.cross_section.priority

    def arm_directions(self) -> List[np.ndarray]:
        """Unit vectors pointing from the junction along the edge."""
        t = self.cross_section.tangent
        if self.is_through:
            return [t, -t]
        return [t] if self.is_edge_start else [-t]


@dataclass
class Junction:
    """A node where road edges meet."""

    junction_id: int
    position: np.ndarray
    junction_type: JunctionType = JunctionType.COMPLEX
    members: List[JunctionMember] = field(default_factory=list)

    harmonized_elevation: float = math.nan
    """Elevation every through edge shares at this node."""

    through_slope: float = 0.0
    """Longitudinal slope (rise over run) of the primary through edge,
    set for T junctions."""

    is_ambiguous: bool = False

    is_surface_fitted: bool = False
    """Set on Y, X and Complex junctions whose roads differ in priority:
    lower-priority roads are fitted to the primary surface the way
    terminating roads are at a T junction."""

    @property
    def edge_ids(self) -> List[int]:
        seen: List[int] = []
        for m in self.members:
            if m.edge_id not in seen:
                seen.append(m.edge_id)
        return seen

    def through_members(self) -> List[JunctionMember]:
        return [m for m in self.members if m.is_through]

    def terminating_members(self) -> List[JunctionMember]:
        return [m for m in self.members if not m.is_through]

    @property
    def max_priority(self) -> int:
        return max(m.priority for m in self.members)

    @property
    def max_width(self) -> float:
        return max(m.cross_section.width for m in self.members)

    def primary_through_member(self) -> Optional[JunctionMember]:
        """Highest-priority through member, first one on ties."""
        through = self.through_members()
        if not through:
            return None
        return max(through, key=lambda m: m.priority)

    def is_harmonized(self) -> bool:
        return math.isfinite(self.harmonized_elevation)


def anchor_members(junction: Junction) -> List[JunctionMember]:
    """Members whose cross-section must equal the harmonised elevation."""
    if junction.junction_type is JunctionType.T:
        members = junction.through_members()
    elif junction.is_surface_fitted:
        primary = junction.primary_through_member()
        members = [m for m in junction.through_members() if m.priority == primary.priority]
    else:
        members = junction.members
    return [m for m in members if not m.cross_section.is_excluded]


class UnifiedRoadNetwork:
    """Edges, junctions and the edge-to-junction adjacency index."""

    def __init__(self, edges: Optional[List[RoadEdge]] = None):
        self.edges: Dict[int, RoadEdge] = {}
        self.junctions: List[Junction] = []
        self.adjacency: Dict[int, List[int]] = {}
        for edge in edges or []:
            self.add_edge(edge)

    def add_edge(self, edge: RoadEdge) -> None:
        if edge.edge_id in self.edges:
            raise ValueError(f"duplicate edge id {edge.edge_id}")
        self.edges[edge.edge_id] = edge
        self.adjacency.setdefault(edge.edge_id, [])

    def set_junctions(self, junctions: List[Junction]) -> None:
        self.junctions = list(junctions)
        self.adjacency = {edge_id: [] for edge_id in self.edges}
        for junction in self.junctions:
            for edge_id in junction.edge_ids:
                self.adjacency.setdefault(edge_id, []).append(junction.junction_id)

    def edge(self, edge_id: int) -> RoadEdge:
        return self.edges[edge_id]

    def junction(self, junction_id: int) -> Junction:
        for junction in self.junctions:
            if junction.junction_id == junction_id:
                return junction
        raise KeyError(junction_id)

    def junctions_for_edge(self, edge_id: int) -> List[Junction]:
        ids = set(self.adjacency.get(edge_id, []))
        return [j for j in self.junctions if j.junction_id in ids]

    def cross_sections(self) -> Iterator[CrossSection]:
        for edge in self.edges.values():
            yield from edge.cross_sections

    def cross_section_count(self) -> int:
        return sum(len(e.cross_sections) for e in self.edges.values())

    def anchored_indices(self) -> Set[int]:
        """Cross-sections pinned to a junction's harmonised elevation.

        These are the through members of every harmonised junction and,
        away from T and surface-fitted junctions, the other members as
        well.
        """
        anchored: Set[int] = set()
        for junction in self.junctions:
            if not junction.is_harmonized():
                continue
            for m in anchor_members(junction):
                anchored.add(m.cross_section.index)
        return anchored

    def __repr__(self) -> str:
        return (f"UnifiedRoadNetwork(edges={len(self.edges)}, "
                f"junctions={len(self.junctions)}, "
                f"cross_sections={self.cross_section_count()})")
