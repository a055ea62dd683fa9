"""Junction detection and classification.

The :class:`NetworkTopologyBuilder` turns a list of sampled road edges
into a :class:`UnifiedRoadNetwork`.  Junction candidates come from two
sources:

1. **Endpoint clusters.**  Edge endpoints lying within the connection
   tolerance of each other are grouped (connected components over a
   k-d tree neighbour graph).  Every other edge with a cross-section
   within tolerance of the cluster joins it, either as a terminating
   member (when that cross-section is within tolerance of the edge's
   own end) or as a through member.
2. **Mid-span crossings.**  Two edges whose interior cross-sections
   come within tolerance of each other without any endpoint involved
   cross; both join as through members.

Candidates within tolerance of each other merge into one junction.
Classification is a pure function of member roles and arm directions;
see :func:`classify_junction`.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import cKDTree

from src.common.diagnostics import Diagnostics, JunctionAmbiguityWarning
from src.roadgeometry.road_edge import RoadEdge
from src.utils.logging import get_logger

from .junction import Junction, JunctionMember, JunctionType, MemberRole, UnifiedRoadNetwork

logger = get_logger(__name__)


def group_by_proximity(points: np.ndarray, radius: float) -> List[List[int]]:
    """Group point indices into clusters linked by distances <= radius."""
    n = len(points)
    if n == 0:
        return []
    pairs = np.array(sorted(cKDTree(points).query_pairs(radius)), dtype=int).reshape(-1, 2)
    graph = coo_matrix((np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])), shape=(n, n))
    n_groups, labels = connected_components(graph, directed=False)
    groups: List[List[int]] = [[] for _ in range(n_groups)]
    for i, label in enumerate(labels):
        groups[label].append(i)
    return groups


def are_opposite(a: np.ndarray, b: np.ndarray, tolerance_degrees: float) -> bool:
    """True when two unit vectors point roughly in opposite directions."""
    return float(np.dot(a, b)) <= -np.cos(np.radians(tolerance_degrees))


def has_opposite_pair(arms: Sequence[np.ndarray], tolerance_degrees: float) -> bool:
    for i in range(len(arms)):
        for j in range(i + 1, len(arms)):
            if are_opposite(arms[i], arms[j], tolerance_degrees):
                return True
    return False


def splits_into_opposite_pairs(arms: Sequence[np.ndarray], tolerance_degrees: float) -> bool:
    """For four arms, whether they form two straight-through pairs."""
    if len(arms) != 4:
        return False
    for (a, b), (c, d) in (((0, 1), (2, 3)), ((0, 2), (1, 3)), ((0, 3), (1, 2))):
        if (are_opposite(arms[a], arms[b], tolerance_degrees)
                and are_opposite(arms[c], arms[d], tolerance_degrees)):
            return True
    return False


def classify_junction(members: Sequence[JunctionMember],
                      straight_angle_tolerance_degrees: float = 30.0) -> Tuple[JunctionType, bool]:
    """Classify a junction from its members.

    Parameters
    ----------
    members : sequence of JunctionMember
        Incident edges with their roles.
    straight_angle_tolerance_degrees : float
        Deviation from 180 degrees within which two arms count as one
        road passing straight through.

    Returns
    -------
    (JunctionType, bool)
        The type and whether the classification is ambiguous.
    """
    through = [m for m in members if m.is_through]
    terminating = [m for m in members if not m.is_through]
    arms = [a for m in members for a in m.arm_directions()]

    if len(through) == 1 and len(terminating) == 1:
        return JunctionType.T, False
    if not through:
        if len(terminating) == 2:
            return JunctionType.Y, False
        if len(terminating) == 3:
            if has_opposite_pair(arms, straight_angle_tolerance_degrees):
                # Shaped like a T but no edge actually passes through.
                return JunctionType.COMPLEX, True
            return JunctionType.Y, False
    if splits_into_opposite_pairs(arms, straight_angle_tolerance_degrees):
        return JunctionType.X, False
    return JunctionType.COMPLEX, False


@dataclass
class _Candidate:
    members: List[JunctionMember]

    @property
    def position(self) -> np.ndarray:
        return np.mean([m.cross_section.center for m in self.members], axis=0)


@dataclass
class NetworkTopologyBuilder:
    """Detect and classify junctions between sampled road edges."""

    connection_tolerance: float = 10.0
    """Endpoints and samples closer than this (metres) connect."""

    straight_angle_tolerance_degrees: float = 30.0

    def build(self, edges: Sequence[RoadEdge], diagnostics: Optional[Diagnostics] = None) -> UnifiedRoadNetwork:
        """Assemble the network and its junctions.

        Every edge must already carry its cross-sections.

        Parameters
        ----------
        edges : sequence of RoadEdge
            Sampled edges, in a stable order.
        diagnostics : Diagnostics, optional
            Receives a JunctionAmbiguityWarning for every junction whose
            classification fell back to Complex on ambiguous geometry.

        Returns
        -------
        UnifiedRoadNetwork
        """
        if self.connection_tolerance <= 0:
            raise ValueError("connection_tolerance must be positive")
        network = UnifiedRoadNetwork(list(edges))
        sampled = [e for e in edges if e.cross_sections]
        trees = {e.edge_id: cKDTree(e.centers()) for e in sampled}

        candidates = self._endpoint_candidates(sampled, trees)
        candidates.extend(self._crossing_candidates(sampled, trees))
        merged = self._merge_candidates(candidates)

        merged.sort(key=lambda c: (round(float(c.position[0]), 6), round(float(c.position[1]), 6)))
        junctions: List[Junction] = []
        for candidate in merged:
            junction_type, ambiguous = classify_junction(
                candidate.members, self.straight_angle_tolerance_degrees)
            junction = Junction(
                junction_id=len(junctions),
                position=candidate.position,
                junction_type=junction_type,
                members=candidate.members,
                is_ambiguous=ambiguous,
            )
            junctions.append(junction)
            if ambiguous and diagnostics is not None:
                diagnostics.add(JunctionAmbiguityWarning(
                    f"junction {junction.junction_id} at ({junction.position[0]:.1f}, "
                    f"{junction.position[1]:.1f}) has straight arms but no through edge; "
                    f"treated as Complex",
                    junction_id=junction.junction_id,
                ))
        network.set_junctions(junctions)

        counts: Dict[str, int] = {}
        for j in junctions:
            counts[j.junction_type.value] = counts.get(j.junction_type.value, 0) + 1
        logger.info("Topology: %d edges, %d junctions %s", len(network.edges), len(junctions), counts)
        return network

    def _is_near_own_end(self, edge: RoadEdge, distance: float) -> Optional[bool]:
        """Return True/False for start/end proximity, None for interior."""
        if distance <= self.connection_tolerance:
            return True
        if edge.length - distance <= self.connection_tolerance:
            return False
        return None

    def _endpoint_candidates(self, edges: Sequence[RoadEdge], trees) -> List[_Candidate]:
        endpoints: List[JunctionMember] = []
        for edge in edges:
            first, last = edge.cross_sections[0], edge.cross_sections[-1]
            endpoints.append(JunctionMember(edge.edge_id, first, MemberRole.TERMINATING, is_edge_start=True))
            endpoints.append(JunctionMember(edge.edge_id, last, MemberRole.TERMINATING, is_edge_start=False))
        if not endpoints:
            return []
        positions = np.array([m.cross_section.center for m in endpoints])
        candidates: List[_Candidate] = []
        for group in group_by_proximity(positions, self.connection_tolerance):
            members = [endpoints[i] for i in group]
            in_cluster = {m.edge_id for m in members}
            for edge in edges:
                if edge.edge_id in in_cluster:
                    continue
                dist, idx = trees[edge.edge_id].query(positions[group])
                best = int(np.argmin(dist))
                if dist[best] > self.connection_tolerance:
                    continue
                cs = edge.cross_sections[int(idx[best])]
                near_start = self._is_near_own_end(edge, cs.distance)
                if near_start is None:
                    members.append(JunctionMember(edge.edge_id, cs, MemberRole.THROUGH))
                else:
                    end_cs = edge.cross_sections[0] if near_start else edge.cross_sections[-1]
                    members.append(JunctionMember(edge.edge_id, end_cs, MemberRole.TERMINATING,
                                                  is_edge_start=near_start))
            candidates.append(_Candidate(members))
        return candidates

    def _interior_mask(self, edge: RoadEdge) -> np.ndarray:
        d = edge.distances()
        tol = self.connection_tolerance
        return (d > tol) & (d < edge.length - tol)

    def _crossing_candidates(self, edges: Sequence[RoadEdge], trees) -> List[_Candidate]:
        tol = self.connection_tolerance
        boxes = {}
        for e in edges:
            c = e.centers()
            boxes[e.edge_id] = (c.min(axis=0) - tol, c.max(axis=0) + tol)
        candidates: List[_Candidate] = []
        for ai, a in enumerate(edges):
            interior_a = self._interior_mask(a)
            for b in edges[ai + 1:]:
                lo_a, hi_a = boxes[a.edge_id]
                lo_b, hi_b = boxes[b.edge_id]
                if np.any(hi_a < lo_b) or np.any(hi_b < lo_a):
                    continue
                interior_b = self._interior_mask(b)
                neighbours = trees[a.edge_id].query_ball_tree(trees[b.edge_id], r=tol)
                pairs = [(i, j) for i, js in enumerate(neighbours) if interior_a[i]
                         for j in js if interior_b[j]]
                if not pairs:
                    continue
                for run in self._split_runs(pairs):
                    i, j = min(run, key=lambda p: np.linalg.norm(
                        a.cross_sections[p[0]].center - b.cross_sections[p[1]].center))
                    candidates.append(_Candidate([
                        JunctionMember(a.edge_id, a.cross_sections[i], MemberRole.THROUGH),
                        JunctionMember(b.edge_id, b.cross_sections[j], MemberRole.THROUGH),
                    ]))
        return candidates

    @staticmethod
    def _split_runs(pairs: List[Tuple[int, int]]) -> List[List[Tuple[int, int]]]:
        """Split index pairs into runs of consecutive first indices."""
        pairs = sorted(pairs)
        runs: List[List[Tuple[int, int]]] = [[pairs[0]]]
        for pair in pairs[1:]:
            if pair[0] - runs[-1][-1][0] > 1:
                runs.append([])
            runs[-1].append(pair)
        return runs

    def _merge_candidates(self, candidates: List[_Candidate]) -> List[_Candidate]:
        if not candidates:
            return []
        positions = np.array([c.position for c in candidates])
        merged: List[_Candidate] = []
        for group in group_by_proximity(positions, self.connection_tolerance):
            pooled = [m for i in sorted(group) for m in candidates[i].members]
            centroid = np.mean([m.cross_section.center for m in pooled], axis=0)
            members = self._deduplicate(pooled, centroid)
            if len({m.edge_id for m in members}) >= 2:
                merged.append(_Candidate(members))
        return merged

    @staticmethod
    def _deduplicate(members: List[JunctionMember], centroid: np.ndarray) -> List[JunctionMember]:
        """Keep one member per (edge, role, end), preferring terminating roles."""
        best: Dict[Tuple[int, MemberRole, bool], JunctionMember] = {}
        for m in members:
            key = (m.edge_id, m.role, m.is_edge_start if not m.is_through else False)
            current = best.get(key)
            if current is None or (np.linalg.norm(m.cross_section.center - centroid)
                                   < np.linalg.norm(current.cross_section.center - centroid)):
                best[key] = m
        terminating_edges = {k[0] for k in best if k[1] is MemberRole.TERMINATING}
        kept = [m for k, m in best.items()
                if not (k[1] is MemberRole.THROUGH and k[0] in terminating_edges)]
        kept.sort(key=lambda m: (m.edge_id, m.role.value, not m.is_edge_start))
        return kept
