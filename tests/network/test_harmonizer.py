"""Unit tests for graph-wide junction harmonisation."""

import numpy as np
import pytest

from src.common.cancellation import CancellationToken
from src.elevation.sampler import CrossSectionSampler
from src.network.harmonizer import NetworkJunctionHarmonizer, combine_offsets
from src.network.junction import JunctionType, anchor_members
from src.network.topology import NetworkTopologyBuilder
from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadEdge, RoadGeometry


def build_network(roads, elevations, shape=(220, 220), order=None):
    """Sampled network with each edge set to a constant elevation."""
    heightmap = HeightmapGrid(np.zeros(shape))
    sampler = CrossSectionSampler(step_meters=2.0)
    edges = []
    offset = 0
    ids = order if order is not None else list(range(len(roads)))
    for edge_id in ids:
        points, kwargs = roads[edge_id]
        edge = RoadEdge.from_geometry(RoadGeometry(np.asarray(points, dtype=float), **kwargs), edge_id)
        sampler.sample(edge, heightmap, index_offset=offset)
        offset += len(edge.cross_sections)
        for cs in edge.cross_sections:
            cs.target_elevation = float(elevations[edge_id])
        edges.append(edge)
    return NetworkTopologyBuilder().build(edges)


T_ROADS = [
    ([[0.0, 50.0], [200.0, 50.0]], {"priority": 2, "width": 10.0}),
    ([[100.0, 50.0], [100.0, 150.0]], {"priority": 1, "width": 6.0}),
]

X_ROADS = [
    ([[0.0, 100.0], [200.0, 100.0]], {"priority": 1}),
    ([[100.0, 0.0], [100.0, 200.0]], {"priority": 1}),
]


class TestCombineOffsets:
    """Test suite for offset combination."""

    def test_single_full_weight(self):
        """Test that one full-strength offset applies completely."""
        assert combine_offsets([(1.0, 4.0)]) == pytest.approx(4.0)

    def test_partial_weight_scales(self):
        """Test that a lone partial weight scales its offset."""
        assert combine_offsets([(0.25, 4.0)]) == pytest.approx(1.0)

    def test_overlap_is_weighted_mean(self):
        """Test that overlapping offsets average by weight."""
        assert combine_offsets([(1.0, 4.0), (1.0, 0.0)]) == pytest.approx(2.0)
        assert combine_offsets([]) == 0.0


class TestNetworkJunctionHarmonizer:
    """Test suite for NetworkJunctionHarmonizer."""

    def test_t_junction_fades_terminating_edge(self):
        """Test agreement at the node and falloff along the side road."""
        network = build_network(T_ROADS, {0: 10.0, 1: 0.0})
        result = NetworkJunctionHarmonizer(blend_distance=30.0).harmonize(network)

        junction = network.junctions[0]
        assert junction.junction_type is JunctionType.T
        assert junction.harmonized_elevation == pytest.approx(10.0)
        primary, secondary = network.edge(0), network.edge(1)
        assert np.all(primary.elevations() == 10.0)

        side = secondary.cross_sections
        assert side[0].target_elevation == pytest.approx(10.0)
        assert side[5].target_elevation == pytest.approx(200.0 / 27.0, rel=1e-6)
        changes = np.abs(secondary.elevations() - 0.0)
        near = secondary.distances() < 30.0
        assert np.all(np.diff(changes[near]) <= 1e-12)
        assert np.all(changes[~near] == 0.0)
        assert result.pre_elevations[side[0].index] == 0.0
        assert result.max_change == pytest.approx(10.0)
        assert result.modified_count == int(np.sum(changes > 1e-6))
        assert result.modified_count >= 14

    def test_records_through_slope(self):
        """Test that a T junction stores the primary's local slope."""
        network = build_network(T_ROADS, {0: 0.0, 1: 0.0})
        for cs in network.edge(0).cross_sections:
            cs.target_elevation = 0.05 * cs.distance
        NetworkJunctionHarmonizer(slope_window=3).harmonize(network)
        junction = network.junctions[0]
        assert junction.through_slope == pytest.approx(0.05)
        assert junction.harmonized_elevation == pytest.approx(5.0)

    def test_equal_priority_crossing_averages(self):
        """Test that equal-priority through roads meet at their mean."""
        network = build_network(X_ROADS, {0: 4.0, 1: 8.0})
        NetworkJunctionHarmonizer(blend_distance=30.0).harmonize(network)

        junction = network.junctions[0]
        assert junction.junction_type is JunctionType.X
        assert junction.harmonized_elevation == pytest.approx(6.0)
        for member in junction.members:
            assert member.cross_section.target_elevation == pytest.approx(6.0, abs=1e-4)
        for edge_id, original in ((0, 4.0), (1, 8.0)):
            edge = network.edge(edge_id)
            far = np.abs(edge.distances() - 100.0) >= 30.0
            assert np.all(edge.elevations()[far] == original)

    def test_dominant_priority_wins_outright(self):
        """Test that a single top-priority road keeps its elevation."""
        roads = [
            ([[0.0, 100.0], [200.0, 100.0]], {"priority": 3}),
            ([[100.0, 0.0], [100.0, 200.0]], {"priority": 1}),
        ]
        network = build_network(roads, {0: 4.0, 1: 8.0})
        NetworkJunctionHarmonizer().harmonize(network)

        junction = network.junctions[0]
        assert junction.harmonized_elevation == pytest.approx(4.0)
        np.testing.assert_allclose(network.edge(0).elevations(), 4.0)
        for member in anchor_members(junction):
            assert member.cross_section.target_elevation == pytest.approx(4.0, abs=1e-4)

    def test_flat_crossing_is_identity(self):
        """Test that a crossing on flat terrain keeps the shared elevation."""
        network = build_network(X_ROADS, {0: 5.0, 1: 5.0})
        result = NetworkJunctionHarmonizer().harmonize(network)
        assert network.junctions[0].harmonized_elevation == pytest.approx(5.0)
        assert result.modified_count == 0
        assert result.max_change == pytest.approx(0.0)

    def test_result_independent_of_edge_order(self):
        """Test that input order does not change the outcome."""
        roads = T_ROADS + [([[0.0, 100.0], [200.0, 100.0]], {"priority": 1})]
        roads[1] = ([[100.0, 50.0], [100.0, 100.0]], {"priority": 1, "width": 6.0})
        elevations = {0: 10.0, 1: 0.0, 2: 4.0}
        a = build_network(roads, elevations)
        b = build_network(roads, elevations, order=[2, 1, 0])
        NetworkJunctionHarmonizer().harmonize(a)
        NetworkJunctionHarmonizer().harmonize(b)
        for edge_id in range(3):
            np.testing.assert_allclose(a.edge(edge_id).elevations(), b.edge(edge_id).elevations(), atol=1e-9)

    def test_cancellation_before_start(self):
        """Test that a cancelled run leaves every elevation untouched."""
        network = build_network(T_ROADS, {0: 10.0, 1: 0.0})
        token = CancellationToken()
        token.cancel()
        result = NetworkJunctionHarmonizer().harmonize(network, token)
        assert result.cancelled
        assert result.unprocessed == [0]
        assert np.all(network.edge(1).elevations() == 0.0)

    def test_endpoint_taper(self):
        """Test that free road ends ease back toward the terrain."""
        network = build_network([([[0.0, 50.0], [200.0, 50.0]], {})], {0: 5.0})
        NetworkJunctionHarmonizer(endpoint_taper_strength=1.0, endpoint_taper_distance=20.0).harmonize(network)
        edge = network.edge(0)
        assert edge.cross_sections[0].target_elevation == pytest.approx(0.0)
        assert edge.cross_sections[-1].target_elevation == pytest.approx(0.0)
        assert edge.cross_sections[50].target_elevation == pytest.approx(5.0)

    def test_invalid_blend_distance(self):
        """Test that a non-positive blend distance is rejected."""
        network = build_network(T_ROADS, {0: 0.0, 1: 0.0})
        with pytest.raises(ValueError):
            NetworkJunctionHarmonizer(blend_distance=0.0).harmonize(network)
