"""Unit tests for bridge and tunnel profiles."""

import numpy as np
import pytest

from src.common.diagnostics import ClearanceViolationWarning, GradeViolationWarning
from src.elevation.sampler import CrossSectionSampler
from src.elevation.structures import StructureCurveType, StructureElevationCalculator
from src.network.harmonizer import NetworkJunctionHarmonizer
from src.network.topology import NetworkTopologyBuilder
from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadEdge, RoadGeometry


class TestBridgeProfiles:
    """Test suite for bridge curve selection."""

    def test_short_bridge_is_linear(self):
        """Test that short bridges are straight."""
        profile = StructureElevationCalculator().bridge_profile(100.0, 102.0, 40.0)
        assert profile.curve_type is StructureCurveType.LINEAR
        assert profile.elevation_at(20.0) == pytest.approx(101.0)

    def test_medium_bridge_sags(self):
        """Test the parabolic sag of a medium bridge."""
        profile = StructureElevationCalculator().bridge_profile(100.0, 100.0, 100.0)
        assert profile.curve_type is StructureCurveType.PARABOLIC
        assert profile.curve_amplitude == pytest.approx(0.5)
        assert profile.elevation_at(50.0) == pytest.approx(99.5)

    def test_long_bridge_arches(self):
        """Test that a 300 m bridge arches 3 m above the straight line."""
        calc = StructureElevationCalculator()
        profile = calc.bridge_profile(100.0, 104.0, 300.0)
        assert profile.curve_type is StructureCurveType.ARCH
        assert profile.curve_amplitude == pytest.approx(3.0)
        assert profile.elevation_at(150.0) == pytest.approx(105.0)
        assert profile.elevation_at(0.0) == pytest.approx(100.0)
        assert profile.elevation_at(300.0) == pytest.approx(104.0)

    def test_arch_rise_capped(self):
        """Test that very long bridges rise at most 10 m."""
        profile = StructureElevationCalculator().bridge_profile(0.0, 0.0, 5000.0)
        assert profile.curve_amplitude == pytest.approx(10.0)

    def test_zero_length_bridge(self):
        """Test that a zero-length structure is a no-op profile."""
        calc = StructureElevationCalculator()
        profile = calc.bridge_profile(100.0, 100.0, 0.0)
        assert calc.finalize(profile, 0) == []
        assert profile.elevation_at(0.0) == pytest.approx(100.0)


class TestTunnelProfiles:
    """Test suite for tunnel curve selection and validation."""

    def ridge(self, base, height, n=21):
        t = np.linspace(0.0, 1.0, n)
        return base + height * np.sin(np.pi * t)

    def test_thin_cover_ridge_needs_s_curve(self):
        """Test that a ridge with too little cover forces an S-curve."""
        calc = StructureElevationCalculator(tunnel_min_clearance=5.0, tunnel_interior_height=5.0)
        terrain = self.ridge(100.0, 8.0)
        profile = calc.tunnel_profile(100.0, 100.0, 600.0, terrain)
        warnings = calc.finalize(profile, 3)

        assert profile.curve_type is StructureCurveType.S_CURVE
        assert profile.floor_elevation == pytest.approx(98.0)
        assert profile.lowest_point_elevation <= terrain.max() - 10.0 + 1e-9
        assert profile.elevation_at(300.0) == pytest.approx(98.0)
        assert warnings == []
        assert profile.is_valid

    def test_high_ridge_keeps_linear(self):
        """Test that a linear tunnel already deep enough stays linear."""
        calc = StructureElevationCalculator()
        terrain = self.ridge(100.0, 40.0)
        profile = calc.tunnel_profile(100.0, 100.0, 600.0, terrain)
        calc.finalize(profile, 0)

        assert profile.curve_type is StructureCurveType.LINEAR
        assert profile.lowest_point_elevation <= terrain.max() - 10.0
        assert profile.achieved_clearance == pytest.approx(35.0)

    def test_clearance_unreachable_within_grade(self):
        """Test warnings when a short tunnel cannot dive deep enough."""
        calc = StructureElevationCalculator(tunnel_max_grade_percent=6.0)
        terrain = self.ridge(100.0, 5.0)
        profile = calc.tunnel_profile(100.0, 100.0, 40.0, terrain)
        warnings = calc.finalize(profile, 9)

        kinds = {type(w) for w in warnings}
        assert ClearanceViolationWarning in kinds
        assert GradeViolationWarning in kinds
        clearance = next(w for w in warnings if isinstance(w, ClearanceViolationWarning))
        assert clearance.edge_id == 9
        assert clearance.achieved_clearance == pytest.approx(0.4)
        assert clearance.required_clearance == 5.0
        assert not profile.is_valid
        # The profile is kept as computed.
        assert profile.lowest_point_elevation == pytest.approx(95.0)


class TestStructureCalculator:
    """Test suite for structures inside a network."""

    def test_bridge_takes_junction_elevations(self):
        """Test that a bridge spans the harmonised elevations of its approaches."""
        heightmap = HeightmapGrid(np.zeros((100, 520)))
        geometries = [
            RoadGeometry(np.array([[0.0, 50.0], [100.0, 50.0]])),
            RoadGeometry(np.array([[100.0, 50.0], [400.0, 50.0]]), is_bridge=True),
            RoadGeometry(np.array([[400.0, 50.0], [500.0, 50.0]])),
        ]
        edges = []
        offset = 0
        sampler = CrossSectionSampler(step_meters=2.0)
        for i, geometry in enumerate(geometries):
            edge = RoadEdge.from_geometry(geometry, i)
            sampler.sample(edge, heightmap, index_offset=offset)
            offset += len(edge.cross_sections)
            edges.append(edge)
        for cs in edges[0].cross_sections:
            cs.target_elevation = 10.0
        for cs in edges[2].cross_sections:
            cs.target_elevation = 14.0

        network = NetworkTopologyBuilder().build(edges)
        NetworkJunctionHarmonizer().harmonize(network)
        result = StructureElevationCalculator().apply(network, heightmap)

        profile = result.profiles[1]
        assert profile.entry_elevation == pytest.approx(10.0)
        assert profile.exit_elevation == pytest.approx(14.0)
        assert profile.curve_type is StructureCurveType.ARCH
        assert profile.elevation_at(150.0) == pytest.approx(15.0)
        assert edges[1].structure_profile is profile
        assert len(profile.elevations) == len(edges[1].cross_sections)
        # Excluded sections keep their terrain reading.
        assert all(cs.target_elevation == 0.0 for cs in edges[1].cross_sections)

    def test_unconnected_tunnel_uses_portal_terrain(self):
        """Test that free portals fall back to the terrain elevation."""
        rows, cols = np.mgrid[0:60, 0:320]
        data = 20.0 + 30.0 * np.sin(np.pi * np.clip(cols / 300.0, 0.0, 1.0))
        heightmap = HeightmapGrid(data)
        edge = RoadEdge.from_geometry(
            RoadGeometry(np.array([[0.0, 30.0], [300.0, 30.0]]), is_tunnel=True), 0)
        CrossSectionSampler().sample(edge, heightmap)
        network = NetworkTopologyBuilder().build([edge])

        result = StructureElevationCalculator(terrain_sample_count=31).apply(network, heightmap)
        profile = result.profiles[0]
        assert profile.is_tunnel
        assert profile.entry_elevation == pytest.approx(20.0)
        assert profile.exit_elevation == pytest.approx(20.0)
        assert profile.curve_type is StructureCurveType.LINEAR
        assert len(profile.terrain_along_path) == 31

    def test_included_bridge_refreshes_edge_elevations(self):
        """Test that a bridge written into the terrain carries its profile to both edges."""
        heightmap = HeightmapGrid(np.zeros((100, 330)))
        edge = RoadEdge.from_geometry(
            RoadGeometry(np.array([[10.0, 50.0], [310.0, 50.0]]), is_bridge=True), 0)
        CrossSectionSampler(step_meters=2.0, exclude_structures=False).sample(edge, heightmap)
        for cs in edge.cross_sections:
            cs.left_edge_elevation = -5.0
            cs.right_edge_elevation = -5.0
        network = NetworkTopologyBuilder().build([edge])

        StructureElevationCalculator(exclude_structures=False).apply(network, heightmap)
        middle = edge.cross_sections[len(edge.cross_sections) // 2]
        assert middle.target_elevation == pytest.approx(3.0)
        for cs in edge.cross_sections:
            assert cs.resolved_left_edge_elevation() == pytest.approx(cs.target_elevation)
            assert cs.resolved_right_edge_elevation() == pytest.approx(cs.target_elevation)
