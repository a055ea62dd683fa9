"""Unit tests for curve banking."""

import math

import numpy as np
import pytest

from src.elevation.banking import BankingCalculator, compute_curvature
from src.elevation.sampler import CrossSectionSampler
from src.network.topology import NetworkTopologyBuilder
from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadEdge, RoadGeometry
from src.roadgeometry.spline import InterpolationMode


def sampled_edge(points, edge_id=0, width=8.0, priority=0, heightmap=None, offset=0):
    geometry = RoadGeometry(np.asarray(points, dtype=float), width=width, priority=priority,
                            interpolation=InterpolationMode.LINEAR_CONTROL_POINTS)
    edge = RoadEdge.from_geometry(geometry, edge_id)
    if heightmap is None:
        heightmap = HeightmapGrid(np.zeros((300, 300)))
    CrossSectionSampler(step_meters=2.0).sample(edge, heightmap, index_offset=offset)
    return edge


class TestCurvature:
    """Test suite for curvature estimation."""

    def test_circle_curvature(self):
        """Test that a counter-clockwise circle has curvature 1/R."""
        theta = np.linspace(0.0, np.pi, 200)
        points = np.column_stack([50.0 * np.cos(theta), 50.0 * np.sin(theta)])
        curvature = compute_curvature(points)
        np.testing.assert_allclose(curvature, 1.0 / 50.0, rtol=1e-3)

    def test_right_turn_is_negative(self):
        """Test that a clockwise turn has negative curvature."""
        theta = np.linspace(0.0, np.pi, 100)
        points = np.column_stack([50.0 * np.cos(theta), -50.0 * np.sin(theta)])
        assert np.all(compute_curvature(points) < 0)

    def test_straight_and_short(self):
        """Test zero curvature on straight or too-short polylines."""
        line = np.column_stack([np.arange(10.0), np.zeros(10)])
        np.testing.assert_allclose(compute_curvature(line), 0.0, atol=1e-12)
        assert compute_curvature(line[:2]).tolist() == [0.0, 0.0]


class TestBankingCalculator:
    """Test suite for BankingCalculator."""

    def test_bank_angle_law(self):
        """Test linear growth with curvature and saturation at the maximum."""
        calc = BankingCalculator(max_bank_angle_radians=0.14, curvature_scale=500.0)
        assert calc.bank_angle(0.0) == 0.0
        assert calc.bank_angle(0.001) == pytest.approx(0.07)
        assert calc.bank_angle(0.01) == pytest.approx(0.14)
        assert calc.bank_angle(-0.01) == pytest.approx(-0.14)

    def test_left_curve_raises_right_edge(self):
        """Test that a left turn banks with the right edge higher."""
        theta = np.linspace(-np.pi / 2, 0.0, 40)
        points = np.column_stack([150.0 + 60.0 * np.cos(theta), 150.0 + 60.0 * np.sin(theta)])
        edge = sampled_edge(points)
        calc = BankingCalculator()
        calc.bank_edge(edge)
        calc.compute_edge_elevations(edge.cross_sections)

        middle = edge.cross_sections[len(edge.cross_sections) // 2]
        assert middle.curvature > 0
        assert 0 < middle.bank_angle_radians <= 0.14
        assert middle.right_edge_elevation > middle.left_edge_elevation
        half = middle.half_width * math.sin(middle.bank_angle_radians)
        assert middle.right_edge_elevation - middle.target_elevation == pytest.approx(half)

    def test_straight_road_is_flat(self):
        """Test that a straight road gets no bank."""
        edge = sampled_edge([[10.0, 10.0], [200.0, 10.0]])
        calc = BankingCalculator()
        calc.bank_edge(edge)
        assert all(cs.bank_angle_radians == pytest.approx(0.0) for cs in edge.cross_sections)

    def test_apply_never_moves_centreline(self):
        """Test that banking leaves target elevations alone."""
        theta = np.linspace(-np.pi / 2, 0.0, 40)
        points = np.column_stack([150.0 + 60.0 * np.cos(theta), 150.0 + 60.0 * np.sin(theta)])
        edge = sampled_edge(points)
        for i, cs in enumerate(edge.cross_sections):
            cs.target_elevation = 0.1 * i
        before = edge.elevations()
        network = NetworkTopologyBuilder().build([edge])
        BankingCalculator().apply(network)
        np.testing.assert_array_equal(edge.elevations(), before)

    def test_suppression_near_t_junction(self):
        """Test that the terminating road loses its bank near the junction."""
        heightmap = HeightmapGrid(np.zeros((160, 210)))
        primary = sampled_edge([[0.0, 50.0], [200.0, 50.0]], edge_id=0, width=10.0, priority=2,
                               heightmap=heightmap)
        secondary = sampled_edge([[100.0, 50.0], [100.0, 150.0]], edge_id=1, width=6.0, priority=1,
                                 heightmap=heightmap, offset=len(primary.cross_sections))
        network = NetworkTopologyBuilder().build([primary, secondary])
        for cs in network.cross_sections():
            cs.bank_angle_radians = 0.1

        count = BankingCalculator(blend_distance=30.0).suppress_near_junctions(network)

        assert count == 15
        assert all(cs.bank_angle_radians == pytest.approx(0.1) for cs in primary.cross_sections)
        assert secondary.cross_sections[0].bank_angle_radians == pytest.approx(0.0)
        assert secondary.cross_sections[5].bank_angle_radians < 0.1
        assert all(cs.bank_angle_radians == pytest.approx(0.1) for cs in secondary.cross_sections[15:])
