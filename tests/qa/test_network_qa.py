"""Unit tests for the network QA checks."""

import math

import numpy as np

from src.elevation.sampler import CrossSectionSampler
from src.network.harmonizer import NetworkJunctionHarmonizer
from src.network.topology import NetworkTopologyBuilder
from src.qa.network_qa import NetworkQA
from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadEdge, RoadGeometry
from src.terrain.blender import HeightmapBlender
from src.terrain.rasterizer import LayerRasterizer

T_ROADS = [
    ([[0.0, 50.0], [200.0, 50.0]], {"priority": 2, "width": 10.0}),
    ([[100.0, 50.0], [100.0, 150.0]], {"priority": 1, "width": 6.0}),
]


def t_network(elevations=(10.0, 0.0)):
    heightmap = HeightmapGrid(np.zeros((220, 220)))
    sampler = CrossSectionSampler(step_meters=2.0)
    edges = []
    offset = 0
    for edge_id, (points, kwargs) in enumerate(T_ROADS):
        edge = RoadEdge.from_geometry(RoadGeometry(np.asarray(points, dtype=float), **kwargs), edge_id)
        sampler.sample(edge, heightmap, index_offset=offset)
        offset += len(edge.cross_sections)
        for cs in edge.cross_sections:
            cs.target_elevation = elevations[edge_id]
        edges.append(edge)
    return NetworkTopologyBuilder().build(edges), heightmap


def harmonized_t_network():
    network, heightmap = t_network()
    result = NetworkJunctionHarmonizer().harmonize(network)
    return network, heightmap, result


class TestJunctionChecks:
    """Test suite for junction agreement and T-junction slope checks."""

    def test_agreement_after_harmonisation(self):
        """Test that a harmonised network passes the agreement check."""
        network, _, _ = harmonized_t_network()
        assert NetworkQA().check_junction_agreement(network)

    def test_disagreement_detected(self):
        """Test that a moved anchor member fails the check."""
        network, _, _ = harmonized_t_network()
        member = network.junctions[0].through_members()[0]
        member.cross_section.target_elevation += 1.0
        assert not NetworkQA().check_junction_agreement(network)

    def test_t_junction_slope(self):
        """Test that a missing through slope is reported."""
        network, _, _ = harmonized_t_network()
        qa = NetworkQA()
        assert qa.check_t_junction_slopes(network)
        network.junctions[0].through_slope = math.nan
        assert not qa.check_t_junction_slopes(network)


class TestProfileChecks:
    """Test suite for grade and falloff checks."""

    def test_grades(self):
        """Test the grade check on flat and steep profiles."""
        network, _ = t_network()
        qa = NetworkQA(max_grade_percent=8.0)
        assert qa.check_grades(network)

        steep = {cs.index: 0.2 * cs.distance for cs in network.cross_sections()}
        assert not qa.check_grades(network, steep)
        for cs in network.cross_sections():
            cs.target_elevation = 0.05 * cs.distance
        assert qa.check_grades(network)

    def test_falloff_monotonic(self):
        """Test that the harmonisation fade decays away from the junction."""
        network, _, result = harmonized_t_network()
        assert NetworkQA().check_falloff_monotonic(network, result.pre_elevations)

    def test_growing_change_detected(self):
        """Test that a change growing along the fade fails the check."""
        network, _, result = harmonized_t_network()
        post = dict(result.pre_elevations)
        for cs in network.edge(1).cross_sections:
            post[cs.index] = result.pre_elevations[cs.index] + cs.distance
        assert not NetworkQA().check_falloff_monotonic(network, result.pre_elevations, post)


class TestRunFlags:
    """Test suite for the aggregated QA run."""

    def test_run_flags(self):
        """Test that all flags pass on a fully processed network."""
        network, heightmap, result = harmonized_t_network()
        report = HeightmapBlender().blend(network, heightmap)
        raster = LayerRasterizer().rasterize(network, heightmap.shape, heightmap.meters_per_pixel)

        flags = NetworkQA().run(network, result.pre_elevations, report, raster)
        assert flags == {
            "junction_agreement_ok": True,
            "t_junction_slopes_ok": True,
            "falloff_monotonic_ok": True,
            "mask_alignment_ok": True,
        }

    def test_mask_misalignment(self):
        """Test that differing section lists fail the alignment check."""
        network, heightmap, _ = harmonized_t_network()
        report = HeightmapBlender().blend(network, heightmap)
        raster = LayerRasterizer().rasterize(network, heightmap.shape, heightmap.meters_per_pixel)
        raster.edge_section_counts[1] -= 1
        assert not NetworkQA().check_mask_alignment(report, raster)

    def test_optional_flags_omitted(self):
        """Test that checks needing extra inputs are skipped without them."""
        network, _, _ = harmonized_t_network()
        assert set(NetworkQA().run(network)) == {"junction_agreement_ok", "t_junction_slopes_ok"}

    def test_grade_flag_from_snapshot(self):
        """Test that the grade flag is checked on the given elevation snapshot."""
        network, _, result = harmonized_t_network()
        flags = NetworkQA().run(network, grade_elevations=result.pre_elevations)
        assert flags["grade_clamp_ok"] is True

        steep = {cs.index: 0.2 * cs.distance for cs in network.cross_sections()}
        flags = NetworkQA(max_grade_percent=8.0).run(network, grade_elevations=steep)
        assert flags["grade_clamp_ok"] is False
