"""Unit tests for paint-layer rasterisation."""

import numpy as np

from src.common.cancellation import CancellationToken
from src.elevation.sampler import CrossSectionSampler
from src.network.junction import UnifiedRoadNetwork
from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadEdge, RoadGeometry
from src.terrain.blender import HeightmapBlender
from src.terrain.rasterizer import MASK_ON, LayerRasterizer


def sampled_network(roads, shape=(60, 100)):
    heightmap = HeightmapGrid(np.zeros(shape))
    sampler = CrossSectionSampler(step_meters=2.0)
    edges = []
    offset = 0
    for edge_id, (points, kwargs) in enumerate(roads):
        edge = RoadEdge.from_geometry(RoadGeometry(np.asarray(points, dtype=float), **kwargs), edge_id)
        sampler.sample(edge, heightmap, index_offset=offset)
        offset += len(edge.cross_sections)
        for cs in edge.cross_sections:
            cs.target_elevation = 3.0
        edges.append(edge)
    return UnifiedRoadNetwork(edges), heightmap


class TestLayerRasterizer:
    """Test suite for LayerRasterizer."""

    def test_road_pixels_painted(self):
        """Test that the footprint is 255 and the rest 0."""
        network, heightmap = sampled_network([([[10.0, 25.0], [90.0, 25.0]], {"width": 8.0})])
        result = LayerRasterizer().rasterize(network, heightmap.shape, 1.0)
        mask = result.masks["road"]

        assert mask.dtype == np.uint8
        assert mask[25, 50] == MASK_ON
        assert mask[22, 50] == MASK_ON
        assert mask[40, 50] == 0
        assert mask[25, 95] == 0
        assert set(np.unique(mask).tolist()) == {0, MASK_ON}
        assert result.edge_pixel_counts[0] == int(np.sum(mask == MASK_ON))

    def test_one_mask_per_category(self):
        """Test that categories are painted into separate masks."""
        roads = [
            ([[10.0, 15.0], [90.0, 15.0]], {"category": "road"}),
            ([[10.0, 45.0], [90.0, 45.0]], {"category": "sidewalk", "width": 3.0}),
        ]
        network, heightmap = sampled_network(roads)
        result = LayerRasterizer().rasterize(network, heightmap.shape, 1.0)

        assert set(result.masks) == {"road", "sidewalk"}
        assert result.masks["road"][15, 50] == MASK_ON
        assert result.masks["road"][45, 50] == 0
        assert result.masks["sidewalk"][45, 50] == MASK_ON
        combined = result.combined_mask(heightmap.shape)
        assert combined[15, 50] == MASK_ON and combined[45, 50] == MASK_ON

    def test_structures_skipped_by_default(self):
        """Test that bridges are painted only when requested."""
        roads = [([[10.0, 25.0], [90.0, 25.0]], {"is_bridge": True})]
        network, heightmap = sampled_network(roads)

        skipped = LayerRasterizer().rasterize(network, heightmap.shape, 1.0)
        assert skipped.masks == {}
        assert 0 not in skipped.edge_pixel_counts

        painted = LayerRasterizer(include_structures=True).rasterize(network, heightmap.shape, 1.0)
        assert painted.masks["road"][25, 50] == MASK_ON
        assert painted.edge_section_counts[0] == len(network.edge(0).cross_sections)

    def test_matches_blender_footprint(self):
        """Test that masks and terrain come from the same cross-sections."""
        roads = [
            ([[10.0, 25.0], [90.0, 25.0]], {}),
            ([[50.0, 5.0], [50.0, 55.0]], {"priority": 1}),
        ]
        network, heightmap = sampled_network(roads)
        raster = LayerRasterizer().rasterize(network, heightmap.shape, 1.0)
        report = HeightmapBlender(falloff_distance=0.0).blend(network, heightmap)

        assert raster.edge_section_counts == report.edge_section_counts
        for edge_id, centers in raster.edge_section_centers.items():
            np.testing.assert_array_equal(centers, report.edge_section_centers[edge_id])
        assert raster.edge_pixel_counts == report.edge_core_pixels
        painted = raster.combined_mask(heightmap.shape) == MASK_ON
        np.testing.assert_allclose(heightmap.data[painted], 3.0)

    def test_cancellation(self):
        """Test that a cancelled run reports the edges it never painted."""
        network, heightmap = sampled_network([([[10.0, 25.0], [90.0, 25.0]], {})])
        token = CancellationToken()
        token.cancel()
        result = LayerRasterizer().rasterize(network, heightmap.shape, 1.0, token)
        assert result.cancelled
        assert result.unprocessed == [0]
        assert result.masks == {}
