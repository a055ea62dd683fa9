"""Unit tests for the road and heightmap loaders."""

import json

import numpy as np
import pytest

from src.common.road_io import load_heightmap_npy, load_roads_json, road_from_dict
from src.roadgeometry.spline import InterpolationMode


class TestRoadIO:
    """Test suite for road geometry input."""

    def test_defaults(self):
        """Test that missing fields take their defaults."""
        road = road_from_dict({"points": [[0, 0], [10, 0]]}, default_id=4)
        assert road.edge_id == 4
        assert road.width == 8.0
        assert road.priority == 0
        assert road.category == "road"
        assert road.interpolation is InterpolationMode.SMOOTH_INTERPOLATED
        assert road.control_points.dtype == float

    def test_missing_points(self):
        """Test that a road without control points is rejected."""
        with pytest.raises(ValueError):
            road_from_dict({"width": 4}, default_id=0)

    def test_load_document(self, tmp_path):
        """Test both the object and the bare-list document forms."""
        records = [
            {"id": 7, "points": [[0, 0], [50, 0]], "is_bridge": True, "interpolation": "linear"},
            {"points": [[0, 10], [50, 10]], "category": "sidewalk", "width": 3},
        ]
        wrapped = tmp_path / "roads.json"
        wrapped.write_text(json.dumps({"roads": records}), encoding='utf-8')
        bare = tmp_path / "bare.json"
        bare.write_text(json.dumps(records), encoding='utf-8')

        for path in (wrapped, bare):
            roads = load_roads_json(path)
            assert [r.edge_id for r in roads] == [7, 1]
            assert roads[0].is_bridge
            assert roads[0].interpolation is InterpolationMode.LINEAR_CONTROL_POINTS
            assert roads[1].category == "sidewalk"

    def test_load_heightmap(self, tmp_path):
        """Test loading an integer array as a float grid."""
        path = tmp_path / "terrain.npy"
        np.save(path, np.arange(12, dtype=np.int32).reshape(3, 4))
        grid = load_heightmap_npy(path, 2.0)
        assert grid.shape == (3, 4)
        assert grid.data.dtype == np.float64
        assert grid.meters_per_pixel == 2.0
