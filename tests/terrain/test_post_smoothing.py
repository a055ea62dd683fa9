"""Unit tests for masked post-smoothing."""

import numpy as np
import pytest

from src.roadgeometry.heightmap import HeightmapGrid
from src.terrain.post_smoothing import PostProcessingSmoother


def spiky_grid():
    data = np.zeros((40, 40))
    data[10, 10] = 10.0
    data[30, 30] = 10.0
    mask = np.zeros((40, 40), dtype=np.uint8)
    mask[5:16, 5:16] = 255
    return HeightmapGrid(data), mask


class TestPostProcessingSmoother:
    """Test suite for PostProcessingSmoother."""

    @pytest.mark.parametrize("smoothing_type", ["gaussian", "box"])
    def test_spike_inside_mask_reduced(self, smoothing_type):
        """Test that a spike on the road is flattened."""
        grid, mask = spiky_grid()
        count = PostProcessingSmoother(smoothing_type=smoothing_type, mask_extension_meters=0.0).apply(grid, mask)
        assert count == 121
        assert grid.data[10, 10] < 10.0
        assert grid.data[11, 10] > 0.0

    def test_outside_mask_untouched(self):
        """Test that terrain away from the dilated mask keeps its values."""
        grid, mask = spiky_grid()
        PostProcessingSmoother(mask_extension_meters=2.0).apply(grid, mask)
        assert grid.data[30, 30] == 10.0
        assert grid.data[29, 30] == 0.0

    def test_mask_dilation(self):
        """Test that the mask grows by the extension in pixels."""
        _, mask = spiky_grid()
        smoother = PostProcessingSmoother(mask_extension_meters=2.0)
        grown = smoother.smoothing_mask(mask, meters_per_pixel=1.0)
        assert grown[3, 10] and not grown[2, 10]
        coarse = smoother.smoothing_mask(mask, meters_per_pixel=2.0)
        assert coarse[4, 10] and not coarse[3, 10]

    def test_empty_mask(self):
        """Test that nothing happens without road pixels."""
        grid, _ = spiky_grid()
        before = grid.data.copy()
        count = PostProcessingSmoother().apply(grid, np.zeros((40, 40), dtype=np.uint8))
        assert count == 0
        np.testing.assert_array_equal(grid.data, before)

    def test_unknown_type(self):
        """Test that an unknown filter name is rejected."""
        grid, mask = spiky_grid()
        with pytest.raises(ValueError):
            PostProcessingSmoother(smoothing_type="median").apply(grid, mask)
