"""Fixed-interval sampling of road edges into cross-sections."""

from dataclasses import dataclass
from typing import List

import numpy as np

from src.roadgeometry.cross_section import CrossSection
from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadEdge


@dataclass
class CrossSectionSampler:
    """Turn an edge's spline into a list of cross-sections."""

    step_meters: float = 2.0
    """Longitudinal spacing between cross-sections."""

    exclude_structures: bool = True
    """Mark bridge and tunnel cross-sections as excluded from terrain
    writing."""

    def sample(self, edge: RoadEdge, heightmap: HeightmapGrid, index_offset: int = 0) -> List[CrossSection]:
        """Sample ``edge`` and read the initial elevation from the terrain.

        Parameters
        ----------
        edge : RoadEdge
            The edge to sample.  Its ``cross_sections`` list is replaced.
        heightmap : HeightmapGrid
            Terrain before any road has been written.
        index_offset : int, optional
            Network-wide index of the first cross-section.

        Returns
        -------
        list of CrossSection
            The new cross-sections, also stored on the edge.
        """
        if self.step_meters <= 0:
            raise ValueError("step_meters must be positive")
        samples = list(edge.spline.sample_by_distance(self.step_meters))
        centers = np.array([s.position for s in samples])
        terrain = heightmap.sample_many(centers)
        excluded = self.exclude_structures and edge.is_structure
        sections = []
        last = len(samples) - 1
        for i, (sample, z) in enumerate(zip(samples, terrain)):
            sections.append(CrossSection(
                index=index_offset + i,
                edge_id=edge.edge_id,
                local_index=i,
                distance=sample.distance,
                center=sample.position,
                tangent=sample.tangent,
                normal=sample.normal,
                width=edge.width,
                priority=edge.priority,
                target_elevation=float(z),
                original_terrain_elevation=float(z),
                is_excluded=excluded,
                is_edge_start=(i == 0),
                is_edge_end=(i == last),
            ))
        edge.cross_sections = sections
        return sections
