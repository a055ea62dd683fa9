"""Input adapters for road geometry and heightmaps.

Road geometry arrives as a JSON document holding a list of roads (or an
object with a ``roads`` list).  Each road carries its control points in
metres in the terrain-local frame plus width, priority, structure flags
and paint category::

    {"roads": [{"points": [[0, 0], [120, 4]], "width": 8,
                "priority": 2, "is_bridge": false,
                "interpolation": "smooth", "category": "asphalt"}]}

Heightmaps are raw two-dimensional ``.npy`` arrays indexed ``[row, col]``
with rows along the y axis.
"""

import json
from pathlib import Path
from typing import Any, Dict, List

import numpy as np

from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadGeometry
from src.roadgeometry.spline import InterpolationMode


def road_from_dict(record: Dict[str, Any], default_id: int) -> RoadGeometry:
    """Convert one JSON road record into a :class:`RoadGeometry`."""
    points = record.get("points", record.get("control_points"))
    if points is None:
        raise ValueError(f"road {default_id} has no 'points'")
    return RoadGeometry(
        control_points=np.asarray(points, dtype=float),
        width=float(record.get("width", 8.0)),
        priority=int(record.get("priority", 0)),
        is_bridge=bool(record.get("is_bridge", False)),
        is_tunnel=bool(record.get("is_tunnel", False)),
        interpolation=InterpolationMode.parse(record.get("interpolation", "smooth")),
        category=str(record.get("category", "road")),
        edge_id=int(record.get("id", default_id)),
    )


def load_roads_json(path) -> List[RoadGeometry]:
    """Read a road geometry document.

    Parameters
    ----------
    path : str or Path
        JSON file as described in the module docstring.

    Returns
    -------
    list of RoadGeometry
        Roads in file order.
    """
    with open(Path(path), 'r', encoding='utf-8') as f:
        data = json.load(f)
    records = data.get("roads", []) if isinstance(data, dict) else data
    return [road_from_dict(rec, i) for i, rec in enumerate(records)]


def load_heightmap_npy(path, meters_per_pixel: float) -> HeightmapGrid:
    """Load a ``.npy`` heightmap as a float64 grid."""
    data = np.load(Path(path))
    return HeightmapGrid(np.asarray(data, dtype=float), meters_per_pixel)
