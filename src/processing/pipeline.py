"""Complete road elevation pipeline.

This module orchestrates all passes of the engine, from road geometry
and an initial heightmap to a shaped heightmap, per-category paint
masks and the exported cross-section tables.  The passes run strictly
in sequence because each reads what the previous one wrote:

1. build edges (splines) from the input geometry;
2. sample cross-sections and read the initial terrain elevation;
3. detect junctions and classify them;
4. smooth and grade-limit every edge profile;
5. harmonise the elevation at every junction;
6. bank curves and fit T-junction edges to the primary surface;
7. compute bridge and tunnel profiles;
8. blend roads into the heightmap and rasterise the paint masks;
9. export the results.

Usage:
    python -m src.processing.pipeline --roads roads.json --heightmap terrain.npy \\
        --mpp 1.0 --config configs/default.yaml --output out/
"""

import argparse
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence
import sys

import numpy as np
import pandas as pd

from src.common.cancellation import CancellationToken, is_cancelled
from src.common.diagnostics import DegenerateGeometryError, Diagnostics, EdgeFailure
from src.common.road_io import load_heightmap_npy, load_roads_json
from src.elevation.banking import BankingCalculator
from src.elevation.sampler import CrossSectionSampler
from src.elevation.smoother import ElevationSmoother
from src.elevation.structures import StructureElevationCalculator, StructureResult
from src.network.harmonizer import HarmonizationResult, NetworkJunctionHarmonizer
from src.network.junction import UnifiedRoadNetwork
from src.network.surface import JunctionSurfaceCalculator
from src.network.topology import NetworkTopologyBuilder
from src.qa.network_qa import NetworkQA
from src.roadgeometry.heightmap import HeightmapGrid
from src.roadgeometry.road_edge import RoadEdge, RoadGeometry
from src.terrain.blender import BlendReport, HeightmapBlender
from src.terrain.post_smoothing import PostProcessingSmoother
from src.terrain.rasterizer import LayerRasterizer
from src.utils.config import EngineConfig
from src.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PipelineResult:
    """Everything a run produced."""

    heightmap: HeightmapGrid
    masks: Dict[str, np.ndarray]
    network: UnifiedRoadNetwork
    diagnostics: Diagnostics
    failures: List[EdgeFailure] = field(default_factory=list)
    harmonization: Optional[HarmonizationResult] = None
    blend_report: Optional[BlendReport] = None
    structures: Optional[StructureResult] = None
    qa_flags: Dict[str, bool] = field(default_factory=dict)
    cancelled: bool = False
    unprocessed: Dict[str, List[int]] = field(default_factory=dict)
    """Edge or junction ids left untouched per stage after cancellation."""


class RoadElevationPipeline:
    """Road elevation and junction harmonisation pipeline.

    The pipeline holds no state between runs apart from its passes,
    which are configured once from an :class:`EngineConfig`.
    """

    def __init__(self, config: Optional[EngineConfig] = None, output_dir: Optional[Path] = None):
        """Initialise the pipeline.

        Parameters
        ----------
        config : EngineConfig, optional
            Validated engine parameters; defaults are used when omitted.
        output_dir : Path, optional
            Directory for exported files.  Nothing is written when
            omitted.
        """
        self.config = config or EngineConfig()
        errors = self.config.validate()
        if errors:
            raise ValueError("; ".join(errors))
        self.output_dir = Path(output_dir) if output_dir is not None else None
        cfg = self.config

        self.sampler = CrossSectionSampler(
            step_meters=cfg.step_meters,
            exclude_structures=cfg.exclude_structures,
        )
        self.topology_builder = NetworkTopologyBuilder(
            connection_tolerance=cfg.connection_tolerance_meters,
            straight_angle_tolerance_degrees=cfg.straight_angle_tolerance_degrees,
        )
        self.smoother = ElevationSmoother(
            window=cfg.smoothing_window,
            max_grade_percent=cfg.max_grade_percent,
        )
        self.harmonizer = NetworkJunctionHarmonizer(
            blend_distance=cfg.blend_distance_meters,
            blend_function=cfg.blend_function,
            slope_window=cfg.slope_window,
            enable_plateau_smoothing=cfg.enable_plateau_smoothing,
            plateau_priority_tolerance=cfg.plateau_priority_tolerance,
            endpoint_taper_strength=cfg.endpoint_taper_strength,
            endpoint_taper_distance=cfg.endpoint_taper_distance_meters,
        )
        self.banking = BankingCalculator(
            max_bank_angle_radians=cfg.max_bank_angle_radians,
            curvature_scale=cfg.curvature_to_bank_scale,
            bank_strength=cfg.bank_strength,
            transition_length=cfg.bank_transition_meters,
            blend_distance=cfg.blend_distance_meters,
            blend_function=cfg.blend_function,
        )
        self.surface = JunctionSurfaceCalculator(
            blend_distance=cfg.blend_distance_meters,
            blend_function=cfg.blend_function,
            slope_window=cfg.slope_window,
        )
        self.structures = StructureElevationCalculator(
            short_bridge_max_length=cfg.short_bridge_max_length_meters,
            medium_bridge_max_length=cfg.medium_bridge_max_length_meters,
            tunnel_min_clearance=cfg.tunnel_min_clearance_meters,
            tunnel_interior_height=cfg.tunnel_interior_height_meters,
            tunnel_max_grade_percent=cfg.tunnel_max_grade_percent,
            bridge_max_grade_percent=cfg.max_grade_percent,
            terrain_sample_count=cfg.terrain_sample_count,
            exclude_structures=cfg.exclude_structures,
        )
        self.blender = HeightmapBlender(
            falloff_distance=cfg.terrain_falloff_meters,
            blend_function=cfg.blend_function,
        )
        self.rasterizer = LayerRasterizer(include_structures=cfg.include_structures_in_masks)
        self.post_smoother = PostProcessingSmoother(
            smoothing_type=cfg.post_smoothing_type,
            sigma=cfg.post_smoothing_sigma,
            mask_extension_meters=cfg.post_smoothing_mask_extension_meters,
        )
        self.qa = NetworkQA(
            max_grade_percent=cfg.max_grade_percent,
            blend_distance=cfg.blend_distance_meters,
        )

    def _map_edges(self, func: Callable[[RoadEdge], object], edges: Sequence[RoadEdge],
                   cancel_token: Optional[CancellationToken]):
        """Run ``func`` over ``edges`` in order, optionally on worker threads.

        Returns the results of the processed edges and the ids of the
        edges skipped after cancellation.
        """
        results = []
        unprocessed: List[int] = []
        if self.config.max_workers > 1:
            def guarded(edge):
                if is_cancelled(cancel_token):
                    return None, False
                return func(edge), True

            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                for edge, (value, done) in zip(edges, executor.map(guarded, edges)):
                    if done:
                        results.append(value)
                    else:
                        unprocessed.append(edge.edge_id)
            return results, unprocessed
        for pos, edge in enumerate(edges):
            if is_cancelled(cancel_token):
                unprocessed = [e.edge_id for e in edges[pos:]]
                break
            results.append(func(edge))
        return results, unprocessed

    def step_1_build_edges(self, roads: Sequence[RoadGeometry], failures: List[EdgeFailure]) -> List[RoadEdge]:
        """Step 1: Build one edge (and its spline) per input road.

        Roads whose geometry cannot form a curve are recorded in
        ``failures`` and left out; the other roads continue.
        """
        logger.info("Step 1: Building %d road edges...", len(roads))
        edges: List[RoadEdge] = []
        used_ids = set()
        for position, geometry in enumerate(roads):
            edge_id = geometry.edge_id if geometry.edge_id is not None else position
            if edge_id in used_ids:
                failures.append(EdgeFailure(edge_id, f"duplicate edge id {edge_id}"))
                logger.warning("Skipping road %d: duplicate edge id %d", position, edge_id)
                continue
            try:
                edges.append(RoadEdge.from_geometry(geometry, edge_id))
            except (DegenerateGeometryError, ValueError) as exc:
                failures.append(EdgeFailure(edge_id, str(exc)))
                logger.warning("Skipping edge %d: %s", edge_id, exc)
                continue
            used_ids.add(edge_id)
        logger.info("  Built %d edges, %d failed", len(edges), len(failures))
        return edges

    def step_2_sample(self, edges: List[RoadEdge], heightmap: HeightmapGrid,
                      failures: List[EdgeFailure]) -> List[RoadEdge]:
        """Step 2: Sample cross-sections and read the initial terrain."""
        logger.info("Step 2: Sampling cross-sections every %.2f m...", self.config.step_meters)

        def sample(edge):
            try:
                self.sampler.sample(edge, heightmap)
            except (DegenerateGeometryError, ValueError) as exc:
                return EdgeFailure(edge.edge_id, str(exc))
            return None

        outcomes, _ = self._map_edges(sample, edges, None)
        sampled: List[RoadEdge] = []
        offset = 0
        for edge, failure in zip(edges, outcomes):
            if failure is not None or not edge.cross_sections:
                failures.append(failure or EdgeFailure(edge.edge_id, "no cross-sections"))
                logger.warning("Skipping edge %d: sampling failed", edge.edge_id)
                continue
            for cs in edge.cross_sections:
                cs.index = offset + cs.local_index
            offset += len(edge.cross_sections)
            sampled.append(edge)
        logger.info("  %d cross-sections on %d edges", offset, len(sampled))
        return sampled

    def step_3_build_topology(self, edges: List[RoadEdge], diagnostics: Diagnostics) -> UnifiedRoadNetwork:
        """Step 3: Detect and classify junctions."""
        logger.info("Step 3: Building network topology...")
        return self.topology_builder.build(edges, diagnostics)

    def step_4_smooth(self, network: UnifiedRoadNetwork, diagnostics: Diagnostics,
                      cancel_token: Optional[CancellationToken] = None) -> List[int]:
        """Step 4: Smooth and grade-limit every edge profile.

        Returns
        -------
        list of int
            Edge ids left unprocessed after cancellation.
        """
        logger.info("Step 4: Smoothing profiles (window %d, max grade %.1f%%)...",
                    self.config.smoothing_window, self.config.max_grade_percent)
        edges = list(network.edges.values())
        outcomes, unprocessed = self._map_edges(
            lambda edge: self.smoother.smooth(edge.cross_sections), edges, cancel_token)
        for warnings in outcomes:
            diagnostics.extend(warnings)
        return unprocessed

    def step_5_harmonize(self, network: UnifiedRoadNetwork,
                         cancel_token: Optional[CancellationToken] = None) -> HarmonizationResult:
        """Step 5: Agree on one elevation per junction."""
        logger.info("Step 5: Harmonising %d junctions...", len(network.junctions))
        return self.harmonizer.harmonize(network, cancel_token)

    def step_6_bank_and_constrain(self, network: UnifiedRoadNetwork,
                                  cancel_token: Optional[CancellationToken] = None) -> Dict[str, List[int]]:
        """Step 6: Bank curves and fit T-junction edges to the primary surface."""
        logger.info("Step 6: Banking and junction surface constraints...")
        unprocessed: Dict[str, List[int]] = {}
        if self.config.enable_banking:
            edges = list(network.edges.values())
            _, skipped = self._map_edges(self.banking.bank_edge, edges, cancel_token)
            if skipped:
                unprocessed["banking"] = skipped
            self.banking.apply(network, suppress_at_junctions=self.config.suppress_banking_at_junctions,
                               edges=[])
        else:
            self.banking.compute_edge_elevations(list(network.cross_sections()))
        if unprocessed:
            return unprocessed
        surface = self.surface.apply(network, cancel_token)
        if surface.cancelled:
            unprocessed["surface"] = surface.unprocessed
        return unprocessed

    def step_7_structures(self, network: UnifiedRoadNetwork, heightmap: HeightmapGrid,
                          diagnostics: Diagnostics,
                          cancel_token: Optional[CancellationToken] = None) -> StructureResult:
        """Step 7: Bridge and tunnel profiles."""
        logger.info("Step 7: Computing structure profiles...")
        result = self.structures.apply(network, heightmap, cancel_token)
        diagnostics.extend(result.warnings)
        return result

    def step_8_blend_and_rasterize(self, network: UnifiedRoadNetwork, heightmap: HeightmapGrid,
                                   cancel_token: Optional[CancellationToken] = None):
        """Step 8: Write roads into the heightmap and build the layer masks."""
        logger.info("Step 8: Blending heightmap and rasterising masks...")
        report = self.blender.blend(network, heightmap, cancel_token)
        raster = self.rasterizer.rasterize(network, heightmap.shape, heightmap.meters_per_pixel,
                                           cancel_token)
        if self.config.enable_post_smoothing and not report.cancelled:
            self.post_smoother.apply(heightmap, raster.combined_mask(heightmap.shape))
        return report, raster

    def step_9_export(self, result: PipelineResult) -> None:
        """Step 9: Export heightmap, masks and tables to ``output_dir``."""
        if self.output_dir is None:
            return
        logger.info("Step 9: Exporting results to %s...", self.output_dir)
        out = self.output_dir
        out.mkdir(parents=True, exist_ok=True)

        np.save(out / "heightmap.npy", result.heightmap.data)
        for category, mask in result.masks.items():
            np.save(out / f"mask_{category}.npy", mask)

        records = [cs.to_record() for cs in result.network.cross_sections()]
        pd.DataFrame(records).to_parquet(out / "cross_sections.parquet", index=False)

        structures = {}
        if result.structures is not None:
            structures = {str(edge_id): profile.to_record()
                          for edge_id, profile in result.structures.profiles.items()}
        with open(out / "structures.json", 'w', encoding='utf-8') as f:
            json.dump(structures, f, indent=2)

        with open(out / "diagnostics.json", 'w', encoding='utf-8') as f:
            json.dump({
                "warnings": result.diagnostics.to_records(),
                "failures": [{"edge_id": fl.edge_id, "message": fl.message} for fl in result.failures],
            }, f, indent=2)

        with open(out / "summary.json", 'w', encoding='utf-8') as f:
            json.dump(self.summary(result), f, indent=2)
        logger.info("  Exported %d masks and %d cross-sections", len(result.masks), len(records))

    def summary(self, result: PipelineResult) -> Dict:
        network = result.network
        counts: Dict[str, int] = {}
        for junction in network.junctions:
            counts[junction.junction_type.value] = counts.get(junction.junction_type.value, 0) + 1
        summary = {
            "edges": len(network.edges),
            "failed_edges": len(result.failures),
            "cross_sections": network.cross_section_count(),
            "junctions": len(network.junctions),
            "junction_types": counts,
            "warnings": len(result.diagnostics),
            "cancelled": result.cancelled,
            "unprocessed": result.unprocessed,
            "qa_flags": result.qa_flags,
            "config": self.config.to_dict(),
        }
        if result.harmonization is not None:
            summary["harmonized_sections"] = result.harmonization.modified_count
            summary["max_harmonization_change"] = result.harmonization.max_change
        if result.blend_report is not None:
            summary["pixels_modified"] = result.blend_report.pixels_modified
            summary["cut_volume"] = result.blend_report.cut_volume
            summary["fill_volume"] = result.blend_report.fill_volume
            summary["max_discontinuity"] = result.blend_report.max_discontinuity
        return summary

    def run(self, roads: Sequence[RoadGeometry], heightmap: HeightmapGrid,
            cancel_token: Optional[CancellationToken] = None) -> PipelineResult:
        """Run the complete pipeline.

        Parameters
        ----------
        roads : sequence of RoadGeometry
            Input road centrelines.
        heightmap : HeightmapGrid
            Initial terrain.  It is not modified; the shaped terrain is
            returned in the result.
        cancel_token : CancellationToken, optional
            Cooperative cancellation, checked once per edge or junction.

        Returns
        -------
        PipelineResult
        """
        logger.info("Road elevation pipeline: %d roads, %dx%d heightmap at %.2f m/px",
                    len(roads), heightmap.width, heightmap.height, heightmap.meters_per_pixel)
        diagnostics = Diagnostics()
        failures: List[EdgeFailure] = []
        working = heightmap.copy()

        edges = self.step_1_build_edges(roads, failures)
        edges = self.step_2_sample(edges, heightmap, failures)
        network = self.step_3_build_topology(edges, diagnostics)
        result = PipelineResult(heightmap=working, masks={}, network=network,
                                diagnostics=diagnostics, failures=failures)

        skipped = self.step_4_smooth(network, diagnostics, cancel_token)
        if skipped:
            return self._cancelled(result, "smoothing", skipped)
        smoothed = {cs.index: cs.target_elevation for cs in network.cross_sections()}

        result.harmonization = self.step_5_harmonize(network, cancel_token)
        if result.harmonization.cancelled:
            return self._cancelled(result, "harmonization", result.harmonization.unprocessed)
        result.qa_flags["falloff_monotonic_ok"] = self.qa.check_falloff_monotonic(
            network, result.harmonization.pre_elevations)

        skipped_stages = self.step_6_bank_and_constrain(network, cancel_token)
        if skipped_stages:
            stage, ids = next(iter(skipped_stages.items()))
            return self._cancelled(result, stage, ids)

        result.structures = self.step_7_structures(network, heightmap, diagnostics, cancel_token)
        if result.structures.cancelled:
            return self._cancelled(result, "structures", result.structures.unprocessed)

        report, raster = self.step_8_blend_and_rasterize(network, working, cancel_token)
        result.blend_report = report
        result.masks = raster.masks
        if report.cancelled or raster.cancelled:
            if report.cancelled:
                result.unprocessed["blending"] = report.unprocessed
            if raster.cancelled:
                result.unprocessed["rasterization"] = raster.unprocessed
            result.cancelled = True
            return result

        result.qa_flags.update(self.qa.run(network, blend_report=report, raster_result=raster,
                                           grade_elevations=smoothed))
        self.step_9_export(result)
        logger.info("Pipeline complete: %d edges, %d junctions, %d warnings, %d failures",
                    len(network.edges), len(network.junctions), len(diagnostics), len(failures))
        return result

    @staticmethod
    def _cancelled(result: PipelineResult, stage: str, unprocessed: List[int]) -> PipelineResult:
        logger.warning("Pipeline cancelled during %s, %d items unprocessed", stage, len(unprocessed))
        result.cancelled = True
        result.unprocessed[stage] = list(unprocessed)
        return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="Shape a heightmap around a road network and paint road masks"
    )
    parser.add_argument(
        "--roads",
        type=str,
        required=True,
        help="Path to road geometry JSON"
    )
    parser.add_argument(
        "--heightmap",
        type=str,
        required=True,
        help="Path to input heightmap (.npy)"
    )
    parser.add_argument(
        "--mpp",
        type=float,
        default=1.0,
        help="Heightmap resolution in metres per pixel (default: 1.0)"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML configuration file"
    )
    parser.add_argument(
        "--output",
        type=str,
        required=True,
        help="Output directory"
    )

    args = parser.parse_args(argv)

    config = EngineConfig.from_yaml(args.config) if args.config else EngineConfig()
    roads = load_roads_json(args.roads)
    heightmap = load_heightmap_npy(args.heightmap, args.mpp)

    pipeline = RoadElevationPipeline(config, output_dir=Path(args.output))
    result = pipeline.run(roads, heightmap)
    if result.failures:
        logger.warning("%d edges failed; see diagnostics.json", len(result.failures))
    return 0


if __name__ == "__main__":
    sys.exit(main())
