"""
Intersection resolver – T, L, cross and parallel-overlap junctions.

Pairwise junctions are classified from how the walls touch and handed to the
boolean engine for trimming and composition. Angles below the extreme-angle
threshold get a widened tolerance from the tolerance manager first; offsets
running parallel are merged instead of mitered. Whole floor plans go through
optimize_intersection_network, which builds an STRtree over the walls once
and only resolves pairs whose bounding boxes overlap.
"""

import itertools
import math
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely.strtree import STRtree

from ..config import IntersectionResolverConfig
from ..constants import (
    CROSS_HIERARCHICAL_MAX_SCORE,
    CROSS_SEQUENTIAL_MAX_SCORE,
    JUNCTION_ACCURACY,
    PARALLEL_MERGE_RATIO,
    PARALLEL_TRANSITION_RATIO,
    PARALLEL_WALL_COUNT,
    VERY_SHARP_ANGLE_DEG,
)
from ..errors import ComplexityExceeded, GeometricError, InvalidParameter, descriptor_for
from ..geometry import junctions as J
from ..geometry.vector_utils import Vec, point_distance
from ..models.enums import GeometricErrorType, JunctionType, ToleranceContext
from ..models.results import ExtremeAngleJunction, ExtremeAngleReport, JunctionResult, NetworkOptimizationResult
from ..models.wall_solid import IntersectionData, WallSolid
from .base_engine import BaseEngine
from .boolean_engine import BooleanEngine
from .tolerance_manager import ToleranceManager


class IntersectionResolver(BaseEngine):
    """Resolves junctions between walls and optimizes whole junction networks."""

    config_class = IntersectionResolverConfig

    def __init__(
        self,
        config: Optional[IntersectionResolverConfig] = None,
        run_id=None,
        tolerance_manager: Optional[ToleranceManager] = None,
        boolean_engine: Optional[BooleanEngine] = None,
        document_precision: float = 1.0,
        **options,
    ):
        super().__init__(config, run_id, **options)
        self.tolerance_manager = tolerance_manager or ToleranceManager(run_id=self.run_id)
        self.boolean_engine = boolean_engine or BooleanEngine(
            run_id=self.run_id,
            tolerance=self.config.tolerance,
            enable_parallel_processing=self.config.enable_parallel_processing,
            parallel_overlap_threshold=self.config.parallel_overlap_threshold,
        )
        self.document_precision = document_precision

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _tolerance(self, tolerance: Optional[float]) -> float:
        tolerance = self.config.tolerance if tolerance is None else tolerance
        if tolerance <= 0:
            raise InvalidParameter(f"Tolerance must be positive, got {tolerance!r}", operation="resolve_junction")
        return tolerance

    def _check_walls(self, walls: Sequence[WallSolid], minimum: int, operation: str, exact: bool = False) -> List[WallSolid]:
        walls = list(walls)
        if len(walls) < minimum or (exact and len(walls) != minimum):
            expected = f"exactly {minimum}" if exact else f"at least {minimum}"
            raise InvalidParameter(f"{operation} needs {expected} walls, got {len(walls)}", operation=operation)
        return walls

    def _check_complexity(self, walls: Sequence[WallSolid], operation: str) -> None:
        total = sum(w.complexity for w in walls)
        if total > self.config.max_complexity:
            raise ComplexityExceeded(
                f"Junction complexity {total} exceeds budget {self.config.max_complexity}",
                operation=operation,
                context={"complexity": total, "walls": [w.id for w in walls]},
            )

    def _widened(self, walls: Sequence[WallSolid], angle: float, tolerance: float) -> Tuple[float, List[str]]:
        """Tolerance for a junction at `angle`; widened below the extreme-angle threshold."""
        if angle >= self.config.extreme_angle_threshold:
            return tolerance, []
        widened = self.tolerance_manager.calculate_tolerance(
            max(w.thickness for w in walls),
            self.document_precision,
            angle,
            ToleranceContext.BOOLEAN_OPERATION,
        )
        tolerance = max(tolerance, widened)
        self.log_info("Extreme junction angle", angle=angle, tolerance=tolerance)
        return tolerance, [f"extreme angle: {angle:.1f}° junction resolved with tolerance {tolerance:g} mm"]

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _type_of(self, contact: J.JunctionContact) -> JunctionType:
        if J.is_parallel(contact.angle, self.config.parallel_overlap_threshold):
            return JunctionType.PARALLEL_OVERLAP
        if contact.kind == "end_end":
            return JunctionType.L_JUNCTION
        if contact.kind == "end_interior":
            return JunctionType.T_JUNCTION
        return JunctionType.CROSS_JUNCTION

    def classify_junction(
        self,
        wall_a: WallSolid,
        wall_b: WallSolid,
        tolerance: Optional[float] = None,
    ) -> Optional[JunctionType]:
        """Junction type between two walls, or None when they do not meet."""
        contact = J.locate_junction(wall_a, wall_b, self._tolerance(tolerance))
        if contact is None:
            return None
        return self._type_of(contact)

    # ------------------------------------------------------------------
    # Pairwise junctions
    # ------------------------------------------------------------------

    def resolve_t_junction(self, walls: Sequence[WallSolid], tolerance: Optional[float] = None) -> JunctionResult:
        """
        Resolve a T junction: the branch is trimmed to the main wall's near face.

        walls[0] is taken as the main wall when both walls meet end to end.
        """
        return self._resolve_pair(walls, tolerance, JunctionType.T_JUNCTION)

    def resolve_l_junction(self, walls: Sequence[WallSolid], tolerance: Optional[float] = None) -> JunctionResult:
        """Resolve an L corner: offsets are mitered to meet at the outer apex."""
        return self._resolve_pair(walls, tolerance, JunctionType.L_JUNCTION)

    def _resolve_pair(
        self,
        walls: Sequence[WallSolid],
        tolerance: Optional[float],
        junction_type: JunctionType,
    ) -> JunctionResult:
        start_time = time.time()
        operation = f"resolve_{junction_type.value}"
        walls = self._check_walls(walls, 2, operation, exact=True)
        tolerance = self._tolerance(tolerance)
        self._check_complexity(walls, operation)

        contact = J.locate_junction(walls[0], walls[1], tolerance)
        warnings: List[str] = []
        if contact is not None:
            if J.is_parallel(contact.angle, self.config.parallel_overlap_threshold):
                return self.resolve_parallel_overlap(walls, tolerance)
            tolerance, warnings = self._widened(walls, contact.angle, tolerance)

        result = self.boolean_engine.compose_pair(
            walls, tolerance, junction_type, parallel_overlap_threshold=self.config.parallel_overlap_threshold
        )
        return result.model_copy(update={
            "warnings": warnings + result.warnings,
            "processing_time": (time.time() - start_time) * 1000,
        })

    def resolve_parallel_overlap(self, walls: Sequence[WallSolid], tolerance: Optional[float] = None) -> JunctionResult:
        """
        Merge two (anti)parallel walls.

        The shared run over the shorter wall picks the method: above 80% the
        walls are merged, above 20% a transition zone is formed, otherwise a
        plain union (bridging any end gap) is used.
        """
        start_time = time.time()
        walls = self._check_walls(walls, 2, "resolve_parallel_overlap", exact=True)
        tolerance = self._tolerance(tolerance)
        self._check_complexity(walls, "resolve_parallel_overlap")

        ratio = J.parallel_overlap_ratio(walls[0], walls[1])
        if ratio > PARALLEL_MERGE_RATIO:
            method = "merge_walls"
        elif ratio > PARALLEL_TRANSITION_RATIO:
            method = "transition_zone"
        else:
            method = "standard_union"

        result = self.boolean_engine.compose_pair(
            walls, tolerance, JunctionType.PARALLEL_OVERLAP, resolution_method=f"parallel_{method}"
        )
        self.log_info("Parallel overlap resolved", method=method, overlap_ratio=round(ratio, 3),
                      success=result.success)
        return result.model_copy(update={
            "strategy": method,
            "processing_time": (time.time() - start_time) * 1000,
        })

    # ------------------------------------------------------------------
    # Cross junctions
    # ------------------------------------------------------------------

    def resolve_cross_junction(self, walls: Sequence[WallSolid], tolerance: Optional[float] = None) -> JunctionResult:
        """
        Resolve three or more walls meeting at one hub.

        Walls ending at the hub are extended through it by the largest
        half-thickness of the others, then everything is unioned. The strategy
        follows a complexity score of 2·walls + std(gap angles)/10 + 5·extreme
        gaps. A complexity warning is always emitted.
        """
        start_time = time.time()
        walls = self._check_walls(walls, 3, "resolve_cross_junction")
        tolerance = self._tolerance(tolerance)
        self._check_complexity(walls, "resolve_cross_junction")

        contact_points = []
        for a, b in itertools.combinations(walls, 2):
            contact = J.locate_junction(a, b, tolerance)
            if contact is not None:
                contact_points.append(contact.point)
        if not contact_points:
            message = f"Walls {[w.id for w in walls]} do not meet at a common hub"
            return JunctionResult(
                success=False,
                errors=[descriptor_for(GeometricErrorType.TOPOLOGY_ERROR, message,
                                       operation="resolve_cross_junction")],
                tolerance_used=tolerance,
                processing_time=(time.time() - start_time) * 1000,
            )
        center = (
            sum(p[0] for p in contact_points) / len(contact_points),
            sum(p[1] for p in contact_points) / len(contact_points),
        )

        reach = max(w.thickness for w in walls) / 2.0 + tolerance
        arms: List[Tuple[float, Vec, float]] = []
        adjusted: List[WallSolid] = []
        for wall in walls:
            h = J.half_thickness(wall)
            hub_end = self._hub_end(wall, center, reach)
            if hub_end is None:
                contact = J.interior_contact(wall, center)
                for d in contact.away_dirs:
                    arms.append((math.atan2(d[1], d[0]), d, h))
                adjusted.append(wall)
                continue
            end_point, away = J.end_frame(wall, hub_end)
            arms.append((math.atan2(away[1], away[0]), away, h))
            extension = max(J.half_thickness(o) for o in walls if o.id != wall.id)
            p_pos, p_neg, n = J.hub_extension_points(end_point, away, h, center, extension)
            adjusted.append(J.with_adjusted_end(wall, hub_end, n, p_pos, p_neg, tolerance))

        arms.sort(key=lambda arm: arm[0])
        gaps = []
        for i, (theta, _, _) in enumerate(arms):
            next_theta = arms[(i + 1) % len(arms)][0]
            gap = math.degrees(next_theta - theta) % 360.0
            gaps.append(gap if gap > 0 else 360.0)
        extreme = sum(1 for g in gaps if g < self.config.extreme_angle_threshold)
        score = 2.0 * len(walls) + float(np.std(gaps)) / 10.0 + 5.0 * extreme

        if score < CROSS_SEQUENTIAL_MAX_SCORE:
            strategy = "sequential_union"
        elif score < CROSS_HIERARCHICAL_MAX_SCORE:
            strategy = "hierarchical_union"
        else:
            strategy = "optimized_batch"

        warnings = [
            f"complexity: cross junction of {len(walls)} walls requires face-by-face overlap resolution "
            f"(score {score:.1f})"
        ]
        if extreme:
            tolerance, angle_warnings = self._widened(walls, min(gaps), tolerance)
            warnings.extend(angle_warnings)

        if strategy == "sequential_union":
            composed = self.boolean_engine.union(adjusted, tolerance)
        else:
            composed = self.boolean_engine.batch_union(adjusted, tolerance)
        warnings.extend(composed.warnings)
        if not composed.success or composed.result_solid is None:
            return JunctionResult(
                success=False,
                adjusted_walls=adjusted,
                strategy=strategy,
                complexity_score=score,
                tolerance_used=tolerance,
                warnings=warnings,
                errors=composed.errors,
                processing_time=(time.time() - start_time) * 1000,
            )

        inner_corners = []
        for i, (_, d, h) in enumerate(arms):
            _, d_next, h_next = arms[(i + 1) % len(arms)]
            corner = J.corner_geometry(center, d, h, d_next, h_next)
            if corner is not None:
                inner_corners.append(J.to_point(corner.inner, tolerance, "offset_intersection"))

        junction = IntersectionData(
            junction_type=JunctionType.CROSS_JUNCTION,
            participating_walls=[w.id for w in walls],
            intersection_point=J.to_point(center, tolerance),
            offset_intersections=inner_corners,
            resolved_geometry=max(composed.result_polygons, key=lambda p: p.area),
            resolution_method=f"cross_{strategy}",
            geometric_accuracy=JUNCTION_ACCURACY,
            validated=True,
        )
        finished = [w.replace(intersection_data=list(w.intersection_data) + [junction]) for w in adjusted]
        processing_time = (time.time() - start_time) * 1000
        self.log_info(
            "Cross junction resolved",
            walls=len(walls),
            strategy=strategy,
            complexity_score=round(score, 2),
            duration_ms=int(processing_time),
        )
        return JunctionResult(
            success=True,
            junction=junction,
            result_solid=composed.result_solid.replace(intersection_data=[junction]),
            adjusted_walls=finished,
            strategy=strategy,
            complexity_score=score,
            tolerance_used=tolerance,
            warnings=warnings,
            requires_healing=composed.requires_healing,
            processing_time=processing_time,
        )

    def _hub_end(self, wall: WallSolid, center: Vec, reach: float) -> Optional[str]:
        best = None
        for role in J.wall_ends(wall):
            point, _ = J.end_frame(wall, role)
            d = point_distance(point, center)
            if d <= reach and (best is None or d < best[0]):
                best = (d, role)
        return best[1] if best else None

    # ------------------------------------------------------------------
    # Extreme angles
    # ------------------------------------------------------------------

    def handle_extreme_angles(self, walls: Sequence[WallSolid], tolerance: Optional[float] = None) -> ExtremeAngleReport:
        """Bucket every meeting pair by angle: very sharp, sharp or near straight."""
        tolerance = self._tolerance(tolerance)
        walls = list(walls)
        threshold = self.config.extreme_angle_threshold
        report = ExtremeAngleReport()
        for i, j in self._candidate_pairs(walls, tolerance):
            a, b = walls[i], walls[j]
            contact = J.locate_junction(a, b, tolerance)
            if contact is None:
                continue
            angle = contact.angle
            if angle < VERY_SHARP_ANGLE_DEG:
                bucket = report.very_sharp
            elif angle < threshold:
                bucket = report.sharp
            elif angle > 180.0 - threshold:
                bucket = report.near_straight
            else:
                continue
            widened = self.tolerance_manager.calculate_tolerance(
                max(a.thickness, b.thickness), self.document_precision, angle, ToleranceContext.BOOLEAN_OPERATION
            )
            bucket.append(ExtremeAngleJunction(wall_ids=[a.id, b.id], angle=angle, tolerance=max(tolerance, widened)))

        if report.total:
            self.log_info(
                "Extreme angles found",
                very_sharp=len(report.very_sharp),
                sharp=len(report.sharp),
                near_straight=len(report.near_straight),
            )
        return report

    # ------------------------------------------------------------------
    # Network optimisation
    # ------------------------------------------------------------------

    def _candidate_pairs(self, walls: List[WallSolid], tolerance: float) -> List[Tuple[int, int]]:
        """Index pairs whose reach-expanded bounding boxes overlap, from an STRtree query."""
        boxes = []
        for wall in walls:
            bbox = wall.bounding_box
            pad = J.half_thickness(wall) + tolerance
            boxes.append(shapely.box(bbox.min_x - pad, bbox.min_y - pad, bbox.max_x + pad, bbox.max_y + pad))
        tree = STRtree(boxes)

        pairs = set()
        for i, box in enumerate(boxes):
            for j in tree.query(box):
                j = int(j)
                if j > i:
                    pairs.add((i, j))
        return sorted(pairs)

    def resolve_junction(
        self,
        a: WallSolid,
        b: WallSolid,
        tolerance: Optional[float] = None,
    ) -> Optional[JunctionResult]:
        """Classify and resolve the junction between two walls; None when they do not meet."""
        tolerance = self._tolerance(tolerance)
        contact = J.locate_junction(a, b, tolerance)
        if contact is None:
            return None
        junction_type = self._type_of(contact)
        if junction_type == JunctionType.PARALLEL_OVERLAP:
            return self.resolve_parallel_overlap([a, b], tolerance)
        if junction_type == JunctionType.L_JUNCTION:
            return self.resolve_l_junction([a, b], tolerance)
        if junction_type == JunctionType.T_JUNCTION:
            return self.resolve_t_junction([a, b], tolerance)
        tolerance, warnings = self._widened([a, b], contact.angle, tolerance)
        result = self.boolean_engine.compose_pair(
            [a, b], tolerance, JunctionType.CROSS_JUNCTION,
            parallel_overlap_threshold=self.config.parallel_overlap_threshold,
        )
        return result.model_copy(update={"warnings": warnings + result.warnings})

    def optimize_intersection_network(
        self,
        walls: Sequence[WallSolid],
        tolerance: Optional[float] = None,
    ) -> NetworkOptimizationResult:
        """
        Resolve every junction of a floor plan.

        With spatial indexing an STRtree over the walls' bounding boxes is built
        once and only overlapping pairs are resolved; otherwise every pair is
        tested. Pair resolutions are independent and run on a thread pool for
        more than PARALLEL_WALL_COUNT walls. Each wall's end adjustments from
        all of its junctions are merged into resolved_walls.

        Raises:
            ComplexityExceeded: more candidate pairs than max_complexity.
        """
        start_time = time.time()
        tolerance = self._tolerance(tolerance)
        walls = list(walls)
        n = len(walls)
        original_complexity = n * (n - 1) // 2
        applied: List[str] = []
        warnings: List[str] = []

        if self.config.optimization_enabled and self.config.spatial_indexing_enabled:
            pairs = self._candidate_pairs(walls, tolerance)
            applied.append("spatial_indexing")
        else:
            pairs = list(itertools.combinations(range(n), 2))
        if not self.config.optimization_enabled:
            applied.append("optimization_disabled")

        if len(pairs) > self.config.max_complexity:
            raise ComplexityExceeded(
                f"{len(pairs)} candidate junction pairs exceed budget {self.config.max_complexity}",
                operation="optimize_intersection_network",
                context={"walls": n, "pairs": len(pairs)},
            )

        use_parallel = self.config.enable_parallel_processing and n > PARALLEL_WALL_COUNT
        results: Dict[Tuple[int, int], JunctionResult] = {}
        if use_parallel and pairs:
            applied.append("parallel_processing")
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                future_to_pair = {
                    executor.submit(self.resolve_junction, walls[i], walls[j], tolerance): (i, j)
                    for i, j in pairs
                }
                for future in as_completed(future_to_pair):
                    i, j = future_to_pair[future]
                    try:
                        result = future.result()
                    except GeometricError as e:
                        warnings.append(f"junction {walls[i].id}/{walls[j].id}: {e.message}")
                        self.log_error("Junction resolution failed", walls=[walls[i].id, walls[j].id],
                                       error=e.message)
                        continue
                    if result is not None:
                        results[(i, j)] = result
        else:
            for i, j in pairs:
                try:
                    result = self.resolve_junction(walls[i], walls[j], tolerance)
                except GeometricError as e:
                    warnings.append(f"junction {walls[i].id}/{walls[j].id}: {e.message}")
                    self.log_error("Junction resolution failed", walls=[walls[i].id, walls[j].id], error=e.message)
                    continue
                if result is not None:
                    results[(i, j)] = result

        junctions = []
        versions: Dict[str, List[WallSolid]] = {w.id: [] for w in walls}
        links = []
        for pair in sorted(results):
            result = results[pair]
            warnings.extend(result.warnings)
            if not result.success or result.junction is None:
                continue
            junctions.append(result.junction)
            links.append(pair)
            for adjusted in result.adjusted_walls:
                versions[adjusted.id].append(adjusted)

        resolved_walls = [J.merge_adjusted_ends(w, versions[w.id], tolerance) if versions[w.id] else w
                          for w in walls]
        groups = self._connected_groups(walls, links)
        if self.config.optimization_enabled:
            applied.append("proximity_grouping")

        optimized_complexity = len(pairs)
        performance_gain = 0.0
        if original_complexity:
            performance_gain = max(0.0, (original_complexity - optimized_complexity) / original_complexity * 100.0)
        processing_time = (time.time() - start_time) * 1000

        self.log_info(
            "Intersection network optimized",
            walls=n,
            pairs_tested=optimized_complexity,
            junctions=len(junctions),
            groups=len(groups),
            performance_gain=round(performance_gain, 2),
            duration_ms=int(processing_time),
        )
        return NetworkOptimizationResult(
            performance_gain=performance_gain,
            optimizations_applied=applied,
            processing_time=processing_time,
            original_complexity=original_complexity,
            optimized_complexity=optimized_complexity,
            junctions=junctions,
            groups=groups,
            warnings=warnings,
            resolved_walls=resolved_walls,
        )

    def _connected_groups(self, walls: List[WallSolid], links: List[Tuple[int, int]]) -> List[List[str]]:
        parent = list(range(len(walls)))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        for i, j in links:
            parent[find(i)] = find(j)

        groups: Dict[int, List[str]] = {}
        for i, wall in enumerate(walls):
            groups.setdefault(find(i), []).append(wall.id)
        return list(groups.values())
