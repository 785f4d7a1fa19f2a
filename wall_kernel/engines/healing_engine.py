"""
Healing engine – removes numerical defects from wall solids.

Fixes run in a fixed order (near-duplicate vertices, micro segments, sliver
faces, self-intersections) and repeat until a pass applies nothing. Every
applied fix is recorded as a HealingOperation on the returned solid; a solid
without defects comes back unchanged with no operations, so healing can be
called speculatively.
"""

import time
from typing import List, Optional, Sequence, Tuple

from shapely.geometry import Point as ShapelyPoint
from shapely.strtree import STRtree
from shapely.validation import make_valid

from ..config import HealingEngineConfig
from ..errors import InvalidParameter, descriptor_for
from ..geometry.shapely_utils import polygons_from_geometry
from ..models.enums import GeometricErrorType
from ..models.geometry import Curve, Point, Polygon
from ..models.results import HealingResult
from ..models.wall_solid import HealingOperation, WallSolid
from .base_engine import BaseEngine


def _midpoint(a: Point, b: Point, tolerance: float) -> Point:
    return Point.at((a.x + b.x) / 2.0, (a.y + b.y) / 2.0, creation_method="healing", tolerance=tolerance)


class HealingEngine(BaseEngine):
    """Repairs slivers, micro-gaps, near-duplicate vertices and self-intersections."""

    config_class = HealingEngineConfig

    def _tolerance(self, tolerance: Optional[float]) -> float:
        tolerance = self.config.tolerance if tolerance is None else tolerance
        if tolerance <= 0:
            raise InvalidParameter(f"Tolerance must be positive, got {tolerance!r}", operation="heal_shape")
        return tolerance

    # ------------------------------------------------------------------
    # Ring level fixes
    # ------------------------------------------------------------------

    def merge_duplicate_vertices(
        self,
        points: Sequence[Point],
        tolerance: float,
        closed: bool = True,
    ) -> Tuple[List[Point], int]:
        """
        Drop vertices within tolerance of the previous kept vertex, then snap
        non-neighbouring vertices within tolerance of each other together.

        Open curves keep their true end points. A ring that would collapse
        below 3 vertices (2 for open curves) is returned unchanged. The count
        covers dropped vertices plus snapped pairs.
        """
        points = list(points)
        minimum = 3 if closed else 2
        if len(points) < 2:
            return points, 0

        kept = [points[0]]
        body = points[1:] if closed else points[1:-1]
        for p in body:
            if p.distance_to(kept[-1]) > tolerance:
                kept.append(p)
        if closed:
            while len(kept) > 1 and kept[-1].distance_to(kept[0]) <= tolerance:
                kept.pop()
        else:
            last = points[-1]
            if len(kept) > 1 and last.distance_to(kept[-1]) <= tolerance:
                kept[-1] = last
            else:
                kept.append(last)

        if len(kept) < minimum:
            return points, 0
        snapped = self._snap_close_vertices(kept, tolerance, closed)
        return kept, len(points) - len(kept) + snapped

    def _snap_close_vertices(self, points: List[Point], tolerance: float, closed: bool) -> int:
        """Move non-neighbouring vertex pairs within tolerance onto one point, closest pairs first."""
        n = len(points)
        if n < 4:
            return 0
        tree = STRtree([ShapelyPoint(p.as_tuple()) for p in points])
        first, second = tree.query(tree.geometries, predicate="dwithin", distance=tolerance)

        pairs = []
        for i, j in zip(first.tolist(), second.tolist()):
            gap = j - i
            if gap <= 1 or (closed and gap == n - 1):
                continue
            if not closed and i == 0 and j == n - 1:
                continue
            distance = points[i].distance_to(points[j])
            if distance > 0:
                pairs.append((distance, i, j))
        pairs.sort()

        moved = set()
        for _, i, j in pairs:
            if i in moved or j in moved:
                continue
            if not closed and i == 0:
                target = points[i]
            elif not closed and j == n - 1:
                target = points[j]
            else:
                target = _midpoint(points[i], points[j], tolerance)
            points[i] = points[j] = target
            moved.update((i, j))
        return len(moved) // 2

    def remove_micro_segments(
        self,
        points: Sequence[Point],
        threshold: float,
        closed: bool = True,
    ) -> Tuple[List[Point], int]:
        """Collapse segments shorter than threshold to their midpoint (open-curve ends stay fixed)."""
        points = list(points)
        minimum = 3 if closed else 2
        removed = 0
        while len(points) > minimum:
            n = len(points)
            count = n if closed else n - 1
            short = next(
                (i for i in range(count) if points[i].distance_to(points[(i + 1) % n]) < threshold),
                None,
            )
            if short is None:
                break
            j = (short + 1) % n
            if not closed and short == 0:
                del points[j]
            elif not closed and j == n - 1:
                del points[short]
            else:
                points[short] = _midpoint(points[short], points[j], threshold)
                del points[j]
            removed += 1
        return points, removed

    # ------------------------------------------------------------------
    # Face level fixes
    # ------------------------------------------------------------------

    def _is_sliver(self, poly: Polygon) -> bool:
        threshold = self.config.sliver_face_threshold
        return poly.isoperimetric_ratio < threshold or poly.area <= threshold ** 2

    def remove_sliver_faces(self, polygons: Sequence[Polygon]) -> Tuple[List[Polygon], int]:
        """
        Remove sliver and degenerate faces; the largest face is always kept.

        A largest face that is itself a sliver stays and is logged as a warning.
        """
        polygons = list(polygons)
        if not polygons:
            return polygons, 0
        largest = max(polygons, key=lambda p: p.area)
        if self._is_sliver(largest):
            self.log_warning(
                "Largest face is a sliver",
                face_id=largest.id,
                area=largest.area,
                isoperimetric_ratio=largest.isoperimetric_ratio,
            )
        if len(polygons) < 2:
            return polygons, 0
        kept = [p for p in polygons if p is largest or not self._is_sliver(p)]
        return kept, len(polygons) - len(kept)

    def repair_self_intersections(self, polygons: Sequence[Polygon], tolerance: float) -> Tuple[List[Polygon], int]:
        """Rebuild self-intersecting faces with shapely make_valid, keeping polygonal parts."""
        repaired: List[Polygon] = []
        count = 0
        for poly in polygons:
            if not poly.self_intersects:
                repaired.append(poly)
                continue
            parts = polygons_from_geometry(make_valid(poly.shape), creation_method="healing", tolerance=tolerance)
            if parts:
                repaired.extend(parts)
                count += 1
            else:
                repaired.append(poly)
        return repaired, count

    def _heal_rings(self, polygons: Sequence[Polygon], fix) -> Tuple[List[Polygon], int]:
        healed = []
        total = 0
        for poly in polygons:
            outer, changed = fix(poly.outer_ring)
            holes = []
            for hole in poly.holes:
                ring, m = fix(hole)
                changed += m
                holes.append(ring)
            total += changed
            healed.append(poly.with_rings(outer, holes) if changed else poly)
        return healed, total

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def heal_shape(self, solid: WallSolid, tolerance: Optional[float] = None) -> HealingResult:
        """
        Heal one wall solid.

        Returns:
            HealingResult with the healed solid (new instance when anything was
            applied) and the names of the applied operations in order.
        """
        start_time = time.time()
        tolerance = self._tolerance(tolerance)
        if not self.config.enable_auto_healing:
            return HealingResult(success=True, healed_solid=solid, warnings=["healing: auto healing disabled"],
                                 processing_time=(time.time() - start_time) * 1000)

        micro_threshold = max(tolerance, self.config.micro_gap_threshold)
        polygons = list(solid.solid_geometry)
        operations: List[HealingOperation] = []
        vertices_merged = gaps_eliminated = faces_removed = 0

        for _ in range(self.config.max_healing_iterations):
            applied_before = len(operations)

            polygons, merged = self._heal_rings(
                polygons, lambda ring: self.merge_duplicate_vertices(ring, tolerance))
            if merged:
                vertices_merged += merged
                operations.append(HealingOperation(
                    operation_type="merge_duplicate_vertices",
                    elements_affected=merged,
                    tolerance=tolerance,
                    description=f"Merged {merged} vertices closer than {tolerance:g} mm",
                ))

            polygons, gaps = self._heal_rings(
                polygons, lambda ring: self.remove_micro_segments(ring, micro_threshold))
            if gaps:
                gaps_eliminated += gaps
                operations.append(HealingOperation(
                    operation_type="remove_micro_segments",
                    elements_affected=gaps,
                    tolerance=micro_threshold,
                    description=f"Collapsed {gaps} segments shorter than {micro_threshold:g} mm",
                ))

            polygons, slivers = self.remove_sliver_faces(polygons)
            if slivers:
                faces_removed += slivers
                operations.append(HealingOperation(
                    operation_type="remove_sliver_faces",
                    elements_affected=slivers,
                    tolerance=self.config.sliver_face_threshold,
                    description=f"Removed {slivers} sliver faces",
                ))

            polygons, repaired = self.repair_self_intersections(polygons, tolerance)
            if repaired:
                operations.append(HealingOperation(
                    operation_type="repair_self_intersections",
                    elements_affected=repaired,
                    tolerance=tolerance,
                    description=f"Rebuilt {repaired} self-intersecting faces",
                ))

            if len(operations) == applied_before:
                break

        processing_time = (time.time() - start_time) * 1000
        warnings = []
        if polygons and self._is_sliver(max(polygons, key=lambda p: p.area)):
            warnings.append(f"sliver: wall {solid.id} keeps a sliver as its largest face")
        if not operations:
            return HealingResult(success=True, healed_solid=solid, warnings=warnings, processing_time=processing_time)

        if not polygons or all(p.area <= 0 for p in polygons):
            message = f"Healing wall {solid.id} left no valid faces"
            self.log_error("Shape healing failed", wall_id=solid.id)
            return HealingResult(
                success=False,
                errors=[descriptor_for(GeometricErrorType.DEGENERATE_GEOMETRY, message, operation="heal_shape",
                                       solid=solid, tolerance=tolerance)],
                processing_time=processing_time,
            )

        healed = solid.with_healing(operations, solid_geometry=polygons)
        applied = list(dict.fromkeys(op.operation_type for op in operations))
        self.log_info(
            "Shape healing completed",
            wall_id=solid.id,
            operations_applied=applied,
            vertices_merged=vertices_merged,
            gaps_eliminated=gaps_eliminated,
            faces_removed=faces_removed,
            duration_ms=int(processing_time),
        )
        return HealingResult(
            success=True,
            healed_solid=healed,
            operations_applied=applied,
            vertices_merged=vertices_merged,
            gaps_eliminated=gaps_eliminated,
            faces_removed=faces_removed,
            warnings=warnings,
            processing_time=processing_time,
        )

    def heal_curve(self, curve: Curve, tolerance: Optional[float] = None) -> Tuple[Curve, int]:
        """Baseline clean-up before re-offsetting: merge near-duplicates and collapse micro segments."""
        tolerance = self._tolerance(tolerance)
        points, merged = self.merge_duplicate_vertices(curve.points, tolerance, closed=curve.is_closed)
        points, gaps = self.remove_micro_segments(
            points, max(tolerance, self.config.micro_gap_threshold), closed=curve.is_closed)
        if not merged and not gaps:
            return curve, 0
        return curve.with_points(points), merged + gaps
