"""
Simplification engine – point reduction that keeps architectural intent.

Each boundary ring is reduced with Douglas-Peucker between protected anchor
points, then collinear leftovers are removed. Corners, junction points and the
locations recorded in IntersectionData are anchors and are never removed. When
the result drifts from the original area or perimeter by more than the
tolerance allows, the original geometry is returned with
accuracy_preserved=False.
"""

import time
from typing import List, Optional, Sequence, Set

from ..config import SimplificationEngineConfig
from ..errors import InvalidParameter
from ..geometry.vector_utils import Vec, distance_to_segment, point_distance, turning_angle
from ..models.geometry import Point, Polygon
from ..models.results import SimplificationResult
from ..models.wall_solid import WallSolid
from .base_engine import BaseEngine

# Points created by junction resolution are architectural features
JUNCTION_METHODS = {"junction", "miter_apex", "offset_intersection"}


def _rdp_keep(coords: Sequence[Vec], tolerance: float) -> List[bool]:
    """Douglas-Peucker keep-mask over an open chain (both ends kept)."""
    n = len(coords)
    keep = [False] * n
    if n == 0:
        return keep
    keep[0] = keep[-1] = True
    stack = [(0, n - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        farthest, max_d = first, -1.0
        for i in range(first + 1, last):
            d = distance_to_segment(coords[i], coords[first], coords[last])
            if d > max_d:
                farthest, max_d = i, d
        if max_d > tolerance:
            keep[farthest] = True
            stack.append((first, farthest))
            stack.append((farthest, last))
    return keep


def rdp_simplify(points: Sequence, tolerance: float) -> List:
    """
    Douglas-Peucker simplification of an open chain.

    Works on Points or (x, y) tuples and returns the kept items unchanged.
    Distances are measured to the chord segment, not its infinite line.
    """
    points = list(points)
    coords = [p.as_tuple() if isinstance(p, Point) else (p[0], p[1]) for p in points]
    keep = _rdp_keep(coords, tolerance)
    return [p for p, k in zip(points, keep) if k]


def eliminate_collinear_points(
    points: Sequence,
    angle_threshold: float,
    closed: bool = True,
    protected: Optional[Set[int]] = None,
    min_vertices: int = 3,
) -> List:
    """Drop vertices turning less than angle_threshold degrees (protected indices stay)."""
    items = list(enumerate(points))
    protected = protected or set()

    def xy(p):
        return p.as_tuple() if isinstance(p, Point) else (p[0], p[1])

    changed = True
    while changed and len(items) > min_vertices:
        changed = False
        n = len(items)
        indices = range(n) if closed else range(1, n - 1)
        for k in indices:
            original_index, p = items[k]
            if original_index in protected:
                continue
            prev_p = items[(k - 1) % n][1]
            next_p = items[(k + 1) % n][1]
            if abs(turning_angle(xy(prev_p), xy(p), xy(next_p))) < angle_threshold:
                del items[k]
                changed = True
                break
    return [p for _, p in items]


class SimplificationEngine(BaseEngine):
    """Reduces point count of wall solids within an accuracy budget."""

    config_class = SimplificationEngineConfig

    def effective_tolerance(self, solid: WallSolid, tolerance: Optional[float]) -> float:
        """Caller tolerance, raised to the adaptive level and capped at max_simplification_level × thickness."""
        cfg = self.config
        tolerance = cfg.tolerance if tolerance is None else tolerance
        if tolerance <= 0:
            raise InvalidParameter(f"Tolerance must be positive, got {tolerance!r}",
                                   operation="simplify_wall_geometry")
        tolerance = max(tolerance, solid.thickness * cfg.adaptive_tolerance_factor)
        return min(tolerance, solid.thickness * cfg.max_simplification_level)

    def _protected(self, ring: List[Point], key_points: List[Point], tolerance: float) -> Set[int]:
        if not self.config.preserve_architectural_features:
            return set()
        coords = [p.as_tuple() for p in ring]
        n = len(coords)
        protected = set()
        for i, p in enumerate(ring):
            turn = abs(turning_angle(coords[i - 1], coords[i], coords[(i + 1) % n]))
            if turn > self.config.corner_angle_threshold:
                protected.add(i)
            elif p.creation_method in JUNCTION_METHODS:
                protected.add(i)
            elif any(point_distance(coords[i], k.as_tuple()) <= tolerance for k in key_points):
                protected.add(i)
        return protected

    def simplify_ring(self, ring: List[Point], tolerance: float, key_points: List[Point]) -> List[Point]:
        """Simplified closed ring; returned unchanged when it cannot keep min_vertices_per_ring."""
        n = len(ring)
        minimum = self.config.min_vertices_per_ring
        if n <= minimum:
            return list(ring)
        coords = [p.as_tuple() for p in ring]
        protected = self._protected(ring, key_points, tolerance)

        anchors = sorted(protected)
        if len(anchors) < 2:
            start = anchors[0] if anchors else 0
            far = max(range(n), key=lambda i: point_distance(coords[i], coords[start]))
            anchors = sorted({start, far})

        keep = [False] * n
        for k, a in enumerate(anchors):
            b = anchors[(k + 1) % len(anchors)]
            chain = list(range(a, b + 1)) if b > a else list(range(a, n)) + list(range(0, b + 1))
            mask = _rdp_keep([coords[i] for i in chain], tolerance)
            for i, kept in zip(chain, mask):
                if kept:
                    keep[i] = True

        kept_indices = [i for i in range(n) if keep[i]]
        reduced = [ring[i] for i in kept_indices]
        reduced_protected = {pos for pos, i in enumerate(kept_indices) if i in protected}
        reduced = eliminate_collinear_points(
            reduced,
            self.config.collinear_angle_threshold,
            closed=True,
            protected=reduced_protected,
            min_vertices=minimum,
        )
        if len(reduced) < minimum:
            return list(ring)
        return reduced

    def simplify_wall_geometry(self, solid: WallSolid, tolerance: Optional[float] = None) -> SimplificationResult:
        """
        Simplify every face of a wall solid.

        Returns:
            SimplificationResult; simplified_solid is the input itself when
            nothing was removed, the result was invalid, or accuracy was lost.
        """
        start_time = time.time()
        tolerance = self.effective_tolerance(solid, tolerance)
        key_points = [p for data in solid.intersection_data for p in data.key_points]
        original_complexity = solid.complexity

        simplified: List[Polygon] = []
        removed = 0
        for poly in solid.solid_geometry:
            outer = self.simplify_ring(poly.outer_ring, tolerance, key_points)
            holes = [self.simplify_ring(h, tolerance, key_points) for h in poly.holes]
            dropped = len(poly.outer_ring) - len(outer) + sum(len(a) - len(b) for a, b in zip(poly.holes, holes))
            removed += dropped
            simplified.append(poly.with_rings(outer, holes) if dropped else poly)

        def unchanged(accuracy_preserved: bool, warnings: List[str]) -> SimplificationResult:
            return SimplificationResult(
                success=True,
                simplified_solid=solid,
                points_removed=0,
                accuracy_preserved=accuracy_preserved,
                original_complexity=original_complexity,
                simplified_complexity=original_complexity,
                tolerance_used=tolerance,
                warnings=warnings,
                processing_time=(time.time() - start_time) * 1000,
            )

        if removed == 0:
            return unchanged(True, [])

        if any(p.self_intersects or not p.shape.is_valid for p in simplified):
            self.log_warning("Simplification produced invalid geometry; original kept", wall_id=solid.id)
            return unchanged(True, ["simplification: result invalid, original geometry kept"])

        area_delta = abs(sum(p.area for p in simplified) - solid.area)
        perimeter_delta = abs(sum(p.perimeter for p in simplified) - solid.perimeter)
        if area_delta > tolerance * solid.perimeter or perimeter_delta > 2.0 * tolerance * removed:
            self.log_warning(
                "Simplification exceeded accuracy budget; original kept",
                wall_id=solid.id,
                area_delta=area_delta,
                perimeter_delta=perimeter_delta,
            )
            return unchanged(False, [
                f"simplification: area/perimeter deviation beyond {tolerance:g} mm, original geometry kept"
            ])

        metadata = dict(solid.metadata)
        metadata["simplification_tolerance"] = tolerance
        result_solid = solid.replace(solid_geometry=simplified, metadata=metadata)
        processing_time = (time.time() - start_time) * 1000
        self.log_info(
            "Geometry simplified",
            wall_id=solid.id,
            points_removed=removed,
            tolerance=tolerance,
            duration_ms=int(processing_time),
        )
        return SimplificationResult(
            success=True,
            simplified_solid=result_solid,
            points_removed=removed,
            accuracy_preserved=True,
            original_complexity=original_complexity,
            simplified_complexity=result_solid.complexity,
            tolerance_used=tolerance,
            processing_time=processing_time,
        )
