"""
Offset engine – robust baseline offsetting.

Offsets a baseline by ±distance (half the wall thickness) into a left and a
right boundary curve. Joins between consecutive offset segments follow the
requested strategy (miter, bevel, round); the inner side of a corner is always
trimmed at the offset-line intersection. Micro segments are dropped and
near-collinear vertices reported as warnings. When enable_fallback is set a
self-intersecting result is retried with bevel joins, then with a simplified
baseline, a baseline on a coarser grid and finally chunk by chunk before
giving up.
"""

import math
import time
from typing import List, Optional, Tuple, Union

import shapely
from shapely.geometry import LinearRing, LineString

from ..config import OffsetEngineConfig
from ..constants import (
    CURVED_BASELINE_CURVATURE,
    JOIN_BEVEL_MAX_DEG,
    JOIN_MITER_MAX_DEG,
    JOIN_ROUND_MAX_DEG,
    REDUCED_PRECISION_FACTOR,
    SEGMENTED_OFFSET_MIN_CHUNK,
    SIMPLIFIED_OFFSET_TOLERANCE_MM,
    THICK_WALL_MM,
)
from ..errors import InvalidParameter, OffsetFailure, descriptor_for
from ..geometry.junctions import face_from_offsets
from ..geometry.vector_utils import (
    Vec,
    add,
    cross,
    deviation_from_chord,
    dot,
    extended_intersection,
    heading,
    left_normal,
    offset_point,
    point_distance,
    scale,
    sub,
)
from ..models.enums import GeometricErrorType, JoinType, WallType
from ..models.geometry import Curve, Polygon
from ..models.results import OffsetResult
from ..models.wall_solid import WallSolid
from .base_engine import BaseEngine

# Warn when a baseline has more segments than this
LARGE_SEGMENT_COUNT = 1000
# |sin(turn)| below this is a straight continuation
STRAIGHT_SIN_EPS = 1e-9


def _rotate(v: Vec, angle: float) -> Vec:
    c, s = math.cos(angle), math.sin(angle)
    return (v[0] * c - v[1] * s, v[0] * s + v[1] * c)


def _drop_micro_segments(coords: List[Vec], closed: bool, min_length: float) -> Tuple[List[Vec], int]:
    """Remove vertices that make segments shorter than min_length. Returns (coords, dropped)."""
    if not coords:
        return [], 0
    if closed and len(coords) > 1 and coords[0] == coords[-1]:
        coords = coords[:-1]
    kept = [coords[0]]
    dropped = 0
    for c in coords[1:]:
        if point_distance(c, kept[-1]) < min_length:
            dropped += 1
            continue
        kept.append(c)
    if not closed and len(kept) >= 2 and kept[-1] != coords[-1]:
        # the true end point replaces the last kept vertex
        kept[-1] = coords[-1]
    if closed:
        while len(kept) > 1 and point_distance(kept[-1], kept[0]) < min_length:
            kept.pop()
            dropped += 1
    return kept, dropped


def _collinear_vertices(coords: List[Vec], closed: bool, tolerance: float) -> List[int]:
    n = len(coords)
    indices = []
    rng = range(n) if closed else range(1, n - 1)
    for i in rng:
        prev_pt = coords[(i - 1) % n]
        next_pt = coords[(i + 1) % n]
        if dot(sub(coords[i], prev_pt), sub(next_pt, coords[i])) <= 0:
            continue
        if deviation_from_chord(coords[i], prev_pt, next_pt) <= tolerance:
            indices.append(i)
    return indices


def _is_simple(coords: List[Vec], closed: bool) -> bool:
    if closed:
        if len(coords) < 3:
            return False
        return LinearRing(coords).is_simple
    if len(coords) < 2:
        return False
    return LineString(coords).is_simple


def _plain_coords(geom, closed: bool) -> List[Vec]:
    coords = [(c[0], c[1]) for c in geom.coords]
    if closed and len(coords) > 1 and coords[0] == coords[-1]:
        coords = coords[:-1]
    return coords


def _chunk_ranges(n: int) -> List[Tuple[int, int]]:
    """(first, last) vertex indices of overlapping chunks covering n baseline points."""
    size = max(SEGMENTED_OFFSET_MIN_CHUNK, n // 4)
    return [(i, min(i + size, n) - 1) for i in range(0, n - 1, size - 1)]


def _chunk_offset(coords: List[Vec], d: float) -> Optional[List[Vec]]:
    """GEOS bevel offset of one open chunk, oriented like the chunk; None unless a single line."""
    offset = LineString(coords).offset_curve(d, join_style="bevel")
    if offset.is_empty or offset.geom_type != "LineString":
        return None
    points = _plain_coords(offset, False)
    start = offset_point(coords[0], heading(coords[0], coords[1]), d)
    if point_distance(points[-1], start) < point_distance(points[0], start):
        points.reverse()
    return points


class OffsetEngine(BaseEngine):
    """Builds offset curves and the wall solids bounded by them."""

    config_class = OffsetEngineConfig

    def validate_offset_parameters(self, baseline: Optional[Curve], distance: float, tolerance: float) -> None:
        """Raise InvalidParameter for a missing baseline, bad distance or tolerance."""
        if tolerance is None or not math.isfinite(tolerance) or tolerance <= 0:
            raise InvalidParameter(f"Tolerance must be positive, got {tolerance!r}", operation="offset_curve")
        if baseline is None:
            raise InvalidParameter("Offset needs a baseline", operation="offset_curve")
        if distance is None or not math.isfinite(distance) or abs(distance) < tolerance:
            raise InvalidParameter(
                f"Offset distance {distance!r} must be at least the tolerance {tolerance:g}",
                operation="offset_curve",
            )

    def select_optimal_join_type(self, angle_deg: float, thickness: float, curvature: float = 0.0) -> JoinType:
        """
        Join strategy for a corner turning by angle_deg.

        Gentle turns get round joins; moderate turns bevel on thick or curved
        walls; sharp turns miter unless the miter would exceed the limit.
        """
        angle = abs(angle_deg)
        if angle < JOIN_ROUND_MAX_DEG:
            return JoinType.ROUND
        if angle < JOIN_BEVEL_MAX_DEG:
            if thickness > THICK_WALL_MM or curvature > CURVED_BASELINE_CURVATURE:
                return JoinType.BEVEL
            return JoinType.ROUND
        if angle <= JOIN_MITER_MAX_DEG:
            half = math.radians(angle) / 2.0
            ratio = 1.0 / max(math.cos(half), 1e-12)
            if ratio > self.config.miter_limit:
                return JoinType.BEVEL
            return JoinType.MITER
        return JoinType.MITER

    def offset_curve(
        self,
        baseline: Curve,
        distance: float,
        join_type: Optional[Union[JoinType, str]] = None,
        tolerance: Optional[float] = None,
    ) -> OffsetResult:
        """
        Offset baseline by ±distance.

        Returns an OffsetResult with both offsets on success. On failure no
        partial offsets are returned; errors carries an offset_failure.

        Raises:
            InvalidParameter: baseline missing, distance or tolerance invalid.
        """
        start_time = time.time()
        tolerance = self.config.tolerance if tolerance is None else tolerance
        self.validate_offset_parameters(baseline, distance, tolerance)
        requested = JoinType(join_type) if join_type is not None else self.config.default_join_type
        distance = abs(distance)
        closed = baseline.is_closed
        warnings: List[str] = []

        coords = [p.as_tuple() for p in baseline.points]
        min_length = max(self.config.min_segment_length, tolerance)
        coords, dropped = _drop_micro_segments(coords, closed, min_length)
        if dropped:
            warnings.append(f"micro: dropped {dropped} segment(s) shorter than {min_length:g} mm")

        needed = 3 if closed else 2
        if len(coords) < needed:
            return self._failure(
                f"Baseline collapses to {len(coords)} point(s) after dropping micro segments",
                warnings, start_time, baseline,
            )

        collinear = _collinear_vertices(coords, closed, tolerance)
        if collinear:
            warnings.append(f"collinear: {len(collinear)} near-collinear point(s) at indices {collinear}")

        segment_count = len(coords) if closed else len(coords) - 1
        if segment_count > LARGE_SEGMENT_COUNT:
            warnings.append(f"complexity: baseline has {segment_count} segments")

        strategies = [requested]
        if self.config.enable_fallback and requested != JoinType.BEVEL:
            strategies.append(JoinType.BEVEL)

        for strategy in strategies:
            join_warnings: List[str] = []
            left = self._offset_side(coords, distance, strategy, closed, join_warnings)
            right = self._offset_side(coords, -distance, strategy, closed, join_warnings)
            if self._offsets_simple(left, right, closed):
                if strategy != requested:
                    warnings.append(f"fallback: {requested.value} join self-intersected; {strategy.value} used")
                warnings.extend(join_warnings)
                return self._success(baseline, left, right, strategy, strategy != requested, strategy.value,
                                     warnings, start_time, tolerance)
            self.log_warning("Offset self-intersects", join_type=strategy.value)

        tried = [s.value for s in strategies]
        if self.config.enable_fallback:
            fallbacks = [
                ("simplified", self._try_simplified_offset),
                ("reduced_precision", self._try_reduced_precision_offset),
                ("segmented", self._try_segmented_offset),
            ]
            for name, attempt in fallbacks:
                tried.append(name)
                join_warnings = []
                offsets = attempt(coords, distance, closed, tolerance, join_warnings)
                if offsets is None:
                    continue
                left, right = offsets
                if self._offsets_simple(left, right, closed):
                    warnings.append(f"fallback: {requested.value} join self-intersected; {name} offset used")
                    warnings.extend(join_warnings)
                    return self._success(baseline, left, right, JoinType.BEVEL, True, name,
                                         warnings, start_time, tolerance)
                self.log_warning("Fallback offset self-intersects", fallback=name)

        return self._failure(
            f"No join strategy produced simple offsets (tried {', '.join(tried)})", warnings, start_time, baseline
        )

    def _offsets_simple(self, left: List[Vec], right: List[Vec], closed: bool) -> bool:
        return _is_simple(left, closed) and _is_simple(right, closed)

    def _success(
        self,
        baseline: Curve,
        left: List[Vec],
        right: List[Vec],
        join_type: JoinType,
        fallback_used: bool,
        method: str,
        warnings: List[str],
        start_time: float,
        tolerance: float,
    ) -> OffsetResult:
        processing_time = (time.time() - start_time) * 1000
        self.log_info(
            "Offset completed",
            join_type=join_type.value,
            method=method,
            fallback_used=fallback_used,
            left_points=len(left),
            right_points=len(right),
            warnings=len(warnings),
            duration_ms=int(processing_time),
        )
        return OffsetResult(
            success=True,
            left_offset=self._to_curve(baseline, left, tolerance),
            right_offset=self._to_curve(baseline, right, tolerance),
            join_type=join_type,
            warnings=warnings,
            fallback_used=fallback_used,
            processing_time=processing_time,
        )

    # ------------------------------------------------------------------
    # Fallback offsets, tried in order once every join strategy failed.
    # Each returns (left, right) or None when it has nothing to offer.
    # ------------------------------------------------------------------

    def _try_simplified_offset(
        self, coords: List[Vec], distance: float, closed: bool, tolerance: float, warnings: List[str]
    ) -> Optional[Tuple[List[Vec], List[Vec]]]:
        """Bevel offset of the baseline with vertices within 1 mm of their neighbours' chord removed."""
        line = LinearRing(coords) if closed else LineString(coords)
        simplified = _plain_coords(line.simplify(SIMPLIFIED_OFFSET_TOLERANCE_MM, preserve_topology=False), closed)
        if len(simplified) == len(coords) or len(simplified) < (3 if closed else 2):
            return None
        warnings.append(f"simplified: baseline reduced from {len(coords)} to {len(simplified)} points")
        return (
            self._offset_side(simplified, distance, JoinType.BEVEL, closed, warnings),
            self._offset_side(simplified, -distance, JoinType.BEVEL, closed, warnings),
        )

    def _try_reduced_precision_offset(
        self, coords: List[Vec], distance: float, closed: bool, tolerance: float, warnings: List[str]
    ) -> Optional[Tuple[List[Vec], List[Vec]]]:
        """Bevel offset of the baseline snapped to a grid REDUCED_PRECISION_FACTOR times coarser."""
        grid = tolerance * REDUCED_PRECISION_FACTOR
        line = LinearRing(coords) if closed else LineString(coords)
        snapped = shapely.set_precision(line, grid)
        if snapped.is_empty:
            return None
        reduced, _ = _drop_micro_segments(_plain_coords(snapped, closed), closed, grid)
        if len(reduced) < (3 if closed else 2):
            return None
        warnings.append(f"reduced_precision: baseline snapped to a {grid:g} mm grid")
        return (
            self._offset_side(reduced, distance, JoinType.BEVEL, closed, warnings),
            self._offset_side(reduced, -distance, JoinType.BEVEL, closed, warnings),
        )

    def _try_segmented_offset(
        self, coords: List[Vec], distance: float, closed: bool, tolerance: float, warnings: List[str]
    ) -> Optional[Tuple[List[Vec], List[Vec]]]:
        """
        Offset an open baseline in overlapping chunks.

        Each chunk is offset by GEOS, which removes loops local to the chunk;
        consecutive chunks are stitched with a bevel join at their shared vertex.
        """
        if closed:
            return None
        chunks = _chunk_ranges(len(coords))
        sides = []
        for d in (distance, -distance):
            stitched: List[Vec] = []
            for k, (first, last) in enumerate(chunks):
                piece = _chunk_offset(coords[first:last + 1], d)
                if piece is None:
                    self.log_warning("Chunk offset is not a single line", first=first, last=last)
                    return None
                if k == 0:
                    stitched.extend(piece[:-1])
                else:
                    u_in = heading(coords[first - 1], coords[first])
                    u_out = heading(coords[first], coords[first + 1])
                    stitched.extend(self._join(coords, first, u_in, left_normal(u_in), u_out, left_normal(u_out), d,
                                               JoinType.BEVEL, warnings))
                    stitched.extend(piece[1:-1])
            stitched.append(offset_point(coords[-1], heading(coords[-2], coords[-1]), d))
            sides.append(stitched)
        warnings.append(f"segmented: baseline offset in {len(chunks)} chunk(s)")
        return sides[0], sides[1]

    def _failure(self, message: str, warnings: List[str], start_time: float, baseline: Curve) -> OffsetResult:
        processing_time = (time.time() - start_time) * 1000
        self.log_error("Offset failed", reason=message, duration_ms=int(processing_time))
        return OffsetResult(
            success=False,
            warnings=warnings,
            errors=[descriptor_for(GeometricErrorType.OFFSET_FAILURE, message, operation="offset_curve",
                                   baseline_points=len(baseline.points))],
            processing_time=processing_time,
        )

    def _to_curve(self, baseline: Curve, coords: List[Vec], tolerance: float) -> Curve:
        return Curve.from_coordinates(
            coords,
            curve_type=baseline.curve_type,
            is_closed=baseline.is_closed,
            creation_method="offset",
            tolerance=tolerance,
        )

    def _offset_side(
        self,
        coords: List[Vec],
        d: float,
        join_type: JoinType,
        closed: bool,
        warnings: List[str],
    ) -> List[Vec]:
        """Offset one side by signed distance d (positive = left of travel direction)."""
        n = len(coords)
        seg_count = n if closed else n - 1
        dirs = [heading(coords[i], coords[(i + 1) % n]) for i in range(seg_count)]
        normals = [left_normal(u) for u in dirs]

        out: List[Vec] = []
        if not closed:
            out.append(add(coords[0], scale(normals[0], d)))
            vertex_range = range(1, n - 1)
        else:
            vertex_range = range(n)

        for v in vertex_range:
            a = (v - 1) % seg_count
            b = v % seg_count
            out.extend(self._join(coords, v, dirs[a], normals[a], dirs[b], normals[b], d, join_type, warnings))

        if not closed:
            out.append(add(coords[-1], scale(normals[-1], d)))
        return out

    def _join(
        self,
        coords: List[Vec],
        v: int,
        ua: Vec,
        na: Vec,
        ub: Vec,
        nb: Vec,
        d: float,
        join_type: JoinType,
        warnings: List[str],
    ) -> List[Vec]:
        vertex = coords[v]
        pa = add(vertex, scale(na, d))
        pb = add(vertex, scale(nb, d))
        turn_sin = cross(ua, ub)
        turn_cos = dot(ua, ub)

        if abs(turn_sin) <= STRAIGHT_SIN_EPS:
            if turn_cos > 0:
                return [pa]
            # full reversal: cap the end
            return [pa, pb]

        outer = turn_sin * d < 0
        if not outer:
            # inner side: trim at the offset-line intersection
            hit = extended_intersection(pa, add(pa, ua), pb, add(pb, ub))
            return [hit] if hit is not None else [pa, pb]

        if join_type == JoinType.MITER:
            hit = extended_intersection(pa, add(pa, ua), pb, add(pb, ub))
            if hit is not None and point_distance(hit, vertex) <= self.config.miter_limit * abs(d):
                return [hit]
            warnings.append(f"miter limit exceeded at vertex {v}; bevel used")
            return [pa, pb]

        if join_type == JoinType.BEVEL:
            return [pa, pb]

        # round: arc of radius |d| around the baseline vertex
        sweep = math.atan2(turn_sin, turn_cos)
        steps = max(1, int(math.ceil(self.config.round_segments * abs(sweep) / (math.pi / 2))))
        radial = scale(na, d)
        return [add(vertex, _rotate(radial, sweep * k / steps)) for k in range(steps + 1)]

    def create_wall_solid(
        self,
        baseline: Curve,
        thickness: float,
        wall_type: Union[WallType, str] = WallType.LAYOUT,
        join_type: Optional[Union[JoinType, str]] = None,
        tolerance: Optional[float] = None,
        wall_id: Optional[str] = None,
    ) -> WallSolid:
        """
        Build a WallSolid from a baseline: offsets at ±thickness/2 and the face between them.

        Raises:
            InvalidParameter: thickness is non-positive or the baseline is too short.
            OffsetFailure: no join strategy produced a simple pair of offsets.
        """
        if thickness is None or not math.isfinite(thickness) or thickness <= 0:
            raise InvalidParameter(f"Wall thickness must be positive, got {thickness!r}", operation="create_wall_solid")
        tolerance = self.config.tolerance if tolerance is None else tolerance
        result = self.offset_curve(baseline, thickness / 2.0, join_type, tolerance)
        if not result.success:
            raise OffsetFailure(
                result.errors[0].message,
                operation="create_wall_solid",
                tolerance=tolerance,
                context={
                    "baseline": baseline,
                    "thickness": thickness,
                    "wall_type": WallType(wall_type).value,
                    "wall_id": wall_id,
                    "warnings": result.warnings,
                },
            )

        left = result.left_offset
        right = result.right_offset
        # closed baselines: the larger offset ring is the outside, the other the hole
        outer, holes = face_from_offsets(
            [p.as_tuple() for p in left.points],
            [p.as_tuple() for p in right.points],
            baseline.is_closed,
        )
        polygon = Polygon.from_coordinates(outer, holes, creation_method="offset", tolerance=tolerance)

        fields = {}
        if wall_id is not None:
            fields["id"] = wall_id
        return WallSolid(
            baseline=baseline,
            thickness=thickness,
            wall_type=WallType(wall_type),
            left_offset=left,
            right_offset=right,
            solid_geometry=[polygon],
            join_types={"interior": result.join_type},
            metadata={"offset_warnings": result.warnings, "tolerance": tolerance},
            **fields,
        )
