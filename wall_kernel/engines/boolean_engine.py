"""
Boolean engine – tolerance-aware composition of wall solids.

Union, intersection and difference run on shapely with the caller's tolerance
as the precision grid, so results do not depend on a fixed epsilon. Invalid
inputs (self-intersecting or zero-area faces) raise BooleanFailure; valid
outputs that contain slivers are flagged requires_healing instead of failing.
Two-wall T/L composition lives here too: walls are trimmed/extended to meet
exactly and then unioned. Different thicknesses at a junction only warn.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import shapely
from shapely.geometry.base import BaseGeometry

from ..config import BooleanEngineConfig
from ..constants import JUNCTION_ACCURACY, JUNCTION_FALLBACK_ACCURACY
from ..errors import BooleanFailure, InvalidParameter, descriptor_for
from ..geometry import junctions as J
from ..geometry.shapely_utils import polygons_from_geometry, repair_geometry
from ..geometry.vector_utils import Vec, extended_intersection, left_normal, point_distance
from ..models.enums import GeometricErrorType, JoinType, JunctionType
from ..models.geometry import Polygon, new_id
from ..models.results import BooleanResult, JunctionResult
from ..models.wall_solid import IntersectionData, WallSolid
from .base_engine import BaseEngine

# requires_healing when a face's area is below tolerance^2 times this
MIN_AREA_FACTOR = 100.0


class BooleanEngine(BaseEngine):
    """Union / intersection / difference of wall solids plus two-wall junction composition."""

    config_class = BooleanEngineConfig

    def _tolerance(self, tolerance: Optional[float]) -> float:
        tolerance = self.config.tolerance if tolerance is None else tolerance
        if tolerance <= 0:
            raise InvalidParameter(f"Tolerance must be positive, got {tolerance!r}", operation="boolean")
        return tolerance

    def checked_shape(self, solid: WallSolid, tolerance: float, operation: str) -> BaseGeometry:
        """Shapely geometry of a solid, raising BooleanFailure for invalid input faces."""
        if not solid.solid_geometry:
            raise BooleanFailure(f"Wall {solid.id} has no solid geometry", operation=operation, solid=solid,
                                 tolerance=tolerance)
        for poly in solid.solid_geometry:
            if poly.self_intersects:
                raise BooleanFailure(f"Wall {solid.id} has a self-intersecting face", operation=operation,
                                     solid=solid, tolerance=tolerance)
            if poly.area <= tolerance * tolerance:
                raise BooleanFailure(f"Wall {solid.id} has a zero-area face", operation=operation,
                                     solid=solid, tolerance=tolerance)
        return repair_geometry(solid.to_shapely())

    def _requires_healing(self, polygons: Sequence[Polygon], tolerance: float) -> bool:
        min_area = tolerance * tolerance * MIN_AREA_FACTOR
        for poly in polygons:
            if poly.area < min_area or poly.has_sliver_faces:
                return True
        return False

    def _complexity_warnings(self, solids: Sequence[WallSolid]) -> List[str]:
        total = sum(s.complexity for s in solids)
        if total > self.config.max_complexity:
            return [f"complexity: combined complexity {total} exceeds {self.config.max_complexity}"]
        return []

    def _composite(self, base: WallSolid, polygons: List[Polygon], sources: Sequence[WallSolid], **extra) -> WallSolid:
        data = [d for s in sources for d in s.intersection_data]
        metadata = dict(base.metadata)
        metadata["composed_from"] = [s.id for s in sources]
        return base.replace(
            id=base.id if len(sources) == 1 else new_id(),
            thickness=max(s.thickness for s in sources),
            solid_geometry=polygons,
            intersection_data=extra.pop("intersection_data", data),
            metadata=metadata,
            **extra,
        )

    def _result(
        self,
        operation: str,
        geom: BaseGeometry,
        base: Optional[WallSolid],
        sources: Sequence[WallSolid],
        tolerance: float,
        warnings: List[str],
        start_time: float,
        errors=None,
    ) -> BooleanResult:
        polygons = polygons_from_geometry(geom, creation_method=f"boolean_{operation}", tolerance=tolerance)
        processing_time = (time.time() - start_time) * 1000
        if not polygons:
            warnings.append(f"{operation}: empty result")
        requires_healing = self._requires_healing(polygons, tolerance)
        result_solid = self._composite(base, polygons, sources) if polygons and base is not None else None
        self.log_info(
            "Boolean operation completed",
            operation=operation,
            inputs=len(sources),
            polygons=len(polygons),
            requires_healing=requires_healing,
            duration_ms=int(processing_time),
        )
        errors = errors or []
        return BooleanResult(
            success=not errors,
            operation_type=operation,
            result_solid=result_solid,
            result_polygons=polygons,
            warnings=warnings,
            errors=errors,
            requires_healing=requires_healing,
            processing_time=processing_time,
        )

    def union(self, solids: Sequence[WallSolid], tolerance: Optional[float] = None) -> BooleanResult:
        """
        Union of all solids (a single multi-face solid has its faces merged).

        Raises:
            BooleanFailure: an input face is self-intersecting or has zero area.
        """
        start_time = time.time()
        tolerance = self._tolerance(tolerance)
        solids = list(solids)
        if not solids:
            return BooleanResult(
                success=False,
                operation_type="union",
                errors=[descriptor_for(GeometricErrorType.BOOLEAN_FAILURE, "Union needs at least one solid",
                                       operation="union")],
            )
        warnings = self._complexity_warnings(solids)
        if len(solids) == 1 and len(solids[0].solid_geometry) <= 1:
            only = solids[0]
            return BooleanResult(
                success=True,
                operation_type="union",
                result_solid=only,
                result_polygons=list(only.solid_geometry),
                warnings=warnings,
                requires_healing=self._requires_healing(only.solid_geometry, tolerance),
                processing_time=(time.time() - start_time) * 1000,
            )
        shapes = [self.checked_shape(s, tolerance, "union") for s in solids]
        merged = shapely.union_all(shapes, grid_size=tolerance)
        return self._result("union", merged, solids[0], solids, tolerance, warnings, start_time)

    def intersection(self, a: WallSolid, b: WallSolid, tolerance: Optional[float] = None) -> BooleanResult:
        """Overlap of two solids (may be empty)."""
        start_time = time.time()
        tolerance = self._tolerance(tolerance)
        shape_a = self.checked_shape(a, tolerance, "intersection")
        shape_b = self.checked_shape(b, tolerance, "intersection")
        overlap = shapely.intersection(shape_a, shape_b, grid_size=tolerance)
        return self._result("intersection", overlap, a, [a, b], tolerance, self._complexity_warnings([a, b]),
                            start_time)

    def difference(self, a: WallSolid, b: WallSolid, tolerance: Optional[float] = None) -> BooleanResult:
        """a minus b."""
        start_time = time.time()
        tolerance = self._tolerance(tolerance)
        shape_a = self.checked_shape(a, tolerance, "difference")
        shape_b = self.checked_shape(b, tolerance, "difference")
        remainder = shapely.difference(shape_a, shape_b, grid_size=tolerance)
        return self._result("difference", remainder, a, [a], tolerance, self._complexity_warnings([a, b]),
                            start_time)

    def batch_union(self, walls: Sequence[WallSolid], tolerance: Optional[float] = None) -> BooleanResult:
        """
        Fold walls into one union.

        Inputs are ordered by complexity. Above batch_divide_threshold the fold
        is divide and conquer (chunks unioned in parallel when enabled). The
        first invalid wall stops the fold: the union of the walls before it is
        returned with success=False, a warning and the error.
        """
        start_time = time.time()
        tolerance = self._tolerance(tolerance)
        ordered = sorted(walls, key=lambda w: w.complexity)
        if not ordered:
            return self.union([], tolerance)

        warnings = self._complexity_warnings(ordered)
        errors = []
        shapes: List[BaseGeometry] = []
        used: List[WallSolid] = []
        for wall in ordered:
            try:
                shapes.append(self.checked_shape(wall, tolerance, "batch_union"))
            except BooleanFailure as e:
                warnings.append(f"batch_union stopped at wall {wall.id}: {e.message}")
                errors.append(e.to_descriptor())
                self.log_warning("Batch union short-circuited", wall_id=wall.id, merged=len(used))
                break
            used.append(wall)

        if not shapes:
            return BooleanResult(success=False, operation_type="batch_union", warnings=warnings, errors=errors,
                                 processing_time=(time.time() - start_time) * 1000)

        threshold = self.config.batch_divide_threshold
        if len(shapes) > threshold:
            merged = self._divide_and_conquer(shapes, tolerance, threshold)
        else:
            merged = shapes[0]
            for shape in shapes[1:]:
                merged = shapely.union(merged, shape, grid_size=tolerance)
        return self._result("batch_union", merged, used[0], used, tolerance, warnings, start_time, errors)

    def _divide_and_conquer(self, shapes: List[BaseGeometry], tolerance: float, chunk: int) -> BaseGeometry:
        chunks = [shapes[i:i + chunk] for i in range(0, len(shapes), chunk)]
        if self.config.enable_parallel_processing and len(chunks) > 1:
            with ThreadPoolExecutor(max_workers=min(4, len(chunks))) as executor:
                partials = list(executor.map(lambda group: shapely.union_all(group, grid_size=tolerance), chunks))
        else:
            partials = [shapely.union_all(group, grid_size=tolerance) for group in chunks]
        if len(partials) > chunk:
            return self._divide_and_conquer(partials, tolerance, chunk)
        return shapely.union_all(partials, grid_size=tolerance)

    # ------------------------------------------------------------------
    # Two-wall junction composition
    # ------------------------------------------------------------------

    def resolve_t_junction(self, walls: Sequence[WallSolid], tolerance: Optional[float] = None) -> JunctionResult:
        """Compose a branch wall into a main wall (walls[0] is main when both meet end to end)."""
        return self.compose_pair(walls, tolerance, JunctionType.T_JUNCTION)

    def resolve_l_junction(self, walls: Sequence[WallSolid], tolerance: Optional[float] = None) -> JunctionResult:
        """Compose two walls meeting at a corner, mitered to the outer offset intersection."""
        return self.compose_pair(walls, tolerance, JunctionType.L_JUNCTION)

    def compose_pair(
        self,
        walls: Sequence[WallSolid],
        tolerance: Optional[float],
        junction_type: JunctionType,
        resolution_method: Optional[str] = None,
        parallel_overlap_threshold: Optional[float] = None,
        miter_limit: Optional[float] = None,
    ) -> JunctionResult:
        """
        Trim/extend two walls so they meet exactly, then union them.

        The geometry follows how the walls actually touch: end to end (corner
        for L, butt for T), an end into the side of the other (branch trim), a
        crossing, or parallel walls (bridged, never mitered).

        Walls count as parallel below parallel_overlap_threshold (|sin| of the
        junction angle); callers that classified the junction pass their own
        threshold so the geometry matches their classification. Both thresholds
        default to the engine config.
        """
        if parallel_overlap_threshold is None:
            parallel_overlap_threshold = self.config.parallel_overlap_threshold
        if miter_limit is None:
            miter_limit = self.config.miter_limit
        start_time = time.time()
        tolerance = self._tolerance(tolerance)
        walls = list(walls)
        if len(walls) != 2:
            raise InvalidParameter(
                f"{junction_type.value} needs exactly 2 walls, got {len(walls)}",
                operation=f"resolve_{junction_type.value}",
            )
        a, b = walls
        warnings: List[str] = []
        if abs(a.thickness - b.thickness) > tolerance:
            warnings.append(f"thickness mismatch at junction: {a.thickness:g} mm vs {b.thickness:g} mm")

        contact = J.locate_junction(a, b, tolerance)
        if contact is None:
            message = f"Walls {a.id} and {b.id} do not meet"
            return JunctionResult(
                success=False,
                warnings=warnings,
                errors=[descriptor_for(GeometricErrorType.TOPOLOGY_ERROR, message,
                                       operation=f"resolve_{junction_type.value}")],
                tolerance_used=tolerance,
                processing_time=(time.time() - start_time) * 1000,
            )

        by_id = {a.id: a, b.id: b}
        if junction_type == JunctionType.PARALLEL_OVERLAP or J.is_parallel(contact.angle, parallel_overlap_threshold):
            plan = self._plan_parallel(contact, by_id, tolerance)
        elif contact.kind == "end_end" and junction_type == JunctionType.L_JUNCTION:
            plan = self._plan_corner(contact, by_id, tolerance, miter_limit)
        elif contact.kind == "end_end":
            plan = self._plan_butt(contact, by_id, tolerance)
        elif contact.kind == "end_interior":
            plan = self._plan_branch(contact, by_id, tolerance)
        else:
            plan = self._plan_crossing(contact, by_id, tolerance)
        if plan is None:
            plan = self._plan_parallel(contact, by_id, tolerance)
        adjusted, patches, method, apex, offset_points, fallback = plan
        method = resolution_method or method

        shapes = [self.checked_shape(w, tolerance, f"resolve_{junction_type.value}") for w in adjusted]
        merged = shapely.union_all(shapes + patches, grid_size=tolerance)
        polygons = polygons_from_geometry(merged, creation_method="junction", tolerance=tolerance)
        if not polygons:
            raise BooleanFailure(f"Junction of {a.id} and {b.id} produced no area",
                                 operation=f"resolve_{junction_type.value}", tolerance=tolerance)

        junction = IntersectionData(
            junction_type=junction_type,
            participating_walls=[a.id, b.id],
            intersection_point=J.to_point(contact.point, tolerance),
            miter_apex=J.to_point(apex, tolerance, "miter_apex") if apex is not None else None,
            offset_intersections=[J.to_point(p, tolerance, "offset_intersection") for p in offset_points],
            resolved_geometry=max(polygons, key=lambda p: p.area),
            resolution_method=method,
            geometric_accuracy=JUNCTION_FALLBACK_ACCURACY if fallback else JUNCTION_ACCURACY,
            validated=True,
        )
        join = JoinType.BEVEL if fallback else JoinType.MITER
        roles = {c.wall_id: c.role for c in contact.contacts}
        finished = []
        for wall in adjusted:
            join_types = dict(wall.join_types)
            if method.startswith("l_junction") and roles.get(wall.id) in (J.START, J.END):
                join_types[roles[wall.id]] = join
            finished.append(wall.replace(
                intersection_data=list(wall.intersection_data) + [junction],
                join_types=join_types,
            ))

        main = finished[0]
        result_solid = self._composite(main, polygons, finished, intersection_data=[junction])
        requires_healing = self._requires_healing(polygons, tolerance)
        processing_time = (time.time() - start_time) * 1000
        self.log_info(
            "Junction composed",
            junction_type=junction_type.value,
            resolution_method=method,
            walls=[a.id, b.id],
            warnings=len(warnings),
            duration_ms=int(processing_time),
        )
        return JunctionResult(
            success=True,
            junction=junction,
            result_solid=result_solid,
            adjusted_walls=finished,
            strategy=method,
            tolerance_used=tolerance,
            warnings=warnings,
            requires_healing=requires_healing,
            processing_time=processing_time,
        )

    # Each planner returns (adjusted walls, extra patches, method, miter apex, offset intersections, fallback)

    def _plan_corner(self, contact: J.JunctionContact, by_id, tolerance: float, miter_limit: float):
        ca, cb = contact.contacts
        wa, wb = by_id[ca.wall_id], by_id[cb.wall_id]
        a, b = ca.away_dirs[0], cb.away_dirs[0]
        ha, hb = J.half_thickness(wa), J.half_thickness(wb)
        corner = J.corner_geometry(contact.point, a, ha, b, hb)
        if corner is None:
            return None
        miter_length = point_distance(corner.outer, contact.point)
        if miter_length <= miter_limit * max(ha, hb):
            adj_a = J.with_adjusted_end(wa, ca.role, b, corner.inner, corner.outer, tolerance)
            adj_b = J.with_adjusted_end(wb, cb.role, a, corner.inner, corner.outer, tolerance)
            return [adj_a, adj_b], [], "l_junction_miter", corner.outer, [corner.inner, corner.outer], False
        adj_a = J.with_adjusted_end(wa, ca.role, b, corner.inner, corner.outer_a, tolerance)
        adj_b = J.with_adjusted_end(wb, cb.role, a, corner.inner, corner.outer_b, tolerance)
        patch = J.bevel_patch(corner, contact.point)
        return ([adj_a, adj_b], [patch], "l_junction_bevel", None,
                [corner.inner, corner.outer_a, corner.outer_b], True)

    def _plan_butt(self, contact: J.JunctionContact, by_id, tolerance: float):
        cm, cb = contact.contacts
        main, branch = by_id[cm.wall_id], by_id[cb.wall_id]
        m, b = cm.away_dirs[0], cb.away_dirs[0]
        hm, hb = J.half_thickness(main), J.half_thickness(branch)
        extension = J.far_face_extension(contact.point, m, hm, b, hb)
        trim = J.branch_trim_points(contact.point, b, hb, m, hm)
        if extension is None or trim is None:
            return None
        adj_main = J.with_adjusted_end(main, cm.role, b, extension[0], extension[1], tolerance)
        adj_branch = J.with_adjusted_end(branch, cb.role, left_normal(b), trim[0], trim[1], tolerance)
        points = [trim[0], trim[1], extension[0], extension[1]]
        return [adj_main, adj_branch], [], "t_junction_butt", None, points, False

    def _plan_branch(self, contact: J.JunctionContact, by_id, tolerance: float):
        branch_contact = next(c for c in contact.contacts if c.role != J.INTERIOR)
        main_contact = next(c for c in contact.contacts if c.role == J.INTERIOR)
        branch, main = by_id[branch_contact.wall_id], by_id[main_contact.wall_id]
        b = branch_contact.away_dirs[0]
        m = main_contact.away_dirs[0]
        end_point, _ = J.end_frame(branch, branch_contact.role)
        seg = main_contact.segment
        junction = extended_intersection(end_point, (end_point[0] + b[0], end_point[1] + b[1]), seg[0], seg[1])
        junction = junction or contact.point
        trim = J.branch_trim_points(junction, b, J.half_thickness(branch), m, J.half_thickness(main))
        if trim is None:
            return None
        adj_branch = J.with_adjusted_end(branch, branch_contact.role, left_normal(b), trim[0], trim[1], tolerance)
        ordered = [main, adj_branch]
        return ordered, [], "t_junction_trim", None, [trim[0], trim[1]], False

    def _plan_crossing(self, contact: J.JunctionContact, by_id, tolerance: float):
        ca, cb = contact.contacts
        wa, wb = by_id[ca.wall_id], by_id[cb.wall_id]
        a, b = ca.away_dirs[0], cb.away_dirs[0]
        ha, hb = J.half_thickness(wa), J.half_thickness(wb)
        points: List[Vec] = []
        for sa in (1.0, -1.0):
            for sb in (1.0, -1.0):
                hit = J.intersect_lines(
                    J.offset_line(contact.point, a, left_normal(a), sa * ha),
                    J.offset_line(contact.point, b, left_normal(b), sb * hb),
                )
                if hit is not None:
                    points.append(hit)
        return [wa, wb], [], "crossing_union", None, points, False

    def _plan_parallel(self, contact: J.JunctionContact, by_id, tolerance: float):
        ca, cb = contact.contacts
        wa, wb = by_id[ca.wall_id], by_id[cb.wall_id]
        patches = []
        if contact.kind == "end_end":
            pa, _ = J.end_frame(wa, ca.role)
            pb, _ = J.end_frame(wb, cb.role)
            if point_distance(pa, pb) > tolerance:
                patches.append(J.bridge_patch(wa, ca.role, wb, cb.role))
        return [wa, wb], patches, "parallel_merge", None, [], False
