"""
Junction geometry shared by the intersection resolver and the boolean engine.

Locates where two walls meet (end to end, end into the side of another wall,
or crossing), and computes the offset adjustments that make their solids meet
exactly: L corners are mitered to the outer offset intersection, T branches are
trimmed to the main wall's near face, walls ending at a cross hub are extended
through it, and parallel walls are bridged instead of mitered.
"""

import math
from typing import List, NamedTuple, Optional, Sequence, Tuple

from shapely.geometry import MultiPoint, Point as ShapelyPoint
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.ops import nearest_points

from ..models.geometry import Curve, Point, Polygon, signed_ring_area
from ..models.wall_solid import WallSolid
from .vector_utils import (
    Vec,
    add,
    angle_between,
    dot,
    extended_intersection,
    heading,
    left_normal,
    point_distance,
    projection_parameter,
    scale,
    sub,
)

START = "start"
END = "end"
INTERIOR = "interior"


class WallContact(NamedTuple):
    wall_id: str
    role: str                 # "start", "end" or "interior"
    away_dirs: List[Vec]      # unit directions from the junction into the wall
    segment: Tuple[Vec, Vec]  # baseline segment touching the junction


class JunctionContact(NamedTuple):
    kind: str                 # "end_end", "end_interior" or "crossing"
    point: Vec
    contacts: List[WallContact]
    angle: float              # smallest angle between the walls' away directions (deg)


def baseline_coords(wall: WallSolid) -> List[Vec]:
    return [p.as_tuple() for p in wall.baseline.points]


def half_thickness(wall: WallSolid) -> float:
    return wall.thickness / 2.0


def end_frame(wall: WallSolid, role: str) -> Tuple[Vec, Vec]:
    """(end point, unit direction from that end into the wall)."""
    coords = baseline_coords(wall)
    if role == START:
        return coords[0], heading(coords[0], coords[1])
    return coords[-1], heading(coords[-1], coords[-2])


def travel_direction(wall: WallSolid, role: str) -> Vec:
    """Baseline travel direction at the given end."""
    _, away = end_frame(wall, role)
    return away if role == START else scale(away, -1.0)


def _segment_at(coords: Sequence[Vec], closed: bool, p: Vec) -> Tuple[Vec, Vec]:
    """Baseline segment closest to p."""
    n = len(coords)
    count = n if closed else n - 1
    best = None
    best_d = math.inf
    for i in range(count):
        a, b = coords[i], coords[(i + 1) % n]
        t = max(0.0, min(1.0, projection_parameter(p, a, b)))
        q = (a[0] + t * (b[0] - a[0]), a[1] + t * (b[1] - a[1]))
        d = point_distance(p, q)
        if d < best_d:
            best_d = d
            best = (a, b)
    return best


def _end_contact(wall: WallSolid, role: str) -> WallContact:
    point, away = end_frame(wall, role)
    coords = baseline_coords(wall)
    seg = (coords[0], coords[1]) if role == START else (coords[-2], coords[-1])
    return WallContact(wall.id, role, [away], seg)


def interior_contact(wall: WallSolid, p: Vec) -> WallContact:
    coords = baseline_coords(wall)
    seg = _segment_at(coords, wall.baseline.is_closed, p)
    d = heading(seg[0], seg[1])
    return WallContact(wall.id, INTERIOR, [d, scale(d, -1.0)], seg)


def contact_angle(a: WallContact, b: WallContact) -> float:
    return min(angle_between(da, db) for da in a.away_dirs for db in b.away_dirs)


def wall_ends(wall: WallSolid) -> List[str]:
    return [] if wall.baseline.is_closed else [START, END]


def locate_junction(wall_a: WallSolid, wall_b: WallSolid, tolerance: float) -> Optional[JunctionContact]:
    """
    Where two walls meet, or None.

    Walls meet when an end lies within half the larger thickness (plus
    tolerance) of the other wall's end or baseline, or when the baselines
    cross. End-to-end contacts win over end-into-side, which win over crossings.
    """
    reach = max(wall_a.thickness, wall_b.thickness) / 2.0 + tolerance
    line_a = wall_a.baseline.to_linestring()
    line_b = wall_b.baseline.to_linestring()

    best_end_end = None
    for role_a in wall_ends(wall_a):
        pa, _ = end_frame(wall_a, role_a)
        for role_b in wall_ends(wall_b):
            pb, _ = end_frame(wall_b, role_b)
            d = point_distance(pa, pb)
            if d <= reach and (best_end_end is None or d < best_end_end[0]):
                best_end_end = (d, role_a, role_b, ((pa[0] + pb[0]) / 2.0, (pa[1] + pb[1]) / 2.0))
    if best_end_end is not None:
        _, role_a, role_b, point = best_end_end
        ca = _end_contact(wall_a, role_a)
        cb = _end_contact(wall_b, role_b)
        return JunctionContact("end_end", point, [ca, cb], contact_angle(ca, cb))

    best_side = None
    for branch, main, main_line, order in ((wall_a, wall_b, line_b, 0), (wall_b, wall_a, line_a, 1)):
        main_coords = baseline_coords(main)
        for role in wall_ends(branch):
            p, _ = end_frame(branch, role)
            on_main = nearest_points(main_line, ShapelyPoint(p))[0]
            q = (on_main.x, on_main.y)
            d = point_distance(p, q)
            if d > reach:
                continue
            if not main.baseline.is_closed and min(point_distance(q, main_coords[0]), point_distance(q, main_coords[-1])) <= reach:
                continue
            if best_side is None or d < best_side[0]:
                best_side = (d, branch, role, main, q, order)
    if best_side is not None:
        _, branch, role, main, q, order = best_side
        cb = _end_contact(branch, role)
        cm = interior_contact(main, q)
        contacts = [cb, cm] if order == 0 else [cm, cb]
        return JunctionContact("end_interior", q, contacts, contact_angle(cb, cm))

    crossing = line_a.intersection(line_b)
    if not crossing.is_empty:
        pts = [crossing] if crossing.geom_type == "Point" else [
            g for g in getattr(crossing, "geoms", []) if g.geom_type == "Point"
        ]
        if pts:
            q = (pts[0].x, pts[0].y)
            ca = interior_contact(wall_a, q)
            cb = interior_contact(wall_b, q)
            return JunctionContact("crossing", q, [ca, cb], contact_angle(ca, cb))
    return None


def is_parallel(angle_deg: float, threshold: float) -> bool:
    """|sin(angle)| below threshold: walls run (anti)parallel."""
    return abs(math.sin(math.radians(angle_deg))) < threshold


# ---------------------------------------------------------------------------
# Offsets and faces
# ---------------------------------------------------------------------------

def face_from_offsets(
    left: Sequence[Vec],
    right: Sequence[Vec],
    closed: bool,
) -> Tuple[List[Vec], List[List[Vec]]]:
    """(outer ring, holes) of the face bounded by two offsets."""
    if closed:
        if abs(signed_ring_area(left)) >= abs(signed_ring_area(right)):
            return list(left), [list(right)]
        return list(right), [list(left)]
    return list(left) + list(reversed(right)), []


def side_normal_toward(direction_vec: Vec, toward: Vec) -> Vec:
    """Unit normal of direction_vec on the side of toward."""
    n = left_normal(direction_vec)
    return n if dot(n, toward) >= 0 else scale(n, -1.0)


def with_adjusted_end(
    wall: WallSolid,
    role: str,
    toward: Vec,
    point_toward: Vec,
    point_away: Vec,
    tolerance: float,
) -> WallSolid:
    """
    New wall whose offsets end at the given points at one baseline end.

    point_toward goes on the offset lying on the side of the vector toward,
    point_away on the other; the solid face is rebuilt from the new offsets.
    """
    left_is_toward = dot(left_normal(travel_direction(wall, role)), toward) > 0
    new_left, new_right = (point_toward, point_away) if left_is_toward else (point_away, point_toward)
    index = 0 if role == START else -1

    def replaced(curve: Curve, xy: Vec) -> Curve:
        points = list(curve.points)
        points[index] = Point.at(xy[0], xy[1], creation_method="junction", tolerance=tolerance)
        return curve.with_points(points)

    left = replaced(wall.left_offset, new_left)
    right = replaced(wall.right_offset, new_right)
    outer, holes = face_from_offsets(
        [p.as_tuple() for p in left.points],
        [p.as_tuple() for p in right.points],
        wall.baseline.is_closed,
    )
    face = Polygon.from_coordinates(outer, holes, creation_method="junction", tolerance=tolerance)
    return wall.replace(left_offset=left, right_offset=right, solid_geometry=[face])


def offset_line(point: Vec, along: Vec, normal: Vec, h: float) -> Tuple[Vec, Vec]:
    """Two points on the line offset from point by h along normal, running along `along`."""
    base = add(point, scale(normal, h))
    return base, add(base, along)


def intersect_lines(l1: Tuple[Vec, Vec], l2: Tuple[Vec, Vec]) -> Optional[Vec]:
    return extended_intersection(l1[0], l1[1], l2[0], l2[1])


# ---------------------------------------------------------------------------
# Corner (L) geometry
# ---------------------------------------------------------------------------

class CornerGeometry(NamedTuple):
    inner: Vec
    outer: Vec
    inner_a: Vec   # A's inner offset line at the corner
    outer_a: Vec   # A's outer offset end (butt position)
    inner_b: Vec
    outer_b: Vec


def corner_geometry(point: Vec, a: Vec, ha: float, b: Vec, hb: float) -> Optional[CornerGeometry]:
    """Inner and outer offset intersections of two walls leaving point along a and b."""
    na_in = side_normal_toward(a, b)
    nb_in = side_normal_toward(b, a)
    inner = intersect_lines(offset_line(point, a, na_in, ha), offset_line(point, b, nb_in, hb))
    outer = intersect_lines(
        offset_line(point, a, scale(na_in, -1.0), ha),
        offset_line(point, b, scale(nb_in, -1.0), hb),
    )
    if inner is None or outer is None:
        return None
    return CornerGeometry(
        inner=inner,
        outer=outer,
        inner_a=add(point, scale(na_in, ha)),
        outer_a=add(point, scale(na_in, -ha)),
        inner_b=add(point, scale(nb_in, hb)),
        outer_b=add(point, scale(nb_in, -hb)),
    )


def bevel_patch(corner: CornerGeometry, point: Vec) -> ShapelyPolygon:
    """Triangle closing the outside of a beveled corner."""
    return MultiPoint([point, corner.outer_a, corner.outer_b]).convex_hull


# ---------------------------------------------------------------------------
# Branch (T) geometry
# ---------------------------------------------------------------------------

def branch_trim_points(
    junction: Vec,
    branch_dir: Vec,
    hb: float,
    main_dir: Vec,
    hm: float,
) -> Optional[Tuple[Vec, Vec, Vec]]:
    """
    Where the branch offsets meet the main wall's near face.

    Returns (point on the branch side of +normal, point on the other side, near-face normal).
    """
    near_normal = side_normal_toward(main_dir, branch_dir)
    face = offset_line(junction, main_dir, near_normal, hm)
    nb = left_normal(branch_dir)
    p_pos = intersect_lines(offset_line(junction, branch_dir, nb, hb), face)
    p_neg = intersect_lines(offset_line(junction, branch_dir, scale(nb, -1.0), hb), face)
    if p_pos is None or p_neg is None:
        return None
    return p_pos, p_neg, near_normal


def far_face_extension(
    end_point: Vec,
    main_away: Vec,
    hm: float,
    branch_dir: Vec,
    hb: float,
) -> Optional[Tuple[Vec, Vec]]:
    """
    Main wall offsets extended through a butt joint to the branch's far face.

    Returns (offset end on the branch side, offset end on the other side).
    """
    main_travel = scale(main_away, -1.0)
    far_normal = side_normal_toward(branch_dir, main_travel)
    far_face = offset_line(end_point, branch_dir, far_normal, hb)
    n_toward = side_normal_toward(main_away, branch_dir)
    p_toward = intersect_lines(offset_line(end_point, main_away, n_toward, hm), far_face)
    p_away = intersect_lines(offset_line(end_point, main_away, scale(n_toward, -1.0), hm), far_face)
    if p_toward is None or p_away is None:
        return None
    return p_toward, p_away


# ---------------------------------------------------------------------------
# Cross hub and parallel overlap
# ---------------------------------------------------------------------------

def hub_extension_points(end_point: Vec, away: Vec, h: float, center: Vec, extension: float) -> Tuple[Vec, Vec, Vec]:
    """Offset ends of a wall extended from end_point through center by `extension`."""
    along = dot(sub(center, end_point), scale(away, -1.0)) + extension
    target = add(end_point, scale(away, -along))
    n = left_normal(away)
    return add(target, scale(n, h)), add(target, scale(n, -h)), n


def parallel_overlap_ratio(wall_a: WallSolid, wall_b: WallSolid) -> float:
    """Shared run length of two parallel walls over the shorter wall's run."""
    coords_a = baseline_coords(wall_a)
    coords_b = baseline_coords(wall_b)
    axis = heading(coords_a[0], coords_a[-1])
    if axis == (0.0, 0.0):
        return 0.0
    proj_a = [dot(c, axis) for c in coords_a]
    proj_b = [dot(c, axis) for c in coords_b]
    len_a = max(proj_a) - min(proj_a)
    len_b = max(proj_b) - min(proj_b)
    shortest = min(len_a, len_b)
    if shortest <= 0:
        return 0.0
    overlap = max(0.0, min(max(proj_a), max(proj_b)) - max(min(proj_a), min(proj_b)))
    return overlap / shortest


def bridge_patch(wall_a: WallSolid, role_a: str, wall_b: WallSolid, role_b: str) -> ShapelyPolygon:
    """Hull over the facing ends of two walls, closing a gap between them."""
    corners = []
    for wall, role in ((wall_a, role_a), (wall_b, role_b)):
        index = 0 if role == START else -1
        corners.append(wall.left_offset.points[index].as_tuple())
        corners.append(wall.right_offset.points[index].as_tuple())
    return MultiPoint(corners).convex_hull


def to_point(xy: Vec, tolerance: float, method: str = "junction") -> Point:
    return Point.at(xy[0], xy[1], creation_method=method, tolerance=tolerance)


def merge_adjusted_ends(original: WallSolid, versions: Sequence[WallSolid], tolerance: float) -> WallSolid:
    """
    Combine the per-junction adjustments of one wall.

    Each version comes from resolving one junction and may have moved the
    offsets at one baseline end; the moved ends are collected onto a single
    wall, together with every junction record and join type.
    """
    left = list(original.left_offset.points)
    right = list(original.right_offset.points)
    data = list(original.intersection_data)
    known = {d.id for d in data}
    join_types = dict(original.join_types)
    moved = False

    for version in versions:
        for index in (0, -1):
            new_l, new_r = version.left_offset.points[index], version.right_offset.points[index]
            if new_l.as_tuple() != left[index].as_tuple() or new_r.as_tuple() != right[index].as_tuple():
                left[index], right[index] = new_l, new_r
                moved = True
        for record in version.intersection_data:
            if record.id not in known:
                known.add(record.id)
                data.append(record)
        join_types.update(version.join_types)

    if not moved:
        return original.replace(intersection_data=data, join_types=join_types)

    left_curve = original.left_offset.with_points(left)
    right_curve = original.right_offset.with_points(right)
    outer, holes = face_from_offsets(
        [p.as_tuple() for p in left],
        [p.as_tuple() for p in right],
        original.baseline.is_closed,
    )
    face = Polygon.from_coordinates(outer, holes, creation_method="junction", tolerance=tolerance)
    return original.replace(
        left_offset=left_curve,
        right_offset=right_curve,
        solid_geometry=[face],
        intersection_data=data,
        join_types=join_types,
    )
