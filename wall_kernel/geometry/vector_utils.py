"""
Baseline and offset vector math on plain (x, y) tuples in mm.

The offset engine, junction geometry, simplification and validation share
these so a wall side, a miter apex or a chord deviation is computed the same
way everywhere. Headings are unit vectors along baseline travel; the left
normal of a heading points to the side a positive offset distance lands on.
"""

import math
from typing import Optional, Tuple

from ..units import EPS_PARALLEL

Vec = Tuple[float, float]


def normalized(v: Vec) -> Vec:
    """v scaled to length 1; the zero vector for a zero-length input."""
    length = math.hypot(v[0], v[1])
    if length <= 0:
        return (0.0, 0.0)
    return (v[0] / length, v[1] / length)


def sub(p: Vec, q: Vec) -> Vec:
    return (p[0] - q[0], p[1] - q[1])


def add(p: Vec, q: Vec) -> Vec:
    return (p[0] + q[0], p[1] + q[1])


def scale(v: Vec, s: float) -> Vec:
    return (v[0] * s, v[1] * s)


def dot(u: Vec, v: Vec) -> float:
    return u[0] * v[0] + u[1] * v[1]


def cross(u: Vec, v: Vec) -> float:
    """z of u x v; positive when v turns left from u."""
    return u[0] * v[1] - u[1] * v[0]


def point_distance(p: Vec, q: Vec) -> float:
    return math.hypot(p[0] - q[0], p[1] - q[1])


def heading(a: Vec, b: Vec) -> Vec:
    """Unit travel direction from baseline vertex a to b."""
    return normalized(sub(b, a))


def left_normal(u: Vec) -> Vec:
    """Wall-face normal on the left of heading u (the positive offset side)."""
    return normalized((-u[1], u[0]))


def offset_point(p: Vec, u: Vec, d: float) -> Vec:
    """p moved by signed offset distance d across heading u."""
    return add(p, scale(left_normal(u), d))


def angle_between(u: Vec, v: Vec) -> float:
    """Unsigned angle between two headings in degrees, in [0, 180]."""
    c = max(-1.0, min(1.0, dot(normalized(u), normalized(v))))
    return math.degrees(math.acos(c))


def turning_angle(prev_pt: Vec, pt: Vec, next_pt: Vec) -> float:
    """Signed turn of the baseline at pt in degrees (positive = left)."""
    d1 = sub(pt, prev_pt)
    d2 = sub(next_pt, pt)
    return math.degrees(math.atan2(cross(d1, d2), dot(d1, d2)))


def projection_parameter(p: Vec, a: Vec, b: Vec) -> float:
    """Where p projects along segment a-b: 0 at a, 1 at b, unclamped."""
    ab = sub(b, a)
    length_sq = dot(ab, ab)
    if length_sq <= 0:
        return 0.0
    return dot(sub(p, a), ab) / length_sq


def deviation_from_chord(p: Vec, a: Vec, b: Vec) -> float:
    """How far vertex p sits off the chord line through a and b."""
    if a == b:
        return point_distance(p, a)
    t = projection_parameter(p, a, b)
    return point_distance(p, add(a, scale(sub(b, a), t)))


def distance_to_segment(p: Vec, a: Vec, b: Vec) -> float:
    """Distance from p to the closed segment a-b."""
    t = max(0.0, min(1.0, projection_parameter(p, a, b)))
    return point_distance(p, add(a, scale(sub(b, a), t)))


def extended_intersection(a1: Vec, a2: Vec, b1: Vec, b2: Vec) -> Optional[Vec]:
    """
    Meeting point of the offset lines through a1-a2 and b1-b2, both extended.

    None when either line is degenerate or the two are parallel within
    EPS_PARALLEL (relative to the segment lengths), so a miter apex is never
    placed at a far-away near-parallel crossing.
    """
    da = sub(a2, a1)
    db = sub(b2, b1)
    denom = cross(da, db)
    la = math.hypot(*da)
    lb = math.hypot(*db)
    if la <= 0 or lb <= 0 or abs(denom) <= EPS_PARALLEL * la * lb:
        return None
    t = cross(sub(b1, a1), db) / denom
    return add(a1, scale(da, t))
