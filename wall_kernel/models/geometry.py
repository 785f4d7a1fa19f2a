"""
Geometry value types: Point, BoundingBox, Curve and Polygon.

All types are frozen pydantic models. Derived quantities (length, area,
curvature, tangents, ...) are cached on first access. A model is never edited
in place, so the caches cannot go stale; build a new instance to change points.
"""

import math
import uuid
from functools import cached_property
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, Field, field_validator
from shapely.geometry import LinearRing, LineString
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.validation import explain_validity

from ..constants import SLIVER_FACE_THRESHOLD
from ..units import EPS_MM
from .enums import CurveType

Coordinate = Tuple[float, float]


def new_id() -> str:
    return str(uuid.uuid4())


def _require_ring(ring: List["Point"], label: str) -> List["Point"]:
    if len(ring) < 3:
        raise ValueError(f"{label} needs at least 3 points, got {len(ring)}")
    return ring


def _unit_rows(vectors: np.ndarray) -> np.ndarray:
    norms = np.hypot(vectors[:, 0], vectors[:, 1])
    safe = np.where(norms > 0, norms, 1.0)
    return vectors / safe[:, None]


def signed_ring_area(coords: Sequence[Coordinate]) -> float:
    """Shoelace area of an open ring; positive when counter-clockwise."""
    n = len(coords)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        x1, y1 = coords[i]
        x2, y2 = coords[(i + 1) % n]
        total += x1 * y2 - x2 * y1
    return total / 2.0


class Point(BaseModel):
    id: str = Field(default_factory=new_id)
    x: float
    y: float
    tolerance: float = EPS_MM
    creation_method: str = "input"
    accuracy: float = Field(default=1.0, ge=0.0, le=1.0)
    validated: bool = False

    class Config:
        frozen = True

    @classmethod
    def at(cls, x: float, y: float, **kwargs) -> "Point":
        return cls(x=float(x), y=float(y), **kwargs)

    def as_tuple(self) -> Coordinate:
        return (self.x, self.y)

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def equals(self, other: "Point", tolerance: Optional[float] = None) -> bool:
        """Coordinate equality; defaults to the looser of the two point tolerances."""
        tol = tolerance if tolerance is not None else max(self.tolerance, other.tolerance)
        return self.distance_to(other) <= tol


class BoundingBox(BaseModel):
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    class Config:
        frozen = True

    @classmethod
    def from_coordinates(cls, coordinates: Iterable[Coordinate]) -> "BoundingBox":
        coords = list(coordinates)
        if not coords:
            return cls(min_x=0.0, min_y=0.0, max_x=0.0, max_y=0.0)
        xs = [c[0] for c in coords]
        ys = [c[1] for c in coords]
        return cls(min_x=min(xs), min_y=min(ys), max_x=max(xs), max_y=max(ys))

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def intersects(self, other: "BoundingBox", tolerance: float = 0.0) -> bool:
        return not (
            self.max_x + tolerance < other.min_x
            or other.max_x + tolerance < self.min_x
            or self.max_y + tolerance < other.min_y
            or other.max_y + tolerance < self.min_y
        )


class Curve(BaseModel):
    id: str = Field(default_factory=new_id)
    points: List[Point]
    curve_type: CurveType = CurveType.POLYLINE
    is_closed: bool = False

    class Config:
        frozen = True

    @field_validator("points")
    @classmethod
    def _at_least_two_points(cls, points: List[Point]) -> List[Point]:
        if len(points) < 2:
            raise ValueError(f"a curve needs at least 2 points, got {len(points)}")
        return points

    @classmethod
    def from_coordinates(
        cls,
        coordinates: Iterable[Coordinate],
        curve_type: CurveType = CurveType.POLYLINE,
        is_closed: bool = False,
        creation_method: str = "input",
        tolerance: float = EPS_MM,
    ) -> "Curve":
        points = [
            Point.at(x, y, creation_method=creation_method, tolerance=tolerance)
            for x, y in coordinates
        ]
        return cls(points=points, curve_type=curve_type, is_closed=is_closed)

    def with_points(self, points: Iterable[Point]) -> "Curve":
        """New curve of the same kind over different points (fresh caches)."""
        return Curve(points=list(points), curve_type=self.curve_type, is_closed=self.is_closed)

    @property
    def start_point(self) -> Point:
        return self.points[0]

    @property
    def end_point(self) -> Point:
        return self.points[-1]

    @cached_property
    def coordinates(self) -> np.ndarray:
        return np.array([[p.x, p.y] for p in self.points], dtype=float).reshape(-1, 2)

    @cached_property
    def segment_lengths(self) -> np.ndarray:
        coords = self.coordinates
        if self.is_closed:
            coords = np.vstack([coords, coords[:1]])
        diffs = np.diff(coords, axis=0)
        return np.hypot(diffs[:, 0], diffs[:, 1])

    @cached_property
    def length(self) -> float:
        return float(self.segment_lengths.sum())

    @cached_property
    def bounding_box(self) -> BoundingBox:
        return BoundingBox.from_coordinates(p.as_tuple() for p in self.points)

    def _neighbour_vectors(self) -> Tuple[np.ndarray, np.ndarray]:
        coords = self.coordinates
        if self.is_closed:
            prev_vec = coords - np.roll(coords, 1, axis=0)
            next_vec = np.roll(coords, -1, axis=0) - coords
        else:
            diffs = np.diff(coords, axis=0)
            prev_vec = np.vstack([diffs[:1], diffs])
            next_vec = np.vstack([diffs, diffs[-1:]])
        return prev_vec, next_vec

    @cached_property
    def tangents(self) -> List[Coordinate]:
        """Unit tangent per point (average of adjacent segment directions)."""
        prev_vec, next_vec = self._neighbour_vectors()
        summed = _unit_rows(prev_vec) + _unit_rows(next_vec)
        tangents = _unit_rows(summed)
        degenerate = np.hypot(summed[:, 0], summed[:, 1]) <= 0
        tangents[degenerate] = _unit_rows(next_vec)[degenerate]
        return [(float(t[0]), float(t[1])) for t in tangents]

    @cached_property
    def curvature(self) -> List[float]:
        """Discrete curvature per point: turning angle over mean adjacent segment length."""
        n = len(self.points)
        if n < 3:
            return [0.0] * n
        prev_vec, next_vec = self._neighbour_vectors()
        cross = prev_vec[:, 0] * next_vec[:, 1] - prev_vec[:, 1] * next_vec[:, 0]
        dot = prev_vec[:, 0] * next_vec[:, 0] + prev_vec[:, 1] * next_vec[:, 1]
        turning = np.abs(np.arctan2(cross, dot))
        mean_len = 0.5 * (np.hypot(prev_vec[:, 0], prev_vec[:, 1]) + np.hypot(next_vec[:, 0], next_vec[:, 1]))
        kappa = np.where(mean_len > 0, turning / np.where(mean_len > 0, mean_len, 1.0), 0.0)
        if not self.is_closed:
            kappa[0] = 0.0
            kappa[-1] = 0.0
        return [float(k) for k in kappa]

    @property
    def max_curvature(self) -> float:
        return max(self.curvature) if self.curvature else 0.0

    def to_linestring(self) -> LineString:
        coords = [p.as_tuple() for p in self.points]
        if self.is_closed and coords:
            coords = coords + [coords[0]]
        return LineString(coords)


class Polygon(BaseModel):
    """Solid face: outer ring plus holes, rings stored open (no repeated closing point)."""

    id: str = Field(default_factory=new_id)
    outer_ring: List[Point]
    holes: List[List[Point]] = Field(default_factory=list)

    class Config:
        frozen = True

    @field_validator("outer_ring")
    @classmethod
    def _outer_ring_is_a_ring(cls, ring: List[Point]) -> List[Point]:
        return _require_ring(ring, "outer ring")

    @field_validator("holes")
    @classmethod
    def _holes_are_rings(cls, holes: List[List[Point]]) -> List[List[Point]]:
        return [_require_ring(hole, f"hole {i}") for i, hole in enumerate(holes)]

    @classmethod
    def from_coordinates(
        cls,
        outer: Iterable[Coordinate],
        holes: Optional[Iterable[Iterable[Coordinate]]] = None,
        creation_method: str = "input",
        tolerance: float = EPS_MM,
    ) -> "Polygon":
        def ring(coords):
            return [Point.at(x, y, creation_method=creation_method, tolerance=tolerance) for x, y in coords]

        return cls(outer_ring=ring(outer), holes=[ring(h) for h in (holes or [])])

    @classmethod
    def from_shapely(cls, geom: ShapelyPolygon, creation_method: str = "shapely", tolerance: float = EPS_MM) -> "Polygon":
        outer = list(geom.exterior.coords)[:-1]
        holes = [list(interior.coords)[:-1] for interior in geom.interiors]
        return cls.from_coordinates(outer, holes, creation_method=creation_method, tolerance=tolerance)

    def with_rings(self, outer_ring: List[Point], holes: Optional[List[List[Point]]] = None) -> "Polygon":
        return Polygon(outer_ring=list(outer_ring), holes=[list(h) for h in (holes or [])])

    @property
    def rings(self) -> List[List[Point]]:
        return [self.outer_ring] + list(self.holes)

    @cached_property
    def outer_coordinates(self) -> List[Coordinate]:
        return [p.as_tuple() for p in self.outer_ring]

    @cached_property
    def hole_coordinates(self) -> List[List[Coordinate]]:
        return [[p.as_tuple() for p in hole] for hole in self.holes]

    @cached_property
    def shape(self) -> ShapelyPolygon:
        if len(self.outer_ring) < 3:
            return ShapelyPolygon()
        holes = [h for h in self.hole_coordinates if len(h) >= 3]
        return ShapelyPolygon(self.outer_coordinates, holes)

    def to_shapely(self) -> ShapelyPolygon:
        return self.shape

    @cached_property
    def area(self) -> float:
        outer = abs(signed_ring_area(self.outer_coordinates))
        return outer - sum(abs(signed_ring_area(h)) for h in self.hole_coordinates)

    @cached_property
    def perimeter(self) -> float:
        total = 0.0
        for coords in [self.outer_coordinates] + self.hole_coordinates:
            n = len(coords)
            if n < 2:
                continue
            for i in range(n):
                x1, y1 = coords[i]
                x2, y2 = coords[(i + 1) % n]
                total += math.hypot(x2 - x1, y2 - y1)
        return total

    @cached_property
    def centroid(self) -> Point:
        shape = self.shape
        if shape.is_empty or shape.area <= 0:
            if not self.outer_ring:
                return Point.at(0.0, 0.0, creation_method="centroid")
            xs = [p.x for p in self.outer_ring]
            ys = [p.y for p in self.outer_ring]
            return Point.at(sum(xs) / len(xs), sum(ys) / len(ys), creation_method="centroid")
        c = shape.centroid
        return Point.at(c.x, c.y, creation_method="centroid")

    @cached_property
    def bounding_box(self) -> BoundingBox:
        return BoundingBox.from_coordinates(self.outer_coordinates)

    @cached_property
    def isoperimetric_ratio(self) -> float:
        """4*pi*A/P^2: 1.0 for a circle, near 0 for a sliver."""
        if self.perimeter <= 0:
            return 0.0
        return 4.0 * math.pi * self.area / (self.perimeter ** 2)

    @cached_property
    def self_intersects(self) -> bool:
        for coords in [self.outer_coordinates] + self.hole_coordinates:
            if len(coords) >= 3 and not LinearRing(coords).is_simple:
                return True
        shape = self.shape
        if shape.is_empty or shape.is_valid:
            return False
        return "self-intersection" in explain_validity(shape).lower()

    @cached_property
    def has_sliver_faces(self) -> bool:
        return self.isoperimetric_ratio < SLIVER_FACE_THRESHOLD or self.area <= SLIVER_FACE_THRESHOLD ** 2
