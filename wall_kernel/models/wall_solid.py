"""
WallSolid and the records it carries: IntersectionData, HealingOperation and
QualityMetrics.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from shapely.geometry import MultiPolygon
from shapely.ops import unary_union

from .enums import JoinType, JunctionType, WallType
from .geometry import BoundingBox, Curve, Point, Polygon, new_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntersectionData(BaseModel):
    id: str = Field(default_factory=new_id)
    junction_type: JunctionType
    participating_walls: List[str]
    intersection_point: Point
    miter_apex: Optional[Point] = None
    offset_intersections: List[Point] = Field(default_factory=list)
    resolved_geometry: Optional[Polygon] = None
    resolution_method: str
    geometric_accuracy: float = Field(default=1.0, ge=0.0, le=1.0)
    validated: bool = False

    class Config:
        frozen = True

    @property
    def key_points(self) -> List[Point]:
        """Every location a simplifier must keep."""
        points = [self.intersection_point] + list(self.offset_intersections)
        if self.miter_apex is not None:
            points.append(self.miter_apex)
        return points


class HealingOperation(BaseModel):
    id: str = Field(default_factory=new_id)
    operation_type: str
    elements_affected: int = 0
    tolerance: float
    description: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    success: bool = True

    class Config:
        frozen = True


class QualityMetrics(BaseModel):
    geometric_accuracy: float = Field(default=1.0, ge=0.0, le=1.0)
    topological_consistency: float = Field(default=1.0, ge=0.0, le=1.0)
    manufacturability: float = Field(default=1.0, ge=0.0, le=1.0)
    architectural_compliance: float = Field(default=1.0, ge=0.0, le=1.0)
    sliver_face_count: int = 0
    micro_gap_count: int = 0
    self_intersection_count: int = 0
    degenerate_element_count: int = 0
    complexity: int = 0
    processing_efficiency: float = 1.0
    memory_usage: int = 0
    last_validated: Optional[datetime] = None

    class Config:
        frozen = True


class WallSolid(BaseModel):
    """
    Central unit of work: a baseline, its two offsets and the solid faces between them.

    Pipeline stages never edit a WallSolid; they return a new one via replace().
    """

    id: str = Field(default_factory=new_id)
    baseline: Curve
    thickness: float
    wall_type: WallType = WallType.LAYOUT
    left_offset: Curve
    right_offset: Curve
    solid_geometry: List[Polygon] = Field(default_factory=list)
    join_types: Dict[str, JoinType] = Field(default_factory=dict)
    intersection_data: List[IntersectionData] = Field(default_factory=list)
    healing_history: List[HealingOperation] = Field(default_factory=list)
    geometric_quality: QualityMetrics = Field(default_factory=QualityMetrics)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        frozen = True

    @property
    def complexity(self) -> int:
        ring_points = sum(len(ring) for poly in self.solid_geometry for ring in poly.rings)
        return (
            len(self.baseline.points)
            + ring_points
            + len(self.intersection_data) * 5
            + len(self.healing_history) * 2
        )

    @property
    def area(self) -> float:
        return sum(poly.area for poly in self.solid_geometry)

    @property
    def perimeter(self) -> float:
        return sum(poly.perimeter for poly in self.solid_geometry)

    @property
    def bounding_box(self) -> BoundingBox:
        coords = [c for poly in self.solid_geometry for c in poly.outer_coordinates]
        if not coords:
            coords = [p.as_tuple() for p in self.baseline.points]
        return BoundingBox.from_coordinates(coords)

    def to_shapely(self):
        """Union of all solid faces as one shapely geometry."""
        shapes = [poly.shape for poly in self.solid_geometry if not poly.shape.is_empty]
        if not shapes:
            return MultiPolygon()
        if len(shapes) == 1:
            return shapes[0]
        return unary_union(shapes)

    def replace(self, **changes) -> "WallSolid":
        """New solid with the given fields replaced; this instance is left untouched."""
        return self.model_copy(update=changes)

    def with_healing(self, operations: List[HealingOperation], **changes) -> "WallSolid":
        """New solid with operations appended to the healing history."""
        return self.replace(healing_history=list(self.healing_history) + list(operations), **changes)
