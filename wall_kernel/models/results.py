"""
Result models returned by the kernel operations.

Every operation reports failure through these objects (success=False with
populated errors) rather than a partial result.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .enums import ErrorSeverity, GeometricErrorType, IssueSeverity, JoinType
from .geometry import Curve, Point, Polygon
from .wall_solid import IntersectionData, QualityMetrics, WallSolid


class GeometricErrorDescriptor(BaseModel):
    """Serializable description of a geometric error, as consumed by the error handler."""

    error_type: GeometricErrorType
    severity: ErrorSeverity
    message: str
    recoverable: bool
    operation: str = ""
    suggested_fix: str = ""
    tolerance: Optional[float] = None
    solid: Optional[WallSolid] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class ToleranceBounds(BaseModel):
    min: float
    max: float


class ToleranceValidation(BaseModel):
    is_valid: bool
    bounds: ToleranceBounds
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class OffsetResult(BaseModel):
    success: bool
    left_offset: Optional[Curve] = None
    right_offset: Optional[Curve] = None
    join_type: Optional[JoinType] = None
    warnings: List[str] = Field(default_factory=list)
    errors: List[GeometricErrorDescriptor] = Field(default_factory=list)
    fallback_used: bool = False
    processing_time: float = 0.0


class BooleanResult(BaseModel):
    success: bool
    operation_type: str
    result_solid: Optional[WallSolid] = None
    result_polygons: List[Polygon] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[GeometricErrorDescriptor] = Field(default_factory=list)
    requires_healing: bool = False
    processing_time: float = 0.0


class JunctionResult(BaseModel):
    success: bool
    junction: Optional[IntersectionData] = None
    result_solid: Optional[WallSolid] = None
    adjusted_walls: List[WallSolid] = Field(default_factory=list)
    strategy: Optional[str] = None
    complexity_score: Optional[float] = None
    tolerance_used: Optional[float] = None
    warnings: List[str] = Field(default_factory=list)
    errors: List[GeometricErrorDescriptor] = Field(default_factory=list)
    requires_healing: bool = False
    processing_time: float = 0.0


class ExtremeAngleJunction(BaseModel):
    wall_ids: List[str]
    angle: float
    tolerance: float


class ExtremeAngleReport(BaseModel):
    very_sharp: List[ExtremeAngleJunction] = Field(default_factory=list)
    sharp: List[ExtremeAngleJunction] = Field(default_factory=list)
    near_straight: List[ExtremeAngleJunction] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.very_sharp) + len(self.sharp) + len(self.near_straight)


class NetworkOptimizationResult(BaseModel):
    performance_gain: float
    optimizations_applied: List[str]
    processing_time: float
    original_complexity: int
    optimized_complexity: int
    junctions: List[IntersectionData] = Field(default_factory=list)
    groups: List[List[str]] = Field(default_factory=list)
    resolved_walls: List[WallSolid] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class HealingResult(BaseModel):
    success: bool
    healed_solid: Optional[WallSolid] = None
    operations_applied: List[str] = Field(default_factory=list)
    vertices_merged: int = 0
    gaps_eliminated: int = 0
    faces_removed: int = 0
    warnings: List[str] = Field(default_factory=list)
    errors: List[GeometricErrorDescriptor] = Field(default_factory=list)
    processing_time: float = 0.0


class SimplificationResult(BaseModel):
    success: bool
    simplified_solid: Optional[WallSolid] = None
    points_removed: int = 0
    accuracy_preserved: bool = True
    original_complexity: int = 0
    simplified_complexity: int = 0
    tolerance_used: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    processing_time: float = 0.0


class ValidationIssue(BaseModel):
    issue_type: str
    severity: IssueSeverity
    message: str
    suggested_fix: str = ""
    location: Optional[Point] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity in (IssueSeverity.ERROR, IssueSeverity.CRITICAL)


class ValidationResult(BaseModel):
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    quality_score: float
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    quality_metrics: QualityMetrics
    processing_time: float = 0.0


class RecoveryReport(BaseModel):
    success: bool
    recovery_applied: bool
    recovery_steps: List[str] = Field(default_factory=list)
    quality_improvement: float = 0.0
    attempts: int = 0
    recovered_solid: Optional[WallSolid] = None
    message: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)
