"""
Pydantic models for pipeline input and output.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..models.enums import CurveType, JoinType, WallType
from ..models.geometry import Curve
from ..models.results import (
    BooleanResult,
    GeometricErrorDescriptor,
    NetworkOptimizationResult,
    RecoveryReport,
    ValidationIssue,
    ValidationResult,
)
from ..models.wall_solid import WallSolid
from ..units import EPS_MM


class WallInput(BaseModel):
    """One wall as supplied by the caller: a baseline in mm plus wall attributes."""

    id: Optional[str] = None
    baseline: List[Tuple[float, float]]
    thickness: Optional[float] = None
    wall_type: WallType = WallType.LAYOUT
    join_type: Optional[JoinType] = None
    curve_type: CurveType = CurveType.POLYLINE
    is_closed: bool = False

    @property
    def resolved_thickness(self) -> float:
        """Explicit thickness, or the default of the wall type."""
        if self.thickness is None:
            return self.wall_type.default_thickness
        return self.thickness

    def to_curve(self, tolerance: float = EPS_MM) -> Curve:
        return Curve.from_coordinates(
            self.baseline,
            curve_type=self.curve_type,
            is_closed=self.is_closed,
            tolerance=tolerance,
        )


class FloorPlanInput(BaseModel):
    walls: List[WallInput] = Field(default_factory=list)
    document_precision: Optional[float] = Field(default=None, gt=0)


class PipelineResult(BaseModel):
    success: bool
    wall_id: str
    wall_solid: Optional[WallSolid] = None
    validation: Optional[ValidationResult] = None
    warnings: List[str] = Field(default_factory=list)
    errors: List[GeometricErrorDescriptor] = Field(default_factory=list)
    step_timings: Dict[str, int] = Field(default_factory=dict)
    recovery: Optional[RecoveryReport] = None
    failed_step: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        summary = {
            "wall_id": self.wall_id,
            "success": self.success,
            "warnings": self.warnings,
            "errors": [f"{e.error_type.value}: {e.message}" for e in self.errors],
            "step_timings": self.step_timings,
        }
        if self.wall_solid is not None:
            summary["area"] = round(self.wall_solid.area, 3)
            summary["faces"] = len(self.wall_solid.solid_geometry)
            summary["junctions"] = len(self.wall_solid.intersection_data)
            summary["healing_operations"] = len(self.wall_solid.healing_history)
        if self.validation is not None:
            summary["is_valid"] = self.validation.is_valid
            summary["quality_score"] = round(self.validation.quality_score, 4)
        if self.recovery is not None:
            summary["recovery"] = {
                "success": self.recovery.success,
                "steps": self.recovery.recovery_steps,
            }
        if self.failed_step:
            summary["failed_step"] = self.failed_step
        return summary


class GroupStats(BaseModel):
    """Per-group bookkeeping of the batch runner."""

    phase: str
    index: int
    wall_count: int
    failed: int = 0
    duration_ms: int = 0
    memory_rss_mb: float = 0.0


class FloorPlanResult(BaseModel):
    success: bool
    walls: List[PipelineResult] = Field(default_factory=list)
    network: Optional[NetworkOptimizationResult] = None
    composition: Optional[BooleanResult] = None
    network_issues: List[ValidationIssue] = Field(default_factory=list)
    groups: List[GroupStats] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    processing_time: float = 0.0

    @property
    def failed_walls(self) -> List[str]:
        return [r.wall_id for r in self.walls if not r.success]

    def summary(self) -> Dict[str, Any]:
        """Compact JSON-friendly report (geometry omitted)."""
        summary = {
            "success": self.success,
            "wall_count": len(self.walls),
            "failed_walls": self.failed_walls,
            "walls": [r.summary() for r in self.walls],
            "network_issues": [i.model_dump(mode="json", exclude={"location"}) for i in self.network_issues],
            "groups": [g.model_dump() for g in self.groups],
            "warnings": self.warnings,
            "processing_time_ms": round(self.processing_time, 1),
        }
        if self.network is not None:
            summary["network"] = {
                "performance_gain": round(self.network.performance_gain, 2),
                "optimizations_applied": self.network.optimizations_applied,
                "original_complexity": self.network.original_complexity,
                "optimized_complexity": self.network.optimized_complexity,
                "junctions": len(self.network.junctions),
                "groups": self.network.groups,
            }
        if self.composition is not None and self.composition.result_solid is not None:
            summary["composed_area"] = round(self.composition.result_solid.area, 3)
            summary["composed_faces"] = len(self.composition.result_polygons)
        return summary
