from .enums import (
    CurveType,
    ErrorSeverity,
    GeometricErrorType,
    IssueSeverity,
    JoinType,
    JunctionType,
    ToleranceContext,
    WallType,
)
from .geometry import BoundingBox, Curve, Point, Polygon
from .wall_solid import HealingOperation, IntersectionData, QualityMetrics, WallSolid
from .results import (
    GeometricErrorDescriptor,
    BooleanResult,
    ExtremeAngleJunction,
    ExtremeAngleReport,
    HealingResult,
    JunctionResult,
    NetworkOptimizationResult,
    OffsetResult,
    RecoveryReport,
    SimplificationResult,
    ToleranceBounds,
    ToleranceValidation,
    ValidationIssue,
    ValidationResult,
)
