"""
Closed enumerations shared by the kernel's data model.
"""

from enum import Enum


class JoinType(str, Enum):
    MITER = "miter"
    BEVEL = "bevel"
    ROUND = "round"


class JunctionType(str, Enum):
    T_JUNCTION = "t_junction"
    L_JUNCTION = "l_junction"
    CROSS_JUNCTION = "cross_junction"
    PARALLEL_OVERLAP = "parallel_overlap"


class CurveType(str, Enum):
    POLYLINE = "polyline"
    BEZIER = "bezier"
    SPLINE = "spline"
    ARC = "arc"


class ToleranceContext(str, Enum):
    VERTEX_MERGE = "vertex_merge"
    OFFSET_OPERATION = "offset_operation"
    BOOLEAN_OPERATION = "boolean_operation"
    SHAPE_HEALING = "shape_healing"


class WallType(str, Enum):
    LAYOUT = "layout"
    ZONE = "zone"
    AREA = "area"
    STRUCTURAL = "structural"
    PARTITION = "partition"
    CURTAIN = "curtain"

    @property
    def default_thickness(self) -> float:
        """Default thickness in mm for this wall type."""
        return _DEFAULT_THICKNESS_MM[self]


_DEFAULT_THICKNESS_MM = {
    WallType.LAYOUT: 100.0,
    WallType.ZONE: 150.0,
    WallType.AREA: 120.0,
    WallType.STRUCTURAL: 200.0,
    WallType.PARTITION: 80.0,
    WallType.CURTAIN: 50.0,
}


class GeometricErrorType(str, Enum):
    OFFSET_FAILURE = "offset_failure"
    BOOLEAN_FAILURE = "boolean_failure"
    SELF_INTERSECTION = "self_intersection"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    TOLERANCE_EXCEEDED = "tolerance_exceeded"
    NUMERICAL_INSTABILITY = "numerical_instability"
    DUPLICATE_VERTICES = "duplicate_vertices"
    VALIDATION_FAILURE = "validation_failure"
    COMPLEXITY_EXCEEDED = "complexity_exceeded"
    INVALID_PARAMETER = "invalid_parameter"
    TOPOLOGICAL_CONSISTENCY = "topological_consistency"
    DIMENSIONAL_ACCURACY = "dimensional_accuracy"
    STRUCTURAL_INTEGRITY = "structural_integrity"
    MANUFACTURING_FEASIBILITY = "manufacturing_feasibility"
    TOPOLOGY_ERROR = "topology_error"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssueSeverity(str, Enum):
    """Severity of a validation issue; ERROR and CRITICAL invalidate a solid."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
