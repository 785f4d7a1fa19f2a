"""
Geometric error taxonomy.

Engines raise GeometricError subclasses; the pipeline turns them into
descriptors for the error handler and into structured failure results.
"""

from typing import Any, Dict, Optional, Tuple

from .models.enums import ErrorSeverity, GeometricErrorType
from .models.results import GeometricErrorDescriptor
from .models.wall_solid import WallSolid

# type -> (default severity, recoverable, suggested fix)
ERROR_DEFAULTS: Dict[GeometricErrorType, Tuple[ErrorSeverity, bool, str]] = {
    GeometricErrorType.OFFSET_FAILURE: (
        ErrorSeverity.HIGH, True, "Retry with bevel joins or heal the baseline before offsetting"),
    GeometricErrorType.BOOLEAN_FAILURE: (
        ErrorSeverity.HIGH, True, "Heal input polygons and retry with a widened tolerance"),
    GeometricErrorType.SELF_INTERSECTION: (
        ErrorSeverity.HIGH, True, "Run shape healing to repair self-intersecting rings"),
    GeometricErrorType.DEGENERATE_GEOMETRY: (
        ErrorSeverity.MEDIUM, True, "Run shape healing to remove degenerate elements"),
    GeometricErrorType.TOLERANCE_EXCEEDED: (
        ErrorSeverity.MEDIUM, True, "Widen the tolerance for this operation"),
    GeometricErrorType.NUMERICAL_INSTABILITY: (
        ErrorSeverity.HIGH, True, "Widen the tolerance and retry"),
    GeometricErrorType.DUPLICATE_VERTICES: (
        ErrorSeverity.LOW, True, "Merge duplicate vertices"),
    GeometricErrorType.VALIDATION_FAILURE: (
        ErrorSeverity.MEDIUM, True, "Heal the solid and validate again"),
    GeometricErrorType.COMPLEXITY_EXCEEDED: (
        ErrorSeverity.HIGH, True, "Simplify geometry or split the batch"),
    GeometricErrorType.INVALID_PARAMETER: (
        ErrorSeverity.CRITICAL, False, "Correct the input parameters"),
    GeometricErrorType.TOPOLOGICAL_CONSISTENCY: (
        ErrorSeverity.HIGH, True, "Rebuild offsets from the baseline and heal"),
    GeometricErrorType.DIMENSIONAL_ACCURACY: (
        ErrorSeverity.MEDIUM, True, "Heal the solid and check thickness against offsets"),
    GeometricErrorType.STRUCTURAL_INTEGRITY: (
        ErrorSeverity.HIGH, False, "Review wall thickness and junction layout"),
    GeometricErrorType.MANUFACTURING_FEASIBILITY: (
        ErrorSeverity.MEDIUM, True, "Remove slivers and micro-gaps by healing"),
    GeometricErrorType.TOPOLOGY_ERROR: (
        ErrorSeverity.HIGH, True, "Heal the solid and re-run junction resolution"),
}


class GeometricError(Exception):
    """Base exception for every failure raised by a kernel stage."""

    error_type = GeometricErrorType.VALIDATION_FAILURE

    def __init__(
        self,
        message: str,
        error_type: Optional[GeometricErrorType] = None,
        severity: Optional[ErrorSeverity] = None,
        recoverable: Optional[bool] = None,
        operation: str = "",
        suggested_fix: Optional[str] = None,
        solid: Optional[WallSolid] = None,
        tolerance: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_type is not None:
            self.error_type = error_type
        default_severity, default_recoverable, default_fix = ERROR_DEFAULTS[self.error_type]
        self.severity = severity or default_severity
        self.recoverable = default_recoverable if recoverable is None else recoverable
        self.suggested_fix = suggested_fix or default_fix
        self.operation = operation
        self.solid = solid
        self.tolerance = tolerance
        self.context = context or {}

    def to_descriptor(self) -> GeometricErrorDescriptor:
        return GeometricErrorDescriptor(
            error_type=self.error_type,
            severity=self.severity,
            message=self.message,
            recoverable=self.recoverable,
            operation=self.operation,
            suggested_fix=self.suggested_fix,
            tolerance=self.tolerance,
            solid=self.solid,
            context=self.context,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.error_type.value}, {self.message!r})"


class InvalidParameter(GeometricError):
    """Non-positive thickness/tolerance or an empty baseline. Never retried."""

    error_type = GeometricErrorType.INVALID_PARAMETER

    def __init__(self, message: str, **kwargs):
        kwargs["recoverable"] = False
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(message, **kwargs)


class OffsetFailure(GeometricError):
    error_type = GeometricErrorType.OFFSET_FAILURE


class BooleanFailure(GeometricError):
    error_type = GeometricErrorType.BOOLEAN_FAILURE


class ComplexityExceeded(GeometricError):
    error_type = GeometricErrorType.COMPLEXITY_EXCEEDED


class DegenerateGeometry(GeometricError):
    error_type = GeometricErrorType.DEGENERATE_GEOMETRY


class ValidationFailure(GeometricError):
    error_type = GeometricErrorType.VALIDATION_FAILURE


def descriptor_for(
    error_type: GeometricErrorType,
    message: str,
    operation: str = "",
    solid: Optional[WallSolid] = None,
    tolerance: Optional[float] = None,
    **context,
) -> GeometricErrorDescriptor:
    """Descriptor with the default severity/recoverable/fix of error_type."""
    severity, recoverable, fix = ERROR_DEFAULTS[error_type]
    return GeometricErrorDescriptor(
        error_type=error_type,
        severity=severity,
        message=message,
        recoverable=recoverable,
        operation=operation,
        suggested_fix=fix,
        tolerance=tolerance,
        solid=solid,
        context=context,
    )
