"""
Tolerance manager – adaptive numeric tolerance.

Turns wall thickness, document precision, the local angle between segments and
the operation context into the tolerance every other engine compares against.
Tolerance grows with thickness and with the angle's distance from 90°, and is
context-weighted: vertex merging is tightest, boolean operations loosest.
"""

import math
from typing import List, Optional, Union

from ..config import ToleranceConfig
from ..constants import THICKNESS_SCALE_MAX, THICKNESS_SCALE_MIN, REFERENCE_THICKNESS_MM
from ..errors import InvalidParameter
from ..models.enums import GeometricErrorType, ToleranceContext
from ..models.results import ToleranceBounds, ToleranceValidation
from .base_engine import BaseEngine

# Retry widening per failure type (multiplied once per attempt)
FAILURE_WIDENING = {
    GeometricErrorType.NUMERICAL_INSTABILITY: 10.0,
    GeometricErrorType.BOOLEAN_FAILURE: 2.0,
    GeometricErrorType.OFFSET_FAILURE: 2.0,
    GeometricErrorType.SELF_INTERSECTION: 2.0,
}
DEFAULT_FAILURE_WIDENING = 1.5


def _check_positive(value: float, name: str) -> None:
    if value is None or not math.isfinite(value) or value <= 0:
        raise InvalidParameter(
            f"{name} must be a positive finite number, got {value!r}",
            operation="calculate_tolerance",
            context={name: value},
        )


def fold_angle(angle_deg: float) -> float:
    """Fold any angle into [0, 180] degrees."""
    a = abs(angle_deg) % 360.0
    return 360.0 - a if a > 180.0 else a


class ToleranceManager(BaseEngine):
    """Computes and sanity-checks tolerances. Holds no state besides its config."""

    config_class = ToleranceConfig

    def calculate_tolerance(
        self,
        thickness: float,
        document_precision: float,
        local_angle: float = 90.0,
        context: Union[ToleranceContext, str] = ToleranceContext.OFFSET_OPERATION,
    ) -> float:
        """
        Tolerance for one operation.

        Args:
            thickness: wall thickness in mm (> 0)
            document_precision: drawing precision in mm (> 0)
            local_angle: angle between adjacent segments in degrees (90 = orthogonal)
            context: operation the tolerance is used for

        Returns:
            Positive tolerance, never above max_tolerance_adjustment * base_tolerance.

        Raises:
            InvalidParameter: thickness or precision is non-positive.
        """
        _check_positive(thickness, "thickness")
        _check_positive(document_precision, "document_precision")
        context = ToleranceContext(context)
        cfg = self.config

        tolerance = max(cfg.base_tolerance, document_precision * cfg.precision_factor)
        tolerance *= self.thickness_scale(thickness)
        tolerance *= cfg.context_weights[context]
        tolerance *= self.angle_scale(local_angle)
        return min(tolerance, cfg.max_tolerance)

    def thickness_scale(self, thickness: float) -> float:
        scale = math.sqrt(thickness / REFERENCE_THICKNESS_MM)
        return max(THICKNESS_SCALE_MIN, min(THICKNESS_SCALE_MAX, scale))

    def angle_scale(self, local_angle: float) -> float:
        deviation = abs(fold_angle(local_angle) - 90.0) / 90.0
        return 1.0 + self.config.angle_sensitivity * deviation

    def get_offset_tolerance(self, thickness: float, document_precision: float, curvature: float = 0.0) -> float:
        """Offset tolerance, widened on curved baselines."""
        base = self.calculate_tolerance(thickness, document_precision, 90.0, ToleranceContext.OFFSET_OPERATION)
        curvature_scale = 1.0 + math.log10(1.0 + max(0.0, curvature) * 1000.0)
        return min(base * curvature_scale, self.config.max_tolerance)

    def get_boolean_tolerance(self, thickness: float, document_precision: float, complexity: int = 1) -> float:
        """Boolean tolerance, widened for complex inputs."""
        base = self.calculate_tolerance(thickness, document_precision, 90.0, ToleranceContext.BOOLEAN_OPERATION)
        complexity_scale = 1.0 + math.log10(max(1, complexity))
        return min(base * complexity_scale, self.config.max_tolerance)

    def adjust_tolerance_for_failure(
        self,
        current: float,
        failure_type: Union[GeometricErrorType, str],
        attempt: int = 1,
    ) -> float:
        """Widened tolerance for a retry after failure_type; capped at the maximum bound."""
        _check_positive(current, "tolerance")
        factor = FAILURE_WIDENING.get(GeometricErrorType(failure_type), DEFAULT_FAILURE_WIDENING)
        widened = current * factor ** max(1, attempt)
        adjusted = min(widened, self.config.max_tolerance)
        self.log_info(
            "Tolerance widened for retry",
            failure_type=GeometricErrorType(failure_type).value,
            attempt=attempt,
            previous=current,
            adjusted=adjusted,
        )
        return adjusted

    @property
    def bounds(self) -> ToleranceBounds:
        cfg = self.config
        lowest_weight = min(cfg.context_weights.values())
        return ToleranceBounds(
            min=cfg.base_tolerance * lowest_weight * THICKNESS_SCALE_MIN,
            max=cfg.max_tolerance,
        )

    def validate_tolerance(
        self,
        value: float,
        context: Optional[Union[ToleranceContext, str]] = None,
    ) -> ToleranceValidation:
        """Sanity-check an externally supplied tolerance override."""
        bounds = self.bounds
        issues: List[str] = []
        recommendations: List[str] = []

        if value is None or not math.isfinite(value) or value <= 0:
            issues.append(f"Tolerance must be positive and finite, got {value!r}")
            recommendations.append(f"Use a tolerance between {bounds.min:g} and {bounds.max:g} mm")
            return ToleranceValidation(is_valid=False, bounds=bounds, issues=issues, recommendations=recommendations)

        if value < bounds.min:
            issues.append(f"Tolerance {value:g} is below the minimum {bounds.min:g}; numerical instability likely")
            recommendations.append(f"Increase tolerance to at least {bounds.min:g} mm")
        if value > bounds.max:
            issues.append(f"Tolerance {value:g} exceeds the maximum {bounds.max:g}; distinct features may merge")
            recommendations.append(f"Reduce tolerance to at most {bounds.max:g} mm")

        if context is not None and not issues:
            ctx = ToleranceContext(context)
            typical = self.config.base_tolerance * self.config.context_weights[ctx]
            if value > typical * 100:
                recommendations.append(
                    f"Tolerance is over 100x the typical {ctx.value} tolerance ({typical:g}); check units"
                )
            elif value < typical * 0.01:
                recommendations.append(
                    f"Tolerance is under 1% of the typical {ctx.value} tolerance ({typical:g}); check units"
                )

        if issues:
            self.log_warning("Tolerance override rejected", value=value, issues=issues)

        return ToleranceValidation(
            is_valid=not issues,
            bounds=bounds,
            issues=issues,
            recommendations=recommendations,
        )
