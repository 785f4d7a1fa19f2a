"""
Error handler – turns geometric errors into bounded recovery attempts.

Dispatches on the error type: most defects are healed and re-validated,
offset failures without a solid rebuild the wall from a cleaned baseline with
bevel joins, numerical problems retry with a widened tolerance, and complexity
overruns are simplified. Non-recoverable errors are reported untouched.
"""

import time
from typing import Callable, Dict, List, Optional, Tuple

from ..config import ErrorHandlerConfig
from ..errors import DegenerateGeometry, GeometricError
from ..models.enums import GeometricErrorType, JoinType, WallType
from ..models.geometry import Curve
from ..models.results import GeometricErrorDescriptor, RecoveryReport
from ..models.wall_solid import WallSolid
from .base_engine import BaseEngine
from .healing_engine import HealingEngine
from .offset_engine import OffsetEngine
from .simplification_engine import SimplificationEngine
from .tolerance_manager import ToleranceManager
from .validator import Validator

Strategy = Callable[[GeometricErrorDescriptor, float, int], Tuple[Optional[WallSolid], List[str]]]


class ErrorHandler(BaseEngine):
    """Single point where failed stages are repaired."""

    config_class = ErrorHandlerConfig

    def __init__(
        self,
        config: Optional[ErrorHandlerConfig] = None,
        run_id=None,
        healing_engine: Optional[HealingEngine] = None,
        validator: Optional[Validator] = None,
        simplification_engine: Optional[SimplificationEngine] = None,
        offset_engine: Optional[OffsetEngine] = None,
        tolerance_manager: Optional[ToleranceManager] = None,
        **options,
    ):
        super().__init__(config, run_id, **options)
        self.healing_engine = healing_engine or HealingEngine(run_id=self.run_id)
        self.validator = validator or Validator(run_id=self.run_id)
        self.simplification_engine = simplification_engine or SimplificationEngine(run_id=self.run_id)
        self.offset_engine = offset_engine or OffsetEngine(run_id=self.run_id)
        self.tolerance_manager = tolerance_manager or ToleranceManager(run_id=self.run_id)

        heal: Strategy = self._heal
        self.strategies: Dict[GeometricErrorType, Strategy] = {
            GeometricErrorType.DEGENERATE_GEOMETRY: heal,
            GeometricErrorType.SELF_INTERSECTION: heal,
            GeometricErrorType.DUPLICATE_VERTICES: heal,
            GeometricErrorType.BOOLEAN_FAILURE: heal,
            GeometricErrorType.VALIDATION_FAILURE: heal,
            GeometricErrorType.TOPOLOGICAL_CONSISTENCY: heal,
            GeometricErrorType.DIMENSIONAL_ACCURACY: heal,
            GeometricErrorType.MANUFACTURING_FEASIBILITY: heal,
            GeometricErrorType.TOPOLOGY_ERROR: heal,
            GeometricErrorType.OFFSET_FAILURE: self._recover_offset,
            GeometricErrorType.NUMERICAL_INSTABILITY: self._widen_and_heal,
            GeometricErrorType.TOLERANCE_EXCEEDED: self._widen_and_heal,
            GeometricErrorType.COMPLEXITY_EXCEEDED: self._simplify,
        }

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _heal(self, descriptor: GeometricErrorDescriptor, tolerance: float, attempt: int):
        if descriptor.solid is None:
            return None, ["no solid to heal"]
        result = self.healing_engine.heal_shape(descriptor.solid, tolerance)
        if not result.success:
            raise DegenerateGeometry(result.errors[0].message if result.errors else "healing failed",
                                     operation="heal_shape", solid=descriptor.solid, tolerance=tolerance)
        applied = ", ".join(result.operations_applied) or "nothing to heal"
        return result.healed_solid, [f"heal_shape at {tolerance:g} mm: {applied}"]

    def _widen_and_heal(self, descriptor: GeometricErrorDescriptor, tolerance: float, attempt: int):
        widened = self.tolerance_manager.adjust_tolerance_for_failure(tolerance, descriptor.error_type, attempt)
        solid, steps = self._heal(descriptor, widened, attempt)
        return solid, [f"tolerance widened {tolerance:g} -> {widened:g} mm"] + steps

    def _recover_offset(self, descriptor: GeometricErrorDescriptor, tolerance: float, attempt: int):
        if descriptor.solid is not None:
            return self._heal(descriptor, tolerance, attempt)
        baseline = descriptor.context.get("baseline")
        thickness = descriptor.context.get("thickness")
        if not isinstance(baseline, Curve) or not thickness:
            return None, ["no baseline to rebuild from"]

        healed_baseline, fixed = self.healing_engine.heal_curve(baseline, tolerance)
        solid = self.offset_engine.create_wall_solid(
            healed_baseline,
            thickness,
            WallType(descriptor.context.get("wall_type", WallType.LAYOUT.value)),
            JoinType.BEVEL,
            tolerance,
            wall_id=descriptor.context.get("wall_id"),
        )
        return solid, [
            f"baseline healed ({fixed} vertices fixed)",
            f"wall rebuilt with bevel joins at {tolerance:g} mm",
        ]

    def _simplify(self, descriptor: GeometricErrorDescriptor, tolerance: float, attempt: int):
        if descriptor.solid is None:
            return None, ["no solid to simplify"]
        result = self.simplification_engine.simplify_wall_geometry(descriptor.solid, tolerance * attempt)
        return result.simplified_solid, [f"simplified: {result.points_removed} points removed"]

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def _report(self, descriptor: GeometricErrorDescriptor, message: str, **fields) -> RecoveryReport:
        context = {"error_type": descriptor.error_type.value, "operation": descriptor.operation}
        return RecoveryReport(message=message, context=context, **fields)

    def handle_geometric_error(self, descriptor: GeometricErrorDescriptor) -> RecoveryReport:
        """
        Attempt recovery from one geometric error.

        Up to max_recovery_attempts; each failed attempt widens the tolerance
        for the next. quality_improvement is the validator score after minus
        the score of the failing solid (0 when there was none).
        """
        start_time = time.time()
        error_type = descriptor.error_type

        if not descriptor.recoverable or error_type == GeometricErrorType.INVALID_PARAMETER:
            self.log_info("Error not recoverable", error_type=error_type.value, message=descriptor.message)
            return self._report(descriptor, f"{error_type.value} is not recoverable",
                                success=False, recovery_applied=False)
        if not self.config.enable_auto_recovery:
            return self._report(descriptor, "Auto recovery disabled", success=False, recovery_applied=False)
        strategy = self.strategies.get(error_type)
        if strategy is None:
            return self._report(descriptor, f"No recovery strategy for {error_type.value}",
                                success=False, recovery_applied=False)

        tolerance = descriptor.tolerance or self.healing_engine.config.tolerance
        before = 0.0
        if descriptor.solid is not None:
            before = self.validator.validate_wall_solid(descriptor.solid).quality_score

        steps: List[str] = []
        applied = False
        attempts = 0
        for attempt in range(1, self.config.max_recovery_attempts + 1):
            attempts = attempt
            try:
                solid, attempt_steps = strategy(descriptor, tolerance, attempt)
            except GeometricError as e:
                steps.append(f"attempt {attempt} failed: {e.message}")
                if not e.recoverable:
                    break
                tolerance = self.tolerance_manager.adjust_tolerance_for_failure(tolerance, error_type, attempt)
                continue

            steps.extend(attempt_steps)
            if solid is None:
                break
            applied = True
            validation = self.validator.validate_wall_solid(solid)
            steps.append(f"validated: quality {validation.quality_score:.3f}")
            if validation.is_valid:
                improvement = validation.quality_score - before
                self.log_info(
                    "Recovery succeeded",
                    error_type=error_type.value,
                    attempts=attempt,
                    quality_improvement=round(improvement, 4),
                    duration_ms=int((time.time() - start_time) * 1000),
                )
                return self._report(
                    descriptor,
                    f"Recovered from {error_type.value}",
                    success=True,
                    recovery_applied=True,
                    recovery_steps=steps,
                    quality_improvement=improvement,
                    attempts=attempt,
                    recovered_solid=solid.replace(geometric_quality=validation.quality_metrics),
                )
            tolerance = self.tolerance_manager.adjust_tolerance_for_failure(tolerance, error_type, attempt)

        self.log_warning("Recovery failed", error_type=error_type.value, attempts=attempts, steps=steps)
        return self._report(
            descriptor,
            f"Could not recover from {error_type.value}",
            success=False,
            recovery_applied=applied,
            recovery_steps=steps,
            attempts=attempts,
        )
