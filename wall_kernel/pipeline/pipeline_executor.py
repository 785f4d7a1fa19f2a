"""
Pipeline executor for the per-wall geometry pipeline.

TOLERANCE -> OFFSET -> INTERSECTION -> BOOLEAN -> HEALING -> SIMPLIFICATION -> VALIDATION

A GeometricError raised by any step is handed to the error handler; when it
recovers a solid the remaining steps run on it, otherwise the wall comes back
as a structured failure. Anything else is logged and re-raised.
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Sequence

import psutil
import structlog

from ..config import KernelConfig, settings
from ..engines.boolean_engine import BooleanEngine
from ..engines.error_handler import ErrorHandler
from ..engines.healing_engine import HealingEngine
from ..engines.intersection_resolver import IntersectionResolver
from ..engines.offset_engine import OffsetEngine
from ..engines.simplification_engine import SimplificationEngine
from ..engines.tolerance_manager import ToleranceManager
from ..engines.validator import Validator
from ..errors import (
    BooleanFailure,
    DegenerateGeometry,
    GeometricError,
    InvalidParameter,
    ValidationFailure,
)
from ..geometry.junctions import merge_adjusted_ends
from ..models.enums import ToleranceContext
from ..models.geometry import Curve, new_id
from ..models.results import RecoveryReport, ValidationResult
from ..models.wall_solid import WallSolid
from .pipeline_models import FloorPlanResult, GroupStats, PipelineResult, WallInput

logger = structlog.get_logger()


def _rss_mb() -> float:
    return psutil.Process().memory_info().rss / (1024 * 1024)


class WallRun:
    """State of one wall's trip through the pipeline; local to a single invocation."""

    def __init__(self, wall_input: WallInput, adjacent: Optional[Sequence[WallSolid]] = None):
        self.wall_input = wall_input
        self.wall_id = wall_input.id or new_id()
        self.adjacent = list(adjacent or [])
        self.baseline: Optional[Curve] = None
        self.thickness = wall_input.resolved_thickness
        self.tolerances: Dict[str, float] = {}
        self.solid: Optional[WallSolid] = None
        self.validation: Optional[ValidationResult] = None
        self.recovery: Optional[RecoveryReport] = None
        self.warnings: List[str] = []
        self.step_timings: Dict[str, int] = {}
        self.failure: Optional[PipelineResult] = None


class PipelineExecutor:
    """Runs walls through the geometry pipeline, one at a time or as a floor plan."""

    PIPELINE_STEPS = [
        "TOLERANCE",
        "OFFSET",
        "INTERSECTION",
        "BOOLEAN",
        "HEALING",
        "SIMPLIFICATION",
        "VALIDATION",
    ]
    # floor plans resolve junctions network-wide between these two phases
    BUILD_STEPS = ["TOLERANCE", "OFFSET"]
    FINISH_STEPS = ["BOOLEAN", "HEALING", "SIMPLIFICATION", "VALIDATION"]

    def __init__(self, config: Optional[KernelConfig] = None, run_id: Optional[uuid.UUID] = None):
        self.config = config or KernelConfig.from_settings(settings)
        self.run_id = run_id or uuid.uuid4()
        cfg = self.config

        self.tolerance_manager = ToleranceManager(cfg.tolerance, self.run_id)
        self.offset_engine = OffsetEngine(cfg.offset, self.run_id)
        # junction geometry follows the offset miter limit and the resolver's parallel threshold
        boolean_config = cfg.boolean.model_copy(update={
            "miter_limit": cfg.offset.miter_limit,
            "parallel_overlap_threshold": cfg.intersection.parallel_overlap_threshold,
        })
        self.boolean_engine = BooleanEngine(boolean_config, self.run_id)
        self.intersection_resolver = IntersectionResolver(
            cfg.intersection,
            self.run_id,
            tolerance_manager=self.tolerance_manager,
            boolean_engine=self.boolean_engine,
            document_precision=cfg.document_precision,
        )
        self.healing_engine = HealingEngine(cfg.healing, self.run_id)
        self.simplification_engine = SimplificationEngine(cfg.simplification, self.run_id)
        self.validator = Validator(cfg.validator, self.run_id)
        self.error_handler = ErrorHandler(
            cfg.error_handler,
            self.run_id,
            healing_engine=self.healing_engine,
            validator=self.validator,
            simplification_engine=self.simplification_engine,
            offset_engine=self.offset_engine,
            tolerance_manager=self.tolerance_manager,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def process_wall(
        self,
        wall_input: WallInput,
        adjacent: Optional[Sequence[WallSolid]] = None,
    ) -> PipelineResult:
        """
        Run one wall through every pipeline step.

        Args:
            wall_input: baseline and attributes of the wall
            adjacent: already built walls it may meet; their junctions are
                resolved onto this wall's ends

        Returns:
            PipelineResult; success=False carries the error descriptors and
            the recovery report of the step that could not be repaired.
        """
        start_time = time.time()
        run = WallRun(wall_input, adjacent)
        logger.info(
            "Pipeline execution started",
            run_id=str(self.run_id),
            wall_id=run.wall_id,
            adjacent=len(run.adjacent),
        )

        failure = self._run_steps(run, self.PIPELINE_STEPS)
        result = failure or self._result(run)

        logger.info(
            "Pipeline execution completed",
            run_id=str(self.run_id),
            wall_id=run.wall_id,
            success=result.success,
            warnings=len(result.warnings),
            step_timings=result.step_timings,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return result

    def process_floor_plan(self, walls: Sequence[WallInput]) -> FloorPlanResult:
        """
        Build, connect and finish every wall of a floor plan.

        Walls are offset in groups of batch_size, junctions are resolved
        across the whole network, then each wall is composed, healed,
        simplified and validated (again in groups). Finished walls are
        checked against each other and unioned into one composed solid.
        """
        start_time = time.time()
        runs = [WallRun(w) for w in walls]
        warnings: List[str] = []
        logger.info(
            "Floor plan processing started",
            run_id=str(self.run_id),
            wall_count=len(runs),
            batch_size=self.config.batch_size,
        )

        groups = self._run_groups(runs, self.BUILD_STEPS, "build")
        built = [r for r in runs if r.failure is None]

        network = None
        if len(built) >= 2:
            network_tolerance = max(r.tolerances["boolean"] for r in built)
            try:
                network = self.intersection_resolver.optimize_intersection_network(
                    [r.solid for r in built], network_tolerance)
            except GeometricError as e:
                logger.warning(
                    "Network optimization failed",
                    run_id=str(self.run_id),
                    error_type=e.error_type.value,
                    error=e.message,
                )
                warnings.append(f"network optimization skipped: {e.message}")
            else:
                warnings.extend(network.warnings)
                resolved = {w.id: w for w in network.resolved_walls}
                for run in built:
                    if run.solid.id in resolved:
                        run.solid = resolved[run.solid.id]

        groups.extend(self._run_groups(built, self.FINISH_STEPS, "finish"))

        results = [r.failure or self._result(r) for r in runs]
        solids = [r.wall_solid for r in results if r.success and r.wall_solid is not None]

        network_issues = []
        composition = None
        if solids:
            network_issues = self.validator.validate_wall_network(solids)
            composition_tolerance = max(
                self.tolerance_manager.get_boolean_tolerance(s.thickness, self.config.document_precision, len(solids))
                for s in solids
            )
            try:
                composition = self.boolean_engine.batch_union(solids, composition_tolerance)
            except GeometricError as e:
                logger.warning("Floor plan composition failed", run_id=str(self.run_id), error=e.message)
                warnings.append(f"composition skipped: {e.message}")
            else:
                warnings.extend(composition.warnings)

        processing_time = (time.time() - start_time) * 1000
        result = FloorPlanResult(
            success=all(r.success for r in results),
            walls=results,
            network=network,
            composition=composition,
            network_issues=network_issues,
            groups=groups,
            warnings=warnings,
            processing_time=processing_time,
        )
        logger.info(
            "Floor plan processing completed",
            run_id=str(self.run_id),
            wall_count=len(results),
            failed=len(result.failed_walls),
            network_issues=len(network_issues),
            duration_ms=int(processing_time),
        )
        return result

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    def _run_groups(self, runs: List[WallRun], steps: List[str], phase: str) -> List[GroupStats]:
        """Run steps over runs in fixed-size groups; a group finishes before the next starts."""
        size = self.config.batch_size
        stats = []
        for index, offset in enumerate(range(0, len(runs), size)):
            group = runs[offset:offset + size]
            group_start = time.time()

            if self.config.enable_parallel_processing and len(group) > 1:
                with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                    future_to_run = {executor.submit(self._run_steps, run, steps): run for run in group}
                    for future in as_completed(future_to_run):
                        future_to_run[future].failure = future.result()
            else:
                for run in group:
                    run.failure = self._run_steps(run, steps)

            group_stats = GroupStats(
                phase=phase,
                index=index,
                wall_count=len(group),
                failed=sum(1 for run in group if run.failure is not None),
                duration_ms=int((time.time() - group_start) * 1000),
                memory_rss_mb=round(_rss_mb(), 1),
            )
            logger.info("Wall group processed", run_id=str(self.run_id), **group_stats.model_dump())
            stats.append(group_stats)
        return stats

    def _run_steps(self, run: WallRun, steps: List[str]) -> Optional[PipelineResult]:
        """Execute steps in order; returns a failure result, or None when every step completed."""
        for step_name in steps:
            step_start = time.time()
            try:
                self._execute_step(step_name, run)
            except GeometricError as e:
                failure = self._recover(run, step_name, e)
                if failure is not None:
                    return failure
            except Exception as e:
                logger.error(
                    "Pipeline step failed",
                    run_id=str(self.run_id),
                    wall_id=run.wall_id,
                    step_name=step_name,
                    error=str(e),
                )
                raise
            finally:
                run.step_timings[step_name] = int((time.time() - step_start) * 1000)
        return None

    def _execute_step(self, step_name: str, run: WallRun) -> None:
        handler = getattr(self, f"_step_{step_name.lower()}")
        handler(run)

    def _recover(self, run: WallRun, step_name: str, error: GeometricError) -> Optional[PipelineResult]:
        """Route a step error through the error handler; None means the run can continue."""
        if error.solid is None and run.solid is not None:
            error.solid = run.solid
        descriptor = error.to_descriptor()
        logger.warning(
            "Pipeline step raised geometric error",
            run_id=str(self.run_id),
            wall_id=run.wall_id,
            step_name=step_name,
            error_type=descriptor.error_type.value,
            error=descriptor.message,
        )

        report = self.error_handler.handle_geometric_error(descriptor)
        run.recovery = report
        if report.success:
            run.solid = report.recovered_solid
            run.validation = self.validator.validate_wall_solid(run.solid)
            run.warnings.append(f"recovered from {descriptor.error_type.value} in {step_name.lower()}")
            return None

        return PipelineResult(
            success=False,
            wall_id=run.wall_id,
            warnings=run.warnings,
            errors=[descriptor],
            step_timings=run.step_timings,
            recovery=report,
            failed_step=step_name,
        )

    def _result(self, run: WallRun) -> PipelineResult:
        return PipelineResult(
            success=True,
            wall_id=run.wall_id,
            wall_solid=run.solid,
            validation=run.validation,
            warnings=run.warnings,
            step_timings=run.step_timings,
            recovery=run.recovery,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _step_tolerance(self, run: WallRun) -> None:
        wall_input = run.wall_input
        if len(wall_input.baseline) < 2:
            raise InvalidParameter(
                f"Wall {run.wall_id} needs at least 2 baseline points, got {len(wall_input.baseline)}",
                operation="process_wall",
            )
        precision = self.config.document_precision
        tm = self.tolerance_manager

        merge_tolerance = tm.calculate_tolerance(run.thickness, precision, 90.0, ToleranceContext.VERTEX_MERGE)
        run.baseline = wall_input.to_curve(merge_tolerance)
        complexity = len(run.baseline.points) + sum(w.complexity for w in run.adjacent)
        run.tolerances = {
            "vertex_merge": merge_tolerance,
            "offset": tm.get_offset_tolerance(run.thickness, precision, run.baseline.max_curvature),
            "boolean": tm.get_boolean_tolerance(run.thickness, precision, complexity),
            "healing": tm.calculate_tolerance(run.thickness, precision, 90.0, ToleranceContext.SHAPE_HEALING),
        }

    def _step_offset(self, run: WallRun) -> None:
        wall_input = run.wall_input
        run.solid = self.offset_engine.create_wall_solid(
            run.baseline,
            run.thickness,
            wall_input.wall_type,
            wall_input.join_type,
            run.tolerances["offset"],
            wall_id=run.wall_id,
        )
        run.warnings.extend(run.solid.metadata.get("offset_warnings", []))
        self._refresh_quality(run)

    def _step_intersection(self, run: WallRun) -> None:
        tolerance = run.tolerances["boolean"]
        versions = []
        for other in run.adjacent:
            result = self.intersection_resolver.resolve_junction(run.solid, other, tolerance)
            if result is None:
                continue
            run.warnings.extend(result.warnings)
            if not result.success:
                error = result.errors[0]
                raise GeometricError(
                    error.message,
                    error_type=error.error_type,
                    operation=error.operation or "resolve_junction",
                    solid=run.solid,
                    tolerance=result.tolerance_used,
                )
            versions.extend(w for w in result.adjusted_walls if w.id == run.solid.id)
        if versions:
            run.solid = merge_adjusted_ends(run.solid, versions, tolerance)
            self._refresh_quality(run)

    def _step_boolean(self, run: WallRun) -> None:
        result = self.boolean_engine.union([run.solid], run.tolerances["boolean"])
        run.warnings.extend(result.warnings)
        if not result.success or result.result_solid is None:
            message = result.errors[0].message if result.errors else "union produced no solid"
            raise BooleanFailure(message, operation="union", solid=run.solid, tolerance=run.tolerances["boolean"])
        run.solid = result.result_solid
        self._refresh_quality(run)

    def _step_healing(self, run: WallRun) -> None:
        result = self.healing_engine.heal_shape(run.solid, run.tolerances["healing"])
        run.warnings.extend(result.warnings)
        if not result.success:
            message = result.errors[0].message if result.errors else "healing failed"
            raise DegenerateGeometry(message, operation="heal_shape", solid=run.solid,
                                     tolerance=run.tolerances["healing"])
        run.solid = result.healed_solid
        self._refresh_quality(run)

    def _step_simplification(self, run: WallRun) -> None:
        result = self.simplification_engine.simplify_wall_geometry(run.solid, run.tolerances["offset"])
        run.warnings.extend(result.warnings)
        run.solid = result.simplified_solid
        self._refresh_quality(run)

    def _refresh_quality(self, run: WallRun) -> None:
        run.solid = run.solid.replace(geometric_quality=self.validator.assess_quality(run.solid))

    def _step_validation(self, run: WallRun) -> None:
        validation = self.validator.validate_wall_solid(run.solid)
        run.validation = validation
        run.solid = run.solid.replace(geometric_quality=validation.quality_metrics)
        run.warnings.extend(validation.warnings)
        if not validation.is_valid:
            raise ValidationFailure(
                "; ".join(validation.errors) or f"Wall {run.wall_id} failed validation",
                operation="validate_wall_solid",
                solid=run.solid,
                tolerance=run.tolerances["healing"],
            )
