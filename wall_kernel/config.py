"""
Configuration for the wall kernel.

Settings are read from the environment (or a .env file) once; engine configs
are plain pydantic models built from them and threaded through a pipeline
invocation. Nothing here is mutated after construction.
"""

from typing import Dict

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from . import constants as C
from .models.enums import JoinType, ToleranceContext


class Settings(BaseSettings):
    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Geometry
    base_tolerance: float = C.BASE_TOLERANCE_MM
    document_precision: float = 1.0  # mm

    # Batch processing
    batch_size: int = C.DEFAULT_BATCH_SIZE
    max_workers: int = C.DEFAULT_MAX_WORKERS
    enable_parallel_processing: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "WALL_KERNEL_"
        case_sensitive = False


class ToleranceConfig(BaseModel):
    base_tolerance: float = Field(default=C.BASE_TOLERANCE_MM, gt=0)
    max_tolerance_adjustment: float = Field(default=C.MAX_TOLERANCE_ADJUSTMENT, ge=1)
    precision_factor: float = Field(default=C.PRECISION_FACTOR, gt=0)
    angle_sensitivity: float = Field(default=C.ANGLE_SENSITIVITY, ge=0)
    context_weights: Dict[ToleranceContext, float] = Field(
        default_factory=lambda: {
            ToleranceContext.VERTEX_MERGE: C.CONTEXT_WEIGHT_VERTEX_MERGE,
            ToleranceContext.OFFSET_OPERATION: C.CONTEXT_WEIGHT_OFFSET,
            ToleranceContext.SHAPE_HEALING: C.CONTEXT_WEIGHT_HEALING,
            ToleranceContext.BOOLEAN_OPERATION: C.CONTEXT_WEIGHT_BOOLEAN,
        }
    )

    @model_validator(mode="after")
    def _check_context_order(self):
        weights = self.context_weights
        missing = [ctx.value for ctx in ToleranceContext if ctx not in weights]
        if missing:
            raise ValueError(f"missing context weights: {missing}")
        if weights[ToleranceContext.VERTEX_MERGE] > min(weights.values()):
            raise ValueError("vertex_merge must be the tightest tolerance context")
        if weights[ToleranceContext.BOOLEAN_OPERATION] < max(weights.values()):
            raise ValueError("boolean_operation must be the loosest tolerance context")
        return self

    @property
    def max_tolerance(self) -> float:
        return self.base_tolerance * self.max_tolerance_adjustment


class OffsetEngineConfig(BaseModel):
    tolerance: float = Field(default=C.BASE_TOLERANCE_MM, gt=0)
    default_join_type: JoinType = JoinType.MITER
    miter_limit: float = Field(default=C.DEFAULT_MITER_LIMIT, ge=1)
    enable_fallback: bool = True
    min_segment_length: float = Field(default=C.MIN_SEGMENT_LENGTH_MM, ge=0)
    round_segments: int = Field(default=C.ROUND_JOIN_SEGMENTS, ge=1)


class BooleanEngineConfig(BaseModel):
    tolerance: float = Field(default=C.BASE_TOLERANCE_MM, gt=0)
    max_complexity: int = Field(default=C.BOOLEAN_MAX_COMPLEXITY, gt=0)
    enable_parallel_processing: bool = True
    batch_divide_threshold: int = Field(default=C.BATCH_DIVIDE_THRESHOLD, ge=2)
    parallel_overlap_threshold: float = Field(default=C.PARALLEL_OVERLAP_THRESHOLD, ge=0, lt=1)
    miter_limit: float = Field(default=C.DEFAULT_MITER_LIMIT, ge=1)


class IntersectionResolverConfig(BaseModel):
    tolerance: float = Field(default=C.BASE_TOLERANCE_MM, gt=0)
    max_complexity: int = Field(default=C.INTERSECTION_MAX_COMPLEXITY, gt=0)
    extreme_angle_threshold: float = Field(default=C.EXTREME_ANGLE_THRESHOLD_DEG, gt=0, lt=90)
    parallel_overlap_threshold: float = Field(default=C.PARALLEL_OVERLAP_THRESHOLD, ge=0, lt=1)
    optimization_enabled: bool = True
    spatial_indexing_enabled: bool = True
    enable_parallel_processing: bool = True
    max_workers: int = Field(default=C.DEFAULT_MAX_WORKERS, ge=1)


class HealingEngineConfig(BaseModel):
    tolerance: float = Field(default=C.BASE_TOLERANCE_MM, gt=0)
    sliver_face_threshold: float = Field(default=C.SLIVER_FACE_THRESHOLD, gt=0)
    micro_gap_threshold: float = Field(default=C.MICRO_GAP_THRESHOLD_MM, ge=0)
    max_healing_iterations: int = Field(default=C.MAX_HEALING_ITERATIONS, ge=1)
    enable_auto_healing: bool = True


class SimplificationEngineConfig(BaseModel):
    tolerance: float = Field(default=C.BASE_TOLERANCE_MM, gt=0)
    preserve_architectural_features: bool = True
    max_simplification_level: float = Field(default=C.MAX_SIMPLIFICATION_LEVEL, gt=0, le=1)
    adaptive_tolerance_factor: float = Field(default=C.ADAPTIVE_TOLERANCE_FACTOR, ge=0)
    corner_angle_threshold: float = Field(default=C.CORNER_ANGLE_THRESHOLD_DEG, gt=0, lt=180)
    collinear_angle_threshold: float = Field(default=C.COLLINEAR_ANGLE_THRESHOLD_DEG, ge=0)
    min_vertices_per_ring: int = Field(default=C.MIN_VERTICES_PER_RING, ge=3)


class ValidatorConfig(BaseModel):
    tolerance: float = Field(default=C.BASE_TOLERANCE_MM, gt=0)
    sliver_face_threshold: float = Field(default=C.SLIVER_FACE_THRESHOLD, gt=0)
    micro_gap_threshold: float = Field(default=C.MICRO_GAP_THRESHOLD_MM, ge=0)
    sharp_angle_threshold: float = Field(default=C.SHARP_ANGLE_THRESHOLD_DEG, gt=0, lt=90)
    min_wall_thickness: float = Field(default=C.MIN_WALL_THICKNESS_MM, gt=0)
    max_wall_thickness: float = Field(default=C.MAX_WALL_THICKNESS_MM, gt=0)
    thickness_deviation_ratio: float = Field(default=C.THICKNESS_DEVIATION_RATIO, gt=0)
    weight_geometric_accuracy: float = Field(default=C.WEIGHT_GEOMETRIC_ACCURACY, ge=0)
    weight_topological_consistency: float = Field(default=C.WEIGHT_TOPOLOGICAL_CONSISTENCY, ge=0)
    weight_manufacturability: float = Field(default=C.WEIGHT_MANUFACTURABILITY, ge=0)
    weight_architectural_compliance: float = Field(default=C.WEIGHT_ARCHITECTURAL_COMPLIANCE, ge=0)

    @model_validator(mode="after")
    def _check_weights(self):
        total = (
            self.weight_geometric_accuracy
            + self.weight_topological_consistency
            + self.weight_manufacturability
            + self.weight_architectural_compliance
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"quality weights must sum to 1.0, got {total}")
        return self


class ErrorHandlerConfig(BaseModel):
    enable_auto_recovery: bool = True
    max_recovery_attempts: int = Field(default=C.MAX_RECOVERY_ATTEMPTS, ge=0)


class KernelConfig(BaseModel):
    """Every engine config, built once per pipeline invocation."""

    document_precision: float = Field(default=1.0, gt=0)
    batch_size: int = C.DEFAULT_BATCH_SIZE
    max_workers: int = Field(default=C.DEFAULT_MAX_WORKERS, ge=1)
    enable_parallel_processing: bool = True
    tolerance: ToleranceConfig = Field(default_factory=ToleranceConfig)
    offset: OffsetEngineConfig = Field(default_factory=OffsetEngineConfig)
    boolean: BooleanEngineConfig = Field(default_factory=BooleanEngineConfig)
    intersection: IntersectionResolverConfig = Field(default_factory=IntersectionResolverConfig)
    healing: HealingEngineConfig = Field(default_factory=HealingEngineConfig)
    simplification: SimplificationEngineConfig = Field(default_factory=SimplificationEngineConfig)
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    error_handler: ErrorHandlerConfig = Field(default_factory=ErrorHandlerConfig)

    @field_validator("batch_size")
    @classmethod
    def _clamp_batch_size(cls, value: int) -> int:
        return max(C.MIN_BATCH_SIZE, min(C.MAX_BATCH_SIZE, value))

    @classmethod
    def from_settings(cls, settings: Settings) -> "KernelConfig":
        tol = settings.base_tolerance
        return cls(
            document_precision=settings.document_precision,
            batch_size=settings.batch_size,
            max_workers=settings.max_workers,
            enable_parallel_processing=settings.enable_parallel_processing,
            tolerance=ToleranceConfig(base_tolerance=tol),
            offset=OffsetEngineConfig(tolerance=tol),
            boolean=BooleanEngineConfig(
                tolerance=tol, enable_parallel_processing=settings.enable_parallel_processing
            ),
            intersection=IntersectionResolverConfig(
                tolerance=tol,
                enable_parallel_processing=settings.enable_parallel_processing,
                max_workers=settings.max_workers,
            ),
            healing=HealingEngineConfig(tolerance=tol),
            simplification=SimplificationEngineConfig(tolerance=tol),
            validator=ValidatorConfig(tolerance=tol),
        )


# Global settings instance
settings = Settings()
