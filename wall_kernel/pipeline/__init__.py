"""
Per-wall pipeline and floor plan batch runner.
"""

from .pipeline_models import FloorPlanInput, FloorPlanResult, GroupStats, PipelineResult, WallInput
from .pipeline_executor import PipelineExecutor

__all__ = [
    'FloorPlanInput',
    'FloorPlanResult',
    'GroupStats',
    'PipelineResult',
    'WallInput',
    'PipelineExecutor'
]
