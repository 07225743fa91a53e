"""
memplan: static memory planning for inference graphs

Computes a fixed offset for every intermediate buffer of a graph inside one
arena, letting operators overwrite already-consumed parts of their inputs
where that is provably safe.
"""

from .config import PlannerConfig
from .core import (
    OperatorType,
    PaddingType,
    Conv2DParams,
    OperatorRequirement,
    BufferRequirement,
    PlannerError,
    CapacityExceededError,
    IndexOutOfRangeError,
    InvalidRequirementError,
)
from .planner import (
    TopologicalMemoryPlanner,
    MemoryPlanReport,
    OverlapRecord,
)

__version__ = "0.1.0"

__all__ = [
    'PlannerConfig',
    'OperatorType',
    'PaddingType',
    'Conv2DParams',
    'OperatorRequirement',
    'BufferRequirement',
    'PlannerError',
    'CapacityExceededError',
    'IndexOutOfRangeError',
    'InvalidRequirementError',
    'TopologicalMemoryPlanner',
    'MemoryPlanReport',
    'OverlapRecord',
]
