"""
Core Planner Data Structures

Requirement records, the error taxonomy and scratch-region carving shared by
the planning stages.
"""

from .structures import (
    ONLINE_PLANNED_BUFFER,
    MAX_RECORD_VALUE,
    OperatorType,
    PaddingType,
    Conv2DParams,
    OperatorRequirement,
    BufferRequirement,
)

from .errors import (
    PlannerError,
    CapacityExceededError,
    IndexOutOfRangeError,
    InvalidRequirementError,
)

from .scratch import (
    ScratchArena,
    per_buffer_size,
    planner_layout_size,
    max_buffer_capacity,
)

__all__ = [
    # Requirement records
    'ONLINE_PLANNED_BUFFER',
    'MAX_RECORD_VALUE',
    'OperatorType',
    'PaddingType',
    'Conv2DParams',
    'OperatorRequirement',
    'BufferRequirement',

    # Errors
    'PlannerError',
    'CapacityExceededError',
    'IndexOutOfRangeError',
    'InvalidRequirementError',

    # Scratch carving
    'ScratchArena',
    'per_buffer_size',
    'planner_layout_size',
    'max_buffer_capacity',
]
