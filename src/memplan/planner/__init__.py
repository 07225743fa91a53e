"""
Memory Planning

Ordering, reuse analysis and greedy placement of graph buffers, plus the
diagnostics and file formats built on a computed plan.
"""

from .ordering import sort_two_level, build_placement_order
from .reuse import ReuseDecision, sliding_window_limits, find_reuse
from .offset_list import OffsetOrderedList
from .topological import TopologicalMemoryPlanner
from .diagnostics import (
    OverlapRecord,
    BufferPlacement,
    MemoryPlanReport,
    render_memory_plan,
)
from .requirements_file import (
    load_requirements,
    planner_from_dict,
    plan_to_dict,
)

__all__ = [
    'sort_two_level',
    'build_placement_order',
    'ReuseDecision',
    'sliding_window_limits',
    'find_reuse',
    'OffsetOrderedList',
    'TopologicalMemoryPlanner',
    'OverlapRecord',
    'BufferPlacement',
    'MemoryPlanReport',
    'render_memory_plan',
    'load_requirements',
    'planner_from_dict',
    'plan_to_dict',
]
