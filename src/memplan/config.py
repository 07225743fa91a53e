"""
Planner configuration.

Usage:
    from memplan.config import PlannerConfig

    config = PlannerConfig(line_width=120)
    config = PlannerConfig.from_dict({"allow_reuse": False})
"""

from dataclasses import dataclass, asdict, fields
from typing import Any, Dict


@dataclass
class PlannerConfig:
    """Knobs for placement and for the text rendering of a plan."""

    # Let operators overwrite already-consumed parts of their inputs.
    # Disabled, the planner does pure interval packing.
    allow_reuse: bool = True

    # Columns of the per-timestep occupancy bar in print_memory_plan()
    line_width: int = 80

    # Cell markers for the occupancy bar
    empty_cell: str = "."
    conflict_cell: str = "!"

    def __post_init__(self):
        if self.line_width <= 0:
            raise ValueError(f"line_width must be positive, got {self.line_width}")
        for name in ('empty_cell', 'conflict_cell'):
            if len(getattr(self, name)) != 1:
                raise ValueError(f"{name} must be a single character")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlannerConfig':
        """Build a config from a mapping, rejecting unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown planner config keys: {', '.join(sorted(unknown))}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)
