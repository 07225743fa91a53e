"""
Planner error taxonomy.

All planner failures are reported to the injected reporter first and then
raised as one of these exceptions:

- CapacityExceededError: the scratch region cannot hold another record
- IndexOutOfRangeError: an operator or buffer index outside the registered range
- InvalidRequirementError: a malformed buffer or operator registration
"""


class PlannerError(Exception):
    """Base class for memory planner errors"""


class CapacityExceededError(PlannerError):
    """Too many buffers or operators for the supplied scratch region"""


class IndexOutOfRangeError(PlannerError, IndexError):
    """Operator or buffer index outside the registered range"""


class InvalidRequirementError(PlannerError, ValueError):
    """Buffer or operator requirement that cannot be planned"""
