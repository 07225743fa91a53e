"""
Topological Memory Planner

Assigns every intermediate buffer of an inference graph a fixed offset inside
one arena. Buffers are placed greedily in order of creation time into the
first gap (among buffers alive at the same time) that fits them. Operators
that consume an input and produce an output at the same step may let the
output overlap the consumed part of the input; see memplan.planner.reuse.

All bookkeeping lives in numpy arrays carved out of a caller-owned scratch
region, so planning performs no allocation of the planner's own state.

Usage:
    scratch = bytearray(4096)
    planner = TopologicalMemoryPlanner(scratch, operator_count=1)
    planner.add_operator_info(0, OperatorType.CONV_2D, Conv2DParams(...))
    planner.add_buffer(27, 0, 1, [True], [False])
    planner.add_buffer(45, 1, 2, [False], [True])
    planner.get_offset_for_buffer(1)      # 15: output overlaps the input
    planner.get_maximum_memory_size()     # 60
"""

from typing import List, Optional, Sequence, Union

import numpy as np

from memplan.config import PlannerConfig
from memplan.core.errors import (
    CapacityExceededError,
    IndexOutOfRangeError,
    InvalidRequirementError,
)
from memplan.core.scratch import (
    ScratchArena,
    max_buffer_capacity,
    planner_layout_regions,
    planner_layout_size,
)
from memplan.core.structures import (
    MAX_RECORD_VALUE,
    ONLINE_PLANNED_BUFFER,
    CONV2D_PARAM_FIELDS,
    BufferRequirement,
    Conv2DParams,
    OperatorRequirement,
    OperatorType,
    read_operator_params,
    write_operator_record,
)
from memplan.logging import get_logger
from memplan.planner import diagnostics
from memplan.planner.offset_list import OffsetOrderedList
from memplan.planner.ordering import build_placement_order
from memplan.planner.reuse import ReuseDecision, find_reuse


NO_REUSE_SOURCE = -1


class TopologicalMemoryPlanner:
    """
    Greedy offset planner with producer/consumer overlap.

    Registration (add_operator_info, add_buffer) marks the plan dirty; the
    first query afterwards recomputes every offset. Queries between two
    registrations return cached results.

    Failures are reported to the reporter first and then raised as
    memplan.core.errors exceptions. A failed registration leaves the
    registry unchanged.
    """

    def __init__(self, scratch_buffer, operator_count: int,
                 scratch_buffer_size: Optional[int] = None,
                 reporter=None, config: Optional[PlannerConfig] = None):
        """
        Args:
            scratch_buffer: Writable caller-owned region (bytearray, memoryview, ndarray)
            operator_count: Number of operators in the graph
            scratch_buffer_size: Usable bytes of the region (default: all of it)
            reporter: Sink with info()/error() (default: memplan.logging.get_logger())
            config: Placement and rendering options
        """
        self.reporter = reporter if reporter is not None else get_logger()
        self.config = config or PlannerConfig()

        if operator_count < 0:
            self._fail(InvalidRequirementError,
                       f"operator count must be non-negative, got {operator_count}")
        self._operator_count = operator_count

        self._arena = ScratchArena(scratch_buffer, scratch_buffer_size)
        if planner_layout_size(0, operator_count) > self._arena.size:
            self._fail(CapacityExceededError,
                       f"Scratch buffer of {self._arena.size} bytes cannot hold "
                       f"{operator_count} operators")
        self._max_buffer_count = max_buffer_capacity(self._arena.size, operator_count)

        regions = planner_layout_regions(self._max_buffer_count, operator_count)
        carved = {name: self._arena.carve(dtype, shape) for name, dtype, shape in regions}
        self._operators = carved['operators']
        self._requirements = carved['requirements']
        self._input_of_operators = carved['input_of_operators']
        self._output_of_operators = carved['output_of_operators']
        self._created_sorted = carved['created_sorted']
        self._last_used_sorted = carved['last_used_sorted']
        self._ids_sorted = carved['ids_sorted']
        self._buffer_offsets = carved['buffer_offsets']
        self._reused_from = carved['reused_from']
        self._offset_list = OffsetOrderedList(carved['list_entries'])

        self._buffer_count = 0
        self._need_to_calculate_offsets = True
        self.plan_count = 0

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def operator_count(self) -> int:
        return self._operator_count

    @property
    def max_buffer_count(self) -> int:
        """Buffers the scratch region can hold"""
        return self._max_buffer_count

    @property
    def scratch_bytes_used(self) -> int:
        return self._arena.used

    def get_buffer_count(self) -> int:
        return self._buffer_count

    def _fail(self, error_class, message: str):
        self.reporter.error(message)
        raise error_class(message)

    def _check_operator_index(self, operator_index: int):
        if operator_index < 0 or operator_index >= self._operator_count:
            self._fail(IndexOutOfRangeError,
                       f"operator index {operator_index} is outside range 0 to "
                       f"{self._operator_count - 1}")

    def _check_buffer_index(self, buffer_index: int):
        if buffer_index < 0 or buffer_index >= self._buffer_count:
            self._fail(IndexOutOfRangeError,
                       f"buffer index {buffer_index} is outside range 0 to "
                       f"{self._buffer_count}")

    def add_operator_info(self, operator_index: int,
                          op_type: Union[OperatorType, str],
                          op_params: Optional[Conv2DParams] = None):
        """
        Register (or re-register) an operator.

        Sliding-window operators need Conv2DParams, every other kind takes none.

        Raises:
            IndexOutOfRangeError: operator_index outside 0..operator_count-1
            InvalidRequirementError: unknown type or params not matching the type
        """
        self._check_operator_index(operator_index)
        try:
            op_type = OperatorType(op_type)
        except ValueError:
            self._fail(InvalidRequirementError, f"unknown operator type {op_type!r}")

        if op_type.is_sliding_window and not isinstance(op_params, Conv2DParams):
            self._fail(InvalidRequirementError,
                       f"{op_type.value} operator {operator_index} needs Conv2DParams")
        if not op_type.is_sliding_window and op_params is not None:
            self._fail(InvalidRequirementError,
                       f"{op_type.value} operator {operator_index} takes no params")
        if op_params is not None:
            too_large = [name for name in CONV2D_PARAM_FIELDS
                         if getattr(op_params, name) > MAX_RECORD_VALUE]
            if too_large:
                self._fail(InvalidRequirementError,
                           f"operator {operator_index} params exceed {MAX_RECORD_VALUE}: "
                           f"{', '.join(too_large)}")

        write_operator_record(self._operators[operator_index], op_type, op_params)
        self._need_to_calculate_offsets = True

    def add_buffer(self, size: int, first_time_used: int, last_time_used: int,
                   input_of_operators: Sequence[bool],
                   output_of_operators: Sequence[bool],
                   offline_offset: Optional[int] = None) -> int:
        """
        Register a buffer.

        Args:
            size: Bytes, positive and at most MAX_RECORD_VALUE
            first_time_used: First execution step the buffer must be valid (inclusive),
                non-negative
            last_time_used: Last execution step the buffer must be valid (inclusive)
            input_of_operators: Per operator, whether it reads this buffer
            output_of_operators: Per operator, whether it writes this buffer (at most one)
            offline_offset: Fixed offset, or None to let the planner choose

        Returns:
            Index of the new buffer

        Raises:
            CapacityExceededError: scratch region already holds max_buffer_count buffers
            InvalidRequirementError: malformed requirement
        """
        if self._buffer_count >= self._max_buffer_count:
            self._fail(CapacityExceededError,
                       f"Too many buffers (max is {self._max_buffer_count})")
        if size <= 0:
            self._fail(InvalidRequirementError, f"buffer size must be positive, got {size}")
        if first_time_used < 0 or first_time_used > last_time_used:
            self._fail(InvalidRequirementError,
                       f"invalid lifetime [{first_time_used}, {last_time_used}]")
        if offline_offset is not None and offline_offset < 0:
            self._fail(InvalidRequirementError,
                       f"offline offset must be non-negative, got {offline_offset}")
        too_large = [(name, value) for name, value in (
            ('size', size), ('last_time_used', last_time_used),
            ('offline_offset', offline_offset or 0)) if value > MAX_RECORD_VALUE]
        if too_large:
            name, value = too_large[0]
            self._fail(InvalidRequirementError,
                       f"{name} {value} does not fit a buffer record (max {MAX_RECORD_VALUE})")

        inputs = np.asarray(input_of_operators, dtype=np.bool_)
        outputs = np.asarray(output_of_operators, dtype=np.bool_)
        for name, membership in (('input_of_operators', inputs),
                                 ('output_of_operators', outputs)):
            if membership.shape != (self._operator_count,):
                self._fail(InvalidRequirementError,
                           f"{name} must have {self._operator_count} entries, "
                           f"got {membership.size}")
        if outputs.sum() > 1:
            self._fail(InvalidRequirementError,
                       f"buffer has {int(outputs.sum())} producers, at most one allowed")
        referenced = np.flatnonzero(inputs | outputs)
        unregistered = [int(i) for i in referenced if not self._operators[i]['registered']]
        if unregistered:
            self._fail(InvalidRequirementError,
                       f"buffer references unregistered operators {unregistered}")

        index = self._buffer_count
        record = self._requirements[index]
        record['size'] = size
        record['first_time_used'] = first_time_used
        record['last_time_used'] = last_time_used
        record['offline_offset'] = ONLINE_PLANNED_BUFFER if offline_offset is None else offline_offset
        self._input_of_operators[index] = inputs
        self._output_of_operators[index] = outputs

        self._buffer_count += 1
        self._need_to_calculate_offsets = True
        return index

    def get_buffer_requirement(self, buffer_index: int) -> BufferRequirement:
        self._check_buffer_index(buffer_index)
        record = self._requirements[buffer_index]
        offline_offset = int(record['offline_offset'])
        return BufferRequirement(
            index=buffer_index,
            size=int(record['size']),
            first_time_used=int(record['first_time_used']),
            last_time_used=int(record['last_time_used']),
            input_of_operators=tuple(bool(v) for v in self._input_of_operators[buffer_index]),
            output_of_operators=tuple(bool(v) for v in self._output_of_operators[buffer_index]),
            offline_offset=None if offline_offset == ONLINE_PLANNED_BUFFER else offline_offset,
        )

    def get_operator_requirement(self, operator_index: int) -> Optional[OperatorRequirement]:
        """Snapshot of an operator, None if it was never registered"""
        self._check_operator_index(operator_index)
        record = self._operators[operator_index]
        if not record['registered']:
            return None
        self.calculate_offsets_if_needed()
        return OperatorRequirement(
            index=operator_index,
            op_type=OperatorType.from_code(record['op_type']),
            params=read_operator_params(record),
            reverse=bool(record['reverse']),
        )

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def find_reuse(self, prior_index: int, current_index: int) -> Optional[ReuseDecision]:
        """Overlap the producer of current grants over prior, None when disabled or not allowed"""
        if not self.config.allow_reuse:
            return None
        return find_reuse(self._operators, self._requirements,
                          self._input_of_operators, self._output_of_operators,
                          prior_index, current_index)

    def calculate_offsets_if_needed(self):
        """Recompute every offset if anything was registered since the last plan"""
        if not self._need_to_calculate_offsets or self._buffer_count == 0:
            return
        self.plan_count += 1

        self._operators['reverse'] = False
        self._reused_from[:] = NO_REUSE_SOURCE
        self._offset_list.reset()

        build_placement_order(self._requirements, self._buffer_count,
                              self._created_sorted, self._last_used_sorted,
                              self._ids_sorted)

        for slot in range(self._buffer_count):
            buffer_id = int(self._ids_sorted[slot])
            offline_offset = int(self._requirements[buffer_id]['offline_offset'])
            if offline_offset == ONLINE_PLANNED_BUFFER:
                offset = self._place_online_buffer(buffer_id)
            else:
                offset = offline_offset
            end_offset = offset + int(self._requirements[buffer_id]['size'])
            if end_offset > MAX_RECORD_VALUE:
                self._fail(CapacityExceededError,
                           f"buffer {buffer_id} would end at {end_offset}, past the "
                           f"{MAX_RECORD_VALUE} byte limit of an arena")
            self._buffer_offsets[buffer_id] = offset
            self._offset_list.insert(offset, buffer_id)

        # A plan that failed part way stays dirty
        self._need_to_calculate_offsets = False

    def _place_online_buffer(self, buffer_id: int) -> int:
        """
        Walk the offset-ordered list for the first gap that fits buffer_id.

        Each time-overlapping entry raises the lower bound to its end, or to
        the reverse-safe point inside it when the producer of buffer_id may
        reuse it. A forward-safe overlap is taken on the spot when the gap up
        to the next entry fits.
        """
        offsets = self._offset_list
        record = self._requirements[buffer_id]
        wanted_size = int(record['size'])
        first_time_used = int(record['first_time_used'])
        last_time_used = int(record['last_time_used'])

        # (prior buffer, prior offset, prior size, decision) consulted so far
        applied = []
        candidate_offset = 0
        prior_entry = None
        while True:
            next_entry = offsets.next_simultaneously_active(
                prior_entry, first_time_used, last_time_used, self._requirements)

            if prior_entry is not None:
                prior_buffer = offsets.requirements_index_of(prior_entry)
                prior_offset = offsets.offset_of(prior_entry)
                prior_size = int(self._requirements[prior_buffer]['size'])
                decision = self.find_reuse(prior_buffer, buffer_id)

                if decision is None:
                    candidate_offset = max(candidate_offset, prior_offset + prior_size)
                else:
                    delta = candidate_offset - prior_offset
                    fits = (next_entry is None or
                            offsets.offset_of(next_entry) - candidate_offset >= wanted_size)
                    forward_conflict = any(
                        d.requires_reverse(candidate_offset - o, s, wanted_size)
                        for _, o, s, d in applied
                    )
                    applied.append((prior_buffer, prior_offset, prior_size, decision))
                    if decision.allows_forward(delta) and fits and not forward_conflict:
                        break
                    candidate_offset = max(candidate_offset,
                                           prior_offset + decision.reverse_gap(prior_size))

            if next_entry is None:
                break
            if offsets.offset_of(next_entry) - candidate_offset >= wanted_size:
                break
            prior_entry = next_entry

        self._record_reuse(buffer_id, candidate_offset, wanted_size, applied)
        return candidate_offset

    def _record_reuse(self, buffer_id: int, offset: int, size: int, applied):
        """Remember the overlapped input and flag the operator if it must run in reverse"""
        for prior_buffer, prior_offset, prior_size, decision in applied:
            delta = offset - prior_offset
            if not -size < delta < prior_size:
                continue
            if self._reused_from[buffer_id] == NO_REUSE_SOURCE:
                self._reused_from[buffer_id] = prior_buffer
            if decision.requires_reverse(delta, prior_size, size):
                self._operators[decision.operator_index]['reverse'] = True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_offset_for_buffer(self, buffer_index: int) -> int:
        """
        Raises:
            IndexOutOfRangeError: buffer_index outside the registered buffers
        """
        self.calculate_offsets_if_needed()
        self._check_buffer_index(buffer_index)
        return int(self._buffer_offsets[buffer_index])

    def get_maximum_memory_size(self) -> int:
        """Arena bytes the plan needs, 0 with no buffers"""
        self.calculate_offsets_if_needed()
        if self._buffer_count == 0:
            return 0
        max_size = 0
        for entry in self._offset_list:
            size = int(self._requirements[self._offset_list.requirements_index_of(entry)]['size'])
            max_size = max(max_size, self._offset_list.offset_of(entry) + size)
        return max_size

    def is_operator_reversed(self, operator_index: int) -> bool:
        """Whether the operator must compute its output in reverse raster order"""
        self._check_operator_index(operator_index)
        self.calculate_offsets_if_needed()
        return bool(self._operators[operator_index]['reverse'])

    def reversed_operators(self) -> List[int]:
        self.calculate_offsets_if_needed()
        return [int(i) for i in np.flatnonzero(self._operators['reverse'])]

    def get_reuse_source(self, buffer_index: int) -> Optional[int]:
        """Input buffer this buffer was allowed to overlap, if any"""
        self.calculate_offsets_if_needed()
        self._check_buffer_index(buffer_index)
        source = int(self._reused_from[buffer_index])
        return None if source == NO_REUSE_SOURCE else source

    def find_overlaps(self) -> List['diagnostics.OverlapRecord']:
        self.calculate_offsets_if_needed()
        return diagnostics.find_overlaps(self)

    def find_unsanctioned_overlaps(self) -> List['diagnostics.OverlapRecord']:
        return [overlap for overlap in self.find_overlaps() if not overlap.sanctioned]

    def do_any_buffers_overlap(self) -> bool:
        """
        Report every pair of buffers alive at once that share memory.

        Diagnostic only: overlaps granted by reuse are reported as well.
        """
        overlaps = self.find_overlaps()
        for overlap in overlaps:
            self.reporter.error(overlap.message())
        return bool(overlaps)

    def render_memory_plan(self) -> List[str]:
        self.calculate_offsets_if_needed()
        return diagnostics.render_memory_plan(self, self.config)

    def print_memory_plan(self):
        """Send the buffer table and per-step occupancy bars to the reporter"""
        for line in self.render_memory_plan():
            self.reporter.info(line)

    def generate_report(self) -> 'diagnostics.MemoryPlanReport':
        self.calculate_offsets_if_needed()
        return diagnostics.build_report(self)
