"""
Scratch Region Carving

The planner never allocates memory of its own. Every array it works with is a
fixed-size numpy view carved out of one writable region supplied (and owned) by
the caller, so the region can be a static or stack buffer on the target and be
reused as the real arena once the offsets have been copied out.

Usage:
    scratch = bytearray(4096)
    arena = ScratchArena(scratch)
    offsets = arena.carve(np.int32, 16)       # 16 ints, 8-byte aligned
    records = arena.carve(BUFFER_RECORD_DTYPE, 16)
"""

from math import prod
from typing import Optional, Tuple, Union

import numpy as np

from memplan.core.errors import CapacityExceededError
from memplan.core.structures import BUFFER_RECORD_DTYPE, OPERATOR_RECORD_DTYPE


ALIGNMENT = 8

LIST_ENTRY_DTYPE = np.dtype([
    ('offset', np.int32),
    ('requirements_index', np.int32),
    ('next_entry_index', np.int32),
])

_INT_SIZE = np.dtype(np.int32).itemsize


def _align(value: int) -> int:
    return (value + ALIGNMENT - 1) // ALIGNMENT * ALIGNMENT


def per_buffer_size(operator_count: int) -> int:
    """
    Approximate scratch bytes needed to plan one buffer.

    Record + input/output membership flags + three sort arrays + offset-list
    entry + planned offset + reuse source. Alignment padding comes on top.
    """
    return (BUFFER_RECORD_DTYPE.itemsize +     # requirements
            2 * operator_count +               # input_of / output_of flags
            3 * _INT_SIZE +                    # created / last used / ids sorted
            LIST_ENTRY_DTYPE.itemsize +        # buffers sorted by offset
            _INT_SIZE +                        # buffer offsets
            _INT_SIZE)                         # reused_from


def planner_layout_regions(max_buffers: int, operator_count: int) -> Tuple[Tuple[str, np.dtype, Tuple[int, ...]], ...]:
    """Regions carved for a planner, in carving order"""
    return (
        ('operators', OPERATOR_RECORD_DTYPE, (operator_count,)),
        ('requirements', BUFFER_RECORD_DTYPE, (max_buffers,)),
        ('input_of_operators', np.dtype(np.bool_), (max_buffers, operator_count)),
        ('output_of_operators', np.dtype(np.bool_), (max_buffers, operator_count)),
        ('created_sorted', np.dtype(np.int32), (max_buffers,)),
        ('last_used_sorted', np.dtype(np.int32), (max_buffers,)),
        ('ids_sorted', np.dtype(np.int32), (max_buffers,)),
        ('list_entries', LIST_ENTRY_DTYPE, (max_buffers,)),
        ('buffer_offsets', np.dtype(np.int32), (max_buffers,)),
        ('reused_from', np.dtype(np.int32), (max_buffers,)),
    )


def planner_layout_size(max_buffers: int, operator_count: int) -> int:
    """Bytes of scratch needed to plan max_buffers buffers over operator_count operators"""
    used = 0
    for _, dtype, shape in planner_layout_regions(max_buffers, operator_count):
        used = _align(used) + dtype.itemsize * prod(shape)
    return used


def max_buffer_capacity(scratch_size: int, operator_count: int) -> int:
    """Largest number of buffers whose planner layout fits in scratch_size bytes"""
    fixed = operator_count * OPERATOR_RECORD_DTYPE.itemsize
    capacity = max(0, (scratch_size - fixed) // per_buffer_size(operator_count))
    while capacity > 0 and planner_layout_size(capacity, operator_count) > scratch_size:
        capacity -= 1
    return capacity


class ScratchArena:
    """
    Bump carver over a caller-owned writable buffer.

    Carved arrays alias the caller's memory directly. The arena never frees or
    moves a region; it lives exactly as long as the caller keeps the buffer.
    """

    def __init__(self, scratch_buffer: Union[bytearray, memoryview, np.ndarray],
                 scratch_buffer_size: Optional[int] = None):
        view = memoryview(scratch_buffer)
        if view.readonly:
            raise ValueError("scratch buffer must be writable")
        available = view.nbytes
        if scratch_buffer_size is None:
            scratch_buffer_size = available
        if scratch_buffer_size < 0 or scratch_buffer_size > available:
            raise ValueError(
                f"scratch_buffer_size {scratch_buffer_size} outside 0..{available}"
            )
        self._buffer = view.cast('B')
        self.size = scratch_buffer_size
        self._next_free = 0

    @property
    def used(self) -> int:
        """Bytes carved so far, including alignment padding"""
        return self._next_free

    def carve(self, dtype, shape) -> np.ndarray:
        """
        Carve a zero-initialised array view out of the scratch region.

        Raises:
            CapacityExceededError: if the region has no room left for it
        """
        dtype = np.dtype(dtype)
        if isinstance(shape, int):
            shape = (shape,)
        nbytes = dtype.itemsize * prod(shape)
        if nbytes == 0:
            return np.zeros(shape, dtype=dtype)
        start = _align(self._next_free)
        if start + nbytes > self.size:
            raise CapacityExceededError(
                f"scratch region too small: need {start + nbytes} bytes, have {self.size}"
            )
        array = np.ndarray(shape, dtype=dtype, buffer=self._buffer, offset=start)
        array[...] = 0
        self._next_free = start + nbytes
        return array
