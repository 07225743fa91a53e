"""
Data structures for static memory planning.

This module defines the requirement records the planner works on:
- OperatorType: closed set of operator kinds the planner reasons about
- Conv2DParams: spatial parameters of sliding-window operators
- OperatorRequirement: snapshot of a registered operator (type, params, reverse flag)
- BufferRequirement: snapshot of a registered buffer (size, lifetime, memberships)

The planner itself keeps these records in fixed-size numpy arrays carved out of
the caller's scratch region (see memplan.core.scratch). The record dtypes below
describe that storage; the dataclasses are read-only views handed back to callers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np


# Stored in the offline_offset field of buffers the planner is free to place
ONLINE_PLANNED_BUFFER = -1


class OperatorType(Enum):
    """Types of operators the planner distinguishes"""
    CONV_2D = "conv_2d"
    DEPTHWISE_CONV_2D = "depthwise_conv_2d"
    AVERAGE_POOL_2D = "average_pool_2d"
    MAX_POOL_2D = "max_pool_2d"

    # Elementwise operations (output element i depends only on input element i)
    ADD = "add"
    MUL = "mul"
    RELU = "relu"

    OTHER = "other"

    @property
    def is_sliding_window(self) -> bool:
        """Output pixels read a spatial window of input pixels"""
        return self in _SLIDING_WINDOW_TYPES

    @property
    def is_in_place(self) -> bool:
        """Output may start at the same offset as a same-sized input"""
        return self in _IN_PLACE_TYPES

    @property
    def is_reuse_capable(self) -> bool:
        """Planner may let the output overlap the input it consumes"""
        return self.is_sliding_window or self.is_in_place

    @property
    def code(self) -> int:
        """Integer code stored in the operator records"""
        return _OPERATOR_CODES[self]

    @classmethod
    def from_code(cls, code: int) -> 'OperatorType':
        return _OPERATOR_TYPES[int(code)]


_SLIDING_WINDOW_TYPES = frozenset({
    OperatorType.CONV_2D,
    OperatorType.DEPTHWISE_CONV_2D,
    OperatorType.AVERAGE_POOL_2D,
    OperatorType.MAX_POOL_2D,
})

_IN_PLACE_TYPES = frozenset({
    OperatorType.ADD,
    OperatorType.MUL,
    OperatorType.RELU,
})

_OPERATOR_TYPES = list(OperatorType)
_OPERATOR_CODES = {op_type: i for i, op_type in enumerate(_OPERATOR_TYPES)}


class PaddingType(Enum):
    """How the model declared its spatial padding"""
    SAME = "same"
    VALID = "valid"
    NONE = "none"


_PADDING_TYPES = list(PaddingType)


@dataclass(frozen=True)
class Conv2DParams:
    """
    Spatial parameters of a sliding-window operator.

    Used by convolutions and by pooling (the pool window is the filter).
    Tensors are laid out NHWC with batch 1, so one output pixel is
    output_channel contiguous elements written together.

    padding_height / padding_width are the rows/columns of implicit padding
    before the first input row/column.
    """
    input_height: int
    input_width: int
    input_channel: int
    filter_height: int
    filter_width: int
    output_height: int
    output_width: int
    output_channel: int
    stride_height: int = 1
    stride_width: int = 1
    dilation_height_factor: int = 1
    dilation_width_factor: int = 1
    padding_height: int = 0
    padding_width: int = 0
    padding_type: PaddingType = PaddingType.SAME

    def __post_init__(self):
        """Validate spatial parameters"""
        positive = (
            'input_height', 'input_width', 'input_channel',
            'filter_height', 'filter_width',
            'output_height', 'output_width', 'output_channel',
            'stride_height', 'stride_width',
            'dilation_height_factor', 'dilation_width_factor',
        )
        for name in positive:
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.padding_height < 0 or self.padding_width < 0:
            raise ValueError(
                f"padding must be non-negative, got "
                f"({self.padding_height}, {self.padding_width})"
            )

    @property
    def input_pixels(self) -> int:
        return self.input_height * self.input_width

    @property
    def output_pixels(self) -> int:
        return self.output_height * self.output_width

    @property
    def input_elements(self) -> int:
        return self.input_pixels * self.input_channel

    @property
    def output_elements(self) -> int:
        return self.output_pixels * self.output_channel


# Integer fields of Conv2DParams, in record order
CONV2D_PARAM_FIELDS = (
    'input_height', 'input_width', 'input_channel',
    'filter_height', 'filter_width',
    'output_height', 'output_width', 'output_channel',
    'stride_height', 'stride_width',
    'dilation_height_factor', 'dilation_width_factor',
    'padding_height', 'padding_width',
)

OPERATOR_RECORD_DTYPE = np.dtype(
    [('op_type', np.int32), ('registered', np.bool_), ('reverse', np.bool_),
     ('has_params', np.bool_), ('padding_type', np.int8)]
    + [(name, np.int32) for name in CONV2D_PARAM_FIELDS]
)

BUFFER_RECORD_DTYPE = np.dtype([
    ('size', np.int32),
    ('offline_offset', np.int32),
    ('first_time_used', np.int32),
    ('last_time_used', np.int32),
])

# Largest size, offset, timestamp or operator param a record can hold
MAX_RECORD_VALUE = int(np.iinfo(np.int32).max)


def write_operator_record(record, op_type: OperatorType,
                          params: Optional[Conv2DParams]) -> None:
    """Store an operator's type and params into a carved record (reverse is reset)"""
    record['op_type'] = op_type.code
    record['registered'] = True
    record['reverse'] = False
    record['has_params'] = params is not None
    if params is None:
        record['padding_type'] = 0
        for name in CONV2D_PARAM_FIELDS:
            record[name] = 0
        return
    record['padding_type'] = _PADDING_TYPES.index(params.padding_type)
    for name in CONV2D_PARAM_FIELDS:
        record[name] = getattr(params, name)


def read_operator_params(record) -> Optional[Conv2DParams]:
    """Rebuild the params payload of a carved operator record"""
    if not record['has_params']:
        return None
    values = {name: int(record[name]) for name in CONV2D_PARAM_FIELDS}
    return Conv2DParams(padding_type=_PADDING_TYPES[int(record['padding_type'])], **values)


@dataclass(frozen=True)
class OperatorRequirement:
    """
    Snapshot of a registered operator.

    reverse is set by the planner, never by the caller: it marks operators whose
    output overlaps its input in a way that is only safe when the output is
    computed in reverse raster order. Execution-order builders must honor it.
    """
    index: int
    op_type: OperatorType
    params: Optional[Conv2DParams] = None
    reverse: bool = False


@dataclass(frozen=True)
class BufferRequirement:
    """Snapshot of a registered buffer"""
    index: int
    size: int
    first_time_used: int
    last_time_used: int
    input_of_operators: Tuple[bool, ...]
    output_of_operators: Tuple[bool, ...]
    offline_offset: Optional[int] = None

    @property
    def is_offline(self) -> bool:
        """Offset dictated by the caller, never moved by the planner"""
        return self.offline_offset is not None

    @property
    def producer(self) -> Optional[int]:
        """Index of the operator writing this buffer, if any"""
        for i, is_output in enumerate(self.output_of_operators):
            if is_output:
                return i
        return None

    @property
    def consumers(self) -> Tuple[int, ...]:
        """Indices of the operators reading this buffer"""
        return tuple(i for i, is_input in enumerate(self.input_of_operators) if is_input)

    def overlaps_in_time(self, other: 'BufferRequirement') -> bool:
        return not (self.first_time_used > other.last_time_used or
                    other.first_time_used > self.last_time_used)
