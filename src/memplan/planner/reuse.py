"""
Overlap/Reuse Calculator

Decides how far an operator's output buffer may overlap the input buffer it
consumes without destroying input bytes that are still to be read.

Placement is expressed as delta = output_offset - input_offset. For every
operator the calculator derives two limits:

- forward_limit: any delta <= forward_limit is safe when the output is
  computed in the default raster order (pixel 0 first)
- reverse_limit: any delta >= reverse_limit is safe when the output is
  computed in reverse raster order (last pixel first)

A delta whose byte ranges do not intersect at all is always safe.

Sliding-window operators (convolution, pooling):
    Tensors are NHWC with batch 1. Output pixel p occupies bytes
    [p*out_px, (p+1)*out_px) of the output, input pixel q occupies
    [q*in_px, (q+1)*in_px) of the input. Output channels of a pixel are
    written one at a time, each after reading the full window again, so an
    input pixel q is only free once its last reader last(q) has been written
    completely. Going forward, pixels 0..last(q) must stay below q:

        delta <= q*in_px - (last(q)+1)*out_px        for every read q

    Going in reverse, pixels first(q).. must stay above q:

        delta >= (q+1)*in_px - first(q)*out_px       for every read q

    first(q)/last(q) are separable: per axis, input index
    i = o*stride - pad + k*dilation.

Elementwise operators (add, mul, relu):
    Element i of the output depends only on element i of each input, so
    the limits are (0, 0) when input and output have the same size.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from memplan.core.structures import (
    OperatorType,
    Conv2DParams,
    read_operator_params,
)


@dataclass(frozen=True)
class ReuseDecision:
    """Safe overlap window granted for one producer/consumer pair"""
    operator_index: int
    forward_limit: int
    reverse_limit: int

    def reverse_gap(self, prior_size: int) -> int:
        """Smallest offset after the prior buffer's start that is safe in either order"""
        return min(self.reverse_limit, prior_size)

    def allows_forward(self, delta: int) -> bool:
        return delta <= self.forward_limit

    def requires_reverse(self, delta: int, prior_size: int, consumer_size: int) -> bool:
        """Overlap at delta is only safe if the operator iterates in reverse"""
        overlapping = -consumer_size < delta < prior_size
        return overlapping and delta > self.forward_limit


def _axis_consumers(input_size: int, output_size: int, filter_size: int,
                    stride: int, dilation: int, padding: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    First and last output index reading each input index along one axis.

    Input indices nobody reads get first = output_size, last = -1.
    """
    outputs = np.arange(output_size)
    taps = np.arange(filter_size)
    reads = outputs[:, None] * stride - padding + taps[None, :] * dilation
    readers = np.broadcast_to(outputs[:, None], reads.shape)

    valid = (reads >= 0) & (reads < input_size)
    first = np.full(input_size, output_size, dtype=np.int64)
    last = np.full(input_size, -1, dtype=np.int64)
    np.minimum.at(first, reads[valid], readers[valid])
    np.maximum.at(last, reads[valid], readers[valid])
    return first, last


def sliding_window_limits(params: Conv2DParams, input_pixel_bytes: int,
                          output_pixel_bytes: int) -> Optional[Tuple[int, int]]:
    """
    (forward_limit, reverse_limit) for a sliding-window operator.

    Args:
        params: Spatial parameters of the operator
        input_pixel_bytes: Bytes of one input pixel (all channels)
        output_pixel_bytes: Bytes of one output pixel (all channels)

    Returns:
        The two limits, or None if the window never reads the input
    """
    first_row, last_row = _axis_consumers(
        params.input_height, params.output_height, params.filter_height,
        params.stride_height, params.dilation_height_factor, params.padding_height)
    first_col, last_col = _axis_consumers(
        params.input_width, params.output_width, params.filter_width,
        params.stride_width, params.dilation_width_factor, params.padding_width)

    read = (last_row[:, None] >= 0) & (last_col[None, :] >= 0)
    if not read.any():
        return None

    # Raster order: the earliest reader has the smallest row, then column
    first = first_row[:, None] * params.output_width + first_col[None, :]
    last = last_row[:, None] * params.output_width + last_col[None, :]
    pixel = np.arange(params.input_pixels, dtype=np.int64).reshape(
        params.input_height, params.input_width)

    forward = pixel * input_pixel_bytes - (last + 1) * output_pixel_bytes
    reverse = (pixel + 1) * input_pixel_bytes - first * output_pixel_bytes
    return int(forward[read].min()), int(reverse[read].max())


def _element_bytes(params: Conv2DParams, input_size: int, output_size: int) -> Optional[int]:
    """Bytes per element implied by the buffer sizes, None if the shapes disagree"""
    if input_size % params.input_elements:
        return None
    element = input_size // params.input_elements
    if element <= 0 or element * params.output_elements != output_size:
        return None
    return element


def operator_limits(op_type: OperatorType, params: Optional[Conv2DParams],
                    input_size: int, output_size: int) -> Optional[Tuple[int, int]]:
    """(forward_limit, reverse_limit) for one operator, None if it can't reuse its input"""
    if op_type.is_in_place:
        if input_size != output_size:
            return None
        return 0, 0

    if op_type.is_sliding_window and params is not None:
        element = _element_bytes(params, input_size, output_size)
        if element is None:
            return None
        return sliding_window_limits(params,
                                     params.input_channel * element,
                                     params.output_channel * element)
    return None


def find_reuse(operators: np.ndarray, requirements: np.ndarray,
               input_of_operators: np.ndarray, output_of_operators: np.ndarray,
               prior_index: int, current_index: int) -> Optional[ReuseDecision]:
    """
    Overlap window the operator producing current grants over prior.

    Only the operator writing the current buffer may grant reuse, and only
    over one of its own inputs whose lifetime ends exactly when the output's
    begins.

    Args:
        operators: Carved operator records
        requirements: Carved buffer records
        input_of_operators: Carved (buffers x operators) input membership
        output_of_operators: Carved (buffers x operators) output membership
        prior_index: Already placed buffer (candidate input)
        current_index: Buffer being placed (candidate output)

    Returns:
        The decision, or None when no overlap is allowed
    """
    producers = np.flatnonzero(output_of_operators[current_index])
    if len(producers) == 0:
        return None
    operator_index = int(producers[0])
    if not input_of_operators[prior_index, operator_index]:
        return None

    prior = requirements[prior_index]
    current = requirements[current_index]
    if prior['last_time_used'] != current['first_time_used']:
        return None

    record = operators[operator_index]
    op_type = OperatorType.from_code(record['op_type'])
    if not op_type.is_reuse_capable:
        return None

    limits = operator_limits(op_type, read_operator_params(record),
                             int(prior['size']), int(current['size']))
    if limits is None:
        return None
    forward_limit, reverse_limit = limits
    return ReuseDecision(operator_index, forward_limit, reverse_limit)
