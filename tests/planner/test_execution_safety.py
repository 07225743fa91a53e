#!/usr/bin/env python
"""
Execution safety of planned arenas.

Random chains of convolutions and elementwise operators are planned and then
executed one byte at a time inside a simulated arena. Every byte holds a tag
naming the buffer and element it belongs to. Operators read their whole
window right before each output write, in the order the planner chose
(reverse raster order for reversed operators), so an input byte that was
overwritten too early, or a live buffer that was clobbered, fails the run.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pytest

from memplan.config import PlannerConfig
from memplan.core.structures import Conv2DParams, OperatorType
from memplan.logging import LogConfig, PlannerLogger
from memplan.planner.topological import TopologicalMemoryPlanner


SCRATCH_SIZE = 16384

# Arena bytes nobody wrote yet
EMPTY = -1
TAG_STRIDE = 1_000_000


@pytest.fixture
def reporter():
    return PlannerLogger(config=LogConfig(console_level=logging.CRITICAL + 1))


@dataclass
class GraphBuffer:
    size: int
    first_time_used: int
    last_time_used: int
    producer: Optional[int] = None
    consumers: List[int] = field(default_factory=list)


@dataclass
class GraphOperator:
    op_type: OperatorType
    inputs: List[int]
    output: int
    params: Optional[Conv2DParams] = None


def tag(buffer_index, element):
    """Value element of buffer_index holds while intact (one byte per element)"""
    return (buffer_index + 1) * TAG_STRIDE + element


def random_conv(rng, size, channels):
    """Square convolution with random filter, stride, dilation and padding"""
    filter_size = int(rng.choice([1, 3]))
    stride = int(rng.choice([1, 2]))
    dilation = int(rng.choice([1, 2]))
    padding = int(rng.choice([0, (filter_size - 1) // 2 * dilation]))
    output_size = (size + 2 * padding - dilation * (filter_size - 1) - 1) // stride + 1
    if output_size < 1:
        filter_size, stride, dilation, padding = 1, 1, 1, 0
        output_size = size
    return Conv2DParams(
        input_height=size, input_width=size, input_channel=channels,
        filter_height=filter_size, filter_width=filter_size,
        output_height=output_size, output_width=output_size,
        output_channel=int(rng.integers(1, 5)),
        stride_height=stride, stride_width=stride,
        dilation_height_factor=dilation, dilation_width_factor=dilation,
        padding_height=padding, padding_width=padding,
    )


def random_chain(seed):
    """
    Chain of conv/add/relu operators plus unrelated buffers.

    Operator k reads chain buffer k (live over [k, k+1]) and writes the next
    one (live over [k+1, k+2]). An add also reads a graph input of the same
    shape that stays live from step 0.
    """
    rng = np.random.default_rng(seed)
    length = int(rng.integers(1, 7))
    size = int(rng.integers(3, 7))
    channels = int(rng.integers(1, 5))

    buffers = [GraphBuffer(size * size * channels, 0, 1)]
    operators = []
    current = 0
    for k in range(length):
        kind = str(rng.choice(['conv', 'add', 'relu']))
        inputs = [current]
        params = None
        if kind == 'conv':
            op_type = OperatorType.CONV_2D
            params = random_conv(rng, size, channels)
            size, channels = params.output_height, params.output_channel
        elif kind == 'add':
            op_type = OperatorType.ADD
            buffers.append(GraphBuffer(buffers[current].size, 0, k + 1))
            inputs.append(len(buffers) - 1)
        else:
            op_type = OperatorType.RELU
        for i in inputs:
            buffers[i].consumers.append(k)
        buffers.append(GraphBuffer(size * size * channels, k + 1, k + 2, producer=k))
        current = len(buffers) - 1
        operators.append(GraphOperator(op_type, inputs, current, params))

    for _ in range(int(rng.integers(0, 4))):
        first = int(rng.integers(0, length + 2))
        last = int(rng.integers(first, length + 2))
        buffers.append(GraphBuffer(int(rng.integers(1, 65)), first, last))
    return operators, buffers


def plan_graph(operators, buffers, reporter, config=None):
    planner = TopologicalMemoryPlanner(bytearray(SCRATCH_SIZE), len(operators),
                                       reporter=reporter, config=config)
    for index, operator in enumerate(operators):
        planner.add_operator_info(index, operator.op_type, operator.params)
    for buffer in buffers:
        planner.add_buffer(
            buffer.size, buffer.first_time_used, buffer.last_time_used,
            [i in buffer.consumers for i in range(len(operators))],
            [i == buffer.producer for i in range(len(operators))],
        )
    return planner


def window_elements(params, pixel):
    """Input elements (all channels) the window of one output pixel reads"""
    out_row, out_col = divmod(pixel, params.output_width)
    rows = (out_row * params.stride_height - params.padding_height
            + np.arange(params.filter_height) * params.dilation_height_factor)
    cols = (out_col * params.stride_width - params.padding_width
            + np.arange(params.filter_width) * params.dilation_width_factor)
    rows = rows[(rows >= 0) & (rows < params.input_height)]
    cols = cols[(cols >= 0) & (cols < params.input_width)]
    pixels = (rows[:, None] * params.input_width + cols[None, :]).ravel()
    return (pixels[:, None] * params.input_channel
            + np.arange(params.input_channel)[None, :]).ravel()


class ArenaSimulation:
    """Executes a planned graph step by step inside a tagged arena"""

    def __init__(self, planner, operators, buffers, ignore_reverse=False):
        self.planner = planner
        self.operators = operators
        self.buffers = buffers
        self.ignore_reverse = ignore_reverse
        self.offsets = [planner.get_offset_for_buffer(i) for i in range(len(buffers))]
        self.arena = np.full(planner.get_maximum_memory_size(), EMPTY, dtype=np.int64)
        self.written = set()

    def _read_intact(self, index, elements):
        values = self.arena[self.offsets[index] + elements]
        return np.array_equal(values, tag(index, elements))

    def _write(self, index, element):
        self.arena[self.offsets[index] + element] = tag(index, element)

    def _fill(self, index):
        self._write(index, np.arange(self.buffers[index].size))
        self.written.add(index)

    def _check_live(self, step, skip=()):
        for index in sorted(self.written):
            buffer = self.buffers[index]
            if index in skip or not buffer.first_time_used <= step <= buffer.last_time_used:
                continue
            elements = np.arange(buffer.size)
            assert self._read_intact(index, elements), \
                f"live buffer {index} clobbered at step {step}"

    def _is_reversed(self, op_index):
        return not self.ignore_reverse and self.planner.is_operator_reversed(op_index)

    def _run_conv(self, op_index, operator):
        params = operator.params
        source = operator.inputs[0]
        pixels = range(params.output_pixels)
        if self._is_reversed(op_index):
            pixels = reversed(pixels)
        for pixel in pixels:
            window = window_elements(params, pixel)
            for channel in range(params.output_channel):
                assert self._read_intact(source, window), \
                    f"operator {op_index} read a clobbered byte of buffer {source}"
                self._write(operator.output, pixel * params.output_channel + channel)

    def _run_elementwise(self, op_index, operator):
        elements = range(self.buffers[operator.output].size)
        if self._is_reversed(op_index):
            elements = reversed(elements)
        for element in elements:
            for source in operator.inputs:
                assert self._read_intact(source, np.array([element])), \
                    f"operator {op_index} read a clobbered byte of buffer {source}"
            self._write(operator.output, element)

    def run(self):
        last_step = max(buffer.last_time_used for buffer in self.buffers)
        for step in range(last_step + 1):
            for index, buffer in enumerate(self.buffers):
                if buffer.producer is None and buffer.first_time_used == step:
                    self._fill(index)
            self._check_live(step)

            op_index = step - 1
            if not 0 <= op_index < len(self.operators):
                continue
            operator = self.operators[op_index]
            if operator.op_type == OperatorType.CONV_2D:
                self._run_conv(op_index, operator)
            else:
                self._run_elementwise(op_index, operator)
            self.written.add(operator.output)

            consumed = [i for i in operator.inputs
                        if self.buffers[i].last_time_used == step]
            self._check_live(step, skip=consumed)


def conv_chain():
    """Two 3x3 convolutions feeding an add, the first one expanding 3 -> 5 channels"""
    def conv(input_channel, output_channel):
        return Conv2DParams(
            input_height=3, input_width=3, input_channel=input_channel,
            filter_height=3, filter_width=3,
            output_height=3, output_width=3, output_channel=output_channel,
            padding_height=1, padding_width=1,
        )

    operators = [
        GraphOperator(OperatorType.CONV_2D, [0], 1, conv(3, 5)),
        GraphOperator(OperatorType.CONV_2D, [1], 2, conv(5, 3)),
        GraphOperator(OperatorType.ADD, [2, 3], 4),
    ]
    buffers = [
        GraphBuffer(27, 0, 1, consumers=[0]),
        GraphBuffer(45, 1, 2, producer=0, consumers=[1]),
        GraphBuffer(27, 2, 3, producer=1, consumers=[2]),
        GraphBuffer(27, 0, 3, consumers=[2]),
        GraphBuffer(27, 3, 4, producer=2),
    ]
    return operators, buffers


class TestExecutionSafety:
    """Planned arenas can be executed without reading overwritten bytes."""

    def test_conv_chain(self, reporter):
        operators, buffers = conv_chain()
        planner = plan_graph(operators, buffers, reporter)
        assert planner.is_operator_reversed(0)
        assert planner.get_maximum_memory_size() == 87
        ArenaSimulation(planner, operators, buffers).run()

    def test_reversed_operator_run_forward_clobbers_input(self, reporter):
        operators, buffers = conv_chain()
        planner = plan_graph(operators, buffers, reporter)
        simulation = ArenaSimulation(planner, operators, buffers, ignore_reverse=True)
        with pytest.raises(AssertionError, match="operator 0 read a clobbered byte of buffer 0"):
            simulation.run()

    @pytest.mark.parametrize("seed", range(25))
    def test_random_chain(self, reporter, seed):
        operators, buffers = random_chain(seed)
        planner = plan_graph(operators, buffers, reporter)
        ArenaSimulation(planner, operators, buffers).run()

    @pytest.mark.parametrize("seed", range(5))
    def test_random_chain_without_reuse(self, reporter, seed):
        operators, buffers = random_chain(seed)
        planner = plan_graph(operators, buffers, reporter,
                             config=PlannerConfig(allow_reuse=False))
        assert planner.reversed_operators() == []
        ArenaSimulation(planner, operators, buffers).run()
