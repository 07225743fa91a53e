"""
Tests for the planner requirement records.
"""

import numpy as np
import pytest

from memplan.core.structures import (
    OperatorType,
    PaddingType,
    Conv2DParams,
    BufferRequirement,
    OPERATOR_RECORD_DTYPE,
    write_operator_record,
    read_operator_params,
)


def make_conv_params(**overrides):
    values = dict(
        input_height=3, input_width=3, input_channel=3,
        filter_height=3, filter_width=3,
        output_height=3, output_width=3, output_channel=5,
        padding_height=1, padding_width=1,
    )
    values.update(overrides)
    return Conv2DParams(**values)


class TestOperatorType:
    """Test OperatorType classification."""

    def test_sliding_window_kinds(self):
        for op_type in (OperatorType.CONV_2D, OperatorType.DEPTHWISE_CONV_2D,
                        OperatorType.AVERAGE_POOL_2D, OperatorType.MAX_POOL_2D):
            assert op_type.is_sliding_window
            assert not op_type.is_in_place
            assert op_type.is_reuse_capable

    def test_in_place_kinds(self):
        for op_type in (OperatorType.ADD, OperatorType.MUL, OperatorType.RELU):
            assert op_type.is_in_place
            assert not op_type.is_sliding_window
            assert op_type.is_reuse_capable

    def test_other_never_reuses(self):
        assert not OperatorType.OTHER.is_reuse_capable

    def test_code_round_trip(self):
        for op_type in OperatorType:
            assert OperatorType.from_code(op_type.code) is op_type

    def test_from_string_value(self):
        assert OperatorType("conv_2d") is OperatorType.CONV_2D


class TestConv2DParams:
    """Test Conv2DParams validation and derived sizes."""

    def test_defaults(self):
        params = make_conv_params()
        assert params.stride_height == 1
        assert params.dilation_width_factor == 1
        assert params.padding_type == PaddingType.SAME

    def test_derived_sizes(self):
        params = make_conv_params()
        assert params.input_pixels == 9
        assert params.output_pixels == 9
        assert params.input_elements == 27
        assert params.output_elements == 45

    def test_rejects_non_positive_dimension(self):
        with pytest.raises(ValueError, match="input_channel"):
            make_conv_params(input_channel=0)

    def test_rejects_zero_stride(self):
        with pytest.raises(ValueError, match="stride_width"):
            make_conv_params(stride_width=0)

    def test_rejects_negative_padding(self):
        with pytest.raises(ValueError, match="padding"):
            make_conv_params(padding_height=-1)

    def test_frozen(self):
        params = make_conv_params()
        with pytest.raises(Exception):
            params.input_height = 4


class TestOperatorRecord:
    """Test storage of operators in carved records."""

    def test_params_survive_record(self):
        records = np.zeros(1, dtype=OPERATOR_RECORD_DTYPE)
        params = make_conv_params(stride_height=2, padding_type=PaddingType.VALID)
        write_operator_record(records[0], OperatorType.CONV_2D, params)

        assert records[0]['registered']
        assert OperatorType.from_code(records[0]['op_type']) is OperatorType.CONV_2D
        assert read_operator_params(records[0]) == params

    def test_no_params(self):
        records = np.zeros(1, dtype=OPERATOR_RECORD_DTYPE)
        write_operator_record(records[0], OperatorType.ADD, None)
        assert read_operator_params(records[0]) is None

    def test_rewrite_clears_reverse(self):
        records = np.zeros(1, dtype=OPERATOR_RECORD_DTYPE)
        records[0]['reverse'] = True
        write_operator_record(records[0], OperatorType.MUL, None)
        assert not records[0]['reverse']


class TestBufferRequirement:
    """Test BufferRequirement helpers."""

    def make(self, first, last, inputs=(False, False), outputs=(False, False), offline=None):
        return BufferRequirement(index=0, size=10, first_time_used=first, last_time_used=last,
                                 input_of_operators=inputs, output_of_operators=outputs,
                                 offline_offset=offline)

    def test_producer_and_consumers(self):
        buffer = self.make(0, 1, inputs=(False, True), outputs=(True, False))
        assert buffer.producer == 0
        assert buffer.consumers == (1,)

    def test_no_producer(self):
        assert self.make(0, 1).producer is None

    def test_offline(self):
        assert self.make(0, 1, offline=64).is_offline
        assert not self.make(0, 1).is_offline

    def test_time_overlap_is_inclusive(self):
        assert self.make(0, 1).overlaps_in_time(self.make(1, 2))
        assert not self.make(0, 1).overlaps_in_time(self.make(2, 3))
