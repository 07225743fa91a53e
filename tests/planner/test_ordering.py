"""
Tests for the placement order.
"""

import numpy as np
import pytest

from memplan.core.structures import BUFFER_RECORD_DTYPE, ONLINE_PLANNED_BUFFER
from memplan.planner.ordering import sort_two_level, build_placement_order


class TestSortTwoLevel:
    """Primary key ascending, secondary key descending."""

    def test_already_sorted(self):
        primary = [1, 2, 2, 3, 4, 5, 6, 7, 8, 9]
        secondary = [10, 9, 8, 7, 6, 5, 4, 3, 2, 1]
        ids = list(range(10))
        sort_two_level(primary, secondary, ids)

        assert primary == [1, 2, 2, 3, 4, 5, 6, 7, 8, 9]
        assert secondary == [10, 9, 8, 7, 6, 5, 4, 3, 2, 1]
        assert ids == list(range(10))

    def test_reversed(self):
        primary = list(range(10, 0, -1))
        secondary = list(range(10, 0, -1))
        ids = list(range(10))
        sort_two_level(primary, secondary, ids)

        assert primary == list(range(1, 11))
        assert secondary == list(range(1, 11))
        assert ids == list(range(9, -1, -1))

    def test_interleaved_groups(self):
        primary = list(range(10, 0, -1)) * 10
        secondary = list(range(1, 101))
        ids = list(range(100))
        sort_two_level(primary, secondary, ids)

        assert primary == [v for v in range(1, 11) for _ in range(10)]
        # Within primary key k, the largest secondary (latest group) comes first
        expected_ids = [99 - row - 10 * col for row in range(10) for col in range(10)]
        assert ids == expected_ids
        assert secondary == [i + 1 for i in expected_ids]

    def test_stable_on_equal_keys(self):
        primary = [1, 0, 1, 0]
        secondary = [5, 5, 5, 5]
        ids = [0, 1, 2, 3]
        sort_two_level(primary, secondary, ids)
        assert ids == [1, 3, 0, 2]

    def test_numpy_views_sorted_in_place(self):
        primary = np.array([9, 3, 3, 1], dtype=np.int32)
        secondary = np.array([0, 1, 2, 0], dtype=np.int32)
        ids = np.arange(4, dtype=np.int32)
        sort_two_level(primary[1:], secondary[1:], ids[1:])

        assert primary.tolist() == [9, 1, 3, 3]
        assert ids.tolist() == [0, 3, 2, 1]

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            sort_two_level([1, 2], [1], [0, 1])


def make_requirements(rows):
    records = np.zeros(len(rows) + 2, dtype=BUFFER_RECORD_DTYPE)
    for i, (first, last, offline) in enumerate(rows):
        records[i]['size'] = 8
        records[i]['first_time_used'] = first
        records[i]['last_time_used'] = last
        records[i]['offline_offset'] = ONLINE_PLANNED_BUFFER if offline is None else offline
    return records


class TestBuildPlacementOrder:
    """Test offline-first placement order."""

    def test_offline_first_then_by_time(self):
        requirements = make_requirements([
            (2, 3, None),
            (0, 1, None),
            (1, 1, 100),
            (0, 3, None),
            (5, 6, 0),
        ])
        created = np.zeros(7, dtype=np.int32)
        last_used = np.zeros(7, dtype=np.int32)
        ids = np.zeros(7, dtype=np.int32)

        offline_count = build_placement_order(requirements, 5, created, last_used, ids)

        assert offline_count == 2
        assert ids[:5].tolist() == [2, 4, 3, 1, 0]
        assert created[2:5].tolist() == [0, 0, 2]
        assert last_used[2:5].tolist() == [3, 1, 3]

    def test_ties_keep_registration_order(self):
        requirements = make_requirements([(0, 1, None), (0, 1, None), (0, 1, None)])
        ids = np.zeros(5, dtype=np.int32)
        build_placement_order(requirements, 3, np.zeros(5, dtype=np.int32),
                              np.zeros(5, dtype=np.int32), ids)
        assert ids[:3].tolist() == [0, 1, 2]
