#!/usr/bin/env python3
"""Tests for output layout planning.

All tests are offline: descriptors are built in memory.
"""

import pytest

from libreimx500._constants import UINT32_MAX
from libreimx500.errors import EmptyLayout, InvalidFrame, LayoutOverflow, UnexpectedSize
from libreimx500.layout import element_count, plan_layout
from libreimx500.schema_builder import ssd_mobilenet_descriptors
from tests.frames import make_descriptor


class TestElementCount:

    def test_product_of_sizes(self):
        assert element_count(make_descriptor([3, 4, 5])) == 60

    def test_scalar_tensor(self):
        assert element_count(make_descriptor([])) == 1

    def test_zero_sized_dimension(self):
        assert element_count(make_descriptor([7, 0, 65535])) == 0

    def test_overflow(self):
        with pytest.raises(LayoutOverflow):
            element_count(make_descriptor([65535, 65535, 65535]))

    def test_largest_non_overflowing(self):
        d = make_descriptor([65535, 65535])
        assert element_count(d) == 65535 * 65535 < UINT32_MAX


class TestPlanLayout:

    def test_ssd_topology(self):
        plan = plan_layout(ssd_mobilenet_descriptors(), max_line_len=4064)
        assert plan.total_elements == 61
        assert [t.element_count for t in plan.tensors] == [40, 10, 10, 1]
        assert [t.offset for t in plan.tensors] == [0, 40, 50, 60]
        assert [t.line_count for t in plan.tensors] == [1, 1, 1, 1]

    def test_16bit_byte_and_line_counts(self):
        plan = plan_layout(ssd_mobilenet_descriptors(bits=16), max_line_len=16)
        assert [t.byte_count for t in plan.tensors] == [80, 20, 20, 2]
        assert [t.line_count for t in plan.tensors] == [5, 2, 2, 1]

    def test_line_count_rounds_up(self):
        descs = [make_descriptor([50]), make_descriptor([11])]
        plan = plan_layout(descs, max_line_len=10, expected_total=None)
        assert [t.line_count for t in plan.tensors] == [5, 2]

    def test_zero_element_tensor_occupies_no_lines(self):
        descs = [make_descriptor([0]), make_descriptor([61])]
        plan = plan_layout(descs, max_line_len=32)
        assert plan.tensors[0].line_count == 0
        assert plan.tensors[1].offset == 0

    def test_unconstrained_total(self):
        plan = plan_layout([make_descriptor([2, 3])], 8, expected_total=None)
        assert plan.total_elements == 6

    def test_no_descriptors(self):
        with pytest.raises(EmptyLayout):
            plan_layout([], max_line_len=64)

    def test_all_empty(self):
        with pytest.raises(EmptyLayout, match="total size is 0"):
            plan_layout([make_descriptor([0]), make_descriptor([4, 0])], 64)

    def test_unexpected_total(self):
        with pytest.raises(UnexpectedSize, match="60"):
            plan_layout([make_descriptor([60])], max_line_len=64)

    def test_total_overflow(self):
        big = make_descriptor([65535, 65535])
        with pytest.raises(LayoutOverflow, match="Total"):
            plan_layout([big, big], max_line_len=64, expected_total=None)

    def test_zero_max_line_len(self):
        with pytest.raises(InvalidFrame):
            plan_layout(ssd_mobilenet_descriptors(), max_line_len=0)


class TestSchedule:

    def test_longest_first(self):
        descs = [make_descriptor([5]), make_descriptor([40]), make_descriptor([16])]
        plan = plan_layout(descs, max_line_len=8, expected_total=None)
        assert [t.line_count for t in plan.tensors] == [1, 5, 2]
        assert plan.schedule() == [1, 2, 0]

    def test_ties_keep_schema_order(self):
        descs = [make_descriptor([3]), make_descriptor([20]), make_descriptor([4]),
                 make_descriptor([20])]
        plan = plan_layout(descs, max_line_len=8, expected_total=None)
        assert plan.schedule() == [1, 3, 0, 2]

    def test_schedule_is_a_permutation(self):
        plan = plan_layout(ssd_mobilenet_descriptors(bits=16), max_line_len=12)
        assert sorted(plan.schedule()) == [0, 1, 2, 3]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
