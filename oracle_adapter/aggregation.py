# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Aggregation policies for values collected from several providers.

- ``MEDIAN``: the statistical median; the mean of the two middle values for
  even counts.
- ``MEAN``: the arithmetic mean.
- ``ROUNDED_INDEX_MEDIAN``: sort ascending and take the element at index
  ``Math.round(n / 2)``, as JavaScript price feeds written against
  ``sorted[Math.round(n / 2)]`` do. For three values it picks the largest.
  Only sources that must agree with such feeds use it.
"""

import statistics
import unittest
from decimal import Decimal
from enum import Enum
from typing import Sequence, Union

from .exceptions import QuorumNotMet

Number = Union[int, float, Decimal]


class AggregationPolicy(str, Enum):
    MEDIAN = "median"
    MEAN = "mean"
    ROUNDED_INDEX_MEDIAN = "rounded-index-median"


def rounded_index(count: int) -> int:
    """JavaScript ``Math.round(count / 2)``, clamped to a valid index.

    ``Math.round`` rounds halves up, unlike Python's ``round``, so the index
    is ``(count + 1) // 2``. A single value has no element at index 1; the
    last element is used instead.
    """
    return min((count + 1) // 2, count - 1)


def rounded_index_median(values: Sequence[Number]) -> Number:
    ordered = sorted(values)
    return ordered[rounded_index(len(ordered))]


def aggregate(values: Sequence[Number], policy: AggregationPolicy) -> Number:
    """Reduce ``values`` to a single number.

    :raises QuorumNotMet: If there is nothing to aggregate.
    """
    if not values:
        raise QuorumNotMet(0, 1)
    if policy is AggregationPolicy.ROUNDED_INDEX_MEDIAN:
        return rounded_index_median(values)
    if policy is AggregationPolicy.MEAN:
        return statistics.mean(values)
    return statistics.median(values)


class Test(unittest.TestCase):
    def test_rounded_index_median_odd(self):
        self.assertEqual(rounded_index_median([300, 100, 200]), 300)

    def test_rounded_index_median_even(self):
        self.assertEqual(rounded_index_median([200, 100]), 200)
        self.assertEqual(rounded_index_median([4, 1, 3, 2]), 3)

    def test_rounded_index_rounds_half_up(self):
        # Python's round(2.5) is 2; Math.round(2.5) is 3.
        self.assertEqual(rounded_index(5), 3)
        self.assertEqual(rounded_index(3), 2)
        self.assertEqual(rounded_index(1), 0)

    def test_policies(self):
        values = [100, 200, 300]
        self.assertEqual(aggregate(values, AggregationPolicy.MEDIAN), 200)
        self.assertEqual(aggregate([1, 2, 3, 10], AggregationPolicy.MEDIAN), 2.5)
        self.assertEqual(aggregate(values, AggregationPolicy.MEAN), 200)
        self.assertEqual(
            aggregate(values, AggregationPolicy.ROUNDED_INDEX_MEDIAN), 300
        )

    def test_empty(self):
        with self.assertRaises(QuorumNotMet):
            aggregate([], AggregationPolicy.MEDIAN)


if __name__ == "__main__":
    unittest.main()
