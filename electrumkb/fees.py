# ElectrumKB - lightweight Electrum protocol client
# Copyright (C) 2019-2020 The ElectrumSV Developers
#
# Permission is hereby granted, free of charge, to any person
# obtaining a copy of this software and associated documentation files
# (the "Software"), to deal in the Software without restriction,
# including without limitation the rights to use, copy, modify, merge,
# publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so,
# subject to the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS
# BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN
# ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN
# CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

'''Fee rate estimation from a mempool fee histogram.

The histogram is a list of `[fee_rate, vsize]` pairs in decreasing fee rate order, where
`vsize` is the virtual size of mempool transactions paying between that fee rate and the
previous (higher) one.
'''

import math
from typing import Sequence, TypedDict

VBYTES_PER_BLOCK = 1000000
# Each flattened entry stands for this many vbytes, to bound the flattened array size.
FLATTEN_GRANULARITY = 25000
# A first bucket above this fee rate is treated as implausible.
SANE_FEE_RATE_LIMIT = 1000

FAST_BLOCKS = 1
MEDIUM_BLOCKS = 18
SLOW_BLOCKS = 144


class FeeEstimates(TypedDict):
    fast: int
    medium: int
    slow: int


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def percentile(values: Sequence[float], p: float) -> float:
    '''Linear interpolation between closest ranks, over an ascending sequence.'''
    if not values:
        return 0
    if p <= 0:
        return values[0]
    if p >= 1:
        return values[-1]

    index = (len(values) - 1) * p
    lower = math.floor(index)
    upper = lower + 1
    weight = index % 1
    if upper >= len(values):
        return values[lower]
    return values[lower] * (1 - weight) + values[upper] * weight


def flatten_histogram(target_blocks: int, histogram: Sequence[Sequence[float]]) -> list[float]:
    budget = VBYTES_PER_BLOCK * target_blocks
    total_vsize = 0.0
    flat: list[float] = []
    for fee_rate, vsize in histogram:
        last_bucket = False
        if total_vsize + vsize >= budget:
            vsize = budget - total_vsize
            last_bucket = True
        flat.extend([fee_rate] * round_half_up(vsize / FLATTEN_GRANULARITY))
        total_vsize += vsize
        if last_bucket:
            break
    flat.sort()
    return flat


def estimate_fee_rate(target_blocks: int, histogram: Sequence[Sequence[float]]) -> int:
    '''The median fee rate of what would be mined in the next `target_blocks` blocks.'''
    if not histogram:
        return 0
    flat = flatten_histogram(target_blocks, histogram)
    return max(1, round_half_up(percentile(flat, 0.5)))


def combine_estimates(histogram: Sequence[Sequence[float]] | None,
        secondary: FeeEstimates) -> FeeEstimates:
    '''Use the histogram for the fast rate and rescale the secondary estimates around it.

    If the histogram is missing or its top bucket looks implausible, the secondary
    estimates are used as they are.'''
    if not histogram or histogram[0][0] > SANE_FEE_RATE_LIMIT:
        return FeeEstimates(fast=secondary["fast"], medium=secondary["medium"],
            slow=secondary["slow"])

    fast = max(2, estimate_fee_rate(FAST_BLOCKS, histogram))
    secondary_fast = secondary["fast"] or 1
    medium = max(1, round_half_up(fast * secondary["medium"] / secondary_fast))
    slow = max(1, round_half_up(fast * secondary["slow"] / secondary_fast))
    return FeeEstimates(fast=fast, medium=medium, slow=slow)


def fee_rate_from_coin_per_kb(coin_per_kb: float) -> int:
    '''Converts a `blockchain.estimatefee` result to satoshis per byte.'''
    if coin_per_kb == -1:
        return 1
    return round_half_up(coin_per_kb / 1024 * 100000000)
