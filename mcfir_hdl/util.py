#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

def ceil_log2(n):
    """Smallest integer k such that ``2**k >= n``"""
    if n < 1:
        raise ValueError('n must be positive')
    return (n - 1).bit_length()


def is_power_of_two(x):
    return x > 0 and x & (x - 1) == 0


def round_shift(x, shift):
    """Round half up and drop ``shift`` LSBs

    A bias of ``2**(shift-1)`` is added before the arithmetic right shift. No
    bias is added if ``shift`` is zero.
    """
    if shift == 0:
        return x
    return (x + (1 << (shift - 1))) >> shift


def saturate(x, nbits):
    """Clamp ``x`` to the range of a signed ``nbits`` integer

    Returns the clamped value and a flag that indicates whether clamping
    happened.
    """
    max_pos = 2**(nbits - 1) - 1
    max_neg = -2**(nbits - 1)
    if x > max_pos:
        return max_pos, True
    if x < max_neg:
        return max_neg, True
    return x, False


def tree_sum(values):
    """Sum by pairwise reduction

    Each level adds elements ``(2*j, 2*j+1)`` of the previous level. With an
    odd number of elements the last one is carried to the next level
    unchanged. This is the same order as used by the ``AdderTree``.
    """
    level = [int(v) for v in values]
    if not level:
        raise ValueError('cannot reduce an empty sequence')
    while len(level) > 1:
        level = [sum(level[j:j+2]) for j in range(0, len(level), 2)]
    return level[0]
