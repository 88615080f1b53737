#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *

from .util import ceil_log2


class AdderTree(Elaboratable):
    """Pipelined adder tree

    This module adds ``n`` signed inputs using a balanced binary tree with a
    register after each level. Level ``k + 1`` contains the sums of the
    elements ``(2*j, 2*j + 1)`` of level ``k``. If a level has an odd number
    of elements, its last element is carried unchanged to the next level.
    The order of the additions is fixed, so the module is bit-exact with
    ``util.tree_sum``.

    The pipeline only advances in the clock cycles in which ``clken`` is
    asserted.

    Parameters
    ----------
    n : int
        Number of inputs.
    in_width : int
        Width of the inputs.
    out_width : Optional[int]
        Width of the output and of the intermediate sums. By default, this is
        the minimum width that cannot overflow.

    Attributes
    ----------
    delay : int
        Delay (in ``clken`` cycles) introduced by this module. This is equal
        to the number of levels of the tree.
    clken : Signal(), in
        Clock enable.
    inputs : List[Signal(signed(in_width))], in
        Inputs.
    out : Signal(signed(out_width)), out
        Sum of the inputs.
    """
    def __init__(self, n, in_width, out_width=None):
        if n < 1:
            raise ValueError('the adder tree needs at least one input')
        self.n = n
        self.iw = in_width
        self.ow = (out_width if out_width is not None
                   else in_width + ceil_log2(n))

        self.clken = Signal()
        self.inputs = [Signal(signed(self.iw), name=f'in{j}')
                       for j in range(n)]
        self.out = Signal(signed(self.ow))

    @property
    def delay(self):
        return ceil_log2(self.n)

    def elaborate(self, platform):
        m = Module()

        level = self.inputs
        for k in range(self.delay):
            sums = []
            for j in range(0, len(level), 2):
                s = Signal(signed(self.ow), name=f'sum{k + 1}_{j // 2}',
                           reset_less=True)
                with m.If(self.clken):
                    m.d.sync += s.eq(sum(level[j:j+2]))
                sums.append(s)
            level = sums
        m.d.comb += self.out.eq(level[0])

        return m
