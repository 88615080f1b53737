#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *

from .adder_tree import AdderTree
from .model import MultichannelFIRModel
from .taps import DEFAULT_COEFFS
from .util import ceil_log2, is_power_of_two


class CoefficientStore(Elaboratable):
    """Coefficient store

    This module holds the coefficients of a symmetric FIR. Only one
    coefficient per symmetric pair of taps is stored. Each coefficient is
    stored together with a flag that indicates if it is a positive power of
    two and the corresponding shift, so that the multiplier can use a shift
    instead of a multiply. These are computed when the coefficient is
    written.

    A write presented in a clock cycle takes effect at the end of that cycle.

    Parameters
    ----------
    num_coeffs : int
        Number of coefficients.
    width : int
        Coefficient width.
    init : Sequence[int]
        Initial (cold-start) coefficients.
    reload_on_reset : bool
        If True, the initial coefficients are loaded again when ``reload`` is
        asserted. Otherwise ``reload`` is ignored and the coefficients are
        only changed by writes.

    Attributes
    ----------
    wren : Signal(), in
        Write enable.
    waddr : Signal(range(num_coeffs)), in
        Write address.
    wdata : Signal(signed(width)), in
        Write data.
    reload : Signal(), in
        Reload initial coefficients.
    coeff : List[Signal(signed(width))], out
        Coefficients.
    pow2 : List[Signal()], out
        Asserted if the corresponding coefficient is a positive power of two.
    shift : List[Signal(range(width - 1))], out
        Base 2 logarithm of the corresponding coefficient when ``pow2`` is
        asserted. Zero otherwise.
    """
    def __init__(self, num_coeffs, width, init, *, reload_on_reset=False):
        if len(init) != num_coeffs:
            raise ValueError('wrong number of initial coefficients')
        self.n = num_coeffs
        self.w = width
        self.init = [int(c) for c in init]
        self.reload_on_reset = reload_on_reset

        self.wren = Signal()
        self.waddr = Signal(range(num_coeffs))
        self.wdata = Signal(signed(width))
        self.reload = Signal()

        self.coeff = [Signal(signed(width), name=f'coeff{i}', init=c)
                      for i, c in enumerate(self.init)]
        self.pow2 = [Signal(name=f'pow2_{i}', init=int(is_power_of_two(c)))
                     for i, c in enumerate(self.init)]
        self.shift = [Signal(range(width - 1), name=f'shift{i}',
                             init=self._shift(c))
                      for i, c in enumerate(self.init)]

    @staticmethod
    def _shift(c):
        return c.bit_length() - 1 if is_power_of_two(c) else 0

    def elaborate(self, platform):
        m = Module()

        wpow2 = Signal()
        wshift = Signal(range(self.w - 1))
        for b in range(self.w - 1):
            with m.If(self.wdata == 2**b):
                m.d.comb += [wpow2.eq(1), wshift.eq(b)]

        for i in range(self.n):
            with m.If(self.wren & (self.waddr == i)):
                m.d.sync += [
                    self.coeff[i].eq(self.wdata),
                    self.pow2[i].eq(wpow2),
                    self.shift[i].eq(wshift),
                ]

        if self.reload_on_reset:
            with m.If(self.reload):
                for i, c in enumerate(self.init):
                    m.d.sync += [
                        self.coeff[i].eq(c),
                        self.pow2[i].eq(int(is_power_of_two(c))),
                        self.shift[i].eq(self._shift(c)),
                    ]

        return m


class ChannelHistory(Elaboratable):
    """Channel history bank

    This module keeps an independent history of the last ``taps`` samples of
    each channel. When ``push`` is asserted, ``data`` is shifted into the
    front of the history of channel ``channel`` and the history of that
    channel after the shift is latched in ``window``. The histories of the
    other channels are not modified.

    Parameters
    ----------
    channels : int
        Number of channels.
    taps : int
        History length.
    width : int
        Sample width.

    Attributes
    ----------
    delay : int
        Delay (in clock cycles) introduced by this module.
    push : Signal(), in
        Push ``data`` into the history of ``channel``.
    channel : Signal(range(channels)), in
        Channel of the input sample.
    data : Signal(signed(width)), in
        Input sample.
    clear : Signal(), in
        Set all the histories to zero.
    window : List[Signal(signed(width))], out
        History of the last channel that has been pushed, newest sample
        first.
    history : List[List[Signal(signed(width))]], out
        History of each channel, newest sample first.
    """
    def __init__(self, channels, taps, width):
        self.channels = channels
        self.taps = taps
        self.w = width

        self.push = Signal()
        self.channel = Signal(range(channels))
        self.data = Signal(signed(width))
        self.clear = Signal()
        self.window = [Signal(signed(width), name=f'window{k}',
                              reset_less=True)
                       for k in range(taps)]
        self.history = [[Signal(signed(width), name=f'history{c}_{k}')
                         for k in range(taps)]
                        for c in range(channels)]

    @property
    def delay(self):
        return 1

    def elaborate(self, platform):
        m = Module()

        # tap k of every channel, selectable by channel number
        columns = [Array(self.history[c][k] for c in range(self.channels))
                   for k in range(self.taps)]

        with m.If(self.push):
            m.d.sync += self.window[0].eq(self.data)
            m.d.sync += [self.window[k].eq(columns[k - 1][self.channel])
                         for k in range(1, self.taps)]
            for c in range(self.channels):
                history = self.history[c]
                with m.If(self.channel == c):
                    m.d.sync += history[0].eq(self.data)
                    m.d.sync += [history[k].eq(history[k - 1])
                                 for k in range(1, self.taps)]

        with m.If(self.clear):
            m.d.sync += [h.eq(0) for history in self.history for h in history]

        return m


class SymmetricPreAdd(Elaboratable):
    """Symmetric pre-adder

    Adds together the samples that are multiplied by the same coefficient in
    a symmetric FIR, which halves the number of multiplications. Output
    ``j`` is ``window[j] + window[taps - 1 - j]``, with one bit of growth.

    Attributes
    ----------
    delay : int
        Delay (in ``clken`` cycles) introduced by this module.
    clken : Signal(), in
        Clock enable.
    window : List[Signal(signed(width))], in
        Sample window.
    pairs : List[Signal(signed(width + 1))], out
        Pair sums.
    """
    def __init__(self, taps, width):
        self.taps = taps
        self.w = width

        self.clken = Signal()
        self.window = [Signal(signed(width), name=f'window{k}')
                       for k in range(taps)]
        self.pairs = [Signal(signed(width + 1), name=f'pair{j}',
                             reset_less=True)
                      for j in range(taps // 2)]

    @property
    def delay(self):
        return 1

    def elaborate(self, platform):
        m = Module()
        with m.If(self.clken):
            m.d.sync += [
                pair.eq(self.window[j] + self.window[self.taps - 1 - j])
                for j, pair in enumerate(self.pairs)]
        return m


class CoeffMultiply(Elaboratable):
    """Coefficient multiplier

    Multiplies a pair sum by a coefficient. If the coefficient is a positive
    power of two (as indicated by ``pow2``), the product is computed as a left
    shift by ``shift`` bits. Otherwise a signed multiply is used. Both give
    exactly the same result.

    Parameters
    ----------
    a_width : int
        Width of the ``pair`` input.
    coeff_width : int
        Width of the ``coeff`` input.

    Attributes
    ----------
    delay : int
        Delay (in ``clken`` cycles) introduced by this module.
    clken : Signal(), in
        Clock enable.
    pair : Signal(signed(a_width)), in
        Pair sum.
    coeff : Signal(signed(coeff_width)), in
        Coefficient.
    pow2 : Signal(), in
        Coefficient is a positive power of two.
    shift : Signal(range(coeff_width - 1)), in
        Base 2 logarithm of the coefficient (only used if ``pow2`` is
        asserted).
    product : Signal(signed(a_width + coeff_width)), out
        Product.
    """
    def __init__(self, a_width, coeff_width):
        self.aw = a_width
        self.cw = coeff_width

        self.clken = Signal()
        self.pair = Signal(signed(a_width))
        self.coeff = Signal(signed(coeff_width))
        self.pow2 = Signal()
        self.shift = Signal(range(coeff_width - 1))
        self.product = Signal(signed(a_width + coeff_width), reset_less=True)

    @property
    def delay(self):
        return 1

    def elaborate(self, platform):
        m = Module()
        with m.If(self.clken):
            with m.If(self.pow2):
                m.d.sync += self.product.eq(self.pair << self.shift)
            with m.Else():
                m.d.sync += self.product.eq(self.pair * self.coeff)
        return m


class ScaleSaturate(Elaboratable):
    """Scale and saturate

    Drops the ``shift`` LSBs of the accumulator using round half up and
    clamps the result to the range of the output. Clamping is signalled with
    ``overflow``. The output never wraps around.

    Parameters
    ----------
    in_width : int
        Accumulator width.
    out_width : int
        Output width.
    shift : int
        Number of LSBs to drop.

    Attributes
    ----------
    delay : int
        Delay (in ``clken`` cycles) introduced by this module.
    clken : Signal(), in
        Clock enable.
    acc : Signal(signed(in_width)), in
        Accumulator.
    out : Signal(signed(out_width)), out
        Scaled and saturated output.
    overflow : Signal(), out
        Asserted when ``out`` has been clamped.
    """
    def __init__(self, in_width, out_width, shift):
        self.iw = in_width
        self.ow = out_width
        self.shift = shift

        self.clken = Signal()
        self.acc = Signal(signed(in_width))
        self.out = Signal(signed(out_width), reset_less=True)
        self.overflow = Signal(reset_less=True)

    @property
    def delay(self):
        return 1

    def elaborate(self, platform):
        m = Module()

        max_pos = 2**(self.ow - 1) - 1
        max_neg = -2**(self.ow - 1)
        bias = 2**(self.shift - 1) if self.shift >= 1 else 0
        rounded = Signal(signed(self.iw + 1))
        scaled = Signal(signed(self.iw + 1 - self.shift))
        m.d.comb += [
            rounded.eq(self.acc + bias),
            scaled.eq(rounded >> self.shift),
        ]

        with m.If(self.clken):
            with m.If(scaled > max_pos):
                m.d.sync += [self.out.eq(max_pos), self.overflow.eq(1)]
            with m.Elif(scaled < max_neg):
                m.d.sync += [self.out.eq(max_neg), self.overflow.eq(1)]
            with m.Else():
                m.d.sync += [self.out.eq(scaled), self.overflow.eq(0)]

        return m


class MultichannelFIR(Elaboratable):
    """Time-multiplexed multichannel symmetric FIR

    This module filters several independent channels with the same symmetric
    FIR, using a single pipelined datapath. Each input sample is tagged with a
    channel number and a frame end marker, which are given back with the
    corresponding output sample. Each channel has its own sample history, so
    there is no crosstalk between channels. The coefficients are common to
    all channels and can be written at any time. A write only affects samples
    accepted after the clock cycle in which the write was presented, since
    the coefficients are latched together with each input sample.

    The datapath is formed by the channel history (1 cycle), the symmetric
    pre-adders (1 cycle), the multipliers (1 cycle), the adder tree
    (``ceil(log2(taps // 2))`` cycles), scaling and saturation (1 cycle) and
    the output register (1 cycle). The channel and frame end marker travel
    through a shift register with the same delay.

    Input and output use AXI-Stream handshaking. The whole pipeline stops
    when the output holds a sample that the consumer is not ready to take, so
    ``in_ready`` is asserted only when the output register is empty or is
    being read in the same cycle. Samples come out in the same order as they
    were accepted, regardless of their channel.

    When ``bypass`` is asserted, accepted samples are copied directly to the
    output register. The channel histories and overflow flags are not
    updated. Input samples are not accepted in bypass mode until all the
    filtered samples in the pipeline have reached the output register, so
    that output order is preserved.

    ``reset`` is a synchronous reset. It clears the channel histories, the
    pipeline, the output register, the overflow flags and the sample
    counter. The coefficients are only reloaded with their initial values if
    ``reload_coeffs_on_reset`` is set.

    Parameters
    ----------
    channels : int
        Number of channels.
    taps : int
        FIR length. It must be even.
    in_width : int
        Width of the input and output samples.
    coeff_width : int
        Coefficient width. Coefficients use ``coeff_width - 1`` fractional
        bits.
    coeffs : Optional[Sequence[int]]
        Initial half-length coefficient set. By default ``DEFAULT_COEFFS`` is
        used, which is only valid for 32 taps.
    reload_coeffs_on_reset : bool
        Reload the initial coefficients when ``reset`` is asserted.

    Attributes
    ----------
    delay : int
        Latency (in cycles in which the pipeline advances) between the input
        and the output.
    data_in : Signal(signed(in_width)), in
        Input sample.
    channel_in : Signal(range(channels)), in
        Channel of the input sample.
    last_in : Signal(), in
        Frame end marker of the input sample.
    in_valid : Signal(), in
        Input valid (uses AXI-Stream handshaking).
    in_ready : Signal(), out
        Input ready (uses AXI-Stream handshaking).
    data_out : Signal(signed(in_width)), out
        Output sample.
    channel_out : Signal(range(channels)), out
        Channel of the output sample.
    last_out : Signal(), out
        Frame end marker of the output sample.
    out_valid : Signal(), out
        Output valid (uses AXI-Stream handshaking).
    out_ready : Signal(), in
        Output ready (uses AXI-Stream handshaking).
    coeff_wren : Signal(), in
        Coefficient write enable.
    coeff_waddr : Signal(range(taps // 2)), in
        Coefficient write address.
    coeff_wdata : Signal(signed(coeff_width)), in
        Coefficient write data.
    bypass : Signal(), in
        Bypass the filter.
    reset : Signal(), in
        Synchronous reset.
    overflow : Signal(channels), out
        Overflow flag of each channel. It is asserted if the last filtered
        output of the channel has been saturated.
    busy : Signal(), out
        Asserted when the output register holds a sample.
    sample_count : Signal(32), out
        Number of accepted input samples (wraps around).
    """
    def __init__(self, *, channels=4, taps=32, in_width=16, coeff_width=16,
                 coeffs=None, reload_coeffs_on_reset=False):
        if channels < 1:
            raise ValueError('at least one channel is needed')
        if taps < 2 or taps % 2 != 0:
            raise ValueError('the number of taps must be even and non-zero')
        if coeff_width < 2:
            raise ValueError('coeff_width must be at least 2')
        if coeffs is None:
            coeffs = DEFAULT_COEFFS
        if len(coeffs) != taps // 2:
            raise ValueError(
                f'{taps} taps need {taps // 2} coefficients, '
                f'got {len(coeffs)}')
        for c in coeffs:
            if c < -2**(coeff_width - 1) or c >= 2**(coeff_width - 1):
                raise ValueError(
                    f'coefficient {c} does not fit in {coeff_width} bits')

        self.channels = channels
        self.taps = taps
        self.iw = in_width
        self.cw = coeff_width
        self.coeffs = [int(c) for c in coeffs]
        self.reload_coeffs_on_reset = reload_coeffs_on_reset
        self.pair_width = in_width + 1
        self.product_width = self.pair_width + coeff_width
        self.acc_width = in_width + coeff_width + ceil_log2(taps)
        self.scale_shift = coeff_width - 1

        self.data_in = Signal(signed(in_width))
        self.channel_in = Signal(range(channels))
        self.last_in = Signal()
        self.in_valid = Signal()
        self.in_ready = Signal()

        self.data_out = Signal(signed(in_width), reset_less=True)
        self.channel_out = Signal(range(channels), reset_less=True)
        self.last_out = Signal(reset_less=True)
        self.out_valid = Signal()
        self.out_ready = Signal()

        self.coeff_wren = Signal()
        self.coeff_waddr = Signal(range(taps // 2))
        self.coeff_wdata = Signal(signed(coeff_width))

        self.bypass = Signal()
        self.reset = Signal()

        self.overflow = Signal(channels)
        self.busy = Signal()
        self.sample_count = Signal(32)

    @property
    def tree_levels(self):
        return ceil_log2(self.taps // 2)

    @property
    def delay(self):
        return 5 + self.tree_levels

    def model(self, samples, bypass=False):
        """Expected outputs for a sequence of ``(data, channel, last)``
        samples, starting from reset and with the initial coefficients"""
        model = MultichannelFIRModel(
            self.channels, self.taps, self.coeffs,
            in_width=self.iw, coeff_width=self.cw)
        return model.run(samples, bypass=bypass)

    def ports(self):
        return [
            self.data_in, self.channel_in, self.last_in,
            self.in_valid, self.in_ready,
            self.data_out, self.channel_out, self.last_out,
            self.out_valid, self.out_ready,
            self.coeff_wren, self.coeff_waddr, self.coeff_wdata,
            self.bypass, self.reset,
            self.overflow, self.busy, self.sample_count,
        ]

    def elaborate(self, platform):
        m = Module()

        half = self.taps // 2
        m.submodules.coeffs = coeffs = CoefficientStore(
            half, self.cw, self.coeffs,
            reload_on_reset=self.reload_coeffs_on_reset)
        m.submodules.history = history = ChannelHistory(
            self.channels, self.taps, self.iw)
        m.submodules.preadd = preadd = SymmetricPreAdd(self.taps, self.iw)
        mults = []
        for j in range(half):
            mult = CoeffMultiply(self.pair_width, self.cw)
            m.submodules[f'mult{j}'] = mult
            mults.append(mult)
        m.submodules.tree = tree = AdderTree(
            half, self.product_width, self.acc_width)
        m.submodules.scale = scale = ScaleSaturate(
            self.acc_width, self.iw, self.scale_shift)
        assert (history.delay + preadd.delay + mults[0].delay + tree.delay
                + scale.delay + 1) == self.delay

        # The pipeline advances when the output register is empty or is
        # being read.
        clken = Signal()
        accept = Signal()
        accept_filter = Signal()
        accept_bypass = Signal()
        # valid, channel and frame end of each stage before the output
        # register
        stages = self.delay - 1
        valid_q = Signal(stages)
        last_q = Signal(stages)
        channel_q = [Signal(range(self.channels), name=f'channel_q{j}')
                     for j in range(stages)]

        m.d.comb += [
            clken.eq(~self.out_valid | self.out_ready),
            self.in_ready.eq(
                clken & ~self.reset & (~self.bypass | (valid_q == 0))),
            accept.eq(self.in_valid & self.in_ready),
            accept_filter.eq(accept & ~self.bypass),
            accept_bypass.eq(accept & self.bypass),
            self.busy.eq(self.out_valid),

            coeffs.wren.eq(self.coeff_wren),
            coeffs.waddr.eq(self.coeff_waddr),
            coeffs.wdata.eq(self.coeff_wdata),
            coeffs.reload.eq(self.reset),

            history.push.eq(accept_filter),
            history.channel.eq(self.channel_in),
            history.data.eq(self.data_in),
            history.clear.eq(self.reset),

            preadd.clken.eq(clken),
            tree.clken.eq(clken),
            scale.clken.eq(clken),
            scale.acc.eq(tree.out),
        ]
        m.d.comb += [w.eq(h) for w, h in zip(preadd.window, history.window)]

        # The coefficients are latched when a sample is accepted and follow
        # it until the multipliers.
        coeff_q = [[Signal(signed(self.cw), name=f'coeff_q{s}_{j}',
                           reset_less=True)
                    for j in range(half)]
                   for s in range(2)]
        pow2_q = [Signal(half, name=f'pow2_q{s}', reset_less=True)
                  for s in range(2)]
        shift_q = [[Signal(range(self.cw - 1), name=f'shift_q{s}_{j}',
                           reset_less=True)
                    for j in range(half)]
                   for s in range(2)]
        with m.If(accept_filter):
            m.d.sync += pow2_q[0].eq(Cat(*coeffs.pow2))
            m.d.sync += [c.eq(d) for c, d in zip(coeff_q[0], coeffs.coeff)]
            m.d.sync += [c.eq(d) for c, d in zip(shift_q[0], coeffs.shift)]
        with m.If(clken):
            m.d.sync += pow2_q[1].eq(pow2_q[0])
            m.d.sync += [c.eq(d) for c, d in zip(coeff_q[1], coeff_q[0])]
            m.d.sync += [c.eq(d) for c, d in zip(shift_q[1], shift_q[0])]

        for j, mult in enumerate(mults):
            m.d.comb += [
                mult.clken.eq(clken),
                mult.pair.eq(preadd.pairs[j]),
                mult.coeff.eq(coeff_q[1][j]),
                mult.pow2.eq(pow2_q[1][j]),
                mult.shift.eq(shift_q[1][j]),
                tree.inputs[j].eq(mult.product),
            ]

        # Shadow pipeline for the tags
        with m.If(clken):
            m.d.sync += [
                valid_q.eq(Cat(accept_filter, valid_q[:-1])),
                last_q.eq(Cat(self.last_in, last_q[:-1])),
                channel_q[0].eq(self.channel_in),
            ]
            m.d.sync += [channel_q[j].eq(channel_q[j - 1])
                         for j in range(1, stages)]

        # Output register
        with m.If(clken):
            m.d.sync += self.out_valid.eq(valid_q[-1] | accept_bypass)
            with m.If(accept_bypass):
                m.d.sync += [
                    self.data_out.eq(self.data_in),
                    self.channel_out.eq(self.channel_in),
                    self.last_out.eq(self.last_in),
                ]
            with m.Elif(valid_q[-1]):
                m.d.sync += [
                    self.data_out.eq(scale.out),
                    self.channel_out.eq(channel_q[-1]),
                    self.last_out.eq(last_q[-1]),
                ]
                for c in range(self.channels):
                    with m.If(channel_q[-1] == c):
                        m.d.sync += self.overflow[c].eq(scale.overflow)

        with m.If(accept):
            m.d.sync += self.sample_count.eq(self.sample_count + 1)

        with m.If(self.reset):
            m.d.sync += [
                valid_q.eq(0),
                last_q.eq(0),
                self.out_valid.eq(0),
                self.overflow.eq(0),
                self.sample_count.eq(0),
            ]
            m.d.sync += [c.eq(0) for c in channel_q]

        return m
