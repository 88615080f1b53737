#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *
import numpy as np

import itertools
import unittest

from mcfir_hdl.fir import (
    CoefficientStore, CoeffMultiply, MultichannelFIR, ScaleSaturate)
from mcfir_hdl.model import MultichannelFIRModel
from mcfir_hdl.taps import DEFAULT_COEFFS, unfold_taps
from mcfir_hdl.util import round_shift, saturate
from .amaranth_sim import AmaranthSim
from .stream import random_on_off, run_stream


def random_samples(n, channels, amplitude=2**15):
    data = np.random.randint(-amplitude, amplitude, size=n)
    channel = np.random.randint(0, channels, size=n)
    last = np.random.randint(0, 2, size=n)
    return [(int(d), int(c), bool(f)) for d, c, f in zip(data, channel, last)]


def flags_to_int(flags):
    return sum(int(f) << c for c, f in enumerate(flags))


class TestMultichannelFIR(AmaranthSim):
    def new_model(self, coeffs=None):
        return MultichannelFIRModel(
            self.dut.channels, self.dut.taps,
            self.dut.coeffs if coeffs is None else coeffs,
            in_width=self.dut.iw, coeff_width=self.dut.cw)

    def expected(self, model, samples):
        outputs = []
        overflow = []
        for s in samples:
            outputs.append(model.process(*s))
            overflow.append(flags_to_int(model.overflow))
        return outputs, overflow

    def test_impulse_response(self):
        self.dut = MultichannelFIR()
        self.assertEqual(self.dut.delay, 9)
        samples = [(16384, 0, False)] + [(0, 0, False)] * 40
        samples[-1] = (0, 0, True)
        # output k is 16384 times tap k, rounded to the nearest integer
        taps = unfold_taps(DEFAULT_COEFFS)
        expected = [(16384 * int(c) + 2**14) >> 15 for c in taps]
        expected += [0] * (len(samples) - len(taps))

        async def bench(ctx):
            result = await run_stream(ctx, self.dut, samples)
            data = [out[0] for out in result.outputs]
            self.assertEqual(data[:9],
                             [0, 7, 20, 45, 91, 189, 389, 790, 1586])
            self.assertEqual(data, expected)
            self.assertTrue(all(out[1] == 0 for out in result.outputs))
            self.assertEqual([out[2] for out in result.outputs],
                             [s[2] for s in samples])
            self.assertEqual(result.emitted[0] - result.accepted[0],
                             self.dut.delay)
            np.testing.assert_equal(
                np.array(result.emitted) - np.array(result.accepted),
                self.dut.delay)
            self.assertEqual(result.outputs, self.dut.model(samples))

        self.simulate(bench)

    def random_test(self, nsamples=300, stalls=True):
        samples = random_samples(nsamples, self.dut.channels,
                                 2**(self.dut.iw - 1))
        model_out, model_overflow = self.expected(self.new_model(), samples)

        async def bench(ctx):
            if stalls:
                result = await run_stream(
                    ctx, self.dut, samples,
                    valid=random_on_off(8, 3), ready=random_on_off(6, 4))
            else:
                result = await run_stream(ctx, self.dut, samples)
            self.assertEqual(result.outputs, model_out)
            self.assertEqual(result.overflow, model_overflow)
            self.assertEqual(ctx.get(self.dut.sample_count), nsamples)

        self.simulate(bench)

    def test_random_interleaving(self):
        self.dut = MultichannelFIR()
        self.random_test()

    def test_random_no_stalls(self):
        self.dut = MultichannelFIR()
        self.random_test(stalls=False)

    def test_odd_tree(self):
        # 3 coefficients give a tree with a carried element
        self.dut = MultichannelFIR(
            channels=3, taps=6, coeffs=[-12345, 4096, 30000])
        self.assertEqual(self.dut.delay, 7)
        self.random_test(nsamples=200)

    def test_two_taps(self):
        self.dut = MultichannelFIR(
            channels=1, taps=2, coeffs=[20000], in_width=12,
            coeff_width=18)
        self.assertEqual(self.dut.delay, 5)
        self.random_test(nsamples=100)

    def test_channel_isolation(self):
        self.dut = MultichannelFIR()
        n = 120
        data = np.random.randint(-2**15, 2**15, size=n)
        # channel 0 gets random data, channel 1 zeros
        samples = []
        for d in data:
            samples.append((int(d), 0, False))
            samples.append((0, 1, False))
        alone = self.new_model().run([s for s in samples if s[1] == 0])

        async def bench(ctx):
            result = await run_stream(
                ctx, self.dut, samples, ready=random_on_off(10, 2))
            channel0 = [out for out in result.outputs if out[1] == 0]
            channel1 = [out for out in result.outputs if out[1] == 1]
            self.assertEqual(channel0, alone)
            self.assertEqual(channel1, [(0, 1, False)] * n)
            # channel order is preserved
            self.assertEqual([out[1] for out in result.outputs],
                             [s[1] for s in samples])
            # channel 1 never overflows
            self.assertTrue(all((f & 2) == 0 for f in result.overflow))

        self.simulate(bench)

    def test_linearity(self):
        self.dut = MultichannelFIR()
        x = 1000
        k = 3
        samples = []
        for j in range(40):
            samples.append((x if j == 0 else 0, 2, False))
            samples.append((k * x if j == 0 else 0, 3, False))

        async def bench(ctx):
            result = await run_stream(ctx, self.dut, samples)
            y1 = np.array([out[0] for out in result.outputs if out[1] == 2])
            yk = np.array([out[0] for out in result.outputs if out[1] == 3])
            self.assertTrue(np.any(y1 != 0))
            # rounding of each output introduces an error of at most 1/2
            self.assertTrue(np.all(np.abs(yk - k * y1) <= (k + 1) / 2))

        self.simulate(bench)

    def test_saturation(self):
        self.dut = MultichannelFIR(
            channels=2, taps=8, coeffs=[2**15 - 1] * 4)
        max_pos = 2**15 - 1
        max_neg = -2**15
        samples = []
        for j in range(8):
            samples.append((max_pos, 1, False))
            samples.append((j, 0, False))
        for j in range(8):
            samples.append((0, 1, False))
            samples.append((0, 0, False))
        for j in range(8):
            samples.append((max_neg, 1, False))
        for j in range(8):
            samples.append((0, 1, False))
        model_out, model_overflow = self.expected(self.new_model(), samples)

        async def bench(ctx):
            result = await run_stream(ctx, self.dut, samples)
            self.assertEqual(result.outputs, model_out)
            self.assertEqual(result.overflow, model_overflow)
            channel1 = [(out[0], (flags >> 1) & 1)
                        for out, flags in zip(result.outputs,
                                              result.overflow)
                        if out[1] == 1]
            self.assertEqual(channel1[7], (max_pos, 1))
            self.assertEqual(channel1[23], (max_neg, 1))
            # flag cleared with the first result that does not overflow
            for data, flag in channel1:
                self.assertEqual(flag, int(data in [max_pos, max_neg]))
            self.assertEqual(channel1[-1], (0, 0))
            self.assertEqual(ctx.get(self.dut.overflow), 0)

        self.simulate(bench)

    def test_backpressure(self):
        self.dut = MultichannelFIR()
        samples = random_samples(60, self.dut.channels)
        stall = 50
        held = []

        def monitor(ctx, cycle):
            if self.dut.delay < cycle < stall:
                held.append((ctx.get(self.dut.out_valid),
                             ctx.get(self.dut.busy),
                             ctx.get(self.dut.in_ready),
                             ctx.get(self.dut.data_out),
                             ctx.get(self.dut.channel_out)))

        async def bench(ctx):
            ready = itertools.chain([False] * stall, itertools.repeat(True))
            result = await run_stream(ctx, self.dut, samples, ready=ready,
                                      on_cycle=monitor)
            # the pipeline fills up and then stops accepting
            self.assertEqual(result.accepted[:self.dut.delay],
                             list(range(self.dut.delay)))
            self.assertEqual(result.accepted[self.dut.delay], stall)
            self.assertEqual(result.emitted[0], stall)
            self.assertTrue(all(h == held[0] for h in held))
            self.assertEqual(held[0][:3], (1, 1, 0))
            self.assertEqual(result.outputs, self.dut.model(samples))
            await ctx.tick()
            self.assertFalse(ctx.get(self.dut.busy))

        self.simulate(bench)

    def test_live_reconfiguration(self):
        self.dut = MultichannelFIR(
            channels=2, taps=8, coeffs=[1000, 2000, 3000, 4000])
        samples = [(16384, 0, False)] + [(0, 0, False)] * 11

        def write_coeff(ctx, cycle):
            ctx.set(self.dut.coeff_wren, int(cycle == 1))
            ctx.set(self.dut.coeff_waddr, 0)
            ctx.set(self.dut.coeff_wdata, 8000)

        model = self.new_model()
        # the samples accepted in cycles 0 and 1 use the old coefficients
        model_out = model.run(samples[:2])
        model.write_coeff(0, 8000)
        model_out += model.run(samples[2:])

        async def bench(ctx):
            result = await run_stream(ctx, self.dut, samples,
                                      on_cycle=write_coeff)
            self.assertEqual(result.accepted[:3], [0, 1, 2])
            data = [out[0] for out in result.outputs]
            self.assertEqual(data[0], 500)
            self.assertEqual(data[7], 4000)
            self.assertEqual(result.outputs, model_out)

        self.simulate(bench)

    def test_bypass(self):
        self.dut = MultichannelFIR()
        samples = random_samples(100, self.dut.channels)
        impulse = [(16384, 0, False)] + [(0, 0, False)] * 40

        async def bench(ctx):
            ctx.set(self.dut.bypass, 1)
            result = await run_stream(ctx, self.dut, samples)
            self.assertEqual(result.outputs, samples)
            np.testing.assert_equal(
                np.array(result.emitted) - np.array(result.accepted), 1)
            result = await run_stream(
                ctx, self.dut, samples,
                valid=random_on_off(4, 4), ready=random_on_off(4, 4))
            self.assertEqual(result.outputs, samples)
            self.assertEqual(ctx.get(self.dut.sample_count), 200)
            self.assertEqual(ctx.get(self.dut.overflow), 0)
            # the histories have not been touched
            ctx.set(self.dut.bypass, 0)
            result = await run_stream(ctx, self.dut, impulse)
            self.assertEqual(result.outputs, self.dut.model(impulse))

        self.simulate(bench)

    def test_bypass_switch(self):
        self.dut = MultichannelFIR()
        samples = random_samples(10, self.dut.channels)
        switch = 3

        def set_bypass(ctx, cycle):
            ctx.set(self.dut.bypass, int(cycle >= switch))

        expected = (self.dut.model(samples[:switch])
                    + samples[switch:])

        async def bench(ctx):
            result = await run_stream(ctx, self.dut, samples,
                                      on_cycle=set_bypass)
            self.assertEqual(result.outputs, expected)
            # bypass waits for the filtered samples to leave the pipeline
            self.assertEqual(result.accepted[switch],
                             result.accepted[switch - 1] + self.dut.delay)

        self.simulate(bench)

    def reset_test(self, reload):
        self.dut = MultichannelFIR(
            channels=2, taps=8, coeffs=[1000, 2000, 3000, 4000],
            reload_coeffs_on_reset=reload)
        samples = random_samples(30, self.dut.channels)
        impulse = [(16384, 1, False)] + [(0, 1, False)] * 9

        model = self.new_model()
        if not reload:
            model.write_coeff(0, 8000)
        model_out = model.run(impulse)

        async def bench(ctx):
            ctx.set(self.dut.coeff_wren, 1)
            ctx.set(self.dut.coeff_waddr, 0)
            ctx.set(self.dut.coeff_wdata, 8000)
            await ctx.tick()
            ctx.set(self.dut.coeff_wren, 0)
            # leave some samples in the pipeline
            await run_stream(ctx, self.dut, samples,
                             num_outputs=len(samples) - 4)
            self.assertTrue(ctx.get(self.dut.sample_count) > 0)
            ctx.set(self.dut.reset, 1)
            ctx.set(self.dut.in_valid, 1)
            self.assertFalse(ctx.get(self.dut.in_ready))
            await ctx.tick()
            ctx.set(self.dut.reset, 0)
            ctx.set(self.dut.in_valid, 0)
            self.assertFalse(ctx.get(self.dut.out_valid))
            self.assertFalse(ctx.get(self.dut.busy))
            self.assertEqual(ctx.get(self.dut.overflow), 0)
            self.assertEqual(ctx.get(self.dut.sample_count), 0)
            result = await run_stream(ctx, self.dut, impulse)
            self.assertEqual(result.outputs, model_out)
            self.assertEqual(result.outputs[0][0],
                             500 if reload else 4000)
            for _ in range(2 * self.dut.delay):
                await ctx.tick()
                self.assertFalse(ctx.get(self.dut.out_valid))

        self.simulate(bench)

    def test_reset_keeps_coefficients(self):
        self.reset_test(reload=False)

    def test_reset_reloads_coefficients(self):
        self.reset_test(reload=True)

    def test_bad_parameters(self):
        with self.assertRaises(ValueError):
            MultichannelFIR(taps=31)
        with self.assertRaises(ValueError):
            MultichannelFIR(taps=16)
        with self.assertRaises(ValueError):
            MultichannelFIR(channels=0)
        with self.assertRaises(ValueError):
            MultichannelFIR(taps=4, coeffs=[2**15, 0])


class TestCoeffMultiply(AmaranthSim):
    def test_power_of_two_shift(self):
        pair_width = 17
        coeff_width = 16
        self.dut = CoeffMultiply(pair_width, coeff_width)
        pairs = np.random.randint(-2**16, 2**16, size=64)
        pairs[:2] = [-2**16, 2**16 - 1]

        async def bench(ctx):
            ctx.set(self.dut.clken, 1)
            for shift in range(coeff_width - 1):
                coeff = 2**shift
                for pair in pairs:
                    ctx.set(self.dut.pair, int(pair))
                    ctx.set(self.dut.coeff, coeff)
                    ctx.set(self.dut.shift, shift)
                    ctx.set(self.dut.pow2, 1)
                    await ctx.tick()
                    shifted = ctx.get(self.dut.product)
                    ctx.set(self.dut.pow2, 0)
                    await ctx.tick()
                    multiplied = ctx.get(self.dut.product)
                    self.assertEqual(shifted, int(pair) * coeff)
                    self.assertEqual(multiplied, int(pair) * coeff)

        self.simulate(bench)

    def test_clock_enable(self):
        self.dut = CoeffMultiply(17, 16)

        async def bench(ctx):
            ctx.set(self.dut.clken, 1)
            ctx.set(self.dut.pair, -3)
            ctx.set(self.dut.coeff, -5)
            await ctx.tick()
            self.assertEqual(ctx.get(self.dut.product), 15)
            ctx.set(self.dut.clken, 0)
            ctx.set(self.dut.pair, 7)
            for _ in range(3):
                await ctx.tick()
                self.assertEqual(ctx.get(self.dut.product), 15)

        self.simulate(bench)


class TestCoefficientStore(AmaranthSim):
    def test_write(self):
        init = [3, 1024, -8, 0]
        self.dut = CoefficientStore(4, 16, init)
        writes = [(0, 1, True, 0), (1, 3, False, 0), (2, 16384, True, 14),
                  (3, -16384, False, 0), (0, 0, False, 0),
                  (1, 2**15 - 1, False, 0), (2, 2, True, 1)]

        async def bench(ctx):
            self.assertEqual([ctx.get(c) for c in self.dut.coeff], init)
            self.assertEqual([ctx.get(p) for p in self.dut.pow2],
                             [0, 1, 0, 0])
            self.assertEqual(ctx.get(self.dut.shift[1]), 10)
            for addr, value, pow2, shift in writes:
                ctx.set(self.dut.wren, 1)
                ctx.set(self.dut.waddr, addr)
                ctx.set(self.dut.wdata, value)
                self.assertNotEqual(ctx.get(self.dut.coeff[addr]), value)
                await ctx.tick()
                ctx.set(self.dut.wren, 0)
                self.assertEqual(ctx.get(self.dut.coeff[addr]), value)
                self.assertEqual(ctx.get(self.dut.pow2[addr]), int(pow2))
                self.assertEqual(ctx.get(self.dut.shift[addr]), shift)
            # reload is ignored unless enabled
            ctx.set(self.dut.reload, 1)
            await ctx.tick()
            self.assertEqual(ctx.get(self.dut.coeff[2]), 2)

        self.simulate(bench)


class TestScaleSaturate(AmaranthSim):
    def test_scale_saturate(self):
        acc_width = 37
        out_width = 16
        shift = 15
        self.dut = ScaleSaturate(acc_width, out_width, shift)
        accs = list(np.random.randint(-2**33, 2**33, size=200))
        accs += [2**36 - 1, -2**36, 0, -1, 2**14, 2**14 - 1, -2**14,
                 -2**14 - 1, (2**15 - 1) << 15, ((2**15 - 1) << 15) + 2**14,
                 -2**30, -2**30 - 2**14 - 1]

        async def bench(ctx):
            ctx.set(self.dut.clken, 1)
            for acc in accs:
                ctx.set(self.dut.acc, int(acc))
                await ctx.tick()
                expected, clamped = saturate(
                    round_shift(int(acc), shift), out_width)
                self.assertEqual(ctx.get(self.dut.out), expected)
                self.assertEqual(ctx.get(self.dut.overflow), int(clamped))

        self.simulate(bench)


if __name__ == '__main__':
    unittest.main()
