#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

import numpy as np

from .util import is_power_of_two, round_shift, saturate, tree_sum


class MultichannelFIRModel:
    """Reference model of the multichannel FIR

    This model gives the same outputs as ``MultichannelFIR``, sample by
    sample, but without any notion of clock cycles or handshaking. It follows
    the same arithmetic as the hardware: symmetric pre-addition, a shift
    instead of a multiply for power-of-two coefficients, pairwise reduction,
    round half up and saturation.

    Parameters
    ----------
    channels : int
        Number of channels.
    taps : int
        Filter length (must be even).
    coeffs : Sequence[int]
        Half-length coefficient set (``taps // 2`` values).
    in_width : int
        Sample width.
    coeff_width : int
        Coefficient width.

    Attributes
    ----------
    history : numpy.ndarray
        Array of shape ``(channels, taps)`` with the sample history of each
        channel, newest sample first.
    overflow : numpy.ndarray
        Overflow flag of each channel.
    sample_count : int
        Number of processed samples, modulo ``2**32``.
    """
    counter_width = 32

    def __init__(self, channels, taps, coeffs, *, in_width=16,
                 coeff_width=16):
        if len(coeffs) != taps // 2:
            raise ValueError('wrong number of coefficients')
        self.channels = channels
        self.taps = taps
        self.iw = in_width
        self.cw = coeff_width
        self.scale_shift = coeff_width - 1
        self.default_coeffs = [int(c) for c in coeffs]
        self.coeffs = list(self.default_coeffs)
        self.reset()

    def reset(self, reload_coeffs=False):
        self.history = np.zeros((self.channels, self.taps), 'int64')
        self.overflow = np.zeros(self.channels, 'bool')
        self.sample_count = 0
        if reload_coeffs:
            self.coeffs = list(self.default_coeffs)

    def write_coeff(self, address, value):
        if address < 0 or address >= len(self.coeffs):
            raise ValueError(f'coefficient address {address} out of range')
        # the hardware register keeps only coeff_width bits
        offset = 2**(self.cw - 1)
        self.coeffs[address] = (int(value) + offset) % 2**self.cw - offset

    def pairs(self, channel):
        h = self.history[channel]
        return h[:self.taps // 2] + h[::-1][:self.taps // 2]

    def products(self, pairs):
        products = []
        for pair, coeff in zip(pairs, self.coeffs):
            pair = int(pair)
            if is_power_of_two(coeff):
                products.append(pair << (coeff.bit_length() - 1))
            else:
                products.append(pair * coeff)
        return products

    def _count(self):
        self.sample_count = (self.sample_count + 1) % 2**self.counter_width

    def _check_channel(self, channel):
        if channel < 0 or channel >= self.channels:
            raise ValueError(f'channel {channel} out of range')

    def process(self, data, channel, last=False, bypass=False):
        """Process one input sample

        Returns the output record ``(data, channel, last)``.
        """
        self._check_channel(channel)
        self._count()
        if bypass:
            return int(data), channel, bool(last)
        h = self.history[channel]
        h[1:] = h[:-1].copy()
        h[0] = data
        acc = tree_sum(self.products(self.pairs(channel)))
        value, clamped = saturate(round_shift(acc, self.scale_shift), self.iw)
        self.overflow[channel] = clamped
        return value, channel, bool(last)

    def run(self, samples, bypass=False):
        """Process a sequence of ``(data, channel, last)`` samples"""
        return [self.process(*s, bypass=bypass) for s in samples]
