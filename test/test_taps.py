#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

import numpy as np

import unittest

from mcfir_hdl.taps import (
    DEFAULT_COEFFS, design_lowpass, fold_taps, quantize_taps, unfold_taps)


class TestTaps(unittest.TestCase):
    def test_default_coeffs(self):
        self.assertEqual(len(DEFAULT_COEFFS), 16)
        self.assertTrue(all(0 <= c < 2**15 for c in DEFAULT_COEFFS))
        # lowpass with a DC gain of about 5.3
        dc_gain = np.sum(unfold_taps(DEFAULT_COEFFS)) / 2**15
        self.assertAlmostEqual(dc_gain, 5.3, delta=0.1)

    def test_fold(self):
        taps = unfold_taps(DEFAULT_COEFFS)
        self.assertEqual(taps.size, 32)
        np.testing.assert_equal(taps, taps[::-1])
        np.testing.assert_equal(fold_taps(taps), DEFAULT_COEFFS)
        with self.assertRaises(ValueError):
            fold_taps([1, 2, 1])
        with self.assertRaises(ValueError):
            fold_taps([1, 2, 3, 1])

    def test_quantize(self):
        q = quantize_taps([0.5, -0.25, 1.0, -1.0, 1e-6], 16)
        np.testing.assert_equal(q, [16384, -8192, 32767, -32768, 0])

    def test_design_lowpass(self):
        coeffs = design_lowpass(32, 0.5)
        self.assertEqual(len(coeffs), 16)
        self.assertTrue(all(isinstance(c, int) for c in coeffs))
        taps = unfold_taps(coeffs)
        # unity DC gain
        self.assertAlmostEqual(np.sum(taps) / 2**15, 1.0, delta=1e-3)
        # the largest tap is in the centre
        self.assertEqual(np.argmax(coeffs), 15)
        # stopband
        freq_response = np.abs(np.fft.rfft(taps / 2**15, 1024))
        self.assertLess(np.max(freq_response[360:]), 0.01)
        with self.assertRaises(ValueError):
            design_lowpass(31, 0.5)


if __name__ == '__main__':
    unittest.main()
