#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

import numpy as np
import scipy.signal

# Cold-start coefficients for the 32-tap filter, Q1.15. Only the first half of
# the symmetric impulse response is stored.
DEFAULT_COEFFS = (
    0, 14, 40, 90, 182, 378, 778, 1580,
    3172, 5254, 7688, 10122, 12384, 14148, 15230, 15600,
)


def fold_taps(taps):
    """Fold a symmetric impulse response

    Returns the first half of ``taps``, which is what the coefficient store
    holds. A ``ValueError`` is raised if the number of taps is odd or if the
    taps are not symmetric.
    """
    taps = np.asarray(taps)
    if taps.size % 2 != 0:
        raise ValueError('the number of taps must be even')
    if not np.array_equal(taps, taps[::-1]):
        raise ValueError('taps are not symmetric')
    return taps[:taps.size // 2]


def unfold_taps(half):
    half = np.asarray(half)
    return np.concatenate((half, half[::-1]))


def quantize_taps(taps, coeff_width):
    """Quantize taps to signed fixed point with ``coeff_width - 1``
    fractional bits, clamping to the range of the format."""
    scale = 2**(coeff_width - 1)
    q = np.round(np.asarray(taps, 'float') * scale).astype('int')
    return np.clip(q, -scale, scale - 1)


def design_lowpass(num_taps, cutoff, coeff_width=16, window='hamming'):
    """Windowed-sinc lowpass design

    Parameters
    ----------
    num_taps : int
        Filter length. Must be even.
    cutoff : float
        Cutoff frequency, normalized so that 1.0 is the Nyquist frequency.
    coeff_width : int
        Coefficient width.
    window : str
        Window passed to ``scipy.signal.firwin``.

    Returns
    -------
    The quantized half-length coefficient set, as a tuple of ints.
    """
    if num_taps % 2 != 0:
        raise ValueError('the number of taps must be even')
    h = scipy.signal.firwin(num_taps, cutoff, window=window)
    # the window may be asymmetric by a few ULPs
    h = 0.5 * (h + h[::-1])
    q = quantize_taps(h, coeff_width)
    return tuple(int(c) for c in fold_taps(q))
