#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

from .taps import DEFAULT_COEFFS


class MultichannelFIRConfig:
    """Multichannel FIR configuration

    This class defines the elaboration parameters of the ``McFIR``
    top-level.
    """
    def __init__(self):
        # create default configuration

        # datapath
        self.channels = 4
        self.taps = 32
        self.in_width = 16
        self.coeff_width = 16

        # coefficients
        self.coeffs = DEFAULT_COEFFS
        # If False, the coefficients survive a soft reset and are only
        # loaded with their initial values at power-on.
        self.reload_coeffs_on_reset = False

    def validate(self):
        # busy and the overflow flags share the 32-bit status register
        assert self.channels > 0 and self.channels <= 31
        assert self.taps >= 2 and self.taps % 2 == 0
        assert self.taps // 2 <= 256
        assert self.in_width >= 2 and self.in_width <= 32
        assert self.coeff_width >= 2 and self.coeff_width <= 31
        assert len(self.coeffs) == self.taps // 2
        limit = 2**(self.coeff_width - 1)
        assert all(-limit <= c < limit for c in self.coeffs)
