#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

from .config import MultichannelFIRConfig
from .taps import design_lowpass


def default():
    """Default configuration: 4 channels, 32 taps"""
    return MultichannelFIRConfig()


def stereo():
    """Configuration for 2 channels"""
    config = MultichannelFIRConfig()
    config.channels = 2
    return config


def reload_on_reset():
    """Configuration that reloads the initial coefficients on soft reset"""
    config = MultichannelFIRConfig()
    config.reload_coeffs_on_reset = True
    return config


def lowpass():
    """Configuration with a windowed-sinc lowpass at a quarter of the
    sampling rate"""
    config = MultichannelFIRConfig()
    config.coeffs = design_lowpass(config.taps, 0.5, config.coeff_width)
    return config
