#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

import argparse

from amaranth import *
import amaranth.back.verilog

from .config import MultichannelFIRConfig
from . import configs
from .fir import MultichannelFIR
from .register import Access, Field, Registers, Register

# IP core version
_version = '0.2.0'


class McFIR(Elaboratable):
    """Multichannel FIR top level

    This elaboratable is the top-level multichannel FIR IP core. It contains
    the ``MultichannelFIR`` and a register bank that gives access to its
    control and status signals. The AXI-Stream interfaces of the FIR are
    accessed through the ``fir`` attribute.

    Parameters
    ----------
    config : MultichannelFIRConfig
        Core configuration.

    Attributes
    ----------
    fir : MultichannelFIR
        Multichannel FIR.
    registers : Registers
        Register bank. See ``Registers`` for the description of the bus.
    """
    def __init__(self, config=MultichannelFIRConfig()):
        config.validate()
        self.config = config
        self.fir = MultichannelFIR(
            channels=config.channels,
            taps=config.taps,
            in_width=config.in_width,
            coeff_width=config.coeff_width,
            coeffs=config.coeffs,
            reload_coeffs_on_reset=config.reload_coeffs_on_reset)
        self.registers = Registers(
            'mcfir',
            {
                0b000: Register(
                    'product_id', [
                        Field('product_id', Access.R, 32, 0x6d636669)
                    ]),
                0b001: Register('version', [
                    Field('bugfix', Access.R, 8,
                          int(_version.split('.')[2])),
                    Field('minor', Access.R, 8,
                          int(_version.split('.')[1])),
                    Field('major', Access.R, 8,
                          int(_version.split('.')[0])),
                ]),
                0b010: Register('geometry', [
                    Field('channels', Access.R, 8, config.channels),
                    Field('num_coeffs', Access.R, 8, config.taps // 2),
                    Field('in_width', Access.R, 8, config.in_width),
                    Field('coeff_width', Access.R, 8, config.coeff_width),
                ]),
                0b011: Register('control', [
                    Field('bypass', Access.RW, 1, 0),
                    Field('reset', Access.Wpulse, 1, 0),
                ]),
                0b100: Register('coeff_addr', [
                    Field('coeff_waddr', Access.RW, 8, 0),
                ]),
                0b101: Register('coeff', [
                    Field('coeff_wren', Access.Wpulse, 1, 0),
                    Field('coeff_wdata', Access.RW, config.coeff_width, 0),
                ]),
                0b110: Register('status', [
                    Field('busy', Access.R, 1, 0),
                    Field('overflow', Access.R, config.channels, 0),
                ]),
                0b111: Register('sample_count', [
                    Field('sample_count', Access.R, 32, 0),
                ]),
            },
            3)

        self.ren = self.registers.ren
        self.rdone = self.registers.rdone
        self.wstrobe = self.registers.wstrobe
        self.wdone = self.registers.wdone
        self.address = self.registers.address
        self.rdata = self.registers.rdata
        self.wdata = self.registers.wdata

    def ports(self):
        return [
            self.ren, self.rdone, self.wstrobe, self.wdone,
            self.address, self.rdata, self.wdata,
            self.fir.data_in, self.fir.channel_in, self.fir.last_in,
            self.fir.in_valid, self.fir.in_ready,
            self.fir.data_out, self.fir.channel_out, self.fir.last_out,
            self.fir.out_valid, self.fir.out_ready,
        ]

    def elaborate(self, platform):
        m = Module()
        m.submodules.registers = self.registers
        m.submodules.fir = self.fir

        control = self.registers['control']
        coeff_addr = self.registers['coeff_addr']
        coeff = self.registers['coeff']
        status = self.registers['status']
        m.d.comb += [
            self.fir.bypass.eq(control['bypass']),
            self.fir.reset.eq(control['reset']),
            self.fir.coeff_waddr.eq(coeff_addr['coeff_waddr']),
            self.fir.coeff_wren.eq(coeff['coeff_wren']),
            self.fir.coeff_wdata.eq(coeff['coeff_wdata']),
            status['busy'].eq(self.fir.busy),
            status['overflow'].eq(self.fir.overflow),
            self.registers['sample_count']['sample_count'].eq(
                self.fir.sample_count),
        ]

        return m


def parse_args():
    parser = argparse.ArgumentParser(
        description='Generate Verilog for the multichannel FIR')
    parser.add_argument(
        '--config', default='default',
        help='configuration name [default=%(default)r]')
    parser.add_argument(
        'output_file', help='Output verilog file')
    return parser.parse_args()


def main():
    args = parse_args()
    config = getattr(configs, args.config)()
    top = McFIR(config)
    with open(args.output_file, 'w') as f:
        f.write(amaranth.back.verilog.convert(
            top, name='mcfir', ports=top.ports()))
    print('wrote verilog to', args.output_file)


if __name__ == '__main__':
    main()
