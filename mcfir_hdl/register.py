#
# Copyright (C) 2025 mcfir-hdl contributors
#
# This file is part of mcfir-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *

import collections
import enum
from typing import Dict, List


Field = collections.namedtuple('RegisterField',
                               ['name', 'access', 'width', 'reset'])


class Access(enum.Enum):
    R = enum.auto()
    RW = enum.auto()
    Wpulse = enum.auto()


class Register(Elaboratable):
    """Register

    A 32-bit (by default) register formed by a list of fields, packed from
    the LSB. It is accessed through a simple bus:

    - While ``ren`` is asserted, ``rdata`` contains the value of the
      readable fields. Otherwise ``rdata`` is zero, so that the ``rdata`` of
      several registers can be ORed together.
    - At each rising edge of the clock, the bytes of ``wdata`` for which the
      corresponding bit of ``wstrobe`` is asserted are written to the
      writable fields that they overlap.

    Each field is a Signal() that can be accessed with ``__getitem__`` using
    the field name as key. ``R`` fields are inputs to the register. ``RW``
    fields are outputs that keep their value until written. ``Wpulse`` fields
    are outputs that are asserted only during the clock cycle that follows
    a write, and read as zero.

    Parameters
    ----------
    name : str
        Register name.
    fields : List[Field]
        Fields of the register.
    width : int
        Data width of the register.

    Attributes
    ----------
    ren : Signal(), in
        Read enable.
    wstrobe : Signal(width // 8), in
        Write strobe.
    rdata : Signal(width), out
        Read data.
    wdata : Signal(width), in
        Write data.
    """
    def __init__(self, name: str, fields: List[Field], width: int = 32):
        self.name = name
        self.w = width
        self.fields = fields
        self.nstrobes = width // 8
        if sum(field.width for field in fields) > width:
            raise ValueError(f'fields are too wide for register {name}')

        self.ren = Signal()
        self.wstrobe = Signal(self.nstrobes)
        self.rdata = Signal(width)
        self.wdata = Signal(width)
        for field in fields:
            setattr(self, self._sig_name(field.name),
                    Signal(field.width, name=self._sig_name(field.name),
                           init=field.reset))

    def __getitem__(self, name: str) -> Signal:
        return getattr(self, self._sig_name(name))

    def _sig_name(self, name: str) -> str:
        return f'field_{name}'

    def offset(self, name: str) -> int:
        """Bit offset of a field

        This is part of the bus map of the register. Drivers and
        testbenches use it to pack and unpack field values.
        """
        offset = 0
        for field in self.fields:
            if field.name == name:
                return offset
            offset += field.width
        raise KeyError(name)

    def elaborate(self, platform):
        m = Module()
        readable = []
        offset = 0
        for field in self.fields:
            sig = self[field.name]
            if field.access in [Access.R, Access.RW]:
                readable.append((offset, sig))
            if field.access == Access.Wpulse:
                m.d.sync += sig.eq(0)
            if field.access in [Access.RW, Access.Wpulse]:
                for j in range(field.width):
                    k = offset + j
                    with m.If(self.wstrobe[k // 8]):
                        m.d.sync += sig[j].eq(self.wdata[k])
            offset += field.width

        with m.If(self.ren):
            # Assign the whole of rdata first, so that the bits not covered
            # by any field are driven.
            # See https://github.com/amaranth-lang/amaranth/issues/717
            m.d.comb += self.rdata.eq(0)
            for offset, sig in readable:
                m.d.comb += self.rdata[offset:][:len(sig)].eq(sig)
        return m


class Registers(Elaboratable):
    """Register bank

    A register bank gives access to several ``Register``'s by address. Its
    bus adds addressing and completion signals to the bus of ``Register``.
    When ``ren`` is pulsed, the register at ``address`` is read, and in the
    next cycle ``rdone`` is pulsed and the read data is presented in
    ``rdata``. When some bits of ``wstrobe`` are pulsed, the register at
    ``address`` is written, and ``wdone`` is pulsed in the next cycle.
    Reading an address with no register gives zero, and writes to it are
    ignored.

    Registers are looked up by name with ``__getitem__``. Together with
    ``address_of`` and ``Register.offset``, this gives the bus map of the
    bank to drivers and testbenches, so that addresses and field offsets
    are only defined in one place.

    Parameters
    ----------
    name : str
        Bank name.
    registers : Dict[int, Register]
        Registers of the bank, indexed by address.
    address_width : int
        Address width.
    width : int
        Data width.

    Attributes
    ----------
    ren : Signal(), in
        Read enable.
    rdone : Signal(), out
        Read done.
    wstrobe : Signal(width // 8), in
        Write strobe.
    wdone : Signal(), out
        Write done.
    address : Signal(address_width), in
        Read and write address.
    rdata : Signal(width), out
        Read data.
    wdata : Signal(width), in
        Write data.
    """
    def __init__(self, name: str, registers: Dict[int, Register],
                 address_width: int, width: int = 32):
        self.name = name
        self.w = width
        self.aw = address_width
        self.registers = registers
        self.nstrobes = width // 8
        for address in registers:
            if address >= 2**address_width:
                raise ValueError(
                    f'register address {address} does not fit in '
                    f'{address_width} bits')

        self.ren = Signal()
        self.rdone = Signal()
        self.wstrobe = Signal(self.nstrobes)
        self.wdone = Signal()
        self.address = Signal(self.aw)
        self.rdata = Signal(self.w, reset_less=True)
        self.wdata = Signal(self.w)

    def __getitem__(self, name: str) -> Register:
        for register in self.registers.values():
            if register.name == name:
                return register
        raise KeyError(name)

    def address_of(self, name: str) -> int:
        """Bus address of the register called ``name``"""
        for address, register in self.registers.items():
            if register.name == name:
                return address
        raise KeyError(name)

    def elaborate(self, platform):
        m = Module()
        rdata = 0
        for address, reg in self.registers.items():
            m.submodules[reg.name] = reg
            selected = self.address == address
            m.d.comb += [
                reg.ren.eq(self.ren & selected),
                reg.wstrobe.eq(Mux(selected, self.wstrobe, 0)),
                reg.wdata.eq(self.wdata),
            ]
            rdata |= reg.rdata
        m.d.sync += [
            self.rdata.eq(rdata),
            self.rdone.eq(self.ren),
            self.wdone.eq(self.wstrobe != 0),
        ]
        return m
