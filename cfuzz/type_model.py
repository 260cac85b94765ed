"""
Scalar type pool, literals and struct/union generation.

The scalar pool is indexed by random draws, so its order and length are part
of the output format: reordering it changes every program generated from a
given seed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple

from cfuzz.random_source import RandomSource
from cfuzz.write_code import WriteCode

log = logging.getLogger(__name__)

# Type::GenerateSimpleTypes creates this many simple types before any aggregate.
SIMPLE_TYPE_COUNT = 13
UNCONDITIONAL_TYPE_COUNT = 10
MAX_AGGREGATES = 32

MORE_STRUCT_UNION_TYPE_PROB = 50
BITFIELDS_CREATION_PROB = 50
BITFIELD_IN_NORMAL_STRUCT_PROB = 10
SCALAR_FIELD_IN_FULL_BITFIELD_PROB = 10
BITFIELDS_SIGNED_PROB = 50
FIELD_VOLATILE_PROB = 30
FIELD_CONST_PROB = 20
PACKED_STRUCT_PROB = 50


class CType(NamedTuple):
    name: str
    signed: bool
    bits: int


INT8 = CType("int8_t", True, 8)
UINT8 = CType("uint8_t", False, 8)
INT16 = CType("int16_t", True, 16)
UINT16 = CType("uint16_t", False, 16)
INT32 = CType("int32_t", True, 32)
UINT32 = CType("uint32_t", False, 32)
INT64 = CType("int64_t", True, 64)
UINT64 = CType("uint64_t", False, 64)
INT128 = CType("__int128", True, 128)
UINT128 = CType("unsigned __int128", False, 128)


def host_int_type(int_size: int) -> CType:
    return {1: INT8, 2: INT16, 8: INT64}.get(int_size, INT32)


def unsigned_of(bits: int) -> CType:
    return {8: UINT8, 16: UINT16, 64: UINT64}.get(bits, UINT32)


def type_pool(config) -> list[CType]:
    """
    Scalar types in the order of char, signed char, unsigned char, short,
    unsigned short, int, unsigned int, long, unsigned long, [long long,
    unsigned long long], __int128 and unsigned __int128.

    Aliases that collapse to the same C type are kept so that the number
    of entries, and therefore every draw over the pool, stays the same.
    """
    host = host_int_type(config.int_size)
    pool = [INT8, INT8, UINT8, INT16, UINT16, host, unsigned_of(host.bits), INT64, UINT64]
    if config.long_long:
        pool += [INT64, UINT64]
    pool += [INT128, UINT128]
    return pool


def pick_type(rng: RandomSource, pool: list[CType]) -> CType:
    return pool[rng.upto(len(pool))]


def cast_literal(ctype: CType, expr: str) -> str:
    return "((%s)(%s))" % (ctype.name, expr)


def same_base_type(a: CType, b: CType) -> bool:
    return a.bits == b.bits and a.signed == b.signed


def random_constant_expr(ctype: CType, rng: RandomSource, long_long: bool) -> str:
    """Hex literal sized to the type, cast to it."""
    if ctype.bits <= 8:
        return cast_literal(ctype, "0x%02X" % (rng.next() & 0xFF))
    if ctype.bits <= 16:
        return cast_literal(ctype, "0x%04X" % (rng.next() & 0xFFFF))
    if ctype.bits <= 32:
        suffix = "L" if ctype.signed else "U"
        return cast_literal(ctype, "0x%08X%s" % (rng.next(), suffix))
    high = rng.next()
    low = rng.next()
    if long_long:
        suffix = "LL" if ctype.signed else "ULL"
        return cast_literal(ctype, "0x%08X%08X%s" % (high, low, suffix))
    return cast_literal(ctype, "0x%08X%08X" % (high, low))


@dataclass(frozen=True)
class FieldInfo:
    name: str
    ctype: CType
    bitfield: bool = False
    bit_width: int = 0


@dataclass
class CompositeInfo:
    """Struct and union layouts, in declaration order (S0, S1, ... / U0, U1, ...)."""

    structs: list[list[FieldInfo]] = field(default_factory=list)
    unions: list[list[FieldInfo]] = field(default_factory=list)


def universe_size(pool: list[CType], info: CompositeInfo) -> int:
    return len(pool) + len(info.structs) + len(info.unions)


def type_from_universe(index: int, pool: list[CType], info: CompositeInfo) -> CType:
    """Map an index over scalars, then structs, then unions, to a type."""
    if index < len(pool):
        return pool[index]
    index -= len(pool)
    if index < len(info.structs):
        return CType("struct S%d" % index, False, 32)
    return CType("union U%d" % (index - len(info.structs)), False, 32)


class CompositeTypeGenerator:
    """Writes the struct/union declarations and records their layouts."""

    def __init__(self, writer: WriteCode, rng: RandomSource, config, pool: list[CType]):
        self.writer = writer
        self.rng = rng
        self.config = config
        self.pool = pool
        self.type_count = SIMPLE_TYPE_COUNT

    def more_types(self) -> bool:
        if self.type_count < UNCONDITIONAL_TYPE_COUNT:
            return True
        return self.rng.flipcoin(MORE_STRUCT_UNION_TYPE_PROB)

    def field_qualifiers(self) -> str:
        # volatile is drawn before const
        config = self.config
        is_volatile = config.vol_struct_union_fields and self.rng.flipcoin(FIELD_VOLATILE_PROB)
        is_const = config.const_struct_union_fields and self.rng.flipcoin(FIELD_CONST_PROB)
        if is_const and is_volatile and not config.allow_const_volatile:
            is_const = False
        qualifiers = ""
        if is_const:
            qualifiers += "const "
        if is_volatile:
            qualifiers += "volatile "
        return qualifiers

    def bitfield_length(self, max_length: int, prior: list[FieldInfo]) -> int:
        """Width in [0, max_length); never zero first or right after a zero-width field."""
        max_length = max(max_length, 1)
        length = self.rng.upto(max_length)
        no_zero = not prior or (prior[-1].bitfield and prior[-1].bit_width == 0)
        if length == 0 and no_zero:
            if max_length <= 2:
                length = 1
            else:
                length = self.rng.upto(max_length - 1) + 1
        return length

    def scalar_field(self, name: str, fields: list[FieldInfo]) -> None:
        ctype = pick_type(self.rng, self.pool)
        self.writer.write(0, "%s%s %s;" % (self.field_qualifiers(), ctype.name, name))
        fields.append(FieldInfo(name, ctype))

    def bitfield(self, name: str, fields: list[FieldInfo]) -> None:
        base = "signed" if self.rng.flipcoin(BITFIELDS_SIGNED_PROB) else "unsigned"
        qualifiers = self.field_qualifiers()
        width = self.bitfield_length(self.config.int_size * 8, fields)
        self.writer.write(0, "%s%s %s : %d;" % (qualifiers, base, name, width))
        fields.append(FieldInfo(name, UINT32, bitfield=True, bit_width=width))

    def struct_type(self, index: int) -> list[FieldInfo]:
        config = self.config
        rng = self.rng
        field_count = 1 + rng.upto(max(1, config.max_struct_fields))
        fields: list[FieldInfo] = []
        self.writer.write(0, "struct S%d {" % index)
        level = self.writer.addLevel(1)
        full_bitfields = config.bitfields and rng.flipcoin(BITFIELDS_CREATION_PROB)
        for number in range(field_count):
            name = "f%d" % number
            if full_bitfields:
                if rng.flipcoin(SCALAR_FIELD_IN_FULL_BITFIELD_PROB):
                    self.scalar_field(name, fields)
                else:
                    self.bitfield(name, fields)
            elif config.bitfields and rng.flipcoin(BITFIELD_IN_NORMAL_STRUCT_PROB):
                self.bitfield(name, fields)
            else:
                self.scalar_field(name, fields)
        self.writer.restoreLevel(level)
        if config.packed_struct:
            rng.flipcoin(PACKED_STRUCT_PROB)
        self.writer.write(0, "};")
        self.writer.emptyLine()
        return fields

    def union_type(self, index: int) -> list[FieldInfo]:
        config = self.config
        field_count = 1 + self.rng.upto(max(1, config.max_union_fields))
        fields: list[FieldInfo] = []
        self.writer.write(0, "union U%d {" % index)
        level = self.writer.addLevel(1)
        for number in range(field_count):
            name = "f%d" % number
            if config.bitfields and self.rng.flipcoin(BITFIELD_IN_NORMAL_STRUCT_PROB):
                self.bitfield(name, fields)
            else:
                self.scalar_field(name, fields)
        self.writer.restoreLevel(level)
        self.writer.write(0, "};")
        self.writer.emptyLine()
        return fields

    def generate(self) -> CompositeInfo:
        config = self.config
        info = CompositeInfo()
        self.writer.write(0, "/* --- Struct/Union Declarations --- */")

        if config.structs:
            max_structs = min(max(config.max_struct_fields, 1), MAX_AGGREGATES)
            while len(info.structs) < max_structs and self.more_types():
                info.structs.append(self.struct_type(len(info.structs)))
                self.type_count += 1

        if config.unions:
            max_unions = min(max(config.max_union_fields, 1), MAX_AGGREGATES)
            while len(info.unions) < max_unions and self.more_types():
                info.unions.append(self.union_type(len(info.unions)))
                self.type_count += 1

        self.writer.emptyLine()
        log.debug("Created %d struct and %d union types", len(info.structs), len(info.unions))
        return info
