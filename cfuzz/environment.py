"""
Global variables, arrays, pointers and pointer chains of a generated program.

The initial environment is built once, before any function body exists.
Afterwards only scalar globals are added, on demand, by the expression
generator (see FunctionFlowState.dyn_globals).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from cfuzz.random_source import RandomSource
from cfuzz.type_model import CType, CompositeInfo, cast_literal, pick_type
from cfuzz.write_code import WriteCode

log = logging.getLogger(__name__)

BASE_SCALAR_GLOBALS = 26
EXTRA_SCALAR_GLOBALS = 18


@dataclass(frozen=True)
class GlobalInfo:
    name: str
    ctype: CType
    is_const: bool = False
    is_volatile: bool = False


@dataclass(frozen=True)
class ArrayInfo:
    name: str
    ctype: CType
    length: int


@dataclass(frozen=True)
class PointerInfo:
    name: str
    target: str
    target_type: CType
    volatile_pointer: bool = False
    volatile_target: bool = False
    const_target: bool = False

    @property
    def qualified(self) -> bool:
        return self.volatile_pointer or self.volatile_target or self.const_target


@dataclass
class Environment:
    globals: list[GlobalInfo] = field(default_factory=list)
    arrays: list[ArrayInfo] = field(default_factory=list)
    pointers: list[PointerInfo] = field(default_factory=list)
    chains: list[str] = field(default_factory=list)
    next_id: int = 0

    def writable_globals(self) -> list[GlobalInfo]:
        return [variable for variable in self.globals if not variable.is_const]


def qualifier_prefix(is_const: bool, is_volatile: bool) -> str:
    prefix = ""
    if is_const:
        prefix += "const "
    if is_volatile:
        prefix += "volatile "
    return prefix


class EnvironmentBuilder:
    """Writes the /* --- GLOBAL VARIABLES --- */ section."""

    def __init__(
        self,
        writer: WriteCode,
        rng: RandomSource,
        config,
        info: CompositeInfo,
        pool: list[CType],
    ):
        self.writer = writer
        self.rng = rng
        self.config = config
        self.info = info
        self.pool = pool
        self.env = Environment()

    def new_global_name(self) -> str:
        name = "g_%d" % self.env.next_id
        self.env.next_id += 1
        return name

    def build(self) -> Environment:
        self.writer.write(0, "/* --- GLOBAL VARIABLES --- */")
        if self.config.global_variables:
            self.build_scalars()
            if self.config.arrays:
                self.build_arrays()
            if self.config.pointers:
                self.build_pointers()
                self.build_chains()

        for index in range(len(self.info.structs)):
            self.writer.write(0, "static struct S%d gs_%d;" % (index, index))
        for index in range(len(self.info.unions)):
            self.writer.write(0, "static union U%d gu_%d;" % (index, index))
        self.writer.emptyLine()
        log.debug(
            "Environment: %d globals, %d arrays, %d pointers, %d chain links",
            len(self.env.globals),
            len(self.env.arrays),
            len(self.env.pointers),
            len(self.env.chains),
        )
        return self.env

    def build_scalars(self) -> None:
        config = self.config
        rng = self.rng
        capacity = max(config.max_globals, 2)
        count = min(capacity, BASE_SCALAR_GLOBALS + rng.upto(EXTRA_SCALAR_GLOBALS))
        for _ in range(count):
            is_const = config.consts and rng.upto(100) < 10
            is_volatile = config.volatiles and rng.upto(100) < 50
            if is_const and is_volatile and rng.upto(2) == 0:
                is_const = False
            variable = GlobalInfo(
                self.new_global_name(), pick_type(rng, self.pool), is_const, is_volatile
            )
            literal = cast_literal(variable.ctype, "0x%08Xu" % rng.next())
            self.writer.write(
                0,
                "static %s%s %s = %s;"
                % (qualifier_prefix(is_const, is_volatile), variable.ctype.name, variable.name, literal),
            )
            self.env.globals.append(variable)

    def build_arrays(self) -> None:
        config = self.config
        count = min(max(12, len(self.env.globals)), 40)
        for _ in range(count):
            length = 2 + self.rng.upto(max(2, min(config.max_array_len_per_dim, 10)))
            array = ArrayInfo(self.new_global_name(), pick_type(self.rng, self.pool), length)
            self.writer.write(
                0, "static %s %s[%d] = {0};" % (array.ctype.name, array.name, length)
            )
            self.env.arrays.append(array)

    def build_pointers(self) -> None:
        config = self.config
        rng = self.rng
        variables = self.env.globals
        start = 1 if config.consts and len(variables) > 1 else 0
        count = min(max(4, len(variables) // 4), 12)
        for _ in range(count):
            target = variables[start + rng.upto(max(1, len(variables) - start))]
            pointer = PointerInfo(
                name=self.new_global_name(),
                target=target.name,
                target_type=target.ctype,
                volatile_pointer=config.volatile_pointers and rng.upto(3) == 0,
                volatile_target=config.volatile_pointers and rng.upto(4) == 0,
                const_target=config.const_pointers and rng.upto(3) == 0,
            )
            target_qualifiers = qualifier_prefix(pointer.const_target, pointer.volatile_target)
            pointer_qualifiers = "volatile " if pointer.volatile_pointer else ""
            self.writer.write(
                0,
                "static %s%s *%s%s = &%s;"
                % (target_qualifiers, target.ctype.name, pointer_qualifiers, pointer.name, target.name),
            )
            self.env.pointers.append(pointer)

    def build_chains(self) -> None:
        """Pointer-to-pointer ladders rooted at unqualified pointers."""
        config = self.config
        count = min(max(len(self.env.pointers) // 2, 1), 4)
        for _ in range(count):
            bases = [pointer for pointer in self.env.pointers if not pointer.qualified]
            if not bases:
                break
            base = bases[self.rng.upto(len(bases))]
            depth = 2 + self.rng.upto(max(1, min(config.max_pointer_depth, 4) - 1))
            previous = base.name
            for level in range(2, depth + 1):
                name = self.new_global_name()
                self.writer.write(
                    0,
                    "static %s %s%s = &%s;" % (base.target_type.name, "*" * level, name, previous),
                )
                previous = name
                self.env.chains.append(name)
