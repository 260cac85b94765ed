"""
Function call graph construction.

Functions are numbered in creation order (func_1, func_2, ...) and a function
may only call functions created after it, which keeps the generated call graph
acyclic. Bodies are built lazily from a work list: building one body may
append new functions, which are then built later in the same pass (or right
away when a call expression creates them).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from cfuzz.context import ExprCandidate, GenContext, Scope
from cfuzz.environment import Environment, GlobalInfo
from cfuzz.expressions import ExpressionGenerator
from cfuzz.random_source import RandomSource
from cfuzz.statements import StatementGenerator
from cfuzz.type_model import (
    CType,
    CompositeInfo,
    UINT32,
    cast_literal,
    pick_type,
    type_from_universe,
    universe_size,
)
from cfuzz.write_code import WriteCode

log = logging.getLogger(__name__)

ENTRY_FUNCTION_INDEX = 1
ENTRY_VOLATILE_PROB = 50
ENTRY_CONST_PROB = 10


@dataclass(frozen=True)
class ParamInfo:
    name: str
    ctype: CType


@dataclass
class FunctionInfo:
    name: str
    ret: CType
    params: list[ParamInfo] = field(default_factory=list)

    def parameter_list(self) -> str:
        if not self.params:
            return "void"
        return ", ".join("%s %s" % (param.ctype.name, param.name) for param in self.params)

    def prototype(self) -> str:
        return "static %s %s(%s)" % (self.ret.name, self.name, self.parameter_list())


class FunctionFlowState:
    """Mutable state shared by every function body of one generation pass."""

    def __init__(
        self,
        rng: RandomSource,
        config,
        pool: list[CType],
        info: CompositeInfo,
        env: Environment,
    ):
        self.rng = rng
        self.config = config
        self.pool = pool
        self.info = info
        self.env = env
        self.funcs: list[FunctionInfo] = []
        self.built: list[bool] = []
        self.defs: list[str] = []
        self.max_funcs = max(config.max_funcs, 1)
        self.next_idx = 2
        self.next_param_id = 1
        self.next_local_id = 0
        self.dyn_globals = []
        # Global lvalue candidates, env globals first then dyn_globals
        self.global_candidates: list[ExprCandidate] = [
            ExprCandidate(variable.name, variable.ctype, not variable.is_const)
            for variable in env.globals
        ]
        # Declarations of globals created while bodies are generated
        self.late_globals: list[str] = []
        self.next_global_id = env.next_id
        self.stmt_budget = config.stop_by_stmt if config.stop_by_stmt >= 0 else -1

    def add_global(self, variable: GlobalInfo) -> ExprCandidate:
        candidate = ExprCandidate(variable.name, variable.ctype, not variable.is_const)
        self.dyn_globals.append(variable)
        self.global_candidates.append(candidate)
        return candidate

    def alloc_param_name(self) -> str:
        name = "p_%d" % self.next_param_id
        self.next_param_id += 1
        return name

    def alloc_local_name(self) -> str:
        name = "l_%d" % self.next_local_id
        self.next_local_id += 1
        return name

    def alloc_global_name(self) -> str:
        name = "g_%d" % self.next_global_id
        self.next_global_id += 1
        return name

    def random_params(self, max_params: int) -> list[ParamInfo]:
        max_params = max(max_params, 0)
        count = self.rng.upto(max_params + 1) if max_params > 0 else 0
        params = []
        for _ in range(count):
            name = self.alloc_param_name()
            params.append(ParamInfo(name, pick_type(self.rng, self.pool)))
        return params

    def make_func_signature(self, index: int) -> FunctionInfo:
        """
        Draw the signature of func_<index>.

        The entry function returns a type of the whole universe (scalars,
        structs and unions) and takes no parameter; its return variable
        qualifiers are drawn and discarded.
        """
        rng = self.rng
        config = self.config
        name = "func_%d" % index
        if index != ENTRY_FUNCTION_INDEX:
            return FunctionInfo(name, pick_type(rng, self.pool), self.random_params(config.max_params))

        count = universe_size(self.pool, self.info)
        if count > 0:
            ret = type_from_universe(rng.upto(count), self.pool, self.info)
        else:
            ret = UINT32
        rng.flipcoin(ENTRY_VOLATILE_PROB if config.volatiles else 0)
        rng.flipcoin(ENTRY_CONST_PROB if config.consts else 0)
        return FunctionInfo(name, ret, [])

    def append_new_function(self, forced_ret: CType | None = None) -> int | None:
        """Create the next function; return its index, or None at the cap."""
        if len(self.funcs) >= self.max_funcs:
            return None
        if forced_ret is not None:
            function = FunctionInfo(
                "func_%d" % self.next_idx, forced_ret, self.random_params(self.config.max_params)
            )
        else:
            function = self.make_func_signature(self.next_idx)
        self.next_idx += 1
        self.funcs.append(function)
        self.built.append(False)
        self.defs.append("")
        log.debug("Scheduled %s", function.name)
        return len(self.funcs) - 1


class FunctionFlowEngine:
    def __init__(
        self,
        rng: RandomSource,
        config,
        pool: list[CType],
        info: CompositeInfo,
        env: Environment,
    ):
        self.rng = rng
        self.config = config
        self.info = info
        self.state = FunctionFlowState(rng, config, pool, info, env)
        self.expressions = ExpressionGenerator(self)
        self.statements = StatementGenerator(self)

    def run(self) -> FunctionFlowState:
        state = self.state
        state.funcs.append(state.make_func_signature(ENTRY_FUNCTION_INDEX))
        state.built.append(False)
        state.defs.append("")

        index = 0
        while index < len(state.funcs):
            self.ensure_built(index)
            index += 1
        log.debug(
            "Built %d functions, %d on-demand globals",
            len(state.funcs),
            len(state.dyn_globals),
        )
        return state

    def ensure_built(self, index: int) -> None:
        state = self.state
        if state.built[index]:
            return
        state.defs[index] = self.build_function(index)
        state.built[index] = True

    def build_function(self, index: int) -> str:
        """Return the C definition of the function at ``index``."""
        state = self.state
        function = state.funcs[index]
        rng = self.rng
        writer = WriteCode()

        writer.write(0, "%s {" % function.prototype())
        ret_name = state.alloc_local_name()
        writer.write(
            1, "%s %s = %s;" % (function.ret.name, ret_name, cast_literal(function.ret, "0u"))
        )
        variables = state.env.globals
        if len(variables) >= 2:
            writer.write(
                1,
                "uint32_t x = ((uint32_t)%s) + ((uint32_t)%s);"
                % (variables[0].name, variables[1].name),
            )
        else:
            writer.write(1, "uint32_t x = 0u;")

        scope = Scope.for_function(function.params, ret_name)
        ctx = GenContext(state, index, self.info)
        for param in function.params:
            writer.write(1, "x ^= (uint32_t)%s;" % param.name)

        self.statements.emit_block(writer, scope, ctx, depth=0, in_loop=False)

        writable = state.env.writable_globals()
        if writable:
            variable = writable[rng.upto(len(writable))]
            expr = self.expressions.generate(variable.ctype, scope, ctx)
            writer.write(1, "%s ^= %s;" % (variable.name, expr))
        writer.write(1, "%s ^= %s;" % (ret_name, cast_literal(function.ret, "x")))
        writer.write(1, "return %s;" % ret_name)
        writer.write(0, "}")
        writer.emptyLine()
        log.debug("Built %s", function.name)
        return writer.getvalue()

    def write_functions(self, writer: WriteCode) -> None:
        """Write pending globals, forward declarations and definitions."""
        state = self.state
        if state.late_globals:
            for line in state.late_globals:
                writer.write(0, line)
            writer.emptyLine()

        writer.write(0, "/* --- FORWARD DECLARATIONS --- */")
        for function in state.funcs:
            writer.write(0, "%s;" % function.prototype())
        writer.emptyLine()

        writer.write(0, "/* --- FUNCTIONS --- */")
        writer.write(0, "/* ------------------------------------------ */")
        for definition in state.defs:
            writer.writeRaw(definition)
