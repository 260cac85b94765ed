"""
Statement generation.

Every statement is written at indentation level 1, whatever its nesting depth:
the accumulator ``x`` carries data between statements so that nothing the
program computes is dead.
"""

from __future__ import annotations

import logging

from cfuzz.context import ACCUMULATOR, ExprCandidate, GenContext, Scope
from cfuzz.type_model import CType, UINT32, cast_literal
from cfuzz.write_code import WriteCode

log = logging.getLogger(__name__)

STMT_ASSIGN = "assign"
STMT_IFELSE = "ifelse"
STMT_FOR = "for"
STMT_RETURN = "return"
STMT_CONTINUE = "continue"
STMT_BREAK = "break"
STMT_GOTO = "goto"
STMT_ARRAYOP = "arrayop"

MAX_STATEMENT_ATTEMPTS = 8
MAX_LOOP_BOUND = 5
MAX_CONDITION_MASK = 7


def kind_for_draw(value: int, jumps: bool, arrays: bool) -> str:
    """Map a draw in [0, 100) to a statement kind."""
    if value < 15:
        return STMT_IFELSE
    if value < 30:
        return STMT_FOR
    if value < 35:
        return STMT_RETURN
    if value < 40:
        return STMT_CONTINUE
    if value < 45:
        return STMT_BREAK
    if jumps and arrays:
        if value < 50:
            return STMT_GOTO
        if value < 60:
            return STMT_ARRAYOP
    elif jumps:
        if value < 50:
            return STMT_GOTO
    elif arrays:
        if value < 55:
            return STMT_ARRAYOP
    return STMT_ASSIGN


def safe_add_expr(ctype: CType, lhs: str, rhs: str, safe_math: bool) -> str:
    if not safe_math:
        return "((%s) + (%s))" % (lhs, rhs)
    bits = ctype.bits if ctype.bits in (8, 16, 32, 64) else 32
    if ctype.signed:
        return "safe_add_func_int%d_t_s_s(%s, %s)" % (bits, lhs, rhs)
    return "safe_add_func_uint%d_t_u_u(%s, %s)" % (bits, lhs, rhs)


def array_index_mask(max_len_per_dim: int, length: int) -> int:
    """Mask applied to ``x`` to index an array; never exceeds length - 1."""
    mask = max(1, min(max_len_per_dim, 8) - 1)
    return min(mask, length - 1)


class StatementGenerator:
    def __init__(self, engine):
        self.rng = engine.rng
        self.config = engine.config
        self.state = engine.state
        self.expressions = engine.expressions
        self.emitters = {
            STMT_ASSIGN: self.emit_assignment,
            STMT_IFELSE: self.emit_ifelse,
            STMT_FOR: self.emit_for,
            STMT_RETURN: self.emit_return,
            STMT_CONTINUE: self.emit_continue,
            STMT_BREAK: self.emit_break,
            STMT_GOTO: self.emit_goto,
            STMT_ARRAYOP: self.emit_array_op,
        }

    def rejects(self, kind: str, depth: int, in_loop: bool) -> bool:
        if kind in (STMT_BREAK, STMT_CONTINUE) and not in_loop:
            return True
        if kind in (STMT_IFELSE, STMT_FOR) and depth >= max(1, self.config.max_block_depth):
            return True
        return False

    def choose_kind(self, depth: int, in_loop: bool) -> str:
        config = self.config
        value = self.rng.upto_with_filter(
            100,
            lambda value: self.rejects(
                kind_for_draw(value, config.jumps, config.arrays), depth, in_loop
            ),
        )
        return kind_for_draw(value, config.jumps, config.arrays)

    def emit_block(
        self, writer: WriteCode, scope: Scope, ctx: GenContext, depth: int, in_loop: bool
    ) -> None:
        state = self.state
        if state.stmt_budget == 0:
            return
        base = 2 if depth == 0 else 1
        count = base + self.rng.upto(max(1, self.config.max_block_size))
        for _ in range(count):
            if state.stmt_budget == 0:
                log.debug("Statement budget exhausted")
                break
            for _attempt in range(MAX_STATEMENT_ATTEMPTS):
                snapshot = ctx.snapshot()
                attempt = WriteCode()
                if self.emit_statement(attempt, scope, ctx, depth, in_loop):
                    writer.writeRaw(attempt.getvalue())
                    break
                ctx.restore(snapshot)
            else:
                writer.write(1, "%s ^= 0u;" % ACCUMULATOR)

    def emit_statement(
        self, writer: WriteCode, scope: Scope, ctx: GenContext, depth: int, in_loop: bool
    ) -> bool:
        """Emit one statement; False when the drawn kind cannot be formed."""
        state = self.state
        if state.stmt_budget == 0:
            return True
        if state.stmt_budget > 0:
            state.stmt_budget -= 1
        kind = self.choose_kind(depth, in_loop)
        return self.emitters[kind](writer, scope, ctx, depth)

    def emit_assignment(self, writer, scope, ctx, depth) -> bool:
        target = UINT32
        for local in scope.locals:
            if local.name == ACCUMULATOR:
                target = local.ctype
                break
        lvalue = ExprCandidate(ACCUMULATOR, target)
        if not scope.locals:
            lvalue = self.expressions.choose_lvalue(target, scope, ctx)
            if lvalue is None:
                name = "lv_%d" % (self.rng.next() & 0xFFFF)
                writer.write(
                    1, "%s %s = %s;" % (target.name, name, self.expressions.constant(target))
                )
                lvalue = ExprCandidate(name, target)

        rhs = self.expressions.generate(lvalue.ctype, scope, ctx)
        if self.config.compound_assignment and self.rng.upto(2) == 0:
            writer.write(1, "%s += %s;" % (lvalue.expr, rhs))
        else:
            writer.write(1, "%s = %s;" % (lvalue.expr, rhs))
        writer.write(1, "x ^= (uint32_t)%s;" % lvalue.expr)
        ctx.must_use = ExprCandidate(lvalue.expr, lvalue.ctype, True)
        return True

    def condition(self, scope, ctx) -> str:
        config = self.config
        cond = "((x & %du) != 0u)" % (1 + self.rng.upto(MAX_CONDITION_MASK))
        if config.const_as_condition and self.rng.upto(5) == 0:
            cond = "(%s != 0u)" % self.expressions.constant(UINT32)
        elif self.rng.upto(3) == 0:
            expr = self.expressions.generate(
                UINT32, scope, ctx, no_const=not config.const_as_condition
            )
            cond = "((uint32_t)%s != 0u)" % expr
        return cond

    def emit_ifelse(self, writer, scope, ctx, depth) -> bool:
        writer.write(1, "if %s {" % self.condition(scope, ctx))
        self.emit_block(writer, scope, ctx, depth + 1, False)
        writer.write(1, "} else {")
        self.emit_block(writer, scope, ctx, depth + 1, False)
        writer.write(1, "}")
        return True

    def emit_for(self, writer, scope, ctx, depth) -> bool:
        bound = 1 + self.rng.upto(MAX_LOOP_BOUND)
        writer.write(1, "for (uint32_t i = 0; i < %du; ++i) {" % bound)
        writer.write(2, "x += (i ^ 0x00000000u);")
        self.emit_block(writer, scope, ctx, depth + 1, True)
        writer.write(1, "}")
        return True

    def emit_return(self, writer, scope, ctx, depth) -> bool:
        ret = scope.return_var or "l_0"
        writer.write(1, "%s ^= (uint32_t)x;" % ret)
        writer.write(1, "return %s;" % ret)
        return True

    def emit_continue(self, writer, scope, ctx, depth) -> bool:
        writer.write(1, "continue;")
        return True

    def emit_break(self, writer, scope, ctx, depth) -> bool:
        writer.write(1, "break;")
        return True

    def emit_goto(self, writer, scope, ctx, depth) -> bool:
        # TODO: emit labels and forward gotos within the current function
        return False

    def emit_array_op(self, writer, scope, ctx, depth) -> bool:
        config = self.config
        arrays = self.state.env.arrays
        if not config.arrays or not arrays:
            return False
        array = arrays[self.rng.upto(len(arrays))]
        mask = array_index_mask(config.max_array_len_per_dim, array.length)
        rhs = self.expressions.generate(array.ctype, scope, ctx)
        element = "%s[x & %du]" % (array.name, mask)
        writer.write(1, "%s ^= %s;" % (element, rhs))
        if config.embedded_assigns:
            one = cast_literal(array.ctype, "1u")
            writer.write(
                1,
                "x = (%s = %s);"
                % (element, safe_add_expr(array.ctype, element, one, config.safe_math)),
            )
        ctx.must_use = ExprCandidate(element, array.ctype, True)
        return True
