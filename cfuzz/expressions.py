"""
Typed expression generation.

An expression is built from one "term" (function call, variable reference,
constant, embedded assignment or comma expression) chosen by weight. Terms
that cannot be formed are rolled back and another one is drawn; after
MAX_TERM_TRIES failures a constant is used.

Two decision strategies are available. ExactReplayStrategy issues the same
sequence of random draws as csmith, including draws whose results are
discarded. SimplifiedStrategy makes the same kinds of choices with fewer draws
and may grow the call graph from any function, so it also caps the number of
terms of each top-level expression.
"""

from __future__ import annotations

import logging

from cfuzz.context import ACCUMULATOR, ExprCandidate, GenContext, Scope
from cfuzz.environment import GlobalInfo, qualifier_prefix
from cfuzz.type_model import (
    CType,
    cast_literal,
    random_constant_expr,
    same_base_type,
    type_from_universe,
    universe_size,
)

log = logging.getLogger(__name__)

TERM_FUNCTION = "function"
TERM_VARIABLE = "variable"
TERM_CONSTANT = "constant"
TERM_ASSIGN = "assign"
TERM_COMMA = "comma"

MAX_TERM_TRIES = 6

# Variable scopes, in the order of the selection bands
SCOPE_GLOBAL = 0
SCOPE_LOCAL = 1
SCOPE_PARAM = 2
SCOPE_NEW = 3

# Number of simple types known to csmith's type chooser
MAX_SIMPLE_TYPES = 14


def term_weights(is_param: bool, config) -> list[tuple[str, int]]:
    """Return the (term, weight) entries of one expression choice."""
    if is_param:
        function_weight, variable_weight, constant_weight = 40, 40, 0
    else:
        function_weight, variable_weight, constant_weight = 70, 20, 10
    entries = [
        (TERM_FUNCTION, function_weight),
        (TERM_VARIABLE, variable_weight),
        (TERM_CONSTANT, constant_weight),
    ]
    if config.embedded_assigns:
        entries.append((TERM_ASSIGN, 10))
    if config.comma_operators:
        entries.append((TERM_COMMA, 10))
    return entries


def expression_term_budget(config) -> int:
    """Number of terms one top-level expression may use in simplified mode."""
    return 16 + 12 * max(1, config.max_expr_complexity)


def decode_term(entries: list[tuple[str, int]], value: int) -> str:
    for term, weight in entries:
        if weight <= 0:
            continue
        if value < weight:
            return term
        value -= weight
    return TERM_VARIABLE


def select_variable(
    rng, ctype: CType, candidates: list[ExprCandidate], for_assign: bool
) -> ExprCandidate | None:
    """
    Prefer candidates of the same sign and width, then of the same width,
    then anything. Assignments only consider assignable candidates.
    """
    usable = []
    exact = []
    same_width = []
    for candidate in candidates:
        if for_assign and not candidate.assignable:
            continue
        usable.append(candidate)
        if same_base_type(candidate.ctype, ctype):
            exact.append(candidate)
        elif candidate.ctype.bits == ctype.bits:
            same_width.append(candidate)
    for group in (exact, same_width, usable):
        if group:
            return group[rng.upto(len(group))]
    return None


class ExactReplayStrategy:
    create_without_callees = False

    def __init__(self, rng, config):
        self.rng = rng
        self.config = config

    def choose_term(self, entries, total, disallowed) -> str | None:
        if all(weight <= 0 or disallowed(term) for term, weight in entries):
            return None
        value = self.rng.upto_with_filter(
            total, lambda value: disallowed(decode_term(entries, value))
        )
        return decode_term(entries, value)

    def operator_form(self, generator, ctype, scope, ctx, depth) -> str | None:
        """Unary or binary operator over sub-expressions, or None for a call."""
        rng = self.rng
        if not rng.flipcoin(80):
            return None
        if rng.flipcoin(5):
            rng.flipcoin(50)
            rng.upto(4)
            operand = generator.generate(ctype, scope, ctx, depth + 1)
            return cast_literal(ctype, "(~(%s))" % operand)
        rng.flipcoin(10 if self.config.pointers else 0)
        rng.upto(18)
        rng.flipcoin(50)
        rng.flipcoin(50)
        rng.upto(4)
        lhs = generator.generate(ctype, scope, ctx, depth + 1)
        rhs = generator.generate(ctype, scope, ctx, depth + 1)
        return cast_literal(ctype, "((%s) ^ (%s))" % (lhs, rhs))

    def before_local_lookup(self) -> None:
        # parent block choice
        self.rng.upto(1)

    def create_parent_local(self, generator, ctype, ctx) -> ExprCandidate | None:
        """
        Mirror the draws of a new parent-scope local, then materialize it as
        a zero initialized global.
        """
        rng = self.rng
        pool = ctx.state.pool
        chosen = ctype
        if ctype.bits > 0 and pool:
            chosen = pool[rng.upto(MAX_SIMPLE_TYPES) % len(pool)]
        for probability in (50, 10, 20, 50, 50):
            rng.flipcoin(probability)
        rng.upto(20)
        return generator.create_zero_global(chosen, ctx)

    def before_assignment(self) -> None:
        self.rng.flipcoin(50)
        self.rng.upto(120)

    def comma_type(self, ctype, state) -> CType:
        count = universe_size(state.pool, state.info)
        if count <= 0:
            return ctype
        return type_from_universe(self.rng.upto(count), state.pool, state.info)

    def reuse_callee(self) -> bool:
        config = self.config
        use_existing = self.rng.flipcoin(50)
        self.rng.flipcoin(config.builtin_function_prob if config.builtins else 0)
        return use_existing

    def begin_expression(self):
        return None

    def end_expression(self, saved) -> None:
        pass

    def spend_terms(self, count: int) -> None:
        pass

    def exhausted(self) -> bool:
        # Expression size is bounded by the depth limit alone
        return False


class SimplifiedStrategy:
    create_without_callees = True

    def __init__(self, rng, config):
        self.rng = rng
        self.config = config
        self.remaining = 0

    def choose_term(self, entries, total, disallowed) -> str | None:
        term = decode_term(entries, self.rng.upto(total))
        if disallowed(term):
            return None
        return term

    def operator_form(self, generator, ctype, scope, ctx, depth) -> str | None:
        return None

    def before_local_lookup(self) -> None:
        pass

    def create_parent_local(self, generator, ctype, ctx) -> ExprCandidate | None:
        return None

    def before_assignment(self) -> None:
        pass

    def comma_type(self, ctype, state) -> CType:
        return ctype

    def reuse_callee(self) -> bool:
        return self.rng.upto(2) == 0

    def begin_expression(self) -> int:
        saved = self.remaining
        self.remaining = expression_term_budget(self.config)
        return saved

    def end_expression(self, saved) -> None:
        self.remaining = saved

    def spend_terms(self, count: int) -> None:
        """Charge the sub-expressions a term is about to generate."""
        self.remaining -= count

    def exhausted(self) -> bool:
        return self.remaining <= 0


class ExpressionGenerator:
    def __init__(self, engine):
        self.engine = engine
        self.rng = engine.rng
        self.config = engine.config
        self.state = engine.state
        if self.config.exact_replay:
            self.strategy = ExactReplayStrategy(self.rng, self.config)
        else:
            self.strategy = SimplifiedStrategy(self.rng, self.config)

    def max_depth(self) -> int:
        return max(1, self.config.max_expr_complexity)

    def constant(self, ctype: CType) -> str:
        return random_constant_expr(ctype, self.rng, self.config.long_long)

    def generate(
        self,
        ctype: CType,
        scope: Scope,
        ctx: GenContext,
        depth: int = 0,
        no_func: bool = False,
        no_const: bool = False,
    ) -> str:
        if depth > 0:
            return self.leaf(ctype, scope, ctx, depth, False, no_func, no_const)
        # Bodies built by a nested call start their own expressions
        saved = self.strategy.begin_expression()
        try:
            return self.leaf(ctype, scope, ctx, depth, False, no_func, no_const)
        finally:
            self.strategy.end_expression(saved)

    def generate_param(self, ctype: CType, scope: Scope, ctx: GenContext, depth: int) -> str:
        return self.leaf(ctype, scope, ctx, depth, True, False, False)

    def leaf(self, ctype, scope, ctx, depth, is_param, no_func, no_const) -> str:
        entries = term_weights(is_param, self.config)
        total = sum(weight for _, weight in entries)
        if total <= 0:
            return self.constant(ctype)
        too_deep = depth + 2 > self.max_depth() or self.strategy.exhausted()

        def disallowed(term):
            if term == TERM_FUNCTION:
                return no_func or too_deep
            if term == TERM_CONSTANT:
                return no_const
            if term in (TERM_ASSIGN, TERM_COMMA):
                return too_deep
            return False

        for _ in range(MAX_TERM_TRIES):
            snapshot = ctx.snapshot()
            term = self.strategy.choose_term(entries, total, disallowed)
            if term is None:
                ctx.restore(snapshot)
                continue
            if term == TERM_CONSTANT:
                return self.constant(ctype)
            if term == TERM_FUNCTION:
                expr = self.function_term(ctype, scope, ctx, depth)
            elif term == TERM_VARIABLE:
                expr = self.variable_term(ctype, scope, ctx)
            elif term == TERM_ASSIGN:
                expr = self.assign_term(ctype, scope, ctx, depth)
            else:
                expr = self.comma_term(ctype, scope, ctx, depth)
            if expr is not None:
                return expr
            ctx.restore(snapshot)
        return self.constant(ctype)

    def function_term(self, ctype, scope, ctx, depth) -> str | None:
        if depth > 0:
            expr = self.strategy.operator_form(self, ctype, scope, ctx, depth)
            if expr is not None:
                return expr
        if depth < self.max_depth():
            return self.build_call(ctype, scope, ctx, depth)
        return None

    def variable_term(self, ctype, scope, ctx) -> str | None:
        pick = self.scope_pick()
        if pick == SCOPE_NEW:
            return cast_literal(ctype, self.create_global(ctype, ctx).expr)
        if pick == SCOPE_LOCAL:
            self.strategy.before_local_lookup()
        candidates = self.scoped_candidates(scope, ctx, pick)
        if not candidates:
            if pick == SCOPE_GLOBAL:
                return cast_literal(ctype, self.create_global(ctype, ctx).expr)
            if pick == SCOPE_LOCAL:
                created = self.strategy.create_parent_local(self, ctype, ctx)
                if created is not None:
                    return cast_literal(ctype, created.expr)
            candidates = self.all_candidates(scope, ctx)
        chosen = select_variable(self.rng, ctype, candidates, False)
        if chosen is None:
            return None
        return cast_literal(ctype, chosen.expr)

    def assign_term(self, ctype, scope, ctx, depth) -> str | None:
        self.strategy.before_assignment()
        self.strategy.spend_terms(1)
        rhs = self.generate(ctype, scope, ctx, depth + 1)
        pick = self.scope_pick()
        candidates = self.scoped_candidates(scope, ctx, pick)
        if not candidates:
            if pick in (SCOPE_GLOBAL, SCOPE_NEW):
                created = self.create_global(ctype, ctx, writable=True)
                return cast_literal(ctype, "(%s = %s)" % (created.expr, rhs))
            candidates = self.all_candidates(scope, ctx)
        lvalue = select_variable(self.rng, ctype, candidates, True)
        if lvalue is None:
            return None
        return cast_literal(ctype, "(%s = %s)" % (lvalue.expr, rhs))

    def comma_term(self, ctype, scope, ctx, depth) -> str:
        lhs_type = self.strategy.comma_type(ctype, self.state)
        self.strategy.spend_terms(2)
        lhs = self.generate(lhs_type, scope, ctx, depth + 1, no_const=True)
        rhs = self.generate(ctype, scope, ctx, depth + 1)
        return cast_literal(ctype, "((%s), (%s))" % (lhs, rhs))

    def scope_pick(self) -> int:
        value = self.rng.upto(100)
        if self.config.global_variables:
            if value < 35:
                return SCOPE_GLOBAL
            if value < 65:
                return SCOPE_LOCAL
        elif value < 50:
            return SCOPE_LOCAL
        if value < 95:
            return SCOPE_PARAM
        return SCOPE_NEW

    def indirect_candidates(self) -> list[ExprCandidate]:
        """Dereferenced pointers, then one random element of each array."""
        env = self.state.env
        candidates = [
            ExprCandidate("*" + pointer.name, pointer.target_type, not pointer.const_target)
            for pointer in env.pointers
        ]
        for array in env.arrays:
            element = "%s[%d]" % (array.name, self.rng.upto(array.length))
            candidates.append(ExprCandidate(element, array.ctype, True))
        return candidates

    def scoped_candidates(self, scope: Scope, ctx: GenContext, pick: int) -> list[ExprCandidate]:
        candidates = []
        if pick == SCOPE_GLOBAL:
            candidates = list(self.state.global_candidates)
        elif pick == SCOPE_LOCAL:
            candidates = [
                ExprCandidate(local.name, local.ctype, True)
                for local in ctx.merged_locals(scope)
                if local.name != ACCUMULATOR
            ]
        elif pick == SCOPE_PARAM:
            candidates = [ExprCandidate(param.name, param.ctype, True) for param in scope.params]
        if pick != SCOPE_PARAM:
            candidates += self.indirect_candidates()
        return candidates

    def all_candidates(self, scope: Scope, ctx: GenContext) -> list[ExprCandidate]:
        candidates = self.state.global_candidates + [
            ExprCandidate(param.name, param.ctype, True) for param in scope.params
        ]
        candidates += [
            ExprCandidate(local.name, local.ctype, True)
            for local in ctx.merged_locals(scope)
            if local.name != ACCUMULATOR
        ]
        return candidates + self.indirect_candidates()

    def choose_lvalue(self, ctype: CType, scope: Scope, ctx: GenContext) -> ExprCandidate | None:
        pick = self.scope_pick()
        candidates = self.scoped_candidates(scope, ctx, pick)
        if not candidates:
            candidates = self.all_candidates(scope, ctx)
        return select_variable(self.rng, ctype, candidates, True)

    def create_global(self, ctype: CType, ctx: GenContext, writable: bool = False) -> ExprCandidate:
        """
        Declare a new global initialized with a random constant.

        The qualifiers are always drawn; ``writable`` drops const afterwards
        for globals created as assignment targets.
        """
        config = self.config
        rng = self.rng
        state = ctx.state
        name = state.alloc_global_name()
        is_const = config.consts and rng.upto(100) < 10
        is_volatile = config.volatiles and rng.upto(100) < 50
        if is_const and is_volatile and rng.upto(2) == 0:
            is_const = False
        if writable:
            is_const = False
        literal = self.constant(ctype)
        state.late_globals.append(
            "static %s%s %s = %s;"
            % (qualifier_prefix(is_const, is_volatile), ctype.name, name, literal)
        )
        return state.add_global(GlobalInfo(name, ctype, is_const, is_volatile))

    def create_zero_global(self, ctype: CType, ctx: GenContext) -> ExprCandidate:
        """Declare a new unqualified global initialized to 0, drawing nothing."""
        state = ctx.state
        name = state.alloc_global_name()
        state.late_globals.append("static %s %s = 0;" % (ctype.name, name))
        return state.add_global(GlobalInfo(name, ctype))

    def build_call(self, ctype, scope, ctx, depth) -> str | None:
        """
        Call a function created after the current one, creating it when
        needed. Return None when no callee can be found or created.
        """
        state = self.state
        rng = self.rng
        callees = list(range(ctx.from_index + 1, len(state.funcs)))
        if self.strategy.reuse_callee() and callees:
            index = callees[rng.upto(len(callees))]
        elif not callees and not self.strategy.create_without_callees:
            return None
        else:
            index = state.append_new_function(ctype)
            if index is not None:
                self.engine.ensure_built(index)
            elif callees:
                index = callees[rng.upto(len(callees))]
            else:
                log.debug("No callee available for %s", state.funcs[ctx.from_index].name)
                return None

        callee = state.funcs[index]
        self.strategy.spend_terms(len(callee.params))
        args = [self.generate_param(param.ctype, scope, ctx, depth + 1) for param in callee.params]
        return cast_literal(ctype, "%s(%s)" % (callee.name, ", ".join(args)))
