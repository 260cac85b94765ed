"""
Snapshot and rollback of the mutable generation state.

Speculative generation (a statement attempt, an expression term) takes a
snapshot first and restores it when the attempt is rejected. Every list
touched along the way is append-only, so restoring is a truncation back to
the recorded lengths plus a reset of the counters. The random source is never
part of a snapshot: draws made by a rejected attempt stay consumed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

from cfuzz.type_model import CType, CompositeInfo, UINT32

ACCUMULATOR = "x"


class ExprCandidate(NamedTuple):
    expr: str
    ctype: CType
    assignable: bool = True


@dataclass(frozen=True)
class LocalInfo:
    name: str
    ctype: CType


@dataclass
class Scope:
    """Variables visible to the body of one function."""

    params: list = field(default_factory=list)
    locals: list[LocalInfo] = field(default_factory=list)
    return_var: str = ""

    @classmethod
    def for_function(cls, params, return_var: str) -> "Scope":
        return cls(list(params), [LocalInfo(ACCUMULATOR, UINT32)], return_var)


@dataclass(frozen=True)
class GenSnapshot:
    dyn_locals_len: int
    funcs_len: int
    built_len: int
    defs_len: int
    next_idx: int
    next_param_id: int
    next_local_id: int
    dyn_globals_len: int
    next_global_id: int
    stmt_budget: int
    late_globals_len: int


class GenContext:
    """Per-function generation context over the shared FunctionFlowState."""

    def __init__(self, state, from_index: int, info: CompositeInfo):
        self.state = state
        self.from_index = from_index
        self.info = info
        self.dyn_locals: list[LocalInfo] = []
        # Last mutated lvalue; recorded for a later must-reference pass.
        self.must_use: ExprCandidate | None = None

    def snapshot(self) -> GenSnapshot:
        state = self.state
        return GenSnapshot(
            dyn_locals_len=len(self.dyn_locals),
            funcs_len=len(state.funcs),
            built_len=len(state.built),
            defs_len=len(state.defs),
            next_idx=state.next_idx,
            next_param_id=state.next_param_id,
            next_local_id=state.next_local_id,
            dyn_globals_len=len(state.dyn_globals),
            next_global_id=state.next_global_id,
            stmt_budget=state.stmt_budget,
            late_globals_len=len(state.late_globals),
        )

    def restore(self, snapshot: GenSnapshot) -> None:
        state = self.state
        del self.dyn_locals[snapshot.dyn_locals_len:]
        del state.funcs[snapshot.funcs_len:]
        del state.built[snapshot.built_len:]
        del state.defs[snapshot.defs_len:]
        del state.dyn_globals[snapshot.dyn_globals_len:]
        del state.global_candidates[len(state.env.globals) + snapshot.dyn_globals_len:]
        del state.late_globals[snapshot.late_globals_len:]
        state.next_idx = snapshot.next_idx
        state.next_param_id = snapshot.next_param_id
        state.next_local_id = snapshot.next_local_id
        state.next_global_id = snapshot.next_global_id
        state.stmt_budget = snapshot.stmt_budget

    def merged_locals(self, scope: Scope) -> list[LocalInfo]:
        return scope.locals + self.dyn_locals
