"""
Unit tests for statement generation

Run with: pytest tests/test_statements.py -v
"""

import re
import unittest
from unittest.mock import MagicMock, patch

from cfuzz.config import GeneratorConfig
from cfuzz.context import GenContext, Scope
from cfuzz.environment import ArrayInfo, Environment
from cfuzz.function_flow import ENTRY_FUNCTION_INDEX, FunctionFlowEngine
from cfuzz.random_source import RandomSource
from cfuzz.statements import (
    STMT_ARRAYOP,
    STMT_ASSIGN,
    STMT_BREAK,
    STMT_CONTINUE,
    STMT_FOR,
    STMT_GOTO,
    STMT_IFELSE,
    STMT_RETURN,
    array_index_mask,
    kind_for_draw,
    safe_add_expr,
)
from cfuzz.type_model import INT32, UINT8, UINT128, CompositeInfo, type_pool
from cfuzz.write_code import WriteCode


def make_generator(seed=1, env=None, **overrides):
    config = GeneratorConfig()
    config.int_size = 4
    config.pointer_size = 8
    config.platform_info = "/nonexistent/platform.info"
    for key, value in overrides.items():
        setattr(config, key, value)
    config = config.prepare()
    engine = FunctionFlowEngine(
        RandomSource(seed), config, type_pool(config), CompositeInfo(), env or Environment()
    )
    state = engine.state
    state.funcs.append(state.make_func_signature(ENTRY_FUNCTION_INDEX))
    state.built.append(False)
    state.defs.append("")
    scope = Scope.for_function([], "l_0")
    return engine.statements, scope, GenContext(state, 0, CompositeInfo())


class TestKindForDraw(unittest.TestCase):
    def test_common_bands(self):
        expected = [
            (0, STMT_IFELSE),
            (14, STMT_IFELSE),
            (15, STMT_FOR),
            (29, STMT_FOR),
            (30, STMT_RETURN),
            (35, STMT_CONTINUE),
            (40, STMT_BREAK),
            (99, STMT_ASSIGN),
        ]
        for value, kind in expected:
            for jumps in (False, True):
                for arrays in (False, True):
                    self.assertEqual(kind_for_draw(value, jumps, arrays), kind)

    def test_jump_and_array_bands(self):
        self.assertEqual(kind_for_draw(45, True, True), STMT_GOTO)
        self.assertEqual(kind_for_draw(50, True, True), STMT_ARRAYOP)
        self.assertEqual(kind_for_draw(59, True, True), STMT_ARRAYOP)
        self.assertEqual(kind_for_draw(60, True, True), STMT_ASSIGN)
        self.assertEqual(kind_for_draw(49, True, False), STMT_GOTO)
        self.assertEqual(kind_for_draw(50, True, False), STMT_ASSIGN)
        self.assertEqual(kind_for_draw(54, False, True), STMT_ARRAYOP)
        self.assertEqual(kind_for_draw(55, False, True), STMT_ASSIGN)
        self.assertEqual(kind_for_draw(45, False, False), STMT_ASSIGN)


class TestHelpers:
    def test_safe_add(self):
        assert safe_add_expr(INT32, "a", "b", True) == "safe_add_func_int32_t_s_s(a, b)"
        assert safe_add_expr(UINT8, "a", "b", True) == "safe_add_func_uint8_t_u_u(a, b)"
        assert safe_add_expr(UINT128, "a", "b", True) == "safe_add_func_uint32_t_u_u(a, b)"
        assert safe_add_expr(INT32, "a", "b", False) == "((a) + (b))"

    def test_array_index_mask(self):
        assert array_index_mask(10, 4) == 3
        assert array_index_mask(10, 11) == 7
        assert array_index_mask(1, 5) == 1
        assert array_index_mask(3, 2) == 1
        for length in range(2, 12):
            assert array_index_mask(10, length) <= length - 1


class TestChooseKind(unittest.TestCase):
    def test_rejects(self):
        generator, _, _ = make_generator(max_block_depth=2)
        self.assertTrue(generator.rejects(STMT_BREAK, 0, False))
        self.assertTrue(generator.rejects(STMT_CONTINUE, 0, False))
        self.assertFalse(generator.rejects(STMT_BREAK, 0, True))
        self.assertTrue(generator.rejects(STMT_IFELSE, 2, False))
        self.assertTrue(generator.rejects(STMT_FOR, 3, True))
        self.assertFalse(generator.rejects(STMT_FOR, 1, True))
        self.assertFalse(generator.rejects(STMT_ASSIGN, 9, False))

    def test_single_filtered_draw(self):
        generator, _, _ = make_generator(jumps=False, arrays=False)
        generator.rng = MagicMock()
        generator.rng.upto_with_filter.return_value = 50
        self.assertEqual(generator.choose_kind(0, False), STMT_ASSIGN)
        generator.rng.upto_with_filter.assert_called_once()
        self.assertEqual(generator.rng.upto_with_filter.call_args[0][0], 100)

    def test_filter_matches_rejects(self):
        generator, _, _ = make_generator(jumps=False, arrays=False)
        generator.rng = MagicMock()
        generator.rng.upto_with_filter.return_value = 99
        generator.choose_kind(0, False)
        reject = generator.rng.upto_with_filter.call_args[0][1]
        self.assertTrue(reject(40))
        self.assertFalse(reject(0))
        self.assertFalse(reject(99))

    def test_never_break_outside_loops(self):
        for seed in range(1, 20):
            generator, _, _ = make_generator(seed)
            for _ in range(20):
                self.assertNotIn(generator.choose_kind(0, False), (STMT_BREAK, STMT_CONTINUE))


class TestEmitBlock(unittest.TestCase):
    def test_fallback_statement(self):
        generator, scope, ctx = make_generator()
        writer = WriteCode()
        with patch.object(generator, "emit_statement", return_value=False) as emit:
            generator.emit_block(writer, scope, ctx, depth=1, in_loop=False)
        lines = writer.getvalue().splitlines()
        self.assertTrue(lines)
        self.assertEqual(set(lines), {"    x ^= 0u;"})
        self.assertEqual(emit.call_count, 8 * len(lines))

    def test_exhausted_budget(self):
        generator, scope, ctx = make_generator()
        generator.state.stmt_budget = 0
        writer = WriteCode()
        generator.emit_block(writer, scope, ctx, depth=0, in_loop=False)
        self.assertEqual(writer.getvalue(), "")

    def test_budget_is_consumed(self):
        generator, scope, ctx = make_generator(3)
        generator.state.stmt_budget = 1
        writer = WriteCode()
        generator.emit_block(writer, scope, ctx, depth=0, in_loop=False)
        self.assertEqual(generator.state.stmt_budget, 0)

    def test_block_lines_are_indented(self):
        for seed in range(1, 15):
            generator, scope, ctx = make_generator(seed)
            writer = WriteCode()
            generator.emit_block(writer, scope, ctx, depth=0, in_loop=False)
            for line in writer.getvalue().splitlines():
                self.assertTrue(line.startswith("    "), line)


class TestEmitters(unittest.TestCase):
    def test_goto_is_unsupported(self):
        generator, scope, ctx = make_generator()
        writer = WriteCode()
        self.assertFalse(generator.emit_goto(writer, scope, ctx, 0))
        self.assertEqual(writer.getvalue(), "")

    def test_return(self):
        generator, scope, ctx = make_generator()
        writer = WriteCode()
        self.assertTrue(generator.emit_return(writer, scope, ctx, 0))
        self.assertEqual(writer.getvalue(), "    l_0 ^= (uint32_t)x;\n    return l_0;\n")

    def test_break_and_continue(self):
        generator, scope, ctx = make_generator()
        writer = WriteCode()
        generator.emit_break(writer, scope, ctx, 1)
        generator.emit_continue(writer, scope, ctx, 1)
        self.assertEqual(writer.getvalue(), "    break;\n    continue;\n")

    def test_assignment_targets_accumulator(self):
        generator, scope, ctx = make_generator(5)
        writer = WriteCode()
        self.assertTrue(generator.emit_assignment(writer, scope, ctx, 0))
        lines = writer.getvalue().splitlines()
        self.assertRegex(lines[0], r"^    x \+?= \(\(uint32_t\)\(")
        self.assertEqual(lines[-1], "    x ^= (uint32_t)x;")
        self.assertEqual(ctx.must_use.expr, "x")

    def test_for_loop(self):
        generator, scope, ctx = make_generator(2)
        writer = WriteCode()
        self.assertTrue(generator.emit_for(writer, scope, ctx, 0))
        lines = writer.getvalue().splitlines()
        self.assertRegex(lines[0], r"^    for \(uint32_t i = 0; i < [1-5]u; \+\+i\) \{$")
        self.assertEqual(lines[-1], "    }")

    def test_ifelse(self):
        generator, scope, ctx = make_generator(2)
        writer = WriteCode()
        self.assertTrue(generator.emit_ifelse(writer, scope, ctx, 0))
        lines = writer.getvalue().splitlines()
        self.assertTrue(lines[0].startswith("    if ("))
        self.assertIn("    } else {", lines)
        self.assertEqual(lines[-1], "    }")

    def test_array_op_without_arrays(self):
        generator, scope, ctx = make_generator()
        self.assertFalse(generator.emit_array_op(WriteCode(), scope, ctx, 0))

    def test_array_op(self):
        env = Environment(arrays=[ArrayInfo("g_0", UINT8, 4)], next_id=1)
        generator, scope, ctx = make_generator(4, env=env)
        writer = WriteCode()
        self.assertTrue(generator.emit_array_op(writer, scope, ctx, 0))
        self.assertRegex(
            writer.getvalue(),
            r"^    g_0\[x & 3u\] \^= \(\(uint8_t\)\(.+\);\n"
            r"    x = \(g_0\[x & 3u\] = safe_add_func_uint8_t_u_u\(g_0\[x & 3u\], \(\(uint8_t\)\(1u\)\)\)\);\n$",
        )
        self.assertEqual(ctx.must_use.expr, "g_0[x & 3u]")

    def test_array_op_without_embedded_assigns(self):
        env = Environment(arrays=[ArrayInfo("g_0", UINT8, 2)], next_id=1)
        generator, scope, ctx = make_generator(4, env=env, embedded_assigns=False)
        writer = WriteCode()
        generator.emit_array_op(writer, scope, ctx, 0)
        lines = writer.getvalue().splitlines()
        self.assertEqual(len(lines), 1)
        self.assertTrue(lines[0].startswith("    g_0[x & 1u] ^= "))
        self.assertIsNone(re.search(r"g_0\[x & [2-9]u\]", writer.getvalue()))


class TestBlocksWithRealDraws(unittest.TestCase):
    STATEMENT_LINE = re.compile(
        r"^    (x \+?= \(\(uint32_t\)\(.*\)\);|x \^= \(uint32_t\)x;"
        r"|l_0 \^= \(uint32_t\)x;|return l_0;|x \^= 0u;)$"
    )

    def test_only_assignments_at_max_depth(self):
        kinds = set()
        for seed in range(1, 40):
            generator, scope, ctx = make_generator(
                seed, jumps=False, arrays=False, max_block_depth=2
            )
            writer = WriteCode()
            generator.emit_block(writer, scope, ctx, depth=2, in_loop=False)
            lines = writer.getvalue().splitlines()
            self.assertTrue(lines)
            for line in lines:
                self.assertRegex(line, self.STATEMENT_LINE)
                kinds.add("return" if "return" in line else "assign")
        self.assertIn("assign", kinds)

    def test_fallback_after_failed_attempts(self):
        generator, scope, ctx = make_generator(7, jumps=False, arrays=False, max_block_depth=2)
        before = ctx.snapshot()

        def create_then_fail(writer, scope, ctx, depth):
            generator.expressions.create_zero_global(UINT8, ctx)
            writer.write(1, "x = 1u;")
            return False

        failing = {kind: create_then_fail for kind in generator.emitters}
        draws = generator.rng.draw_count
        writer = WriteCode()
        with patch.object(generator, "emitters", failing):
            generator.emit_block(writer, scope, ctx, depth=2, in_loop=False)
        lines = writer.getvalue().splitlines()
        self.assertTrue(1 <= len(lines) <= 4)
        self.assertEqual(set(lines), {"    x ^= 0u;"})
        # one draw for the statement count, then at least one kind draw per attempt
        self.assertGreaterEqual(generator.rng.draw_count - draws, 1 + 8 * len(lines))
        self.assertEqual(ctx.snapshot(), before)
        self.assertEqual(generator.state.late_globals, [])
