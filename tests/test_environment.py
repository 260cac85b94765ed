"""
Unit tests for the initial environment (globals, arrays, pointers, chains)

Run with: pytest tests/test_environment.py -v
"""

import re
import unittest

from cfuzz.config import GeneratorConfig
from cfuzz.environment import (
    Environment,
    EnvironmentBuilder,
    GlobalInfo,
    PointerInfo,
    qualifier_prefix,
)
from cfuzz.random_source import RandomSource
from cfuzz.type_model import INT8, UINT32, CompositeInfo, FieldInfo, type_pool
from cfuzz.write_code import WriteCode


def make_config(**overrides):
    config = GeneratorConfig()
    config.int_size = 4
    config.pointer_size = 8
    config.platform_info = "/nonexistent/platform.info"
    for key, value in overrides.items():
        setattr(config, key, value)
    return config.prepare()


def build(seed, info=None, **overrides):
    config = make_config(**overrides)
    writer = WriteCode()
    builder = EnvironmentBuilder(
        writer, RandomSource(seed), config, info or CompositeInfo(), type_pool(config)
    )
    return builder.build(), writer.getvalue()


class TestHelpers(unittest.TestCase):
    def test_qualifier_prefix(self):
        self.assertEqual(qualifier_prefix(False, False), "")
        self.assertEqual(qualifier_prefix(True, False), "const ")
        self.assertEqual(qualifier_prefix(True, True), "const volatile ")

    def test_writable_globals(self):
        env = Environment(
            globals=[GlobalInfo("g_0", INT8, is_const=True), GlobalInfo("g_1", UINT32)]
        )
        self.assertEqual([variable.name for variable in env.writable_globals()], ["g_1"])

    def test_qualified_pointer(self):
        self.assertFalse(PointerInfo("g_2", "g_1", UINT32).qualified)
        self.assertTrue(PointerInfo("g_2", "g_1", UINT32, const_target=True).qualified)


class TestScalarGlobals(unittest.TestCase):
    def test_count(self):
        for seed in range(1, 30):
            env, _ = build(seed)
            self.assertTrue(26 <= len(env.globals) <= 43, len(env.globals))

    def test_count_is_capped(self):
        env, _ = build(5, max_globals=10)
        self.assertEqual(len(env.globals), 10)
        env, _ = build(5, max_globals=1)
        self.assertEqual(len(env.globals), 2)

    def test_declarations(self):
        env, text = build(3)
        for variable in env.globals:
            qualifiers = qualifier_prefix(variable.is_const, variable.is_volatile)
            self.assertIn(
                "static %s%s %s = ((%s)(0x"
                % (qualifiers, variable.ctype.name, variable.name, variable.ctype.name),
                text,
            )

    def test_no_qualifiers_when_disabled(self):
        for seed in range(1, 10):
            env, text = build(seed, consts=False, volatiles=False)
            self.assertFalse(any(variable.is_const for variable in env.globals))
            self.assertFalse(any(variable.is_volatile for variable in env.globals))


class TestArraysAndPointers:
    def test_array_lengths(self):
        for max_len in (1, 3, 10, 20):
            for seed in range(1, 10):
                env, _ = build(seed, max_array_len_per_dim=max_len)
                upper = max(2, min(max_len, 10)) + 1
                assert 12 <= len(env.arrays) <= 40
                for array in env.arrays:
                    assert 2 <= array.length <= upper

    def test_array_declarations(self):
        env, text = build(2)
        for array in env.arrays:
            assert "static %s %s[%d] = {0};" % (array.ctype.name, array.name, array.length) in text

    def test_pointer_targets(self):
        for seed in range(1, 30):
            env, _ = build(seed)
            names = {variable.name: variable for variable in env.globals}
            assert 4 <= len(env.pointers) <= 12
            for pointer in env.pointers:
                assert pointer.target in names
                assert pointer.target != env.globals[0].name
                assert pointer.target_type == names[pointer.target].ctype

    def test_first_global_is_a_target_without_consts(self):
        targets = set()
        for seed in range(1, 60):
            env, _ = build(seed, consts=False)
            targets.update(pointer.target for pointer in env.pointers)
        assert "g_0" in targets

    def test_chains_start_from_unqualified_pointers(self):
        for seed in range(1, 30):
            env, text = build(seed)
            for name in env.chains:
                match = re.search(r"static [^\n]* (\*+)%s = &(g_\d+);" % name, text)
                assert match is not None
                assert len(match.group(1)) >= 2

    def test_no_arrays_or_pointers(self):
        env, text = build(4, arrays=False, pointers=False)
        assert env.arrays == []
        assert env.pointers == []
        assert env.chains == []
        assert "[" not in text
        assert "*" not in text.replace("/*", "").replace("*/", "")


class TestNaming:
    def test_sequential_names(self):
        env, _ = build(7)
        names = (
            [variable.name for variable in env.globals]
            + [array.name for array in env.arrays]
            + [pointer.name for pointer in env.pointers]
            + env.chains
        )
        assert names == ["g_%d" % number for number in range(len(names))]
        assert env.next_id == len(names)

    def test_global_variables_disabled(self):
        env, text = build(7, global_variables=False)
        assert env.next_id == 0
        assert text == "/* --- GLOBAL VARIABLES --- */\n\n"

    def test_aggregate_instances(self):
        info = CompositeInfo(
            structs=[[FieldInfo("f0", INT8)], [FieldInfo("f0", UINT32)]],
            unions=[[FieldInfo("f0", INT8)]],
        )
        _, text = build(7, info=info, global_variables=False)
        assert text.splitlines()[1:] == [
            "static struct S0 gs_0;",
            "static struct S1 gs_1;",
            "static union U0 gu_0;",
            "",
        ]
