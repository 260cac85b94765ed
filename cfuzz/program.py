"""
Assemble a complete C program from a configuration and a seed.
"""

from __future__ import annotations

import logging

from cfuzz.environment import Environment, EnvironmentBuilder
from cfuzz.function_flow import FunctionFlowEngine
from cfuzz.random_source import RandomSource
from cfuzz.type_model import CompositeTypeGenerator, type_pool
from cfuzz.write_code import CodeTemplate, WriteCode

log = logging.getLogger(__name__)

GENERATOR_NAME = "csmith 2.3.0"
GENERATOR_REVISION = "30dccd7"

HEADER_TEMPLATE = CodeTemplate(
    """\
    /*
     * This is a RANDOMLY GENERATED PROGRAM.
     *
     * Generator: {generator}
     * Git version: {revision}
     * Options:   --seed {seed}
     * Seed:      {seed}
     */

    #include "csmith.h"

    static long __undefined;
    """
)


class ProgramGenerator:
    """
    One generation pass: header, types, optional initial environment,
    functions, hash function and main.

    The configuration must already be prepared (see GeneratorConfig.prepare).
    """

    def __init__(self, config, rng: RandomSource | None = None):
        self.config = config
        self.rng = rng if rng is not None else RandomSource(config.seed)
        self.pool = type_pool(config)
        self.writer = WriteCode()
        self.functions = []
        self.env = Environment()

    def generate(self) -> str:
        config = self.config
        writer = self.writer
        self.write_header()
        info = CompositeTypeGenerator(writer, self.rng, config, self.pool).generate()

        if config.initial_environment:
            self.env = EnvironmentBuilder(writer, self.rng, config, info, self.pool).build()
        engine = FunctionFlowEngine(self.rng, config, self.pool, info, self.env)
        state = engine.run()
        engine.write_functions(writer)
        self.functions = state.funcs

        variables = self.env.globals + state.dyn_globals
        if config.compute_hash:
            self.write_hash_function(variables, self.env.arrays)
        if not config.no_main and self.functions:
            self.write_main(self.functions[0].name)
        log.info(
            "Generated %d functions and %d globals from seed %s (%d draws)",
            len(self.functions),
            len(variables),
            config.seed,
            self.rng.draw_count,
        )
        return writer.getvalue()

    def write_header(self) -> None:
        header = HEADER_TEMPLATE.render(
            generator=GENERATOR_NAME, revision=GENERATOR_REVISION, seed=self.config.seed
        )
        self.writer.writeRaw(header)
        self.writer.emptyLine()

    def write_hash_function(self, variables, arrays) -> None:
        writer = self.writer
        writer.write(0, "void csmith_compute_hash(int print_hash_value)")
        writer.write(0, "{")
        for variable in variables:
            writer.write(
                1,
                'transparent_crc((uint64_t)%s, "%s", print_hash_value);'
                % (variable.name, variable.name),
            )
        for array in arrays:
            writer.write(1, "for (int i = 0; i < %d; i++)" % array.length)
            writer.write(
                2,
                'transparent_crc((uint64_t)%s[i], "%s[i]", print_hash_value);'
                % (array.name, array.name),
            )
        writer.write(0, "}")
        writer.emptyLine()

    def write_main(self, entry: str) -> None:
        config = self.config
        writer = self.writer
        use_runtime = config.safe_math or config.compute_hash
        if config.accept_argc:
            writer.write(0, "int main(int argc, char *argv[]) {")
            writer.write(1, "int print_hash_value = 0;")
            if use_runtime and config.hash_value_printf:
                writer.write(
                    1, 'if (argc == 2 && strcmp(argv[1], "1") == 0) print_hash_value = 1;'
                )
        else:
            writer.write(0, "int main(void) {")
            if use_runtime:
                writer.write(1, "int print_hash_value = 0;")

        if use_runtime:
            writer.write(1, "platform_main_begin();")
            if config.compute_hash:
                writer.write(1, "crc32_gentab();")
        writer.write(1, "(void)%s();" % entry)
        if config.compute_hash:
            writer.write(1, "csmith_compute_hash(print_hash_value);")
            writer.write(1, "platform_main_end(crc32_context ^ 0xFFFFFFFFUL, print_hash_value);")
        elif use_runtime:
            writer.write(1, "platform_main_end(0u, 0);")
        writer.write(1, "return 0;")
        writer.write(0, "}")


def generate_program(config, rng: RandomSource | None = None) -> str:
    """Prepare ``config`` and return the generated C source."""
    return ProgramGenerator(config.prepare(), rng).generate()
