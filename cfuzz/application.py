import logging
import pathlib
import sys
import time
from sys import exit

from ptrace.error import PTRACE_ERRORS, writeError

from cfuzz.config import (
    DEFAULTS,
    ConfigError,
    GeneratorConfig,
    OptionGroupWithSections,
    OptionParserWithSections,
    optparse_to_configparser,
)
from cfuzz.program import ProgramGenerator
from cfuzz.random_source import RandomSource
from cfuzz.version import LICENSE, PACKAGE, VERSION, WEBSITE

log = logging.getLogger(__name__)

LIMIT_HELP = {
    "max_funcs": "limit the number of functions besides main",
    "max_params": "limit the number of function parameters",
    "func1_max_params": "number of parameters of func_1",
    "max_block_size": "limit the number of statements per block",
    "max_block_depth": "limit the depth of nested blocks",
    "max_expr_complexity": "limit the expression complexity",
    "max_struct_fields": "limit the number of struct fields",
    "max_union_fields": "limit the number of union fields",
    "max_pointer_depth": "limit the pointer indirection depth",
    "max_array_dim": "limit the number of array dimensions",
    "max_array_len_per_dim": "limit the array length per dimension",
    "max_globals": "limit the number of initial globals",
    "max_exhaustive_depth": "maximum depth of the DFS exhaustive mode",
    "inline_function_prob": "probability of inline functions, in [0,100]",
    "builtin_function_prob": "probability of builtin calls, in [0,100]",
    "stop_by_stmt": "stop generating statements after N statements (-1: unlimited)",
}


def optionName(key):
    return key.replace("_", "-")


def defaultValue(section, key):
    return DEFAULTS["%s_%s" % (section, key)]


class Application:
    """
    Command line generator:
     - parse the command line (and optionally a configuration file)
     - setup logging
     - generate one program and write it
    """

    NAME = PACKAGE

    # Command line usage
    USAGE = "%prog [options]"

    # Number of command line arguments
    NB_ARGUMENTS = 0

    def __init__(self, args=None):
        self.args = args
        self.exitcode = 0
        self.options = None
        self.config = None

    def addSwitches(self, group, section):
        """Add one switch per boolean option of a section."""
        for section_and_key, value in DEFAULTS.items():
            option_section, key = section_and_key.split("_", maxsplit=1)
            if option_section != section or not isinstance(value, bool):
                continue
            label = key.replace("_", " ")
            if value:
                group.add_option(
                    "--no-%s" % optionName(key),
                    help="Disable %s" % label,
                    dest=key,
                    action="store_false",
                    default=None,
                )
            else:
                group.add_option(
                    "--%s" % optionName(key),
                    help="Enable %s" % label,
                    dest=key,
                    action="store_true",
                    default=None,
                )

    def createOptionParser(self):
        """Create all command line options."""
        parser = OptionParserWithSections(usage=self.USAGE)
        parser.add_option(
            "--version",
            help="Display %s version (%s) and exit" % (PACKAGE, VERSION),
            action="store_true",
        )

        general = OptionGroupWithSections(parser, "General")
        general.add_option(
            "-s",
            "--seed",
            help="Seed of the random generator (default: current time)",
            type="int",
            default=None,
        )
        general.add_option(
            "--nomain",
            help="Do not generate main()",
            dest="no_main",
            action="store_true",
            default=None,
        )
        general.add_option(
            "--platform-info",
            help="Path of the platform.info descriptor (default: %s)"
            % defaultValue("general", "platform_info"),
            dest="platform_info",
            default=None,
        )
        general.add_option(
            "--int-size",
            help="Target integer size in bytes (default: from platform.info or host)",
            dest="int_size",
            type="int",
            default=None,
        )
        general.add_option(
            "--ptr-size",
            help="Target pointer size in bytes (default: from platform.info or host)",
            dest="pointer_size",
            type="int",
            default=None,
        )
        parser.add_option_group(general)

        limits = OptionGroupWithSections(parser, "Limits")
        for key, text in LIMIT_HELP.items():
            limits.add_option(
                "--%s" % optionName(key),
                help="%s (default: %s)" % (text.capitalize(), defaultValue("limits", key)),
                dest=key,
                type="int",
                default=None,
            )
        parser.add_option_group(limits)

        features = OptionGroupWithSections(parser, "Features")
        self.addSwitches(features, "features")
        parser.add_option_group(features)

        mode = OptionGroupWithSections(parser, "Mode")
        self.addSwitches(mode, "mode")
        parser.add_option_group(mode)

        output = OptionGroupWithSections(parser, "Output")
        output.add_option(
            "-o",
            "--output",
            help="Write the generated program into FILE (default: stdout)",
            metavar="FILE",
        )
        output.add_option(
            "--trace-rng",
            help="Write every random decision into FILE",
            metavar="FILE",
        )
        output.add_option(
            "--trace-raw",
            help="Include redraw counts and raw values in the trace",
            action="store_true",
            default=False,
        )
        parser.add_option_group(output)

        config = OptionGroupWithSections(parser, "Configuration")
        config.add_option(
            "--config-file",
            help="Configuration file (default: cfuzz.conf in $XDG_CONFIG_HOME or ~/.config)",
            metavar="FILE",
        )
        config.add_option(
            "--use-config",
            help="Read options from the configuration file",
            action="store_true",
            default=False,
        )
        config.add_option(
            "--write-config",
            help="Write the options into the configuration file and exit",
            action="store_true",
            default=False,
        )
        parser.add_option_group(config)

        logging_group = OptionGroupWithSections(parser, "Logging")
        logging_group.add_option(
            "-v",
            "--verbose",
            help="Enable verbose mode (set log level to INFO)",
            action="store_true",
            default=False,
        )
        logging_group.add_option(
            "--quiet",
            help="Be quiet (only log errors)",
            action="store_true",
            default=False,
        )
        logging_group.add_option(
            "--debug",
            help="Enable debug mode (set log level to DEBUG)",
            action="store_true",
            default=False,
        )
        parser.add_option_group(logging_group)
        return parser

    def parseOptions(self):
        """Create command line options, parse them and build the configuration."""
        parser = self.createOptionParser()
        self.options, self.arguments = parser.parse_args(self.args)
        options = self.options

        # Just want to know the version?
        if options.version:
            print("%s version %s" % (PACKAGE, VERSION))
            print("License: %s" % LICENSE)
            print("Website: %s" % WEBSITE)
            print("")
            exit(0)

        self.processOptions(parser, options, self.arguments)

        if options.quiet:
            options.debug = False
            options.verbose = False
        if options.debug:
            options.verbose = True
        if options.seed is None and not (options.use_config or options.write_config):
            options.seed = time.time_ns()
        if options.dfs_exhaustive:
            options.random_based = False

        filename = configdir = None
        if options.config_file:
            file_path = pathlib.Path(options.config_file)
            filename = file_path.name
            configdir = str(file_path.parent)
        self.config = GeneratorConfig(
            options,
            filename=filename,
            configdir=configdir,
            read=options.use_config,
            write=options.write_config,
        )
        if options.verbose:
            print("\nReceived options:", file=sys.stderr)
            print(optparse_to_configparser(options), file=sys.stderr)

        # Just want to write a config file?
        if options.write_config:
            exit(0)

    def processOptions(self, parser, options, arguments):
        """Check the number of arguments."""
        if len(arguments) != self.NB_ARGUMENTS:
            parser.print_help()
            exit(1)

    def setupLogging(self):
        options = self.options
        if options.debug:
            level = logging.DEBUG
        elif options.verbose:
            level = logging.INFO
        elif options.quiet:
            level = logging.ERROR
        else:
            level = logging.WARNING
        logging.basicConfig(
            level=level, format="[%(name)s] %(levelname)s: %(message)s", stream=sys.stderr
        )

    def generate(self):
        """Generate the program; return its text and the random source used."""
        config = self.config.prepare()
        rng = RandomSource(
            config.seed,
            trace=bool(self.options.trace_rng),
            trace_raw=self.options.trace_raw,
        )
        log.info("%s version %s, seed %s", PACKAGE, VERSION, config.seed)
        return ProgramGenerator(config, rng).generate(), rng

    def writeProgram(self, program):
        if self.options.output:
            with open(self.options.output, "w") as output:
                output.write(program)
            log.info("Program written into %s", self.options.output)
        else:
            sys.stdout.write(program)

    def main(self, exit_at_end=True):
        """
        Parse options, generate and write the program, and exit (if
        exit_at_end is True) with 0 on success or 1 on error.
        """
        try:
            self.parseOptions()
            self.setupLogging()
            program, rng = self.generate()
            self.writeProgram(program)
            if self.options.trace_rng:
                rng.write_trace(self.options.trace_rng)
                log.info("%d decisions written into %s", len(rng.trace_lines), self.options.trace_rng)
        except ConfigError as error:
            writeError(log, error, "Configuration error")
            self.exitcode = 1
        except KeyboardInterrupt:
            log.error("Generation interrupted!")
            self.exitcode = 1
        except PTRACE_ERRORS as error:
            writeError(log, error, "Generation error")
            self.exitcode = 1
        if exit_at_end:
            exit(self.exitcode)
        return self.exitcode


def main():
    Application().main()
