import configparser
import copy
import pathlib
import struct
from configparser import NoOptionError, NoSectionError
from io import StringIO
from optparse import OptionGroup, OptionParser
from os import getenv
from os.path import exists as path_exists
from os.path import join as path_join

DEFAULT_PLATFORM_INFO = "platform.info"

# Keys are "<section>_<option>"; the option name is also the attribute name
# on GeneratorConfig.
DEFAULTS = {
    "general_seed": 0,
    "general_no_main": False,
    "general_platform_info": DEFAULT_PLATFORM_INFO,
    "general_int_size": 0,
    "general_pointer_size": 0,
    "limits_max_funcs": 10,
    "limits_max_params": 5,
    "limits_func1_max_params": 3,
    "limits_max_block_size": 4,
    "limits_max_block_depth": 5,
    "limits_max_expr_complexity": 10,
    "limits_max_struct_fields": 10,
    "limits_max_union_fields": 5,
    "limits_max_pointer_depth": 2,
    "limits_max_array_dim": 3,
    "limits_max_array_len_per_dim": 10,
    "limits_max_globals": 80,
    "limits_max_exhaustive_depth": -1,
    "limits_inline_function_prob": 50,
    "limits_builtin_function_prob": 50,
    "limits_stop_by_stmt": -1,
    "features_compute_hash": True,
    "features_accept_argc": True,
    "features_arrays": True,
    "features_bitfields": True,
    "features_compound_assignment": True,
    "features_consts": True,
    "features_embedded_assigns": True,
    "features_comma_operators": True,
    "features_jumps": True,
    "features_long_long": True,
    "features_pointers": True,
    "features_structs": True,
    "features_unions": True,
    "features_vol_struct_union_fields": True,
    "features_const_struct_union_fields": True,
    "features_volatiles": True,
    "features_volatile_pointers": True,
    "features_const_pointers": True,
    "features_global_variables": True,
    "features_hash_value_printf": True,
    "features_safe_math": True,
    "features_packed_struct": True,
    "features_builtins": False,
    "features_const_as_condition": False,
    "features_allow_const_volatile": True,
    "features_match_exact_qualifiers": False,
    "mode_random_based": True,
    "mode_dfs_exhaustive": False,
    "mode_lang_cpp": False,
    "mode_cpp11": False,
    "mode_fast_execution": False,
    "mode_fixed_struct_fields": False,
    "mode_exact_replay": True,
    "mode_initial_environment": False,
}

PROBABILITY_OPTIONS = ("inline_function_prob", "builtin_function_prob")


class ConfigError(Exception):
    pass


def createFilename(name=None, configdir=None):
    """Create a filename from the given name and configdir."""
    if name is None:
        name = "cfuzz.conf"
    if configdir is None:
        configdir = getenv("XDG_CONFIG_HOME")
        if not configdir:
            homedir = getenv("HOME")
            if not homedir:
                raise ConfigError(
                    "Unable to retrieve user home directory: empty HOME environment variable"
                )
            configdir = path_join(homedir, ".config")
    return path_join(configdir, name)


def host_int_size() -> int:
    """Size in bytes of the host's native integer (pointer-sized)."""
    return struct.calcsize("P")


class GeneratorConfig:
    """
    Generation options: DEFAULTS, optionally overlaid by a configuration file,
    then by command line options.

    The engine only reads attributes; call prepare() to obtain a resolved,
    normalized and validated copy before generating.
    """

    def __init__(self, options=None, filename=None, configdir=None, read=False, write=False):
        self._parser = configparser.ConfigParser()
        self.filename = filename
        if read or write:
            self.filename = createFilename(filename, configdir)
        if read and path_exists(self.filename):
            self._parser.read([self.filename])

        self.sections = {}
        for section_and_key, default_value in DEFAULTS.items():
            section, key = section_and_key.split("_", maxsplit=1)
            self.sections[key] = section
            setattr(self, key, self._get(section, key, default_value))

        # Options from command line: only explicitly given values (not None)
        if options is not None:
            for key in self.sections:
                value = getattr(options, key, None)
                if value is not None:
                    setattr(self, key, value)

        if write:
            print("Writing configuration file %s" % self.filename)
            with pathlib.Path(self.filename).open("w") as config_file:
                config_file.write(self.write_sample_config(use_defaults=False))

    def _get(self, section, key, default_value):
        if isinstance(default_value, bool):
            return self.getbool(section, key, default_value)
        if isinstance(default_value, int):
            return self.getint(section, key, default_value)
        return self.getstr(section, key, default_value)

    def _gettype(self, func, type_name, section, key, default_value):
        try:
            value = func(section, key)
            if func == self._parser.get:
                value = value.strip()
            return value
        except (NoSectionError, NoOptionError):
            return default_value
        except ValueError as err:
            raise ConfigError(
                "Value %s of section %s is not %s! %s" % (key, section, type_name, err)
            )

    def getstr(self, section, key, default_value=None):
        return self._gettype(self._parser.get, "a string", section, key, default_value)

    def getbool(self, section, key, default_value):
        return self._gettype(
            self._parser.getboolean, "a boolean", section, key, default_value
        )

    def getint(self, section, key, default_value):
        return self._gettype(
            self._parser.getint, "an integer", section, key, default_value
        )

    def write_sample_config(self, use_defaults=True) -> str:
        """Render the defaults (or the current values) as a configuration file."""
        output = StringIO()
        writer = configparser.ConfigParser()
        output.write("# cfuzz configuration file\n\n")
        for section_and_key, value in DEFAULTS.items():
            section, key = section_and_key.split("_", maxsplit=1)
            if not use_defaults:
                value = getattr(self, key)
            if section not in writer:
                writer.add_section(section)
            writer.set(section, key, str(value))
        writer.write(output)
        return output.getvalue()

    def resolve_platform_info(self) -> "GeneratorConfig":
        """
        Return a copy whose int_size and pointer_size are known.

        Sizes come from the platform.info descriptor ("integer size = N",
        "pointer size = N") unless given explicitly (non-zero). Without a
        descriptor, unknown sizes are taken from the host.
        """
        config = copy.copy(self)
        path = (config.platform_info or "").strip() or DEFAULT_PLATFORM_INFO
        descriptor = pathlib.Path(path)
        if not descriptor.exists():
            if config.int_size <= 0:
                config.int_size = host_int_size()
            if config.pointer_size <= 0:
                config.pointer_size = host_int_size()
            return config

        file_int = file_ptr = None
        for line in descriptor.read_text().splitlines():
            line = line.strip()
            for prefix, label in (("integer size =", "integer"), ("pointer size =", "pointer")):
                if not line.startswith(prefix):
                    continue
                text = line[len(prefix):].strip()
                try:
                    value = int(text)
                except ValueError:
                    raise ConfigError("invalid %s size in %s" % (label, path))
                if label == "integer":
                    file_int = value
                else:
                    file_ptr = value
        if file_int is None:
            raise ConfigError("please specify integer size in %s" % path)
        if file_ptr is None:
            raise ConfigError("please specify pointer size in %s" % path)
        if config.int_size <= 0:
            config.int_size = file_int
        if config.pointer_size <= 0:
            config.pointer_size = file_ptr
        return config

    def normalized(self) -> "GeneratorConfig":
        """Return a copy with the mode implications applied."""
        config = copy.copy(self)
        if config.fast_execution:
            config.lang_cpp = True
            config.jumps = False
            config.max_array_len_per_dim = min(config.max_array_len_per_dim, 5)
        if config.lang_cpp:
            config.match_exact_qualifiers = True
            config.vol_struct_union_fields = False
            config.const_struct_union_fields = False
        if config.dfs_exhaustive:
            config.fixed_struct_fields = True
        return config

    def validate(self) -> None:
        """Raise ConfigError on the first illegal combination of options."""
        if self.int_size <= 0:
            raise ConfigError("int-size must be positive")
        if self.pointer_size <= 0:
            raise ConfigError("ptr-size must be positive")
        for key in ("max_funcs", "max_block_size", "max_block_depth", "max_globals"):
            if getattr(self, key) < 1:
                raise ConfigError("%s must be at least 1" % key.replace("_", "-"))
        if self.func1_max_params > self.max_params:
            raise ConfigError("func1_max_params cannot be larger than max_params")
        for key in PROBABILITY_OPTIONS:
            value = getattr(self, key)
            if not 0 <= value <= 100:
                raise ConfigError("%s value must between [0,100]" % key.replace("_", "-"))
        if self.cpp11 and not self.lang_cpp:
            raise ConfigError("--cpp11 option makes sense only with --lang-cpp option enabled")
        if self.dfs_exhaustive:
            if self.max_exhaustive_depth <= 0:
                raise ConfigError("max-exhaustive-depth must be at least 1")
            if self.random_based:
                raise ConfigError(
                    "random-based and dfs-exhaustive modes cannot both be enabled"
                )

    def prepare(self) -> "GeneratorConfig":
        """Resolve platform sizes, normalize and validate."""
        config = self.resolve_platform_info().normalized()
        config.validate()
        return config


def optparse_to_configparser(options) -> str:
    """
    Render the parsed command line options as a configuration file, using
    the sections recorded by OptionParserWithSections.
    """
    output = StringIO()
    config_writer = configparser.ConfigParser()

    for key, section in options.option_sections.items():
        value = getattr(options, key, None)
        if value is None:
            continue
        if not config_writer.has_section(section):
            config_writer.add_section(section)
        config_writer.set(section, key, f"{value}")

    config_writer.write(output)
    return output.getvalue()


class OptionGroupWithSections(OptionGroup):
    """
    OptionGroup class with sections:
    - add_option(*args, **kwargs) records the section of each destination
    """

    def __init__(self, parser, title, description=None):
        super().__init__(parser, title, description)
        self.option_sections = {}

    def add_option(self, *args, **kwargs):
        option = super().add_option(*args, **kwargs)
        self.option_sections[option.dest] = self.title.lower()
        return option


class OptionParserWithSections(OptionParser):
    """OptionParser class which records sections."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.option_sections = {}

    def add_option_group(self, group, *args, **kwargs):
        super().add_option_group(group, *args, **kwargs)
        self.option_sections.update(group.option_sections)

    def parse_args(self, args=None, values=None):
        options, args = super().parse_args(args, values)
        options.option_sections = self.option_sections
        return options, args

