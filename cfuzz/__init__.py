from cfuzz.config import ConfigError, GeneratorConfig
from cfuzz.error import GenerationError, RandomRetryLimitError
from cfuzz.program import ProgramGenerator, generate_program
from cfuzz.version import VERSION as __version__
