from enum import Enum


ENVPACK_VERSION = "0.1.0"

METADATA_FILE_NAME = "envpack.json"
ENVIRONMENT_FILE_NAME = "environment.yml"
CHANNEL_DIRECTORY_NAME = "channel"
PYPI_DIRECTORY_NAME = "pypi"
REPODATA_FILE_NAME = "repodata.json"

# newest archive layout this version can read and the one it writes
FORMAT_VERSION = 1

DEFAULT_ENVIRONMENT = "default"
DEFAULT_ENV_NAME = "env"

CONDA_PACKAGE_EXTENSIONS = (".conda", ".tar.bz2")
WHEEL_EXTENSION = ".whl"

# prefix layout read by activation
ACTIVATE_DIR = "etc/conda/activate.d"
DEACTIVATE_DIR = "etc/conda/deactivate.d"
PACKAGE_ENV_VARS_DIR = "etc/conda/env_vars.d"
PREFIX_STATE_FILE = "conda-meta/state"

# sentinel lines of the self-extracting wrapper
POSIX_HEADER_SENTINEL = "@@END_HEADER@@"
POSIX_ARCHIVE_SENTINEL = "@@END_ARCHIVE@@"
POWERSHELL_HEADER_SENTINEL = "__END_HEADER__"
POWERSHELL_ARCHIVE_SENTINEL = "__END_ARCHIVE__"

# tar entries are normalized to these values
ARCHIVE_MTIME = 0
ARCHIVE_FILE_MODE = 0o644
ARCHIVE_EXEC_MODE = 0o755

ENV_INSTALLER = "ENVPACK_INSTALLER"
ENV_OUTPUT_DIRECTORY = "ENVPACK_OUTPUT_DIRECTORY"
ENV_ENV_NAME = "ENVPACK_ENV_NAME"
ENV_SHELL = "ENVPACK_SHELL"
ENV_FORCE = "ENVPACK_FORCE"
ENV_VERBOSE = "ENVPACK_VERBOSE"
ENV_CONDA_EXE = "ENVPACK_CONDA_EXE"
ENV_MICROMAMBA_EXE = "ENVPACK_MICROMAMBA_EXE"


class OutputMode(str, Enum):
    ARCHIVE = "archive"
    EXECUTABLE = "executable"
    DIRECTORY = "directory"


class InstallerBackend(str, Enum):
    NATIVE = "native"
    CONDA = "conda"
    MICROMAMBA = "micromamba"
