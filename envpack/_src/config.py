import os
import sys
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator
from rattler import Platform

from envpack._src.constants import (
    DEFAULT_ENV_NAME,
    DEFAULT_ENVIRONMENT,
    ENV_ENV_NAME,
    ENV_FORCE,
    ENV_INSTALLER,
    ENV_OUTPUT_DIRECTORY,
    ENV_SHELL,
    ENV_VERBOSE,
    InstallerBackend,
    OutputMode,
)
from envpack._src.fetch import FetchConfig


TRUTHY = ("1", "true", "yes", "on")


def current_platform() -> str:
    return str(Platform.current())


def validate_platform(value: str) -> str:
    try:
        return str(Platform(str(value)))
    except Exception as e:
        raise ValueError(f"unknown platform `{value}`: {e}")


def default_shell() -> str:
    if sys.platform == "win32":
        return "powershell"
    return Path(os.environ.get("SHELL", "bash")).name or "bash"


def parse_bool(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in TRUTHY


class PackOptions(BaseModel):
    """Inputs of one pack invocation"""
    lockfile: Path
    environment: str = DEFAULT_ENVIRONMENT
    platform: str = Field(default_factory=current_platform)
    output_file: Optional[Path] = None
    output_mode: OutputMode = OutputMode.ARCHIVE
    inject: List[Path] = Field(default=[])
    ignore_pypi_non_wheel: bool = False
    cache_dir: Optional[Path] = None
    # local path or url of an unpacker binary, only used for executables
    unpack_executable: Optional[str] = None
    # replace an existing non-empty output directory
    force: bool = False
    fetch: FetchConfig = Field(default_factory=FetchConfig)

    @field_validator("platform")
    @classmethod
    def _platform(cls, value):
        return validate_platform(value)

    def output_path(self) -> Path:
        if self.output_file is not None:
            return self.output_file
        if self.output_mode == OutputMode.DIRECTORY:
            return Path.cwd() / "environment"
        if self.output_mode == OutputMode.EXECUTABLE:
            suffix = "ps1" if self.platform.startswith("win") else "sh"
            return Path.cwd() / f"environment.{suffix}"
        return Path.cwd() / "environment.tar"


class UnpackOptions(BaseModel):
    """Inputs of one unpack invocation"""
    pack_file: Path
    output_directory: Path = Field(default_factory=Path.cwd)
    env_name: str = DEFAULT_ENV_NAME
    shell: Optional[str] = None
    installer: InstallerBackend = InstallerBackend.NATIVE
    force: bool = False
    verbosity: int = 0
    # write the activation script next to the environment
    activate: bool = True

    @property
    def prefix(self) -> Path:
        return self.output_directory / self.env_name

    @classmethod
    def from_env(cls, pack_file: str | Path, environ: Optional[Mapping[str, str]] = None, **overrides) -> "UnpackOptions":
        """Build options from the ENVPACK_* variables; keyword arguments win"""
        environ = os.environ if environ is None else environ
        values = {"pack_file": Path(pack_file)}
        if environ.get(ENV_INSTALLER):
            values["installer"] = environ[ENV_INSTALLER].strip().lower()
        if environ.get(ENV_OUTPUT_DIRECTORY):
            values["output_directory"] = Path(environ[ENV_OUTPUT_DIRECTORY])
        if environ.get(ENV_ENV_NAME):
            values["env_name"] = environ[ENV_ENV_NAME]
        if environ.get(ENV_SHELL):
            values["shell"] = environ[ENV_SHELL]
        if ENV_FORCE in environ:
            values["force"] = parse_bool(environ[ENV_FORCE])
        if environ.get(ENV_VERBOSE):
            values["verbosity"] = int(environ[ENV_VERBOSE])
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)
