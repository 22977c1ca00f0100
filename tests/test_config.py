import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from envpack._src.config import PackOptions, UnpackOptions, parse_bool
from envpack._src.constants import InstallerBackend, OutputMode
from envpack._src.log import setup_logging, verbosity_to_level


def test_unpack_options_defaults():
    options = UnpackOptions.from_env("env.tar", environ={})
    assert options.installer == InstallerBackend.NATIVE
    assert options.env_name == "env"
    assert options.force is False
    assert options.prefix == Path.cwd() / "env"


def test_unpack_options_from_environment():
    environ = {
        "ENVPACK_INSTALLER": "Micromamba",
        "ENVPACK_OUTPUT_DIRECTORY": "/opt/envs",
        "ENVPACK_ENV_NAME": "prod",
        "ENVPACK_SHELL": "fish",
        "ENVPACK_FORCE": "yes",
        "ENVPACK_VERBOSE": "2",
    }
    options = UnpackOptions.from_env("env.tar", environ=environ)
    assert options.installer == InstallerBackend.MICROMAMBA
    assert options.prefix == Path("/opt/envs/prod")
    assert options.shell == "fish"
    assert options.force is True
    assert options.verbosity == 2


def test_explicit_values_win():
    environ = {"ENVPACK_ENV_NAME": "prod", "ENVPACK_INSTALLER": "conda"}
    options = UnpackOptions.from_env("env.tar", environ=environ, env_name="dev", installer=None)
    assert options.env_name == "dev"
    assert options.installer == InstallerBackend.CONDA


def test_unknown_installer():
    with pytest.raises(ValidationError):
        UnpackOptions.from_env("env.tar", environ={"ENVPACK_INSTALLER": "pip"})


@pytest.mark.parametrize("value, expected", [
    ("1", True), ("TRUE", True), (" on ", True), ("0", False), ("", False), (None, False),
])
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected


def test_pack_options_platform_is_validated():
    assert PackOptions(lockfile="pixi.lock", platform="linux-64").platform == "linux-64"
    with pytest.raises(ValidationError):
        PackOptions(lockfile="pixi.lock", platform="amiga-68k")


@pytest.mark.parametrize("platform, mode, name", [
    ("linux-64", OutputMode.ARCHIVE, "environment.tar"),
    ("linux-64", OutputMode.EXECUTABLE, "environment.sh"),
    ("win-64", OutputMode.EXECUTABLE, "environment.ps1"),
    ("osx-arm64", OutputMode.DIRECTORY, "environment"),
])
def test_default_output_path(platform, mode, name):
    options = PackOptions(lockfile="pixi.lock", platform=platform, output_mode=mode)
    assert options.output_path() == Path.cwd() / name


@pytest.mark.parametrize("verbosity, level", [
    (-1, logging.ERROR), (0, logging.WARNING), (1, logging.INFO), (3, logging.DEBUG),
])
def test_verbosity_to_level(verbosity, level):
    assert verbosity_to_level(verbosity) == level


def test_setup_logging_is_idempotent():
    setup_logging(1)
    logger = setup_logging(2)
    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
