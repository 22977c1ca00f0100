import logging
import os
import shutil
from pathlib import Path
from typing import List

from envpack._src.constants import ENV_CONDA_EXE, ENV_MICROMAMBA_EXE
from envpack._src.exceptions import InstallError
from envpack._src.installers.base import InstallResult, Installer, PackageSet, run_command


log = logging.getLogger(__name__)


class ExternalInstaller(Installer):
    """Delegates linking to a conda-compatible tool reading the archive's channel"""
    executable_env: str
    fallback_envs: tuple = ()

    def __init__(self, executable: str | None = None):
        self._executable = executable

    def executable(self) -> str:
        candidates = [self._executable, os.environ.get(self.executable_env)]
        candidates += [os.environ.get(env) for env in self.fallback_envs]
        for candidate in candidates:
            if candidate:
                return candidate
        found = shutil.which(self.name)
        if found is None:
            raise InstallError(
                [self.name], f"`{self.name}` not found on PATH, set {self.executable_env}"
            )
        return found

    def command(self, package_set: PackageSet, prefix: Path) -> List[str]:
        return [
            self.executable(), "create", "--yes",
            "--prefix", str(prefix),
            "--offline", "--override-channels",
            "--channel", package_set.channel_dir.resolve().as_uri(),
            *package_set.specs(),
        ]

    def install(self, package_set: PackageSet, prefix: Path) -> InstallResult:
        command = self.command(package_set, Path(prefix))
        log.info("Installing with %s", self.name)
        run_command(command)
        wheels = self.install_wheels(package_set.wheels, Path(prefix))
        return InstallResult(
            prefix=Path(prefix),
            installed=[filename for _, filename, _ in package_set.records()],
            wheels=wheels,
        )


class CondaInstaller(ExternalInstaller):
    name = "conda"
    executable_env = ENV_CONDA_EXE
    fallback_envs = ("CONDA_EXE",)


class MicromambaInstaller(ExternalInstaller):
    name = "micromamba"
    executable_env = ENV_MICROMAMBA_EXE
    fallback_envs = ("MAMBA_EXE",)
