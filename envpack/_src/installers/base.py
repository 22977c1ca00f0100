import abc
import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field

from envpack._src.exceptions import InstallError
from envpack._src.index import ChannelIndex


log = logging.getLogger(__name__)


class PackageSet(BaseModel):
    """The packages of an extracted archive, addressed through its channel"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    channel_dir: Path
    index: ChannelIndex
    wheels: List[Path] = Field(default=[])

    def records(self) -> List[Tuple[str, str, Dict[str, Any]]]:
        return [
            (subdir, filename, self.index.subdirs[subdir][filename])
            for subdir, filename in self.index.filenames()
        ]

    def package_path(self, subdir: str, filename: str) -> Path:
        return self.channel_dir / subdir / filename

    def specs(self) -> List[str]:
        return sorted(
            f"{record['name']}={record['version']}={record['build']}"
            for _, _, record in self.records()
        )


class InstallResult(BaseModel):
    prefix: Path
    installed: List[str] = Field(default=[])
    wheels: List[str] = Field(default=[])


class Installer(metaclass=abc.ABCMeta):
    """Capability interface of an installer backend"""
    name: str

    @abc.abstractmethod
    def install(self, package_set: PackageSet, prefix: Path) -> InstallResult:
        raise NotImplementedError

    def install_wheels(self, wheels: List[Path], prefix: Path) -> List[str]:
        """Install wheels with the prefix's own interpreter, fully offline"""
        if not wheels:
            return []
        command = [
            str(prefix_python(prefix)), "-m", "pip", "install",
            "--no-deps", "--no-index", "--no-build-isolation", "--disable-pip-version-check",
            *[str(wheel) for wheel in sorted(wheels)],
        ]
        log.info("Installing %d wheel(s)", len(wheels))
        run_command(command)
        return [wheel.name for wheel in sorted(wheels)]


def prefix_python(prefix: Path) -> Path:
    if sys.platform == "win32":
        return prefix / "python.exe"
    return prefix / "bin" / "python"


def run_command(command: List[str], cwd: Path | None = None, env: Dict[str, str] | None = None) -> str:
    log.debug("Running %s", " ".join(command))
    try:
        proc = subprocess.run(command, cwd=cwd, env=env, capture_output=True, text=True)
    except OSError as e:
        raise InstallError(command, e, cwd)
    if proc.returncode != 0:
        raise InstallError(command, proc.stderr.strip() or proc.stdout.strip(), cwd)
    return proc.stdout
