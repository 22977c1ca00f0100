import io
import json
import logging
import shutil
import tarfile
import tempfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional

from pydantic import BaseModel, Field, ValidationError

from envpack._src.activation import synthesize_activation
from envpack._src.config import UnpackOptions, current_platform, default_shell
from envpack._src.constants import (
    CHANNEL_DIRECTORY_NAME,
    FORMAT_VERSION,
    METADATA_FILE_NAME,
    PYPI_DIRECTORY_NAME,
)
from envpack._src.exceptions import (
    IncompatibleArchiveVersion,
    InvalidArchive,
    PlatformMismatch,
    PreconditionFailed,
)
from envpack._src.index import read_channel_index
from envpack._src.installers.base import Installer, PackageSet
from envpack._src.installers.installer import get_installer
from envpack._src.models.metadata import PackManifest
from envpack._src.sfx import decode_self_extracting
from envpack._src.shells import get_shell
from envpack._src.utils import is_dir_empty


log = logging.getLogger(__name__)


class UnpackState(str, Enum):
    START = "start"
    VALIDATED = "validated"
    EXTRACTED = "extracted"
    INSTALLED = "installed"
    ACTIVATED = "activated"
    DONE = "done"
    FAILED = "failed"


class UnpackResult(BaseModel):
    prefix: Path
    manifest: PackManifest
    installed: List[str] = Field(default=[])
    wheels: List[str] = Field(default=[])
    activation_script: Optional[Path] = None


@contextmanager
def open_pack(path: str | Path) -> Iterator[tarfile.TarFile]:
    """Open a pack as a tar, whether plain or wrapped in a self-extracting script"""
    path = Path(path)
    if not path.is_file():
        raise InvalidArchive(path, "file does not exist")
    if tarfile.is_tarfile(path):
        with tarfile.open(path, mode="r:") as tar:
            yield tar
        return

    payload = decode_self_extracting(path.read_bytes())
    if payload is None:
        raise InvalidArchive(path, "neither a tar archive nor a self-extracting script")
    with tarfile.open(fileobj=io.BytesIO(payload.archive), mode="r:") as tar:
        yield tar


def read_manifest(tar: tarfile.TarFile, path: Path) -> PackManifest:
    try:
        member = tar.extractfile(METADATA_FILE_NAME)
    except KeyError:
        member = None
    if member is None:
        raise InvalidArchive(path, f"{METADATA_FILE_NAME} is missing")
    try:
        raw = json.load(member)
    except ValueError as e:
        raise InvalidArchive(path, f"{METADATA_FILE_NAME} is not valid JSON: {e}")
    if not isinstance(raw, dict):
        raise InvalidArchive(path, f"{METADATA_FILE_NAME} is not a JSON object")

    check_format_version(raw.get("format_version"))
    try:
        return PackManifest.model_validate(raw)
    except ValidationError as e:
        raise InvalidArchive(path, e)


def check_format_version(version) -> None:
    try:
        parsed = int(str(version))
    except ValueError:
        raise IncompatibleArchiveVersion(version, FORMAT_VERSION)
    if parsed > FORMAT_VERSION or parsed < 1:
        raise IncompatibleArchiveVersion(version, FORMAT_VERSION)


class Unpacker():
    def __init__(self, options: UnpackOptions, installer: Optional[Installer] = None):
        """Unpacker runs the linear unpack pipeline for one pack file.

        start -> validated -> extracted -> installed -> (activated) -> done,
        with `failed` reachable from every step. Nothing is retried.

        Parameters
        ----------
        options: UnpackOptions
            Pack file, target directory, shell and overwrite flags
        installer: Installer
            Backend to use. Defaults to the one named in the options.
        """
        self.options = options
        self.installer = installer or get_installer(options.installer)
        self.state = UnpackState.START
        self.manifest: Optional[PackManifest] = None

    def _transition(self, state: UnpackState) -> None:
        log.debug("unpack: %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self) -> UnpackResult:
        try:
            return self._run()
        except Exception:
            self._transition(UnpackState.FAILED)
            raise

    def _run(self) -> UnpackResult:
        shell = None
        if self.options.activate:
            shell = get_shell(self.options.shell or default_shell())

        manifest = self.validate()
        self.check_target()

        with tempfile.TemporaryDirectory(prefix="envpack-unpack-") as workdir:
            package_set = self.extract(Path(workdir))
            result = self.install(package_set)

        result = UnpackResult(
            prefix=self.options.prefix.resolve(),
            manifest=manifest,
            installed=result.installed,
            wheels=result.wheels,
        )
        if shell is not None:
            result.activation_script = self.activate(shell.name)
        self._transition(UnpackState.DONE)
        return result

    def validate(self) -> PackManifest:
        """Read the metadata file and gate on format version and platform"""
        path = self.options.pack_file
        with open_pack(path) as tar:
            manifest = read_manifest(tar, path)

        current = current_platform()
        if manifest.source_platform not in (current, "noarch"):
            raise PlatformMismatch(manifest.source_platform, current)

        self.manifest = manifest
        self._transition(UnpackState.VALIDATED)
        return manifest

    def check_target(self) -> None:
        prefix = self.options.prefix
        if prefix.exists() and (not prefix.is_dir() or not is_dir_empty(prefix)):
            if not self.options.force:
                raise PreconditionFailed(prefix)
            log.warning("Overwriting existing environment at %s", prefix)

    def extract(self, workdir: Path) -> PackageSet:
        with open_pack(self.options.pack_file) as tar:
            tar.extractall(workdir, filter="data")

        channel = workdir / CHANNEL_DIRECTORY_NAME
        index = read_channel_index(channel)
        packed = {(pkg.subdir, pkg.filename) for pkg in self.manifest.packages}
        if set(index.filenames()) != packed:
            raise InvalidArchive(
                self.options.pack_file, "channel index does not match the packed package list"
            )
        wheels = sorted((workdir / PYPI_DIRECTORY_NAME).glob("*.whl"))

        self._transition(UnpackState.EXTRACTED)
        return PackageSet(channel_dir=channel, index=index, wheels=wheels)

    def install(self, package_set: PackageSet):
        prefix = self.options.prefix
        if prefix.exists() or prefix.is_symlink():
            if prefix.is_dir() and not prefix.is_symlink():
                shutil.rmtree(prefix)
            else:
                prefix.unlink()
        prefix.parent.mkdir(parents=True, exist_ok=True)

        log.info("Installing %d packages with the %s installer", len(package_set.records()), self.installer.name)
        result = self.installer.install(package_set, prefix.resolve())
        self._transition(UnpackState.INSTALLED)
        return result

    def activate(self, shell: str) -> Path:
        script = synthesize_activation(self.options.prefix, shell)
        path = script.write(self.options.output_directory)
        self._transition(UnpackState.ACTIVATED)
        return path


def unpack(options: UnpackOptions, installer: Optional[Installer] = None) -> UnpackResult:
    return Unpacker(options, installer).run()
