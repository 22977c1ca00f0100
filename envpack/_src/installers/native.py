import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from rattler import NoArchType, PackageRecord, RepoDataRecord
from rattler import install as rattler_install

from envpack._src.exceptions import InstallError
from envpack._src.installers.base import InstallResult, Installer, PackageSet


log = logging.getLogger(__name__)


class NativeInstaller(Installer):
    name = "native"

    def __init__(self, package_cache: Optional[Path] = None):
        """Link the packed packages into the prefix with rattler, no external tool needed.

        Parameters
        ----------
        package_cache: Path
            Directory rattler extracts packages into. A temporary directory
            is used when not given, so unpacking never touches a shared cache.
        """
        self.package_cache = package_cache

    def install(self, package_set: PackageSet, prefix: Path) -> InstallResult:
        prefix = Path(prefix).resolve()
        records = repodata_records(package_set)

        with tempfile.TemporaryDirectory(prefix="envpack-pkgs-") as tmp:
            cache_dir = Path(self.package_cache or tmp)
            log.debug("Linking %d packages into %s (package cache %s)", len(records), prefix, cache_dir)
            try:
                asyncio.run(rattler_install(
                    records,
                    target_prefix=prefix,
                    cache_dir=cache_dir,
                    execute_link_scripts=True,
                    show_progress=False,
                ))
            except Exception as e:
                raise InstallError(f"rattler install into {prefix}", e) from e

        installed = [record.file_name for record in records]
        wheels = self.install_wheels(package_set.wheels, prefix)
        log.info("Installed %d packages into %s", len(installed), prefix)
        return InstallResult(prefix=prefix, installed=installed, wheels=wheels)


def repodata_records(package_set: PackageSet) -> List[RepoDataRecord]:
    """Converts the packed channel into rattler records pointing at the local files."""
    channel = package_set.channel_dir.resolve().as_uri()
    return [
        to_repodata_record(record, package_set.package_path(subdir, filename), channel)
        for subdir, filename, record in package_set.records()
    ]


def to_repodata_record(record: Dict[str, Any], path: Path, channel: str) -> RepoDataRecord:
    pkg_record = PackageRecord(
        name=record["name"], version=str(record["version"]), build=record["build"],
        build_number=int(record.get("build_number", 0)), subdir=record.get("subdir", "noarch"),
        arch=None, platform=None, noarch=_noarch(record.get("noarch")),
        depends=list(record.get("depends", [])), constrains=list(record.get("constrains", [])),
    )
    return RepoDataRecord(
        package_record=pkg_record,
        file_name=path.name,
        channel=channel,
        url=path.resolve().as_uri(),
    )


def _noarch(value) -> Optional[NoArchType]:
    if isinstance(value, dict):
        value = value.get("type")
    if value in (None, False, ""):
        return None
    return NoArchType("python" if value == "python" else "generic")
