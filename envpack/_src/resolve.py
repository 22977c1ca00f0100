import logging
from pathlib import Path

from envpack._src.constants import WHEEL_EXTENSION
from envpack._src.exceptions import (
    EnvironmentNotAvailable,
    PipNotIncluded,
    ResolutionError,
    UnsupportedPlatform,
    UnsupportedSourceDistribution,
)
from envpack._src.models.lock import LockPackageEntry, LockPackageRef, PixiLockFile
from envpack._src.models.package import CondaPackage, PypiPackage, ResolvedPackages
from envpack._src.utils import filename_from_location, is_url, split_conda_filename


log = logging.getLogger(__name__)

# repodata keys copied from the lockfile into the generated channel index
RECORD_KEYS = (
    "depends", "constrains", "license", "license_family", "timestamp",
    "noarch", "features", "track_features", "size", "md5", "sha256",
)


def resolve_environment(
    lock: PixiLockFile | str | Path,
    platform: str,
    environment: str = "default",
    ignore_pypi_non_wheel: bool = False,
) -> ResolvedPackages:
    """Select the conda and pypi packages locked for (environment, platform).

    Order follows the lockfile; nothing is re-sorted here.
    """
    if not isinstance(lock, PixiLockFile):
        lock = PixiLockFile.from_path(lock)

    env = lock.environments.get(environment)
    if env is None:
        raise EnvironmentNotAvailable(environment, lock.environments.keys())

    refs = env.packages.get(str(platform))
    if refs is None:
        raise UnsupportedPlatform(platform, environment, env.packages.keys())

    resolved = ResolvedPackages()
    for ref in refs:
        manager, location = _unpack_ref(ref)
        entry = lock.find_package(manager, location)
        if entry is None:
            # format 6 allows a reference without a record for plain urls
            entry = LockPackageEntry.model_validate({manager: location})

        if manager == "conda":
            resolved.conda.append(_conda_package(entry, lock.root, platform))
        elif manager == "pypi":
            pkg = _pypi_package(entry, lock.root, ignore_pypi_non_wheel)
            if pkg is not None:
                resolved.pypi.append(pkg)
        else:
            raise ResolutionError(f"Unknown package kind `{manager}` for `{location}`")

    log.info(
        "Resolved %d conda and %d pypi packages for %s/%s",
        len(resolved.conda), len(resolved.pypi), environment, platform,
    )
    return resolved


def check_pip_available(resolved: ResolvedPackages) -> None:
    if resolved.pypi and "pip" not in resolved.conda_names():
        raise PipNotIncluded([pkg.filename for pkg in resolved.pypi])


def _unpack_ref(ref: LockPackageRef) -> tuple[str, str]:
    if ref.conda is not None:
        return "conda", ref.conda
    if ref.pypi is not None:
        return "pypi", ref.pypi
    raise ResolutionError(f"Malformed package reference in lockfile: {ref}")


def _absolute_location(location: str, root: Path) -> str:
    if is_url(location):
        return location
    path = Path(location)
    if not path.is_absolute():
        path = root / path
    return str(path)


def _conda_package(entry: LockPackageEntry, root: Path, platform: str) -> CondaPackage:
    location = entry.location
    filename = filename_from_location(location)
    try:
        name, version, build = split_conda_filename(filename)
    except ValueError:
        raise ResolutionError(f"`{location}` does not name a conda package archive")

    subdir = entry.subdir
    if subdir is None:
        parent = location.rstrip("/").split("/")[-2:-1]
        subdir = parent[0] if parent else str(platform)

    record = {
        key: value
        for key, value in entry.model_dump(include=set(RECORD_KEYS)).items()
        if value not in (None, [], "")
    }
    return CondaPackage(
        name=entry.name or name,
        version=entry.version or version,
        build=entry.build or build,
        build_number=entry.build_number or 0,
        subdir=subdir,
        location=_absolute_location(location, root),
        sha256=entry.sha256,
        md5=entry.md5,
        depends=tuple(entry.depends),
        constrains=tuple(entry.constrains),
        record=record,
    )


def _pypi_package(entry: LockPackageEntry, root: Path, ignore_non_wheel: bool):
    location = entry.location
    filename = filename_from_location(location)
    name = entry.name or filename.split("-")[0]
    if not filename.endswith(WHEEL_EXTENSION):
        if not ignore_non_wheel:
            raise UnsupportedSourceDistribution(name, location)
        log.warning("Skipping PyPI source distribution `%s` (%s)", name, location)
        return None

    return PypiPackage(
        name=name,
        version=entry.version or filename.split("-")[1],
        location=_absolute_location(location, root),
        sha256=entry.sha256,
        md5=entry.md5,
        requires_dist=tuple(entry.requires_dist),
    )
