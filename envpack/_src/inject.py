import logging
from pathlib import Path
from typing import Dict, Iterable, List

from rattler import MatchSpec

from envpack._src.conda_package import read_index_json
from envpack._src.constants import WHEEL_EXTENSION
from envpack._src.exceptions import IncompatibleInjection, InvalidPackageFile
from envpack._src.models.package import CondaPackage, PypiPackage, ResolvedPackages
from envpack._src.utils import hash_file, is_conda_package


log = logging.getLogger(__name__)

INDEX_RECORD_KEYS = ("depends", "constrains", "license", "license_family", "timestamp", "noarch", "features", "track_features")


def spec_name(spec: str) -> str:
    name = MatchSpec(spec).name
    if name is None:
        raise ValueError(f"`{spec}` does not name a package")
    return name.normalized


def spec_matches(spec: str, package: CondaPackage) -> bool:
    return MatchSpec(spec).matches(package.to_package_record())


def inject_packages(
    resolved: ResolvedPackages,
    paths: Iterable[str | Path],
    platform: str,
) -> ResolvedPackages:
    """Validate extra package files against the resolved set and add them.

    Conda packages are checked in both directions: the injected package's
    own `depends`/`constrains` against the packages already chosen, and
    every chosen package's specs that name the injected package against it.
    This only validates the literal versions present, it never searches for
    alternatives. An injected package replaces a resolved one of the same
    name. Wheels are added without any check.
    """
    conda: Dict[str, CondaPackage] = {pkg.name: pkg for pkg in resolved.conda}
    pypi: List[PypiPackage] = list(resolved.pypi)

    for path in paths:
        path = Path(path).resolve()
        if not path.is_file():
            raise InvalidPackageFile(path, "file does not exist")

        if path.name.endswith(WHEEL_EXTENSION):
            log.warning(
                "Injected wheel `%s` is not checked for compatibility with the environment",
                path.name,
            )
            pypi = [pkg for pkg in pypi if pkg.filename != path.name]
            pypi.append(wheel_package(path))
            continue

        if not is_conda_package(path.name):
            raise InvalidPackageFile(path, "only .conda, .tar.bz2 and .whl files can be injected")

        injected = conda_package_from_file(path)
        if injected.subdir not in (str(platform), "noarch"):
            raise InvalidPackageFile(
                path, f"built for `{injected.subdir}`, the pack targets `{platform}`"
            )

        others = {name: pkg for name, pkg in conda.items() if name != injected.name}
        check_injection(injected, others.values())

        if injected.name in conda:
            log.info("Injected %s replaces %s", injected.dist_name, conda[injected.name].dist_name)
        else:
            log.info("Injected %s", injected.dist_name)
        conda[injected.name] = injected

    return ResolvedPackages(conda=list(conda.values()), pypi=pypi)


def check_injection(injected: CondaPackage, others: Iterable[CondaPackage]) -> None:
    others = {pkg.name: pkg for pkg in others}

    for spec in (*injected.depends, *injected.constrains):
        existing = others.get(_name(spec, injected))
        if existing is None:
            # nothing chosen for this name yet, the injection is additive
            continue
        if not _matches(spec, existing, injected):
            raise IncompatibleInjection(injected.dist_name, spec, existing.dist_name)

    for other in others.values():
        for spec in (*other.depends, *other.constrains):
            if _name(spec, injected) != injected.name:
                continue
            if not _matches(spec, injected, injected):
                raise IncompatibleInjection(
                    injected.dist_name, f"{spec} (required by {other.dist_name})", injected.dist_name
                )


def _name(spec: str, injected: CondaPackage) -> str:
    try:
        return spec_name(spec)
    except Exception as e:
        raise InvalidPackageFile(injected.location, f"cannot parse `{spec}`: {e}")


def _matches(spec: str, package: CondaPackage, injected: CondaPackage) -> bool:
    try:
        return spec_matches(spec, package)
    except Exception as e:
        raise InvalidPackageFile(injected.location, f"cannot evaluate `{spec}`: {e}")


def conda_package_from_file(path: Path) -> CondaPackage:
    index = read_index_json(path)
    try:
        return CondaPackage(
            name=index["name"],
            version=str(index["version"]),
            build=index["build"],
            build_number=int(index.get("build_number", 0)),
            subdir=index.get("subdir", "noarch"),
            location=str(path),
            sha256=hash_file(path),
            depends=tuple(index.get("depends", ())),
            constrains=tuple(index.get("constrains", ())),
            record={key: index[key] for key in INDEX_RECORD_KEYS if key in index},
        )
    except KeyError as e:
        raise InvalidPackageFile(path, f"index.json lacks {e}")


def wheel_package(path: Path) -> PypiPackage:
    parts = path.name[: -len(WHEEL_EXTENSION)].split("-")
    if len(parts) < 5:
        raise InvalidPackageFile(path, "not a valid wheel filename")
    return PypiPackage(
        name=parts[0],
        version=parts[1],
        location=str(path),
        sha256=hash_file(path),
    )
