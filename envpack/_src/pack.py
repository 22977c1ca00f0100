import logging
import tempfile
from pathlib import Path
from typing import Callable, Optional

from envpack._src.archive import (
    check_output_directory,
    make_manifest,
    populate_container,
    write_archive,
    write_directory,
    write_self_extracting,
)
from envpack._src.cache import CacheStore
from envpack._src.config import PackOptions
from envpack._src.constants import CHANNEL_DIRECTORY_NAME, OutputMode
from envpack._src.exceptions import EnvpackError
from envpack._src.fetch import Fetcher
from envpack._src.inject import inject_packages
from envpack._src.models.metadata import created_at_from_env
from envpack._src.models.package import LockedPackage, ResolvedPackages
from envpack._src.resolve import check_pip_available, resolve_environment
from envpack._src.utils import is_url


log = logging.getLogger(__name__)


def resolve_pack_contents(options: PackOptions) -> ResolvedPackages:
    resolved = resolve_environment(
        options.lockfile,
        platform=options.platform,
        environment=options.environment,
        ignore_pypi_non_wheel=options.ignore_pypi_non_wheel,
    )
    if options.inject:
        resolved = inject_packages(resolved, options.inject, options.platform)
    check_pip_available(resolved)
    return resolved


def pack(
    options: PackOptions,
    fetcher: Optional[Fetcher] = None,
    progress_callback: Optional[Callable[[LockedPackage], None]] = None,
) -> Path:
    """Pack one locked environment into a single artifact.

    Returns the path of the written archive, script or directory. Nothing
    is written at the output path unless every package was fetched and
    verified.
    """
    if options.output_mode == OutputMode.EXECUTABLE and not options.unpack_executable:
        raise EnvpackError(
            "A self-extracting pack needs an unpacker binary, pass --unpack-executable <path or url>"
        )

    resolved = resolve_pack_contents(options)
    output = options.output_path()
    if options.output_mode == OutputMode.DIRECTORY:
        check_output_directory(output, options.force)

    if fetcher is None:
        cache = CacheStore(options.cache_dir) if options.cache_dir is not None else None
        fetcher = Fetcher(options.fetch, cache=cache, progress_callback=progress_callback)

    with tempfile.TemporaryDirectory(prefix="envpack-pack-") as workdir:
        staging = Path(workdir) / "pack"
        channel = staging / CHANNEL_DIRECTORY_NAME
        jobs = [(pkg, channel) for pkg in resolved.conda]
        jobs += [(pkg, staging) for pkg in resolved.pypi]
        fetcher.fetch_all(jobs)

        manifest = make_manifest(
            resolved, options.environment, options.platform, created_at=created_at_from_env()
        )
        populate_container(staging, resolved, manifest)

        if options.output_mode == OutputMode.DIRECTORY:
            return write_directory(staging, output, force=options.force)
        if options.output_mode == OutputMode.EXECUTABLE:
            executable = _unpack_executable(options.unpack_executable, Path(workdir), fetcher)
            return write_self_extracting(staging, output, executable, options.platform)
        return write_archive(staging, output)


def _unpack_executable(source: str, workdir: Path, fetcher: Fetcher) -> Path:
    if is_url(source):
        log.info("Fetching unpacker from %s", source)
        return fetcher.fetch_url(source, workdir / "unpacker")
    path = Path(source)
    if not path.is_file():
        raise EnvpackError(f"Unpacker binary `{source}` does not exist")
    return path
