import io
import logging
import os
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import List

import yaml

from envpack._src.constants import (
    ARCHIVE_EXEC_MODE,
    ARCHIVE_FILE_MODE,
    ARCHIVE_MTIME,
    CHANNEL_DIRECTORY_NAME,
    ENVIRONMENT_FILE_NAME,
    METADATA_FILE_NAME,
    PYPI_DIRECTORY_NAME,
)
from envpack._src.exceptions import PreconditionFailed
from envpack._src.index import ChannelIndex, build_channel_index, dumps, write_channel_index
from envpack._src.models.metadata import PackageIdentity, PackManifest
from envpack._src.models.package import ResolvedPackages
from envpack._src.sfx import encode_self_extracting
from envpack._src.templates import render_header
from envpack._src.utils import atomic_output, ensure_dir, is_dir_empty


log = logging.getLogger(__name__)

# written first so readers can validate without scanning the whole stream
LEADING_ENTRIES = (METADATA_FILE_NAME, ENVIRONMENT_FILE_NAME)


def make_manifest(
    packages: ResolvedPackages,
    environment_name: str,
    platform: str,
    created_at: str | None = None,
) -> PackManifest:
    identities = sorted(
        (PackageIdentity(**pkg.to_identity()) for pkg in packages.conda),
        key=lambda pkg: (pkg.subdir, pkg.filename),
    )
    return PackManifest(
        environment_name=environment_name,
        source_platform=str(platform),
        created_at=created_at,
        packages=identities,
        pypi_packages=sorted(pkg.filename for pkg in packages.pypi),
    )


def environment_spec(packages: ResolvedPackages, environment_name: str) -> dict:
    """conda-compatible environment.yml content for fallback installers"""
    spec = {
        "name": environment_name,
        "channels": [f"./{CHANNEL_DIRECTORY_NAME}", "nodefaults"],
        "dependencies": sorted(
            f"{pkg.name}={pkg.version}={pkg.build}" for pkg in packages.conda
        ),
    }
    if packages.pypi:
        spec["dependencies"].append(
            {"pip": sorted(f"./{PYPI_DIRECTORY_NAME}/{pkg.filename}" for pkg in packages.pypi)}
        )
    return spec


def populate_container(staging_dir: str | Path, packages: ResolvedPackages, manifest: PackManifest) -> ChannelIndex:
    """Write the metadata, environment.yml and channel index into a staging tree
    that already holds the package files."""
    staging_dir = Path(staging_dir)
    (staging_dir / METADATA_FILE_NAME).write_text(
        dumps(manifest.model_dump(mode="json"))
    )
    (staging_dir / ENVIRONMENT_FILE_NAME).write_text(
        yaml.safe_dump(environment_spec(packages, manifest.environment_name), sort_keys=False)
    )
    index = build_channel_index(staging_dir / CHANNEL_DIRECTORY_NAME, packages.conda)
    write_channel_index(index, staging_dir / CHANNEL_DIRECTORY_NAME)
    return index


def archive_members(staging_dir: str | Path) -> List[str]:
    """Relative member names in archive order: leading files, then sorted paths"""
    staging_dir = Path(staging_dir)
    members = []
    for root, dirs, files in os.walk(staging_dir):
        rel_root = Path(root).relative_to(staging_dir)
        for name in (*dirs, *files):
            members.append((rel_root / name).as_posix())
    leading = [name for name in LEADING_ENTRIES if name in members]
    return leading + sorted(name for name in members if name not in LEADING_ENTRIES)


def write_tar(staging_dir: str | Path, fileobj) -> None:
    """Stream the staging tree as a tar with normalized metadata.

    mtimes, owners and modes are fixed and entries are ordered, so the same
    tree always produces the same bytes.
    """
    staging_dir = Path(staging_dir)
    with tarfile.open(fileobj=fileobj, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for name in archive_members(staging_dir):
            path = staging_dir / name
            info = tarfile.TarInfo(name)
            info.mtime = ARCHIVE_MTIME
            info.uid = info.gid = 0
            info.uname = info.gname = ""
            if path.is_dir():
                info.type = tarfile.DIRTYPE
                info.mode = ARCHIVE_EXEC_MODE
                tar.addfile(info)
                continue
            info.size = path.stat().st_size
            info.mode = ARCHIVE_FILE_MODE
            with open(path, "rb") as f:
                tar.addfile(info, f)


def write_archive(staging_dir: str | Path, output: str | Path) -> Path:
    with atomic_output(output) as tmp:
        with open(tmp, "wb") as f:
            write_tar(staging_dir, f)
    log.info("Wrote archive %s", output)
    return Path(output)


def write_self_extracting(
    staging_dir: str | Path,
    output: str | Path,
    executable: str | Path,
    platform: str,
) -> Path:
    """Embed the archive and an unpacker binary in a platform wrapper script"""
    buffer = io.BytesIO()
    write_tar(staging_dir, buffer)
    header, sentinels = render_header(str(platform))
    newline = "\r\n" if str(platform).startswith("win") else "\n"
    data = encode_self_extracting(
        header, buffer.getvalue(), Path(executable).read_bytes(), sentinels, newline=newline
    )
    with atomic_output(output) as tmp:
        tmp.write_bytes(data)
        tmp.chmod(ARCHIVE_EXEC_MODE)
    log.info("Wrote self-extracting pack %s", output)
    return Path(output)


def check_output_directory(output: str | Path, force: bool = False) -> None:
    output = Path(output)
    if output.exists() and (not output.is_dir() or not is_dir_empty(output)):
        if not force:
            raise PreconditionFailed(output)


def write_directory(staging_dir: str | Path, output: str | Path, force: bool = False) -> Path:
    """Copy the staged pack next to `output` and move it into place once complete"""
    output = Path(output)
    check_output_directory(output, force)
    ensure_dir(output.parent)
    tmp = Path(tempfile.mkdtemp(prefix=f".{output.name}.", suffix=".partial", dir=output.parent))
    try:
        shutil.copytree(staging_dir, tmp, dirs_exist_ok=True)
        if output.is_dir() and not output.is_symlink():
            if not is_dir_empty(output):
                log.warning("Replacing existing directory %s", output)
            shutil.rmtree(output)
        elif output.exists() or output.is_symlink():
            output.unlink()
        os.replace(tmp, output)
    except BaseException:
        shutil.rmtree(tmp, ignore_errors=True)
        raise
    log.info("Wrote pack directory %s", output)
    return output
