import hashlib
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from envpack._src.constants import CONDA_PACKAGE_EXTENSIONS


CHUNK_SIZE = 1 << 16


def hash_file(path: str | Path, algorithm: str = "sha256") -> str:
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def ensure_dir(s: str | Path) -> Path:
    """Recursively create a directory if it does not exist"""
    path = Path(s)
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_url(location: str) -> bool:
    return urlparse(location).scheme in ("http", "https", "file", "s3")


def url_to_path(url: str) -> Path:
    """Convert a file:// url into a local path"""
    parsed = urlparse(url)
    return Path(url2pathname(unquote(parsed.path)))


def filename_from_location(location: str) -> str:
    """Return the last path component of a url or a local path"""
    if is_url(location):
        return unquote(urlparse(location).path.rstrip("/").split("/")[-1])
    return Path(location).name


def split_conda_filename(filename: str) -> tuple[str, str, str]:
    """Split `<name>-<version>-<build>.<ext>` into its three parts.

    Package names may contain dashes, version and build strings may not.
    """
    for ext in CONDA_PACKAGE_EXTENSIONS:
        if filename.endswith(ext):
            stem = filename[: -len(ext)]
            break
    else:
        raise ValueError(f"not a conda package filename: {filename}")
    name, version, build = stem.rsplit("-", 2)
    return name, version, build


def is_conda_package(filename: str) -> bool:
    return filename.endswith(CONDA_PACKAGE_EXTENSIONS)


@contextmanager
def atomic_output(target: str | Path, suffix: str = ".partial"):
    """Yield a temporary path next to `target` and move it into place on success.

    The temporary file is removed when the body raises, so `target` is never
    observed half-written.
    """
    target = Path(target)
    ensure_dir(target.parent)
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", suffix=suffix, dir=target.parent)
    os.close(fd)
    tmp = Path(tmp)
    try:
        yield tmp
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def copy_atomic(src: str | Path, target: str | Path) -> Path:
    with atomic_output(target) as tmp:
        shutil.copyfile(src, tmp)
    return Path(target)


def is_dir_empty(path: str | Path) -> bool:
    return not any(Path(path).iterdir())
