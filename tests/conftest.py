import hashlib
import io
import json
import logging
import tarfile
import zipfile
from pathlib import Path

import pytest
import yaml

from envpack._src.config import current_platform


def _add_bytes(tar, name, data, mode=0o644):
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    tar.addfile(info, io.BytesIO(data))


def build_conda_package(
    directory,
    name,
    version="1.0",
    build="0",
    subdir=None,
    depends=(),
    constrains=(),
    files=None,
    noarch=None,
    build_number=0,
):
    """Write a minimal `.tar.bz2` conda package and return its path.

    `files` maps a relative path to its bytes, or to a (bytes, placeholder,
    file_mode) tuple for files that need prefix replacement.
    """
    subdir = subdir or current_platform()
    files = files if files is not None else {f"share/{name}/README": f"{name} {version}\n".encode()}
    index = {
        "name": name,
        "version": version,
        "build": build,
        "build_number": build_number,
        "subdir": subdir,
        "depends": list(depends),
        "constrains": list(constrains),
    }
    if noarch:
        index["noarch"] = noarch

    paths = []
    for path, content in sorted(files.items()):
        entry = {"_path": path, "path_type": "hardlink"}
        if isinstance(content, tuple):
            content, placeholder, file_mode = content
            entry.update(prefix_placeholder=placeholder, file_mode=file_mode)
        entry["sha256"] = hashlib.sha256(content).hexdigest()
        entry["size_in_bytes"] = len(content)
        paths.append(entry)

    target = Path(directory) / subdir / f"{name}-{version}-{build}.tar.bz2"
    target.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(target, "w:bz2") as tar:
        _add_bytes(tar, "info/index.json", json.dumps(index).encode())
        _add_bytes(tar, "info/paths.json", json.dumps({"paths": paths, "paths_version": 1}).encode())
        for path, content in sorted(files.items()):
            if isinstance(content, tuple):
                content = content[0]
            _add_bytes(tar, path, content)
    return target


def build_wheel(directory, name, version="1.0"):
    target = Path(directory) / f"{name}-{version}-py3-none-any.whl"
    target.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(target, "w") as whl:
        whl.writestr(f"{name}/__init__.py", "")
        whl.writestr(f"{name}-{version}.dist-info/METADATA", f"Name: {name}\nVersion: {version}\n")
    return target


def sha256(path):
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


def read_index(path):
    with tarfile.open(path, "r:bz2") as tar:
        return json.load(tar.extractfile("info/index.json"))


def write_lockfile(path, conda=(), pypi=(), platform=None, environment="default", extra_records=None):
    """Write a format 6 pixi.lock referencing local package files"""
    platform = platform or current_platform()
    path = Path(path)
    refs, packages = [], []
    for pkg in conda:
        location = Path(pkg).as_uri()
        refs.append({"conda": location})
        index = read_index(pkg)
        record = {"conda": location, "sha256": sha256(pkg)}
        record.update(
            (key, index[key]) for key in ("name", "version", "build", "build_number", "subdir", "depends", "constrains")
            if index.get(key)
        )
        record.update((extra_records or {}).get(Path(pkg).name, {}))
        packages.append(record)
    for whl in pypi:
        location = Path(whl).as_uri()
        refs.append({"pypi": location})
        name, version = Path(whl).name.split("-")[:2]
        packages.append({"pypi": location, "name": name, "version": version, "sha256": sha256(whl)})

    lock = {
        "version": 6,
        "environments": {
            environment: {
                "channels": [{"url": "https://conda.anaconda.org/conda-forge/"}],
                "packages": {platform: refs},
            }
        },
        "packages": packages,
    }
    path.write_text(yaml.safe_dump(lock, sort_keys=False))
    return path


@pytest.fixture
def platform():
    return current_platform()


@pytest.fixture
def package_dir(tmp_path):
    return tmp_path / "packages"


@pytest.fixture
def simple_lock(tmp_path, package_dir):
    """A lockfile for a small environment: libfoo <- foo <- app"""
    libfoo = build_conda_package(package_dir, "libfoo", "1.2.0")
    foo = build_conda_package(package_dir, "foo", "2.0.1", depends=["libfoo >=1.2,<2"])
    app = build_conda_package(
        package_dir, "app", "0.3", depends=["foo >=2"],
        files={"bin/app": b"#!/bin/sh\necho app\n"},
    )
    return write_lockfile(tmp_path / "pixi.lock", conda=[libfoo, foo, app])


@pytest.fixture(autouse=True)
def reset_envpack_logger():
    yield
    logger = logging.getLogger("envpack")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture(autouse=True)
def no_source_date_epoch(monkeypatch):
    monkeypatch.delenv("SOURCE_DATE_EPOCH", raising=False)


@pytest.fixture
def make_package(package_dir):
    def factory(name, version="1.0", **kwargs):
        return build_conda_package(package_dir, name, version, **kwargs)
    return factory


@pytest.fixture
def make_wheel(package_dir):
    def factory(name, version="1.0"):
        return build_wheel(package_dir / "wheels", name, version)
    return factory
