import json
import logging
import tarfile
from contextlib import closing
from pathlib import Path
from typing import Any, Dict

from conda_package_streaming.package_streaming import stream_conda_info

from envpack._src.exceptions import InvalidPackageFile
from envpack._src.utils import is_conda_package


log = logging.getLogger(__name__)

INDEX_JSON = "info/index.json"


def read_index_json(path: str | Path) -> Dict[str, Any]:
    """Read `info/index.json` from a `.conda` or `.tar.bz2` archive"""
    path = Path(path)
    if not is_conda_package(path.name):
        raise InvalidPackageFile(path, "expected a .conda or .tar.bz2 file")

    try:
        with open(path, "rb") as fileobj, closing(stream_conda_info(str(path), fileobj)) as members:
            for tar, member in members:
                if member.name == INDEX_JSON:
                    return json.load(tar.extractfile(member))
    except (OSError, ValueError, KeyError, EOFError, tarfile.TarError) as e:
        raise InvalidPackageFile(path, e)
    raise InvalidPackageFile(path, f"{INDEX_JSON} not found")
