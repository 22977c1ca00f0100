import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from pydantic import BaseModel, Field

from envpack._src.conda_package import read_index_json
from envpack._src.constants import REPODATA_FILE_NAME
from envpack._src.exceptions import InvalidArchive
from envpack._src.models.package import CondaPackage
from envpack._src.utils import ensure_dir, hash_file


log = logging.getLogger(__name__)


class ChannelIndex(BaseModel):
    """subdir -> filename -> repodata record, for a directory used as a channel"""
    subdirs: Dict[str, Dict[str, Dict[str, Any]]] = Field(default={})

    def filenames(self) -> List[Tuple[str, str]]:
        return [
            (subdir, filename)
            for subdir in sorted(self.subdirs)
            for filename in sorted(self.subdirs[subdir])
        ]

    def to_repodata(self, subdir: str) -> Dict[str, Any]:
        records = self.subdirs.get(subdir, {})
        return {
            "info": {"subdir": subdir},
            "packages": {fn: records[fn] for fn in sorted(records) if fn.endswith(".tar.bz2")},
            "packages.conda": {fn: records[fn] for fn in sorted(records) if fn.endswith(".conda")},
            "removed": [],
            "repodata_version": 1,
        }


def build_channel_index(channel_dir: str | Path, packages: Iterable[CondaPackage]) -> ChannelIndex:
    """Index the package files below `channel_dir`.

    Each record starts from the archive's own `info/index.json` and is
    overlaid with the lockfile record, so repodata patches survive.
    """
    channel_dir = Path(channel_dir)
    index = ChannelIndex(subdirs={"noarch": {}})
    for pkg in packages:
        path = channel_dir / pkg.subdir / pkg.filename
        record = read_index_json(path)
        record.update(pkg.record)
        record.update(
            subdir=pkg.subdir,
            sha256=hash_file(path, "sha256"),
            md5=hash_file(path, "md5"),
            size=path.stat().st_size,
        )
        index.subdirs.setdefault(pkg.subdir, {})[pkg.filename] = record
    return index


def write_channel_index(index: ChannelIndex, channel_dir: str | Path) -> List[Path]:
    written = []
    for subdir in sorted(index.subdirs):
        path = ensure_dir(Path(channel_dir) / subdir) / REPODATA_FILE_NAME
        path.write_text(dumps(index.to_repodata(subdir)))
        log.debug("Wrote %s (%d packages)", path, len(index.subdirs[subdir]))
        written.append(path)
    return written


def read_channel_index(channel_dir: str | Path) -> ChannelIndex:
    channel_dir = Path(channel_dir)
    index = ChannelIndex()
    if not channel_dir.is_dir():
        raise InvalidArchive(channel_dir, "channel directory is missing")
    for repodata_path in sorted(channel_dir.glob(f"*/{REPODATA_FILE_NAME}")):
        try:
            repodata = json.loads(repodata_path.read_text())
        except ValueError as e:
            raise InvalidArchive(repodata_path, e)
        records = {**repodata.get("packages", {}), **repodata.get("packages.conda", {})}
        index.subdirs[repodata_path.parent.name] = records
    return index


def dumps(data: Any) -> str:
    return json.dumps(data, indent=2, sort_keys=True) + "\n"
