import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from envpack._src.utils import copy_atomic, ensure_dir, hash_file


log = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    subdir: str
    filename: str
    sha256: str
    path: Path


class CacheStore():
    def __init__(self, root: str | Path):
        """CacheStore keeps verified package files between pack runs.

        Entries live at `<root>/<subdir>/<filename>`. They are only ever
        added or replaced, never evicted, and every write goes through a
        temporary file that is renamed into place, so a reader never sees
        a partial entry.

        Parameters
        ----------
        root: str | Path
            The cache directory, created if it does not exist
        """
        self.root = ensure_dir(Path(root).expanduser().resolve())

    def path_for(self, subdir: str, filename: str) -> Path:
        return self.root / subdir / filename

    def get(self, subdir: str, filename: str, sha256: Optional[str] = None) -> Optional[CacheEntry]:
        """Return the cached entry, or None when it is missing or stale.

        When `sha256` is given the file is re-hashed; a different hash for
        the same (subdir, filename) is reported and treated as a miss so the
        caller refetches and replaces it.
        """
        path = self.path_for(subdir, filename)
        if not path.is_file():
            return None

        actual = hash_file(path)
        if sha256 is not None and actual != sha256.lower():
            log.warning(
                "Cache integrity error for %s/%s: expected sha256 %s, found %s; refetching",
                subdir, filename, sha256, actual,
            )
            return None

        log.debug("Cache hit for %s/%s", subdir, filename)
        return CacheEntry(subdir=subdir, filename=filename, sha256=actual, path=path)

    def put(self, subdir: str, filename: str, source: str | Path) -> CacheEntry:
        """Copy a verified file into the cache"""
        path = copy_atomic(source, self.path_for(subdir, filename))
        log.debug("Cached %s/%s", subdir, filename)
        return CacheEntry(subdir=subdir, filename=filename, sha256=hash_file(path), path=path)
