from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from envpack._src.exceptions import ResolutionError


class LockChannel(BaseModel):
    url: str


class LockPackageRef(BaseModel):
    """A reference from an environment to a record in `packages`"""
    model_config = ConfigDict(extra="allow")

    conda: Optional[str] = None
    pypi: Optional[str] = None
    # pypi only, e.g. `{pypi: <url>, extras: [socks]}`
    extras: List[str] = Field(default=[])


class LockEnvironment(BaseModel):
    """One named environment of a pixi lockfile"""
    model_config = ConfigDict(extra="allow")

    channels: List[LockChannel] = Field(default=[])
    indexes: Optional[List[str]] = None
    packages: Dict[str, List[LockPackageRef]] = Field(default={})


class LockPackageEntry(BaseModel):
    """A package record from the top-level `packages` list.

    Format 6 keys the record on `conda:`/`pypi:`, older formats use
    `kind:` + `url:`. Everything else is optional because format 6 leaves
    out what can be derived from the filename.
    """
    model_config = ConfigDict(extra="allow")

    kind: Optional[str] = None
    conda: Optional[str] = None
    pypi: Optional[str] = None
    url: Optional[str] = None
    path: Optional[str] = None

    name: Optional[str] = None
    version: Optional[str] = None
    build: Optional[str] = None
    build_number: Optional[int] = None
    subdir: Optional[str] = None
    noarch: Optional[Any] = None
    sha256: Optional[str] = None
    md5: Optional[str] = None
    size: Optional[int] = None
    depends: List[str] = Field(default=[])
    constrains: List[str] = Field(default=[])
    requires_dist: List[str] = Field(default=[])
    license: Optional[str] = None
    license_family: Optional[str] = None
    timestamp: Optional[int] = None
    features: Optional[str] = None
    track_features: Optional[Any] = None

    @property
    def manager(self) -> str:
        if self.conda is not None:
            return "conda"
        if self.pypi is not None:
            return "pypi"
        return self.kind or "conda"

    @property
    def location(self) -> str:
        return self.conda or self.pypi or self.url or self.path or ""


class PixiLockFile(BaseModel):
    """A parsed `pixi.lock`"""
    model_config = ConfigDict(extra="allow")

    version: int
    environments: Dict[str, LockEnvironment] = Field(default={})
    packages: List[LockPackageEntry] = Field(default=[])

    # directory relative package paths resolve against
    _root: Path = PrivateAttr(default_factory=Path.cwd)

    @classmethod
    def from_path(cls, path: str | Path) -> "PixiLockFile":
        path = Path(path)
        if path.is_dir():
            path = path / "pixi.lock"
        try:
            with open(path, "r") as file:
                raw_lock = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ResolutionError(f"`{path}` is not valid YAML: {e}")
        if not isinstance(raw_lock, dict):
            raise ResolutionError(f"`{path}` is not a pixi lockfile")
        return cls.from_dict(raw_lock, root=path.parent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], root: str | Path | None = None) -> "PixiLockFile":
        try:
            lock = cls.model_validate(data)
        except ValidationError as e:
            raise ResolutionError(f"Invalid lockfile: {e}")
        if root is not None:
            lock._root = Path(root).resolve()
        return lock

    @property
    def root(self) -> Path:
        return self._root

    def find_package(self, manager: str, location: str) -> Optional[LockPackageEntry]:
        for entry in self.packages:
            if entry.manager == manager and entry.location == location:
                return entry
        return None
