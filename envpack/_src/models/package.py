from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from rattler import PackageRecord

from envpack._src.constants import PYPI_DIRECTORY_NAME
from envpack._src.utils import filename_from_location


class CondaPackage(BaseModel):
    """A conda package that travels in the pack.

    `location` is either a url or a local path. `record` keeps the remaining
    repodata fields from the lockfile so the generated channel index carries
    any upstream repodata patches.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    build: str
    build_number: int = 0
    subdir: str
    location: str
    sha256: Optional[str] = None
    md5: Optional[str] = None
    depends: Tuple[str, ...] = ()
    constrains: Tuple[str, ...] = ()
    record: Dict[str, Any] = Field(default={})

    def __str__(self):
        return f"conda: {self.name} - {self.version} - {self.build}"

    @property
    def filename(self) -> str:
        return filename_from_location(self.location)

    @property
    def dist_name(self) -> str:
        return f"{self.name}-{self.version}-{self.build}"

    @property
    def cache_key(self) -> Tuple[str, str]:
        return (self.subdir, self.filename)

    def to_package_record(self) -> PackageRecord:
        """Converts the package into a rattler record that match specs can test."""
        return PackageRecord(
            name=self.name, version=self.version, build=self.build,
            build_number=self.build_number, subdir=self.subdir, arch=None,
            platform=None,
        )

    def to_identity(self) -> Dict[str, str]:
        return {
            "subdir": self.subdir,
            "filename": self.filename,
            "name": self.name,
            "version": self.version,
            "build": self.build,
        }


class PypiPackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    location: str
    sha256: Optional[str] = None
    md5: Optional[str] = None
    requires_dist: Tuple[str, ...] = ()

    def __str__(self):
        return f"pypi: {self.name} - {self.version}"

    @property
    def subdir(self) -> str:
        return PYPI_DIRECTORY_NAME

    @property
    def filename(self) -> str:
        return filename_from_location(self.location)

    @property
    def cache_key(self) -> Tuple[str, str]:
        return (self.subdir, self.filename)


LockedPackage = Union[CondaPackage, PypiPackage]


class ResolvedPackages(BaseModel):
    """The packages of one (environment, platform) pair, in lockfile order"""
    conda: List[CondaPackage] = Field(default=[])
    pypi: List[PypiPackage] = Field(default=[])

    def conda_names(self) -> Dict[str, CondaPackage]:
        return {pkg.name: pkg for pkg in self.conda}
