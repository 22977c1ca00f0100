import os
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from envpack._src.constants import ENVPACK_VERSION, FORMAT_VERSION


def created_at_from_env() -> Optional[str]:
    """Clock-independent creation time: honour SOURCE_DATE_EPOCH or leave it unset"""
    epoch = os.environ.get("SOURCE_DATE_EPOCH")
    if not epoch:
        return None
    return datetime.fromtimestamp(int(epoch), timezone.utc).isoformat()


class PackageIdentity(BaseModel):
    subdir: str
    filename: str
    name: str
    version: str
    build: str


class PackManifest(BaseModel):
    """The `envpack.json` record at the root of every archive"""
    model_config = ConfigDict(extra="ignore")

    format_version: str = str(FORMAT_VERSION)
    envpack_version: Optional[str] = ENVPACK_VERSION
    environment_name: str
    source_platform: str
    created_at: Optional[str] = None
    packages: List[PackageIdentity] = Field(default=[])
    pypi_packages: List[str] = Field(default=[])
