import base64
import logging
from typing import NamedTuple, Optional

from envpack._src.constants import (
    POSIX_ARCHIVE_SENTINEL,
    POSIX_HEADER_SENTINEL,
    POWERSHELL_ARCHIVE_SENTINEL,
    POWERSHELL_HEADER_SENTINEL,
)


log = logging.getLogger(__name__)


class Sentinels(NamedTuple):
    header: str
    archive: str


POSIX_SENTINELS = Sentinels(POSIX_HEADER_SENTINEL, POSIX_ARCHIVE_SENTINEL)
POWERSHELL_SENTINELS = Sentinels(POWERSHELL_HEADER_SENTINEL, POWERSHELL_ARCHIVE_SENTINEL)


class SelfExtractingPayload(NamedTuple):
    archive: bytes
    executable: bytes
    sentinels: Sentinels


def encode_self_extracting(
    header: str,
    archive: bytes,
    executable: bytes,
    sentinels: Sentinels = POSIX_SENTINELS,
    newline: str = "\n",
) -> bytes:
    """Join a wrapper script, the tar stream and the unpacker binary.

    Layout: header lines, the header sentinel line, the base64 archive,
    the archive sentinel line, the base64 executable.
    """
    for line in header.splitlines():
        if line in sentinels:
            raise ValueError(f"header contains the sentinel line `{line}`")

    nl = newline.encode()
    parts = [
        header.rstrip("\r\n").replace("\r\n", "\n").replace("\n", newline).encode(),
        sentinels.header.encode(),
        _b64(archive, nl),
        sentinels.archive.encode(),
        _b64(executable, nl),
    ]
    return nl.join(parts) + nl


def decode_self_extracting(data: bytes) -> Optional[SelfExtractingPayload]:
    """Locate the sentinel lines by exact match and decode the two segments.

    CRLF and LF line endings are both accepted. Returns None when `data` is
    not a self-extracting script.
    """
    lines = data.splitlines()
    for sentinels in (POSIX_SENTINELS, POWERSHELL_SENTINELS):
        header_sentinel = sentinels.header.encode()
        archive_sentinel = sentinels.archive.encode()
        try:
            begin = lines.index(header_sentinel)
            end = lines.index(archive_sentinel, begin + 1)
        except ValueError:
            continue
        log.debug("Found sentinels %s at lines %d and %d", sentinels, begin + 1, end + 1)
        archive = base64.b64decode(b"".join(lines[begin + 1:end]))
        executable = base64.b64decode(b"".join(lines[end + 1:]))
        return SelfExtractingPayload(archive, executable, sentinels)
    return None


def _b64(data: bytes, newline: bytes) -> bytes:
    return base64.encodebytes(data).rstrip(b"\n").replace(b"\n", newline)
