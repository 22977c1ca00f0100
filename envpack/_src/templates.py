# Wrapper scripts for self-extracting packs. Each template only has to find
# the sentinel lines in its own file, base64-decode what sits between them
# and hand the archive to the embedded unpacker.
from string import Template

from envpack._src.sfx import POSIX_SENTINELS, POWERSHELL_SENTINELS, Sentinels


class _ScriptTemplate(Template):
    delimiter = "%%"


POSIX_HEADER = _ScriptTemplate("""\
#!/usr/bin/env bash

set -euo pipefail
TEMPDIR="$(mktemp -d)"
trap 'rm -rf "$TEMPDIR"' EXIT
USAGE="
Usage: $0 [OPTIONS]

Unpack the environment packed into this script.

Options:
  -o, --output-directory <DIR>    Where to unpack the environment [default: .]
  -e, --env-name <NAME>           Name of the environment directory [default: env]
  -s, --shell <SHELL>             Shell of the activation script
  -i, --installer <NAME>          native, conda or micromamba [default: native]
  -f, --force                     Overwrite an existing environment directory
  -v, --verbose                   Increase logging verbosity
  -q, --quiet                     Decrease logging verbosity
  -h, --help                      Print help
"

for arg in "$@"; do
  if [ "$arg" = "-h" ] || [ "$arg" = "--help" ]; then
    echo "$USAGE"
    exit 0
  fi
done

archive_begin=$(grep -anm 1 "^%%header_sentinel" "$0" | cut -d: -f1)
archive_end=$(grep -anm 1 "^%%archive_sentinel" "$0" | cut -d: -f1)

if [ -z "$archive_begin" ] || [ -z "$archive_end" ]; then
  echo "ERROR: Markers %%header_sentinel or %%archive_sentinel not found." >&2
  exit 1
fi

echo "Unpacking payload ..." >&2
sed -n "$((archive_begin + 1)),$((archive_end - 1))p" "$0" | tr -d '\\r' | base64 -d > "$TEMPDIR/archive.tar"
tail -n +"$((archive_end + 1))" "$0" | tr -d '\\r' | base64 -d > "$TEMPDIR/%%executable_name"
chmod +x "$TEMPDIR/%%executable_name"

"$TEMPDIR/%%executable_name" unpack "$@" "$TEMPDIR/archive.tar"
exit $?
""")

POWERSHELL_HEADER = _ScriptTemplate("""\
param(
    [string]$OutputDirectory = (Get-Location).Path,
    [string]$EnvName = "env",
    [string]$Shell = "powershell",
    [string]$Installer = "native",
    [switch]$Force,
    [switch]$Help
)

$ErrorActionPreference = "Stop"

if ($Help) {
    Write-Output "Usage: $($MyInvocation.MyCommand.Name) [-OutputDirectory <DIR>] [-EnvName <NAME>] [-Shell <SHELL>] [-Installer <NAME>] [-Force]"
    exit 0
}

$TempDir = Join-Path ([System.IO.Path]::GetTempPath()) ([System.Guid]::NewGuid().ToString())
New-Item -ItemType Directory -Path $TempDir | Out-Null

$Lines = [System.IO.File]::ReadAllLines($MyInvocation.MyCommand.Path)
$HeaderLine = [Array]::IndexOf($Lines, "%%header_sentinel")
$ArchiveLine = [Array]::IndexOf($Lines, "%%archive_sentinel")
if ($HeaderLine -lt 0 -or $ArchiveLine -lt 0) {
    Write-Error "Markers %%header_sentinel or %%archive_sentinel not found."
    exit 1
}

Write-Output "Unpacking payload ..."
$ArchiveText = $Lines[($HeaderLine + 1)..($ArchiveLine - 1)] -join ""
$ExecutableText = $Lines[($ArchiveLine + 1)..($Lines.Length - 1)] -join ""
$ArchivePath = Join-Path $TempDir "archive.tar"
$ExecutablePath = Join-Path $TempDir "%%executable_name.exe"
[System.IO.File]::WriteAllBytes($ArchivePath, [System.Convert]::FromBase64String($ArchiveText))
[System.IO.File]::WriteAllBytes($ExecutablePath, [System.Convert]::FromBase64String($ExecutableText))

$Arguments = @("unpack", "--output-directory", $OutputDirectory, "--env-name", $EnvName, "--shell", $Shell, "--installer", $Installer)
if ($Force) { $Arguments += "--force" }
$Arguments += $ArchivePath

& $ExecutablePath @Arguments
$ExitCode = $LASTEXITCODE
Remove-Item -Recurse -Force $TempDir
exit $ExitCode
""")


def render_header(target_platform: str, executable_name: str = "envpack") -> tuple[str, Sentinels]:
    """Return the wrapper text and the sentinels it expects for a target platform"""
    if target_platform.startswith("win"):
        template, sentinels = POWERSHELL_HEADER, POWERSHELL_SENTINELS
    else:
        template, sentinels = POSIX_HEADER, POSIX_SENTINELS
    header = template.substitute(
        header_sentinel=sentinels.header,
        archive_sentinel=sentinels.archive,
        executable_name=executable_name,
    )
    return header, sentinels
