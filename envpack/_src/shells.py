import shlex
from typing import Dict, List, Type

from envpack._src.exceptions import UnsupportedShell


class Shell():
    """Syntax of one target shell for the generated activation script"""
    name: str
    extension: str
    # extension of the activate.d / deactivate.d scripts this shell sources
    script_extension: str
    pathsep: str = ":"

    def export(self, key: str, value: str) -> str:
        raise NotImplementedError

    def prepend_path(self, entries: List[str]) -> str:
        raise NotImplementedError

    def source(self, path: str) -> str:
        raise NotImplementedError

    def comment(self, text: str) -> str:
        return f"# {text}"


class PosixShell(Shell):
    name = "sh"
    extension = "sh"
    script_extension = ".sh"

    def export(self, key, value):
        return f"export {key}={shlex.quote(value)}"

    def prepend_path(self, entries):
        return f'export PATH={shlex.quote(self.pathsep.join(entries))}"${{PATH:+:${{PATH}}}}"'

    def source(self, path):
        return f". {shlex.quote(path)}"


class FishShell(Shell):
    name = "fish"
    extension = "fish"
    script_extension = ".fish"

    def export(self, key, value):
        return f"set -gx {key} {_single_quote(value)}"

    def prepend_path(self, entries):
        return "set -gx PATH " + " ".join(_single_quote(entry) for entry in entries) + " $PATH"

    def source(self, path):
        return f"source {_single_quote(path)}"


class CshShell(Shell):
    name = "csh"
    extension = "csh"
    script_extension = ".csh"

    def export(self, key, value):
        return f'setenv {key} "{value}"'

    def prepend_path(self, entries):
        return f'setenv PATH "{self.pathsep.join(entries)}:$PATH"'

    def source(self, path):
        return f'source "{path}"'


class XonshShell(Shell):
    name = "xonsh"
    extension = "xsh"
    script_extension = ".xsh"

    def export(self, key, value):
        return f"${key} = {value!r}"

    def prepend_path(self, entries):
        return "\n".join(f"$PATH.insert(0, {entry!r})" for entry in reversed(entries))

    def source(self, path):
        return f"source {path!r}"


class PowerShell(Shell):
    name = "powershell"
    extension = "ps1"
    script_extension = ".ps1"

    def export(self, key, value):
        return f"$Env:{key} = {_ps_quote(value)}"

    def prepend_path(self, entries):
        joined = " + [IO.Path]::PathSeparator + ".join(_ps_quote(entry) for entry in entries)
        return f"$Env:PATH = {joined} + [IO.Path]::PathSeparator + $Env:PATH"

    def source(self, path):
        return f". {_ps_quote(path)}"


class CmdExeShell(Shell):
    name = "cmd"
    extension = "bat"
    script_extension = ".bat"
    pathsep = ";"

    def export(self, key, value):
        return f'@SET "{key}={value}"'

    def prepend_path(self, entries):
        return f'@SET "PATH={self.pathsep.join(entries)};%PATH%"'

    def source(self, path):
        return f'@CALL "{path}"'

    def comment(self, text):
        return f"@REM {text}"


SHELLS: Dict[str, Type[Shell]] = {
    "sh": PosixShell,
    "bash": PosixShell,
    "zsh": PosixShell,
    "dash": PosixShell,
    "fish": FishShell,
    "csh": CshShell,
    "tcsh": CshShell,
    "xonsh": XonshShell,
    "powershell": PowerShell,
    "pwsh": PowerShell,
    "cmd": CmdExeShell,
}


def get_shell(name: str) -> Shell:
    try:
        return SHELLS[name.lower()]()
    except KeyError:
        raise UnsupportedShell(name, sorted(SHELLS))


def _single_quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
