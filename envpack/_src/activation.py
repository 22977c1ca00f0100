import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from envpack._src.constants import (
    ACTIVATE_DIR,
    DEACTIVATE_DIR,
    PACKAGE_ENV_VARS_DIR,
    PREFIX_STATE_FILE,
)
from envpack._src.shells import Shell, get_shell
from envpack._src.utils import atomic_output


log = logging.getLogger(__name__)

DEACTIVATE_SCRIPTS_VAR = "ENVPACK_DEACTIVATE_SCRIPTS"


class ActivationFragment(BaseModel):
    """Ordered variable assignments contributed by one source"""
    source: str
    variables: List[Tuple[str, Optional[str]]] = Field(default=[])


class ActivationScript(BaseModel):
    prefix: Path
    shell: str
    extension: str
    script: str
    variables: Dict[str, str] = Field(default={})
    activate_scripts: List[Path] = Field(default=[])
    deactivate_scripts: List[Path] = Field(default=[])
    warnings: List[str] = Field(default=[])

    def write(self, directory: str | Path) -> Path:
        target = Path(directory) / f"activate.{self.extension}"
        with atomic_output(target) as tmp:
            tmp.write_text(self.script)
        log.info("Wrote activation script %s", target)
        return target


def executable_dirs(prefix: Path, windows: bool = sys.platform == "win32") -> List[str]:
    if windows:
        return [
            str(prefix),
            str(prefix / "Library" / "mingw-w64" / "bin"),
            str(prefix / "Library" / "usr" / "bin"),
            str(prefix / "Library" / "bin"),
            str(prefix / "Scripts"),
            str(prefix / "bin"),
        ]
    return [str(prefix / "bin")]


def synthesize_activation(prefix: str | Path, shell: str) -> ActivationScript:
    """Build one activation script for an installed prefix.

    Sources, in order, each may shadow the ones before with a warning:
    PATH and CONDA_PREFIX, activate.d scripts, deactivate.d scripts,
    env_vars.d files, and the prefix state file.
    """
    sh = get_shell(shell)
    prefix = Path(prefix).resolve()
    warnings: List[str] = []

    def warn(msg, *args):
        text = msg % args
        log.warning("%s", text)
        warnings.append(text)

    lines = [sh.comment(f"activation script for {prefix}")]

    lines.append(sh.prepend_path(executable_dirs(prefix)))
    lines.append(sh.export("CONDA_PREFIX", str(prefix)))
    assigned = {"CONDA_PREFIX": (str(prefix), "the prefix"), "PATH": (None, "the prefix")}

    activate_scripts = list_scripts(prefix / ACTIVATE_DIR, sh)
    lines.extend(sh.source(str(script)) for script in activate_scripts)

    deactivate_scripts = list_scripts(prefix / DEACTIVATE_DIR, sh)
    if deactivate_scripts:
        lines.append(sh.export(
            DEACTIVATE_SCRIPTS_VAR, sh.pathsep.join(str(script) for script in deactivate_scripts)
        ))

    variables: Dict[str, str] = {}
    for fragment in package_env_vars(prefix, warn):
        for key, value in fragment.variables:
            if key in assigned and assigned[key][0] != value:
                warn("`%s` set by %s shadows the value from %s", key, fragment.source, assigned[key][1])
            variables[key] = value
            assigned[key] = (value, fragment.source)

    state = prefix_state_env_vars(prefix, warn)
    if state is not None:
        for key, value in state.variables:
            if value is None or value == "":
                warn("`%s` in %s has no value, not exporting it", key, state.source)
                continue
            if key in assigned and assigned[key][0] != value:
                warn(
                    "duplicate env var `%s`: %s overrides the value from %s",
                    key, state.source, assigned[key][1],
                )
            variables[key] = value
            assigned[key] = (value, state.source)

    lines.extend(sh.export(key, value) for key, value in variables.items())

    return ActivationScript(
        prefix=prefix,
        shell=sh.name,
        extension=sh.extension,
        script="\n".join(lines) + "\n",
        variables=variables,
        activate_scripts=activate_scripts,
        deactivate_scripts=deactivate_scripts,
        warnings=warnings,
    )


def list_scripts(directory: Path, sh: Shell) -> List[Path]:
    if not directory.is_dir():
        return []
    return sorted(
        (path for path in directory.iterdir() if path.is_file() and path.name.endswith(sh.script_extension)),
        key=lambda path: path.name,
    )


def package_env_vars(prefix: Path, warn) -> List[ActivationFragment]:
    directory = prefix / PACKAGE_ENV_VARS_DIR
    if not directory.is_dir():
        return []

    fragments = []
    for path in sorted((p for p in directory.iterdir() if p.is_file()), key=lambda p: p.name):
        source = f"{PACKAGE_ENV_VARS_DIR}/{path.name}"
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            warn("Skipping malformed env vars file %s: %s", source, e)
            continue
        if not isinstance(data, dict) or not all(
            isinstance(key, str) and isinstance(value, str) for key, value in data.items()
        ):
            warn("Skipping malformed env vars file %s: expected a mapping of strings", source)
            continue
        fragments.append(ActivationFragment(source=source, variables=list(data.items())))
    return fragments


def prefix_state_env_vars(prefix: Path, warn) -> Optional[ActivationFragment]:
    path = prefix / PREFIX_STATE_FILE
    if not path.is_file():
        return None
    try:
        state = json.loads(path.read_text())
        env_vars = state.get("env_vars", {})
        if not isinstance(env_vars, dict):
            raise ValueError("`env_vars` is not a mapping")
    except (OSError, ValueError, AttributeError) as e:
        warn("Skipping malformed state file %s: %s", PREFIX_STATE_FILE, e)
        return None
    variables = [
        (str(key), None if value is None else str(value))
        for key, value in env_vars.items()
    ]
    return ActivationFragment(source=PREFIX_STATE_FILE, variables=variables)
