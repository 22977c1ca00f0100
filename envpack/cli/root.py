from pathlib import Path
from typing import List, Optional

import rich
import typer
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from typing_extensions import Annotated

from envpack._src.activation import synthesize_activation
from envpack._src.config import PackOptions, UnpackOptions, current_platform
from envpack._src.constants import (
    DEFAULT_ENV_NAME,
    ENV_ENV_NAME,
    ENV_FORCE,
    ENV_INSTALLER,
    ENV_OUTPUT_DIRECTORY,
    ENV_SHELL,
    ENV_VERBOSE,
    ENVPACK_VERSION,
    InstallerBackend,
    OutputMode,
)
from envpack._src.exceptions import EnvpackError
from envpack._src.fetch import FetchConfig
from envpack._src.log import setup_logging
from envpack._src.pack import pack as pack_environment
from envpack._src.unpack import unpack as unpack_environment


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _fail(err: EnvpackError):
    rich.print(f"[bold red]error:[/bold red] {escape(err.msg)}")
    raise typer.Exit(code=1)


def _version_callback(value: bool):
    if value:
        print(f"envpack {ENVPACK_VERSION}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[bool, typer.Option(
        "--version", callback=_version_callback, is_eager=True,
        help="Print the version and exit",
    )] = False,
):
    """Pack locked conda environments into a single portable artifact"""


@app.command()
def pack(
    manifest_path: Annotated[Path, typer.Argument(
        help="path to pixi.lock or the directory containing it"
    )] = Path("."),
    environment: Annotated[str, typer.Option(
        "--environment", "-e", help="environment to pack"
    )] = "default",
    platform: Annotated[Optional[str], typer.Option(
        "--platform", "-p", help="platform to pack, defaults to the current one"
    )] = None,
    output_file: Annotated[Optional[Path], typer.Option(
        "--output-file", "-o", help="where to write the pack"
    )] = None,
    inject: Annotated[Optional[List[Path]], typer.Option(
        "--inject", "-i", help="extra .conda, .tar.bz2 or .whl file to add"
    )] = None,
    ignore_pypi_non_wheel: Annotated[bool, typer.Option(
        help="skip PyPI source distributions instead of failing"
    )] = False,
    create_executable: Annotated[bool, typer.Option(
        help="create a self-extracting script"
    )] = False,
    directory_only: Annotated[bool, typer.Option(
        help="write the pack as a directory instead of a tar"
    )] = False,
    unpack_executable: Annotated[Optional[str], typer.Option(
        help="path or url of the unpacker embedded in self-extracting scripts"
    )] = None,
    use_cache: Annotated[Optional[Path], typer.Option(
        help="cache directory for downloaded packages"
    )] = None,
    auth_file: Annotated[Optional[Path], typer.Option(
        help="authentication file for fetching packages"
    )] = None,
    max_workers: Annotated[int, typer.Option(
        help="number of concurrent downloads"
    )] = 8,
    force: Annotated[bool, typer.Option(
        "--force", "-f", help="overwrite an existing output directory",
    )] = False,
    verbose: Annotated[int, typer.Option("--verbose", "-v", count=True)] = 0,
    quiet: Annotated[int, typer.Option("--quiet", "-q", count=True)] = 0,
):
    """Pack a locked environment"""
    setup_logging(verbose - quiet)
    if create_executable and directory_only:
        rich.print("[bold red]error:[/bold red] --create-executable and --directory-only are exclusive")
        raise typer.Exit(code=2)

    mode = OutputMode.ARCHIVE
    if create_executable:
        mode = OutputMode.EXECUTABLE
    elif directory_only:
        mode = OutputMode.DIRECTORY

    try:
        options = PackOptions(
            lockfile=manifest_path,
            environment=environment,
            platform=platform or current_platform(),
            output_file=output_file,
            output_mode=mode,
            inject=inject or [],
            ignore_pypi_non_wheel=ignore_pypi_non_wheel,
            cache_dir=use_cache,
            unpack_executable=unpack_executable,
            fetch=FetchConfig(max_workers=max_workers, auth_file=auth_file),
            force=force,
        )
        with Progress(
            TextColumn("{task.description}"), BarColumn(), MofNCompleteColumn(), TimeElapsedColumn(),
            transient=True, disable=quiet > 0,
        ) as progress:
            task = progress.add_task("Fetching packages", total=None)
            output = pack_environment(
                options, progress_callback=lambda pkg: progress.advance(task)
            )
    except EnvpackError as e:
        _fail(e)
    rich.print(f"Packed environment [bold]{environment}[/bold] to {output}")


@app.command()
def unpack(
    pack_file: Annotated[Path, typer.Argument(help="pack file or self-extracting script")],
    output_directory: Annotated[Optional[Path], typer.Option(
        "--output-directory", "-o", envvar=ENV_OUTPUT_DIRECTORY,
        help="directory the environment is unpacked into",
    )] = None,
    env_name: Annotated[str, typer.Option(
        "--env-name", "-e", envvar=ENV_ENV_NAME, help="name of the environment directory",
    )] = DEFAULT_ENV_NAME,
    shell: Annotated[Optional[str], typer.Option(
        "--shell", "-s", envvar=ENV_SHELL, help="shell of the activation script",
    )] = None,
    installer: Annotated[InstallerBackend, typer.Option(
        "--installer", "-i", envvar=ENV_INSTALLER, help="installer backend",
    )] = InstallerBackend.NATIVE,
    force: Annotated[bool, typer.Option(
        "--force", "-f", envvar=ENV_FORCE, help="overwrite an existing environment directory",
    )] = False,
    no_activate: Annotated[bool, typer.Option(
        help="do not write an activation script"
    )] = False,
    verbose: Annotated[int, typer.Option("--verbose", "-v", count=True, envvar=ENV_VERBOSE)] = 0,
    quiet: Annotated[int, typer.Option("--quiet", "-q", count=True)] = 0,
):
    """Unpack a pack into an environment"""
    setup_logging(verbose - quiet)
    try:
        options = UnpackOptions.from_env(
            pack_file,
            output_directory=output_directory,
            env_name=env_name,
            shell=shell,
            installer=installer,
            force=force,
            verbosity=verbose - quiet,
            activate=not no_activate,
        )
        result = unpack_environment(options)
    except EnvpackError as e:
        _fail(e)
    rich.print(f"Unpacked {len(result.installed)} packages into {result.prefix}")
    if result.activation_script is not None:
        rich.print(f"Activate with: source {result.activation_script}")


@app.command()
def activate(
    prefix: Annotated[Path, typer.Argument(help="installed environment")],
    shell: Annotated[str, typer.Option("--shell", "-s", envvar=ENV_SHELL)] = "bash",
):
    """Print the activation script of an installed environment"""
    setup_logging(0)
    try:
        script = synthesize_activation(prefix, shell)
    except EnvpackError as e:
        _fail(e)
    print(script.script, end="")
