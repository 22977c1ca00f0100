class EnvpackError(Exception):
    def __init__(self, msg):
        self.msg = msg
        super().__init__(self.msg)


class ResolutionError(EnvpackError):
    pass


class EnvironmentNotAvailable(ResolutionError):
    def __init__(self, environment, available):
        self.environment = environment
        super().__init__(
            f"The environment `{environment}` is not available in the lockfile."
            f"\nAvailable environments: {', '.join(sorted(available)) or '<none>'}"
        )


class UnsupportedPlatform(ResolutionError):
    def __init__(self, platform, environment, available):
        self.platform = platform
        super().__init__(
            f"The platform `{platform}` is not available for environment `{environment}`."
            f"\nLocked platforms: {', '.join(sorted(available)) or '<none>'}"
        )


class UnsupportedSourceDistribution(ResolutionError):
    def __init__(self, name, location):
        self.name = name
        super().__init__(
            f"PyPI package `{name}` is not a wheel ({location})."
            f"\nSource distributions cannot be packed; pass --ignore-pypi-non-wheel to skip them."
        )


class PipNotIncluded(ResolutionError):
    def __init__(self, wheels):
        super().__init__(
            f"The environment contains {len(wheels)} PyPI wheel(s) but no `pip` conda package."
            f"\nAdd `pip` to the environment so the wheels can be installed offline."
        )


class FetchError(EnvpackError):
    pass


class IntegrityMismatch(FetchError):
    def __init__(self, filename, algorithm, expected, actual):
        self.filename = filename
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Hash mismatch for `{filename}`!"
            f"\nExpected {algorithm}: {expected}"
            f"\nActual {algorithm}: {actual}"
        )


class TransientFetchError(FetchError):
    def __init__(self, url, attempts, err):
        self.url = url
        self.attempts = attempts
        super().__init__(
            f"Failed to fetch `{url}` after {attempts} attempt(s)."
            f"\nError message: {err}"
        )


class UnresolvableSource(FetchError):
    def __init__(self, location, err):
        self.location = location
        super().__init__(f"Cannot fetch `{location}`: {err}")


class InvalidPackageFile(EnvpackError):
    def __init__(self, path, reason):
        self.path = path
        super().__init__(f"Invalid package file `{path}`: {reason}")


class IncompatibleInjection(EnvpackError):
    def __init__(self, injected, constraint, conflicting):
        self.injected = injected
        self.constraint = constraint
        self.conflicting = conflicting
        super().__init__(
            f"Injected package `{injected}` is incompatible with the environment!"
            f"\nConstraint `{constraint}` is not satisfied by `{conflicting}`"
        )


class UnpackError(EnvpackError):
    pass


class InvalidArchive(UnpackError):
    def __init__(self, path, reason):
        self.path = path
        super().__init__(f"`{path}` is not a valid envpack archive: {reason}")


class IncompatibleArchiveVersion(UnpackError):
    def __init__(self, version, supported):
        self.version = version
        super().__init__(
            f"Unsupported archive format version `{version}` "
            f"(this envpack supports up to `{supported}`). Please upgrade envpack."
        )


class PlatformMismatch(UnpackError):
    def __init__(self, packed, current):
        self.packed = packed
        self.current = current
        super().__init__(
            f"The pack was created for `{packed}` and cannot be unpacked on `{current}`."
        )


class PreconditionFailed(EnvpackError):
    def __init__(self, target):
        self.target = target
        super().__init__(
            f"Target directory `{target}` already exists and is not empty."
            f"\nRemove it or rerun with --force to overwrite it."
        )


class InstallError(UnpackError):
    def __init__(self, command, err, cwd=None):
        self.msg_command = command
        super().__init__(
            f"Failed to install the environment!"
            f"\nRan command: `{' '.join(command) if isinstance(command, list) else command}`"
            + (f"\ncwd: `{cwd}`" if cwd else "")
            + f"\nError message: {err}"
        )


class UnsupportedShell(EnvpackError):
    def __init__(self, shell, supported):
        self.shell = shell
        super().__init__(
            f"Unsupported shell `{shell}`. Supported shells: {', '.join(supported)}"
        )
