from envpack._src.constants import InstallerBackend
from envpack._src.installers.base import Installer
from envpack._src.installers.external import CondaInstaller, MicromambaInstaller
from envpack._src.installers.native import NativeInstaller


INSTALLERS = {
    InstallerBackend.NATIVE: NativeInstaller,
    InstallerBackend.CONDA: CondaInstaller,
    InstallerBackend.MICROMAMBA: MicromambaInstaller,
}


def get_installer(backend: InstallerBackend | str) -> Installer:
    """Return the installer backend selected by configuration"""
    return INSTALLERS[InstallerBackend(backend)]()
