# Installer backends materialize the packages of an unpacked archive into
# a prefix. Every backend implements `Installer.install`; which one runs is
# decided once, by configuration, in `installer.get_installer`.
