import json

import pytest

from conftest import build_conda_package, read_index
from envpack._src.exceptions import InstallError
from envpack._src.index import ChannelIndex
from envpack._src.installers.base import PackageSet
from envpack._src.installers.native import NativeInstaller, repodata_records, _noarch


@pytest.fixture
def channel(tmp_path, platform):
    channel_dir = tmp_path / "channel"
    packages = [
        build_conda_package(channel_dir, "libfoo", "1.2.0", build_number=3),
        build_conda_package(channel_dir, "foo", "2.0.1", depends=["libfoo >=1.2,<2"], constrains=["bar <1"]),
    ]
    index = ChannelIndex(subdirs={platform: {path.name: read_index(path) for path in packages}})
    return PackageSet(channel_dir=channel_dir, index=index)


def test_records_point_at_the_packed_channel(channel, platform):
    records = {record.file_name: record for record in repodata_records(channel)}
    assert sorted(records) == ["foo-2.0.1-0.tar.bz2", "libfoo-1.2.0-0.tar.bz2"]

    foo = records["foo-2.0.1-0.tar.bz2"]
    assert foo.name.normalized == "foo"
    assert str(foo.version) == "2.0.1"
    assert foo.subdir == platform
    assert foo.depends == ["libfoo >=1.2,<2"]
    assert foo.constrains == ["bar <1"]
    assert foo.url == (channel.channel_dir / platform / "foo-2.0.1-0.tar.bz2").resolve().as_uri()

    assert records["libfoo-1.2.0-0.tar.bz2"].build_number == 3


@pytest.mark.parametrize("value, is_set", [
    (None, False),
    ("", False),
    ("python", True),
    ("generic", True),
    ({"type": "python"}, True),
])
def test_noarch(value, is_set):
    assert (_noarch(value) is not None) == is_set


def test_install_links_packages(channel, tmp_path, platform):
    prefix = tmp_path / "env"
    result = NativeInstaller(package_cache=tmp_path / "pkgs").install(channel, prefix)

    assert sorted(result.installed) == ["foo-2.0.1-0.tar.bz2", "libfoo-1.2.0-0.tar.bz2"]
    assert result.wheels == []
    assert (prefix / "share" / "foo" / "README").read_text() == "foo 2.0.1\n"

    record = json.loads((prefix / "conda-meta" / "libfoo-1.2.0-0.json").read_text())
    assert record["fn"] == "libfoo-1.2.0-0.tar.bz2"
    assert record["subdir"] == platform


def test_install_failure_is_an_install_error(channel, tmp_path, mocker):
    mocker.patch("envpack._src.installers.native.rattler_install", side_effect=RuntimeError("link failed"))
    with pytest.raises(InstallError, match="link failed"):
        NativeInstaller().install(channel, tmp_path / "env")
