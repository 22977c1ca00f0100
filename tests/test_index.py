import pytest

from envpack._src.conda_package import read_index_json
from envpack._src.exceptions import InvalidArchive, InvalidPackageFile
from envpack._src.index import ChannelIndex, read_channel_index, write_channel_index


def test_repodata_splits_by_extension():
    index = ChannelIndex(subdirs={"linux-64": {
        "a-1-0.conda": {"name": "a"},
        "b-1-0.tar.bz2": {"name": "b"},
    }})
    repodata = index.to_repodata("linux-64")
    assert list(repodata["packages"]) == ["b-1-0.tar.bz2"]
    assert list(repodata["packages.conda"]) == ["a-1-0.conda"]
    assert repodata["info"] == {"subdir": "linux-64"}
    assert index.to_repodata("noarch")["packages"] == {}


def test_write_and_read(tmp_path):
    index = ChannelIndex(subdirs={
        "noarch": {},
        "linux-64": {"a-1-0.conda": {"name": "a", "version": "1", "build": "0"}},
    })
    written = write_channel_index(index, tmp_path)
    assert [path.parent.name for path in written] == ["linux-64", "noarch"]

    assert read_channel_index(tmp_path).filenames() == [("linux-64", "a-1-0.conda")]


def test_read_errors(tmp_path):
    with pytest.raises(InvalidArchive):
        read_channel_index(tmp_path / "missing")

    (tmp_path / "noarch").mkdir()
    (tmp_path / "noarch" / "repodata.json").write_text("{")
    with pytest.raises(InvalidArchive):
        read_channel_index(tmp_path)


def test_read_index_json(make_package, platform):
    path = make_package("foo", "1.0", depends=["bar >=2"])
    index = read_index_json(path)
    assert index["name"] == "foo"
    assert index["subdir"] == platform
    assert index["depends"] == ["bar >=2"]


def test_read_index_json_rejects_other_files(tmp_path):
    path = tmp_path / "foo-1.0-0.tar.bz2"
    path.write_bytes(b"garbage")
    with pytest.raises(InvalidPackageFile):
        read_index_json(path)
    with pytest.raises(InvalidPackageFile):
        read_index_json(tmp_path / "foo.zip")
