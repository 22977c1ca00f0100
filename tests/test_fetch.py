import hashlib

import pytest
import requests

from envpack._src.cache import CacheStore
from envpack._src.exceptions import (
    IntegrityMismatch,
    TransientFetchError,
    UnresolvableSource,
)
from envpack._src.fetch import FetchConfig, Fetcher, verify_hash
from envpack._src.models.package import CondaPackage


CONTENT = b"not really a conda package"
URL = "https://conda.anaconda.org/conda-forge/linux-64/foo-1.0-0.tar.bz2"


class FakeResponse:
    def __init__(self, status_code=200, content=CONTENT):
        self.status_code = status_code
        self.content = content

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size=1):
        yield self.content


def remote_package(location=URL, content=CONTENT, **kwargs):
    kwargs.setdefault("sha256", hashlib.sha256(content).hexdigest())
    return CondaPackage(
        name="foo", version="1.0", build="0", subdir="linux-64", location=location, **kwargs
    )


@pytest.fixture
def session(mocker):
    session = mocker.Mock(spec=requests.Session)
    session.get.return_value = FakeResponse()
    return session


def test_fetch_over_http(tmp_path, session):
    fetcher = Fetcher(session=session)
    target = fetcher.fetch(remote_package(), tmp_path)

    assert target == tmp_path / "linux-64" / "foo-1.0-0.tar.bz2"
    assert target.read_bytes() == CONTENT
    session.get.assert_called_once()
    assert session.get.call_args.args[0] == URL


def test_integrity_mismatch_leaves_nothing_behind(tmp_path, session):
    fetcher = Fetcher(session=session)
    with pytest.raises(IntegrityMismatch) as exc_info:
        fetcher.fetch(remote_package(sha256="0" * 64), tmp_path)

    assert exc_info.value.expected == "0" * 64
    assert list((tmp_path / "linux-64").iterdir()) == []


def test_md5_is_used_without_sha256(tmp_path, session):
    pkg = remote_package(sha256=None, md5=hashlib.md5(CONTENT).hexdigest())
    assert Fetcher(session=session).fetch(pkg, tmp_path).is_file()


def test_missing_hash_is_an_error(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(CONTENT)
    with pytest.raises(IntegrityMismatch):
        verify_hash(path, "file")


def test_session_retries_transient_statuses():
    fetcher = Fetcher(FetchConfig(retries=5, backoff_factor=0.25))
    retry = fetcher.session().get_adapter(URL).max_retries

    assert retry.total == 5
    assert retry.backoff_factor == 0.25
    assert 503 in retry.status_forcelist
    assert 404 not in retry.status_forcelist
    assert retry.raise_on_status is False
    assert fetcher.session().get_adapter("http://example.com/foo").max_retries.total == 5


def test_exhausted_retries_are_transient(tmp_path, session):
    session.get.return_value = FakeResponse(status_code=503)
    fetcher = Fetcher(FetchConfig(retries=2), session=session)
    with pytest.raises(TransientFetchError) as exc_info:
        fetcher.fetch(remote_package(), tmp_path)
    assert exc_info.value.attempts == 3
    session.get.assert_called_once()


def test_connection_error_is_transient(tmp_path, session):
    session.get.side_effect = requests.exceptions.ConnectionError("reset")
    with pytest.raises(TransientFetchError):
        Fetcher(session=session).fetch(remote_package(), tmp_path)


def test_broken_transfer_is_retried(tmp_path, session):
    class BrokenResponse(FakeResponse):
        def iter_content(self, chunk_size=1):
            yield self.content[:4]
            raise requests.exceptions.ChunkedEncodingError("connection broken")

    session.get.side_effect = [BrokenResponse(), FakeResponse()]
    fetcher = Fetcher(FetchConfig(retries=3), session=session)
    assert fetcher.fetch(remote_package(), tmp_path).read_bytes() == CONTENT
    assert session.get.call_count == 2


def test_broken_transfers_are_bounded(tmp_path, session):
    class BrokenResponse(FakeResponse):
        def iter_content(self, chunk_size=1):
            raise requests.exceptions.ChunkedEncodingError("connection broken")
            yield

    session.get.side_effect = lambda *args, **kwargs: BrokenResponse()
    with pytest.raises(TransientFetchError) as exc_info:
        Fetcher(FetchConfig(retries=1), session=session).fetch(remote_package(), tmp_path)
    assert exc_info.value.attempts == 2
    assert session.get.call_count == 2


def test_not_found_is_not_retried(tmp_path, session):
    session.get.return_value = FakeResponse(status_code=404)
    with pytest.raises(UnresolvableSource):
        Fetcher(session=session).fetch(remote_package(), tmp_path)
    assert session.get.call_count == 1



def test_local_file_and_file_url(tmp_path):
    source = tmp_path / "src" / "foo-1.0-0.tar.bz2"
    source.parent.mkdir()
    source.write_bytes(CONTENT)
    fetcher = Fetcher()

    assert fetcher.fetch(remote_package(location=str(source)), tmp_path / "a").read_bytes() == CONTENT
    assert fetcher.fetch(remote_package(location=source.as_uri()), tmp_path / "b").read_bytes() == CONTENT

    with pytest.raises(UnresolvableSource):
        fetcher.fetch(remote_package(location=str(tmp_path / "missing.tar.bz2")), tmp_path / "c")


def test_cache_hit_skips_network(tmp_path, session):
    cache = CacheStore(tmp_path / "cache")
    cached = tmp_path / "cached"
    cached.write_bytes(CONTENT)
    cache.put("linux-64", "foo-1.0-0.tar.bz2", cached)

    fetcher = Fetcher(cache=cache, session=session)
    assert fetcher.fetch(remote_package(), tmp_path / "out").read_bytes() == CONTENT
    session.get.assert_not_called()


def test_cache_is_populated_after_fetch(tmp_path, session):
    cache = CacheStore(tmp_path / "cache")
    Fetcher(cache=cache, session=session).fetch(remote_package(), tmp_path / "out")

    entry = cache.get("linux-64", "foo-1.0-0.tar.bz2", hashlib.sha256(CONTENT).hexdigest())
    assert entry is not None
    assert entry.path.read_bytes() == CONTENT


def test_stale_cache_entry_is_replaced(tmp_path, session, caplog):
    cache = CacheStore(tmp_path / "cache")
    stale = tmp_path / "stale"
    stale.write_bytes(b"corrupted")
    cache.put("linux-64", "foo-1.0-0.tar.bz2", stale)

    fetcher = Fetcher(cache=cache, session=session)
    assert fetcher.fetch(remote_package(), tmp_path / "out").read_bytes() == CONTENT
    session.get.assert_called_once()
    assert cache.path_for("linux-64", "foo-1.0-0.tar.bz2").read_bytes() == CONTENT
    assert "Cache integrity error" in caplog.text


def test_uppercase_hash_hits_the_cache(tmp_path, session, caplog):
    cache = CacheStore(tmp_path / "cache")
    cached = tmp_path / "cached"
    cached.write_bytes(CONTENT)
    cache.put("linux-64", "foo-1.0-0.tar.bz2", cached)

    pkg = remote_package(sha256=hashlib.sha256(CONTENT).hexdigest().upper())
    fetcher = Fetcher(cache=cache, session=session)
    assert fetcher.fetch(pkg, tmp_path / "out").read_bytes() == CONTENT
    session.get.assert_not_called()
    assert "Cache integrity error" not in caplog.text



def test_fetch_all_stops_after_first_failure(tmp_path):
    good = tmp_path / "good-1.0-0.tar.bz2"
    good.write_bytes(CONTENT)
    missing = remote_package(location=str(tmp_path / "foo-1.0-0.tar.bz2"))
    later = CondaPackage(
        name="good", version="1.0", build="0", subdir="linux-64",
        location=str(good), sha256=hashlib.sha256(CONTENT).hexdigest(),
    )

    fetcher = Fetcher(FetchConfig(max_workers=1))
    with pytest.raises(UnresolvableSource):
        fetcher.fetch_all([(missing, tmp_path / "out"), (later, tmp_path / "out")])
    assert not (tmp_path / "out" / "linux-64" / "good-1.0-0.tar.bz2").exists()


def test_fetch_all_reports_progress(tmp_path, session):
    seen = []
    fetcher = Fetcher(session=session, progress_callback=seen.append)
    paths = fetcher.fetch_all([(remote_package(), tmp_path)])
    assert paths == [tmp_path / "linux-64" / "foo-1.0-0.tar.bz2"]
    assert [pkg.name for pkg in seen] == ["foo"]


def test_mirrors_replace_the_channel_prefix():
    config = FetchConfig(mirrors={
        "https://conda.anaconda.org/conda-forge": [
            "https://prefix.dev/conda-forge/", "https://mirror.example.org/cf",
        ],
    })
    assert Fetcher(config).candidate_urls(URL) == [
        "https://prefix.dev/conda-forge/linux-64/foo-1.0-0.tar.bz2",
        "https://mirror.example.org/cf/linux-64/foo-1.0-0.tar.bz2",
    ]
    assert Fetcher(config).candidate_urls("https://example.com/x.conda") == ["https://example.com/x.conda"]


def test_failed_mirror_falls_through(tmp_path, session):
    session.get.side_effect = [FakeResponse(status_code=404), FakeResponse()]
    config = FetchConfig(mirrors={"https://conda.anaconda.org/": ["https://a.example/", "https://b.example/"]})
    Fetcher(config, session=session).fetch(remote_package(), tmp_path)
    assert session.get.call_args.args[0] == "https://b.example/conda-forge/linux-64/foo-1.0-0.tar.bz2"


def test_auth_file(tmp_path, session):
    auth_file = tmp_path / "credentials.json"
    auth_file.write_text(
        '{"conda.anaconda.org": {"CondaToken": "xyz"},'
        ' "repo.prefix.dev": {"BearerToken": "abc"}}'
    )
    fetcher = Fetcher(FetchConfig(auth_file=auth_file), session=session)
    fetcher.fetch(remote_package(), tmp_path)
    assert session.get.call_args.args[0] == (
        "https://conda.anaconda.org/t/xyz/conda-forge/linux-64/foo-1.0-0.tar.bz2"
    )

    url, headers, auth = fetcher._authenticate("https://repo.prefix.dev/private/noarch/x.conda")
    assert headers == {"Authorization": "Bearer abc"}
    assert auth is None
