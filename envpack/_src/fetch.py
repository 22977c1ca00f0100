import asyncio
import json
import logging
import shutil
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from pydantic import BaseModel, Field

from envpack._src.cache import CacheStore
from envpack._src.constants import ENVPACK_VERSION
from envpack._src.exceptions import (
    FetchError,
    IntegrityMismatch,
    TransientFetchError,
    UnresolvableSource,
)
from envpack._src.models.package import LockedPackage
from envpack._src.utils import atomic_output, copy_atomic, hash_file, is_url, url_to_path


log = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 14
RETRY_STATUS_CODES = frozenset((408, 413, 429, 500, 502, 503, 504))
TRANSIENT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)
# raised while streaming the body, after the adapter has handed over the response
BODY_ERRORS = (requests.exceptions.ChunkedEncodingError, requests.exceptions.ConnectionError)


class FetchConfig(BaseModel):
    max_workers: int = 8
    retries: int = 3
    backoff_factor: float = 0.5
    # seconds, applies to each request
    timeout: float = 300
    # url prefix -> mirror prefixes, tried in order
    mirrors: Dict[str, List[str]] = Field(default={})
    auth_file: Optional[Path] = None


class Fetcher():
    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        cache: Optional[CacheStore] = None,
        session: Optional[requests.Session] = None,
        progress_callback: Optional[Callable[[LockedPackage], None]] = None,
    ):
        """Fetcher turns package references into verified local files.

        Parameters
        ----------
        config: FetchConfig
            Worker budget, retry policy, mirrors and authentication
        cache: CacheStore
            Optional cache consulted before and populated after every fetch
        session: requests.Session
            Session to use for every request. By default each worker thread
            gets its own session.
        progress_callback: callable
            Called with each package once it is available
        """
        self.config = config or FetchConfig()
        self.cache = cache
        self.progress_callback = progress_callback
        self._session = session
        self._local = threading.local()
        self._auth = _load_auth_file(self.config.auth_file)

    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=self.retry_policy())
            session.mount("http://", adapter)
            session.mount("https://", adapter)
            session.headers["User-Agent"] = f"envpack/{ENVPACK_VERSION}"
            self._local.session = session
        return session

    def retry_policy(self) -> Retry:
        """Connection errors and transient statuses are retried by the transport"""
        return Retry(
            total=self.config.retries,
            backoff_factor=self.config.backoff_factor,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=frozenset(["GET"]),
            raise_on_status=False,
        )

    def fetch_all(self, jobs: Iterable[Tuple[LockedPackage, Path]]) -> List[Path]:
        """Fetch packages concurrently, each into `<dest_dir>/<subdir>/<filename>`.

        `jobs` pairs every package with its destination directory.
        After the first failure no new fetch is started; fetches already in
        flight run to completion and the first error is raised once all of
        them have settled.
        """
        return asyncio.run(self._fetch_all(list(jobs)))

    async def _fetch_all(self, jobs: List[Tuple[LockedPackage, Path]]) -> List[Path]:
        semaphore = asyncio.Semaphore(max(1, self.config.max_workers))
        failed = asyncio.Event()

        async def run(pkg, dest_dir):
            async with semaphore:
                if failed.is_set():
                    log.debug("Not starting %s after an earlier failure", pkg.filename)
                    return None
                try:
                    return await asyncio.to_thread(self.fetch, pkg, dest_dir)
                except Exception:
                    failed.set()
                    raise

        log.info("Fetching %d packages", len(jobs))
        results = await asyncio.gather(*(run(pkg, Path(dest)) for pkg, dest in jobs), return_exceptions=True)
        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            for err in errors[1:]:
                log.error("%s", err)
            raise errors[0]
        return results

    def fetch(self, package: LockedPackage, dest_dir: str | Path) -> Path:
        """Place one verified package file at `<dest_dir>/<subdir>/<filename>`"""
        subdir, filename = package.cache_key
        target = Path(dest_dir) / subdir / filename

        use_cache = self.cache is not None and is_url(package.location)
        if use_cache:
            entry = self.cache.get(subdir, filename, package.sha256)
            if entry is not None and (package.sha256 or _md5_matches(entry.path, package.md5)):
                copy_atomic(entry.path, target)
                self._report(package)
                return target

        with atomic_output(target) as tmp:
            self.download(package.location, tmp)
            verify_hash(tmp, filename, sha256=package.sha256, md5=package.md5)
            if use_cache:
                self.cache.put(subdir, filename, tmp)

        log.debug("Fetched %s", filename)
        self._report(package)
        return target

    def fetch_url(self, location: str, target: str | Path) -> Path:
        """Fetch a file that carries no declared hash (e.g. an unpacker binary)"""
        with atomic_output(target) as tmp:
            self.download(location, tmp)
        return Path(target)

    def download(self, location: str, target: Path) -> None:
        scheme = urlparse(location).scheme if is_url(location) else ""
        if scheme in ("", "file"):
            source = url_to_path(location) if scheme == "file" else Path(location)
            if not source.is_file():
                raise UnresolvableSource(location, "file does not exist")
            shutil.copyfile(source, target)
            return

        last_error: Exception | None = None
        transient = False
        for url in self.candidate_urls(location):
            if urlparse(url).scheme not in ("http", "https"):
                last_error = ValueError(f"no transport for `{url}`, configure an http(s) mirror")
                continue
            try:
                self._download_with_retries(url, target)
                return
            except TransientFetchError as e:
                log.warning("%s", e)
                last_error, transient = e, True
            except requests.exceptions.HTTPError as e:
                log.debug("Mirror %s failed: %s", url, e)
                last_error, transient = e, False

        if transient:
            raise last_error
        raise UnresolvableSource(location, last_error)

    def candidate_urls(self, url: str) -> List[str]:
        for prefix, mirrors in sorted(self.config.mirrors.items(), key=lambda kv: -len(kv[0])):
            if url.startswith(prefix):
                return [mirror.rstrip("/") + "/" + url[len(prefix):].lstrip("/") for mirror in mirrors]
        return [url]

    def _download_with_retries(self, url: str, target: Path) -> None:
        # the adapter retries the request itself, a body cut off mid-stream is retried here
        attempts = self.config.retries + 1
        for attempt in range(attempts):
            try:
                self._http_get(url, target)
                return
            except BODY_ERRORS as e:
                if attempt == attempts - 1:
                    raise TransientFetchError(url, attempts, e)
                log.debug("retrying %s after a broken transfer (%s)", url, e)

    def _http_get(self, url: str, target: Path) -> None:
        url, headers, auth = self._authenticate(url)
        try:
            resp = self.session().get(
                url, stream=True, headers=headers, auth=auth, timeout=self.config.timeout
            )
        except TRANSIENT_ERRORS as e:
            raise TransientFetchError(url, self.config.retries + 1, e)
        with resp:
            if resp.status_code in RETRY_STATUS_CODES:
                raise TransientFetchError(url, self.config.retries + 1, f"HTTP {resp.status_code}")
            resp.raise_for_status()
            with open(target, "wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)

    def _authenticate(self, url: str):
        parsed = urlparse(url)
        credentials = self._auth.get(parsed.hostname or "")
        if not credentials:
            return url, {}, None
        if "BearerToken" in credentials:
            return url, {"Authorization": f"Bearer {credentials['BearerToken']}"}, None
        if "BasicHTTP" in credentials:
            basic = credentials["BasicHTTP"]
            return url, {}, (basic["username"], basic["password"])
        if "CondaToken" in credentials:
            path = f"/t/{credentials['CondaToken']}{parsed.path}"
            return parsed._replace(path=path).geturl(), {}, None
        return url, {}, None

    def _report(self, package: LockedPackage) -> None:
        if self.progress_callback is not None:
            self.progress_callback(package)


def verify_hash(path: Path, filename: str, sha256: Optional[str] = None, md5: Optional[str] = None) -> str:
    """Check a fetched file against its declared hash; sha256 wins over md5"""
    if sha256:
        actual = hash_file(path, "sha256")
        if actual != sha256.lower():
            raise IntegrityMismatch(filename, "sha256", sha256, actual)
        return actual
    if md5:
        actual = hash_file(path, "md5")
        if actual != md5.lower():
            raise IntegrityMismatch(filename, "md5", md5, actual)
        return actual
    raise IntegrityMismatch(filename, "sha256", "<none declared>", hash_file(path, "sha256"))


def _md5_matches(path: Path, md5: Optional[str]) -> bool:
    return md5 is not None and hash_file(path, "md5") == md5.lower()


def _load_auth_file(path: Optional[Path]) -> Dict[str, dict]:
    if path is None:
        return {}
    try:
        with open(path) as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise FetchError(f"Could not read authentication file `{path}`: {e}")
