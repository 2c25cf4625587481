# vmpkg/fetcher.py
"""
fetcher.py - archive transport for vmpkg

Features:
- UrlTransport: http(s)/ftp via urllib with timeout and retries, file:// and
  plain local paths via copy
- Downloads land in '<dest>.part' and are renamed into place only when
  complete and non-empty; on failure nothing is left at dest
- Every failure surfaces as DownloadFailed
"""

from __future__ import annotations

import http.client
import os
import shutil
import time
import urllib.error
import urllib.request
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import unquote, urlparse

from vmpkg import __version__
from vmpkg.errors import DownloadFailed
from vmpkg.logging import get_logger

logger = get_logger("fetcher")

REMOTE_SCHEMES = ("http", "https", "ftp")
CHUNK_SIZE = 64 * 1024
USER_AGENT = f"vmpkg/{__version__}"

PathLike = Union[str, Path]


class Transport:
    """Contract: fetch(url, dest) leaves a complete file at dest or raises DownloadFailed."""

    def fetch(self, url: str, dest: PathLike) -> Path:
        raise NotImplementedError


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _local_source(url: str) -> Optional[Path]:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme == "":
        return Path(url).expanduser()
    return None


class UrlTransport(Transport):
    def __init__(self, timeout: float = 15.0, retries: int = 3, backoff: float = 1.0,
                 opener: Optional[Callable[..., object]] = None):
        self.timeout = timeout
        self.retries = max(1, int(retries))
        self.backoff = backoff
        self._urlopen = opener or urllib.request.urlopen

    def fetch(self, url: str, dest: PathLike) -> Path:
        if not url:
            raise DownloadFailed("Empty URL for download.")
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        _remove_quietly(part)

        local = _local_source(url)
        try:
            if local is not None:
                self._copy_local(local, part)
            else:
                scheme = urlparse(url).scheme
                if scheme not in REMOTE_SCHEMES:
                    raise DownloadFailed(f"Unsupported URL scheme '{scheme}' in {url}")
                self._download_with_retries(url, part)
            if part.stat().st_size == 0:
                raise DownloadFailed(f"Downloaded file is empty: {url}")
            os.replace(part, dest)
        except DownloadFailed:
            _remove_quietly(part)
            raise
        except OSError as e:
            _remove_quietly(part)
            raise DownloadFailed(f"Cannot store download of {url} at {dest}: {e}") from e
        except ValueError as e:
            # malformed URLs are rejected by urllib before any connection
            _remove_quietly(part)
            raise DownloadFailed(f"Invalid URL {url!r}: {e}") from e
        logger.debug("fetched %s -> %s (%d bytes)", url, dest, dest.stat().st_size)
        return dest

    def _copy_local(self, src: Path, part: Path) -> None:
        if not src.is_file():
            raise DownloadFailed(f"Local archive not found: {src}")
        shutil.copyfile(src, part)

    def _download_with_retries(self, url: str, part: Path) -> None:
        last_error: Optional[str] = None
        for attempt in range(1, self.retries + 1):
            try:
                self._download_once(url, part)
                return
            except urllib.error.HTTPError as e:
                last_error = f"HTTP {e.code} {e.reason}"
                # client errors will not get better by retrying
                if 400 <= e.code < 500:
                    break
            except http.client.InvalidURL as e:
                last_error = f"invalid URL: {e}"
                break
            except (urllib.error.URLError, http.client.HTTPException, OSError, DownloadFailed) as e:
                last_error = str(getattr(e, "reason", e))
            _remove_quietly(part)
            if attempt < self.retries:
                logger.warning("download attempt %d/%d failed for %s: %s", attempt, self.retries, url, last_error)
                time.sleep(self.backoff * attempt)
        raise DownloadFailed(f"Download failed for {url}: {last_error}")

    def _download_once(self, url: str, part: Path) -> None:
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        with self._urlopen(req, timeout=self.timeout) as resp:
            status = getattr(resp, "status", None) or resp.getcode()
            if status is not None and not 200 <= int(status) < 300:
                raise DownloadFailed(f"HTTP status {status}")
            with open(part, "wb") as fh:
                while True:
                    chunk = resp.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    fh.write(chunk)
