"""
Shared fixtures: isolated layouts, real archives built on the fly and a
transport that serves them without any network.
"""

import io
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Dict, List, Tuple, Union

import pytest

from vmpkg.config import Settings
from vmpkg.errors import DownloadFailed
from vmpkg.manager import PackageManager

# path inside archive -> content, or (content, mode)
Members = Dict[str, Union[str, Tuple[str, int]]]


def _normalize(members: Members) -> List[Tuple[str, bytes, int]]:
    out = []
    for name, value in members.items():
        if isinstance(value, tuple):
            content, mode = value
        else:
            content, mode = value, 0o644
        out.append((name, content.encode("utf-8"), mode))
    return out


@pytest.fixture
def make_tar(tmp_path: Path):
    """Build a tar archive; compression follows the file suffix."""
    def _make(filename: str, members: Members) -> Path:
        path = tmp_path / "archives" / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        mode = "w:gz" if filename.endswith((".tar.gz", ".tgz")) else "w"
        with tarfile.open(path, mode) as tar:
            for name, data, file_mode in _normalize(members):
                info = tarfile.TarInfo(name)
                info.size = len(data)
                info.mode = file_mode
                tar.addfile(info, io.BytesIO(data))
        return path
    return _make


@pytest.fixture
def make_zip(tmp_path: Path):
    def _make(filename: str, members: Members) -> Path:
        path = tmp_path / "archives" / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w") as zf:
            for name, data, file_mode in _normalize(members):
                info = zipfile.ZipInfo(name)
                info.external_attr = (0o100000 | file_mode) << 16
                zf.writestr(info, data)
        return path
    return _make


class FixtureTransport:
    """Serves registered URLs from local fixture files."""

    def __init__(self):
        self.archives: Dict[str, Path] = {}
        self.calls: List[Tuple[str, Path]] = []

    def add(self, url: str, archive: Path) -> None:
        self.archives[url] = archive

    def fetch(self, url, dest):
        dest = Path(dest)
        self.calls.append((url, dest))
        if url not in self.archives:
            raise DownloadFailed(f"Download failed for {url}: HTTP 404 Not Found")
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.archives[url], dest)
        return dest


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings.for_root(tmp_path / "root", bin_dir=tmp_path / "bin")


@pytest.fixture
def transport() -> FixtureTransport:
    return FixtureTransport()


@pytest.fixture
def manager(settings: Settings, transport: FixtureTransport) -> PackageManager:
    return PackageManager(settings, transport=transport)


@pytest.fixture
def rg_archive(make_tar) -> Path:
    return make_tar("rg.tar.gz", {
        "rg-14.1.0/bin/rg": ("#!/bin/sh\necho rg\n", 0o755),
        "rg-14.1.0/README.md": "ripgrep\n",
    })
