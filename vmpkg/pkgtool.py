# vmpkg/pkgtool.py
"""
pkgtool.py - archive handling for vmpkg

Features:
- Archive type detection from the file name (.tar.gz/.tgz, .tar.xz/.txz,
  .tar.bz2/.tbz2, .tar, .zip)
- Content sniffing when the name carries no known suffix
- tar extraction through tarfile's 'data' filter (no absolute paths, no
  escaping links), zip extraction with path checks and unix mode bits kept
- Unknown formats raise UnsupportedArchive, broken archives ExtractionFailed
"""

from __future__ import annotations

import lzma
import os
import tarfile
import zipfile
import zlib
from pathlib import Path
from typing import Optional, Tuple, Union
from urllib.parse import unquote, urlparse

from vmpkg.errors import ExtractionFailed, UnsupportedArchive
from vmpkg.logging import get_logger

logger = get_logger("pkgtool")

PathLike = Union[str, Path]

# longest suffixes first
ARCHIVE_SUFFIXES: Tuple[Tuple[str, str], ...] = (
    (".tar.gz", "tar.gz"),
    (".tgz", "tar.gz"),
    (".tar.xz", "tar.xz"),
    (".txz", "tar.xz"),
    (".tar.bz2", "tar.bz2"),
    (".tbz2", "tar.bz2"),
    (".tar", "tar"),
    (".zip", "zip"),
)

DEFAULT_SUFFIX = ".pkg"

_TAR_MODES = {
    "tar.gz": "r:gz",
    "tar.xz": "r:xz",
    "tar.bz2": "r:bz2",
    "tar": "r:",
    "tar.*": "r:*",
}

_READ_ERRORS = (tarfile.TarError, zipfile.BadZipFile, OSError, EOFError, zlib.error, lzma.LZMAError)


def archive_suffix(name_or_url: str) -> Optional[str]:
    """Known archive suffix of a file name or URL path, or None."""
    path = unquote(urlparse(name_or_url).path) or name_or_url
    lower = path.lower()
    for suffix, _ in ARCHIVE_SUFFIXES:
        if lower.endswith(suffix):
            return suffix
    return None


def detect_archive_type(path: PathLike) -> str:
    lower = str(path).lower()
    for suffix, kind in ARCHIVE_SUFFIXES:
        if lower.endswith(suffix):
            return kind
    return "unknown"


def _sniff(path: Path) -> str:
    if not path.is_file():
        raise ExtractionFailed(f"Archive not found: {path}")
    if zipfile.is_zipfile(path):
        return "zip"
    if tarfile.is_tarfile(path):
        return "tar.*"
    return "unknown"


def _extract_tar(archive: Path, dest: Path, kind: str) -> None:
    with tarfile.open(archive, _TAR_MODES[kind]) as tar:
        tar.extractall(dest, filter="data")


def _extract_zip(archive: Path, dest: Path) -> None:
    root = dest.resolve()
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            target = (dest / info.filename).resolve()
            if target != root and root not in target.parents:
                raise ExtractionFailed(f"Refusing to extract {info.filename!r} outside {dest}")
            zf.extract(info, dest)
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                os.chmod(target, mode)


def extract(archive: PathLike, dest: PathLike) -> str:
    """Unpack `archive` into `dest`; returns the detected archive type."""
    archive = Path(archive)
    dest = Path(dest)
    kind = detect_archive_type(archive)
    if kind == "unknown":
        kind = _sniff(archive)
    if kind == "unknown":
        raise UnsupportedArchive(f"Unknown archive type for {archive} (expected .tar.gz / .tgz / .tar.xz / .tar.bz2 / .tar / .zip).")
    dest.mkdir(parents=True, exist_ok=True)
    logger.info("Extracting archive to: %s", dest)
    logger.debug("Archive type detected: %s", kind)
    try:
        if kind == "zip":
            _extract_zip(archive, dest)
        else:
            _extract_tar(archive, dest, kind)
    except ExtractionFailed:
        raise
    except _READ_ERRORS as e:
        raise ExtractionFailed(f"Failed to extract {archive}: {e}") from e
    return kind


class Extractor:
    """Injectable wrapper around extract()."""

    def extract(self, archive: PathLike, dest: PathLike) -> str:
        return extract(archive, dest)
