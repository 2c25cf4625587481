# vmpkg/linker.py
"""
Binary linker: publishes a package's executables in the shared bin directory.

Search order for the bin directory:
  1. <install_dir>/bin
  2. <first subdirectory of install_dir>/bin, for archives wrapped in a single
     top-level directory (toolname-x86_64/bin/...). Only the first
     subdirectory, in name order, is looked at.

No bin directory is not an error: the package simply has no commands.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Optional, Union

from vmpkg.logging import get_logger

logger = get_logger("linker")

PathLike = Union[str, Path]


def _visible_entries(directory: Path) -> List[Path]:
    try:
        return sorted(p for p in directory.iterdir() if not p.name.startswith("."))
    except FileNotFoundError:
        return []


def find_bin_dir(install_dir: PathLike) -> Optional[Path]:
    root = Path(install_dir)
    if (root / "bin").is_dir():
        return root / "bin"
    subdirs = [p for p in _visible_entries(root) if p.is_dir()]
    if subdirs and (subdirs[0] / "bin").is_dir():
        return subdirs[0] / "bin"
    return None


def _is_executable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class BinaryLinker:
    def __init__(self, bin_dir: PathLike, dry_run: bool = False):
        self.bin_dir = Path(bin_dir)
        self.dry_run = dry_run

    def link(self, install_dir: PathLike, name: str = "") -> List[Path]:
        """Symlink every executable of the package's bin dir; returns the link paths."""
        bin_src = find_bin_dir(install_dir)
        if bin_src is None:
            logger.warning("No bin/ directory found for package '%s'. No symlinks created.", name or install_dir)
            return []

        logger.info("Linking executables from: %s -> %s", bin_src, self.bin_dir)
        if not self.dry_run:
            self.bin_dir.mkdir(parents=True, exist_ok=True)

        links: List[Path] = []
        for entry in _visible_entries(bin_src):
            if not _is_executable_file(entry):
                continue
            target = entry.absolute()
            link_path = self.bin_dir / entry.name
            if self.dry_run:
                logger.info("[DRY-RUN] Would link %s -> %s", link_path, target)
            elif not self._replace_link(link_path, target):
                continue
            links.append(link_path)
        return links

    def _replace_link(self, link_path: Path, target: Path) -> bool:
        if link_path.is_dir() and not link_path.is_symlink():
            logger.warning("%s is a directory, not linking %s", link_path, target)
            return False
        if link_path.is_symlink() or link_path.exists():
            link_path.unlink()
        link_path.symlink_to(target)
        logger.debug("linked %s -> %s", link_path, target)
        return True

    def unlink(self, links: Iterable[PathLike]) -> List[Path]:
        """Remove recorded links that still exist; missing ones are skipped."""
        removed: List[Path] = []
        for raw in links:
            path = Path(raw)
            if not (path.is_symlink() or path.is_file()):
                continue
            if self.dry_run:
                logger.info("[DRY-RUN] Would remove link: %s", path)
            else:
                logger.info("Removing link: %s", path)
                path.unlink()
            removed.append(path)
        return removed
