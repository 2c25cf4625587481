# vmpkg/manager.py
"""
manager.py - package lifecycle for vmpkg

Install:  NOT_FOUND -> RESOLVED -> DOWNLOADED -> EXTRACTED -> LINKED -> INSTALLED
Remove:   INSTALLED -> UNLINKED -> UNINSTALLED

The manifest write is the commit point of an install and the manifest delete
the commit point of a removal. Nothing is rolled back: a failed step leaves
what the previous steps produced, and the next install or reinstall of the
package clears it.

Also here: register, list, search, show, init, clean and doctor. Every
operation honours Settings.dry_run by reporting instead of mutating.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple

from vmpkg.config import Settings
from vmpkg.db import UNKNOWN, Manifest, ManifestStore, split_links
from vmpkg.errors import ManifestCorrupt, NotInstalled, PackageNotFound
from vmpkg.fetcher import Transport, UrlTransport
from vmpkg.linker import BinaryLinker
from vmpkg.logging import get_logger
from vmpkg.pkgtool import DEFAULT_SUFFIX, Extractor, archive_suffix
from vmpkg.registry import RegistryEntry, RegistryStore, validate_entry

logger = get_logger("manager")

DEFAULT_DESCRIPTION = "no description"


class InstallState(Enum):
    NOT_FOUND = "not-found"
    RESOLVED = "resolved"
    DOWNLOADED = "downloaded"
    EXTRACTED = "extracted"
    LINKED = "linked"
    INSTALLED = "installed"


class RemoveState(Enum):
    INSTALLED = "installed"
    UNLINKED = "unlinked"
    UNINSTALLED = "uninstalled"


# -------------------------
# Data models
# -------------------------
@dataclass
class InstallPlan:
    entry: RegistryEntry
    install_dir: Path
    archive: Path
    reinstall: bool = False
    skip: bool = False
    stale: bool = False
    previous: Optional[Manifest] = None

    @property
    def name(self) -> str:
        return self.entry.name

    @property
    def version(self) -> str:
        return self.entry.version


@dataclass
class InstallResult:
    name: str
    version: str
    install_dir: Path
    bin_links: List[Path] = field(default_factory=list)
    state: InstallState = InstallState.RESOLVED
    skipped: bool = False
    dry_run: bool = False


@dataclass
class RemovePlan:
    name: str
    manifest_path: Path
    install_dir: Optional[str]
    bin_links: List[str] = field(default_factory=list)


@dataclass
class RemoveResult:
    name: str
    removed_links: List[Path] = field(default_factory=list)
    removed_dir: Optional[Path] = None
    # recorded install dir left on disk because it is outside pkgs/
    kept_dir: Optional[Path] = None
    state: RemoveState = RemoveState.INSTALLED
    dry_run: bool = False


@dataclass
class DoctorCheck:
    name: str
    ok: bool
    detail: str = ""


# -------------------------
# Core manager
# -------------------------
class PackageManager:
    def __init__(self, settings: Settings, transport: Optional[Transport] = None, extractor: Optional[Extractor] = None):
        self.settings = settings
        self.dry_run = settings.dry_run
        self.registry = RegistryStore(settings.registry_path)
        self.manifests = ManifestStore(settings.db_dir)
        self.linker = BinaryLinker(settings.bin_dir, dry_run=settings.dry_run)
        self.transport = transport or UrlTransport(timeout=settings.fetch_timeout, retries=settings.fetch_retries)
        self.extractor = extractor or Extractor()

    def _enter(self, name: str, state: Enum) -> Enum:
        logger.debug("%s: -> %s", name, state.value)
        return state

    # -------------------------
    # Layout
    # -------------------------
    def ensure_layout(self) -> None:
        for d in self.settings.layout_dirs():
            d.mkdir(parents=True, exist_ok=True)
        self.registry.ensure()

    def init(self) -> bool:
        """Create the layout; returns whether the bin dir is on PATH."""
        self.ensure_layout()
        logger.info("Initialized vmpkg at: %s", self.settings.root)
        logger.info("Bin directory: %s", self.settings.bin_dir)
        return self.settings.bin_dir_on_path()

    def archive_path_for(self, entry: RegistryEntry) -> Path:
        suffix = archive_suffix(entry.url) or DEFAULT_SUFFIX
        return self.settings.cache_dir / f"{entry.name}-{entry.version}{suffix}"

    def _owned_by_layout(self, path: Path) -> bool:
        pkgs = self.settings.pkgs_dir.resolve()
        resolved = path.resolve()
        return resolved != pkgs and pkgs in resolved.parents

    def _remove_tree(self, path: Path) -> bool:
        if not path.is_dir():
            return False
        if not self._owned_by_layout(path):
            logger.warning("Refusing to remove %s: not under %s", path, self.settings.pkgs_dir)
            return False
        logger.info("Removing directory: %s", path)
        shutil.rmtree(path)
        return True

    # -------------------------
    # Registry
    # -------------------------
    def register(self, name: str, version: str, url: str, description: Optional[str] = None) -> RegistryEntry:
        self.ensure_layout()
        description = description or DEFAULT_DESCRIPTION
        if self.dry_run:
            entry = validate_entry(RegistryEntry(name=name, version=version, url=url, description=description))
            logger.info("[DRY-RUN] Would register package in: %s", self.registry.path)
            return entry
        return self.registry.upsert(name, version, url, description)

    def search(self, pattern: str) -> List[RegistryEntry]:
        self.ensure_layout()
        return self.registry.search(pattern)

    def show(self, name: str) -> RegistryEntry:
        self.ensure_layout()
        entry = self.registry.find(name)
        if entry is None:
            raise PackageNotFound(name)
        return entry

    def list_installed(self) -> Iterator[Tuple[str, str]]:
        self.ensure_layout()
        return self.manifests.list()

    # -------------------------
    # Install
    # -------------------------
    def plan_install(self, name: str, reinstall: bool = False) -> InstallPlan:
        """Resolve `name` and decide what install would do. No side effects beyond the layout."""
        self.ensure_layout()
        entry = self.registry.find(name)
        if entry is None:
            raise PackageNotFound(name)
        plan = InstallPlan(
            entry=entry,
            install_dir=self.settings.install_dir_for(entry.name, entry.version),
            archive=self.archive_path_for(entry),
            reinstall=reinstall,
        )
        if self.manifests.exists(name):
            try:
                plan.previous = self.manifests.read(name)
            except ManifestCorrupt as e:
                logger.warning("%s", e)
                plan.previous = self._salvage_manifest(name)
            plan.skip = not reinstall
        else:
            plan.stale = plan.install_dir.exists()
        return plan

    def install(self, name: str, reinstall: bool = False) -> InstallResult:
        plan = self.plan_install(name, reinstall)
        result = InstallResult(name=plan.name, version=plan.version, install_dir=plan.install_dir, dry_run=self.dry_run)
        result.state = self._enter(name, InstallState.RESOLVED)

        if plan.skip:
            installed_at = Path(plan.previous.install_dir) if plan.previous and plan.previous.install_dir else plan.install_dir
            logger.warning("Package appears already installed at: %s", installed_at)
            logger.warning("Use 'vmpkg reinstall %s' to force reinstall.", name)
            result.skipped = True
            result.state = InstallState.INSTALLED
            if plan.previous:
                result.version = plan.previous.version
                result.install_dir = installed_at
                result.bin_links = [Path(p) for p in plan.previous.bin_links]
            return result

        logger.info("Downloading: %s", plan.entry.url)
        logger.debug("Target file: %s", plan.archive)
        if self.dry_run:
            logger.info("[DRY-RUN] Skipping actual download.")
            logger.info("[DRY-RUN] Skipping extract & link steps.")
            return result

        self.transport.fetch(plan.entry.url, plan.archive)
        result.state = self._enter(name, InstallState.DOWNLOADED)

        if plan.stale:
            logger.warning("Found %s without a manifest (interrupted install?), replacing it.", plan.install_dir)
        if plan.install_dir.exists():
            self._remove_tree(plan.install_dir)
        plan.install_dir.mkdir(parents=True, exist_ok=True)

        self.extractor.extract(plan.archive, plan.install_dir)
        result.state = self._enter(name, InstallState.EXTRACTED)

        result.bin_links = self.linker.link(plan.install_dir, name)
        result.state = self._enter(name, InstallState.LINKED)

        if plan.previous:
            self._drop_previous(plan.previous, plan.install_dir, result.bin_links)

        self.manifests.write(name, plan.version, plan.install_dir, result.bin_links)
        result.state = self._enter(name, InstallState.INSTALLED)
        logger.info("Package '%s' installed.", name)
        return result

    def reinstall(self, name: str) -> InstallResult:
        return self.install(name, reinstall=True)

    def _drop_previous(self, previous: Manifest, install_dir: Path, new_links: List[Path]) -> None:
        """After a reinstall: remove what the old manifest owned and the new one does not."""
        keep: Set[str] = {str(p) for p in new_links}
        self.linker.unlink(p for p in previous.bin_links if p not in keep)
        if previous.install_dir and Path(previous.install_dir) != install_dir:
            self._remove_tree(Path(previous.install_dir))

    def _salvage_manifest(self, name: str) -> Manifest:
        """What a damaged manifest still records, read field by field like plan_remove."""
        return Manifest(
            name=name,
            version=self.manifests.read_field(name, "version") or UNKNOWN,
            install_dir=self.manifests.read_field(name, "install_dir") or "",
            bin_links=split_links(self.manifests.read_field(name, "bin_links")),
        )

    # -------------------------
    # Remove
    # -------------------------
    def plan_remove(self, name: str) -> RemovePlan:
        self.ensure_layout()
        path = self.manifests.path_for(name)
        if not self.manifests.exists(name):
            raise NotInstalled(name, str(path))
        install_dir = self.manifests.read_field(name, "install_dir")
        if not install_dir:
            logger.warning("Manifest %s has no install_dir; only links and manifest will be removed.", path)
        links = split_links(self.manifests.read_field(name, "bin_links"))
        return RemovePlan(name=name, manifest_path=path, install_dir=install_dir or None, bin_links=links)

    def remove(self, name: str) -> RemoveResult:
        plan = self.plan_remove(name)
        result = RemoveResult(name=name, dry_run=self.dry_run)
        if self.dry_run:
            logger.info("[DRY-RUN] Would remove install dir, manifest, and symlinks.")

        result.removed_links = self.linker.unlink(plan.bin_links)
        if not self.dry_run:
            result.state = self._enter(name, RemoveState.UNLINKED)

        if plan.install_dir:
            install_dir = Path(plan.install_dir)
            if install_dir.is_dir() and not self._owned_by_layout(install_dir):
                logger.warning("Not removing %s: not under %s", install_dir, self.settings.pkgs_dir)
                result.kept_dir = install_dir
            elif self.dry_run:
                if install_dir.is_dir():
                    logger.info("[DRY-RUN] Would remove directory: %s", install_dir)
                    result.removed_dir = install_dir
            elif self._remove_tree(install_dir):
                result.removed_dir = install_dir

        if self.dry_run:
            logger.info("[DRY-RUN] Would remove manifest: %s", plan.manifest_path)
            return result

        logger.info("Removing manifest: %s", plan.manifest_path)
        self.manifests.delete(name)
        result.state = self._enter(name, RemoveState.UNINSTALLED)
        logger.info("Package '%s' removed.", name)
        return result

    # -------------------------
    # Cache
    # -------------------------
    def clean(self) -> List[Path]:
        """Remove every cached archive; returns what was (or would be) removed."""
        self.ensure_layout()
        cache = self.settings.cache_dir
        entries = sorted(cache.iterdir())
        if self.dry_run:
            logger.info("[DRY-RUN] Would remove cache files under %s", cache)
            return entries
        shutil.rmtree(cache)
        cache.mkdir(parents=True, exist_ok=True)
        logger.info("Cache cleaned.")
        return entries

    # -------------------------
    # Doctor
    # -------------------------
    def doctor(self) -> List[DoctorCheck]:
        """Inspect layout and state consistency. Reports only, never repairs."""
        self.ensure_layout()
        checks: List[DoctorCheck] = []

        for d in self.settings.layout_dirs():
            writable = os.access(d, os.W_OK)
            checks.append(DoctorCheck(f"writable {d}", writable, "" if writable else "not writable"))

        entries = self.registry.entries()
        checks.append(DoctorCheck("registry", True, f"{len(entries)} package(s) in {self.registry.path}"))

        on_path = self.settings.bin_dir_on_path()
        checks.append(DoctorCheck(
            "bin dir on PATH",
            on_path,
            "" if on_path else f'add: export PATH="{self.settings.bin_dir}:$PATH"',
        ))

        owned_dirs: Set[str] = set()
        missing_trees: List[str] = []
        dangling: List[str] = []
        corrupt: List[str] = []
        manifests: Dict[str, Manifest] = {}
        for name in self.manifests.names():
            try:
                mf = self.manifests.read(name)
            except ManifestCorrupt as e:
                corrupt.append(f"{name} ({e.missing})")
                continue
            if mf is None:
                continue
            manifests[name] = mf
            owned_dirs.add(os.path.normpath(mf.install_dir))
            if not os.path.isdir(mf.install_dir):
                missing_trees.append(f"{name} -> {mf.install_dir}")
            for link in mf.bin_links:
                if not os.path.exists(link):
                    dangling.append(link)

        stale = sorted(
            p.name for p in self.settings.pkgs_dir.iterdir()
            if p.is_dir() and os.path.normpath(str(p)) not in owned_dirs
        )

        checks.append(DoctorCheck("corrupt manifests", not corrupt, ", ".join(corrupt)))
        checks.append(DoctorCheck("stale install dirs", not stale, ", ".join(stale)))
        checks.append(DoctorCheck("missing install dirs", not missing_trees, ", ".join(missing_trees)))
        checks.append(DoctorCheck("dangling links", not dangling, ", ".join(dangling)))
        logger.debug("doctor: %d manifest(s) checked", len(manifests))
        return checks
