# vmpkg/db.py
"""
Manifest store - the record of what is installed.

One file per installed package, <db>/<name>.manifest:

    name=<name>
    version=<version>
    install_dir=<absolute path>
    bin_links=<path>;<path>;...

A manifest exists if and only if the package is installed. Files are
replaced wholesale (temp file + os.replace), never edited in place.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from vmpkg.errors import ManifestCorrupt
from vmpkg.logging import get_logger

logger = get_logger("db")

MANIFEST_SUFFIX = ".manifest"
LINK_SEPARATOR = ";"
REQUIRED_FIELDS = ("name", "version", "install_dir")
UNKNOWN = "unknown"


@dataclass
class Manifest:
    name: str
    version: str
    install_dir: str
    bin_links: List[str] = field(default_factory=list)

    def dumps(self) -> str:
        return (
            f"name={self.name}\n"
            f"version={self.version}\n"
            f"install_dir={self.install_dir}\n"
            f"bin_links={LINK_SEPARATOR.join(self.bin_links)}\n"
        )


def _parse_fields(text: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for line in text.split("\n"):
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        # first occurrence wins
        if key and key not in out:
            out[key] = value
    return out


def split_links(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [p for p in value.split(LINK_SEPARATOR) if p]


class ManifestStore:
    def __init__(self, db_dir: Union[str, Path]):
        self.db_dir = Path(db_dir)

    def path_for(self, name: str) -> Path:
        return self.db_dir / f"{name}{MANIFEST_SUFFIX}"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def _read_fields(self, name: str) -> Optional[Dict[str, str]]:
        path = self.path_for(name)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        return _parse_fields(text)

    # ----------------------
    # Public API
    # ----------------------
    def write(self, name: str, version: str, install_dir: Union[str, Path], bin_links: Sequence[Union[str, Path]]) -> Manifest:
        manifest = Manifest(name=name, version=version, install_dir=str(install_dir), bin_links=[str(p) for p in bin_links])
        self.db_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)
        fd, tmp = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=str(self.db_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(manifest.dumps())
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("wrote manifest %s", path)
        return manifest

    def read(self, name: str) -> Optional[Manifest]:
        """None when not installed; ManifestCorrupt when a required field is missing."""
        fields = self._read_fields(name)
        if fields is None:
            return None
        for key in REQUIRED_FIELDS:
            if key not in fields:
                raise ManifestCorrupt(str(self.path_for(name)), key)
        return Manifest(
            name=fields["name"],
            version=fields["version"],
            install_dir=fields["install_dir"],
            bin_links=split_links(fields.get("bin_links")),
        )

    def read_field(self, name: str, key: str) -> Optional[str]:
        """Single field of a manifest, None if the file or the field is absent."""
        fields = self._read_fields(name)
        if fields is None:
            return None
        return fields.get(key)

    def delete(self, name: str) -> bool:
        try:
            self.path_for(name).unlink()
        except FileNotFoundError:
            return False
        logger.debug("deleted manifest for %s", name)
        return True

    def names(self) -> List[str]:
        if not self.db_dir.is_dir():
            return []
        return sorted(p.name[: -len(MANIFEST_SUFFIX)] for p in self.db_dir.glob(f"*{MANIFEST_SUFFIX}") if p.is_file())

    def list(self) -> Iterator[Tuple[str, str]]:
        """Yield (name, version) for every manifest; damaged fields read as 'unknown'."""
        if not self.db_dir.is_dir():
            return
        for path in sorted(self.db_dir.glob(f"*{MANIFEST_SUFFIX}")):
            if not path.is_file():
                continue
            try:
                fields = _parse_fields(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("cannot read manifest %s: %s", path, e)
                fields = {}
            name = fields.get("name") or UNKNOWN
            version = fields.get("version") or UNKNOWN
            if UNKNOWN in (name, version):
                logger.warning("manifest %s is damaged (name=%s, version=%s)", path, name, version)
            yield name, version
