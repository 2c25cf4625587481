# vmpkg/registry.py
"""
Registry store - the catalog of known packages.

File format, one package per line (UTF-8):

    name|version|url|description

Lines starting with '#' and blank lines are comments: never matched, always
preserved on rewrite. The file is loaded into memory and written back whole
through a temporary file and os.replace().
"""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from vmpkg.errors import InvalidEntry, InvalidName
from vmpkg.logging import get_logger

logger = get_logger("registry")

SEPARATOR = "|"

# characters that would end or corrupt a registry line
_LINE_BREAKERS = ("\n", "\r", "\0")

REGISTRY_HEADER = """\
# vmpkg registry
# Format (pipe-separated):
#   name|version|url|description
# Example:
#   bat|0.24.0|https://example.com/bat-0.24.0-x86_64.tar.gz|cat clone with wings
"""


@dataclass(frozen=True)
class RegistryEntry:
    name: str
    version: str
    url: str
    description: str = ""

    def to_line(self) -> str:
        return SEPARATOR.join((self.name, self.version, self.url, self.description))


def validate_name(name: str) -> str:
    """Raise InvalidName unless `name` can be used as registry key and file name."""
    if not name or not name.strip():
        raise InvalidName("Package name must not be empty.")
    if name != name.strip():
        raise InvalidName(f"Package name {name!r} must not start or end with whitespace.")
    if SEPARATOR in name:
        raise InvalidName(f"Package name must not contain '{SEPARATOR}'.")
    if "/" in name or any(c in name for c in _LINE_BREAKERS):
        raise InvalidName(f"Package name {name!r} must not contain '/', newlines or NUL.")
    if name.startswith("#"):
        raise InvalidName("Package name must not start with '#'.")
    if name in (".", ".."):
        raise InvalidName(f"Package name {name!r} is reserved.")
    return name


def validate_entry(entry: RegistryEntry) -> RegistryEntry:
    """Every field must fit on one line; only the description may contain the separator."""
    validate_name(entry.name)
    for label, value in (("version", entry.version), ("url", entry.url), ("description", entry.description)):
        if any(c in value for c in _LINE_BREAKERS):
            raise InvalidEntry(f"Package {label} {value!r} must not contain newlines or NUL.")
    for label, value in (("version", entry.version), ("url", entry.url)):
        if not value.strip():
            raise InvalidEntry(f"Package {label} must not be empty.")
        if SEPARATOR in value:
            raise InvalidEntry(f"Package {label} {value!r} must not contain '{SEPARATOR}'.")
    return entry


def _is_comment(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def _parse(line: str) -> Optional[RegistryEntry]:
    """A record needs at least name, version and url; the 4th field keeps the rest."""
    if _is_comment(line):
        return None
    parts = line.split(SEPARATOR, 3)
    if len(parts) < 3:
        return None
    desc = parts[3] if len(parts) > 3 else ""
    return RegistryEntry(name=parts[0], version=parts[1], url=parts[2], description=desc)


class RegistryStore:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lines: Optional[List[str]] = None

    # ----------------------
    # File handling
    # ----------------------
    def ensure(self) -> None:
        """Create the registry with its header on first touch."""
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._atomic_write(REGISTRY_HEADER)
        logger.debug("created registry %s", self.path)

    def _load(self) -> List[str]:
        if self._lines is None:
            self.ensure()
            text = self.path.read_text(encoding="utf-8")
            # only \n ends a record; other Unicode line breaks are field data
            lines = text.split("\n")
            if lines and lines[-1] == "":
                lines.pop()
            self._lines = lines
        return self._lines

    def reload(self) -> None:
        self._lines = None

    def _atomic_write(self, text: str) -> None:
        fd, tmp = tempfile.mkstemp(prefix=".registry.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _flush(self, lines: List[str]) -> None:
        self._atomic_write("".join(line + "\n" for line in lines))
        self._lines = lines

    # ----------------------
    # Queries
    # ----------------------
    def find(self, name: str) -> Optional[RegistryEntry]:
        for line in self._load():
            entry = _parse(line)
            if entry is not None and entry.name == name:
                return entry
        return None

    def entries(self) -> List[RegistryEntry]:
        return [e for e in (_parse(line) for line in self._load()) if e is not None]

    def search(self, pattern: str) -> List[RegistryEntry]:
        """Records whose whole line matches `pattern`, case-insensitive."""
        try:
            rx = re.compile(pattern, re.IGNORECASE)
        except re.error:
            rx = re.compile(re.escape(pattern), re.IGNORECASE)
        out: List[RegistryEntry] = []
        for line in self._load():
            entry = _parse(line)
            if entry is not None and rx.search(line):
                out.append(entry)
        return out

    # ----------------------
    # Mutation
    # ----------------------
    def upsert(self, name: str, version: str, url: str, description: str = "") -> RegistryEntry:
        entry = validate_entry(RegistryEntry(name=name, version=version, url=url, description=description))
        kept: List[str] = []
        for line in self._load():
            if _is_comment(line):
                kept.append(line)
                continue
            if line.split(SEPARATOR, 1)[0] != name:
                kept.append(line)
        kept.append(entry.to_line())
        self._flush(kept)
        logger.info("Registered package '%s' version '%s'.", name, version)
        return entry
