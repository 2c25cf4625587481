# vmpkg/errors.py
"""
Error hierarchy for vmpkg.

Every error a command can end with derives from VmpkgError and carries the
exit code the CLI terminates with.
"""

from __future__ import annotations


class VmpkgError(Exception):
    """Generic vmpkg failure."""

    exit_code = 1


class InvalidEntry(VmpkgError):
    """A registry field that cannot be stored on a single registry line."""

    exit_code = 2


class InvalidName(InvalidEntry):
    exit_code = 2


class PackageNotFound(VmpkgError):
    exit_code = 3

    def __init__(self, name: str):
        super().__init__(f"Package '{name}' not found in registry. Use 'vmpkg register' first.")
        self.name = name


class NotInstalled(VmpkgError):
    exit_code = 4

    def __init__(self, name: str, manifest_path: str = ""):
        msg = f"Package '{name}' is not installed"
        if manifest_path:
            msg += f" (manifest not found: {manifest_path})"
        super().__init__(msg + ".")
        self.name = name


class DownloadFailed(VmpkgError):
    exit_code = 5


class UnsupportedArchive(VmpkgError):
    exit_code = 6


class ExtractionFailed(VmpkgError):
    exit_code = 7


class ManifestCorrupt(VmpkgError):
    exit_code = 8

    def __init__(self, path: str, missing: str):
        super().__init__(f"Manifest {path} is corrupt: missing field '{missing}'")
        self.path = path
        self.missing = missing


class OperationCancelled(VmpkgError):
    """The user declined a confirmation prompt."""

    exit_code = 1
