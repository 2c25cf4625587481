# vmpkg/config.py
"""
vmpkg configuration loader

Features:
- Read a YAML config file from the first existing candidate (explicit path,
  $VMPKG_CONFIG, user config, system config)
- Merge with authoritative DEFAULTS, normalize paths and coerce types
- Validate structure, warn about unknown keys (fatal optional)
- Apply VMPKG_* environment overrides on top of the file
- Produce an immutable Settings value that every component receives
  explicitly; nothing here is process-global
"""

from __future__ import annotations

import os
import logging
from copy import deepcopy
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

logger = logging.getLogger("vmpkg.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "paths": {
        "root": "~/.vmpkg",
        "bin": "~/.local/bin",
        "registry": None,  # <root>/registry
    },
    "fetcher": {
        "timeout": 15,
        "retries": 3,
    },
    "logging": {
        "level": "INFO",
        "color": True,
        "file": None,
        "max_size": "10M",
        "backups": 3,
        "jsonl": None,
    },
    "behavior": {
        "assume_yes": False,
        "dry_run": False,
        "quiet": False,
        "debug": False,
    },
}

# env var -> (section, key, kind)
ENV_OVERRIDES: Dict[str, Tuple[str, str, str]] = {
    "VMPKG_ROOT": ("paths", "root", "path"),
    "VMPKG_BIN": ("paths", "bin", "path"),
    "VMPKG_REGISTRY": ("paths", "registry", "path"),
    "VMPKG_ASSUME_YES": ("behavior", "assume_yes", "flag"),
    "VMPKG_DRY_RUN": ("behavior", "dry_run", "flag"),
    "VMPKG_DEBUG": ("behavior", "debug", "flag"),
    "VMPKG_QUIET": ("behavior", "quiet", "flag"),
}

_TRUE_WORDS = ("1", "true", "yes", "on", "y")


# ----------------------------
# Dataclass to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS and env
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)


# ----------------------------
# Utilities
# ----------------------------
def _human_size_to_bytes(val: Union[str, int, None]) -> Optional[int]:
    if val is None:
        return None
    if isinstance(val, int):
        return val
    s = str(val).strip().upper()
    units = {"KB": 1024, "K": 1024, "MB": 1024**2, "M": 1024**2, "GB": 1024**3, "G": 1024**3}
    try:
        for suffix, mul in units.items():
            if s.endswith(suffix):
                return int(float(s[: -len(suffix)].strip()) * mul)
        return int(float(s))
    except ValueError:
        logger.warning("config: cannot parse human size '%s'", val)
        return None


def _expand_path(val: Optional[str]) -> Optional[str]:
    if not val:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))


def _as_flag(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in _TRUE_WORDS


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res


def _find_candidates(explicit: Optional[str], environ: Mapping[str, str]) -> List[Path]:
    candidates: List[Path] = []
    if explicit:
        candidates.append(Path(explicit).expanduser())
    env = environ.get("VMPKG_CONFIG")
    if env:
        candidates.append(Path(env).expanduser())
    candidates.extend([
        Path.home() / ".config" / "vmpkg" / "config.yaml",
        Path("/etc") / "vmpkg" / "config.yaml",
    ])
    return candidates


def _load_file(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.warning("config: cannot load %s: %s", path, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("config: %s does not contain a mapping, ignoring", path)
        return {}
    return data


def _apply_env(cfg: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    out = deepcopy(cfg)
    for var, (section, key, kind) in ENV_OVERRIDES.items():
        val = environ.get(var)
        if val is None or val == "":
            continue
        out.setdefault(section, {})[key] = _as_flag(val) if kind == "flag" else val
    if _as_flag(environ.get("VMPKG_NO_COLOR", "")) or environ.get("NO_COLOR"):
        out.setdefault("logging", {})["color"] = False
    return out


def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Expand path fields, convert human sizes and coerce basic types."""
    out = deepcopy(cfg)
    paths = out.get("paths", {})
    for key in ("root", "bin", "registry"):
        paths[key] = _expand_path(paths.get(key))
    for key in ("root", "bin"):
        if not paths[key]:
            paths[key] = _expand_path(DEFAULTS["paths"][key])
    if paths.get("registry") is None and paths.get("root"):
        paths["registry"] = os.path.join(paths["root"], "registry")

    log_cfg = out.get("logging", {})
    log_cfg["file"] = _expand_path(log_cfg.get("file"))
    log_cfg["jsonl"] = _expand_path(log_cfg.get("jsonl"))
    log_cfg["max_size_bytes"] = _human_size_to_bytes(log_cfg.get("max_size"))

    fetch = out.get("fetcher", {})
    try:
        fetch["timeout"] = float(fetch.get("timeout", 15))
        fetch["retries"] = max(1, int(fetch.get("retries", 3)))
    except (TypeError, ValueError):
        logger.warning("config: invalid fetcher values %r, using defaults", fetch)
        fetch.update(DEFAULTS["fetcher"])

    behavior = out.get("behavior", {})
    for key in DEFAULTS["behavior"]:
        behavior[key] = _as_flag(behavior.get(key, False))
    return out


def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    for section in DEFAULTS:
        if not isinstance(cfg.get(section), dict):
            issues.append(f"{section} must be a mapping")
    if isinstance(cfg.get("paths"), dict) and not cfg["paths"].get("root"):
        issues.append("paths.root must not be empty")
    return (len(issues) == 0, issues)


# ----------------------------
# Loading
# ----------------------------
def find_config_file(explicit_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    environ = os.environ if environ is None else environ
    for p in _find_candidates(explicit_path, environ):
        if p.is_file():
            return p
    return None


def load(explicit_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None, fatal: bool = False) -> Config:
    """
    Load and merge config: DEFAULTS < config file < environment.
    If fatal=True structural validation failures raise ValueError.
    """
    environ = os.environ if environ is None else environ
    cfg_path = find_config_file(explicit_path, environ)
    if explicit_path and cfg_path is None:
        logger.warning("config: explicit config %s not found, using defaults", explicit_path)
    raw = _load_file(cfg_path) if cfg_path else {}
    merged = _deep_merge(DEFAULTS, raw)
    ok, issues = _validate_structure(merged)
    if not ok:
        msg = f"config: validation issues: {issues}"
        if fatal:
            raise ValueError(msg)
        logger.warning(msg)
        # drop malformed sections, defaults take their place
        merged = _deep_merge(DEFAULTS, {k: v for k, v in merged.items() if k in DEFAULTS and isinstance(v, dict)})
    normalized = _normalize_and_coerce(_apply_env(merged, environ))
    logger.debug("config: loaded (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
    return Config(raw=raw, merged=normalized, path=cfg_path)


# ----------------------------
# Settings threaded through every component
# ----------------------------
@dataclass(frozen=True)
class Settings:
    root: Path
    bin_dir: Path
    registry_path: Path
    dry_run: bool = False
    assume_yes: bool = False
    quiet: bool = False
    debug: bool = False
    color: bool = True
    fetch_timeout: float = 15.0
    fetch_retries: int = 3
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    log_max_bytes: int = 10 * 1024 * 1024
    log_backups: int = 3
    log_jsonl: Optional[Path] = None

    @classmethod
    def from_config(cls, cfg: Config) -> "Settings":
        log_file = cfg.get("logging.file")
        jsonl = cfg.get("logging.jsonl")
        return cls(
            root=Path(cfg.get("paths.root")),
            bin_dir=Path(cfg.get("paths.bin")),
            registry_path=Path(cfg.get("paths.registry")),
            dry_run=cfg.get("behavior.dry_run", False),
            assume_yes=cfg.get("behavior.assume_yes", False),
            quiet=cfg.get("behavior.quiet", False),
            debug=cfg.get("behavior.debug", False),
            color=_as_flag(cfg.get("logging.color", True)),
            fetch_timeout=cfg.get("fetcher.timeout", 15.0),
            fetch_retries=cfg.get("fetcher.retries", 3),
            log_level=str(cfg.get("logging.level", "INFO")).upper(),
            log_file=Path(log_file) if log_file else None,
            log_max_bytes=cfg.get("logging.max_size_bytes") or 10 * 1024 * 1024,
            log_backups=int(cfg.get("logging.backups", 3)),
            log_jsonl=Path(jsonl) if jsonl else None,
        )

    @classmethod
    def for_root(cls, root: Union[str, Path], bin_dir: Union[str, Path, None] = None, **kwargs: Any) -> "Settings":
        """Settings for an explicit root, defaults for everything else."""
        root = Path(root).expanduser().resolve()
        bin_path = Path(bin_dir).expanduser().resolve() if bin_dir else Path(_expand_path(DEFAULTS["paths"]["bin"]))
        return cls(root=root, bin_dir=bin_path, registry_path=root / "registry", **kwargs)

    def with_overrides(self, **changes: Any) -> "Settings":
        changes = {k: v for k, v in changes.items() if v is not None}
        if "root" in changes:
            changes["root"] = Path(changes["root"]).expanduser().resolve()
            # a moved root takes its registry along unless given explicitly
            if "registry_path" not in changes and self.registry_path == self.root / "registry":
                changes["registry_path"] = changes["root"] / "registry"
        if "bin_dir" in changes:
            changes["bin_dir"] = Path(changes["bin_dir"]).expanduser().resolve()
        return replace(self, **changes)

    # derived layout
    @property
    def db_dir(self) -> Path:
        return self.root / "db"

    @property
    def pkgs_dir(self) -> Path:
        return self.root / "pkgs"

    @property
    def cache_dir(self) -> Path:
        return self.root / "cache"

    def install_dir_for(self, name: str, version: str) -> Path:
        return self.pkgs_dir / f"{name}-{version}"

    def layout_dirs(self) -> List[Path]:
        return [self.root, self.db_dir, self.pkgs_dir, self.cache_dir, self.bin_dir]

    def bin_dir_on_path(self, environ: Optional[Mapping[str, str]] = None) -> bool:
        environ = os.environ if environ is None else environ
        entries = [e for e in environ.get("PATH", "").split(os.pathsep) if e]
        target = os.path.normpath(str(self.bin_dir))
        return any(os.path.normpath(os.path.expanduser(e)) == target for e in entries)


def load_settings(explicit_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    return Settings.from_config(load(explicit_path, environ))
