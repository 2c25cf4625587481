"""
Tests for config loading and Settings.
"""

import os
from pathlib import Path

import pytest

from vmpkg.config import DEFAULTS, Settings, _human_size_to_bytes, find_config_file, load, load_settings


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch):
    """Keep the user's real ~/.config/vmpkg out of the picture."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults_without_file(self, isolated_home: Path):
        cfg = load(environ={})
        assert cfg.path is None
        assert cfg.get("paths.root") == str(isolated_home / ".vmpkg")
        assert cfg.get("paths.bin") == str(isolated_home / ".local" / "bin")
        assert cfg.get("paths.registry") == str(isolated_home / ".vmpkg" / "registry")
        assert cfg.get("fetcher.retries") == 3
        assert cfg.get("behavior.dry_run") is False

    def test_get_missing_key(self):
        assert load(environ={}).get("paths.nope", "fallback") == "fallback"

    def test_as_dict_is_a_copy(self):
        cfg = load(environ={})
        cfg.as_dict()["paths"]["root"] = "/elsewhere"
        assert cfg.get("paths.root") != "/elsewhere"

    def test_defaults_are_untouched(self):
        load(environ={"VMPKG_ROOT": "/tmp/x"})
        assert DEFAULTS["paths"]["root"] == "~/.vmpkg"


class TestFile:
    def test_user_config_is_found(self, isolated_home: Path):
        path = _write_config(isolated_home / ".config" / "vmpkg" / "config.yaml", "fetcher:\n  retries: 5\n")
        assert find_config_file(environ={}) == path
        assert load(environ={}).get("fetcher.retries") == 5

    def test_explicit_path_wins(self, tmp_path: Path, isolated_home: Path):
        _write_config(isolated_home / ".config" / "vmpkg" / "config.yaml", "fetcher:\n  retries: 5\n")
        explicit = _write_config(tmp_path / "mine.yaml", "fetcher:\n  retries: 9\n")
        cfg = load(str(explicit), environ={})
        assert cfg.path == explicit
        assert cfg.get("fetcher.retries") == 9

    def test_env_config_path(self, tmp_path: Path):
        path = _write_config(tmp_path / "env.yaml", "paths:\n  root: /srv/vmpkg\n")
        cfg = load(environ={"VMPKG_CONFIG": str(path)})
        assert cfg.get("paths.root") == "/srv/vmpkg"
        assert cfg.get("paths.registry") == "/srv/vmpkg/registry"

    def test_partial_section_keeps_other_defaults(self, tmp_path: Path):
        path = _write_config(tmp_path / "c.yaml", "logging:\n  level: debug\n  max_size: 2M\n")
        cfg = load(str(path), environ={})
        assert cfg.get("logging.backups") == 3
        assert cfg.get("logging.max_size_bytes") == 2 * 1024 * 1024

    def test_invalid_yaml_falls_back_to_defaults(self, tmp_path: Path, caplog):
        path = _write_config(tmp_path / "bad.yaml", "paths: [unclosed\n")
        cfg = load(str(path), environ={})
        assert cfg.get("fetcher.retries") == 3
        assert "cannot load" in caplog.text

    def test_unknown_key_warns(self, tmp_path: Path, caplog):
        path = _write_config(tmp_path / "c.yaml", "colours: true\n")
        cfg = load(str(path), environ={})
        assert "colours" not in cfg.merged
        assert "Unknown top-level config key" in caplog.text

    def test_unknown_key_fatal(self, tmp_path: Path):
        path = _write_config(tmp_path / "c.yaml", "colours: true\n")
        with pytest.raises(ValueError):
            load(str(path), environ={}, fatal=True)

    def test_retries_are_at_least_one(self, tmp_path: Path):
        path = _write_config(tmp_path / "c.yaml", "fetcher:\n  retries: 0\n")
        assert load(str(path), environ={}).get("fetcher.retries") == 1


class TestEnvironment:
    def test_env_overrides_file(self, tmp_path: Path):
        path = _write_config(tmp_path / "c.yaml", "paths:\n  root: /from/file\n")
        cfg = load(str(path), environ={"VMPKG_ROOT": "/from/env", "VMPKG_ASSUME_YES": "1"})
        assert cfg.get("paths.root") == "/from/env"
        assert cfg.get("behavior.assume_yes") is True

    def test_registry_override(self):
        cfg = load(environ={"VMPKG_ROOT": "/r", "VMPKG_REGISTRY": "/elsewhere/reg"})
        assert cfg.get("paths.registry") == "/elsewhere/reg"

    @pytest.mark.parametrize("env", [{"VMPKG_NO_COLOR": "1"}, {"NO_COLOR": "x"}])
    def test_no_color(self, env):
        assert load_settings(environ=env).color is False

    def test_false_flag_values(self):
        cfg = load(environ={"VMPKG_DRY_RUN": "no"})
        assert cfg.get("behavior.dry_run") is False


class TestSettings:
    def test_from_config(self, tmp_path: Path):
        path = _write_config(tmp_path / "c.yaml", (
            "paths:\n  root: /opt/vm\n  bin: /opt/bin\n"
            "logging:\n  level: warning\n  file: /var/log/vmpkg.log\n"
            "fetcher:\n  timeout: 30\n"
        ))
        s = load_settings(str(path), environ={})
        assert s.root == Path("/opt/vm")
        assert s.bin_dir == Path("/opt/bin")
        assert s.registry_path == Path("/opt/vm/registry")
        assert s.log_level == "WARNING"
        assert s.log_file == Path("/var/log/vmpkg.log")
        assert s.fetch_timeout == 30.0

    def test_layout(self, tmp_path: Path):
        s = Settings.for_root(tmp_path / "r", bin_dir=tmp_path / "b")
        root = (tmp_path / "r").resolve()
        assert s.db_dir == root / "db"
        assert s.pkgs_dir == root / "pkgs"
        assert s.cache_dir == root / "cache"
        assert s.install_dir_for("rg", "14.1.0") == root / "pkgs" / "rg-14.1.0"
        assert s.layout_dirs()[-1] == (tmp_path / "b").resolve()

    def test_with_overrides_ignores_none(self, tmp_path: Path):
        s = Settings.for_root(tmp_path / "r")
        assert s.with_overrides(dry_run=None, root=None) == s
        assert s.with_overrides(dry_run=True).dry_run is True

    def test_moving_root_moves_registry(self, tmp_path: Path):
        s = Settings.for_root(tmp_path / "r").with_overrides(root=tmp_path / "other")
        assert s.registry_path == (tmp_path / "other").resolve() / "registry"

    def test_custom_registry_stays(self, tmp_path: Path):
        s = Settings.for_root(tmp_path / "r")
        s = s.with_overrides(registry_path=tmp_path / "reg").with_overrides(root=tmp_path / "other")
        assert s.registry_path == tmp_path / "reg"

    def test_bin_dir_on_path(self, tmp_path: Path):
        s = Settings.for_root(tmp_path / "r", bin_dir=tmp_path / "bin")
        assert s.bin_dir_on_path({"PATH": f"/usr/bin{os.pathsep}{s.bin_dir}/"}) is True
        assert s.bin_dir_on_path({"PATH": "/usr/bin"}) is False
        assert s.bin_dir_on_path({}) is False


class TestHumanSize:
    @pytest.mark.parametrize("raw,expected", [
        ("10M", 10 * 1024 ** 2),
        ("512k", 512 * 1024),
        ("1GB", 1024 ** 3),
        (2048, 2048),
        ("100", 100),
        (None, None),
        ("lots", None),
    ])
    def test_parse(self, raw, expected):
        assert _human_size_to_bytes(raw) == expected
