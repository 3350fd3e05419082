"""Tests for fedfs configuration management."""

import json
import os
import stat

import pytest

from fedfs.config import (
    CacheConfig, FederationConfig, MountConfig, WriteProtectConfig,
    add_mount_to_config, config_from_dict, get_config_path, load_config,
    normalize_prefix, read_config_file, remove_mount_from_config,
    validate_mount, write_config_file, _mount_config_to_dict,
)


class TestDataClasses:
    """Tests for config data classes."""

    def test_federation_config_defaults(self):
        cfg = FederationConfig()
        assert cfg.base_uri == "http://localhost:8080/rest"
        assert cfg.cache.ttl == 1.0
        assert cfg.mounts == ()

    def test_write_protect_defaults_blocked(self):
        assert WriteProtectConfig().allow_federation_write is False
        assert MountConfig(prefix="/files", root="/srv").write_protect.allow_federation_write is False

    def test_config_is_immutable(self):
        cfg = FederationConfig()
        with pytest.raises(AttributeError):
            cfg.cache = CacheConfig(ttl=5)

    def test_mount_for_prefix(self):
        cfg = FederationConfig(mounts=(MountConfig(prefix="/files", root="/srv"),))
        assert cfg.mount_for_prefix("files/").root == "/srv"
        assert cfg.mount_for_prefix("/other") is None


class TestPathHelpers:
    """Tests for path helpers."""

    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FEDFS_CONFIG", str(tmp_path / "custom.json"))
        assert get_config_path() == tmp_path / "custom.json"

    def test_xdg_config_home(self, monkeypatch, tmp_path):
        monkeypatch.delenv("FEDFS_CONFIG", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert get_config_path() == tmp_path / "fedfs" / "federation.json"

    def test_normalize_prefix(self):
        assert normalize_prefix("files/") == "/files"
        assert normalize_prefix("/a/b/") == "/a/b"
        assert normalize_prefix("/") == "/"


class TestReadWrite:
    """Tests for federation.json I/O."""

    def test_roundtrip(self, tmp_path):
        path = tmp_path / "federation.json"
        data = {"base_uri": "http://x/rest", "mounts": {}}
        write_config_file(data, path)
        assert read_config_file(path) == data

    def test_permissions_600(self, tmp_path):
        path = tmp_path / "federation.json"
        write_config_file({"token": "secret"}, path)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_no_tmp_file_left(self, tmp_path):
        path = tmp_path / "federation.json"
        write_config_file({}, path)
        assert not path.with_suffix(".tmp").exists()

    def test_missing_file(self, tmp_path):
        assert read_config_file(tmp_path / "absent.json") is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "federation.json"
        path.write_text("{not json")
        assert read_config_file(path) is None


class TestLoadConfig:
    """Tests for building FederationConfig from JSON."""

    def test_full_config(self, tmp_path):
        root = tmp_path / "objects"
        root.mkdir()
        data = {
            "base_uri": "http://repo/rest/",
            "api_url": "http://repo/api",
            "token": "t0ken",
            "cache": {"ttl": 2.5},
            "mounts": {
                "files/": {
                    "root": str(root),
                    "exclude": ["*.tmp"],
                    "write_protect": {"allow_federation_write": True},
                },
            },
        }
        cfg = config_from_dict(data)
        assert cfg.base_uri == "http://repo/rest"
        assert cfg.cache.ttl == 2.5
        mount = cfg.mounts[0]
        assert mount.prefix == "/files"
        assert mount.root == os.path.realpath(str(root))
        assert mount.exclude == ("*.tmp",)
        assert mount.write_protect.allow_federation_write is True

    def test_mount_without_root_skipped(self):
        cfg = config_from_dict({"mounts": {"/files": {"exclude": []}}})
        assert cfg.mounts == ()

    def test_defaults_when_absent(self, tmp_path):
        cfg = load_config(tmp_path / "absent.json")
        assert cfg == FederationConfig()

    def test_cli_api_url_wins(self, tmp_path):
        path = tmp_path / "federation.json"
        write_config_file({"api_url": "http://from-file/api"}, path)
        cfg = load_config(path, cli_api_url="http://from-cli/api/")
        assert cfg.api_url == "http://from-cli/api"


class TestMountManagement:
    """Tests for adding/removing mounts."""

    def test_add_and_remove(self, tmp_path):
        path = tmp_path / "federation.json"
        root = tmp_path / "objects"
        root.mkdir()
        mount = MountConfig(prefix="/files", root=str(root), exclude=("*.bak",))

        add_mount_to_config(mount, path)
        saved = json.loads(path.read_text())
        assert saved["mounts"]["/files"] == _mount_config_to_dict(mount)
        assert load_config(path).mounts[0].exclude == ("*.bak",)

        assert remove_mount_from_config("files", path) is True
        assert remove_mount_from_config("/files", path) is False
        assert load_config(path).mounts == ()

    def test_add_preserves_other_settings(self, tmp_path):
        path = tmp_path / "federation.json"
        write_config_file({"token": "keep-me"}, path)
        add_mount_to_config(MountConfig(prefix="/files", root=str(tmp_path)), path)
        assert read_config_file(path)["token"] == "keep-me"


class TestValidateMount:
    """Tests for mount validation."""

    def test_valid(self, tmp_path):
        assert validate_mount(MountConfig(prefix="/files", root=str(tmp_path))) is None

    def test_root_prefix_refused(self, tmp_path):
        assert "repository root" in validate_mount(MountConfig(prefix="/", root=str(tmp_path)))

    def test_relative_root(self):
        assert "absolute" in validate_mount(MountConfig(prefix="/files", root="relative/dir"))

    def test_missing_root(self, tmp_path):
        assert "does not exist" in validate_mount(MountConfig(prefix="/files", root=str(tmp_path / "nope")))
