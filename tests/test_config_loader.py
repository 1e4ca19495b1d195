"""Tests for gitstore.config_loader -- discovery, merge and validation."""

import pytest
import yaml
from pydantic import ValidationError

from gitstore.config_loader import (
    discover_config_files,
    expand_vars,
    load_config,
    load_config_data,
    read_yaml,
)
from gitstore.config_schema import UnifiedConfig


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Run with an empty CWD and HOME and no GITSTORE_CONFIG."""
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("GITSTORE_CONFIG", raising=False)
    monkeypatch.chdir(work)
    return work, home


def _project_file(work, text):
    path = work / ".gitstore" / "config.yml"
    path.parent.mkdir(exist_ok=True)
    path.write_text(text)
    return path


def _user_file(home, text):
    path = home / ".config" / "gitstore" / "config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


# -------------------------------------------------------------------------
# Env var references
# -------------------------------------------------------------------------


class TestExpandVars:
    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("GS_REMOTE", "/srv/git/shared.git")
        assert expand_vars("${GS_REMOTE}") == "/srv/git/shared.git"

    def test_unset_var_becomes_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert expand_vars("x${UNSET_VAR_XYZ}y") == "xy"

    def test_default_when_unset_or_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        monkeypatch.setenv("EMPTY_VAR", "")
        assert expand_vars("${UNSET_VAR_XYZ:-main}") == "main"
        assert expand_vars("${EMPTY_VAR:-fallback}") == "fallback"

    def test_unterminated_reference_left_alone(self):
        assert expand_vars("${NO_CLOSE") == "${NO_CLOSE"


# -------------------------------------------------------------------------
# YAML !include support
# -------------------------------------------------------------------------


class TestReadYaml:
    def test_include_relative_file(self, tmp_path):
        (tmp_path / "sync.yml").write_text("max_retries: 3\n")
        main = tmp_path / "config.yml"
        main.write_text("sync: !include sync.yml\n")

        assert read_yaml(main) == {"sync": {"max_retries": 3}}

    def test_nested_include_resolves_against_including_file(self, tmp_path):
        (tmp_path / "parts").mkdir()
        (tmp_path / "parts" / "inner.yml").write_text("3\n")
        (tmp_path / "parts" / "sync.yml").write_text("max_retries: !include inner.yml\n")
        main = tmp_path / "config.yml"
        main.write_text("sync: !include parts/sync.yml\n")

        assert read_yaml(main) == {"sync": {"max_retries": 3}}

    def test_missing_include_raises(self, tmp_path):
        main = tmp_path / "config.yml"
        main.write_text("sync: !include missing.yml\n")

        with pytest.raises(FileNotFoundError, match="missing.yml"):
            read_yaml(main)

    def test_circular_include_raises(self, tmp_path):
        (tmp_path / "a.yml").write_text("x: !include b.yml\n")
        (tmp_path / "b.yml").write_text("y: !include a.yml\n")

        with pytest.raises(ValueError, match="Circular include"):
            read_yaml(tmp_path / "a.yml")

    def test_global_safe_loader_not_polluted(self, tmp_path):
        cfg = tmp_path / "test.yml"
        cfg.write_text("x: !include other.yml\n")

        with pytest.raises(yaml.constructor.ConstructorError):
            with open(cfg) as fh:
                yaml.safe_load(fh)


# -------------------------------------------------------------------------
# Discovery
# -------------------------------------------------------------------------


class TestDiscoverConfigFiles:
    def test_nothing_found(self, isolated):
        assert discover_config_files() == []

    def test_precedence_order(self, isolated, tmp_path, monkeypatch):
        work, home = isolated
        explicit = tmp_path / "explicit.yml"
        explicit.write_text("store: {branch: explicit}\n")
        project = _project_file(work, "store: {branch: project}\n")
        user = _user_file(home, "store: {branch: user}\n")
        monkeypatch.setenv("GITSTORE_CONFIG", str(explicit))

        assert discover_config_files() == [explicit.resolve(), project, user]

    def test_missing_explicit_file_warns(self, isolated, tmp_path, monkeypatch, caplog):
        monkeypatch.setenv("GITSTORE_CONFIG", str(tmp_path / "nope.yml"))

        with caplog.at_level("WARNING", logger="gitstore.config_loader"):
            assert discover_config_files() == []
        assert "missing file" in caplog.text


# -------------------------------------------------------------------------
# Merge and validation
# -------------------------------------------------------------------------


class TestLoadConfig:
    def test_defaults_without_files(self, isolated):
        assert load_config_data() == {}
        assert load_config() == UnifiedConfig()

    def test_sections_merge_key_by_key(self, isolated):
        work, home = isolated
        _user_file(
            home,
            "store: {branch: trunk, instance: user}\nlogging: {level: DEBUG}\n",
        )
        _project_file(work, "store: {instance: desk}\nsync: {mode: batched}\n")

        config = load_config()

        assert config.store.instance == "desk"
        assert config.store.branch == "trunk"
        assert config.sync.mode == "batched"
        assert config.logging.level == "DEBUG"

    def test_env_references_expanded(self, isolated, monkeypatch):
        work, _ = isolated
        monkeypatch.setenv("GS_URL", "/srv/shared.git")
        _project_file(work, "store: {remote_url: '${GS_URL}'}\n")

        assert load_config().store.remote_url == "/srv/shared.git"

    def test_relative_store_path_follows_config_file(self, isolated):
        work, _ = isolated
        project = _project_file(work, "store: {path: data}\n")

        assert load_config().store.path == str(project.parent / "data")

    def test_absolute_store_path_kept(self, isolated, tmp_path):
        work, _ = isolated
        _project_file(work, f"store: {{path: {tmp_path / 'elsewhere'}}}\n")

        assert load_config().store.path == str(tmp_path / "elsewhere")

    def test_explicit_paths_bypass_discovery(self, isolated, tmp_path):
        cfg = tmp_path / "only.yml"
        cfg.write_text("sync: {max_retries: 9}\n")

        assert load_config([cfg]).sync.max_retries == 9

    def test_non_dict_root_skipped(self, isolated):
        work, _ = isolated
        _project_file(work, "- just\n- a list\n")

        assert load_config() == UnifiedConfig()

    def test_non_mapping_section_rejected(self, isolated):
        work, _ = isolated
        _project_file(work, "sync: batched\n")

        with pytest.raises(ValueError, match="section 'sync' must be a mapping"):
            load_config()

    def test_invalid_value_raises_validation_error(self, isolated):
        work, _ = isolated
        _project_file(work, "sync: {max_retries: 500}\n")

        with pytest.raises(ValidationError):
            load_config()

    def test_unknown_section_ignored(self, isolated, caplog):
        work, _ = isolated
        _project_file(work, "extras: {a: 1}\nsync: {mode: batched}\n")

        with caplog.at_level("WARNING", logger="gitstore.config_schema"):
            config = load_config()
        assert config.sync.mode == "batched"
        assert "extras" in caplog.text
