"""Tests for worklog_sync.config_loader — hierarchical config loading."""

import textwrap

import pytest

from worklog_sync.config_loader import (
    _interpolate_recursive,
    discover_config_files,
    interpolate_env_vars,
    load_hierarchical_config,
    load_yaml_file,
)

# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("MY_REPO", "acme/app")
        assert interpolate_env_vars("${MY_REPO}") == "acme/app"

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ}") == ""

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-fallback}") == "fallback"

    def test_default_ignored_when_set(self, monkeypatch):
        monkeypatch.setenv("MY_PREFIX", "team:")
        assert interpolate_env_vars("${MY_PREFIX:-wl:}") == "team:"

    def test_recursive(self, monkeypatch):
        monkeypatch.setenv("MY_REPO", "acme/app")
        data = {"github": {"repo": "${MY_REPO}", "max_retries": 2}, "x": ["${MY_REPO}"]}
        assert _interpolate_recursive(data) == {
            "github": {"repo": "acme/app", "max_retries": 2},
            "x": ["acme/app"],
        }


# -------------------------------------------------------------------------
# !include
# -------------------------------------------------------------------------


class TestIncludes:
    def test_include_relative_file(self, tmp_path):
        (tmp_path / "github.yml").write_text("repo: acme/app\n")
        main = tmp_path / "config.yml"
        main.write_text("github: !include github.yml\n")

        assert load_yaml_file(main) == {"github": {"repo": "acme/app"}}

    def test_missing_include(self, tmp_path):
        main = tmp_path / "config.yml"
        main.write_text("github: !include nope.yml\n")

        with pytest.raises(FileNotFoundError, match="Include file not found"):
            load_yaml_file(main)

    def test_circular_include(self, tmp_path):
        (tmp_path / "a.yml").write_text("b: !include b.yml\n")
        (tmp_path / "b.yml").write_text("a: !include a.yml\n")

        with pytest.raises(ValueError, match="Circular include"):
            load_yaml_file(tmp_path / "a.yml")


# -------------------------------------------------------------------------
# Discovery and merge
# -------------------------------------------------------------------------


class TestHierarchicalConfig:
    @pytest.fixture(autouse=True)
    def isolated_dirs(self, tmp_path, monkeypatch):
        home = tmp_path / "home"
        project = tmp_path / "project"
        home.mkdir()
        project.mkdir()
        monkeypatch.setenv("HOME", str(home))
        monkeypatch.chdir(project)
        self.home = home
        self.project = project

    def _write(self, path, content):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content))

    def test_nothing_found(self):
        assert discover_config_files() == []
        assert load_hierarchical_config() == {}

    def test_project_overrides_user(self):
        self._write(
            self.home / ".config" / "worklog" / "config.yml",
            """
            github:
              repo: user/repo
            logging:
              level: DEBUG
            """,
        )
        self._write(
            self.project / ".worklog" / "config.yml",
            """
            github:
              repo: project/repo
            """,
        )

        config = load_hierarchical_config()

        assert config["github"] == {"repo": "project/repo"}
        assert config["logging"] == {"level": "DEBUG"}

    def test_env_path_first(self, monkeypatch, tmp_path):
        explicit = tmp_path / "explicit.yml"
        self._write(explicit, "github:\n  repo: env/repo\n")
        self._write(self.project / ".worklog" / "config.yml", "github: {}\n")
        monkeypatch.setenv("WORKLOG_SYNC_CONFIG", str(explicit))

        files = discover_config_files()

        assert files[0] == explicit.resolve()
        assert load_hierarchical_config()["github"] == {"repo": "env/repo"}

    def test_interpolation_after_merge(self, monkeypatch):
        monkeypatch.setenv("TEST_REPO_SLUG", "acme/app")
        self._write(
            self.project / ".worklog" / "config.yaml",
            "github:\n  repo: ${TEST_REPO_SLUG}\n",
        )
        assert load_hierarchical_config()["github"]["repo"] == "acme/app"

    def test_non_dict_root_skipped(self):
        self._write(self.project / ".worklog" / "config.yml", "- a\n- b\n")
        assert load_hierarchical_config() == {}
