"""Tests for config.py — SyncConfig, validate_config() and load_config()."""

import pytest

from worklog_sync.config import SyncConfig, load_config, validate_config


class TestValidateConfig:
    def test_defaults_valid(self):
        validate_config(SyncConfig())

    def test_repo_required(self):
        with pytest.raises(ValueError, match="repository not configured"):
            validate_config(SyncConfig(), require_repo=True)

    @pytest.mark.parametrize("repo", ["acme", "acme/app/extra", "ac me/app"])
    def test_bad_slug(self, repo):
        with pytest.raises(ValueError, match="expected owner/name"):
            validate_config(SyncConfig(repo=repo))

    def test_slug_trimmed(self):
        config = SyncConfig(repo="  acme/app ")
        validate_config(config, require_repo=True)
        assert config.repo == "acme/app"

    def test_prefix_normalised(self):
        config = SyncConfig(label_prefix="team")
        validate_config(config)
        assert config.label_prefix == "team:"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("max_retries", -1),
            ("max_retries", 11),
            ("retry_initial_delay", -0.1),
            ("command_timeout", 0),
            ("id_prefix", " "),
        ],
    )
    def test_out_of_range(self, field, value):
        config = SyncConfig()
        setattr(config, field, value)
        with pytest.raises(ValueError):
            validate_config(config)


class TestLoadConfig:
    """Precedence: argument > environment > YAML fallback > default."""

    def test_defaults(self):
        config = load_config()
        assert config.repo == ""
        assert config.label_prefix == "wl:"
        assert config.git_branch == "refs/worklog/data"
        assert config.max_retries == 3

    def test_env_over_yaml(self, monkeypatch):
        monkeypatch.setenv("WORKLOG_GITHUB_REPO", "env/repo")
        config = load_config(yaml_fallbacks={"repo": "yaml/repo"})
        assert config.repo == "env/repo"

    def test_argument_over_env(self, monkeypatch):
        monkeypatch.setenv("WORKLOG_GITHUB_REPO", "env/repo")
        assert load_config(repo="arg/repo").repo == "arg/repo"

    def test_yaml_fallbacks(self):
        config = load_config(
            yaml_fallbacks={
                "repo": "yaml/repo",
                "max_retries": 5,
                "command_timeout": 10,
                "gh_binary": "/opt/gh",
                "id_prefix": "TEAM",
            }
        )
        assert config.repo == "yaml/repo"
        assert config.max_retries == 5
        assert config.command_timeout == 10.0
        assert config.gh_binary == "/opt/gh"
        assert config.id_prefix == "TEAM"

    def test_numeric_env(self, monkeypatch):
        monkeypatch.setenv("WORKLOG_MAX_RETRIES", "0")
        monkeypatch.setenv("WORKLOG_COMMAND_TIMEOUT", "2.5")
        config = load_config()
        assert config.max_retries == 0
        assert config.command_timeout == 2.5

    def test_numeric_env_invalid(self, monkeypatch):
        monkeypatch.setenv("WORKLOG_MAX_RETRIES", "many")
        with pytest.raises(ValueError, match="WORKLOG_MAX_RETRIES"):
            load_config()

    def test_invalid_repo_raises(self):
        with pytest.raises(ValueError):
            load_config(repo="not-a-slug")
