"""
Tests for tagq/config.py configuration management.

Covers defaults, file layering, environment variables, overrides and
validation.
"""
from pathlib import Path

import pytest
import tomli

from tagq.config import TagqConfig, load_config, user_config_path


class TestTagqConfigDefaults:
    """Test default configuration values."""

    def test_default_database_is_tagq_db(self):
        assert TagqConfig().database == "tagq.db"

    def test_default_output_format_is_table(self):
        assert TagqConfig().output_format == "table"

    def test_default_strict_fields(self):
        """Unknown fields are errors by default."""
        assert TagqConfig().strict_fields is True

    def test_default_fuzzy_match_is_substring(self):
        assert TagqConfig().fuzzy_match == "substring"

    def test_default_max_groups(self):
        assert TagqConfig().max_groups == 100

    def test_default_database_url_is_none(self):
        assert TagqConfig().database_url is None


class TestConfigLoading:
    """Configuration file layering."""

    def test_defaults_when_no_files(self, clean_tagq_env):
        config = TagqConfig.load()
        assert config.database == "tagq.db"
        assert config.output_format == "table"

    def test_user_config(self, clean_tagq_env):
        path = user_config_path()
        path.parent.mkdir(parents=True)
        path.write_text('output_format = "json"\nmax_groups = 10\n')

        config = TagqConfig.load()
        assert config.output_format == "json"
        assert config.max_groups == 10

    def test_local_overrides_user(self, clean_tagq_env):
        path = user_config_path()
        path.parent.mkdir(parents=True)
        path.write_text('database = "user.db"\noutput_format = "json"\n')
        Path("tagq.toml").write_text('database = "local.db"\n')

        config = TagqConfig.load()
        assert config.database == "local.db"
        assert config.output_format == "json"

    def test_tagqrc(self, clean_tagq_env):
        Path(".tagqrc").write_text('database = "rc.db"\n')
        assert TagqConfig.load().database == "rc.db"

    def test_tagq_toml_preferred_over_tagqrc(self, clean_tagq_env):
        Path("tagq.toml").write_text('database = "toml.db"\n')
        Path(".tagqrc").write_text('database = "rc.db"\n')
        assert TagqConfig.load().database == "toml.db"

    def test_explicit_file(self, clean_tagq_env):
        Path("tagq.toml").write_text('database = "local.db"\n')
        explicit = Path("custom.toml")
        explicit.write_text('database = "custom.db"\n')
        assert TagqConfig.load(explicit).database == "custom.db"

    def test_explicit_file_missing(self, clean_tagq_env):
        with pytest.raises(FileNotFoundError):
            TagqConfig.load(Path("missing.toml"))

    def test_unknown_keys_ignored(self, clean_tagq_env):
        Path("tagq.toml").write_text('mystery = 1\ndatabase = "x.db"\n')
        config = TagqConfig.load()
        assert config.database == "x.db"
        assert not hasattr(config, "mystery")

    def test_invalid_fuzzy_match_rejected(self, clean_tagq_env):
        Path("tagq.toml").write_text('fuzzy_match = "soundex"\n')
        with pytest.raises(ValueError):
            TagqConfig.load()


class TestEnvironmentVariables:
    def test_string(self, clean_tagq_env, monkeypatch):
        monkeypatch.setenv("TAGQ_DATABASE", "env.db")
        assert TagqConfig.load().database == "env.db"

    def test_bool(self, clean_tagq_env, monkeypatch):
        monkeypatch.setenv("TAGQ_STRICT_FIELDS", "false")
        assert TagqConfig.load().strict_fields is False

    def test_int(self, clean_tagq_env, monkeypatch):
        monkeypatch.setenv("TAGQ_MAX_GROUPS", "25")
        assert TagqConfig.load().max_groups == 25

    def test_env_overrides_files(self, clean_tagq_env, monkeypatch):
        Path("tagq.toml").write_text('output_format = "csv"\n')
        monkeypatch.setenv("TAGQ_OUTPUT_FORMAT", "json")
        assert TagqConfig.load().output_format == "json"

    def test_unrelated_vars_ignored(self, clean_tagq_env, monkeypatch):
        monkeypatch.setenv("TAGQ_NOT_A_SETTING", "1")
        assert TagqConfig.load().database == "tagq.db"


class TestPathsAndUrls:
    def test_tilde_expanded(self, clean_tagq_env):
        Path("tagq.toml").write_text('database = "~/data/work.db"\n')
        config = TagqConfig.load()
        assert config.database == str(Path.home() / "data" / "work.db")

    def test_relative_database_path(self, clean_tagq_env):
        assert TagqConfig().get_database_path() == Path.cwd() / "tagq.db"

    def test_database_url(self, clean_tagq_env):
        config = TagqConfig(database="/tmp/x.db")
        assert config.get_database_url() == "sqlite:////tmp/x.db"
        assert config.is_sqlite()

    def test_explicit_url_wins(self):
        config = TagqConfig(database_url="sqlite:///other.db")
        assert config.get_database_url() == "sqlite:///other.db"


class TestOverridesAndSave:
    def test_replace_ignores_none(self):
        config = TagqConfig().replace(database=None, output_format="csv")
        assert config.database == "tagq.db"
        assert config.output_format == "csv"

    def test_replace_returns_copy(self):
        base = TagqConfig()
        base.replace(max_groups=5)
        assert base.max_groups == 100

    def test_replace_validates(self):
        with pytest.raises(ValueError):
            TagqConfig().replace(max_groups=-1)

    def test_load_config_overrides(self, clean_tagq_env):
        config = load_config(database="cli.db", fuzzy_match="fts")
        assert config.database == "cli.db"
        assert config.fuzzy_match == "fts"

    def test_save_round_trip(self, clean_tagq_env):
        path = Path("saved") / "config.toml"
        TagqConfig(database="saved.db", max_groups=7).save(path)

        with open(path, "rb") as f:
            data = tomli.load(f)
        assert data["database"] == "saved.db"
        assert "database_url" not in data

        loaded = TagqConfig.load(path)
        assert loaded.max_groups == 7
