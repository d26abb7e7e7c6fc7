"""
Unit tests for runtime configuration.
"""

import pytest

from bomtrail.config import DEFAULT_AUTO_VERSION_THRESHOLD, DEFAULT_MAX_BATCH_SIZE, load_settings
from bomtrail.versions.snapshot import should_auto_create_version

ENV_VARS = (
    "BOMTRAIL_AUTO_VERSION_THRESHOLD",
    "BOMTRAIL_MAX_BATCH_SIZE",
    "BOMTRAIL_DB_URL",
    "DATABASE_URL",
)


@pytest.fixture
def clean_env(monkeypatch):
    """
    Start from an environment without bomtrail variables.

    Setting then deleting through monkeypatch records each variable, so
    anything load_dotenv writes during a test is removed afterwards.
    """
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


@pytest.fixture
def empty_env_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text("")
    return str(path)


class TestLoadSettings:

    def test_defaults(self, clean_env, empty_env_file):
        settings = load_settings(empty_env_file)
        assert settings.auto_version_threshold == DEFAULT_AUTO_VERSION_THRESHOLD
        assert settings.max_batch_size == DEFAULT_MAX_BATCH_SIZE
        assert settings.database_url is None

    def test_environment_overrides(self, clean_env, empty_env_file):
        clean_env.setenv("BOMTRAIL_AUTO_VERSION_THRESHOLD", "25")
        clean_env.setenv("BOMTRAIL_MAX_BATCH_SIZE", "100")
        clean_env.setenv("BOMTRAIL_DB_URL", "postgresql://localhost/bom")

        settings = load_settings(empty_env_file)

        assert settings.auto_version_threshold == 25
        assert settings.max_batch_size == 100
        assert settings.database_url == "postgresql://localhost/bom"

    def test_database_url_fallback(self, clean_env, empty_env_file):
        clean_env.setenv("DATABASE_URL", "postgresql://fallback/bom")
        assert load_settings(empty_env_file).database_url == "postgresql://fallback/bom"

    def test_env_file_is_read(self, clean_env, tmp_path):
        path = tmp_path / ".env"
        path.write_text("BOMTRAIL_AUTO_VERSION_THRESHOLD=7\n")
        assert load_settings(str(path)).auto_version_threshold == 7

    def test_environment_wins_over_env_file(self, clean_env, tmp_path):
        path = tmp_path / ".env"
        path.write_text("BOMTRAIL_MAX_BATCH_SIZE=50\n")
        clean_env.setenv("BOMTRAIL_MAX_BATCH_SIZE", "60")
        assert load_settings(str(path)).max_batch_size == 60

    @pytest.mark.parametrize("value", ["ten", "0", "-5"])
    def test_invalid_numbers_are_rejected(self, clean_env, empty_env_file, value):
        clean_env.setenv("BOMTRAIL_AUTO_VERSION_THRESHOLD", value)
        with pytest.raises(ValueError):
            load_settings(empty_env_file)


class TestThresholdDefault:

    def test_explicit_threshold_ignores_settings(self):
        assert should_auto_create_version(3, threshold=3)
        assert not should_auto_create_version(2, threshold=3)
